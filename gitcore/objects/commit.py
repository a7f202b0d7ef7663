"""Commit writer — canonical commit records and their digests.

A commit serializes as::

    tree <treeDigest>
    parent <parentDigest>            (only when there is a parent)
    author <name> <<email>> <timestamp> +0000
    committer <name> <<email>> <timestamp> +0000

    <message>

Merge commits carry a second ``parent`` line.  Nothing here is
persisted; callers store the result and advance branch heads explicitly.
"""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from gitcore.config import COMMIT_TZ_OFFSET
from gitcore.errors import InvalidInputError
from gitcore.objects.hasher import Digest, Hasher, is_digest

_SIGNATURE_RE = re.compile(r"^(?P<name>.*) <(?P<email>[^<>]*)> (?P<timestamp>-?\d+) [+-]\d{4}$")


class Author(BaseModel):
    """Commit author identity."""

    model_config = ConfigDict(frozen=True)

    name: str
    email: str

    @field_validator("name", "email")
    @classmethod
    def _single_line_without_brackets(cls, value: str) -> str:
        # the signature line is delimited by "<", ">" and the line break
        if "<" in value or ">" in value or "".join(value.splitlines()) != value:
            raise ValueError(f"must not contain angle brackets or line breaks: {value!r}")
        return value

    def signature(self, timestamp: int) -> str:
        return f"{self.name} <{self.email}> {timestamp} {COMMIT_TZ_OFFSET}"


class Commit(BaseModel):
    """An immutable commit record."""

    model_config = ConfigDict(frozen=True)

    tree_digest: Digest
    message: str
    author: Author
    timestamp: int
    parent_digest: Optional[Digest] = None
    merge_parent_digest: Optional[Digest] = None

    @property
    def parents(self) -> list[Digest]:
        return [p for p in (self.parent_digest, self.merge_parent_digest) if p]

    def serialize(self) -> str:
        return serialize_commit(
            self.tree_digest,
            self.message,
            self.author,
            self.timestamp,
            self.parent_digest,
            self.merge_parent_digest,
        )

    @property
    def digest(self) -> Digest:
        return Hasher.hash_string(self.serialize())


def serialize_commit(
    tree_digest: Digest,
    message: str,
    author: Author,
    timestamp: int,
    parent_digest: Digest | None = None,
    merge_parent_digest: Digest | None = None,
) -> str:
    """Return the canonical text form of a commit.

    Raises
    ------
    InvalidInputError
        On an empty message, malformed digests, or a second parent
        without a first.
    """
    if not message or not message.strip():
        raise InvalidInputError("Commit message is required")
    if not is_digest(tree_digest):
        raise InvalidInputError(f"Invalid tree digest: {tree_digest!r}")
    for parent in (parent_digest, merge_parent_digest):
        if parent is not None and not is_digest(parent):
            raise InvalidInputError(f"Invalid parent digest: {parent!r}")
    if merge_parent_digest is not None and parent_digest is None:
        raise InvalidInputError("A merge parent requires a first parent")

    signature = author.signature(int(timestamp))
    lines = [f"tree {tree_digest}"]
    if parent_digest:
        lines.append(f"parent {parent_digest}")
    if merge_parent_digest:
        lines.append(f"parent {merge_parent_digest}")
    lines.append(f"author {signature}")
    lines.append(f"committer {signature}")
    return "\n".join(lines) + "\n\n" + message


def create_commit(
    tree_digest: Digest,
    message: str,
    author: Author,
    timestamp: int,
    parent_digest: Digest | None = None,
    merge_parent_digest: Digest | None = None,
) -> Digest:
    """Return the digest of the commit described by the arguments.

    Identical inputs always produce the identical digest.
    """
    return Hasher.hash_string(
        serialize_commit(tree_digest, message, author, timestamp, parent_digest, merge_parent_digest)
    )


def parse_commit(text: str) -> Commit:
    """Inverse of :func:`serialize_commit`."""
    header, sep, message = text.partition("\n\n")
    if not sep:
        raise InvalidInputError("Malformed commit: missing message separator")

    tree_digest: str | None = None
    parents: list[str] = []
    author: Author | None = None
    timestamp = 0

    for line in header.splitlines():
        key, _, value = line.partition(" ")
        if key == "tree":
            tree_digest = value
        elif key == "parent":
            parents.append(value)
        elif key == "author":
            match = _SIGNATURE_RE.match(value)
            if match is None:
                raise InvalidInputError(f"Malformed author line: {line!r}")
            author = Author(name=match["name"], email=match["email"])
            timestamp = int(match["timestamp"])

    if tree_digest is None or author is None:
        raise InvalidInputError("Malformed commit: missing tree or author")

    return Commit(
        tree_digest=tree_digest,
        message=message,
        author=author,
        timestamp=timestamp,
        parent_digest=parents[0] if parents else None,
        merge_parent_digest=parents[1] if len(parents) > 1 else None,
    )
