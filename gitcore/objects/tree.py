"""Tree builder — canonical directory snapshots and their digests.

Trees are built post-order: every child is digested before its parent,
and each directory serializes its entries sorted by name, so the same
file set always produces the same digest regardless of input order.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gitcore.errors import InvalidInputError, IOFailureError
from gitcore.objects.hasher import Digest, Hasher, is_digest

logger = logging.getLogger(__name__)

Content = Union[str, bytes]


class ObjectKind(str, Enum):
    """Kinds of content-addressed objects."""

    BLOB = "blob"
    TREE = "tree"
    COMMIT = "commit"


ObjectWriter = Callable[[ObjectKind, Digest, bytes], None]
"""Callback receiving every object a builder creates: (kind, digest, data)."""


class EntryKind(str, Enum):
    """Kind of a tree entry."""

    FILE = "file"
    DIR = "dir"


class TreeEntry(BaseModel):
    """A named child of a tree: a file (blob) or a directory (subtree)."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: EntryKind
    digest: Digest

    def serialize(self) -> str:
        return f"{self.kind.value} {self.digest} {self.name}"


class Tree(BaseModel):
    """A directory snapshot.

    ``entries`` is always sorted by name.  ``subtrees`` holds child trees
    that were built or loaded alongside this one; it is only used for
    display and never contributes to the digest.
    """

    entries: list[TreeEntry] = Field(default_factory=list)
    subtrees: dict[str, Tree] = Field(default_factory=dict, exclude=True)

    @field_validator("entries")
    @classmethod
    def _sort_entries(cls, entries: list[TreeEntry]) -> list[TreeEntry]:
        return sorted(entries, key=lambda e: e.name)

    def serialize(self) -> str:
        """Return the canonical text form: one ``<kind> <digest> <name>`` line per entry."""
        return "".join(f"{entry.serialize()}\n" for entry in self.entries)

    @property
    def digest(self) -> Digest:
        return Hasher.hash_string(self.serialize())

    def get(self, name: str) -> TreeEntry | None:
        """Return the entry called *name*, or None."""
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def files(self, prefix: str = "") -> dict[str, Digest]:
        """Flatten the loaded hierarchy into ``path -> blob digest``."""
        result: dict[str, Digest] = {}
        for entry in self.entries:
            path = f"{prefix}/{entry.name}" if prefix else entry.name
            if entry.kind is EntryKind.FILE:
                result[path] = entry.digest
            elif entry.name in self.subtrees:
                result.update(self.subtrees[entry.name].files(path))
        return result

    def to_listing(self, prefix: str = "") -> dict[str, Any]:
        """Return a nested, JSON-friendly structure for file browsers."""
        listing: dict[str, Any] = {}
        for entry in self.entries:
            path = f"{prefix}/{entry.name}" if prefix else entry.name
            if entry.kind is EntryKind.DIR:
                subtree = self.subtrees.get(entry.name)
                listing[entry.name] = {
                    "type": "directory",
                    "children": subtree.to_listing(path) if subtree else {},
                }
            else:
                listing[entry.name] = {"type": "file", "path": path}
        return listing


Tree.model_rebuild()


def content_bytes(content: Content) -> bytes:
    """Return file content as bytes; ``str`` is encoded as UTF-8.

    Raises
    ------
    InvalidInputError
        If *content* is neither text nor bytes.
    """
    if isinstance(content, str):
        return content.encode("utf-8")
    if isinstance(content, (bytes, bytearray)):
        return bytes(content)
    raise InvalidInputError(f"File content must be str or bytes, got {type(content).__name__}")


def normalize_path(path: str) -> str:
    """Return *path* as a clean relative POSIX path.

    Raises
    ------
    InvalidInputError
        If the path is empty or contains ``.``/``..`` or empty segments.
    """
    if not isinstance(path, str):
        raise InvalidInputError(f"Path must be a string, got {type(path).__name__}")

    cleaned = path.replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    cleaned = cleaned.lstrip("/")

    parts = cleaned.split("/")
    if not cleaned or any(part in ("", ".", "..") or "\n" in part for part in parts):
        raise InvalidInputError(f"Invalid file path: {path!r}")
    return cleaned


def build_tree(
    entries: Iterable[tuple[str, Content]],
    writer: ObjectWriter | None = None,
) -> tuple[Digest, Tree]:
    """Build the canonical tree for a flat set of ``(path, content)`` pairs.

    Parameters
    ----------
    entries:
        Relative file paths and their content.  ``str`` content is
        encoded as UTF-8.
    writer:
        Optional callback receiving every blob and tree created, so the
        caller can persist them.

    Returns
    -------
    tuple
        The root tree digest and the displayable tree.

    Raises
    ------
    InvalidInputError
        On invalid or duplicate paths, or a path used both as a file and
        as a directory.
    """
    leaves: dict[str, Digest] = {}
    for raw_path, content in entries:
        path = normalize_path(raw_path)
        if path in leaves:
            raise InvalidInputError(f"Duplicate file path: {path}")

        data = content_bytes(content)
        digest = Hasher.hash_bytes(data)
        if writer is not None:
            writer(ObjectKind.BLOB, digest, data)
        leaves[path] = digest

    tree = _assemble(leaves, writer)
    logger.debug("Built tree %s from %d files", tree.digest, len(leaves))
    return tree.digest, tree


def assemble_tree(
    leaves: dict[str, Digest],
    writer: ObjectWriter | None = None,
) -> tuple[Digest, Tree]:
    """Build a tree from ``path -> blob digest`` without touching content."""
    normalized: dict[str, Digest] = {}
    for raw_path, digest in leaves.items():
        if not is_digest(digest):
            raise InvalidInputError(f"Invalid blob digest for {raw_path}: {digest!r}")
        path = normalize_path(raw_path)
        if path in normalized:
            raise InvalidInputError(f"Duplicate file path: {path}")
        normalized[path] = digest

    tree = _assemble(normalized, writer)
    return tree.digest, tree


def build_tree_from_directory(
    root: str | Path,
    writer: ObjectWriter | None = None,
) -> tuple[Digest, Tree]:
    """Hash every file below *root* into a tree.

    Raises
    ------
    IOFailureError
        If *root* is not a directory or a file cannot be read.
    """
    root = Path(root)
    if not root.is_dir():
        raise IOFailureError(f"{root} is not a directory")

    entries: list[tuple[str, Content]] = []
    try:
        for file_path in sorted(p for p in root.rglob("*") if p.is_file()):
            entries.append((file_path.relative_to(root).as_posix(), file_path.read_bytes()))
    except OSError as exc:
        raise IOFailureError(f"Cannot read working area {root}: {exc}") from exc

    return build_tree(entries, writer)


def parse_tree(text: str) -> Tree:
    """Inverse of :meth:`Tree.serialize` (subtrees are not loaded)."""
    entries: list[TreeEntry] = []
    for line in text.splitlines():
        if not line:
            continue
        try:
            kind, digest, name = line.split(" ", 2)
            entries.append(TreeEntry(name=name, kind=EntryKind(kind), digest=digest))
        except ValueError as exc:
            raise InvalidInputError(f"Malformed tree line: {line!r}") from exc
    return Tree(entries=entries)


def _assemble(leaves: dict[str, Digest], writer: ObjectWriter | None) -> Tree:
    """Group *leaves* by first segment and build subtrees post-order."""
    files: dict[str, Digest] = {}
    groups: dict[str, dict[str, Digest]] = {}

    for path, digest in leaves.items():
        head, sep, rest = path.partition("/")
        if sep:
            groups.setdefault(head, {})[rest] = digest
        else:
            files[head] = digest

    clash = sorted(files.keys() & groups.keys())
    if clash:
        raise InvalidInputError(f"Path is both a file and a directory: {clash[0]}")

    entries = [TreeEntry(name=name, kind=EntryKind.FILE, digest=digest) for name, digest in files.items()]
    subtrees: dict[str, Tree] = {}
    for name, group in groups.items():
        subtree = _assemble(group, writer)
        subtrees[name] = subtree
        entries.append(TreeEntry(name=name, kind=EntryKind.DIR, digest=subtree.digest))

    tree = Tree(entries=entries, subtrees=subtrees)
    if writer is not None:
        writer(ObjectKind.TREE, tree.digest, tree.serialize().encode("utf-8"))
    return tree
