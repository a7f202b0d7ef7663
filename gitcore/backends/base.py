"""Capability interface shared by the native and git-CLI backends."""

from __future__ import annotations

import abc
from typing import Optional

from pydantic import BaseModel, Field

from gitcore.diff.models import DiffResult
from gitcore.objects.commit import Author
from gitcore.objects.hasher import Digest


class MergeResult(BaseModel):
    """Outcome of merging *source* into *target*.

    The merge commit exists once this is returned, but no branch head
    has moved; the caller advances ``target`` from ``target_head`` to
    ``commit_digest``.
    """

    source: str
    target: str
    commit_digest: Digest
    tree_digest: Digest
    target_head: Optional[Digest] = None
    source_head: Optional[Digest] = None
    message: str
    changes: list[str] = Field(default_factory=list)


def default_merge_message(source: str, target: str) -> str:
    return f"Merge {source} into {target}"


class VcsBackend(abc.ABC):
    """Diff, merge, branch listing and checkout for stored repositories."""

    name: str = "abstract"

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Return True if the backend can serve requests."""

    @abc.abstractmethod
    def diff(self, repository_id: str, from_ref: str | None, to_ref: str | None) -> DiffResult:
        """Compare two refs (branch name, commit digest, or None for empty)."""

    @abc.abstractmethod
    def merge(
        self,
        repository_id: str,
        source: str,
        target: str,
        *,
        author: Author,
        message: str | None = None,
        timestamp: int | None = None,
    ) -> MergeResult:
        """Create a merge commit of branch *source* into branch *target*.

        Raises
        ------
        InvalidStateError
            If there is nothing to merge.
        MergeConflictError
            If both sides changed the same paths differently.
        """

    @abc.abstractmethod
    def list_branches(self, repository_id: str) -> list[str]:
        """Return the branch names known to the backend."""

    @abc.abstractmethod
    def checkout(self, repository_id: str, ref: str) -> Digest | None:
        """Resolve *ref* for reading and return the commit it points at."""
