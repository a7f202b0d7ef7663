"""Diff result models."""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from pydantic import BaseModel, Field


class ChangeStatus(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class FileChange(BaseModel):
    """Line-level change summary for one path."""

    path: str
    additions: int = 0
    deletions: int = 0
    status: ChangeStatus = ChangeStatus.MODIFIED


class DiffStats(BaseModel):
    additions: int = 0
    deletions: int = 0


class DiffResult(BaseModel):
    """File-level change summary plus aggregate stats."""

    files: list[FileChange] = Field(default_factory=list)
    stats: DiffStats = Field(default_factory=DiffStats)

    @classmethod
    def empty(cls) -> DiffResult:
        return cls()

    @classmethod
    def from_files(cls, files: Iterable[FileChange]) -> DiffResult:
        """Build a result whose stats are the sums over *files*."""
        files = sorted(files, key=lambda f: f.path)
        stats = DiffStats(
            additions=sum(f.additions for f in files),
            deletions=sum(f.deletions for f in files),
        )
        return cls(files=files, stats=stats)

    @property
    def is_empty(self) -> bool:
        return not self.files
