"""Pull-request models and the legal status transitions."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from gitcore.diff.models import DiffResult
from gitcore.objects.hasher import Digest


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


class PullRequestStatus(str, Enum):
    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"


# MERGED and CLOSED are terminal
TRANSITIONS: dict[PullRequestStatus, frozenset[PullRequestStatus]] = {
    PullRequestStatus.OPEN: frozenset({PullRequestStatus.MERGED, PullRequestStatus.CLOSED}),
    PullRequestStatus.MERGED: frozenset(),
    PullRequestStatus.CLOSED: frozenset(),
}


def can_transition(current: PullRequestStatus, new: PullRequestStatus) -> bool:
    return new in TRANSITIONS[current]


class PullRequest(BaseModel):
    """A request to merge ``source_branch`` into ``target_branch``."""

    id: str = Field(default_factory=_new_id)
    number: int
    repository_id: str
    title: str
    description: Optional[str] = None
    author_id: str
    source_branch: str
    target_branch: str
    status: PullRequestStatus = PullRequestStatus.OPEN
    diff_snapshot: DiffResult = Field(default_factory=DiffResult)
    """Captured when the request is opened; never recomputed."""

    is_draft: bool = False
    reviewers: list[str] = Field(default_factory=list)
    merged_by: Optional[str] = None
    merged_at: Optional[datetime] = None
    merge_commit_digest: Optional[Digest] = None
    closed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @property
    def is_open(self) -> bool:
        return self.status is PullRequestStatus.OPEN
