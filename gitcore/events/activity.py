"""ActivityFeed — per-user, per-repository activity log.

Stored as append-only JSONL.  Tracking is fire-and-forget: a failed
write is logged and never reaches the caller.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from gitcore.config import DEFAULT_ACTIVITY_LIMIT

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


class ActivityType(str, Enum):
    COMMIT = "commit"
    BRANCH_CREATE = "branch_create"
    BRANCH_DELETE = "branch_delete"
    PULL_REQUEST = "pull_request"
    PULL_REQUEST_MERGE = "pull_request_merge"
    PULL_REQUEST_CLOSE = "pull_request_close"


class ActivityEvent(BaseModel):
    """A single tracked action."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    repository_id: Optional[str] = None
    type: ActivityType
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utc_now)


class DailyContribution(BaseModel):
    """Count of one kind of action by one user on one day."""

    day: date
    type: ActivityType
    repository_id: Optional[str] = None
    count: int = 0


class ContributionGraph(BaseModel):
    year: int
    total: int
    contributions: dict[str, int]


class ActivityFeed:
    """Activity feed stored in a JSONL file.

    Parameters
    ----------
    feed_path:
        File the events are appended to.  Parent directories are created
        on the first write.
    """

    def __init__(self, feed_path: str | Path) -> None:
        self._feed_path = Path(feed_path)

    @property
    def path(self) -> Path:
        return self._feed_path

    def track(
        self,
        user_id: str,
        repository_id: str | None,
        event_type: ActivityType | str,
        metadata: dict[str, Any] | None = None,
    ) -> ActivityEvent | None:
        """Record an action.  Returns None if the event could not be stored."""
        try:
            event = ActivityEvent(
                user_id=user_id,
                repository_id=repository_id,
                type=ActivityType(event_type),
                metadata=metadata or {},
            )
            self._feed_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._feed_path, "a", encoding="utf-8") as f:
                f.write(event.model_dump_json() + "\n")
            logger.debug("Tracked %s by %s in %s", event.type.value, user_id, repository_id)
            return event
        except Exception:
            logger.warning("Failed to track %s activity for %s", event_type, user_id, exc_info=True)
            return None

    def _read(self) -> list[ActivityEvent]:
        if not self._feed_path.is_file():
            return []

        events: list[ActivityEvent] = []
        try:
            with open(self._feed_path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        events.append(ActivityEvent.model_validate_json(line))
                    except ValueError:
                        logger.debug("Skipping malformed activity line")
        except OSError:
            logger.warning("Failed to read activity feed %s", self._feed_path, exc_info=True)
        return events

    def repository_activity(
        self,
        repository_id: str,
        limit: int = DEFAULT_ACTIVITY_LIMIT,
    ) -> list[ActivityEvent]:
        """Most recent events of a repository, newest first."""
        events = [e for e in self._read() if e.repository_id == repository_id]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    def contributions(
        self,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[DailyContribution]:
        """Per-day counts of a user's actions, oldest day first.

        Parameters
        ----------
        user_id:
            Whose actions to count.
        start, end:
            Inclusive day bounds; None leaves that side open.
        """
        counts: dict[tuple[date, ActivityType, str | None], int] = defaultdict(int)
        for event in self._read():
            if event.user_id != user_id:
                continue
            day = event.timestamp.date()
            if (start and day < start) or (end and day > end):
                continue
            counts[(day, event.type, event.repository_id)] += 1

        result = [
            DailyContribution(day=day, type=kind, repository_id=repo, count=count)
            for (day, kind, repo), count in counts.items()
        ]
        result.sort(key=lambda c: (c.day, c.type.value, c.repository_id or ""))
        return result

    def contribution_graph(self, user_id: str, year: int | None = None) -> ContributionGraph:
        """Return a count for every day of *year* (default: current year)."""
        year = year or _utc_now().year
        first, last = date(year, 1, 1), date(year, 12, 31)

        graph: dict[str, int] = {}
        day = first
        while day <= last:
            graph[day.isoformat()] = 0
            day += timedelta(days=1)

        total = 0
        for contribution in self.contributions(user_id, first, last):
            graph[contribution.day.isoformat()] += contribution.count
            total += contribution.count

        return ContributionGraph(year=year, total=total, contributions=graph)
