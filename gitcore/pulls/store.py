"""PullRequestStore — SQLite persistence with transactional numbering.

Numbers are assigned as ``max(number) + 1`` inside the insert's
transaction, and status changes are compare-and-swap on the stored
status, so concurrent callers can neither reuse a number nor both
leave ``open``.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from gitcore.database import Database
from gitcore.diff.models import DiffResult
from gitcore.errors import InvalidStateError, NotFoundError
from gitcore.objects.hasher import Digest
from gitcore.pulls.models import PullRequest, PullRequestStatus, can_transition

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS pull_requests (
    id                  TEXT    PRIMARY KEY,
    repository_id       TEXT    NOT NULL,
    number              INTEGER NOT NULL,
    title               TEXT    NOT NULL,
    description         TEXT,
    author_id           TEXT    NOT NULL,
    source_branch       TEXT    NOT NULL,
    target_branch       TEXT    NOT NULL,
    status              TEXT    NOT NULL DEFAULT 'open',
    diff_snapshot       TEXT    NOT NULL,
    is_draft            INTEGER NOT NULL DEFAULT 0,
    reviewers           TEXT    NOT NULL DEFAULT '[]',
    merged_by           TEXT,
    merged_at           TEXT,
    merge_commit_digest TEXT,
    closed_at           TEXT,
    created_at          TEXT    NOT NULL,
    updated_at          TEXT    NOT NULL,
    UNIQUE (repository_id, number)
);
"""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class PullRequestStore:
    """Pull-request records on the shared database."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._db.ensure_schema(_SCHEMA_SQL)

    def create(
        self,
        repository_id: str,
        *,
        title: str,
        author_id: str,
        source_branch: str,
        target_branch: str,
        diff_snapshot: DiffResult,
        description: str | None = None,
        is_draft: bool = False,
        reviewers: list[str] | None = None,
    ) -> PullRequest:
        """Insert a new open pull request with the next free number."""
        with self._db.transaction():
            row = self._db.fetchone(
                "SELECT COALESCE(MAX(number), 0) AS last FROM pull_requests WHERE repository_id = ?",
                (repository_id,),
            )
            pr = PullRequest(
                number=row["last"] + 1,
                repository_id=repository_id,
                title=title,
                description=description,
                author_id=author_id,
                source_branch=source_branch,
                target_branch=target_branch,
                diff_snapshot=diff_snapshot,
                is_draft=is_draft,
                reviewers=list(reviewers or []),
            )
            self._db.execute(
                """\
                INSERT INTO pull_requests (id, repository_id, number, title, description,
                                           author_id, source_branch, target_branch, status,
                                           diff_snapshot, is_draft, reviewers,
                                           created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    pr.id,
                    pr.repository_id,
                    pr.number,
                    pr.title,
                    pr.description,
                    pr.author_id,
                    pr.source_branch,
                    pr.target_branch,
                    pr.status.value,
                    pr.diff_snapshot.model_dump_json(),
                    int(pr.is_draft),
                    json.dumps(pr.reviewers),
                    pr.created_at.isoformat(),
                    pr.updated_at.isoformat(),
                ),
            )
        logger.info("Opened pull request #%d in %s (%s -> %s)", pr.number, repository_id, source_branch, target_branch)
        return pr

    def find(self, repository_id: str, number: int) -> PullRequest | None:
        row = self._db.fetchone(
            "SELECT * FROM pull_requests WHERE repository_id = ? AND number = ?",
            (repository_id, number),
        )
        return self._row_to_pr(row) if row is not None else None

    def get(self, repository_id: str, number: int) -> PullRequest:
        """Return a pull request or raise :class:`NotFoundError`."""
        pr = self.find(repository_id, number)
        if pr is None:
            raise NotFoundError(f"Pull request #{number} not found")
        return pr

    def list(
        self,
        repository_id: str,
        status: PullRequestStatus | None = None,
    ) -> list[PullRequest]:
        """Return pull requests newest first, optionally filtered by status."""
        if status is None:
            rows = self._db.fetchall(
                "SELECT * FROM pull_requests WHERE repository_id = ? ORDER BY number DESC",
                (repository_id,),
            )
        else:
            rows = self._db.fetchall(
                "SELECT * FROM pull_requests WHERE repository_id = ? AND status = ? ORDER BY number DESC",
                (repository_id, PullRequestStatus(status).value),
            )
        return [self._row_to_pr(r) for r in rows]

    def transition(
        self,
        repository_id: str,
        number: int,
        new_status: PullRequestStatus,
        *,
        expected: PullRequestStatus = PullRequestStatus.OPEN,
        merged_by: str | None = None,
        merged_at: datetime | None = None,
        merge_commit_digest: Digest | None = None,
        closed_at: datetime | None = None,
    ) -> PullRequest:
        """Move a pull request from *expected* to *new_status*.

        Raises
        ------
        NotFoundError
            If the pull request does not exist.
        InvalidStateError
            If the transition is illegal or the stored status is no
            longer *expected*.
        """
        if not can_transition(expected, new_status):
            raise InvalidStateError(f"Cannot move a pull request from {expected.value} to {new_status.value}")

        cur = self._db.execute(
            """\
            UPDATE pull_requests
               SET status = ?, merged_by = ?, merged_at = ?, merge_commit_digest = ?,
                   closed_at = ?, updated_at = ?
             WHERE repository_id = ? AND number = ? AND status = ?
            """,
            (
                new_status.value,
                merged_by,
                _iso(merged_at),
                merge_commit_digest,
                _iso(closed_at),
                _utc_now().isoformat(),
                repository_id,
                number,
                expected.value,
            ),
        )
        if cur.rowcount == 0:
            current = self.get(repository_id, number)
            raise InvalidStateError(f"Pull request #{number} is {current.status.value}, not {expected.value}")

        logger.info("Pull request #%d in %s is now %s", number, repository_id, new_status.value)
        return self.get(repository_id, number)

    @staticmethod
    def _row_to_pr(row) -> PullRequest:
        return PullRequest(
            id=row["id"],
            number=row["number"],
            repository_id=row["repository_id"],
            title=row["title"],
            description=row["description"],
            author_id=row["author_id"],
            source_branch=row["source_branch"],
            target_branch=row["target_branch"],
            status=PullRequestStatus(row["status"]),
            diff_snapshot=DiffResult.model_validate_json(row["diff_snapshot"]),
            is_draft=bool(row["is_draft"]),
            reviewers=json.loads(row["reviewers"]),
            merged_by=row["merged_by"],
            merged_at=_parse(row["merged_at"]),
            merge_commit_digest=row["merge_commit_digest"],
            closed_at=_parse(row["closed_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
