"""BranchDirectory — per-repository mapping of branch name to head commit.

A head only ever moves through :meth:`BranchDirectory.update_head`,
which runs inside the branch's single-writer region and compares the
stored head with the caller's expected prior head before swapping.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from gitcore.database import Database
from gitcore.errors import ConflictError, InvalidInputError, InvalidStateError, NotFoundError
from gitcore.objects.hasher import Digest, is_digest
from gitcore.refs.locking import BranchLockManager

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS branches (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    repository_id      TEXT    NOT NULL,
    name               TEXT    NOT NULL,
    head_commit_digest TEXT,
    is_default         INTEGER NOT NULL DEFAULT 0,
    is_protected       INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT    NOT NULL,
    updated_at         TEXT    NOT NULL,
    UNIQUE (repository_id, name)
);

CREATE INDEX IF NOT EXISTS idx_branches_repo ON branches(repository_id);
"""

_INVALID_NAME_RE = re.compile(r"[\s~^:?*\[\\\x00-\x1f\x7f]")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Branch(BaseModel):
    """A named pointer to a commit within one repository."""

    id: int
    repository_id: str
    name: str
    head_commit_digest: Optional[Digest] = None
    is_default: bool = False
    is_protected: bool = False
    created_at: datetime
    updated_at: datetime


def validate_branch_name(name: str) -> str:
    """Return *name* if it is a usable branch name.

    Raises
    ------
    InvalidInputError
        On empty names, whitespace or control characters, ``..``,
        a leading ``-``, leading/trailing ``/``, or any of ``~^:?*[\\``.
    """
    if not name or not isinstance(name, str):
        raise InvalidInputError("Branch name is required")
    if (
        _INVALID_NAME_RE.search(name)
        or ".." in name
        or "//" in name
        or name.startswith(("/", "-"))
        or name.endswith("/")
        or name.endswith(".lock")
    ):
        raise InvalidInputError(f"Invalid branch name: {name!r}")
    return name


class BranchDirectory:
    """SQLite-backed branch records.

    Parameters
    ----------
    db:
        Shared database.
    locks:
        Branch single-writer regions shared with the commit and merge
        paths.
    """

    def __init__(self, db: Database, locks: BranchLockManager | None = None) -> None:
        self._db = db
        self.locks = locks or BranchLockManager()
        self._db.ensure_schema(_SCHEMA_SQL)

    # -- Creation / deletion -------------------------------------------------

    def create_branch(
        self,
        repository_id: str,
        name: str,
        from_branch: str | None = None,
        *,
        is_default: bool = False,
        is_protected: bool = False,
    ) -> Branch:
        """Create a branch, optionally starting at another branch's head.

        Raises
        ------
        InvalidInputError
            If the name is invalid.
        ConflictError
            If the name is already taken in the repository.
        NotFoundError
            If *from_branch* does not exist.
        """
        validate_branch_name(name)

        with self._db.transaction():
            if self.find_branch(repository_id, name) is not None:
                raise ConflictError(f"Branch '{name}' already exists")

            head: str | None = None
            if from_branch is not None:
                head = self.get_branch(repository_id, from_branch).head_commit_digest

            now = _utc_now().isoformat()
            try:
                cur = self._db.execute(
                    """\
                    INSERT INTO branches (repository_id, name, head_commit_digest,
                                          is_default, is_protected, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (repository_id, name, head, int(is_default), int(is_protected), now, now),
                )
            except sqlite3.IntegrityError as exc:
                raise ConflictError(f"Branch '{name}' already exists") from exc
            branch_id = cur.lastrowid

        logger.info("Created branch '%s' in %s (head=%s)", name, repository_id, head)
        return self.get_branch_by_id(branch_id)  # type: ignore[arg-type]

    def delete_branch(self, repository_id: str, name: str) -> None:
        """Delete a branch.

        Raises
        ------
        NotFoundError
            If the branch does not exist.
        InvalidStateError
            If the branch is the default or a protected branch.
        """
        with self.locks.hold(repository_id, name):
            branch = self.get_branch(repository_id, name)
            if branch.is_default:
                raise InvalidStateError(f"Cannot delete default branch '{name}'")
            if branch.is_protected:
                raise InvalidStateError(f"Cannot delete protected branch '{name}'")
            self._db.execute("DELETE FROM branches WHERE id = ?", (branch.id,))
        logger.info("Deleted branch '%s' from %s", name, repository_id)

    # -- Lookups -------------------------------------------------------------

    def find_branch(self, repository_id: str, name: str) -> Branch | None:
        row = self._db.fetchone(
            "SELECT * FROM branches WHERE repository_id = ? AND name = ?",
            (repository_id, name),
        )
        return self._row_to_branch(row) if row is not None else None

    def get_branch(self, repository_id: str, name: str) -> Branch:
        """Return a branch or raise :class:`NotFoundError`."""
        branch = self.find_branch(repository_id, name)
        if branch is None:
            raise NotFoundError(f"Branch '{name}' not found")
        return branch

    def get_branch_by_id(self, branch_id: int) -> Branch:
        row = self._db.fetchone("SELECT * FROM branches WHERE id = ?", (branch_id,))
        if row is None:
            raise NotFoundError(f"Branch #{branch_id} not found")
        return self._row_to_branch(row)

    def list_branches(self, repository_id: str) -> list[Branch]:
        """Return branches with the default first, then most recent first."""
        rows = self._db.fetchall(
            "SELECT * FROM branches WHERE repository_id = ? "
            "ORDER BY is_default DESC, created_at DESC, id DESC",
            (repository_id,),
        )
        return [self._row_to_branch(r) for r in rows]

    # -- Mutation ------------------------------------------------------------

    def update_head(
        self,
        branch_id: int,
        new_commit_digest: Digest,
        *,
        expected_head: Digest | None,
    ) -> Branch:
        """Advance a branch head with compare-and-swap.

        Parameters
        ----------
        branch_id:
            Branch to move.
        new_commit_digest:
            Commit the branch should point to.
        expected_head:
            The head the caller based its work on (None for a branch
            without commits).

        Raises
        ------
        ConflictError
            If the stored head differs from *expected_head*.
        """
        if not is_digest(new_commit_digest):
            raise InvalidInputError(f"Invalid commit digest: {new_commit_digest!r}")

        branch = self.get_branch_by_id(branch_id)
        with self.locks.hold(branch.repository_id, branch.name):
            cur = self._db.execute(
                "UPDATE branches SET head_commit_digest = ?, updated_at = ? "
                "WHERE id = ? AND head_commit_digest IS ?",
                (new_commit_digest, _utc_now().isoformat(), branch_id, expected_head),
            )
            if cur.rowcount == 0:
                current = self.get_branch_by_id(branch_id).head_commit_digest
                raise ConflictError(
                    f"Branch '{branch.name}' moved: expected head {expected_head}, found {current}"
                )

        logger.info(
            "Advanced '%s' in %s: %s -> %s",
            branch.name, branch.repository_id, expected_head, new_commit_digest,
        )
        return self.get_branch_by_id(branch_id)

    def set_protected(self, repository_id: str, name: str, protected: bool = True) -> Branch:
        """Toggle the protection flag of a branch."""
        branch = self.get_branch(repository_id, name)
        self._db.execute(
            "UPDATE branches SET is_protected = ?, updated_at = ? WHERE id = ?",
            (int(protected), _utc_now().isoformat(), branch.id),
        )
        logger.info("Branch '%s' protection set to %s", name, protected)
        return self.get_branch_by_id(branch.id)

    @staticmethod
    def _row_to_branch(row) -> Branch:
        return Branch(
            id=row["id"],
            repository_id=row["repository_id"],
            name=row["name"],
            head_commit_digest=row["head_commit_digest"],
            is_default=bool(row["is_default"]),
            is_protected=bool(row["is_protected"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
