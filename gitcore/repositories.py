"""RepositoryCatalog — repository metadata lookups.

Stores ``{id, owner_id, name, default_branch}`` on the shared SQLite
database.  ``(owner_id, name)`` is unique.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from gitcore.config import DEFAULT_BRANCH
from gitcore.database import Database
from gitcore.errors import ConflictError, InvalidInputError, NotFoundError
from gitcore.refs.branches import validate_branch_name

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS repositories (
    id             TEXT PRIMARY KEY,
    owner_id       TEXT NOT NULL,
    name           TEXT NOT NULL,
    description    TEXT,
    default_branch TEXT NOT NULL,
    created_at     TEXT NOT NULL,
    UNIQUE (owner_id, name)
);
"""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Repository(BaseModel):
    id: str
    owner_id: str
    name: str
    description: Optional[str] = None
    default_branch: str = DEFAULT_BRANCH
    created_at: datetime = Field(default_factory=_utc_now)

    @property
    def full_name(self) -> str:
        return f"{self.owner_id}/{self.name}"


class RepositoryCatalog:
    """SQLite-backed repository metadata."""

    def __init__(self, db: Database, default_branch: str = DEFAULT_BRANCH) -> None:
        self._db = db
        self.default_branch = default_branch
        self._db.ensure_schema(_SCHEMA_SQL)

    def register(
        self,
        owner_id: str,
        name: str,
        default_branch: str | None = None,
        description: str | None = None,
        repository_id: str | None = None,
    ) -> Repository:
        """Register a repository.

        Raises
        ------
        InvalidInputError
            On an empty owner or name, or an invalid default branch.
        ConflictError
            If the owner already has a repository with this name.
        """
        if not owner_id or not name or not name.strip():
            raise InvalidInputError("Repository owner and name are required")
        branch = validate_branch_name(default_branch or self.default_branch)

        repo = Repository(
            id=repository_id or uuid.uuid4().hex,
            owner_id=owner_id,
            name=name.strip(),
            description=description,
            default_branch=branch,
        )
        try:
            self._db.execute(
                "INSERT INTO repositories (id, owner_id, name, description, default_branch, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (repo.id, repo.owner_id, repo.name, repo.description, repo.default_branch,
                 repo.created_at.isoformat()),
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(f"Repository '{repo.full_name}' already exists") from exc

        logger.info("Registered repository %s (%s)", repo.full_name, repo.id)
        return repo

    def get(self, repository_id: str) -> Repository:
        """Return a repository or raise :class:`NotFoundError`."""
        row = self._db.fetchone("SELECT * FROM repositories WHERE id = ?", (repository_id,))
        if row is None:
            raise NotFoundError(f"Repository {repository_id} not found")
        return self._row_to_repo(row)

    def find(self, owner_id: str, name: str) -> Repository | None:
        row = self._db.fetchone(
            "SELECT * FROM repositories WHERE owner_id = ? AND name = ?",
            (owner_id, name),
        )
        return self._row_to_repo(row) if row is not None else None

    def list(self, owner_id: str | None = None) -> list[Repository]:
        if owner_id is None:
            rows = self._db.fetchall("SELECT * FROM repositories ORDER BY created_at DESC")
        else:
            rows = self._db.fetchall(
                "SELECT * FROM repositories WHERE owner_id = ? ORDER BY created_at DESC",
                (owner_id,),
            )
        return [self._row_to_repo(r) for r in rows]

    @staticmethod
    def _row_to_repo(row) -> Repository:
        return Repository(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            description=row["description"],
            default_branch=row["default_branch"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )
