"""ObjectStore — append-only, content-addressed persistence.

Objects and commit records are keyed by ``(repository_id, digest)``:
two repositories may legitimately hold the same commit, so uniqueness
is never global.  Inserts are idempotent; identical content collapses
to one row.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from gitcore.config import DEFAULT_COMMIT_LIMIT
from gitcore.database import Database
from gitcore.errors import InvalidStateError, NotFoundError
from gitcore.objects.commit import Commit, parse_commit
from gitcore.objects.hasher import Digest
from gitcore.objects.tree import EntryKind, ObjectKind, ObjectWriter, Tree, parse_tree

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS objects (
    repository_id TEXT NOT NULL,
    digest        TEXT NOT NULL,
    kind          TEXT NOT NULL,
    data          BLOB NOT NULL,
    PRIMARY KEY (repository_id, digest)
);

CREATE TABLE IF NOT EXISTS commits (
    seq                 INTEGER PRIMARY KEY AUTOINCREMENT,
    repository_id       TEXT NOT NULL,
    digest              TEXT NOT NULL,
    branch              TEXT,
    author_id           TEXT NOT NULL,
    message             TEXT NOT NULL,
    description         TEXT,
    tree_digest         TEXT NOT NULL,
    parent_digest       TEXT,
    merge_parent_digest TEXT,
    changes             TEXT NOT NULL DEFAULT '[]',
    committed_at        TEXT NOT NULL,
    UNIQUE (repository_id, digest)
);

CREATE INDEX IF NOT EXISTS idx_commits_branch ON commits(repository_id, branch);
"""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CommitRecord(BaseModel):
    """Listing metadata persisted next to a commit object."""

    repository_id: str
    digest: Digest
    branch: Optional[str] = None
    author_id: str
    message: str
    description: Optional[str] = None
    tree_digest: Digest
    parent_digest: Optional[Digest] = None
    merge_parent_digest: Optional[Digest] = None
    changes: list[str] = Field(default_factory=list)
    committed_at: datetime = Field(default_factory=_utc_now)


class ObjectStore:
    """Blob, tree, and commit storage plus the per-repository commit index."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._db.ensure_schema(_SCHEMA_SQL)

    # -- Raw objects ---------------------------------------------------------

    def put(self, repository_id: str, kind: ObjectKind, digest: Digest, data: bytes) -> None:
        """Store an object.  Storing the same digest twice is a no-op."""
        self._db.execute(
            "INSERT OR IGNORE INTO objects (repository_id, digest, kind, data) VALUES (?, ?, ?, ?)",
            (repository_id, digest, ObjectKind(kind).value, data),
        )

    def writer(self, repository_id: str) -> ObjectWriter:
        """Return an :data:`ObjectWriter` persisting into *repository_id*."""

        def _write(kind: ObjectKind, digest: Digest, data: bytes) -> None:
            self.put(repository_id, kind, digest, data)

        return _write

    def has(self, repository_id: str, digest: Digest) -> bool:
        row = self._db.fetchone(
            "SELECT 1 FROM objects WHERE repository_id = ? AND digest = ?",
            (repository_id, digest),
        )
        return row is not None

    def get(self, repository_id: str, digest: Digest) -> tuple[ObjectKind, bytes]:
        """Return ``(kind, data)`` for an object.

        Raises
        ------
        NotFoundError
            If the repository holds no object with this digest.
        """
        row = self._db.fetchone(
            "SELECT kind, data FROM objects WHERE repository_id = ? AND digest = ?",
            (repository_id, digest),
        )
        if row is None:
            raise NotFoundError(f"Object {digest} not found in repository {repository_id}")
        return ObjectKind(row["kind"]), bytes(row["data"])

    def _get_kind(self, repository_id: str, digest: Digest, kind: ObjectKind) -> bytes:
        actual, data = self.get(repository_id, digest)
        if actual is not kind:
            raise InvalidStateError(f"Object {digest} is a {actual.value}, not a {kind.value}")
        return data

    def load_blob(self, repository_id: str, digest: Digest) -> bytes:
        return self._get_kind(repository_id, digest, ObjectKind.BLOB)

    def load_tree(self, repository_id: str, digest: Digest, *, recursive: bool = False) -> Tree:
        """Load a tree; with *recursive*, also load every subtree."""
        tree = parse_tree(self._get_kind(repository_id, digest, ObjectKind.TREE).decode("utf-8"))
        if recursive:
            for entry in tree.entries:
                if entry.kind is EntryKind.DIR:
                    tree.subtrees[entry.name] = self.load_tree(repository_id, entry.digest, recursive=True)
        return tree

    def load_commit(self, repository_id: str, digest: Digest) -> Commit:
        return parse_commit(self._get_kind(repository_id, digest, ObjectKind.COMMIT).decode("utf-8"))

    def save_commit(self, repository_id: str, commit: Commit) -> Digest:
        """Persist a commit object and return its digest."""
        data = commit.serialize().encode("utf-8")
        digest = commit.digest
        self.put(repository_id, ObjectKind.COMMIT, digest, data)
        logger.debug("Stored commit %s in %s", digest, repository_id)
        return digest

    # -- Commit index --------------------------------------------------------

    def record_commit(self, record: CommitRecord) -> None:
        """Index a commit for listing.  Re-recording a digest is a no-op."""
        self._db.execute(
            """\
            INSERT OR IGNORE INTO commits (repository_id, digest, branch, author_id,
                                           message, description, tree_digest,
                                           parent_digest, merge_parent_digest,
                                           changes, committed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.repository_id,
                record.digest,
                record.branch,
                record.author_id,
                record.message,
                record.description,
                record.tree_digest,
                record.parent_digest,
                record.merge_parent_digest,
                json.dumps(record.changes),
                record.committed_at.isoformat(),
            ),
        )

    def get_commit_record(self, repository_id: str, digest: Digest) -> CommitRecord:
        row = self._db.fetchone(
            "SELECT * FROM commits WHERE repository_id = ? AND digest = ?",
            (repository_id, digest),
        )
        if row is None:
            raise NotFoundError(f"Commit {digest} not found")
        return self._row_to_record(row)

    def list_commit_records(
        self,
        repository_id: str,
        branch: str | None = None,
        limit: int = DEFAULT_COMMIT_LIMIT,
    ) -> list[CommitRecord]:
        """Return indexed commits, newest first."""
        if branch is None:
            rows = self._db.fetchall(
                "SELECT * FROM commits WHERE repository_id = ? ORDER BY seq DESC LIMIT ?",
                (repository_id, limit),
            )
        else:
            rows = self._db.fetchall(
                "SELECT * FROM commits WHERE repository_id = ? AND branch = ? ORDER BY seq DESC LIMIT ?",
                (repository_id, branch, limit),
            )
        return [self._row_to_record(r) for r in rows]

    @staticmethod
    def _row_to_record(row) -> CommitRecord:
        return CommitRecord(
            repository_id=row["repository_id"],
            digest=row["digest"],
            branch=row["branch"],
            author_id=row["author_id"],
            message=row["message"],
            description=row["description"],
            tree_digest=row["tree_digest"],
            parent_digest=row["parent_digest"],
            merge_parent_digest=row["merge_parent_digest"],
            changes=json.loads(row["changes"]),
            committed_at=datetime.fromisoformat(row["committed_at"]),
        )
