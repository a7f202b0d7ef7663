"""Database — the shared SQLite connection behind every store.

Uses stdlib sqlite3 only.  All stores share one connection so that
object creation, head advancement, and status changes can be grouped
in a single :meth:`Database.transaction`.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence

logger = logging.getLogger(__name__)


class Database:
    """Thread-safe wrapper around a single SQLite connection.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Use ``':memory:'`` for
        in-memory databases (useful for testing).
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0
        self._schemas: list[str] = []

    @property
    def conn(self) -> sqlite3.Connection:
        """Lazy-initialise and return the database connection."""
        with self._lock:
            if self._conn is None:
                if self._db_path != ":memory:":
                    Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
                # Autocommit mode; explicit transactions are opened with BEGIN.
                self._conn = sqlite3.connect(
                    self._db_path,
                    check_same_thread=False,
                    isolation_level=None,
                )
                self._conn.row_factory = sqlite3.Row
                self._conn.execute("PRAGMA journal_mode=WAL")
                self._conn.execute("PRAGMA foreign_keys=ON")
                for script in self._schemas:
                    self._conn.executescript(script)
            return self._conn

    def ensure_schema(self, script: str) -> None:
        """Register and apply a ``CREATE ... IF NOT EXISTS`` script."""
        with self._lock:
            if script in self._schemas:
                return
            self._schemas.append(script)
            if self._conn is not None:
                self._conn.executescript(script)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # -- Statements ----------------------------------------------------------

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        """Execute one statement and return its cursor."""
        with self._lock:
            return self.conn.execute(sql, params)

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Group statements atomically.

        Nested calls join the outermost transaction.  The connection lock
        is held for the whole block, so other threads wait rather than
        interleave.
        """
        with self._lock:
            conn = self.conn
            if self._depth == 0:
                conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield conn
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    conn.execute("ROLLBACK")
                    logger.debug("Transaction rolled back")
                raise
            else:
                self._depth -= 1
                if self._depth == 0:
                    conn.execute("COMMIT")
