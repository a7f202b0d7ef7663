"""Single-writer regions keyed by ``(repository_id, branch)``.

Every path that moves a branch head (commit creation, head updates,
pull-request merges) runs inside the branch's region, so two writers
can never advance the same head from the same prior value.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from gitcore.config import DEFAULT_LOCK_TIMEOUT
from gitcore.errors import ConflictError

logger = logging.getLogger(__name__)


@dataclass
class LockInfo:
    """Information about a held branch region."""

    repository_id: str
    branch: str
    owner: int
    timestamp: float
    depth: int = 1

    def to_dict(self) -> dict:
        return {
            "repository_id": self.repository_id,
            "branch": self.branch,
            "owner": self.owner,
            "timestamp": self.timestamp,
            "depth": self.depth,
        }


@dataclass
class _Slot:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class BranchLockManager:
    """Re-entrant, per-branch mutual exclusion.

    A region's lock lives only while some thread holds or waits for it,
    so deleted branches leave nothing behind.

    Parameters
    ----------
    timeout:
        Seconds to wait for a region before giving up with
        :class:`ConflictError`.
    """

    def __init__(self, timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.timeout = timeout
        self._guard = threading.Lock()
        self._slots: dict[tuple[str, str], _Slot] = {}
        self._held: dict[tuple[str, str], LockInfo] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

    def _acquire_slot(self, key: tuple[str, str]) -> threading.RLock:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            slot.users += 1
            return slot.lock

    def _release_slot(self, key: tuple[str, str]) -> None:
        with self._guard:
            slot = self._slots[key]
            slot.users -= 1
            if slot.users == 0:
                del self._slots[key]

    @contextmanager
    def hold(
        self,
        repository_id: str,
        branch: str,
        timeout: float | None = None,
    ) -> Iterator[LockInfo]:
        """Enter the single-writer region of a branch.

        Raises
        ------
        ConflictError
            If the region is still held by another writer after *timeout*
            seconds.
        """
        key = (repository_id, branch)
        lock = self._acquire_slot(key)
        wait = self.timeout if timeout is None else timeout

        if not lock.acquire(timeout=wait):
            self._release_slot(key)
            holder = self._held.get(key)
            raise ConflictError(
                f"Branch '{branch}' is busy"
                + (f" (held by thread {holder.owner})" if holder else "")
            )

        try:
            with self._guard:
                info = self._held.get(key)
                if info is None:
                    info = LockInfo(
                        repository_id=repository_id,
                        branch=branch,
                        owner=threading.get_ident(),
                        timestamp=time.time(),
                    )
                    self._held[key] = info
                else:
                    info.depth += 1
            logger.debug("Entered region %s/%s (depth %d)", repository_id, branch, info.depth)
            yield info
        finally:
            with self._guard:
                info = self._held.get(key)
                if info is not None:
                    info.depth -= 1
                    if info.depth == 0:
                        del self._held[key]
            lock.release()
            self._release_slot(key)

    def is_locked(self, repository_id: str, branch: str) -> LockInfo | None:
        """Return the current holder of a branch region, or None."""
        with self._guard:
            return self._held.get((repository_id, branch))
