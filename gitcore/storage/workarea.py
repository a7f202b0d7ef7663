"""Scoped working areas used to materialize a commit's files.

An area is created under ``worktrees/<uuid>`` of the repository,
populated, hashed, and removed on every exit path.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, Iterator

from gitcore.config import WORKTREE_DIR
from gitcore.errors import IOFailureError, NotFoundError
from gitcore.storage.base import Content, Storage

logger = logging.getLogger(__name__)


@dataclass
class WorkingArea:
    """A transient directory inside a repository's storage area."""

    storage: Storage
    repository_id: str
    root: str

    def path(self, relative: str) -> str:
        return f"{self.root}/{relative}"


@contextmanager
def working_area(
    storage: Storage,
    repository_id: str,
    files: Iterable[tuple[str, Content]] = (),
) -> Iterator[WorkingArea]:
    """Create and populate a working area; always remove it afterwards.

    Parameters
    ----------
    storage:
        Storage collaborator the area lives in.
    repository_id:
        Repository whose storage area hosts the working area.
    files:
        ``(relative path, content)`` pairs to write before yielding.
    """
    area = WorkingArea(storage, repository_id, f"{WORKTREE_DIR}/{uuid.uuid4().hex}")
    logger.debug("Opened working area %s for %s", area.root, repository_id)
    try:
        for path, content in files:
            storage.save(area.path(path), content, repository_id)
        yield area
    finally:
        storage.delete_tree(area.root, repository_id)
        logger.debug("Removed working area %s", area.root)


def collect_files(area: WorkingArea, directory: str = "") -> list[tuple[str, bytes]]:
    """Read back every file of *area* as ``(relative path, content)``.

    Raises
    ------
    IOFailureError
        If a file listed in the area cannot be read.
    """
    storage, repo = area.storage, area.repository_id
    base = f"{area.root}/{directory}" if directory else area.root

    result: list[tuple[str, bytes]] = []
    for name in storage.list(base, repo):
        relative = f"{directory}/{name}" if directory else name
        if storage.is_dir(f"{base}/{name}", repo):
            result.extend(collect_files(area, relative))
            continue
        try:
            result.append((relative, storage.read(area.path(relative), repo)))
        except NotFoundError as exc:
            raise IOFailureError(f"Working area file vanished: {relative}") from exc
    return result
