"""LocalStorage — files under ``<root>/repos/<repository_id>/``."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from gitcore.config import DEFAULT_STORAGE_PATH, REPOS_DIR
from gitcore.errors import InvalidInputError, IOFailureError, NotFoundError
from gitcore.storage.base import Content, Storage, content_bytes

logger = logging.getLogger(__name__)


class LocalStorage(Storage):
    """Local filesystem storage.

    Parameters
    ----------
    root:
        Storage root.  Passed explicitly; there is no process-wide
        storage path.
    """

    def __init__(self, root: str | Path = DEFAULT_STORAGE_PATH) -> None:
        self.root = Path(root).resolve()

    def repository_root(self, repository_id: str) -> Path:
        if not repository_id or "/" in repository_id or "\\" in repository_id or repository_id in (".", ".."):
            raise InvalidInputError(f"Invalid repository id: {repository_id!r}")
        return self.root / REPOS_DIR / repository_id

    def _resolve(self, path: str, repository_id: str) -> Path:
        base = self.repository_root(repository_id).resolve()
        full = (base / path).resolve()
        if full != base and not full.is_relative_to(base):
            raise InvalidInputError(f"Path escapes repository: {path!r}")
        return full

    def save(self, path: str, content: Content, repository_id: str) -> str:
        full = self._resolve(path, repository_id)
        data = content_bytes(content)
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_bytes(data)
        except OSError as exc:
            raise IOFailureError(f"Cannot write {path}: {exc}") from exc
        logger.debug("Saved %s (%s)", full, repository_id)
        return str(full)

    def read(self, path: str, repository_id: str) -> bytes:
        full = self._resolve(path, repository_id)
        try:
            return full.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"File {path} not found in {repository_id}") from exc
        except OSError as exc:
            raise IOFailureError(f"Cannot read {path}: {exc}") from exc

    def delete(self, path: str, repository_id: str) -> None:
        full = self._resolve(path, repository_id)
        try:
            full.unlink(missing_ok=True)
        except OSError as exc:
            raise IOFailureError(f"Cannot delete {path}: {exc}") from exc

    def list(self, directory: str, repository_id: str) -> list[str]:
        full = self._resolve(directory or ".", repository_id)
        if not full.is_dir():
            return []
        try:
            return sorted(p.name for p in full.iterdir())
        except OSError as exc:
            raise IOFailureError(f"Cannot list {directory}: {exc}") from exc

    def is_dir(self, path: str, repository_id: str) -> bool:
        return self._resolve(path, repository_id).is_dir()

    def delete_tree(self, directory: str, repository_id: str) -> None:
        full = self._resolve(directory, repository_id)
        if full == self.repository_root(repository_id).resolve():
            raise InvalidInputError("Refusing to delete the repository root")
        try:
            shutil.rmtree(full)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise IOFailureError(f"Cannot remove {directory}: {exc}") from exc
        logger.debug("Removed %s", full)
