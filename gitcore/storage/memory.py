"""MemoryStorage — dict-backed storage for tests and ephemeral use."""

from __future__ import annotations

import threading

from gitcore.errors import InvalidInputError, NotFoundError
from gitcore.storage.base import Content, Storage, content_bytes


def _clean(path: str) -> str:
    parts = [p for p in path.replace("\\", "/").split("/") if p not in ("", ".")]
    if ".." in parts:
        raise InvalidInputError(f"Path escapes repository: {path!r}")
    return "/".join(parts)


class MemoryStorage(Storage):
    """Keeps every file in memory, keyed by ``(repository_id, path)``."""

    def __init__(self) -> None:
        self._files: dict[tuple[str, str], bytes] = {}
        self._lock = threading.Lock()

    def save(self, path: str, content: Content, repository_id: str) -> str:
        key = _clean(path)
        if not key:
            raise InvalidInputError("File path is required")
        with self._lock:
            self._files[(repository_id, key)] = content_bytes(content)
        return f"memory://{repository_id}/{key}"

    def read(self, path: str, repository_id: str) -> bytes:
        with self._lock:
            data = self._files.get((repository_id, _clean(path)))
        if data is None:
            raise NotFoundError(f"File {path} not found in {repository_id}")
        return data

    def delete(self, path: str, repository_id: str) -> None:
        with self._lock:
            self._files.pop((repository_id, _clean(path)), None)

    def _below(self, directory: str, repository_id: str) -> list[str]:
        prefix = _clean(directory)
        prefix = f"{prefix}/" if prefix else ""
        with self._lock:
            return [p[len(prefix):] for (repo, p) in self._files if repo == repository_id and p.startswith(prefix)]

    def list(self, directory: str, repository_id: str) -> list[str]:
        return sorted({rest.split("/", 1)[0] for rest in self._below(directory, repository_id)})

    def is_dir(self, path: str, repository_id: str) -> bool:
        return bool(self._below(path, repository_id))

    def delete_tree(self, directory: str, repository_id: str) -> None:
        prefix = _clean(directory)
        if not prefix:
            raise InvalidInputError("Refusing to delete the repository root")
        with self._lock:
            for key in [k for k in self._files if k[0] == repository_id and k[1].startswith(prefix + "/")]:
                del self._files[key]
