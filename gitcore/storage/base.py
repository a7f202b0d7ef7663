"""Storage collaborator interface."""

from __future__ import annotations

import abc

from gitcore.objects.tree import Content, content_bytes


class Storage(abc.ABC):
    """Per-repository file storage.

    Paths are relative to the repository's own area; implementations
    decide where that area physically lives.
    """

    @abc.abstractmethod
    def save(self, path: str, content: Content, repository_id: str) -> str:
        """Write a file and return its physical location."""

    @abc.abstractmethod
    def read(self, path: str, repository_id: str) -> bytes:
        """Return a file's content.

        Raises
        ------
        NotFoundError
            If the file does not exist.
        """

    @abc.abstractmethod
    def delete(self, path: str, repository_id: str) -> None:
        """Delete a file.  Deleting a missing file is a no-op."""

    @abc.abstractmethod
    def list(self, directory: str, repository_id: str) -> list[str]:
        """Return the sorted entry names of a directory ([] if missing)."""

    @abc.abstractmethod
    def is_dir(self, path: str, repository_id: str) -> bool:
        """Return True if *path* is a directory."""

    @abc.abstractmethod
    def delete_tree(self, directory: str, repository_id: str) -> None:
        """Remove a directory and everything below it."""

    def read_text(self, path: str, repository_id: str) -> str:
        return self.read(path, repository_id).decode("utf-8")
