"""Storage collaborator — local filesystem and in-memory file storage."""

from gitcore.storage.base import Storage
from gitcore.storage.local import LocalStorage
from gitcore.storage.memory import MemoryStorage
from gitcore.storage.workarea import WorkingArea, collect_files, working_area

__all__ = [
    "LocalStorage",
    "MemoryStorage",
    "Storage",
    "WorkingArea",
    "collect_files",
    "working_area",
]
