"""Capability backends — native object-store implementation and git CLI delegation."""

from gitcore.backends.base import MergeResult, VcsBackend, default_merge_message
from gitcore.backends.git import GitCliBackend
from gitcore.backends.native import NativeBackend, merge_files

__all__ = [
    "GitCliBackend",
    "MergeResult",
    "NativeBackend",
    "VcsBackend",
    "default_merge_message",
    "merge_files",
]
