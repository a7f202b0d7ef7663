"""Diff engine — structural tree comparison and change summaries."""

from gitcore.diff.engine import DiffEngine
from gitcore.diff.models import ChangeStatus, DiffResult, DiffStats, FileChange
from gitcore.diff.stat import parse_diff_stat
from gitcore.diff.structural import count_line_changes, diff_trees

__all__ = [
    "ChangeStatus",
    "DiffEngine",
    "DiffResult",
    "DiffStats",
    "FileChange",
    "count_line_changes",
    "diff_trees",
    "parse_diff_stat",
]
