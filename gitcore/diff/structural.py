"""Structural comparison of two stored trees.

Walks both trees together, skips subtrees whose digests match, and
counts added/deleted lines for every changed file.
"""

from __future__ import annotations

import difflib
import logging

from gitcore.diff.models import ChangeStatus, DiffResult, FileChange
from gitcore.objects.hasher import Digest
from gitcore.objects.store import ObjectStore
from gitcore.objects.tree import EntryKind, Tree

logger = logging.getLogger(__name__)


def _decode_lines(data: bytes | None) -> list[str] | None:
    """Return the lines of *data*, or None for binary content."""
    if data is None:
        return []
    if b"\x00" in data:
        return None
    try:
        return data.decode("utf-8").splitlines()
    except UnicodeDecodeError:
        return None


def count_line_changes(old: bytes | None, new: bytes | None) -> tuple[int, int]:
    """Return ``(additions, deletions)`` between two file contents.

    ``None`` stands for a missing file.  Binary content counts as 0/0.
    """
    old_lines = _decode_lines(old)
    new_lines = _decode_lines(new)
    if old_lines is None or new_lines is None:
        return 0, 0

    additions = deletions = 0
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag in ("replace", "delete"):
            deletions += i2 - i1
        if tag in ("replace", "insert"):
            additions += j2 - j1
    return additions, deletions


def diff_trees(
    store: ObjectStore,
    repository_id: str,
    old_tree_digest: Digest | None,
    new_tree_digest: Digest | None,
) -> DiffResult:
    """Compare two trees of *repository_id*.

    Parameters
    ----------
    store:
        Object store holding both trees and their blobs.
    old_tree_digest, new_tree_digest:
        Root trees to compare; None is the empty tree.

    Returns
    -------
    DiffResult
        One :class:`FileChange` per added, removed or modified file.
    """
    if old_tree_digest == new_tree_digest:
        return DiffResult.empty()

    def load(digest: Digest | None) -> Tree:
        return store.load_tree(repository_id, digest) if digest else Tree()

    def blob(digest: Digest | None) -> bytes | None:
        return store.load_blob(repository_id, digest) if digest else None

    changes: list[FileChange] = []

    def record(path: str, old: Digest | None, new: Digest | None) -> None:
        additions, deletions = count_line_changes(blob(old), blob(new))
        if old is None:
            status = ChangeStatus.ADDED
        elif new is None:
            status = ChangeStatus.REMOVED
        else:
            status = ChangeStatus.MODIFIED
        changes.append(FileChange(path=path, additions=additions, deletions=deletions, status=status))

    stack: list[tuple[Tree, Tree, str]] = [(load(old_tree_digest), load(new_tree_digest), "")]
    while stack:
        old_tree, new_tree, prefix = stack.pop()
        old_entries = {e.name: e for e in old_tree.entries}
        new_entries = {e.name: e for e in new_tree.entries}

        for name in sorted(old_entries.keys() | new_entries.keys()):
            old_entry = old_entries.get(name)
            new_entry = new_entries.get(name)
            path = f"{prefix}/{name}" if prefix else name

            if old_entry is not None and new_entry is not None and old_entry.digest == new_entry.digest:
                continue

            old_is_dir = old_entry is not None and old_entry.kind is EntryKind.DIR
            new_is_dir = new_entry is not None and new_entry.kind is EntryKind.DIR

            if old_is_dir or new_is_dir:
                stack.append((
                    load(old_entry.digest) if old_is_dir else Tree(),
                    load(new_entry.digest) if new_is_dir else Tree(),
                    path,
                ))

            old_file = old_entry.digest if old_entry is not None and not old_is_dir else None
            new_file = new_entry.digest if new_entry is not None and not new_is_dir else None
            if old_file is not None or new_file is not None:
                record(path, old_file, new_file)

    logger.debug(
        "Diffed trees %s..%s in %s: %d files", old_tree_digest, new_tree_digest, repository_id, len(changes)
    )
    return DiffResult.from_files(changes)
