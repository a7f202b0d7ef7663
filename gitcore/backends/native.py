"""NativeBackend — diff and merge directly on the object store.

Merging is a three-way merge at path level against the nearest common
ancestor.  Disjoint changes combine and identical changes collapse;
anything else is a conflict, which fails the merge.
"""

from __future__ import annotations

import logging
import time
from collections import deque

from gitcore.backends.base import MergeResult, VcsBackend, default_merge_message
from gitcore.diff.models import DiffResult
from gitcore.diff.structural import diff_trees
from gitcore.errors import InvalidInputError, InvalidStateError, MergeConflictError, NotFoundError
from gitcore.objects.commit import Author, Commit
from gitcore.objects.hasher import Digest, is_digest
from gitcore.objects.store import ObjectStore
from gitcore.objects.tree import assemble_tree
from gitcore.refs.branches import BranchDirectory

logger = logging.getLogger(__name__)


class NativeBackend(VcsBackend):
    """Backend operating on :class:`ObjectStore` and :class:`BranchDirectory`."""

    name = "native"

    def __init__(self, store: ObjectStore, branches: BranchDirectory) -> None:
        self.store = store
        self.branches = branches

    def is_available(self) -> bool:
        return True

    # -- Refs ----------------------------------------------------------------

    def resolve_ref(self, repository_id: str, ref: str | None) -> Digest | None:
        """Resolve a branch name or commit digest to a commit digest.

        ``None`` and branches without commits resolve to None.

        Raises
        ------
        NotFoundError
            If *ref* is neither a branch nor a stored commit.
        """
        if ref is None:
            return None
        branch = self.branches.find_branch(repository_id, ref)
        if branch is not None:
            return branch.head_commit_digest
        if is_digest(ref) and self.store.has(repository_id, ref):
            return ref
        raise NotFoundError(f"Unknown ref '{ref}' in repository {repository_id}")

    def _tree_of(self, repository_id: str, commit_digest: Digest | None) -> Digest | None:
        if commit_digest is None:
            return None
        return self.store.load_commit(repository_id, commit_digest).tree_digest

    def _files_of(self, repository_id: str, commit_digest: Digest | None) -> dict[str, Digest]:
        tree_digest = self._tree_of(repository_id, commit_digest)
        if tree_digest is None:
            return {}
        return self.store.load_tree(repository_id, tree_digest, recursive=True).files()

    # -- Graph ---------------------------------------------------------------

    def ancestors(self, repository_id: str, digest: Digest) -> set[Digest]:
        """Return *digest* and every commit reachable from it."""
        seen: set[Digest] = set()
        queue = deque([digest])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self.store.load_commit(repository_id, current).parents)
        return seen

    def common_ancestor(self, repository_id: str, first: Digest, second: Digest) -> Digest | None:
        """Return the nearest commit reachable from both, or None."""
        reachable = self.ancestors(repository_id, first)
        seen: set[Digest] = set()
        queue = deque([second])
        while queue:
            current = queue.popleft()
            if current in reachable:
                return current
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self.store.load_commit(repository_id, current).parents)
        return None

    # -- Capabilities --------------------------------------------------------

    def diff(self, repository_id: str, from_ref: str | None, to_ref: str | None) -> DiffResult:
        old_tree = self._tree_of(repository_id, self.resolve_ref(repository_id, from_ref))
        new_tree = self._tree_of(repository_id, self.resolve_ref(repository_id, to_ref))
        return diff_trees(self.store, repository_id, old_tree, new_tree)

    def merge(
        self,
        repository_id: str,
        source: str,
        target: str,
        *,
        author: Author,
        message: str | None = None,
        timestamp: int | None = None,
    ) -> MergeResult:
        source_head = self.branches.get_branch(repository_id, source).head_commit_digest
        target_head = self.branches.get_branch(repository_id, target).head_commit_digest

        if source_head is None:
            raise InvalidStateError(f"Nothing to merge: '{source}' has no commits")
        if target_head is not None and source_head in self.ancestors(repository_id, target_head):
            raise InvalidStateError(f"Nothing to merge: '{source}' is already in '{target}'")

        theirs = self._files_of(repository_id, source_head)
        ours = self._files_of(repository_id, target_head)
        if target_head is None:
            merged = dict(theirs)
        else:
            base_commit = self.common_ancestor(repository_id, target_head, source_head)
            merged = merge_files(self._files_of(repository_id, base_commit), ours, theirs)

        return write_merge_commit(
            self.store,
            repository_id,
            merged,
            ours,
            source=source,
            target=target,
            source_head=source_head,
            target_head=target_head,
            author=author,
            message=message,
            timestamp=timestamp,
        )

    def list_branches(self, repository_id: str) -> list[str]:
        return [b.name for b in self.branches.list_branches(repository_id)]

    def checkout(self, repository_id: str, ref: str) -> Digest | None:
        digest = self.resolve_ref(repository_id, ref)
        if digest is not None:
            # fails early on a dangling head
            self.store.load_commit(repository_id, digest)
        return digest


def write_merge_commit(
    store: ObjectStore,
    repository_id: str,
    merged: dict[str, Digest],
    ours: dict[str, Digest],
    *,
    source: str,
    target: str,
    source_head: Digest,
    target_head: Digest | None,
    author: Author,
    message: str | None = None,
    timestamp: int | None = None,
) -> MergeResult:
    """Store the tree of *merged* and a merge commit on top of *target_head*.

    An empty target just takes the source history: the commit's only
    parent is then *source_head*.  No branch head moves.
    """
    try:
        tree_digest, _ = assemble_tree(merged, store.writer(repository_id))
    except InvalidInputError as exc:
        raise MergeConflictError(f"Merge conflict: {exc}") from exc
    commit = Commit(
        tree_digest=tree_digest,
        message=message or default_merge_message(source, target),
        author=author,
        timestamp=int(time.time()) if timestamp is None else timestamp,
        parent_digest=target_head or source_head,
        merge_parent_digest=source_head if target_head else None,
    )
    commit_digest = store.save_commit(repository_id, commit)

    changes = sorted(p for p in ours.keys() | merged.keys() if ours.get(p) != merged.get(p))
    logger.info(
        "Merged %s (%s) into %s (%s) in %s -> %s",
        source, source_head, target, target_head, repository_id, commit_digest,
    )
    return MergeResult(
        source=source,
        target=target,
        commit_digest=commit_digest,
        tree_digest=tree_digest,
        target_head=target_head,
        source_head=source_head,
        message=commit.message,
        changes=changes,
    )


def merge_files(
    base: dict[str, Digest],
    ours: dict[str, Digest],
    theirs: dict[str, Digest],
) -> dict[str, Digest]:
    """Three-way merge of ``path -> blob digest`` maps.

    Raises
    ------
    MergeConflictError
        Listing every path both sides changed differently.
    """
    merged: dict[str, Digest] = {}
    conflicts: list[str] = []

    for path in sorted(base.keys() | ours.keys() | theirs.keys()):
        b, o, t = base.get(path), ours.get(path), theirs.get(path)
        if o == t:
            result = o
        elif o == b:
            result = t
        elif t == b:
            result = o
        else:
            conflicts.append(path)
            continue
        if result is not None:
            merged[path] = result

    if conflicts:
        raise MergeConflictError(
            f"Merge conflict in {len(conflicts)} file(s): {', '.join(conflicts)}",
            paths=conflicts,
        )
    return merged
