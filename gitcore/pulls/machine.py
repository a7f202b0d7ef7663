"""PullRequestStateMachine — open, merge and close pull requests.

``open`` freezes a diff snapshot.  ``merge`` runs inside the target
branch's single-writer region: the backend writes the merge commit, then
the head advance (compare-and-swap against the head the merge was
computed from) and the ``open -> merged`` transition commit together in
one database transaction.  Any failure leaves the request open.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from gitcore.backends.base import VcsBackend
from gitcore.database import Database
from gitcore.diff.engine import DiffEngine
from gitcore.errors import InvalidInputError, InvalidStateError
from gitcore.objects.commit import Author
from gitcore.objects.store import CommitRecord, ObjectStore
from gitcore.pulls.models import PullRequest, PullRequestStatus
from gitcore.pulls.store import PullRequestStore
from gitcore.refs.branches import BranchDirectory

logger = logging.getLogger(__name__)


class PullRequestStateMachine:
    """Drives pull requests through ``open -> merged | closed``.

    Parameters
    ----------
    db:
        Shared database; provides the merge transaction.
    pulls:
        Pull-request records.
    branches:
        Branch directory (and its single-writer regions).
    objects:
        Object store receiving the merge commit's index record.
    backend:
        Merge capability.
    diff_engine:
        Produces the frozen diff snapshot.
    """

    def __init__(
        self,
        db: Database,
        pulls: PullRequestStore,
        branches: BranchDirectory,
        objects: ObjectStore,
        backend: VcsBackend,
        diff_engine: DiffEngine,
    ) -> None:
        self._db = db
        self.pulls = pulls
        self.branches = branches
        self.objects = objects
        self.backend = backend
        self.diff_engine = diff_engine

    def open(
        self,
        repository_id: str,
        source_branch: str,
        target_branch: str,
        title: str,
        author_id: str,
        description: str | None = None,
        is_draft: bool = False,
        reviewers: list[str] | None = None,
    ) -> PullRequest:
        """Open a pull request.

        Raises
        ------
        InvalidInputError
            If source and target are the same branch or the title is empty.
        NotFoundError
            If either branch does not exist.
        """
        if source_branch == target_branch:
            raise InvalidInputError("Source and target branches must be different")
        if not title or not title.strip():
            raise InvalidInputError("Pull request title is required")

        source = self.branches.get_branch(repository_id, source_branch)
        target = self.branches.get_branch(repository_id, target_branch)

        snapshot = self.diff_engine.diff(
            repository_id,
            target.head_commit_digest or target.name,
            source.head_commit_digest or source.name,
        )
        return self.pulls.create(
            repository_id,
            title=title.strip(),
            author_id=author_id,
            source_branch=source.name,
            target_branch=target.name,
            diff_snapshot=snapshot,
            description=description,
            is_draft=is_draft,
            reviewers=reviewers,
        )

    def merge(
        self,
        repository_id: str,
        number: int,
        actor_id: str,
        author: Author,
        message: str | None = None,
    ) -> PullRequest:
        """Merge an open pull request into its target branch.

        Raises
        ------
        InvalidStateError
            If the pull request is not open or there is nothing to merge.
        MergeConflictError
            If the branches conflict.
        ConflictError
            If the target head moved while the merge was computed.
        """
        pr = self.pulls.get(repository_id, number)
        if not pr.is_open:
            raise InvalidStateError(f"Pull request #{number} is {pr.status.value}, not open")

        with self.branches.locks.hold(repository_id, pr.target_branch):
            result = self.backend.merge(
                repository_id,
                pr.source_branch,
                pr.target_branch,
                author=author,
                message=message,
            )
            target = self.branches.get_branch(repository_id, pr.target_branch)
            now = datetime.now(timezone.utc)

            with self._db.transaction():
                self.objects.record_commit(
                    CommitRecord(
                        repository_id=repository_id,
                        digest=result.commit_digest,
                        branch=pr.target_branch,
                        author_id=actor_id,
                        message=result.message,
                        tree_digest=result.tree_digest,
                        parent_digest=result.target_head or result.source_head,
                        merge_parent_digest=result.source_head if result.target_head else None,
                        changes=result.changes,
                        committed_at=now,
                    )
                )
                self.branches.update_head(target.id, result.commit_digest, expected_head=result.target_head)
                merged = self.pulls.transition(
                    repository_id,
                    number,
                    PullRequestStatus.MERGED,
                    merged_by=actor_id,
                    merged_at=now,
                    merge_commit_digest=result.commit_digest,
                )

        logger.info("Merged pull request #%d in %s as %s", number, repository_id, result.commit_digest)
        return merged

    def close(self, repository_id: str, number: int) -> PullRequest:
        """Close an open pull request without touching any branch.

        Raises
        ------
        InvalidStateError
            If the pull request is not open.
        """
        return self.pulls.transition(
            repository_id,
            number,
            PullRequestStatus.CLOSED,
            closed_at=datetime.now(timezone.utc),
        )
