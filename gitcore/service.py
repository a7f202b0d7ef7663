"""VersionControlService — the operations exposed to callers.

Wires the repository catalog, object store, branch directory, diff
engine and pull-request state machine together.  Every head advance
happens inside the branch's single-writer region and in the same
database transaction as the objects it points to; activity tracking
and notifications run afterwards and never fail an operation.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Union

from pydantic import ValidationError

from gitcore.backends.base import VcsBackend
from gitcore.backends.git import GitCliBackend
from gitcore.backends.native import NativeBackend
from gitcore.config import DEFAULT_COMMIT_LIMIT, DEFAULT_EMAIL_DOMAIN, MIRRORS_DIR
from gitcore.database import Database
from gitcore.diff.engine import DiffEngine
from gitcore.diff.models import DiffResult
from gitcore.errors import ConflictError, InvalidInputError, NotFoundError
from gitcore.events.activity import ActivityFeed, ActivityType
from gitcore.events.emitter import (
    BRANCH_CREATED,
    BRANCH_DELETED,
    COMMIT_CREATED,
    PULL_REQUEST_CLOSED,
    PULL_REQUEST_CREATED,
    PULL_REQUEST_MERGED,
    EventEmitter,
)
from gitcore.events.notifications import WebhookNotifier
from gitcore.objects.commit import Author, Commit
from gitcore.objects.hasher import Digest, is_digest
from gitcore.objects.store import CommitRecord, ObjectStore
from gitcore.objects.tree import Content, ObjectKind, assemble_tree, build_tree, content_bytes, normalize_path
from gitcore.pulls.machine import PullRequestStateMachine
from gitcore.pulls.models import PullRequest, PullRequestStatus
from gitcore.pulls.store import PullRequestStore
from gitcore.refs.branches import Branch, BranchDirectory, validate_branch_name
from gitcore.refs.locking import BranchLockManager
from gitcore.repositories import Repository, RepositoryCatalog
from gitcore.settings import Settings, configure_logging
from gitcore.storage.base import Storage
from gitcore.storage.local import LocalStorage
from gitcore.storage.workarea import collect_files, working_area

logger = logging.getLogger(__name__)

FileInput = Union[Mapping[str, Any], tuple[str, Content]]


def _file_pairs(files: Iterable[FileInput]) -> list[tuple[str, Content]]:
    """Normalize ``{"path", "content"}`` dicts or ``(path, content)`` tuples."""
    pairs: list[tuple[str, Content]] = []
    seen: set[str] = set()
    for item in files:
        if isinstance(item, Mapping):
            path, content = item.get("path"), item.get("content", "")
        else:
            path, content = item
        path = normalize_path(path)
        if path in seen:
            raise InvalidInputError(f"Duplicate file path: {path}")
        seen.add(path)
        pairs.append((path, content_bytes(content)))
    return pairs


class VersionControlService:
    """Commits, branches, diffs and pull requests for hosted repositories."""

    def __init__(
        self,
        db: Database,
        repositories: RepositoryCatalog,
        objects: ObjectStore,
        branches: BranchDirectory,
        pulls: PullRequestStore,
        backend: VcsBackend,
        storage: Storage,
        activity: ActivityFeed | None = None,
        events: EventEmitter | None = None,
        email_domain: str = DEFAULT_EMAIL_DOMAIN,
    ) -> None:
        self.db = db
        self.repositories = repositories
        self.objects = objects
        self.branches = branches
        self.pulls = pulls
        self.backend = backend
        self.storage = storage
        self.activity = activity
        self.events = events or EventEmitter()
        self.email_domain = email_domain
        self.diff_engine = DiffEngine(backend)
        self.pull_requests = PullRequestStateMachine(db, pulls, branches, objects, backend, self.diff_engine)

    @classmethod
    def from_settings(cls, settings: Settings, storage: Storage | None = None) -> VersionControlService:
        """Build a service with every component configured from *settings*."""
        configure_logging(settings.log_level)
        db = Database(settings.database_path)
        objects = ObjectStore(db)
        branches = BranchDirectory(db, BranchLockManager(timeout=settings.lock_timeout))
        storage = storage or LocalStorage(settings.storage_path)

        backend: VcsBackend
        if settings.backend == "git":
            mirrors_root = Path(settings.storage_path).resolve() / MIRRORS_DIR
            backend = GitCliBackend(
                objects,
                branches,
                lambda repository_id: mirrors_root / f"{repository_id}.git",
                git_binary=settings.git_binary,
                timeout=settings.diff_timeout,
            )
            if not backend.is_available():
                logger.warning(
                    "git backend selected but %s is missing or too old; diffs degrade and merges fail",
                    settings.git_binary,
                )
        else:
            backend = NativeBackend(objects, branches)

        events = EventEmitter()
        if settings.webhook_url:
            events.add_provider(WebhookNotifier(settings.webhook_url))

        return cls(
            db=db,
            repositories=RepositoryCatalog(db, default_branch=settings.default_branch),
            objects=objects,
            branches=branches,
            pulls=PullRequestStore(db),
            backend=backend,
            storage=storage,
            activity=ActivityFeed(settings.activity_file),
            events=events,
            email_domain=settings.email_domain,
        )

    # -- Helpers -------------------------------------------------------------

    def author_for(self, user_id: str) -> Author:
        """Commit identity of *user_id*.

        Raises
        ------
        InvalidInputError
            If the id cannot appear in a commit signature.
        """
        try:
            return Author(name=user_id, email=f"{user_id}@{self.email_domain}")
        except ValidationError as exc:
            raise InvalidInputError(f"Invalid author id: {user_id!r}") from exc

    def _after(
        self,
        user_id: str | None,
        repository_id: str,
        activity: ActivityType | None,
        event_name: str,
        payload: dict[str, Any],
    ) -> None:
        """Track and announce a completed operation; failures are only logged."""
        try:
            if self.activity is not None and activity is not None and user_id:
                self.activity.track(user_id, repository_id, activity, payload)
            self.events.emit(event_name, {"repository_id": repository_id, **payload})
        except Exception:
            logger.warning("Post-operation hooks failed for %s", event_name, exc_info=True)

    def _resolve(self, repository_id: str, ref: str | None) -> Digest | None:
        """Resolve a branch name or commit digest (None: default branch)."""
        repo = self.repositories.get(repository_id)
        ref = ref or repo.default_branch
        branch = self.branches.find_branch(repository_id, ref)
        if branch is not None:
            return branch.head_commit_digest
        if is_digest(ref) and self.objects.has(repository_id, ref):
            return ref
        raise NotFoundError(f"Unknown ref '{ref}'")

    def _files_at(self, repository_id: str, commit_digest: Digest | None) -> dict[str, Digest]:
        if commit_digest is None:
            return {}
        commit = self.objects.load_commit(repository_id, commit_digest)
        return self.objects.load_tree(repository_id, commit.tree_digest, recursive=True).files()

    # -- Commits -------------------------------------------------------------

    def create_commit(
        self,
        repository_id: str,
        user_id: str,
        message: str,
        files: Iterable[FileInput],
        branch: str | None = None,
        description: str | None = None,
        expected_head: Digest | None = None,
        timestamp: int | None = None,
    ) -> Digest:
        """Commit *files* on top of *branch* and advance its head.

        The branch is created on its first commit; it becomes the default
        branch when its name is the repository's default branch.

        Parameters
        ----------
        files:
            ``{"path": ..., "content": ...}`` dicts or ``(path, content)``
            tuples.  They are laid over the parent commit's files.
        expected_head:
            If given, the head the caller based this commit on; the commit
            fails with :class:`ConflictError` when the branch has moved.

        Raises
        ------
        NotFoundError
            If the repository does not exist.
        InvalidInputError
            On an empty message or invalid paths.
        ConflictError
            If the branch head moved, or the branch is busy for too long.
        IOFailureError
            If the working area cannot be written or read.
        """
        repo = self.repositories.get(repository_id)
        branch_name = validate_branch_name(branch or repo.default_branch)
        if not message or not message.strip():
            raise InvalidInputError("Commit message is required")
        pairs = _file_pairs(files)
        author = self.author_for(user_id)

        with self.branches.locks.hold(repository_id, branch_name):
            existing = self.branches.find_branch(repository_id, branch_name)
            parent = existing.head_commit_digest if existing else None
            if expected_head is not None and expected_head != parent:
                raise ConflictError(
                    f"Branch '{branch_name}' moved: expected head {expected_head}, found {parent}"
                )

            with working_area(self.storage, repository_id, pairs) as area:
                entries = collect_files(area)

            pending: list[tuple[ObjectKind, Digest, bytes]] = []

            def collect(kind: ObjectKind, digest: Digest, data: bytes) -> None:
                pending.append((kind, digest, data))

            tree_digest, tree = build_tree(entries, collect)
            changed = tree.files()
            if parent is not None:
                leaves = self._files_at(repository_id, parent)
                leaves.update(changed)
                tree_digest, _ = assemble_tree(leaves, collect)

            commit = Commit(
                tree_digest=tree_digest,
                message=message,
                author=author,
                timestamp=int(time.time()) if timestamp is None else timestamp,
                parent_digest=parent,
            )

            with self.db.transaction():
                for kind, digest, data in pending:
                    self.objects.put(repository_id, kind, digest, data)
                commit_digest = self.objects.save_commit(repository_id, commit)
                self.objects.record_commit(
                    CommitRecord(
                        repository_id=repository_id,
                        digest=commit_digest,
                        branch=branch_name,
                        author_id=user_id,
                        message=message,
                        description=description,
                        tree_digest=tree_digest,
                        parent_digest=parent,
                        changes=sorted(changed),
                    )
                )
                if existing is None:
                    existing = self.branches.create_branch(
                        repository_id,
                        branch_name,
                        is_default=branch_name == repo.default_branch,
                    )
                self.branches.update_head(existing.id, commit_digest, expected_head=parent)

        logger.info("Committed %s to %s/%s", commit_digest, repository_id, branch_name)
        self._after(
            user_id,
            repository_id,
            ActivityType.COMMIT,
            COMMIT_CREATED,
            {"digest": commit_digest, "branch": branch_name, "message": message, "author": user_id},
        )
        return commit_digest

    def get_commits(
        self,
        repository_id: str,
        branch: str | None = None,
        limit: int = DEFAULT_COMMIT_LIMIT,
    ) -> list[CommitRecord]:
        """Commits of a repository (optionally one branch), newest first."""
        self.repositories.get(repository_id)
        return self.objects.list_commit_records(repository_id, branch, limit)

    def get_commit(self, repository_id: str, digest: Digest) -> CommitRecord:
        self.repositories.get(repository_id)
        return self.objects.get_commit_record(repository_id, digest)

    def history(
        self,
        repository_id: str,
        ref: str | None = None,
        limit: int = DEFAULT_COMMIT_LIMIT,
    ) -> list[CommitRecord]:
        """Walk first parents from *ref* (default branch when None)."""
        current = self._resolve(repository_id, ref)
        records: list[CommitRecord] = []
        while current is not None and len(records) < limit:
            records.append(self.objects.get_commit_record(repository_id, current))
            current = self.objects.load_commit(repository_id, current).parent_digest
        return records

    def get_tree(self, repository_id: str, ref: str | None = None) -> dict[str, Any]:
        """Displayable file tree at *ref* ({} for a branch without commits)."""
        digest = self._resolve(repository_id, ref)
        if digest is None:
            return {}
        commit = self.objects.load_commit(repository_id, digest)
        return self.objects.load_tree(repository_id, commit.tree_digest, recursive=True).to_listing()

    # -- Branches ------------------------------------------------------------

    def create_branch(
        self,
        repository_id: str,
        user_id: str,
        name: str,
        from_branch: str | None = None,
    ) -> Branch:
        """Create a branch, starting at *from_branch*'s head if given.

        A branch named after the repository's default branch is the
        default branch, whether it is created here or by its first commit.

        Raises
        ------
        ConflictError
            If the name is taken.
        NotFoundError
            If the repository or *from_branch* does not exist.
        """
        repo = self.repositories.get(repository_id)
        branch = self.branches.create_branch(
            repository_id,
            name,
            from_branch,
            is_default=name == repo.default_branch,
        )
        self._after(
            user_id,
            repository_id,
            ActivityType.BRANCH_CREATE,
            BRANCH_CREATED,
            {"branch": name, "from_branch": from_branch, "head": branch.head_commit_digest},
        )
        return branch

    def list_branches(self, repository_id: str) -> list[Branch]:
        self.repositories.get(repository_id)
        return self.branches.list_branches(repository_id)

    def get_branch(self, repository_id: str, name: str) -> Branch:
        self.repositories.get(repository_id)
        return self.branches.get_branch(repository_id, name)

    def delete_branch(self, repository_id: str, name: str, user_id: str | None = None) -> None:
        """Delete a non-default, unprotected branch."""
        self.repositories.get(repository_id)
        self.branches.delete_branch(repository_id, name)
        self._after(user_id, repository_id, ActivityType.BRANCH_DELETE, BRANCH_DELETED, {"branch": name})

    def protect_branch(self, repository_id: str, name: str, protected: bool = True) -> Branch:
        self.repositories.get(repository_id)
        return self.branches.set_protected(repository_id, name, protected)

    # -- Diffs ---------------------------------------------------------------

    def get_diff(self, repository_id: str, from_ref: str | None, to_ref: str | None) -> DiffResult:
        """Best-effort comparison; failures yield an empty result."""
        self.repositories.get(repository_id)
        return self.diff_engine.diff(repository_id, from_ref, to_ref)

    # -- Pull requests -------------------------------------------------------

    def create_pull_request(
        self,
        repository_id: str,
        user_id: str,
        title: str,
        source_branch: str,
        target_branch: str,
        description: str | None = None,
        is_draft: bool = False,
        reviewers: list[str] | None = None,
    ) -> PullRequest:
        self.repositories.get(repository_id)
        pr = self.pull_requests.open(
            repository_id,
            source_branch,
            target_branch,
            title,
            author_id=user_id,
            description=description,
            is_draft=is_draft,
            reviewers=reviewers,
        )
        self._after(
            user_id,
            repository_id,
            ActivityType.PULL_REQUEST,
            PULL_REQUEST_CREATED,
            {"number": pr.number, "title": pr.title, "source": source_branch, "target": target_branch},
        )
        return pr

    def list_pull_requests(
        self,
        repository_id: str,
        status: PullRequestStatus | str | None = None,
    ) -> list[PullRequest]:
        self.repositories.get(repository_id)
        return self.pulls.list(repository_id, PullRequestStatus(status) if status else None)

    def get_pull_request(self, repository_id: str, number: int) -> PullRequest:
        self.repositories.get(repository_id)
        return self.pulls.get(repository_id, number)

    def merge_pull_request(
        self,
        repository_id: str,
        number: int,
        user_id: str,
        message: str | None = None,
    ) -> PullRequest:
        """Merge an open pull request; the target head advances to the merge commit."""
        self.repositories.get(repository_id)
        pr = self.pull_requests.merge(repository_id, number, user_id, self.author_for(user_id), message)
        self._after(
            user_id,
            repository_id,
            ActivityType.PULL_REQUEST_MERGE,
            PULL_REQUEST_MERGED,
            {"number": pr.number, "branch": pr.target_branch, "digest": pr.merge_commit_digest},
        )
        return pr

    def close_pull_request(self, repository_id: str, number: int, user_id: str | None = None) -> PullRequest:
        self.repositories.get(repository_id)
        pr = self.pull_requests.close(repository_id, number)
        self._after(
            user_id,
            repository_id,
            ActivityType.PULL_REQUEST_CLOSE,
            PULL_REQUEST_CLOSED,
            {"number": pr.number},
        )
        return pr

    # -- Repositories --------------------------------------------------------

    def register_repository(
        self,
        owner_id: str,
        name: str,
        default_branch: str | None = None,
        description: str | None = None,
    ) -> Repository:
        return self.repositories.register(owner_id, name, default_branch, description)

    def close(self) -> None:
        self.db.close()
