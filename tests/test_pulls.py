"""Tests for pull-request records and the open/merged/closed state machine."""

from __future__ import annotations

import pytest

from gitcore.backends import NativeBackend
from gitcore.database import Database
from gitcore.diff import DiffEngine, DiffResult, FileChange
from gitcore.errors import ConflictError, InvalidInputError, InvalidStateError, MergeConflictError, NotFoundError
from gitcore.objects import Author, Commit, ObjectStore, assemble_tree, build_tree
from gitcore.pulls import (
    PullRequestStateMachine,
    PullRequestStatus,
    PullRequestStore,
    can_transition,
)
from gitcore.refs import BranchDirectory

REPO = "r1"
AUTHOR = Author(name="alice", email="alice@gitcore.local")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Harness:
    def __init__(self) -> None:
        self.db = Database(":memory:")
        self.objects = ObjectStore(self.db)
        self.branches = BranchDirectory(self.db)
        self.pulls = PullRequestStore(self.db)
        self.backend = NativeBackend(self.objects, self.branches)
        self.machine = PullRequestStateMachine(
            self.db, self.pulls, self.branches, self.objects, self.backend, DiffEngine(self.backend)
        )
        self._clock = 1_700_000_000

    def commit(self, branch: str, files: dict[str, str]) -> str:
        b = self.branches.find_branch(REPO, branch) or self.branches.create_branch(REPO, branch)
        parent = b.head_commit_digest
        leaves = {}
        if parent:
            tree = self.objects.load_commit(REPO, parent).tree_digest
            leaves = self.objects.load_tree(REPO, tree, recursive=True).files()
        leaves.update(build_tree(list(files.items()), self.objects.writer(REPO))[1].files())
        tree_digest, _ = assemble_tree(leaves, self.objects.writer(REPO))
        self._clock += 1
        digest = self.objects.save_commit(
            REPO,
            Commit(tree_digest=tree_digest, message="c", author=AUTHOR, timestamp=self._clock, parent_digest=parent),
        )
        self.branches.update_head(b.id, digest, expected_head=parent)
        return digest

    def head(self, branch: str) -> str | None:
        return self.branches.get_branch(REPO, branch).head_commit_digest


@pytest.fixture
def h() -> _Harness:
    return _Harness()


def _open(h: _Harness, title: str = "Add feature", source: str = "feature", target: str = "main"):
    return h.machine.open(REPO, source, target, title, "u1")


def _with_feature(h: _Harness) -> None:
    h.commit("main", {"README.md": "hello\n"})
    h.branches.create_branch(REPO, "feature", "main")
    h.commit("feature", {"feature.txt": "one\ntwo\n"})


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TestTransitions:
    def test_legal(self):
        assert can_transition(PullRequestStatus.OPEN, PullRequestStatus.MERGED)
        assert can_transition(PullRequestStatus.OPEN, PullRequestStatus.CLOSED)

    @pytest.mark.parametrize("terminal", [PullRequestStatus.MERGED, PullRequestStatus.CLOSED])
    def test_terminal(self, terminal):
        for status in PullRequestStatus:
            assert not can_transition(terminal, status)


class TestPullRequestStore:
    def _create(self, store: PullRequestStore, repo: str = REPO):
        return store.create(
            repo,
            title="t",
            author_id="u1",
            source_branch="feature",
            target_branch="main",
            diff_snapshot=DiffResult.empty(),
        )

    def test_numbers_are_sequential_per_repository(self):
        store = PullRequestStore(Database(":memory:"))
        assert [self._create(store).number for _ in range(3)] == [1, 2, 3]
        assert self._create(store, "r2").number == 1

    def test_list_newest_first_and_filter(self):
        store = PullRequestStore(Database(":memory:"))
        for _ in range(3):
            self._create(store)
        store.transition(REPO, 2, PullRequestStatus.CLOSED)

        assert [pr.number for pr in store.list(REPO)] == [3, 2, 1]
        assert [pr.number for pr in store.list(REPO, PullRequestStatus.OPEN)] == [3, 1]
        assert [pr.number for pr in store.list(REPO, PullRequestStatus.CLOSED)] == [2]

    def test_snapshot_and_reviewers_persist(self):
        store = PullRequestStore(Database(":memory:"))
        snapshot = DiffResult.from_files([FileChange(path="a.txt", additions=4, deletions=1)])
        store.create(
            REPO,
            title="t",
            author_id="u1",
            source_branch="feature",
            target_branch="main",
            diff_snapshot=snapshot,
            is_draft=True,
            reviewers=["bob", "carol"],
        )
        pr = store.get(REPO, 1)
        assert pr.diff_snapshot == snapshot
        assert pr.is_draft
        assert pr.reviewers == ["bob", "carol"]

    def test_transition_is_compare_and_swap(self):
        store = PullRequestStore(Database(":memory:"))
        self._create(store)
        store.transition(REPO, 1, PullRequestStatus.CLOSED)
        with pytest.raises(InvalidStateError):
            store.transition(REPO, 1, PullRequestStatus.MERGED)
        assert store.get(REPO, 1).status is PullRequestStatus.CLOSED

    def test_illegal_transition(self):
        store = PullRequestStore(Database(":memory:"))
        self._create(store)
        with pytest.raises(InvalidStateError):
            store.transition(REPO, 1, PullRequestStatus.OPEN, expected=PullRequestStatus.MERGED)

    def test_missing(self):
        store = PullRequestStore(Database(":memory:"))
        with pytest.raises(NotFoundError):
            store.get(REPO, 7)
        with pytest.raises(NotFoundError):
            store.transition(REPO, 7, PullRequestStatus.CLOSED)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class TestOpen:
    def test_open_freezes_snapshot(self, h: _Harness):
        _with_feature(h)
        pr = _open(h)

        assert pr.number == 1
        assert pr.status is PullRequestStatus.OPEN
        assert [f.path for f in pr.diff_snapshot.files] == ["feature.txt"]
        assert pr.diff_snapshot.stats.additions == 2

        # later commits do not change the stored snapshot
        h.commit("feature", {"more.txt": "x\n"})
        assert h.pulls.get(REPO, 1).diff_snapshot == pr.diff_snapshot

    def test_same_branch(self, h: _Harness):
        _with_feature(h)
        with pytest.raises(InvalidInputError):
            _open(h, source="main", target="main")

    def test_same_branch_checked_before_existence(self, h: _Harness):
        with pytest.raises(InvalidInputError):
            _open(h, source="ghost", target="ghost")

    @pytest.mark.parametrize("title", ["", "   "])
    def test_title_required(self, h: _Harness, title):
        _with_feature(h)
        with pytest.raises(InvalidInputError):
            _open(h, title=title)

    def test_missing_branch(self, h: _Harness):
        _with_feature(h)
        with pytest.raises(NotFoundError):
            _open(h, source="ghost")

    def test_title_is_trimmed(self, h: _Harness):
        _with_feature(h)
        assert _open(h, title="  Add it  ").title == "Add it"


class TestMerge:
    def test_merge_advances_target(self, h: _Harness):
        _with_feature(h)
        old_head = h.head("main")
        _open(h)

        pr = h.machine.merge(REPO, 1, "u2", AUTHOR)

        assert pr.status is PullRequestStatus.MERGED
        assert pr.merged_by == "u2"
        assert pr.merged_at is not None
        assert pr.merge_commit_digest == h.head("main")
        assert h.head("main") != old_head

        record = h.objects.get_commit_record(REPO, pr.merge_commit_digest)
        assert record.branch == "main"
        assert record.parent_digest == old_head
        assert record.merge_parent_digest == h.head("feature")
        assert record.message == "Merge feature into main"

    def test_merge_twice(self, h: _Harness):
        _with_feature(h)
        _open(h)
        h.machine.merge(REPO, 1, "u2", AUTHOR)
        with pytest.raises(InvalidStateError):
            h.machine.merge(REPO, 1, "u2", AUTHOR)
        assert h.pulls.get(REPO, 1).status is PullRequestStatus.MERGED

    def test_merge_closed(self, h: _Harness):
        _with_feature(h)
        _open(h)
        h.machine.close(REPO, 1)
        head = h.head("main")
        with pytest.raises(InvalidStateError):
            h.machine.merge(REPO, 1, "u2", AUTHOR)
        assert h.pulls.get(REPO, 1).status is PullRequestStatus.CLOSED
        assert h.head("main") == head

    def test_conflict_leaves_request_open(self, h: _Harness):
        h.commit("main", {"a.txt": "base"})
        h.branches.create_branch(REPO, "feature", "main")
        h.commit("feature", {"a.txt": "theirs"})
        head = h.commit("main", {"a.txt": "ours"})
        _open(h)

        with pytest.raises(MergeConflictError):
            h.machine.merge(REPO, 1, "u2", AUTHOR)
        assert h.pulls.get(REPO, 1).status is PullRequestStatus.OPEN
        assert h.head("main") == head

    def test_moved_head_leaves_request_open(self, h: _Harness, monkeypatch):
        _with_feature(h)
        _open(h)
        original = h.backend.merge

        def racing_merge(*args, **kwargs):
            result = original(*args, **kwargs)
            # another writer advances main after the merge was computed
            main = h.branches.get_branch(REPO, "main")
            h.branches.update_head(main.id, result.source_head, expected_head=main.head_commit_digest)
            return result

        monkeypatch.setattr(h.backend, "merge", racing_merge)
        with pytest.raises(ConflictError):
            h.machine.merge(REPO, 1, "u2", AUTHOR)

        assert h.pulls.get(REPO, 1).status is PullRequestStatus.OPEN
        assert h.objects.list_commit_records(REPO) == []

    def test_missing(self, h: _Harness):
        with pytest.raises(NotFoundError):
            h.machine.merge(REPO, 3, "u2", AUTHOR)


class TestClose:
    def test_close(self, h: _Harness):
        _with_feature(h)
        _open(h)
        heads = (h.head("main"), h.head("feature"))

        pr = h.machine.close(REPO, 1)
        assert pr.status is PullRequestStatus.CLOSED
        assert pr.closed_at is not None
        assert (h.head("main"), h.head("feature")) == heads

    def test_close_merged(self, h: _Harness):
        _with_feature(h)
        _open(h)
        h.machine.merge(REPO, 1, "u2", AUTHOR)
        with pytest.raises(InvalidStateError):
            h.machine.close(REPO, 1)
        assert h.pulls.get(REPO, 1).status is PullRequestStatus.MERGED
