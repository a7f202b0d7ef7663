"""Tests for the branch directory and branch single-writer regions."""

from __future__ import annotations

import threading
import time

import pytest

from gitcore.database import Database
from gitcore.errors import ConflictError, InvalidInputError, InvalidStateError, NotFoundError
from gitcore.objects import Hasher
from gitcore.refs import BranchDirectory, BranchLockManager, validate_branch_name

D1 = Hasher.hash_string("one")
D2 = Hasher.hash_string("two")
D3 = Hasher.hash_string("three")


@pytest.fixture
def branches() -> BranchDirectory:
    return BranchDirectory(Database(":memory:"), BranchLockManager(timeout=2))


# ---------------------------------------------------------------------------
# Branch names
# ---------------------------------------------------------------------------


class TestBranchNames:
    @pytest.mark.parametrize("name", ["main", "feature/login", "release-1.2", "fix_42"])
    def test_valid(self, name):
        assert validate_branch_name(name) == name

    @pytest.mark.parametrize(
        "name",
        ["", "has space", "a..b", "/lead", "trail/", "a//b", "x~1", "x^", "a:b", "q?", "st*r", "br[", "back\\slash", "x.lock",
         "-x", "--output=/tmp/out"],
    )
    def test_invalid(self, name):
        with pytest.raises(InvalidInputError):
            validate_branch_name(name)


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


class TestCreateBranch:
    def test_create_empty(self, branches: BranchDirectory):
        b = branches.create_branch("r1", "main", is_default=True)
        assert b.name == "main"
        assert b.head_commit_digest is None
        assert b.is_default
        assert not b.is_protected

    def test_duplicate_is_conflict(self, branches: BranchDirectory):
        branches.create_branch("r1", "feature")
        with pytest.raises(ConflictError):
            branches.create_branch("r1", "feature")

    def test_same_name_in_other_repository(self, branches: BranchDirectory):
        branches.create_branch("r1", "feature")
        assert branches.create_branch("r2", "feature").repository_id == "r2"

    def test_from_branch_copies_head(self, branches: BranchDirectory):
        main = branches.create_branch("r1", "main", is_default=True)
        branches.update_head(main.id, D1, expected_head=None)
        feature = branches.create_branch("r1", "feature", "main")
        assert feature.head_commit_digest == D1

    def test_from_branch_without_commits(self, branches: BranchDirectory):
        branches.create_branch("r1", "main")
        assert branches.create_branch("r1", "feature", "main").head_commit_digest is None

    def test_from_missing_branch(self, branches: BranchDirectory):
        with pytest.raises(NotFoundError):
            branches.create_branch("r1", "feature", "nope")

    def test_invalid_name(self, branches: BranchDirectory):
        with pytest.raises(InvalidInputError):
            branches.create_branch("r1", "bad name")


class TestLookups:
    def test_get_missing(self, branches: BranchDirectory):
        with pytest.raises(NotFoundError):
            branches.get_branch("r1", "main")
        assert branches.find_branch("r1", "main") is None

    def test_list_default_first_then_newest(self, branches: BranchDirectory):
        branches.create_branch("r1", "a")
        branches.create_branch("r1", "main", is_default=True)
        branches.create_branch("r1", "b")
        branches.create_branch("r1", "c")
        assert [b.name for b in branches.list_branches("r1")] == ["main", "c", "b", "a"]

    def test_list_scoped_to_repository(self, branches: BranchDirectory):
        branches.create_branch("r1", "a")
        branches.create_branch("r2", "b")
        assert [b.name for b in branches.list_branches("r2")] == ["b"]


class TestDeleteBranch:
    def test_delete(self, branches: BranchDirectory):
        branches.create_branch("r1", "feature")
        branches.delete_branch("r1", "feature")
        assert branches.find_branch("r1", "feature") is None

    def test_default_cannot_be_deleted(self, branches: BranchDirectory):
        branches.create_branch("r1", "main", is_default=True)
        with pytest.raises(InvalidStateError):
            branches.delete_branch("r1", "main")
        assert branches.find_branch("r1", "main") is not None

    def test_protected_cannot_be_deleted(self, branches: BranchDirectory):
        branches.create_branch("r1", "release")
        branches.set_protected("r1", "release")
        with pytest.raises(InvalidStateError):
            branches.delete_branch("r1", "release")

        branches.set_protected("r1", "release", False)
        branches.delete_branch("r1", "release")

    def test_missing(self, branches: BranchDirectory):
        with pytest.raises(NotFoundError):
            branches.delete_branch("r1", "nope")


class TestUpdateHead:
    def test_advances(self, branches: BranchDirectory):
        b = branches.create_branch("r1", "main")
        b = branches.update_head(b.id, D1, expected_head=None)
        assert b.head_commit_digest == D1
        b = branches.update_head(b.id, D2, expected_head=D1)
        assert b.head_commit_digest == D2

    def test_stale_expected_head(self, branches: BranchDirectory):
        b = branches.create_branch("r1", "main")
        branches.update_head(b.id, D1, expected_head=None)
        with pytest.raises(ConflictError):
            branches.update_head(b.id, D2, expected_head=None)
        assert branches.get_branch("r1", "main").head_commit_digest == D1

    def test_invalid_digest(self, branches: BranchDirectory):
        b = branches.create_branch("r1", "main")
        with pytest.raises(InvalidInputError):
            branches.update_head(b.id, "nope", expected_head=None)

    def test_missing_branch(self, branches: BranchDirectory):
        with pytest.raises(NotFoundError):
            branches.update_head(999, D1, expected_head=None)

    def test_concurrent_swaps_from_same_head(self, branches: BranchDirectory):
        b = branches.create_branch("r1", "main")
        branches.update_head(b.id, D1, expected_head=None)

        barrier = threading.Barrier(2)
        outcomes: list[str] = []

        def swap(new: str) -> None:
            barrier.wait()
            try:
                branches.update_head(b.id, new, expected_head=D1)
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=swap, args=(d,)) for d in (D2, D3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["conflict", "ok"]


# ---------------------------------------------------------------------------
# Locks
# ---------------------------------------------------------------------------


class TestBranchLockManager:
    def test_reentrant(self):
        locks = BranchLockManager(timeout=1)
        with locks.hold("r1", "main") as outer:
            with locks.hold("r1", "main") as inner:
                assert inner.depth == 2
            assert outer.depth == 1
            assert locks.is_locked("r1", "main") is not None
        assert locks.is_locked("r1", "main") is None

    def test_independent_keys(self):
        locks = BranchLockManager(timeout=0.1)
        with locks.hold("r1", "main"):
            with locks.hold("r1", "feature"):
                pass
            with locks.hold("r2", "main"):
                pass

    def test_timeout_raises_conflict(self):
        locks = BranchLockManager(timeout=0.1)
        held = threading.Event()
        release = threading.Event()

        def holder() -> None:
            with locks.hold("r1", "main"):
                held.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        held.wait(5)
        try:
            with pytest.raises(ConflictError):
                with locks.hold("r1", "main"):
                    pass
        finally:
            release.set()
            t.join()

    def test_waiter_proceeds_after_release(self):
        locks = BranchLockManager(timeout=5)
        order: list[str] = []
        held = threading.Event()

        def holder() -> None:
            with locks.hold("r1", "main"):
                held.set()
                time.sleep(0.05)
                order.append("first")

        t = threading.Thread(target=holder)
        t.start()
        held.wait(5)
        with locks.hold("r1", "main"):
            order.append("second")
        t.join()
        assert order == ["first", "second"]

    def test_lock_info_to_dict(self):
        locks = BranchLockManager()
        with locks.hold("r1", "main") as info:
            data = info.to_dict()
        assert data["repository_id"] == "r1"
        assert data["branch"] == "main"
        assert data["owner"] == threading.get_ident()

    def test_regions_are_dropped_once_released(self):
        locks = BranchLockManager(timeout=1)
        with locks.hold("r1", "main"):
            with locks.hold("r1", "main"):
                assert len(locks) == 1
            with locks.hold("r1", "feature"):
                assert len(locks) == 2
        assert len(locks) == 0

    def test_region_dropped_after_timeout(self):
        locks = BranchLockManager(timeout=0.05)
        held = threading.Event()
        release = threading.Event()

        def holder() -> None:
            with locks.hold("r1", "main"):
                held.set()
                release.wait(5)

        t = threading.Thread(target=holder)
        t.start()
        held.wait(5)
        try:
            with pytest.raises(ConflictError):
                with locks.hold("r1", "main"):
                    pass
            assert len(locks) == 1
        finally:
            release.set()
            t.join()
        assert len(locks) == 0

    def test_deleted_branch_leaves_no_region(self, branches: BranchDirectory):
        for i in range(20):
            branches.create_branch("r1", f"topic-{i}")
            branches.delete_branch("r1", f"topic-{i}")
        assert len(branches.locks) == 0
