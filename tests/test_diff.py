"""Tests for the diff engine — stat parsing, structural diff, degrade-to-empty."""

from __future__ import annotations

import pytest

from gitcore.backends import VcsBackend
from gitcore.database import Database
from gitcore.diff import (
    ChangeStatus,
    DiffEngine,
    DiffResult,
    FileChange,
    count_line_changes,
    diff_trees,
    parse_diff_stat,
)
from gitcore.errors import ExternalFailureError
from gitcore.objects import ObjectStore, build_tree


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestDiffResult:
    def test_empty(self):
        result = DiffResult.empty()
        assert result.files == []
        assert result.stats.additions == 0
        assert result.stats.deletions == 0
        assert result.is_empty

    def test_from_files_sums_and_sorts(self):
        result = DiffResult.from_files([
            FileChange(path="b.txt", additions=2, deletions=1),
            FileChange(path="a.txt", additions=3, deletions=0),
        ])
        assert [f.path for f in result.files] == ["a.txt", "b.txt"]
        assert result.stats.additions == 5
        assert result.stats.deletions == 1

    def test_json_shape(self):
        data = DiffResult.from_files([FileChange(path="a", additions=1)]).model_dump(mode="json")
        assert data == {
            "files": [{"path": "a", "additions": 1, "deletions": 0, "status": "modified"}],
            "stats": {"additions": 1, "deletions": 0},
        }


# ---------------------------------------------------------------------------
# --stat parser
# ---------------------------------------------------------------------------


class TestParseDiffStat:
    def test_parses_lines(self):
        text = (
            " README.md      | 3 ++-\n"
            " src/main.py    | 5 +++++\n"
            " old.txt        | 2 --\n"
            " 3 files changed, 7 insertions(+), 3 deletions(-)\n"
        )
        result = parse_diff_stat(text)
        by_path = {f.path: f for f in result.files}
        assert by_path["README.md"].additions == 2
        assert by_path["README.md"].deletions == 1
        assert by_path["src/main.py"].additions == 5
        assert by_path["old.txt"].deletions == 2
        assert result.stats.additions == 7
        assert result.stats.deletions == 3

    def test_skips_unparseable_lines(self):
        text = " logo.png | Bin 0 -> 1024 bytes\ngarbage\n\n a.txt | 1 +\n"
        result = parse_diff_stat(text)
        assert [f.path for f in result.files] == ["a.txt"]

    def test_empty_output(self):
        assert parse_diff_stat("").is_empty


# ---------------------------------------------------------------------------
# Line counting
# ---------------------------------------------------------------------------


class TestCountLineChanges:
    def test_added_file(self):
        assert count_line_changes(None, b"a\nb\nc\n") == (3, 0)

    def test_removed_file(self):
        assert count_line_changes(b"a\nb\n", None) == (0, 2)

    def test_modified_line(self):
        assert count_line_changes(b"a\nb\nc\n", b"a\nB\nc\n") == (1, 1)

    def test_insertion(self):
        assert count_line_changes(b"a\nc\n", b"a\nb\nc\n") == (1, 0)

    def test_identical(self):
        assert count_line_changes(b"same\n", b"same\n") == (0, 0)

    def test_binary_counts_zero(self):
        assert count_line_changes(b"\x00\x01", b"\x00\x02") == (0, 0)
        assert count_line_changes(None, b"\xff\xfe\xfd") == (0, 0)


# ---------------------------------------------------------------------------
# Structural diff
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> ObjectStore:
    return ObjectStore(Database(":memory:"))


def _tree(store: ObjectStore, files: list[tuple[str, str]]) -> str:
    return build_tree(files, store.writer("r1"))[0]


class TestDiffTrees:
    def test_identical_trees(self, store: ObjectStore):
        t = _tree(store, [("a.txt", "x")])
        assert diff_trees(store, "r1", t, t).is_empty

    def test_from_empty(self, store: ObjectStore):
        t = _tree(store, [("a.txt", "1\n2\n"), ("d/b.txt", "x\n")])
        result = diff_trees(store, "r1", None, t)
        assert {f.path: f.status for f in result.files} == {
            "a.txt": ChangeStatus.ADDED,
            "d/b.txt": ChangeStatus.ADDED,
        }
        assert result.stats.additions == 3

    def test_to_empty(self, store: ObjectStore):
        t = _tree(store, [("a.txt", "1\n")])
        result = diff_trees(store, "r1", t, None)
        assert result.files[0].status is ChangeStatus.REMOVED
        assert result.stats.deletions == 1

    def test_added_removed_modified(self, store: ObjectStore):
        old = _tree(store, [("keep.txt", "k\n"), ("gone.txt", "g\n"), ("src/m.py", "a\nb\n")])
        new = _tree(store, [("keep.txt", "k\n"), ("new.txt", "n\n"), ("src/m.py", "a\nc\n")])
        result = diff_trees(store, "r1", old, new)

        by_path = {f.path: f for f in result.files}
        assert set(by_path) == {"gone.txt", "new.txt", "src/m.py"}
        assert by_path["gone.txt"].status is ChangeStatus.REMOVED
        assert by_path["new.txt"].status is ChangeStatus.ADDED
        assert by_path["src/m.py"].status is ChangeStatus.MODIFIED
        assert (by_path["src/m.py"].additions, by_path["src/m.py"].deletions) == (1, 1)

    def test_file_replaced_by_directory(self, store: ObjectStore):
        old = _tree(store, [("a", "file\n")])
        new = _tree(store, [("a/b.txt", "nested\n")])
        result = diff_trees(store, "r1", old, new)
        assert {f.path: f.status for f in result.files} == {
            "a": ChangeStatus.REMOVED,
            "a/b.txt": ChangeStatus.ADDED,
        }

    def test_unchanged_subtree_skipped(self, store: ObjectStore):
        old = _tree(store, [("lib/x.py", "x\n"), ("a.txt", "1\n")])
        new = _tree(store, [("lib/x.py", "x\n"), ("a.txt", "2\n")])
        assert [f.path for f in diff_trees(store, "r1", old, new).files] == ["a.txt"]


# ---------------------------------------------------------------------------
# Engine failure policy
# ---------------------------------------------------------------------------


class _FailingBackend(VcsBackend):
    name = "failing"

    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    def is_available(self) -> bool:
        return False

    def diff(self, repository_id, from_ref, to_ref):
        raise self.exc

    def merge(self, repository_id, source, target, *, author, message=None, timestamp=None):
        raise self.exc

    def list_branches(self, repository_id):
        raise self.exc

    def checkout(self, repository_id, ref):
        raise self.exc


class TestDiffEngine:
    @pytest.mark.parametrize(
        "exc",
        [ExternalFailureError("git missing"), TimeoutError("slow"), RuntimeError("boom")],
    )
    def test_failure_degrades_to_empty(self, exc):
        result = DiffEngine(_FailingBackend(exc)).diff("r1", "main", "feature")
        assert result.files == []
        assert result.stats.additions == 0
        assert result.stats.deletions == 0

    def test_failure_is_logged(self, caplog):
        with caplog.at_level("WARNING", logger="gitcore.diff.engine"):
            DiffEngine(_FailingBackend(RuntimeError("boom"))).diff("r1", None, None)
        assert "boom" in caplog.text
