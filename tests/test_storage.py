"""Tests for storage collaborators and scoped working areas."""

from __future__ import annotations

from pathlib import Path

import pytest

from gitcore.errors import InvalidInputError, NotFoundError
from gitcore.storage import LocalStorage, MemoryStorage, collect_files, working_area


@pytest.fixture(params=["local", "memory"])
def storage(request, tmp_path: Path):
    if request.param == "local":
        return LocalStorage(tmp_path)
    return MemoryStorage()


# ---------------------------------------------------------------------------
# Storage contract
# ---------------------------------------------------------------------------


class TestStorage:
    def test_save_and_read(self, storage):
        storage.save("docs/readme.md", "hello", "r1")
        assert storage.read("docs/readme.md", "r1") == b"hello"
        assert storage.read_text("docs/readme.md", "r1") == "hello"

    def test_bytes_content(self, storage):
        storage.save("bin", b"\x00\x01", "r1")
        assert storage.read("bin", "r1") == b"\x00\x01"

    @pytest.mark.parametrize("content", [3, None, ["x"]])
    def test_content_must_be_text_or_bytes(self, storage, content):
        with pytest.raises(InvalidInputError):
            storage.save("d/a.txt", content, "r1")
        assert storage.list("d", "r1") == []

    def test_read_missing(self, storage):
        with pytest.raises(NotFoundError):
            storage.read("nope.txt", "r1")

    def test_repositories_are_isolated(self, storage):
        storage.save("a.txt", "1", "r1")
        with pytest.raises(NotFoundError):
            storage.read("a.txt", "r2")

    def test_delete_missing_is_noop(self, storage):
        storage.delete("nope.txt", "r1")

    def test_list(self, storage):
        storage.save("d/b.txt", "b", "r1")
        storage.save("d/a.txt", "a", "r1")
        storage.save("d/sub/c.txt", "c", "r1")
        assert storage.list("d", "r1") == ["a.txt", "b.txt", "sub"]
        assert storage.is_dir("d/sub", "r1")
        assert not storage.is_dir("d/a.txt", "r1")

    def test_list_missing_directory(self, storage):
        assert storage.list("nowhere", "r1") == []

    def test_delete_tree(self, storage):
        storage.save("tmp/x/a.txt", "a", "r1")
        storage.save("keep.txt", "k", "r1")
        storage.delete_tree("tmp", "r1")
        assert storage.list("tmp", "r1") == []
        assert storage.read("keep.txt", "r1") == b"k"

    def test_delete_tree_missing_is_noop(self, storage):
        storage.delete_tree("nowhere", "r1")

    def test_delete_tree_refuses_root(self, storage):
        with pytest.raises(InvalidInputError):
            storage.delete_tree("", "r1")

    @pytest.mark.parametrize("path", ["../outside.txt", "a/../../outside.txt"])
    def test_traversal_rejected(self, storage, path):
        with pytest.raises(InvalidInputError):
            storage.save(path, "x", "r1")


class TestLocalStorage:
    def test_layout(self, tmp_path: Path):
        storage = LocalStorage(tmp_path)
        storage.save("a.txt", "1", "r1")
        assert (tmp_path / "repos" / "r1" / "a.txt").read_text() == "1"

    @pytest.mark.parametrize("repository_id", ["", "..", "a/b"])
    def test_invalid_repository_id(self, tmp_path: Path, repository_id):
        with pytest.raises(InvalidInputError):
            LocalStorage(tmp_path).save("a.txt", "1", repository_id)


# ---------------------------------------------------------------------------
# Working areas
# ---------------------------------------------------------------------------


class TestWorkingArea:
    def test_populated_and_collected(self, storage):
        files = [("a.txt", "1"), ("src/m.py", "m"), ("src/pkg/x.py", b"x")]
        with working_area(storage, "r1", files) as area:
            assert area.root.startswith("worktrees/")
            collected = dict(collect_files(area))
        assert collected == {"a.txt": b"1", "src/m.py": b"m", "src/pkg/x.py": b"x"}

    def test_removed_after_success(self, storage):
        with working_area(storage, "r1", [("a.txt", "1")]) as area:
            root = area.root
        assert storage.list(root, "r1") == []
        assert storage.list("worktrees", "r1") == []

    def test_removed_after_error(self, storage):
        with pytest.raises(RuntimeError):
            with working_area(storage, "r1", [("a.txt", "1")]) as area:
                root = area.root
                raise RuntimeError("hashing failed")
        assert storage.list(root, "r1") == []

    def test_areas_are_distinct(self, storage):
        with working_area(storage, "r1") as first, working_area(storage, "r1") as second:
            assert first.root != second.root

    def test_empty_area(self, storage):
        with working_area(storage, "r1") as area:
            assert collect_files(area) == []
