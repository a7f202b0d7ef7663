"""Content-addressed object model — hashing, trees, commits, and storage."""

from gitcore.objects.commit import Author, Commit, create_commit, parse_commit, serialize_commit
from gitcore.objects.hasher import Digest, Hasher, is_digest
from gitcore.objects.store import CommitRecord, ObjectStore
from gitcore.objects.tree import (
    EntryKind,
    ObjectKind,
    Tree,
    TreeEntry,
    assemble_tree,
    build_tree,
    build_tree_from_directory,
    parse_tree,
)

__all__ = [
    "Author",
    "Commit",
    "CommitRecord",
    "Digest",
    "EntryKind",
    "Hasher",
    "ObjectKind",
    "ObjectStore",
    "Tree",
    "TreeEntry",
    "assemble_tree",
    "build_tree",
    "build_tree_from_directory",
    "create_commit",
    "is_digest",
    "parse_commit",
    "parse_tree",
    "serialize_commit",
]
