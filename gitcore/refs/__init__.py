"""Branch heads — the branch directory and its single-writer regions."""

from gitcore.refs.branches import Branch, BranchDirectory, validate_branch_name
from gitcore.refs.locking import BranchLockManager, LockInfo

__all__ = [
    "Branch",
    "BranchDirectory",
    "BranchLockManager",
    "LockInfo",
    "validate_branch_name",
]
