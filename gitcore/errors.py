"""Error kinds raised by the version-control core.

Every domain failure is a distinguishable subclass of
:class:`VersionControlError`; callers map them to responses without
inspecting messages.
"""

from __future__ import annotations


class VersionControlError(Exception):
    """Base class for all version-control errors."""


class NotFoundError(VersionControlError):
    """A repository, branch, commit, object, or pull request does not exist."""


class ConflictError(VersionControlError):
    """Duplicate name, or a branch head changed underneath the caller."""


class MergeConflictError(ConflictError):
    """Both sides of a merge changed the same paths differently."""

    def __init__(self, message: str, paths: list[str] | None = None) -> None:
        super().__init__(message)
        self.paths = list(paths or [])


class InvalidStateError(VersionControlError):
    """The operation is illegal in the entity's current state."""


class InvalidInputError(VersionControlError, ValueError):
    """The caller supplied malformed or contradictory arguments."""


class ExternalFailureError(VersionControlError):
    """An external tool (comparison, merge) is unavailable or failed."""


class GitCommandError(ExternalFailureError):
    """Raised when a git subprocess returns a non-zero exit code."""

    def __init__(self, message: str, command: list[str] | None = None, returncode: int | None = None) -> None:
        super().__init__(message)
        self.command = list(command or [])
        self.returncode = returncode


class IOFailureError(VersionControlError):
    """Reading or writing the working area failed."""
