"""gitcore — version-control domain core for a hosted collaboration service."""

__version__ = "0.1.0"

from gitcore.errors import (
    ConflictError,
    ExternalFailureError,
    InvalidInputError,
    InvalidStateError,
    IOFailureError,
    MergeConflictError,
    NotFoundError,
    VersionControlError,
)
from gitcore.service import VersionControlService
from gitcore.settings import Settings, load_settings

__all__ = [
    "ConflictError",
    "ExternalFailureError",
    "IOFailureError",
    "InvalidInputError",
    "InvalidStateError",
    "MergeConflictError",
    "NotFoundError",
    "Settings",
    "VersionControlError",
    "VersionControlService",
    "load_settings",
]
