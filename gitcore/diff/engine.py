"""DiffEngine — best-effort comparison between two refs.

The engine never propagates a comparison failure: any error, including
a timed-out external tool, degrades to an empty result.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gitcore.diff.models import DiffResult

if TYPE_CHECKING:
    from gitcore.backends.base import VcsBackend

logger = logging.getLogger(__name__)


class DiffEngine:
    """Compare refs through a capability backend.

    Parameters
    ----------
    backend:
        Backend that performs the actual comparison.
    """

    def __init__(self, backend: VcsBackend) -> None:
        self.backend = backend

    def diff(self, repository_id: str, from_ref: str | None, to_ref: str | None) -> DiffResult:
        """Return the changes between *from_ref* and *to_ref*.

        Refs are branch names, commit digests, or None for the empty tree.
        """
        try:
            return self.backend.diff(repository_id, from_ref, to_ref)
        except Exception as exc:
            logger.warning(
                "Diff %s..%s in %s failed, returning empty result: %s",
                from_ref, to_ref, repository_id, exc,
            )
            return DiffResult.empty()
