"""EventEmitter — routes named events to notification providers."""

from __future__ import annotations

import logging
import time
from typing import Any

from gitcore.events.notifications import ConsoleNotifier, NotificationProvider

logger = logging.getLogger(__name__)

COMMIT_CREATED = "commit:created"
BRANCH_CREATED = "branch:created"
BRANCH_DELETED = "branch:deleted"
PULL_REQUEST_CREATED = "pull_request:created"
PULL_REQUEST_MERGED = "pull_request:merged"
PULL_REQUEST_CLOSED = "pull_request:closed"


class EventEmitter:
    """Dispatch events to all configured notification providers.

    Always includes a ConsoleNotifier as the default provider.  Emitting
    never raises.
    """

    def __init__(self, providers: list[NotificationProvider] | None = None) -> None:
        self._console = ConsoleNotifier()
        self._providers: list[NotificationProvider] = [self._console]
        if providers:
            self._providers.extend(providers)

    def add_provider(self, provider: NotificationProvider) -> None:
        """Register an additional notification provider."""
        self._providers.append(provider)

    @property
    def console(self) -> ConsoleNotifier:
        """Access the built-in console notifier (useful for testing)."""
        return self._console

    def emit(self, event_name: str, payload: dict[str, Any] | None = None) -> None:
        """Send *event_name* with *payload* to every available provider."""
        payload = dict(payload or {})
        event = {
            "event": event_name,
            "repository_id": payload.get("repository_id"),
            "payload": payload,
            "timestamp": time.time(),
        }
        self._dispatch(event)

    def _dispatch(self, event: dict[str, Any]) -> None:
        for provider in self._providers:
            try:
                if provider.is_available():
                    provider.notify(event)
            except Exception as exc:
                logger.warning(
                    "Notification provider %s failed: %s",
                    type(provider).__name__,
                    exc,
                )
