"""Notification providers — console and webhook."""

from __future__ import annotations

import abc
import logging
from typing import Any

import requests

logger = logging.getLogger(__name__)


class NotificationProvider(abc.ABC):
    """Abstract notification provider."""

    @abc.abstractmethod
    def notify(self, event: dict[str, Any]) -> bool:
        """Send a notification about an event.

        Parameters
        ----------
        event:
            Event dict with keys: event, repository_id, payload, timestamp.

        Returns True if notification was sent successfully.
        """

    @abc.abstractmethod
    def is_available(self) -> bool:
        """Return True if provider is ready to send."""


class ConsoleNotifier(NotificationProvider):
    """Always-available console/log notification provider."""

    def __init__(self) -> None:
        self._log: list[dict[str, Any]] = []

    def notify(self, event: dict[str, Any]) -> bool:
        self._log.append(event)
        logger.info("[gitcore] %s", _format_event(event))
        return True

    def is_available(self) -> bool:
        return True

    @property
    def log(self) -> list[dict[str, Any]]:
        """Access the in-memory log for testing."""
        return list(self._log)


class WebhookNotifier(NotificationProvider):
    """POSTs every event as JSON to a webhook URL. Optional."""

    def __init__(self, webhook_url: str | None = None, timeout: float = 10) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout

    def is_available(self) -> bool:
        return bool(self._webhook_url)

    def notify(self, event: dict[str, Any]) -> bool:
        if not self.is_available():
            logger.warning("Webhook notifier unavailable, skipping.")
            return False

        try:
            payload = {"text": _format_event(event), "event": event}
            resp = requests.post(self._webhook_url, json=payload, timeout=self._timeout)
            return resp.status_code in (200, 201, 202, 204)
        except requests.RequestException as exc:
            logger.warning("Webhook notification failed: %s", exc)
            return False


def _format_event(event: dict[str, Any]) -> str:
    """Format an event dict into a readable notification message."""
    name = event.get("event", "unknown")
    payload = event.get("payload") or {}

    parts = [name]
    if event.get("repository_id"):
        parts.append(f"in {event['repository_id']}")
    if payload.get("branch"):
        parts.append(f"(branch: {payload['branch']})")
    if payload.get("number") is not None:
        parts.append(f"#{payload['number']}")
    if payload.get("digest"):
        parts.append(payload["digest"][:7])
    return " ".join(parts)
