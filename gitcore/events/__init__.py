"""Activity tracking and event notification."""

from gitcore.events.activity import (
    ActivityEvent,
    ActivityFeed,
    ActivityType,
    ContributionGraph,
    DailyContribution,
)
from gitcore.events.emitter import (
    BRANCH_CREATED,
    BRANCH_DELETED,
    COMMIT_CREATED,
    PULL_REQUEST_CLOSED,
    PULL_REQUEST_CREATED,
    PULL_REQUEST_MERGED,
    EventEmitter,
)
from gitcore.events.notifications import ConsoleNotifier, NotificationProvider, WebhookNotifier

__all__ = [
    "ActivityEvent",
    "ActivityFeed",
    "ActivityType",
    "BRANCH_CREATED",
    "BRANCH_DELETED",
    "COMMIT_CREATED",
    "ConsoleNotifier",
    "ContributionGraph",
    "DailyContribution",
    "EventEmitter",
    "NotificationProvider",
    "PULL_REQUEST_CLOSED",
    "PULL_REQUEST_CREATED",
    "PULL_REQUEST_MERGED",
    "WebhookNotifier",
]
