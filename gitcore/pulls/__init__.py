"""Pull requests — models, persistence and the open/merged/closed state machine."""

from gitcore.pulls.machine import PullRequestStateMachine
from gitcore.pulls.models import TRANSITIONS, PullRequest, PullRequestStatus, can_transition
from gitcore.pulls.store import PullRequestStore

__all__ = [
    "PullRequest",
    "PullRequestStateMachine",
    "PullRequestStatus",
    "PullRequestStore",
    "TRANSITIONS",
    "can_transition",
]
