"""Offline queue data models.

The payload types come from lazyreview_core so that a queued action replays
through the provider interface with exactly the object it was enqueued with.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from lazyreview_core.models import ApprovePayload, CommentPayload, RequestChangesPayload, ReviewPayload

ActionPayload = Union[CommentPayload, ApprovePayload, RequestChangesPayload, ReviewPayload]


class ActionKind(str, Enum):
    COMMENT = "comment"
    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"
    REVIEW = "review"


class ActionStatus(str, Enum):
    PENDING = "pending"
    FAILED = "failed"


PAYLOAD_TYPES: dict[ActionKind, type] = {
    ActionKind.COMMENT: CommentPayload,
    ActionKind.APPROVE: ApprovePayload,
    ActionKind.REQUEST_CHANGES: RequestChangesPayload,
    ActionKind.REVIEW: ReviewPayload,
}


@dataclass
class QueuedActionInput:
    """What the caller supplies to ActionQueue.enqueue()."""

    provider_type: str
    owner: str
    repo: str
    pr_number: int
    kind: ActionKind
    payload: ActionPayload

    def __post_init__(self):
        self.kind = ActionKind(self.kind)
        expected = PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, expected):
            raise TypeError(f"{self.kind.value} actions need a {expected.__name__}, got {type(self.payload).__name__}")


@dataclass
class QueuedAction:
    """A pending provider-side mutation persisted in the queue."""

    id: str
    provider_type: str
    owner: str
    repo: str
    pr_number: int
    kind: ActionKind
    payload: ActionPayload
    enqueued_at: str  # ISO-8601 UTC timestamp
    status: ActionStatus = ActionStatus.PENDING
    last_error: str | None = None
    attempts: int = 0
    last_attempt_at: str | None = None

    @property
    def group_key(self) -> tuple[str, str, str, int]:
        """Replay ordering scope: actions sharing this key are applied strictly in order."""
        return (self.provider_type, self.owner, self.repo, self.pr_number)

    @property
    def target(self) -> str:
        return f"{self.owner}/{self.repo}#{self.pr_number}"


@dataclass
class ReplayError:
    action_id: str
    provider_type: str
    owner: str
    repo: str
    pr_number: int
    kind: ActionKind
    message: str
    attempts: int = 1


@dataclass
class ReplaySummary:
    """Outcome of one replay pass.

    ``skipped`` counts actions left untouched because an earlier action on
    the same PR failed during this pass. ``held`` counts actions not tried
    at all because their PR's first action already used up its attempts.
    """

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    held: int = 0
    errors: list[ReplayError] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped + self.held
