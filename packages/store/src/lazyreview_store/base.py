"""Abstract offline queue interface.

The replay engine and the CLI depend on ActionQueue, not on SQLite, so the
persistence backend can change without touching either of them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lazyreview_store.models import ActionStatus, QueuedAction, QueuedActionInput


class ActionQueue(ABC):
    """Durable, ordered queue of pending review actions.

    Every mutating call must be durable before it returns: a crash right after
    enqueue(), remove() or mark_failed() must neither lose nor duplicate the
    effect. Implementations therefore never buffer writes.
    """

    @abstractmethod
    def enqueue(self, action: QueuedActionInput) -> QueuedAction:
        """Persist a new action and return it with its id and timestamp assigned.

        Local-only: works without network access. Raises QueueStorageError
        only when the write itself fails.
        """

    @abstractmethod
    def list_actions(
        self,
        owner: str | None = None,
        repo: str | None = None,
        pr_number: int | None = None,
        provider_type: str | None = None,
    ) -> list[QueuedAction]:
        """Return queued actions oldest first, optionally filtered by target PR.

        Returns an empty list when nothing matches — never raises for that.
        """

    @abstractmethod
    def get(self, action_id: str) -> QueuedAction | None:
        """Return one action by id, or None."""

    @abstractmethod
    def remove(self, action_id: str) -> None:
        """Delete an action. Removing an unknown id is a no-op."""

    @abstractmethod
    def mark_failed(self, action_id: str, error: str) -> None:
        """Record a failed replay attempt; the action stays queued for the next pass."""

    @abstractmethod
    def count(self, status: ActionStatus | None = None) -> int:
        """Return the number of queued actions, optionally of one status."""

    @abstractmethod
    def clear(self, status: ActionStatus | None = None) -> int:
        """Delete every action (or every action of one status) and return how many went."""

    def close(self) -> None:
        """Release any resources held by the queue (connections, file handles).

        Default is a no-op so callers can always call close() safely.
        """
