"""Replay queued review actions against live providers.

One pass works like this:

    queue.list_actions() → group by (provider, owner, repo, pr_number)
                         → per group, strictly in enqueue order:
                               success → queue.remove(id)
                               failure → queue.mark_failed(id, message), skip the rest of the group
                         → ReplaySummary

Groups are independent and run concurrently up to ``max_concurrency``.
Inside a group nothing runs out of order: once an action fails, the later
actions on that PR were written against a state that no longer holds, so
they wait for the next pass.

Provider failures are recorded per action and never escape the pass. Local
storage failures (QueueStorageError from remove/mark_failed, or a
SecretStoreError raised while resolving a provider token) do propagate,
since the queue or the secret store can no longer be trusted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Optional, Union

from lazyreview_core.errors import ProviderError
from lazyreview_store.errors import StoreError
from lazyreview_store.models import ActionKind, QueuedAction, ReplayError, ReplaySummary

if TYPE_CHECKING:
    from lazyreview_core.providers.base import BaseProvider
    from lazyreview_store.base import ActionQueue

logger = logging.getLogger(__name__)

_DEFAULT_MAX_CONCURRENCY = 4

ProviderResolver = Callable[[str], Optional["BaseProvider"]]


class QueueReplayEngine:
    """Drains an ActionQueue against providers, one PR group at a time.

    ``providers`` is either a mapping of provider type → provider or a
    callable returning the provider for a type (None when unconfigured).
    There is no retry or backoff inside a pass; callers decide when to run
    the next one. Passing ``max_attempts`` to replay() holds back every PR
    whose first action has already failed that many times.
    """

    def __init__(
        self,
        queue: ActionQueue,
        providers: Union[Mapping[str, BaseProvider], ProviderResolver],
        max_concurrency: int = _DEFAULT_MAX_CONCURRENCY,
    ):
        self._queue = queue
        self._resolve = providers.get if isinstance(providers, Mapping) else providers
        self._max_concurrency = max(1, max_concurrency)

    async def replay(
        self,
        owner: str | None = None,
        repo: str | None = None,
        pr_number: int | None = None,
        provider_type: str | None = None,
        max_attempts: int | None = None,
    ) -> ReplaySummary:
        actions = self._queue.list_actions(owner=owner, repo=repo, pr_number=pr_number, provider_type=provider_type)
        summary = ReplaySummary()
        if not actions:
            return summary

        groups: dict[tuple, list[QueuedAction]] = {}
        for action in actions:
            groups.setdefault(action.group_key, []).append(action)

        logger.info("Replaying %d queued action(s) across %d pull request(s)", len(actions), len(groups))

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(group: list[QueuedAction]) -> None:
            async with semaphore:
                await self._replay_group(group, summary, max_attempts)

        await asyncio.gather(*(_bounded(group) for group in groups.values()))

        logger.info(
            "Replay finished: %d succeeded, %d failed, %d skipped, %d held",
            summary.succeeded,
            summary.failed,
            summary.skipped,
            summary.held,
        )
        return summary

    async def _replay_group(
        self, group: list[QueuedAction], summary: ReplaySummary, max_attempts: int | None = None
    ) -> None:
        head = group[0]
        if max_attempts is not None and head.attempts >= max_attempts:
            logger.info(
                "Holding %d action(s) on %s: %s already failed %d time(s)",
                len(group),
                head.target,
                head.kind.value,
                head.attempts,
            )
            summary.held += len(group)
            return

        provider = None
        for index, action in enumerate(group):
            try:
                if provider is None:
                    provider = self._provider_for(action.provider_type)
                await self._apply(provider, action)
            except StoreError:
                raise
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.warning("Replay of %s on %s failed: %s", action.kind.value, action.target, message)
                self._queue.mark_failed(action.id, message)
                summary.failed += 1
                summary.errors.append(
                    ReplayError(
                        action_id=action.id,
                        provider_type=action.provider_type,
                        owner=action.owner,
                        repo=action.repo,
                        pr_number=action.pr_number,
                        kind=action.kind,
                        message=message,
                        attempts=action.attempts + 1,
                    )
                )
                remaining = len(group) - index - 1
                if remaining:
                    logger.info("Skipping %d later action(s) on %s until the next pass", remaining, action.target)
                summary.skipped += remaining
                return

            self._queue.remove(action.id)
            summary.succeeded += 1

    def _provider_for(self, provider_type: str) -> BaseProvider:
        provider = self._resolve(provider_type)
        if provider is None:
            raise ProviderError(f"No {provider_type} provider is configured")
        return provider

    @staticmethod
    async def _apply(provider: BaseProvider, action: QueuedAction) -> None:
        target = (action.owner, action.repo, action.pr_number)
        payload = action.payload

        if action.kind == ActionKind.COMMENT:
            await provider.create_comment(*target, payload)
        elif action.kind == ActionKind.APPROVE:
            await provider.approve_review(*target, payload.body)
        elif action.kind == ActionKind.REQUEST_CHANGES:
            await provider.request_changes(*target, payload.body)
        elif action.kind == ActionKind.REVIEW:
            await provider.create_review(*target, payload)
        else:
            raise ValueError(f"Unknown action kind: {action.kind}")
