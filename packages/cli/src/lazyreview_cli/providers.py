"""Builds provider adapters for a replay pass from config and resolved tokens."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from lazyreview_cli.auth import resolve_token
from lazyreview_core.config import default_host, find_provider
from lazyreview_core.errors import ProviderError
from lazyreview_core.providers.factory import create_provider

if TYPE_CHECKING:
    from lazyreview_core.providers.base import BaseProvider
    from lazyreview_store.secret_store import SecretStore

logger = logging.getLogger(__name__)


class ProviderPool:
    """Lazily creates one provider per type and closes them all afterwards.

    Used as the replay engine's resolver: a provider type with no token
    raises ProviderError, which the engine records against the first queued
    action of each affected PR.
    """

    def __init__(self, config: dict, secret_store: SecretStore | None):
        self._config = config
        self._secret_store = secret_store
        self._providers: dict[str, BaseProvider] = {}

    def __call__(self, provider_type: str) -> BaseProvider:
        if provider_type not in self._providers:
            self._providers[provider_type] = self._create(provider_type)
        return self._providers[provider_type]

    def _create(self, provider_type: str) -> BaseProvider:
        entry = find_provider(self._config, provider_type) or {}
        host = entry.get("host") or default_host(provider_type)
        token = resolve_token(provider_type, host, self._secret_store, token_env=entry.get("token_env"))
        if not token:
            raise ProviderError(
                f"No {provider_type} token found for {host}. "
                f"Run `lazyreview auth login --provider {provider_type}` first."
            )
        logger.debug("Creating %s provider for %s", provider_type, host)
        return create_provider(provider_type, token, host=host, base_url=entry.get("base_url"))

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.close()
        self._providers.clear()
