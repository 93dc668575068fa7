"""Single construction point for provider adapters.

Callers hold a ProviderType (from config or a queued action) and get back a
BaseProvider; nothing outside this module imports a concrete adapter.
"""

from __future__ import annotations

from lazyreview_core.errors import ConfigError
from lazyreview_core.models import ProviderType
from lazyreview_core.providers.azure import AzureDevOpsProvider
from lazyreview_core.providers.base import BaseProvider
from lazyreview_core.providers.bitbucket import BitbucketProvider
from lazyreview_core.providers.gitea import GiteaProvider
from lazyreview_core.providers.github import GitHubProvider
from lazyreview_core.providers.gitlab import GitLabProvider

_ADAPTERS: dict[ProviderType, type[BaseProvider]] = {
    ProviderType.GITHUB: GitHubProvider,
    ProviderType.GITLAB: GitLabProvider,
    ProviderType.BITBUCKET: BitbucketProvider,
    ProviderType.AZUREDEVOPS: AzureDevOpsProvider,
    ProviderType.GITEA: GiteaProvider,
}


def create_provider(
    provider_type: str | ProviderType,
    token: str,
    host: str | None = None,
    base_url: str | None = None,
) -> BaseProvider:
    try:
        kind = ProviderType(provider_type)
    except ValueError:
        raise ConfigError(f"Unsupported provider type: {provider_type!r}") from None
    return _ADAPTERS[kind](token, host=host, base_url=base_url)
