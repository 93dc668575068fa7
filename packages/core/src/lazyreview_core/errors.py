"""Exceptions shared by the core package.

Provider adapters raise ProviderError for every failed remote call so callers
(the replay engine in particular) can treat any host uniformly.
"""

from __future__ import annotations


class LazyReviewError(Exception):
    """Base class for all lazyreview_core errors."""


class ConfigError(LazyReviewError):
    """Raised when the configuration file or a provider entry is invalid."""


class ProviderError(LazyReviewError):
    """A provider API call failed.

    ``status_code`` is set when the failure came back as an HTTP response;
    it is None for transport errors (DNS, timeouts, connection resets).
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
