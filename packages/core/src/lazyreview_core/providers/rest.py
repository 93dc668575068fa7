"""Shared plumbing for the httpx-based REST adapters.

GitLab, Gitea, Bitbucket and Azure DevOps have no maintained async SDK, so
each adapter talks to the REST API directly through one httpx.AsyncClient.
This base owns the client lifecycle, the request helper and the mapping of
HTTP/transport failures onto ProviderError; subclasses only describe
endpoints and payload shapes.
"""

from __future__ import annotations

import logging

import httpx

from lazyreview_core.errors import ProviderError
from lazyreview_core.providers.base import BaseProvider

logger = logging.getLogger(__name__)

_TIMEOUT = 30.0
_USER_AGENT = "lazyreview"


class RestProvider(BaseProvider):
    def __init__(self, base_url: str, headers: dict | None = None, auth=None, transport=None):
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": _USER_AGENT, "Accept": "application/json", **(headers or {})},
            auth=auth,
            timeout=_TIMEOUT,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.provider_type} request {method} {path} failed: {e}") from e

        if resp.is_error:
            raise ProviderError(
                f"{self.provider_type} API error {resp.status_code} on {method} {path}: {_error_detail(resp)}",
                status_code=resp.status_code,
            )
        logger.debug("%s %s %s -> %d", self.provider_type, method, path, resp.status_code)
        return resp

    async def _get_json(self, path: str, **kwargs):
        return (await self._request("GET", path, **kwargs)).json()

    async def _get_text(self, path: str, **kwargs) -> str:
        return (await self._request("GET", path, **kwargs)).text

    async def _post(self, path: str, json=None, **kwargs) -> httpx.Response:
        return await self._request("POST", path, json=json, **kwargs)

    async def _validate(self, path: str, **kwargs) -> bool:
        try:
            await self._request("GET", path, **kwargs)
        except ProviderError as e:
            logger.debug("%s token validation failed: %s", self.provider_type, e)
            return False
        return True


def _error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(data, dict):
        for key in ("message", "error", "error_description"):
            value = data.get(key)
            if isinstance(value, dict):
                value = value.get("message")
            if value:
                return str(value)
    return str(data)[:200]
