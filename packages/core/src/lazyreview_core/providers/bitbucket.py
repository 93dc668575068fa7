from __future__ import annotations

import logging

from lazyreview_core.errors import ProviderError
from lazyreview_core.models import CommentPayload, PullRequest, ReviewEvent, ReviewPayload
from lazyreview_core.providers.rest import RestProvider

logger = logging.getLogger(__name__)

_STATE_MAP = {"open": "OPEN", "merged": "MERGED", "closed": "DECLINED"}


class BitbucketProvider(RestProvider):
    """Bitbucket Cloud through the 2.0 REST API. ``owner`` is the workspace slug."""

    provider_type = "bitbucket"

    def __init__(self, token: str, host: str | None = None, base_url: str | None = None, transport=None):
        super().__init__(
            base_url or "https://api.bitbucket.org/2.0",
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
        )

    @staticmethod
    def _pr_path(owner: str, repo: str, number: int | None = None) -> str:
        path = f"/repositories/{owner}/{repo}/pullrequests"
        return path if number is None else f"{path}/{number}"

    async def list_pull_requests(self, owner: str, repo: str, state: str = "open") -> list[PullRequest]:
        params = {"state": _STATE_MAP.get(state, state.upper())}
        data = await self._get_json(self._pr_path(owner, repo), params=params)
        return [
            PullRequest(
                number=pr["id"],
                title=pr.get("title") or "",
                author=(pr.get("author") or {}).get("display_name", ""),
                state=pr.get("state", ""),
                url=((pr.get("links") or {}).get("html") or {}).get("href", ""),
                head_sha=((pr.get("source") or {}).get("commit") or {}).get("hash", ""),
                source_branch=((pr.get("source") or {}).get("branch") or {}).get("name", ""),
                target_branch=((pr.get("destination") or {}).get("branch") or {}).get("name", ""),
                draft=bool(pr.get("draft")),
            )
            for pr in data.get("values", [])
        ]

    async def get_pull_request_diff(self, owner: str, repo: str, number: int) -> str:
        # The diff endpoint answers with a redirect to the repository diff URL.
        return await self._get_text(f"{self._pr_path(owner, repo, number)}/diff", follow_redirects=True)

    async def validate_token(self) -> bool:
        return await self._validate("/user")

    async def create_comment(self, owner: str, repo: str, number: int, comment: CommentPayload) -> None:
        payload = {"content": {"raw": comment.body}}
        if comment.is_inline:
            payload["inline"] = {"path": comment.path, "to": comment.line}
        await self._post(f"{self._pr_path(owner, repo, number)}/comments", json=payload)

    async def approve_review(self, owner: str, repo: str, number: int, body: str | None = None) -> None:
        await self._verdict(owner, repo, number, "approve")
        if body:
            await self.create_comment(owner, repo, number, CommentPayload(body=body))

    async def request_changes(self, owner: str, repo: str, number: int, body: str | None = None) -> None:
        await self._verdict(owner, repo, number, "request-changes")
        if body:
            await self.create_comment(owner, repo, number, CommentPayload(body=body))

    async def create_review(self, owner: str, repo: str, number: int, review: ReviewPayload) -> None:
        # Verdict first: it can be repeated safely, the comments cannot.
        if review.event == ReviewEvent.APPROVE:
            await self._verdict(owner, repo, number, "approve")
        elif review.event == ReviewEvent.REQUEST_CHANGES:
            await self._verdict(owner, repo, number, "request-changes")

        for comment in review.comments:
            await self.create_comment(owner, repo, number, comment)
        if review.body:
            await self.create_comment(owner, repo, number, CommentPayload(body=review.body))

    async def _verdict(self, owner: str, repo: str, number: int, action: str) -> None:
        try:
            await self._post(f"{self._pr_path(owner, repo, number)}/{action}")
        except ProviderError as e:
            # 409: this user already gave the same verdict.
            if e.status_code != 409:
                raise
            logger.debug("Bitbucket %s on %s/%s#%d already recorded", action, owner, repo, number)
