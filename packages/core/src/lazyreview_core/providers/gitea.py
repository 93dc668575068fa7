from __future__ import annotations

from lazyreview_core.models import CommentPayload, PullRequest, ReviewEvent, ReviewPayload
from lazyreview_core.providers.rest import RestProvider

# Gitea spells the approve verdict differently from GitHub.
_EVENT_MAP = {
    ReviewEvent.COMMENT: "COMMENT",
    ReviewEvent.APPROVE: "APPROVED",
    ReviewEvent.REQUEST_CHANGES: "REQUEST_CHANGES",
}


class GiteaProvider(RestProvider):
    """Gitea / Forgejo through the v1 REST API."""

    provider_type = "gitea"

    def __init__(self, token: str, host: str | None = None, base_url: str | None = None, transport=None):
        super().__init__(
            base_url or f"https://{host or 'gitea.com'}/api/v1",
            headers={"Authorization": f"token {token}"},
            transport=transport,
        )

    async def list_pull_requests(self, owner: str, repo: str, state: str = "open") -> list[PullRequest]:
        data = await self._get_json(f"/repos/{owner}/{repo}/pulls", params={"state": state})
        return [
            PullRequest(
                number=pr["number"],
                title=pr.get("title") or "",
                author=(pr.get("user") or {}).get("login", ""),
                state=pr.get("state", ""),
                url=pr.get("html_url") or "",
                head_sha=(pr.get("head") or {}).get("sha", ""),
                source_branch=(pr.get("head") or {}).get("ref", ""),
                target_branch=(pr.get("base") or {}).get("ref", ""),
                draft=bool(pr.get("draft")),
            )
            for pr in data
        ]

    async def get_pull_request_diff(self, owner: str, repo: str, number: int) -> str:
        return await self._get_text(f"/repos/{owner}/{repo}/pulls/{number}.diff")

    async def validate_token(self) -> bool:
        return await self._validate("/user")

    async def create_comment(self, owner: str, repo: str, number: int, comment: CommentPayload) -> None:
        if comment.is_inline:
            # Gitea only accepts line comments as part of a review.
            await self._submit_review(owner, repo, number, "COMMENT", "", [comment])
        else:
            await self._post(f"/repos/{owner}/{repo}/issues/{number}/comments", json={"body": comment.body})

    async def approve_review(self, owner: str, repo: str, number: int, body: str | None = None) -> None:
        await self._submit_review(owner, repo, number, "APPROVED", body or "", [])

    async def request_changes(self, owner: str, repo: str, number: int, body: str | None = None) -> None:
        await self._submit_review(owner, repo, number, "REQUEST_CHANGES", body or "Changes requested.", [])

    async def create_review(self, owner: str, repo: str, number: int, review: ReviewPayload) -> None:
        await self._submit_review(owner, repo, number, _EVENT_MAP[review.event], review.body, review.comments)

    async def _submit_review(
        self, owner: str, repo: str, number: int, event: str, body: str, comments: list[CommentPayload]
    ) -> None:
        await self._post(
            f"/repos/{owner}/{repo}/pulls/{number}/reviews",
            json={
                "event": event,
                "body": body,
                "comments": [{"path": c.path, "body": c.body, "new_position": c.line} for c in comments],
            },
        )
