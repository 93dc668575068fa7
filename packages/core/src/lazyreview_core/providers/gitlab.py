from __future__ import annotations

import logging
from urllib.parse import quote

from lazyreview_core.errors import ProviderError
from lazyreview_core.models import CommentPayload, PullRequest, ReviewEvent, ReviewPayload
from lazyreview_core.providers.rest import RestProvider

logger = logging.getLogger(__name__)

# GitLab calls pull requests "merge requests" and uses different state names.
_STATE_MAP = {"open": "opened", "closed": "closed", "merged": "merged", "all": "all"}


class GitLabProvider(RestProvider):
    """GitLab (gitlab.com or self-managed) through the v4 REST API.

    The PR number is the merge request IID. GitLab has no "request changes"
    verdict, so request_changes revokes any approval the current user has
    given and then posts the message as a note. Approval state is always
    settled before notes are written, and approving an MR the user already
    approved is a no-op, so replaying a half-applied action never posts a
    note twice.
    """

    provider_type = "gitlab"

    def __init__(self, token: str, host: str | None = None, base_url: str | None = None, transport=None):
        super().__init__(
            base_url or f"https://{host or 'gitlab.com'}/api/v4",
            headers={"PRIVATE-TOKEN": token},
            transport=transport,
        )

    @staticmethod
    def _mr_path(owner: str, repo: str, number: int | None = None) -> str:
        project = quote(f"{owner}/{repo}", safe="")
        path = f"/projects/{project}/merge_requests"
        return path if number is None else f"{path}/{number}"

    async def list_pull_requests(self, owner: str, repo: str, state: str = "open") -> list[PullRequest]:
        data = await self._get_json(self._mr_path(owner, repo), params={"state": _STATE_MAP.get(state, state)})
        return [
            PullRequest(
                number=mr["iid"],
                title=mr.get("title") or "",
                author=(mr.get("author") or {}).get("username", ""),
                state=mr.get("state", ""),
                url=mr.get("web_url") or "",
                head_sha=mr.get("sha") or "",
                source_branch=mr.get("source_branch") or "",
                target_branch=mr.get("target_branch") or "",
                draft=bool(mr.get("draft") or mr.get("work_in_progress")),
            )
            for mr in data
        ]

    async def get_pull_request_diff(self, owner: str, repo: str, number: int) -> str:
        data = await self._get_json(f"{self._mr_path(owner, repo, number)}/changes")
        parts = []
        for change in data.get("changes", []):
            parts.append(f"diff --git a/{change['old_path']} b/{change['new_path']}\n")
            parts.append(change.get("diff") or "")
        return "".join(parts)

    async def validate_token(self) -> bool:
        return await self._validate("/user")

    async def create_comment(self, owner: str, repo: str, number: int, comment: CommentPayload) -> None:
        mr_path = self._mr_path(owner, repo, number)
        if not comment.is_inline:
            await self._post(f"{mr_path}/notes", json={"body": comment.body})
            return
        position = await self._position(mr_path, comment)
        await self._post(f"{mr_path}/discussions", json={"body": comment.body, "position": position})

    async def approve_review(self, owner: str, repo: str, number: int, body: str | None = None) -> None:
        mr_path = self._mr_path(owner, repo, number)
        await self._approve(mr_path)
        if body:
            await self._post(f"{mr_path}/notes", json={"body": body})

    async def request_changes(self, owner: str, repo: str, number: int, body: str | None = None) -> None:
        mr_path = self._mr_path(owner, repo, number)
        await self._unapprove(mr_path)
        await self._post(f"{mr_path}/notes", json={"body": body or "Changes requested."})

    async def create_review(self, owner: str, repo: str, number: int, review: ReviewPayload) -> None:
        mr_path = self._mr_path(owner, repo, number)
        # Approval state first: it can be reapplied, notes and discussions cannot.
        if review.event == ReviewEvent.APPROVE:
            await self._approve(mr_path)
        elif review.event == ReviewEvent.REQUEST_CHANGES:
            await self._unapprove(mr_path)

        for comment in review.comments:
            position = await self._position(mr_path, comment)
            await self._post(f"{mr_path}/discussions", json={"body": comment.body, "position": position})

        body = review.body
        if not body and review.event == ReviewEvent.REQUEST_CHANGES:
            body = "Changes requested."
        if body:
            await self._post(f"{mr_path}/notes", json={"body": body})

    async def _position(self, mr_path: str, comment: CommentPayload) -> dict:
        mr = await self._get_json(mr_path)
        refs = mr.get("diff_refs") or {}
        return {
            "position_type": "text",
            "base_sha": refs.get("base_sha"),
            "start_sha": refs.get("start_sha"),
            "head_sha": refs.get("head_sha"),
            "old_path": comment.path,
            "new_path": comment.path,
            "new_line": comment.line,
        }

    async def _approve(self, mr_path: str) -> None:
        approvals = await self._get_json(f"{mr_path}/approvals")
        if approvals.get("user_has_approved"):
            logger.debug("Merge request %s is already approved by this user", mr_path)
            return
        await self._post(f"{mr_path}/approve")

    async def _unapprove(self, mr_path: str) -> None:
        try:
            await self._post(f"{mr_path}/unapprove")
        except ProviderError as e:
            # 404 means the current user had not approved; nothing to revoke.
            if e.status_code != 404:
                raise
