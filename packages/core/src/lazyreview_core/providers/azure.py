"""Azure DevOps Repos adapter.

Azure addresses a repository as organization / project / repository. The
common (owner, repo) pair maps onto that as ``owner = "<org>/<project>"`` and
``repo = <repository name>``.

Votes are per-reviewer, so approving or requesting changes first resolves the
authenticated user's id from the organization's connectionData endpoint. The
vote is sent before any comment thread, so a replay after a failed vote never
duplicates the thread.
"""

from __future__ import annotations

from lazyreview_core.errors import ProviderError
from lazyreview_core.models import CommentPayload, PullRequest, ReviewEvent, ReviewPayload
from lazyreview_core.providers.rest import RestProvider

_API_VERSION = "7.0"
_STATE_MAP = {"open": "active", "closed": "abandoned", "merged": "completed", "all": "all"}

_PROFILE_URL = "https://app.vssps.visualstudio.com/_apis/profile/profiles/me"

_VOTE_APPROVED = 10
_VOTE_WAITING_FOR_AUTHOR = -5

_THREAD_ACTIVE = 1
_COMMENT_TYPE_TEXT = 1


class AzureDevOpsProvider(RestProvider):
    provider_type = "azuredevops"

    def __init__(self, token: str, host: str | None = None, base_url: str | None = None, transport=None):
        # PATs go in the password half of basic auth with an empty user name.
        super().__init__(
            base_url or f"https://{host or 'dev.azure.com'}",
            auth=("", token),
            transport=transport,
        )
        self._reviewer_id: str | None = None

    @staticmethod
    def _split_owner(owner: str) -> tuple[str, str]:
        org, sep, project = owner.partition("/")
        if not sep or not project:
            raise ProviderError(f"Azure DevOps owner must be '<organization>/<project>', got {owner!r}")
        return org, project

    def _pr_path(self, owner: str, repo: str, number: int | None = None) -> str:
        org, project = self._split_owner(owner)
        path = f"/{org}/{project}/_apis/git/repositories/{repo}/pullrequests"
        return path if number is None else f"{path}/{number}"

    @staticmethod
    def _params(**extra) -> dict:
        return {"api-version": _API_VERSION, **extra}

    async def list_pull_requests(self, owner: str, repo: str, state: str = "open") -> list[PullRequest]:
        params = self._params(**{"searchCriteria.status": _STATE_MAP.get(state, state)})
        data = await self._get_json(self._pr_path(owner, repo), params=params)
        return [
            PullRequest(
                number=pr["pullRequestId"],
                title=pr.get("title") or "",
                author=(pr.get("createdBy") or {}).get("displayName", ""),
                state=pr.get("status", ""),
                url=pr.get("url") or "",
                head_sha=(pr.get("lastMergeSourceCommit") or {}).get("commitId", ""),
                source_branch=(pr.get("sourceRefName") or "").removeprefix("refs/heads/"),
                target_branch=(pr.get("targetRefName") or "").removeprefix("refs/heads/"),
                draft=bool(pr.get("isDraft")),
            )
            for pr in data.get("value", [])
        ]

    async def get_pull_request_diff(self, owner: str, repo: str, number: int) -> str:
        # Azure exposes per-iteration change lists rather than a unified diff,
        # so only the file headers of the latest iteration are returned.
        pr_path = self._pr_path(owner, repo, number)
        iterations = (await self._get_json(f"{pr_path}/iterations", params=self._params())).get("value", [])
        if not iterations:
            return ""
        latest = iterations[-1]["id"]
        changes = await self._get_json(f"{pr_path}/iterations/{latest}/changes", params=self._params())
        parts = []
        for entry in changes.get("changeEntries", []):
            path = (entry.get("item") or {}).get("path", "").lstrip("/")
            parts.append(f"diff --git a/{path} b/{path}\n")
        return "".join(parts)

    async def validate_token(self) -> bool:
        return await self._validate(_PROFILE_URL, params=self._params())

    async def create_comment(self, owner: str, repo: str, number: int, comment: CommentPayload) -> None:
        thread = {
            "comments": [{"parentCommentId": 0, "content": comment.body, "commentType": _COMMENT_TYPE_TEXT}],
            "status": _THREAD_ACTIVE,
        }
        if comment.is_inline:
            position = {"line": comment.line, "offset": 1}
            thread["threadContext"] = {
                "filePath": "/" + comment.path.lstrip("/"),
                "rightFileStart": position,
                "rightFileEnd": position,
            }
        await self._post(f"{self._pr_path(owner, repo, number)}/threads", json=thread, params=self._params())

    async def approve_review(self, owner: str, repo: str, number: int, body: str | None = None) -> None:
        await self._vote(owner, repo, number, _VOTE_APPROVED)
        if body:
            await self.create_comment(owner, repo, number, CommentPayload(body=body))

    async def request_changes(self, owner: str, repo: str, number: int, body: str | None = None) -> None:
        await self._vote(owner, repo, number, _VOTE_WAITING_FOR_AUTHOR)
        if body:
            await self.create_comment(owner, repo, number, CommentPayload(body=body))

    async def create_review(self, owner: str, repo: str, number: int, review: ReviewPayload) -> None:
        # The vote is a PUT and safe to repeat, so it goes before any thread.
        if review.event == ReviewEvent.APPROVE:
            await self._vote(owner, repo, number, _VOTE_APPROVED)
        elif review.event == ReviewEvent.REQUEST_CHANGES:
            await self._vote(owner, repo, number, _VOTE_WAITING_FOR_AUTHOR)

        for comment in review.comments:
            await self.create_comment(owner, repo, number, comment)
        if review.body:
            await self.create_comment(owner, repo, number, CommentPayload(body=review.body))

    async def _vote(self, owner: str, repo: str, number: int, vote: int) -> None:
        reviewer_id = await self._current_user_id(owner)
        await self._request(
            "PUT",
            f"{self._pr_path(owner, repo, number)}/reviewers/{reviewer_id}",
            json={"vote": vote},
            params=self._params(),
        )

    async def _current_user_id(self, owner: str) -> str:
        if self._reviewer_id:
            return self._reviewer_id
        org, _ = self._split_owner(owner)
        data = await self._get_json(f"/{org}/_apis/connectionData")
        user_id = (data.get("authenticatedUser") or {}).get("id")
        if not user_id:
            raise ProviderError("Azure DevOps did not return an authenticated user id.")
        self._reviewer_id = user_id
        return user_id
