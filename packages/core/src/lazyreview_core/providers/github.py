from __future__ import annotations

import asyncio
import logging

from github import Github, GithubException

from lazyreview_core.errors import ProviderError
from lazyreview_core.models import CommentPayload, PullRequest, ReviewEvent, ReviewPayload
from lazyreview_core.providers.base import BaseProvider

logger = logging.getLogger(__name__)

_DEFAULT_HOST = "github.com"
_REQUEST_CHANGES_FALLBACK_BODY = "Changes requested."


class GitHubProvider(BaseProvider):
    """GitHub and GitHub Enterprise through PyGithub.

    PyGithub is blocking, so every call runs in a worker thread via
    asyncio.to_thread and the event loop stays free for other PR groups.
    """

    provider_type = "github"

    def __init__(self, token: str, host: str | None = None, base_url: str | None = None):
        if base_url is None and host and host != _DEFAULT_HOST:
            base_url = f"https://{host}/api/v3"
        self._gh = Github(token, base_url=base_url) if base_url else Github(token)

    # ------------------------------------------------------------------ #
    # Blocking helpers                                                     #
    # ------------------------------------------------------------------ #

    def _get_pull(self, owner: str, repo: str, number: int):
        return self._gh.get_repo(f"{owner}/{repo}").get_pull(number)

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except GithubException as e:
            raise ProviderError(f"GitHub API error: {_github_message(e)}", status_code=e.status) from e

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    async def list_pull_requests(self, owner: str, repo: str, state: str = "open") -> list[PullRequest]:
        def _list():
            pulls = self._gh.get_repo(f"{owner}/{repo}").get_pulls(state=state)
            return [_to_pull_request(pr) for pr in pulls]

        return await self._run(_list)

    async def get_pull_request_diff(self, owner: str, repo: str, number: int) -> str:
        def _diff():
            parts = []
            for f in self._get_pull(owner, repo, number).get_files():
                parts.append(f"diff --git a/{f.filename} b/{f.filename}\n")
                if f.patch:
                    parts.append(f.patch.rstrip("\n") + "\n")
            return "".join(parts)

        return await self._run(_diff)

    async def validate_token(self) -> bool:
        try:
            login = await self._run(lambda: self._gh.get_user().login)
        except ProviderError as e:
            logger.debug("GitHub token validation failed: %s", e)
            return False
        return bool(login)

    # ------------------------------------------------------------------ #
    # Mutations                                                            #
    # ------------------------------------------------------------------ #

    async def create_comment(self, owner: str, repo: str, number: int, comment: CommentPayload) -> None:
        def _comment():
            pr = self._get_pull(owner, repo, number)
            if comment.is_inline:
                commit = pr.base.repo.get_commit(pr.head.sha)
                pr.create_review_comment(comment.body, commit, comment.path, line=comment.line)
            else:
                pr.create_issue_comment(comment.body)

        await self._run(_comment)

    async def approve_review(self, owner: str, repo: str, number: int, body: str | None = None) -> None:
        await self._run(lambda: self._get_pull(owner, repo, number).create_review(body=body or "", event="APPROVE"))

    async def request_changes(self, owner: str, repo: str, number: int, body: str | None = None) -> None:
        # GitHub rejects REQUEST_CHANGES reviews with an empty body.
        text = body or _REQUEST_CHANGES_FALLBACK_BODY
        await self._run(lambda: self._get_pull(owner, repo, number).create_review(body=text, event="REQUEST_CHANGES"))

    async def create_review(self, owner: str, repo: str, number: int, review: ReviewPayload) -> None:
        body = review.body
        if review.event == ReviewEvent.REQUEST_CHANGES and not body:
            body = _REQUEST_CHANGES_FALLBACK_BODY
        comments = [{"path": c.path, "line": c.line, "body": c.body} for c in review.comments]

        def _review():
            pr = self._get_pull(owner, repo, number)
            pr.create_review(body=body, event=review.event.value, comments=comments)

        await self._run(_review)


def _to_pull_request(pr) -> PullRequest:
    return PullRequest(
        number=pr.number,
        title=pr.title or "",
        author=pr.user.login if pr.user else "",
        state=pr.state,
        url=pr.html_url or "",
        head_sha=pr.head.sha,
        source_branch=pr.head.ref,
        target_branch=pr.base.ref,
        draft=bool(pr.draft),
    )


def _github_message(e: GithubException) -> str:
    data = e.data if isinstance(e.data, dict) else {}
    return f"{e.status} {data.get('message') or e.data}"
