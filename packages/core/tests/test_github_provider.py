"""Tests for the PyGithub-backed GitHub adapter.

The Github client is replaced with a MagicMock so the tests check which
PyGithub calls each capability makes, without touching the network.
"""

from unittest.mock import MagicMock

import pytest
from github import GithubException

from lazyreview_core.errors import ProviderError
from lazyreview_core.models import CommentPayload, ReviewEvent, ReviewPayload
from lazyreview_core.providers.github import GitHubProvider

SHA = "a" * 40


def _make_provider(mocker):
    gh = MagicMock()
    mocker.patch("lazyreview_core.providers.github.Github", return_value=gh)
    provider = GitHubProvider("tok")
    pr = gh.get_repo.return_value.get_pull.return_value
    pr.head.sha = SHA
    return provider, gh, pr


class TestConstruction:
    def test_public_github_uses_default_base_url(self, mocker):
        mock_github = mocker.patch("lazyreview_core.providers.github.Github")
        GitHubProvider("tok", host="github.com")
        mock_github.assert_called_once_with("tok")

    def test_enterprise_host_builds_api_url(self, mocker):
        mock_github = mocker.patch("lazyreview_core.providers.github.Github")
        GitHubProvider("tok", host="github.acme.dev")
        mock_github.assert_called_once_with("tok", base_url="https://github.acme.dev/api/v3")


class TestReads:
    async def test_list_pull_requests_maps_fields(self, mocker):
        provider, gh, _ = _make_provider(mocker)
        pr = MagicMock(number=7, title="Fix login bug", state="open", html_url="https://x/7", draft=False)
        pr.user.login = "octocat"
        pr.head.sha = SHA
        pr.head.ref = "fix-login"
        pr.base.ref = "main"
        gh.get_repo.return_value.get_pulls.return_value = [pr]

        result = await provider.list_pull_requests("owner", "repo")

        gh.get_repo.assert_called_with("owner/repo")
        gh.get_repo.return_value.get_pulls.assert_called_once_with(state="open")
        assert len(result) == 1
        assert result[0].number == 7
        assert result[0].author == "octocat"
        assert result[0].source_branch == "fix-login"

    async def test_diff_joins_file_patches(self, mocker):
        provider, _, pr = _make_provider(mocker)
        pr.get_files.return_value = [
            MagicMock(filename="a.py", patch="@@ -1 +1 @@\n-old\n+new"),
            MagicMock(filename="logo.png", patch=None),
        ]

        diff = await provider.get_pull_request_diff("owner", "repo", 3)

        assert "diff --git a/a.py b/a.py\n@@ -1 +1 @@\n-old\n+new\n" in diff
        assert "diff --git a/logo.png b/logo.png\n" in diff

    async def test_validate_token_true(self, mocker):
        provider, gh, _ = _make_provider(mocker)
        gh.get_user.return_value.login = "octocat"
        assert await provider.validate_token() is True

    async def test_validate_token_false_on_401(self, mocker):
        provider, gh, _ = _make_provider(mocker)
        gh.get_user.side_effect = GithubException(401, {"message": "Bad credentials"}, None)
        assert await provider.validate_token() is False


class TestMutations:
    async def test_general_comment_uses_issue_comment(self, mocker):
        provider, _, pr = _make_provider(mocker)
        await provider.create_comment("owner", "repo", 1, CommentPayload(body="Looks good"))
        pr.create_issue_comment.assert_called_once_with("Looks good")
        pr.create_review_comment.assert_not_called()

    async def test_inline_comment_anchored_to_head_commit(self, mocker):
        provider, _, pr = _make_provider(mocker)
        await provider.create_comment("owner", "repo", 1, CommentPayload(body="Null?", path="src/a.py", line=10))

        pr.base.repo.get_commit.assert_called_once_with(SHA)
        commit = pr.base.repo.get_commit.return_value
        pr.create_review_comment.assert_called_once_with("Null?", commit, "src/a.py", line=10)

    async def test_approve(self, mocker):
        provider, _, pr = _make_provider(mocker)
        await provider.approve_review("owner", "repo", 42, "LGTM")
        pr.create_review.assert_called_once_with(body="LGTM", event="APPROVE")

    async def test_request_changes_without_body_uses_fallback_text(self, mocker):
        provider, _, pr = _make_provider(mocker)
        await provider.request_changes("owner", "repo", 42)
        kwargs = pr.create_review.call_args.kwargs
        assert kwargs["event"] == "REQUEST_CHANGES"
        assert kwargs["body"]

    async def test_create_review_sends_inline_comments(self, mocker):
        provider, _, pr = _make_provider(mocker)
        review = ReviewPayload(
            body="Two issues",
            event=ReviewEvent.REQUEST_CHANGES,
            comments=[CommentPayload(body="rename", path="a.py", line=3)],
        )

        await provider.create_review("owner", "repo", 5, review)

        pr.create_review.assert_called_once_with(
            body="Two issues",
            event="REQUEST_CHANGES",
            comments=[{"path": "a.py", "line": 3, "body": "rename"}],
        )

    async def test_github_exception_becomes_provider_error(self, mocker):
        provider, _, pr = _make_provider(mocker)
        pr.create_review.side_effect = GithubException(422, {"message": "Can not approve your own pull request"}, None)

        with pytest.raises(ProviderError) as exc_info:
            await provider.approve_review("owner", "repo", 1)

        assert exc_info.value.status_code == 422
        assert "Can not approve your own pull request" in str(exc_info.value)
