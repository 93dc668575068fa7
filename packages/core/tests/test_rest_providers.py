"""Tests for the httpx-based REST adapters and the provider factory."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from lazyreview_core.errors import ConfigError, ProviderError
from lazyreview_core.models import CommentPayload, ReviewEvent, ReviewPayload
from lazyreview_core.providers.azure import AzureDevOpsProvider
from lazyreview_core.providers.bitbucket import BitbucketProvider
from lazyreview_core.providers.factory import create_provider
from lazyreview_core.providers.gitea import GiteaProvider
from lazyreview_core.providers.github import GitHubProvider
from lazyreview_core.providers.gitlab import GitLabProvider

GITLAB_MR = "https://gitlab.com/api/v4/projects/owner%2Frepo/merge_requests/7"
GITEA_REPO = "https://gitea.example.com/api/v1/repos/owner/repo"
BITBUCKET_PR = "https://api.bitbucket.org/2.0/repositories/team/repo/pullrequests/3"
AZURE_PR = "https://dev.azure.com/org/proj/_apis/git/repositories/repo/pullrequests/9"


def _body(route) -> dict:
    return json.loads(route.calls.last.request.content)


# ---------------------------------------------------------------------------
# Shared request handling
# ---------------------------------------------------------------------------


class TestRestErrors:
    @respx.mock
    async def test_error_status_becomes_provider_error(self):
        respx.post(f"{GITLAB_MR}/notes").mock(
            return_value=httpx.Response(403, json={"message": "403 Forbidden"})
        )
        provider = GitLabProvider("tok")

        with pytest.raises(ProviderError) as exc_info:
            await provider.create_comment("owner", "repo", 7, CommentPayload(body="hi"))

        assert exc_info.value.status_code == 403
        assert "403 Forbidden" in str(exc_info.value)
        await provider.close()

    @respx.mock
    async def test_transport_failure_becomes_provider_error(self):
        respx.post(f"{GITLAB_MR}/notes").mock(side_effect=httpx.ConnectError("offline"))
        provider = GitLabProvider("tok")

        with pytest.raises(ProviderError) as exc_info:
            await provider.create_comment("owner", "repo", 7, CommentPayload(body="hi"))

        assert exc_info.value.status_code is None
        await provider.close()

    @respx.mock
    async def test_validate_token_false_on_401(self):
        respx.get("https://gitlab.com/api/v4/user").mock(return_value=httpx.Response(401, json={}))
        provider = GitLabProvider("bad")
        assert await provider.validate_token() is False
        await provider.close()


# ---------------------------------------------------------------------------
# GitLab
# ---------------------------------------------------------------------------


class TestGitLab:
    @respx.mock
    async def test_sends_private_token_header(self):
        route = respx.get("https://gitlab.com/api/v4/user").mock(return_value=httpx.Response(200, json={"id": 1}))
        provider = GitLabProvider("glpat-abc")

        assert await provider.validate_token() is True
        assert route.calls.last.request.headers["PRIVATE-TOKEN"] == "glpat-abc"
        await provider.close()

    @respx.mock
    async def test_list_maps_open_state_and_fields(self):
        route = respx.get("https://gitlab.com/api/v4/projects/owner%2Frepo/merge_requests").mock(
            return_value=httpx.Response(
                200,
                json=[{"iid": 7, "title": "Add cache", "author": {"username": "dev"}, "state": "opened",
                       "source_branch": "cache", "target_branch": "main", "draft": True}],
            )
        )
        provider = GitLabProvider("tok")

        prs = await provider.list_pull_requests("owner", "repo")

        assert route.calls.last.request.url.params["state"] == "opened"
        assert prs[0].number == 7
        assert prs[0].author == "dev"
        assert prs[0].draft is True
        await provider.close()

    @respx.mock
    async def test_inline_comment_uses_diff_refs(self):
        respx.get(GITLAB_MR).mock(
            return_value=httpx.Response(
                200, json={"diff_refs": {"base_sha": "b", "start_sha": "s", "head_sha": "h"}}
            )
        )
        route = respx.post(f"{GITLAB_MR}/discussions").mock(return_value=httpx.Response(201, json={}))
        provider = GitLabProvider("tok")

        await provider.create_comment("owner", "repo", 7, CommentPayload(body="why?", path="app.py", line=12))

        position = _body(route)["position"]
        assert position["head_sha"] == "h"
        assert position["new_path"] == "app.py"
        assert position["new_line"] == 12
        await provider.close()

    @respx.mock
    async def test_approve_with_body_posts_note(self):
        respx.get(f"{GITLAB_MR}/approvals").mock(return_value=httpx.Response(200, json={"user_has_approved": False}))
        approve = respx.post(f"{GITLAB_MR}/approve").mock(return_value=httpx.Response(201, json={}))
        notes = respx.post(f"{GITLAB_MR}/notes").mock(return_value=httpx.Response(201, json={}))
        provider = GitLabProvider("tok")

        await provider.approve_review("owner", "repo", 7, "LGTM")

        assert approve.called
        assert _body(notes) == {"body": "LGTM"}
        await provider.close()

    @respx.mock
    async def test_approve_skips_when_already_approved(self):
        respx.get(f"{GITLAB_MR}/approvals").mock(return_value=httpx.Response(200, json={"user_has_approved": True}))
        approve = respx.post(f"{GITLAB_MR}/approve").mock(return_value=httpx.Response(401, json={}))
        notes = respx.post(f"{GITLAB_MR}/notes").mock(return_value=httpx.Response(201, json={}))
        provider = GitLabProvider("tok")

        await provider.approve_review("owner", "repo", 7, "LGTM")

        assert not approve.called
        assert notes.call_count == 1
        await provider.close()

    @respx.mock
    async def test_failed_approve_posts_no_note(self):
        respx.get(f"{GITLAB_MR}/approvals").mock(return_value=httpx.Response(200, json={"user_has_approved": False}))
        respx.post(f"{GITLAB_MR}/approve").mock(return_value=httpx.Response(503, text="unavailable"))
        notes = respx.post(f"{GITLAB_MR}/notes").mock(return_value=httpx.Response(201, json={}))
        provider = GitLabProvider("tok")

        with pytest.raises(ProviderError):
            await provider.approve_review("owner", "repo", 7, "LGTM")

        assert not notes.called
        await provider.close()

    @respx.mock
    async def test_request_changes_tolerates_missing_approval(self):
        notes = respx.post(f"{GITLAB_MR}/notes").mock(return_value=httpx.Response(201, json={}))
        respx.post(f"{GITLAB_MR}/unapprove").mock(return_value=httpx.Response(404, json={"message": "404 Not Found"}))
        provider = GitLabProvider("tok")

        await provider.request_changes("owner", "repo", 7, "Please add tests")

        assert _body(notes) == {"body": "Please add tests"}
        await provider.close()

    @respx.mock
    async def test_request_changes_propagates_other_unapprove_errors(self):
        notes = respx.post(f"{GITLAB_MR}/notes").mock(return_value=httpx.Response(201, json={}))
        respx.post(f"{GITLAB_MR}/unapprove").mock(return_value=httpx.Response(500, text="boom"))
        provider = GitLabProvider("tok")

        with pytest.raises(ProviderError) as exc_info:
            await provider.request_changes("owner", "repo", 7)

        assert exc_info.value.status_code == 500
        assert not notes.called
        await provider.close()

    @respx.mock
    async def test_review_settles_approval_before_discussions(self):
        respx.get(GITLAB_MR).mock(return_value=httpx.Response(200, json={"diff_refs": {"head_sha": "h"}}))
        respx.get(f"{GITLAB_MR}/approvals").mock(return_value=httpx.Response(200, json={"user_has_approved": False}))
        respx.post(f"{GITLAB_MR}/approve").mock(return_value=httpx.Response(201, json={}))
        respx.post(f"{GITLAB_MR}/discussions").mock(return_value=httpx.Response(201, json={}))
        respx.post(f"{GITLAB_MR}/notes").mock(return_value=httpx.Response(201, json={}))
        provider = GitLabProvider("tok")
        review = ReviewPayload(
            body="Ship it",
            event=ReviewEvent.APPROVE,
            comments=[CommentPayload(body="a", path="f.py", line=1)],
        )

        await provider.create_review("owner", "repo", 7, review)

        posted = [c.request.url.path.rsplit("/", 1)[-1] for c in respx.calls if c.request.method == "POST"]
        assert posted == ["approve", "discussions", "notes"]
        await provider.close()

    @respx.mock
    async def test_self_managed_host(self):
        route = respx.get("https://gitlab.acme.dev/api/v4/user").mock(return_value=httpx.Response(200, json={}))
        provider = GitLabProvider("tok", host="gitlab.acme.dev")
        assert await provider.validate_token() is True
        assert route.called
        await provider.close()


# ---------------------------------------------------------------------------
# Gitea
# ---------------------------------------------------------------------------


class TestGitea:
    @respx.mock
    async def test_general_comment_goes_to_issue_comments(self):
        route = respx.post(f"{GITEA_REPO}/issues/4/comments").mock(return_value=httpx.Response(201, json={}))
        provider = GiteaProvider("tok", host="gitea.example.com")

        await provider.create_comment("owner", "repo", 4, CommentPayload(body="Thanks"))

        assert _body(route) == {"body": "Thanks"}
        assert route.calls.last.request.headers["Authorization"] == "token tok"
        await provider.close()

    @respx.mock
    async def test_inline_comment_submitted_as_review(self):
        route = respx.post(f"{GITEA_REPO}/pulls/4/reviews").mock(return_value=httpx.Response(200, json={}))
        provider = GiteaProvider("tok", host="gitea.example.com")

        await provider.create_comment("owner", "repo", 4, CommentPayload(body="typo", path="README.md", line=2))

        body = _body(route)
        assert body["event"] == "COMMENT"
        assert body["comments"] == [{"path": "README.md", "body": "typo", "new_position": 2}]
        await provider.close()

    @respx.mock
    async def test_approve_uses_approved_event(self):
        route = respx.post(f"{GITEA_REPO}/pulls/4/reviews").mock(return_value=httpx.Response(200, json={}))
        provider = GiteaProvider("tok", host="gitea.example.com")

        await provider.approve_review("owner", "repo", 4)

        assert _body(route)["event"] == "APPROVED"
        await provider.close()

    @respx.mock
    async def test_diff_is_plain_text(self):
        respx.get(f"{GITEA_REPO}/pulls/4.diff").mock(return_value=httpx.Response(200, text="diff --git a/x b/x\n"))
        provider = GiteaProvider("tok", host="gitea.example.com")
        assert await provider.get_pull_request_diff("owner", "repo", 4) == "diff --git a/x b/x\n"
        await provider.close()


# ---------------------------------------------------------------------------
# Bitbucket
# ---------------------------------------------------------------------------


class TestBitbucket:
    @respx.mock
    async def test_inline_comment_payload(self):
        route = respx.post(f"{BITBUCKET_PR}/comments").mock(return_value=httpx.Response(201, json={}))
        provider = BitbucketProvider("tok")

        await provider.create_comment("team", "repo", 3, CommentPayload(body="nit", path="src/x.ts", line=8))

        assert _body(route) == {"content": {"raw": "nit"}, "inline": {"path": "src/x.ts", "to": 8}}
        assert route.calls.last.request.headers["Authorization"] == "Bearer tok"
        await provider.close()

    @respx.mock
    async def test_request_changes_endpoint(self):
        route = respx.post(f"{BITBUCKET_PR}/request-changes").mock(return_value=httpx.Response(200, json={}))
        provider = BitbucketProvider("tok")

        await provider.request_changes("team", "repo", 3)

        assert route.called
        await provider.close()

    @respx.mock
    async def test_review_sends_verdict_before_comments(self):
        comments = respx.post(f"{BITBUCKET_PR}/comments").mock(return_value=httpx.Response(201, json={}))
        approve = respx.post(f"{BITBUCKET_PR}/approve").mock(return_value=httpx.Response(200, json={}))
        provider = BitbucketProvider("tok")
        review = ReviewPayload(
            body="",
            event=ReviewEvent.APPROVE,
            comments=[CommentPayload(body="a", path="f.py", line=1), CommentPayload(body="b", path="f.py", line=2)],
        )

        await provider.create_review("team", "repo", 3, review)

        assert comments.call_count == 2
        assert approve.call_count == 1
        posted = [c.request.url.path.rsplit("/", 1)[-1] for c in respx.calls]
        assert posted == ["approve", "comments", "comments"]
        await provider.close()


    @respx.mock
    async def test_approve_retry_does_not_repeat_comment(self):
        approve = respx.post(f"{BITBUCKET_PR}/approve").mock(
            side_effect=[httpx.Response(503, text="unavailable"), httpx.Response(200, json={})]
        )
        comments = respx.post(f"{BITBUCKET_PR}/comments").mock(return_value=httpx.Response(201, json={}))
        provider = BitbucketProvider("tok")

        with pytest.raises(ProviderError):
            await provider.approve_review("team", "repo", 3, "LGTM")
        await provider.approve_review("team", "repo", 3, "LGTM")

        assert approve.call_count == 2
        assert comments.call_count == 1
        await provider.close()

    @respx.mock
    async def test_already_approved_counts_as_success(self):
        respx.post(f"{BITBUCKET_PR}/approve").mock(
            return_value=httpx.Response(409, json={"error": {"message": "You already approved this pull request."}})
        )
        comments = respx.post(f"{BITBUCKET_PR}/comments").mock(return_value=httpx.Response(201, json={}))
        provider = BitbucketProvider("tok")

        await provider.approve_review("team", "repo", 3, "LGTM")

        assert comments.call_count == 1
        await provider.close()

    @respx.mock
    async def test_other_verdict_errors_propagate(self):
        respx.post(f"{BITBUCKET_PR}/request-changes").mock(return_value=httpx.Response(403, json={}))
        provider = BitbucketProvider("tok")

        with pytest.raises(ProviderError) as exc_info:
            await provider.request_changes("team", "repo", 3, "Fix this")

        assert exc_info.value.status_code == 403
        await provider.close()


# ---------------------------------------------------------------------------
# Azure DevOps
# ---------------------------------------------------------------------------


class TestAzureDevOps:
    @respx.mock
    async def test_approve_votes_as_current_user(self):
        respx.get("https://dev.azure.com/org/_apis/connectionData").mock(
            return_value=httpx.Response(200, json={"authenticatedUser": {"id": "user-1"}})
        )
        vote = respx.put(f"{AZURE_PR}/reviewers/user-1").mock(return_value=httpx.Response(200, json={}))
        provider = AzureDevOpsProvider("pat")

        await provider.approve_review("org/proj", "repo", 9)
        await provider.request_changes("org/proj", "repo", 9)

        assert [json.loads(c.request.content)["vote"] for c in vote.calls] == [10, -5]
        assert vote.calls.last.request.url.params["api-version"] == "7.0"
        await provider.close()

    @respx.mock
    async def test_reviewer_id_is_cached(self):
        connection = respx.get("https://dev.azure.com/org/_apis/connectionData").mock(
            return_value=httpx.Response(200, json={"authenticatedUser": {"id": "user-1"}})
        )
        respx.put(f"{AZURE_PR}/reviewers/user-1").mock(return_value=httpx.Response(200, json={}))
        provider = AzureDevOpsProvider("pat")

        await provider.approve_review("org/proj", "repo", 9)
        await provider.approve_review("org/proj", "repo", 9)

        assert connection.call_count == 1
        await provider.close()

    @respx.mock
    async def test_inline_comment_thread_context(self):
        route = respx.post(f"{AZURE_PR}/threads").mock(return_value=httpx.Response(200, json={}))
        provider = AzureDevOpsProvider("pat")

        await provider.create_comment("org/proj", "repo", 9, CommentPayload(body="hmm", path="src/a.cs", line=4))

        context = _body(route)["threadContext"]
        assert context["filePath"] == "/src/a.cs"
        assert context["rightFileStart"] == {"line": 4, "offset": 1}
        await provider.close()

    @respx.mock
    async def test_failed_vote_posts_no_thread(self):
        respx.get("https://dev.azure.com/org/_apis/connectionData").mock(
            return_value=httpx.Response(200, json={"authenticatedUser": {"id": "user-1"}})
        )
        respx.put(f"{AZURE_PR}/reviewers/user-1").mock(return_value=httpx.Response(503, text="unavailable"))
        threads = respx.post(f"{AZURE_PR}/threads").mock(return_value=httpx.Response(200, json={}))
        provider = AzureDevOpsProvider("pat")

        with pytest.raises(ProviderError):
            await provider.approve_review("org/proj", "repo", 9, "LGTM")

        assert not threads.called
        await provider.close()

    async def test_owner_without_project_rejected(self):
        provider = AzureDevOpsProvider("pat")
        with pytest.raises(ProviderError):
            await provider.create_comment("org", "repo", 9, CommentPayload(body="x"))
        await provider.close()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestFactory:
    @pytest.mark.parametrize(
        "provider_type, cls",
        [
            ("gitlab", GitLabProvider),
            ("gitea", GiteaProvider),
            ("bitbucket", BitbucketProvider),
            ("azuredevops", AzureDevOpsProvider),
        ],
    )
    async def test_rest_adapters(self, provider_type, cls):
        provider = create_provider(provider_type, "tok")
        assert isinstance(provider, cls)
        assert provider.provider_type == provider_type
        await provider.close()

    def test_github_adapter(self, mocker):
        mocker.patch("lazyreview_core.providers.github.Github")
        assert isinstance(create_provider("github", "tok"), GitHubProvider)

    def test_unknown_type_raises_config_error(self):
        with pytest.raises(ConfigError, match="sourceforge"):
            create_provider("sourceforge", "tok")
