"""Provider capability shared by every code-hosting adapter.

Each host (GitHub, GitLab, Bitbucket, Azure DevOps, Gitea) maps its own REST
shape onto the same small set of coroutines, so the offline queue can replay
review actions without knowing which host it is talking to:

    list_pull_requests()      → [PullRequest]
    get_pull_request_diff()   → unified diff text
    create_comment()          ┐
    approve_review()          │  mutations replayed from the offline queue
    request_changes()         │
    create_review()           ┘
    validate_token()          → bool

Adapters raise ProviderError for any failed call. Rate limiting and request
throttling are the adapter's own business; callers never coordinate them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lazyreview_core.models import CommentPayload, PullRequest, ReviewPayload


class BaseProvider(ABC):
    provider_type: str = ""

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def list_pull_requests(self, owner: str, repo: str, state: str = "open") -> list[PullRequest]:
        """Return pull requests in ``state`` for a repository."""

    @abstractmethod
    async def get_pull_request_diff(self, owner: str, repo: str, number: int) -> str:
        """Return the pull request's changes as unified diff text."""

    @abstractmethod
    async def validate_token(self) -> bool:
        """Return True when the configured token authenticates. Never raises."""

    # ------------------------------------------------------------------ #
    # Mutations                                                            #
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def create_comment(self, owner: str, repo: str, number: int, comment: CommentPayload) -> None:
        """Post a general comment, or an inline one when ``comment.is_inline``."""

    @abstractmethod
    async def approve_review(self, owner: str, repo: str, number: int, body: str | None = None) -> None:
        """Approve the pull request, optionally with a message."""

    @abstractmethod
    async def request_changes(self, owner: str, repo: str, number: int, body: str | None = None) -> None:
        """Mark the pull request as needing changes."""

    @abstractmethod
    async def create_review(self, owner: str, repo: str, number: int, review: ReviewPayload) -> None:
        """Submit a review with a verdict and inline comments in one call where the host allows it."""

    async def close(self) -> None:
        """Release network resources. Default is a no-op so callers can always await it."""
