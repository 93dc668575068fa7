"""Provider-neutral review models.

These are the shapes every provider adapter maps its host's REST payloads to,
and the payloads the offline queue persists for later replay.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ProviderType(str, Enum):
    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"
    AZUREDEVOPS = "azuredevops"
    GITEA = "gitea"


class ReviewEvent(str, Enum):
    COMMENT = "COMMENT"
    APPROVE = "APPROVE"
    REQUEST_CHANGES = "REQUEST_CHANGES"


@dataclass
class PullRequest:
    """A pull request (merge request on GitLab) as listed by a provider."""

    number: int
    title: str
    author: str
    state: str
    url: str = ""
    head_sha: str = ""
    source_branch: str = ""
    target_branch: str = ""
    draft: bool = False


@dataclass
class CommentPayload:
    """A PR comment. ``path`` and ``line`` anchor it to a line of the new file."""

    body: str
    path: str | None = None
    line: int | None = None

    def __post_init__(self):
        if (self.path is None) != (self.line is None):
            raise ValueError("Inline comments need both a path and a line.")

    @property
    def is_inline(self) -> bool:
        return self.path is not None

    def to_dict(self) -> dict:
        return {"body": self.body, "path": self.path, "line": self.line}

    @classmethod
    def from_dict(cls, d: dict) -> CommentPayload:
        return cls(body=d.get("body", ""), path=d.get("path"), line=d.get("line"))


@dataclass
class ApprovePayload:
    body: str | None = None

    def to_dict(self) -> dict:
        return {"body": self.body}

    @classmethod
    def from_dict(cls, d: dict) -> ApprovePayload:
        return cls(body=d.get("body"))


@dataclass
class RequestChangesPayload:
    body: str | None = None

    def to_dict(self) -> dict:
        return {"body": self.body}

    @classmethod
    def from_dict(cls, d: dict) -> RequestChangesPayload:
        return cls(body=d.get("body"))


@dataclass
class ReviewPayload:
    """A full review: summary body, verdict and any inline comments."""

    body: str
    event: ReviewEvent = ReviewEvent.COMMENT
    comments: list[CommentPayload] = field(default_factory=list)

    def __post_init__(self):
        self.event = ReviewEvent(self.event)
        for comment in self.comments:
            if not comment.is_inline:
                raise ValueError("Review comments must be anchored to a path and line.")

    def to_dict(self) -> dict:
        return {
            "body": self.body,
            "event": self.event.value,
            "comments": [c.to_dict() for c in self.comments],
        }

    @classmethod
    def from_dict(cls, d: dict) -> ReviewPayload:
        return cls(
            body=d.get("body", ""),
            event=d.get("event", ReviewEvent.COMMENT.value),
            comments=[CommentPayload.from_dict(c) for c in d.get("comments", [])],
        )
