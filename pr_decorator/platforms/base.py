"""Capability interface every platform client implements."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from types import TracebackType
from typing import Protocol

import httpx

from pr_decorator.diff_mapper import FileDiff
from pr_decorator.models import Alm


class CommentKind(StrEnum):
    """Where a comment lives on the pull request."""

    GENERAL = "general"
    INLINE = "inline"


@dataclass(frozen=True, slots=True)
class PullRequest:
    """Normalized remote pull request."""

    pull_request_id: str
    url: str
    head_sha: str
    base_sha: str
    start_sha: str | None = None


@dataclass(frozen=True, slots=True)
class CommentPosition:
    """Head-side line an inline comment is attached to."""

    path: str
    line: int


@dataclass(frozen=True, slots=True)
class RemoteComment:
    """Existing comment as reported by the platform.

    ``thread_id`` and ``version`` carry platform bookkeeping (Azure DevOps
    thread, GitLab discussion, Bitbucket Server optimistic version).
    """

    comment_id: str
    body: str
    kind: CommentKind
    position: CommentPosition | None = None
    thread_id: str | None = None
    version: int | None = None


@dataclass(frozen=True, slots=True)
class CheckRunReport:
    """Quality-gate status published as a check run or commit status."""

    name: str
    passed: bool | None
    title: str
    summary: str
    details_url: str
    started_at: datetime
    completed_at: datetime

    @property
    def description(self) -> str:
        return self.title


class PlatformClient(Protocol):
    """Operations a decorator needs from one platform."""

    alm: Alm

    def fetch_pull_request(self, pull_request_id: str) -> PullRequest:
        """Return the pull request or raise ``AlmApiError`` with status 404."""

    def fetch_diff(self, pull_request: PullRequest) -> tuple[FileDiff, ...]:
        """Return head-side changed lines per file."""

    def list_comments(self, pull_request: PullRequest) -> tuple[RemoteComment, ...]:
        """Return general and inline comments, oldest first."""

    def upsert_comment(
        self,
        pull_request: PullRequest,
        body: str,
        *,
        existing: RemoteComment | None = None,
        position: CommentPosition | None = None,
    ) -> RemoteComment:
        """Create a comment, or update ``existing`` in place."""

    def upsert_check_run(self, pull_request: PullRequest, report: CheckRunReport) -> None:
        """Publish the quality-gate status for the head commit."""

    def delete_annotation(self, pull_request: PullRequest, comment: RemoteComment) -> None:
        """Delete a comment previously posted by this integration."""

    def close(self) -> None:
        """Release the underlying HTTP client."""

    def __enter__(self) -> PlatformClient: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...


class HttpPlatformClient:
    """Context-manager plumbing shared by the httpx-backed clients."""

    def __init__(self, http_client: httpx.Client) -> None:
        self._http = http_client

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> HttpPlatformClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
