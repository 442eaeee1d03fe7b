"""Bitbucket Cloud REST client."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from pr_decorator.diff_mapper import FileDiff, parse_unified_diff
from pr_decorator.models import Alm
from pr_decorator.platforms.base import (
    CheckRunReport,
    CommentKind,
    CommentPosition,
    HttpPlatformClient,
    PullRequest,
    RemoteComment,
)
from pr_decorator.platforms.http import (
    AlmInputError,
    ensure_list,
    optional_str,
    request,
    request_json,
    request_text,
    require_int,
    require_object,
    require_str,
)

BITBUCKET_CLOUD_API_BASE_URL = "https://api.bitbucket.org/2.0"
BITBUCKET_CLOUD_PAGE_SIZE = 100
BITBUCKET_CLOUD_DESCRIPTION_LIMIT = 255


def _state(passed: bool | None) -> str:
    if passed is None:
        return "STOPPED"
    return "SUCCESSFUL" if passed else "FAILED"


class BitbucketCloudClient(HttpPlatformClient):
    """Decoration operations against one Bitbucket Cloud repository."""

    alm = Alm.BITBUCKET_CLOUD

    def __init__(self, http_client: httpx.Client, workspace: str, repository: str) -> None:
        super().__init__(http_client)
        if not workspace.strip() or not repository.strip():
            raise AlmInputError(
                "Bitbucket Cloud requires both a workspace and a repository slug."
            )
        self._repo_endpoint = (
            f"/repositories/{quote(workspace.strip(), safe='')}"
            f"/{quote(repository.strip(), safe='')}"
        )

    def _pr_endpoint(self, pull_request_id: str) -> str:
        return f"{self._repo_endpoint}/pullrequests/{pull_request_id}"

    def fetch_pull_request(self, pull_request_id: str) -> PullRequest:
        if not pull_request_id.isdigit():
            raise AlmInputError(
                f"Invalid pull request id '{pull_request_id}'. Expected a positive integer."
            )
        endpoint = self._pr_endpoint(pull_request_id)
        payload = request_json(self._http, "GET", endpoint)
        links = require_object(payload, key="links", endpoint=endpoint)
        html = require_object(links, key="html", endpoint=endpoint)
        source = require_object(payload, key="source", endpoint=endpoint)
        destination = require_object(payload, key="destination", endpoint=endpoint)
        return PullRequest(
            pull_request_id=str(require_int(payload, key="id", endpoint=endpoint)),
            url=require_str(html, key="href", endpoint=endpoint),
            head_sha=require_str(
                require_object(source, key="commit", endpoint=endpoint),
                key="hash",
                endpoint=endpoint,
            ),
            base_sha=require_str(
                require_object(destination, key="commit", endpoint=endpoint),
                key="hash",
                endpoint=endpoint,
            ),
        )

    def fetch_diff(self, pull_request: PullRequest) -> tuple[FileDiff, ...]:
        # The diff endpoint answers with a redirect to the rendered patch.
        raw = request_text(
            self._http,
            f"{self._pr_endpoint(pull_request.pull_request_id)}/diff",
            accept_header="text/plain",
        )
        return parse_unified_diff(raw)

    def _to_comment(self, row: dict[str, Any], *, endpoint: str) -> RemoteComment:
        content = row.get("content")
        body = ""
        if isinstance(content, dict):
            body = optional_str(content, key="raw", endpoint=endpoint) or ""
        inline = row.get("inline")
        kind = CommentKind.GENERAL
        position = None
        if isinstance(inline, dict):
            kind = CommentKind.INLINE
            line = inline.get("to")
            if isinstance(line, int) and not isinstance(line, bool):
                position = CommentPosition(
                    path=require_str(inline, key="path", endpoint=endpoint), line=line
                )
        return RemoteComment(
            comment_id=str(require_int(row, key="id", endpoint=endpoint)),
            body=body,
            kind=kind,
            position=position,
        )

    def list_comments(self, pull_request: PullRequest) -> tuple[RemoteComment, ...]:
        endpoint = f"{self._pr_endpoint(pull_request.pull_request_id)}/comments"
        comments: list[RemoteComment] = []
        next_url: str | None = endpoint
        params: dict[str, str | int] | None = {"pagelen": BITBUCKET_CLOUD_PAGE_SIZE}
        while next_url is not None:
            page = request_json(self._http, "GET", next_url, params=params)
            for row in ensure_list(page.get("values", []), context=endpoint):
                if row.get("deleted") is True:
                    continue
                comments.append(self._to_comment(row, endpoint=endpoint))
            # ``next`` is an absolute URL that already carries the paging query.
            next_url = optional_str(page, key="next", endpoint=endpoint)
            params = None
        return tuple(comments)

    def upsert_comment(
        self,
        pull_request: PullRequest,
        body: str,
        *,
        existing: RemoteComment | None = None,
        position: CommentPosition | None = None,
    ) -> RemoteComment:
        comments_endpoint = f"{self._pr_endpoint(pull_request.pull_request_id)}/comments"
        if existing is not None:
            endpoint = f"{comments_endpoint}/{existing.comment_id}"
            payload = request_json(
                self._http, "PUT", endpoint, json={"content": {"raw": body}}
            )
            return self._to_comment(payload, endpoint=endpoint)

        request_body: dict[str, Any] = {"content": {"raw": body}}
        if position is not None:
            request_body["inline"] = {"path": position.path, "to": position.line}
        payload = request_json(self._http, "POST", comments_endpoint, json=request_body)
        return self._to_comment(payload, endpoint=comments_endpoint)

    def upsert_check_run(self, pull_request: PullRequest, report: CheckRunReport) -> None:
        # Build statuses with the same key replace each other.
        request(
            self._http,
            "POST",
            f"{self._repo_endpoint}/commit/{pull_request.head_sha}/statuses/build",
            json={
                "state": _state(report.passed),
                "key": report.name,
                "name": report.name,
                "url": report.details_url,
                "description": report.description[:BITBUCKET_CLOUD_DESCRIPTION_LIMIT],
            },
        )

    def delete_annotation(self, pull_request: PullRequest, comment: RemoteComment) -> None:
        request(
            self._http,
            "DELETE",
            f"{self._pr_endpoint(pull_request.pull_request_id)}/comments/{comment.comment_id}",
        )


def build_bitbucket_cloud_http_client(
    token: str,
    *,
    base_url: str | None = None,
    timeout_seconds: float = 20,
    trust_env: bool = True,
) -> httpx.Client:
    """Build an authenticated Bitbucket Cloud HTTP client."""
    return httpx.Client(
        base_url=(base_url or BITBUCKET_CLOUD_API_BASE_URL).rstrip("/"),
        headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        timeout=timeout_seconds,
        trust_env=trust_env,
        follow_redirects=True,
    )
