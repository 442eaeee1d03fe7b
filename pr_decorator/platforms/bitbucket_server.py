"""Bitbucket Server / Data Center REST client."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from pr_decorator.diff_mapper import ChangedRange, FileDiff
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
    AlmApiError,
    AlmInputError,
    ensure_list,
    request,
    request_json,
    require_int,
    require_object,
    require_str,
)

BITBUCKET_PAGE_SIZE = 100
BITBUCKET_DESCRIPTION_LIMIT = 255


def ranges_from_lines(lines: list[int]) -> tuple[ChangedRange, ...]:
    """Collapse line numbers into contiguous ranges."""
    ranges: list[ChangedRange] = []
    for line in sorted(set(lines)):
        if ranges and ranges[-1].line_end == line - 1:
            ranges[-1] = ChangedRange(line_start=ranges[-1].line_start, line_end=line)
        else:
            ranges.append(ChangedRange(line_start=line, line_end=line))
    return tuple(ranges)


def _state(passed: bool | None) -> str:
    if passed is None:
        return "CANCELLED"
    return "SUCCESSFUL" if passed else "FAILED"


class BitbucketServerClient(HttpPlatformClient):
    """Decoration operations against one Bitbucket Server repository."""

    alm = Alm.BITBUCKET

    def __init__(self, http_client: httpx.Client, project_key: str, repository_slug: str) -> None:
        super().__init__(http_client)
        if not project_key.strip() or not repository_slug.strip():
            raise AlmInputError(
                "Bitbucket Server requires both a project key and a repository slug."
            )
        self._project = quote(project_key.strip(), safe="")
        self._slug = quote(repository_slug.strip(), safe="")

    def _pr_endpoint(self, pull_request_id: str) -> str:
        return (
            f"/rest/api/1.0/projects/{self._project}/repos/{self._slug}"
            f"/pull-requests/{pull_request_id}"
        )

    def fetch_pull_request(self, pull_request_id: str) -> PullRequest:
        if not pull_request_id.isdigit():
            raise AlmInputError(
                f"Invalid pull request id '{pull_request_id}'. Expected a positive integer."
            )
        endpoint = self._pr_endpoint(pull_request_id)
        payload = request_json(self._http, "GET", endpoint)
        links = require_object(payload, key="links", endpoint=endpoint)
        self_links = ensure_list(links.get("self"), context=endpoint)
        if not self_links:
            raise AlmApiError(
                "Expected a self link in API response.", status_code=500, endpoint=endpoint
            )
        from_ref = require_object(payload, key="fromRef", endpoint=endpoint)
        to_ref = require_object(payload, key="toRef", endpoint=endpoint)
        return PullRequest(
            pull_request_id=str(require_int(payload, key="id", endpoint=endpoint)),
            url=require_str(self_links[0], key="href", endpoint=endpoint),
            head_sha=require_str(from_ref, key="latestCommit", endpoint=endpoint),
            base_sha=require_str(to_ref, key="latestCommit", endpoint=endpoint),
        )

    def fetch_diff(self, pull_request: PullRequest) -> tuple[FileDiff, ...]:
        endpoint = f"{self._pr_endpoint(pull_request.pull_request_id)}/diff"
        payload = request_json(self._http, "GET", endpoint, params={"contextLines": 0})
        files: list[FileDiff] = []
        for diff in ensure_list(payload.get("diffs", []), context=endpoint):
            destination = diff.get("destination")
            if not isinstance(destination, dict):
                continue
            added_lines: list[int] = []
            for hunk in ensure_list(diff.get("hunks", []), context=endpoint):
                for segment in ensure_list(hunk.get("segments", []), context=endpoint):
                    if segment.get("type") != "ADDED":
                        continue
                    for line in ensure_list(segment.get("lines", []), context=endpoint):
                        added_lines.append(
                            require_int(line, key="destination", endpoint=endpoint)
                        )
            files.append(
                FileDiff(
                    path=require_str(destination, key="toString", endpoint=endpoint),
                    changed_ranges=ranges_from_lines(added_lines),
                )
            )
        return tuple(files)

    def _to_comment(
        self, comment: dict[str, Any], anchor: dict[str, Any] | None, *, endpoint: str
    ) -> RemoteComment:
        position = None
        kind = CommentKind.GENERAL
        if anchor is not None and isinstance(anchor.get("path"), str):
            kind = CommentKind.INLINE
            line = anchor.get("line")
            if isinstance(line, int):
                position = CommentPosition(path=anchor["path"], line=line)
        return RemoteComment(
            comment_id=str(require_int(comment, key="id", endpoint=endpoint)),
            body=str(comment.get("text") or ""),
            kind=kind,
            position=position,
            version=require_int(comment, key="version", endpoint=endpoint),
        )

    def list_comments(self, pull_request: PullRequest) -> tuple[RemoteComment, ...]:
        endpoint = f"{self._pr_endpoint(pull_request.pull_request_id)}/activities"
        seen: set[str] = set()
        deleted: set[str] = set()
        comments: list[RemoteComment] = []
        start = 0
        while True:
            page = request_json(
                self._http,
                "GET",
                endpoint,
                params={"start": start, "limit": BITBUCKET_PAGE_SIZE},
            )
            for activity in ensure_list(page.get("values", []), context=endpoint):
                if activity.get("action") != "COMMENTED":
                    continue
                comment = activity.get("comment")
                if not isinstance(comment, dict):
                    continue
                comment_id = str(require_int(comment, key="id", endpoint=endpoint))
                if activity.get("commentAction") == "DELETED":
                    deleted.add(comment_id)
                if comment_id in seen:
                    continue
                seen.add(comment_id)
                anchor = activity.get("commentAnchor")
                comments.append(
                    self._to_comment(
                        comment, anchor if isinstance(anchor, dict) else None, endpoint=endpoint
                    )
                )
            if page.get("isLastPage", True):
                break
            start = require_int(page, key="nextPageStart", endpoint=endpoint)
        # Activities are returned newest first.
        return tuple(
            comment for comment in reversed(comments) if comment.comment_id not in deleted
        )

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
                self._http,
                "PUT",
                endpoint,
                json={"text": body, "version": existing.version or 0},
            )
            anchor = (
                {"path": existing.position.path, "line": existing.position.line}
                if existing.position is not None
                else None
            )
            return self._to_comment(payload, anchor, endpoint=endpoint)

        request_body: dict[str, Any] = {"text": body}
        anchor = None
        if position is not None:
            anchor = {
                "path": position.path,
                "line": position.line,
                "lineType": "ADDED",
                "fileType": "TO",
                "diffType": "EFFECTIVE",
            }
            request_body["anchor"] = anchor
        payload = request_json(self._http, "POST", comments_endpoint, json=request_body)
        return self._to_comment(payload, anchor, endpoint=comments_endpoint)

    def upsert_check_run(self, pull_request: PullRequest, report: CheckRunReport) -> None:
        # Build statuses are keyed by ``key`` and replaced on each post.
        request(
            self._http,
            "POST",
            f"/rest/build-status/1.0/commits/{pull_request.head_sha}",
            json={
                "state": _state(report.passed),
                "key": report.name,
                "name": report.name,
                "url": report.details_url,
                "description": report.description[:BITBUCKET_DESCRIPTION_LIMIT],
            },
        )

    def delete_annotation(self, pull_request: PullRequest, comment: RemoteComment) -> None:
        comments_endpoint = f"{self._pr_endpoint(pull_request.pull_request_id)}/comments"
        endpoint = f"{comments_endpoint}/{comment.comment_id}"
        request(
            self._http,
            "DELETE",
            endpoint,
            params={"version": comment.version or 0},
        )


def build_bitbucket_server_http_client(
    token: str,
    *,
    base_url: str,
    timeout_seconds: float = 20,
    trust_env: bool = True,
) -> httpx.Client:
    """Build an authenticated Bitbucket Server HTTP client."""
    return httpx.Client(
        base_url=base_url.rstrip("/"),
        headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        timeout=timeout_seconds,
        trust_env=trust_env,
    )
