"""GitHub REST client: pull requests, comments and check runs."""

from __future__ import annotations

from typing import Any

import httpx

from pr_decorator.diff_mapper import FileDiff, parse_head_changed_ranges_from_patch
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
    optional_str,
    request,
    request_json,
    request_json_list,
    require_int,
    require_object,
    require_str,
)

GITHUB_API_BASE_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
GITHUB_JSON_MEDIA_TYPE = "application/vnd.github+json"
GITHUB_PAGE_SIZE = 100
GITHUB_CHECK_RUN_SUMMARY_LIMIT = 65535


def parse_repo_full_name(repo_full_name: str) -> tuple[str, str]:
    """Parse and validate repository input in owner/repo format."""
    owner, separator, repo = repo_full_name.strip().partition("/")
    if not separator or not owner or not repo or "/" in repo:
        raise AlmInputError(
            f"Invalid repo '{repo_full_name}'. Expected format is owner/repo."
        )
    return owner, repo


def validate_pr_number(pull_request_id: str | int) -> int:
    """Validate and normalize pull request number input."""
    try:
        pr_number = int(pull_request_id)
    except ValueError as error:
        raise AlmInputError(
            f"Invalid PR number '{pull_request_id}'. Expected a positive integer."
        ) from error
    if pr_number <= 0:
        raise AlmInputError(
            f"Invalid PR number '{pull_request_id}'. Expected a positive integer."
        )
    return pr_number


def _conclusion(passed: bool | None) -> str:
    if passed is None:
        return "neutral"
    return "success" if passed else "failure"


class GithubClient(HttpPlatformClient):
    """Decoration operations against one GitHub repository."""

    alm = Alm.GITHUB

    def __init__(self, http_client: httpx.Client, repo_full_name: str) -> None:
        super().__init__(http_client)
        self._owner, self._repo = parse_repo_full_name(repo_full_name)

    @property
    def _repo_endpoint(self) -> str:
        return f"/repos/{self._owner}/{self._repo}"

    def _paginate(self, endpoint: str) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        page = 1
        while True:
            page_rows = request_json_list(
                self._http,
                endpoint,
                params={"per_page": GITHUB_PAGE_SIZE, "page": page},
                accept_header=GITHUB_JSON_MEDIA_TYPE,
            )
            rows.extend(page_rows)
            if len(page_rows) < GITHUB_PAGE_SIZE:
                return rows
            page += 1

    def fetch_pull_request(self, pull_request_id: str) -> PullRequest:
        pr_number = validate_pr_number(pull_request_id)
        endpoint = f"{self._repo_endpoint}/pulls/{pr_number}"
        payload = request_json(self._http, "GET", endpoint, accept_header=GITHUB_JSON_MEDIA_TYPE)
        base_payload = require_object(payload, key="base", endpoint=endpoint)
        head_payload = require_object(payload, key="head", endpoint=endpoint)
        return PullRequest(
            pull_request_id=str(require_int(payload, key="number", endpoint=endpoint)),
            url=require_str(payload, key="html_url", endpoint=endpoint),
            head_sha=require_str(head_payload, key="sha", endpoint=endpoint),
            base_sha=require_str(base_payload, key="sha", endpoint=endpoint),
        )

    def fetch_diff(self, pull_request: PullRequest) -> tuple[FileDiff, ...]:
        endpoint = f"{self._repo_endpoint}/pulls/{pull_request.pull_request_id}/files"
        files: list[FileDiff] = []
        for row in self._paginate(endpoint):
            status = require_str(row, key="status", endpoint=endpoint)
            if status == "removed":
                continue
            patch = optional_str(row, key="patch", endpoint=endpoint)
            files.append(
                FileDiff(
                    path=require_str(row, key="filename", endpoint=endpoint),
                    changed_ranges=(
                        parse_head_changed_ranges_from_patch(patch) if patch is not None else ()
                    ),
                )
            )
        return tuple(files)

    def _to_comment(
        self, row: dict[str, Any], *, kind: CommentKind, endpoint: str
    ) -> RemoteComment:
        position = None
        if kind is CommentKind.INLINE:
            line = row.get("line")
            if isinstance(line, int) and not isinstance(line, bool):
                position = CommentPosition(
                    path=require_str(row, key="path", endpoint=endpoint), line=line
                )
        return RemoteComment(
            comment_id=str(require_int(row, key="id", endpoint=endpoint)),
            body=optional_str(row, key="body", endpoint=endpoint) or "",
            kind=kind,
            position=position,
        )

    def list_comments(self, pull_request: PullRequest) -> tuple[RemoteComment, ...]:
        number = pull_request.pull_request_id
        issue_endpoint = f"{self._repo_endpoint}/issues/{number}/comments"
        review_endpoint = f"{self._repo_endpoint}/pulls/{number}/comments"
        general = [
            self._to_comment(row, kind=CommentKind.GENERAL, endpoint=issue_endpoint)
            for row in self._paginate(issue_endpoint)
        ]
        inline = [
            self._to_comment(row, kind=CommentKind.INLINE, endpoint=review_endpoint)
            for row in self._paginate(review_endpoint)
        ]
        return (*general, *inline)

    def upsert_comment(
        self,
        pull_request: PullRequest,
        body: str,
        *,
        existing: RemoteComment | None = None,
        position: CommentPosition | None = None,
    ) -> RemoteComment:
        number = pull_request.pull_request_id
        if existing is not None:
            kind = existing.kind
            collection = "pulls" if kind is CommentKind.INLINE else "issues"
            endpoint = f"{self._repo_endpoint}/{collection}/comments/{existing.comment_id}"
            payload = request_json(
                self._http,
                "PATCH",
                endpoint,
                json={"body": body},
                accept_header=GITHUB_JSON_MEDIA_TYPE,
            )
        elif position is not None:
            kind = CommentKind.INLINE
            endpoint = f"{self._repo_endpoint}/pulls/{number}/comments"
            payload = request_json(
                self._http,
                "POST",
                endpoint,
                json={
                    "body": body,
                    "commit_id": pull_request.head_sha,
                    "path": position.path,
                    "line": position.line,
                    "side": "RIGHT",
                },
                accept_header=GITHUB_JSON_MEDIA_TYPE,
            )
        else:
            kind = CommentKind.GENERAL
            endpoint = f"{self._repo_endpoint}/issues/{number}/comments"
            payload = request_json(
                self._http,
                "POST",
                endpoint,
                json={"body": body},
                accept_header=GITHUB_JSON_MEDIA_TYPE,
            )
        return self._to_comment(payload, kind=kind, endpoint=endpoint)

    def upsert_check_run(self, pull_request: PullRequest, report: CheckRunReport) -> None:
        lookup_endpoint = f"{self._repo_endpoint}/commits/{pull_request.head_sha}/check-runs"
        lookup = request_json(
            self._http,
            "GET",
            lookup_endpoint,
            params={"check_name": report.name},
            accept_header=GITHUB_JSON_MEDIA_TYPE,
        )
        check_runs = lookup.get("check_runs")
        if not isinstance(check_runs, list):
            raise AlmApiError(
                "Expected array field 'check_runs' in API response.",
                status_code=500,
                endpoint=lookup_endpoint,
            )

        body = {
            "name": report.name,
            "head_sha": pull_request.head_sha,
            "status": "completed",
            "conclusion": _conclusion(report.passed),
            "started_at": report.started_at.isoformat(),
            "completed_at": report.completed_at.isoformat(),
            "details_url": report.details_url,
            "output": {
                "title": report.title,
                "summary": report.summary[:GITHUB_CHECK_RUN_SUMMARY_LIMIT],
            },
        }
        if check_runs:
            check_run_id = require_int(check_runs[0], key="id", endpoint=lookup_endpoint)
            request_json(
                self._http,
                "PATCH",
                f"{self._repo_endpoint}/check-runs/{check_run_id}",
                json=body,
                accept_header=GITHUB_JSON_MEDIA_TYPE,
            )
            return
        request_json(
            self._http,
            "POST",
            f"{self._repo_endpoint}/check-runs",
            json=body,
            accept_header=GITHUB_JSON_MEDIA_TYPE,
        )

    def delete_annotation(self, pull_request: PullRequest, comment: RemoteComment) -> None:
        collection = "pulls" if comment.kind is CommentKind.INLINE else "issues"
        request(
            self._http,
            "DELETE",
            f"{self._repo_endpoint}/{collection}/comments/{comment.comment_id}",
        )


def build_github_http_client(
    token: str,
    *,
    base_url: str | None = None,
    timeout_seconds: float = 20,
    trust_env: bool = True,
) -> httpx.Client:
    """Build an authenticated GitHub HTTP client."""
    headers = {
        "Accept": GITHUB_JSON_MEDIA_TYPE,
        "Authorization": f"Bearer {token}",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }
    return httpx.Client(
        base_url=(base_url or GITHUB_API_BASE_URL).rstrip("/"),
        headers=headers,
        timeout=timeout_seconds,
        trust_env=trust_env,
    )
