"""GitLab REST client: merge requests, discussions and commit statuses."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

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
    ensure_list,
    optional_str,
    request,
    request_json,
    request_json_list,
    require_int,
    require_object,
    require_str,
)

GITLAB_API_BASE_URL = "https://gitlab.com/api/v4"
GITLAB_PAGE_SIZE = 100
GITLAB_DESCRIPTION_LIMIT = 255


def _state(passed: bool | None) -> str:
    if passed is None:
        return "canceled"
    return "success" if passed else "failed"


class GitlabClient(HttpPlatformClient):
    """Decoration operations against one GitLab project."""

    alm = Alm.GITLAB

    def __init__(self, http_client: httpx.Client, project_path: str) -> None:
        super().__init__(http_client)
        if not project_path.strip():
            raise AlmInputError("Invalid GitLab project ''. Expected a project path or id.")
        self._project = quote(project_path.strip(), safe="")

    def _mr_endpoint(self, iid: str) -> str:
        return f"/projects/{self._project}/merge_requests/{iid}"

    def _paginate(self, endpoint: str) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        page = 1
        while True:
            page_rows = request_json_list(
                self._http, endpoint, params={"per_page": GITLAB_PAGE_SIZE, "page": page}
            )
            rows.extend(page_rows)
            if len(page_rows) < GITLAB_PAGE_SIZE:
                return rows
            page += 1

    def fetch_pull_request(self, pull_request_id: str) -> PullRequest:
        if not pull_request_id.isdigit():
            raise AlmInputError(
                f"Invalid merge request iid '{pull_request_id}'. Expected a positive integer."
            )
        endpoint = self._mr_endpoint(pull_request_id)
        payload = request_json(self._http, "GET", endpoint)
        diff_refs = require_object(payload, key="diff_refs", endpoint=endpoint)
        return PullRequest(
            pull_request_id=str(require_int(payload, key="iid", endpoint=endpoint)),
            url=require_str(payload, key="web_url", endpoint=endpoint),
            head_sha=require_str(diff_refs, key="head_sha", endpoint=endpoint),
            base_sha=require_str(diff_refs, key="base_sha", endpoint=endpoint),
            start_sha=optional_str(diff_refs, key="start_sha", endpoint=endpoint),
        )

    def fetch_diff(self, pull_request: PullRequest) -> tuple[FileDiff, ...]:
        endpoint = f"{self._mr_endpoint(pull_request.pull_request_id)}/diffs"
        files: list[FileDiff] = []
        for row in self._paginate(endpoint):
            if row.get("deleted_file") is True:
                continue
            patch = optional_str(row, key="diff", endpoint=endpoint) or ""
            files.append(
                FileDiff(
                    path=require_str(row, key="new_path", endpoint=endpoint),
                    changed_ranges=parse_head_changed_ranges_from_patch(patch),
                )
            )
        return tuple(files)

    def _to_comment(
        self, note: dict[str, Any], *, discussion_id: str | None, endpoint: str
    ) -> RemoteComment:
        position_payload = note.get("position")
        position = None
        kind = CommentKind.GENERAL
        if isinstance(position_payload, dict):
            kind = CommentKind.INLINE
            new_line = position_payload.get("new_line")
            new_path = position_payload.get("new_path")
            if isinstance(new_line, int) and isinstance(new_path, str):
                position = CommentPosition(path=new_path, line=new_line)
        return RemoteComment(
            comment_id=str(require_int(note, key="id", endpoint=endpoint)),
            body=optional_str(note, key="body", endpoint=endpoint) or "",
            kind=kind,
            position=position,
            thread_id=discussion_id,
        )

    def list_comments(self, pull_request: PullRequest) -> tuple[RemoteComment, ...]:
        endpoint = f"{self._mr_endpoint(pull_request.pull_request_id)}/discussions"
        comments: list[RemoteComment] = []
        for discussion in self._paginate(endpoint):
            discussion_id = require_str(discussion, key="id", endpoint=endpoint)
            for note in ensure_list(discussion.get("notes", []), context=endpoint):
                if note.get("system") is True:
                    continue
                comments.append(
                    self._to_comment(note, discussion_id=discussion_id, endpoint=endpoint)
                )
        return tuple(comments)

    def upsert_comment(
        self,
        pull_request: PullRequest,
        body: str,
        *,
        existing: RemoteComment | None = None,
        position: CommentPosition | None = None,
    ) -> RemoteComment:
        mr_endpoint = self._mr_endpoint(pull_request.pull_request_id)
        if existing is not None:
            endpoint = f"{mr_endpoint}/notes/{existing.comment_id}"
            note = request_json(self._http, "PUT", endpoint, json={"body": body})
            return self._to_comment(note, discussion_id=existing.thread_id, endpoint=endpoint)

        if position is None:
            endpoint = f"{mr_endpoint}/notes"
            note = request_json(self._http, "POST", endpoint, json={"body": body})
            return self._to_comment(note, discussion_id=None, endpoint=endpoint)

        endpoint = f"{mr_endpoint}/discussions"
        discussion = request_json(
            self._http,
            "POST",
            endpoint,
            json={
                "body": body,
                "position": {
                    "position_type": "text",
                    "base_sha": pull_request.base_sha,
                    "start_sha": pull_request.start_sha or pull_request.base_sha,
                    "head_sha": pull_request.head_sha,
                    "old_path": position.path,
                    "new_path": position.path,
                    "new_line": position.line,
                },
            },
        )
        notes = ensure_list(discussion.get("notes", []), context=endpoint)
        if not notes:
            raise AlmApiError(
                "Expected at least one note in created discussion.",
                status_code=500,
                endpoint=endpoint,
            )
        return self._to_comment(
            notes[0],
            discussion_id=require_str(discussion, key="id", endpoint=endpoint),
            endpoint=endpoint,
        )

    def upsert_check_run(self, pull_request: PullRequest, report: CheckRunReport) -> None:
        # Commit statuses are keyed by name, so posting again replaces the previous one.
        request_json(
            self._http,
            "POST",
            f"/projects/{self._project}/statuses/{pull_request.head_sha}",
            json={
                "state": _state(report.passed),
                "name": report.name,
                "target_url": report.details_url,
                "description": report.description[:GITLAB_DESCRIPTION_LIMIT],
            },
        )

    def delete_annotation(self, pull_request: PullRequest, comment: RemoteComment) -> None:
        mr_endpoint = self._mr_endpoint(pull_request.pull_request_id)
        if comment.thread_id is not None:
            endpoint = f"{mr_endpoint}/discussions/{comment.thread_id}/notes/{comment.comment_id}"
        else:
            endpoint = f"{mr_endpoint}/notes/{comment.comment_id}"
        request(self._http, "DELETE", endpoint)


def build_gitlab_http_client(
    token: str,
    *,
    base_url: str | None = None,
    timeout_seconds: float = 20,
    trust_env: bool = True,
) -> httpx.Client:
    """Build an authenticated GitLab HTTP client."""
    return httpx.Client(
        base_url=(base_url or GITLAB_API_BASE_URL).rstrip("/"),
        headers={"PRIVATE-TOKEN": token, "Accept": "application/json"},
        timeout=timeout_seconds,
        trust_env=trust_env,
    )
