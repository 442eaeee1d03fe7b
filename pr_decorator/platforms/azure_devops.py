"""Azure DevOps REST client.

Azure DevOps reports iteration changes per file without hunks, so every file in
the last iteration is treated as wholly changed.
"""

from __future__ import annotations

import base64
from typing import Any
from urllib.parse import quote

import httpx

from pr_decorator.diff_mapper import FileDiff
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

AZURE_API_VERSION = "7.1"
AZURE_STATUS_GENRE = "code-analysis"
AZURE_DESCRIPTION_LIMIT = 255
THREAD_STATUS_ACTIVE = 1
COMMENT_TYPE_TEXT = 1


def _state(passed: bool | None) -> str:
    if passed is None:
        return "notApplicable"
    return "succeeded" if passed else "failed"


def _repository_path(path: str) -> str:
    return path.lstrip("/")


class AzureDevopsClient(HttpPlatformClient):
    """Decoration operations against one Azure Repos Git repository."""

    alm = Alm.AZURE_DEVOPS

    def __init__(self, http_client: httpx.Client, project: str, repository: str) -> None:
        super().__init__(http_client)
        if not project.strip() or not repository.strip():
            raise AlmInputError("Azure DevOps requires both a project and a repository name.")
        self._project = quote(project.strip(), safe="")
        self._repository = quote(repository.strip(), safe="")

    def _pr_endpoint(self, pull_request_id: str) -> str:
        return (
            f"/{self._project}/_apis/git/repositories/{self._repository}"
            f"/pullRequests/{pull_request_id}"
        )

    def _get(self, endpoint: str) -> dict[str, Any]:
        return request_json(self._http, "GET", endpoint, params={"api-version": AZURE_API_VERSION})

    def _write(self, method: str, endpoint: str, body: object) -> dict[str, Any]:
        return request_json(
            self._http, method, endpoint, json=body, params={"api-version": AZURE_API_VERSION}
        )

    def fetch_pull_request(self, pull_request_id: str) -> PullRequest:
        if not pull_request_id.isdigit():
            raise AlmInputError(
                f"Invalid pull request id '{pull_request_id}'. Expected a positive integer."
            )
        endpoint = self._pr_endpoint(pull_request_id)
        payload = self._get(endpoint)
        source = require_object(payload, key="lastMergeSourceCommit", endpoint=endpoint)
        target = require_object(payload, key="lastMergeTargetCommit", endpoint=endpoint)
        number = require_int(payload, key="pullRequestId", endpoint=endpoint)
        web_base = str(self._http.base_url).rstrip("/")
        return PullRequest(
            pull_request_id=str(number),
            url=f"{web_base}/{self._project}/_git/{self._repository}/pullrequest/{number}",
            head_sha=require_str(source, key="commitId", endpoint=endpoint),
            base_sha=require_str(target, key="commitId", endpoint=endpoint),
        )

    def fetch_diff(self, pull_request: PullRequest) -> tuple[FileDiff, ...]:
        iterations_endpoint = f"{self._pr_endpoint(pull_request.pull_request_id)}/iterations"
        iterations = ensure_list(
            self._get(iterations_endpoint).get("value", []), context=iterations_endpoint
        )
        if not iterations:
            return ()
        last_iteration = max(
            require_int(iteration, key="id", endpoint=iterations_endpoint)
            for iteration in iterations
        )
        changes_endpoint = f"{iterations_endpoint}/{last_iteration}/changes"
        changes = ensure_list(
            self._get(changes_endpoint).get("changeEntries", []), context=changes_endpoint
        )
        files: list[FileDiff] = []
        for change in changes:
            if "delete" in str(change.get("changeType", "")).lower():
                continue
            item = require_object(change, key="item", endpoint=changes_endpoint)
            if item.get("isFolder") is True:
                continue
            path = require_str(item, key="path", endpoint=changes_endpoint)
            files.append(FileDiff(path=_repository_path(path), whole_file=True))
        return tuple(files)

    def _to_comment(
        self,
        comment: dict[str, Any],
        *,
        thread_id: str,
        thread_context: object,
        endpoint: str,
    ) -> RemoteComment:
        kind = CommentKind.GENERAL
        position = None
        if isinstance(thread_context, dict) and isinstance(thread_context.get("filePath"), str):
            kind = CommentKind.INLINE
            start = thread_context.get("rightFileStart")
            line = start.get("line") if isinstance(start, dict) else None
            if isinstance(line, int) and not isinstance(line, bool):
                position = CommentPosition(
                    path=_repository_path(thread_context["filePath"]), line=line
                )
        return RemoteComment(
            comment_id=str(require_int(comment, key="id", endpoint=endpoint)),
            body=str(comment.get("content") or ""),
            kind=kind,
            position=position,
            thread_id=thread_id,
        )

    def list_comments(self, pull_request: PullRequest) -> tuple[RemoteComment, ...]:
        endpoint = f"{self._pr_endpoint(pull_request.pull_request_id)}/threads"
        comments: list[RemoteComment] = []
        for thread in ensure_list(self._get(endpoint).get("value", []), context=endpoint):
            if thread.get("isDeleted") is True:
                continue
            thread_id = str(require_int(thread, key="id", endpoint=endpoint))
            for comment in ensure_list(thread.get("comments", []), context=endpoint):
                if comment.get("isDeleted") is True or comment.get("commentType") == "system":
                    continue
                comments.append(
                    self._to_comment(
                        comment,
                        thread_id=thread_id,
                        thread_context=thread.get("threadContext"),
                        endpoint=endpoint,
                    )
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
        threads_endpoint = f"{self._pr_endpoint(pull_request.pull_request_id)}/threads"
        if existing is not None:
            if existing.thread_id is None:
                raise AlmInputError("Azure DevOps comments can only be updated within a thread.")
            endpoint = f"{threads_endpoint}/{existing.thread_id}/comments/{existing.comment_id}"
            comment = self._write("PATCH", endpoint, {"content": body})
            thread_context = (
                {
                    "filePath": existing.position.path,
                    "rightFileStart": {"line": existing.position.line},
                }
                if existing.position is not None
                else None
            )
            return self._to_comment(
                comment,
                thread_id=existing.thread_id,
                thread_context=thread_context,
                endpoint=endpoint,
            )

        thread_body: dict[str, Any] = {
            "comments": [{"parentCommentId": 0, "content": body, "commentType": COMMENT_TYPE_TEXT}],
            "status": THREAD_STATUS_ACTIVE,
        }
        if position is not None:
            thread_body["threadContext"] = {
                "filePath": f"/{position.path}",
                "rightFileStart": {"line": position.line, "offset": 1},
                "rightFileEnd": {"line": position.line, "offset": 1},
            }
        thread = self._write("POST", threads_endpoint, thread_body)
        created = ensure_list(thread.get("comments", []), context=threads_endpoint)
        if not created:
            raise AlmApiError(
                "Expected at least one comment in created thread.",
                status_code=500,
                endpoint=threads_endpoint,
            )
        return self._to_comment(
            created[0],
            thread_id=str(require_int(thread, key="id", endpoint=threads_endpoint)),
            thread_context=thread.get("threadContext"),
            endpoint=threads_endpoint,
        )

    def upsert_check_run(self, pull_request: PullRequest, report: CheckRunReport) -> None:
        # Statuses are versioned per context; the newest one is shown on the pull request.
        self._write(
            "POST",
            f"{self._pr_endpoint(pull_request.pull_request_id)}/statuses",
            {
                "state": _state(report.passed),
                "description": report.description[:AZURE_DESCRIPTION_LIMIT],
                "context": {"genre": AZURE_STATUS_GENRE, "name": report.name},
                "targetUrl": report.details_url,
            },
        )

    def delete_annotation(self, pull_request: PullRequest, comment: RemoteComment) -> None:
        if comment.thread_id is None:
            raise AlmInputError("Azure DevOps comments can only be deleted within a thread.")
        request(
            self._http,
            "DELETE",
            f"{self._pr_endpoint(pull_request.pull_request_id)}/threads/{comment.thread_id}"
            f"/comments/{comment.comment_id}",
            params={"api-version": AZURE_API_VERSION},
        )


def build_azure_devops_http_client(
    token: str,
    *,
    base_url: str,
    timeout_seconds: float = 20,
    trust_env: bool = True,
) -> httpx.Client:
    """Build an Azure DevOps HTTP client authenticated with a personal access token."""
    credentials = base64.b64encode(f":{token}".encode()).decode("ascii")
    return httpx.Client(
        base_url=base_url.rstrip("/"),
        headers={"Authorization": f"Basic {credentials}", "Accept": "application/json"},
        timeout=timeout_seconds,
        trust_env=trust_env,
    )
