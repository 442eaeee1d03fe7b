"""Unit tests for GitHub client behavior."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
import pytest
from pr_decorator.diff_mapper import ChangedRange
from pr_decorator.platforms.base import (
    CheckRunReport,
    CommentKind,
    CommentPosition,
    PullRequest,
    RemoteComment,
)
from pr_decorator.platforms.github import (
    GithubClient,
    build_github_http_client,
    parse_repo_full_name,
    validate_pr_number,
)
from pr_decorator.platforms.http import AlmApiError, AlmInputError

PULL_REQUEST = PullRequest(
    pull_request_id="42",
    url="https://github.com/acme/rocket/pull/42",
    head_sha="head-sha",
    base_sha="base-sha",
)


def make_client(handler: Callable[[httpx.Request], httpx.Response]) -> GithubClient:
    """Create a GitHub client backed by mock transport."""
    transport = httpx.MockTransport(handler)
    http_client = httpx.Client(base_url="https://api.github.com", transport=transport)
    return GithubClient(http_client, "acme/rocket")


def make_pr_payload() -> dict[str, object]:
    """Build a minimal valid pull request API payload."""
    return {
        "number": 42,
        "title": "Fix race condition",
        "state": "open",
        "html_url": "https://github.com/acme/rocket/pull/42",
        "base": {"ref": "main", "sha": "base-sha"},
        "head": {"ref": "feature/race-fix", "sha": "head-sha"},
    }


def make_check_run() -> CheckRunReport:
    return CheckRunReport(
        name="Code Analysis",
        passed=False,
        title="Quality Gate failed",
        summary="summary text",
        details_url="https://analysis.example.com/dashboard?id=rocket&pullRequest=42",
        started_at=datetime(2026, 10, 1, 12, 0, tzinfo=UTC),
        completed_at=datetime(2026, 10, 1, 12, 5, tzinfo=UTC),
    )


@pytest.mark.unit
def test_parse_repo_full_name_accepts_owner_repo() -> None:
    owner, repo = parse_repo_full_name("acme/rocket")
    assert owner == "acme"
    assert repo == "rocket"


@pytest.mark.unit
def test_parse_repo_full_name_rejects_invalid_format() -> None:
    with pytest.raises(AlmInputError):
        parse_repo_full_name("acme")


@pytest.mark.unit
def test_validate_pr_number_rejects_non_positive() -> None:
    with pytest.raises(AlmInputError):
        validate_pr_number(0)
    with pytest.raises(AlmInputError):
        validate_pr_number("abc")


@pytest.mark.unit
def test_fetch_pull_request_parses_fields() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/repos/acme/rocket/pulls/42"
        return httpx.Response(status_code=200, json=make_pr_payload())

    with make_client(handler) as client:
        pull_request = client.fetch_pull_request("42")

    assert pull_request == PULL_REQUEST


@pytest.mark.unit
def test_fetch_pull_request_rejects_invalid_shape() -> None:
    payload = make_pr_payload()
    payload["head"] = "not-an-object"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=200, json=payload)

    with make_client(handler) as client, pytest.raises(AlmApiError):
        client.fetch_pull_request("42")


@pytest.mark.unit
def test_fetch_pull_request_surfaces_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=404, json={"message": "Not Found"})

    with make_client(handler) as client, pytest.raises(AlmApiError) as error_info:
        client.fetch_pull_request("42")

    assert error_info.value.status_code == 404
    assert error_info.value.endpoint == "/repos/acme/rocket/pulls/42"


@pytest.mark.unit
def test_fetch_diff_paginates_and_skips_removed_files() -> None:
    requested_pages: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/repos/acme/rocket/pulls/42/files"
        page = request.url.params.get("page") or ""
        requested_pages.append(page)
        if page == "1":
            rows = [
                {
                    "filename": f"src/file_{index}.py",
                    "status": "modified",
                    "patch": "@@ -1,1 +1,2 @@\n line\n+added",
                }
                for index in range(100)
            ]
            return httpx.Response(status_code=200, json=rows)
        return httpx.Response(
            status_code=200,
            json=[
                {"filename": "src/gone.py", "status": "removed", "patch": "@@ -1 +0,0 @@\n-x"},
                {"filename": "assets/logo.png", "status": "added"},
            ],
        )

    with make_client(handler) as client:
        files = client.fetch_diff(PULL_REQUEST)

    assert requested_pages == ["1", "2"]
    assert len(files) == 101
    assert files[0].changed_ranges == (ChangedRange(2, 2),)
    assert files[-1].path == "assets/logo.png"
    assert files[-1].changed_ranges == ()


@pytest.mark.unit
def test_list_comments_merges_issue_and_review_comments() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/repos/acme/rocket/issues/42/comments":
            return httpx.Response(status_code=200, json=[{"id": 1, "body": "summary"}])
        if request.url.path == "/repos/acme/rocket/pulls/42/comments":
            return httpx.Response(
                status_code=200,
                json=[
                    {"id": 2, "body": "inline", "path": "src/app.py", "line": 7},
                    {"id": 3, "body": "outdated", "path": "src/app.py", "line": None},
                ],
            )
        raise AssertionError(f"Unexpected endpoint {request.url.path}")

    with make_client(handler) as client:
        comments = client.list_comments(PULL_REQUEST)

    assert comments == (
        RemoteComment(comment_id="1", body="summary", kind=CommentKind.GENERAL),
        RemoteComment(
            comment_id="2",
            body="inline",
            kind=CommentKind.INLINE,
            position=CommentPosition(path="src/app.py", line=7),
        ),
        RemoteComment(comment_id="3", body="outdated", kind=CommentKind.INLINE),
    )


@pytest.mark.unit
def test_upsert_comment_creates_review_comment_on_head_commit() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            status_code=201,
            json={"id": 9, "body": "note", "path": "src/app.py", "line": 7},
        )

    with make_client(handler) as client:
        comment = client.upsert_comment(
            PULL_REQUEST, "note", position=CommentPosition(path="src/app.py", line=7)
        )

    assert captured["method"] == "POST"
    assert captured["path"] == "/repos/acme/rocket/pulls/42/comments"
    assert captured["body"] == {
        "body": "note",
        "commit_id": "head-sha",
        "path": "src/app.py",
        "line": 7,
        "side": "RIGHT",
    }
    assert comment.kind is CommentKind.INLINE


@pytest.mark.unit
def test_upsert_comment_updates_existing_issue_comment() -> None:
    captured: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append((request.method, request.url.path))
        return httpx.Response(status_code=200, json={"id": 5, "body": "new"})

    existing = RemoteComment(comment_id="5", body="old", kind=CommentKind.GENERAL)
    with make_client(handler) as client:
        comment = client.upsert_comment(PULL_REQUEST, "new", existing=existing)

    assert captured == [("PATCH", "/repos/acme/rocket/issues/comments/5")]
    assert comment.body == "new"


@pytest.mark.unit
def test_upsert_check_run_updates_existing_run_by_name() -> None:
    calls: list[tuple[str, str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        calls.append((request.method, request.url.path, body))
        if request.method == "GET":
            assert request.url.params.get("check_name") == "Code Analysis"
            return httpx.Response(status_code=200, json={"check_runs": [{"id": 77}]})
        return httpx.Response(status_code=200, json={"id": 77})

    with make_client(handler) as client:
        client.upsert_check_run(PULL_REQUEST, make_check_run())

    assert [call[:2] for call in calls] == [
        ("GET", "/repos/acme/rocket/commits/head-sha/check-runs"),
        ("PATCH", "/repos/acme/rocket/check-runs/77"),
    ]
    body = calls[1][2]
    assert isinstance(body, dict)
    assert body["conclusion"] == "failure"
    assert body["status"] == "completed"
    assert body["output"] == {"title": "Quality Gate failed", "summary": "summary text"}


@pytest.mark.unit
def test_upsert_check_run_creates_when_missing() -> None:
    methods: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(f"{request.method} {request.url.path}")
        if request.method == "GET":
            return httpx.Response(status_code=200, json={"check_runs": []})
        return httpx.Response(status_code=201, json={"id": 1})

    with make_client(handler) as client:
        client.upsert_check_run(PULL_REQUEST, make_check_run())

    assert methods[-1] == "POST /repos/acme/rocket/check-runs"


@pytest.mark.unit
def test_delete_annotation_uses_review_comment_endpoint() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(f"{request.method} {request.url.path}")
        return httpx.Response(status_code=204)

    comment = RemoteComment(comment_id="8", body="x", kind=CommentKind.INLINE)
    with make_client(handler) as client:
        client.delete_annotation(PULL_REQUEST, comment)

    assert seen == ["DELETE /repos/acme/rocket/pulls/comments/8"]


@pytest.mark.unit
def test_build_github_http_client_sets_headers() -> None:
    with build_github_http_client("token-value", trust_env=False) as http_client:
        assert http_client.headers["Authorization"] == "Bearer token-value"
        assert http_client.headers["X-GitHub-Api-Version"] == "2022-11-28"
        assert str(http_client.base_url) == "https://api.github.com/"
