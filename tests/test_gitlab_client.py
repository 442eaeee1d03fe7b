"""Unit tests for GitLab client behavior."""

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
from pr_decorator.platforms.gitlab import GitlabClient, build_gitlab_http_client
from pr_decorator.platforms.http import AlmInputError

MERGE_REQUEST = PullRequest(
    pull_request_id="7",
    url="https://gitlab.example.com/acme/rocket/-/merge_requests/7",
    head_sha="head-sha",
    base_sha="base-sha",
    start_sha="start-sha",
)


def make_client(handler: Callable[[httpx.Request], httpx.Response]) -> GitlabClient:
    """Create a GitLab client backed by mock transport."""
    transport = httpx.MockTransport(handler)
    http_client = httpx.Client(base_url="https://gitlab.example.com/api/v4", transport=transport)
    return GitlabClient(http_client, "acme/rocket")


@pytest.mark.unit
def test_blank_project_path_is_rejected() -> None:
    with pytest.raises(AlmInputError):
        GitlabClient(httpx.Client(), "  ")


@pytest.mark.unit
def test_fetch_pull_request_reads_diff_refs() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert b"/projects/acme%2Frocket/merge_requests/7" in request.url.raw_path
        return httpx.Response(
            status_code=200,
            json={
                "iid": 7,
                "web_url": MERGE_REQUEST.url,
                "diff_refs": {
                    "base_sha": "base-sha",
                    "head_sha": "head-sha",
                    "start_sha": "start-sha",
                },
            },
        )

    with make_client(handler) as client:
        assert client.fetch_pull_request("7") == MERGE_REQUEST


@pytest.mark.unit
def test_fetch_pull_request_rejects_non_numeric_iid() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("No request expected")

    with make_client(handler) as client, pytest.raises(AlmInputError):
        client.fetch_pull_request("seven")


@pytest.mark.unit
def test_fetch_diff_skips_deleted_files() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/merge_requests/7/diffs")
        return httpx.Response(
            status_code=200,
            json=[
                {"new_path": "src/app.py", "diff": "@@ -3,0 +4,2 @@\n+a\n+b"},
                {"new_path": "old.py", "diff": "@@ -1 +0,0 @@\n-x", "deleted_file": True},
                {"new_path": "image.png", "diff": ""},
            ],
        )

    with make_client(handler) as client:
        files = client.fetch_diff(MERGE_REQUEST)

    assert [diff_file.path for diff_file in files] == ["src/app.py", "image.png"]
    assert files[0].changed_ranges == (ChangedRange(4, 5),)
    assert files[1].changed_ranges == ()


@pytest.mark.unit
def test_list_comments_flattens_discussions_and_skips_system_notes() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status_code=200,
            json=[
                {
                    "id": "d1",
                    "notes": [
                        {"id": 1, "body": "summary"},
                        {"id": 2, "body": "added 1 commit", "system": True},
                    ],
                },
                {
                    "id": "d2",
                    "notes": [
                        {
                            "id": 3,
                            "body": "inline",
                            "position": {"new_path": "src/app.py", "new_line": 4},
                        }
                    ],
                },
            ],
        )

    with make_client(handler) as client:
        comments = client.list_comments(MERGE_REQUEST)

    assert comments == (
        RemoteComment(comment_id="1", body="summary", kind=CommentKind.GENERAL, thread_id="d1"),
        RemoteComment(
            comment_id="3",
            body="inline",
            kind=CommentKind.INLINE,
            position=CommentPosition(path="src/app.py", line=4),
            thread_id="d2",
        ),
    )


@pytest.mark.unit
def test_upsert_comment_opens_positioned_discussion() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            status_code=201,
            json={
                "id": "d9",
                "notes": [
                    {
                        "id": 90,
                        "body": "note",
                        "position": {"new_path": "src/app.py", "new_line": 4},
                    }
                ],
            },
        )

    with make_client(handler) as client:
        comment = client.upsert_comment(
            MERGE_REQUEST, "note", position=CommentPosition(path="src/app.py", line=4)
        )

    assert captured["method"] == "POST"
    assert str(captured["path"]).endswith("/merge_requests/7/discussions")
    body = captured["body"]
    assert isinstance(body, dict)
    assert body["position"] == {
        "position_type": "text",
        "base_sha": "base-sha",
        "start_sha": "start-sha",
        "head_sha": "head-sha",
        "old_path": "src/app.py",
        "new_path": "src/app.py",
        "new_line": 4,
    }
    assert comment.comment_id == "90"
    assert comment.thread_id == "d9"


@pytest.mark.unit
def test_upsert_comment_updates_note_in_place() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.method)
        assert request.url.path.endswith("/merge_requests/7/notes/1")
        return httpx.Response(status_code=200, json={"id": 1, "body": "new"})

    existing = RemoteComment(comment_id="1", body="old", kind=CommentKind.GENERAL, thread_id="d1")
    with make_client(handler) as client:
        comment = client.upsert_comment(MERGE_REQUEST, "new", existing=existing)

    assert seen == ["PUT"]
    assert comment.body == "new"
    assert comment.thread_id == "d1"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("passed", "state"),
    [(True, "success"), (False, "failed"), (None, "canceled")],
)
def test_upsert_check_run_posts_commit_status(passed: bool | None, state: str) -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(status_code=201, json={"id": 1})

    report = CheckRunReport(
        name="Code Analysis",
        passed=passed,
        title="Quality Gate " + "x" * 300,
        summary="summary",
        details_url="https://analysis.example.com/dashboard",
        started_at=datetime(2026, 10, 1, tzinfo=UTC),
        completed_at=datetime(2026, 10, 1, tzinfo=UTC),
    )
    with make_client(handler) as client:
        client.upsert_check_run(MERGE_REQUEST, report)

    assert str(captured["path"]).endswith("/statuses/head-sha")
    body = captured["body"]
    assert isinstance(body, dict)
    assert body["state"] == state
    assert body["name"] == "Code Analysis"
    assert len(body["description"]) == 255


@pytest.mark.unit
def test_delete_annotation_targets_discussion_note() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(f"{request.method} {request.url.path}")
        return httpx.Response(status_code=204)

    comment = RemoteComment(comment_id="3", body="x", kind=CommentKind.INLINE, thread_id="d2")
    with make_client(handler) as client:
        client.delete_annotation(MERGE_REQUEST, comment)

    assert len(seen) == 1
    assert seen[0].startswith("DELETE ")
    assert seen[0].endswith("/merge_requests/7/discussions/d2/notes/3")


@pytest.mark.unit
def test_build_gitlab_http_client_uses_private_token_header() -> None:
    with build_gitlab_http_client(
        "secret", base_url="https://gitlab.example.com/api/v4/", trust_env=False
    ) as http_client:
        assert http_client.headers["PRIVATE-TOKEN"] == "secret"
        assert str(http_client.base_url) == "https://gitlab.example.com/api/v4/"
