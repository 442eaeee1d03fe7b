"""Tests for the Typer CLI commands."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pytest
from pr_decorator import cli
from pr_decorator.errors import ClientResolutionError
from pr_decorator.models import (
    Alm,
    AlmSettings,
    AnalysisDetails,
    AnnotationFailure,
    DecorationResult,
    DecorationStats,
    ProjectAlmSettings,
)
from pr_decorator.platforms.base import PullRequest
from pr_decorator.platforms.http import AlmApiError, AlmAuthError
from pr_decorator.settings import DecoratorSettings
from typer.testing import CliRunner

runner = CliRunner()


@pytest.fixture(autouse=True)
def quiet_cli(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "configure_logging", lambda log_level: None)
    monkeypatch.setattr(cli, "load_settings", DecoratorSettings)


@pytest.fixture
def analysis_file(tmp_path: Path, analysis_details: AnalysisDetails) -> Path:
    path = tmp_path / "analysis.json"
    path.write_text(analysis_details.model_dump_json(), encoding="utf-8")
    return path


@dataclass
class _StubClient:
    """Context-managed client answering one pull request lookup."""

    error: Exception | None = None

    def __enter__(self) -> _StubClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        return None

    def fetch_pull_request(self, pull_request_id: str) -> PullRequest:
        if self.error is not None:
            raise self.error
        return PullRequest(
            pull_request_id=pull_request_id,
            url=f"https://github.com/acme/rocket/pull/{pull_request_id}",
            head_sha="head-sha",
            base_sha="base-sha",
        )


@dataclass
class _StubDecorator:
    """Decorator double recording the bindings it receives."""

    result: DecorationResult | None = None
    error: Exception | None = None
    calls: list[tuple[AlmSettings, ProjectAlmSettings]] = field(default_factory=list)

    def decorate_quality_gate_status(
        self,
        analysis_details: AnalysisDetails,
        alm_setting: AlmSettings,
        project_alm_setting: ProjectAlmSettings,
    ) -> DecorationResult:
        self.calls.append((alm_setting, project_alm_setting))
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


def _stub_factory(client: _StubClient) -> type:
    class _Factory:
        def __init__(self, settings: DecoratorSettings) -> None:
            self.settings = settings

        def create_client(
            self, alm_setting: AlmSettings, project_alm_setting: ProjectAlmSettings
        ) -> _StubClient:
            return client

    return _Factory


@pytest.mark.unit
def test_auth_check_fails_when_token_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    def _raise_missing_token(alm_setting: AlmSettings) -> tuple[str, str]:
        raise AlmAuthError("Missing token.")

    monkeypatch.setattr(cli, "resolve_token", _raise_missing_token)
    result = runner.invoke(cli.app, ["auth-check", "--alm", "github"])

    assert result.exit_code == 1
    assert "GitHub auth check failed" in result.output


@pytest.mark.unit
def test_auth_check_without_repo_only_checks_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "resolve_token", lambda alm_setting: ("token", "GITLAB_TOKEN"))

    result = runner.invoke(cli.app, ["auth-check", "--alm", "gitlab"])

    assert result.exit_code == 0
    assert "Token detected in GITLAB_TOKEN." in result.output
    assert "GitLab token setup is valid." in result.output


@pytest.mark.unit
def test_auth_check_requires_repo_and_pr_together(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "resolve_token", lambda alm_setting: ("token", "GITHUB_TOKEN"))

    result = runner.invoke(cli.app, ["auth-check", "--alm", "github", "--repo", "acme/rocket"])

    assert result.exit_code == 2


@pytest.mark.unit
def test_auth_check_succeeds_with_repo_and_pr(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "resolve_token", lambda alm_setting: ("token", "GITHUB_TOKEN"))
    monkeypatch.setattr(cli, "ClientFactory", _stub_factory(_StubClient()))

    result = runner.invoke(
        cli.app, ["auth-check", "--alm", "github", "--repo", "acme/rocket", "--pr", "42"]
    )

    assert result.exit_code == 0
    assert "Token detected in GITHUB_TOKEN." in result.output
    assert (
        "Pull request access check passed: https://github.com/acme/rocket/pull/42"
        in result.output
    )
    assert "GitHub token setup is valid." in result.output


@pytest.mark.unit
def test_auth_check_reports_api_status(monkeypatch: pytest.MonkeyPatch) -> None:
    error = AlmApiError("Forbidden", status_code=403, endpoint="/repos/acme/rocket/pulls/42")
    monkeypatch.setattr(cli, "resolve_token", lambda alm_setting: ("token", "GITHUB_TOKEN"))
    monkeypatch.setattr(cli, "ClientFactory", _stub_factory(_StubClient(error=error)))

    result = runner.invoke(
        cli.app, ["auth-check", "--alm", "github", "--repo", "acme/rocket", "--pr", "42"]
    )

    assert result.exit_code == 1
    assert "status=403 endpoint=/repos/acme/rocket/pulls/42." in result.output


@pytest.mark.unit
def test_render_prints_summary(analysis_file: Path) -> None:
    result = runner.invoke(cli.app, ["render", "--analysis", str(analysis_file)])

    assert result.exit_code == 0
    assert "Quality Gate failed" in result.output
    assert "Analysis Details" in result.output


@pytest.mark.unit
def test_render_rejects_unknown_format(analysis_file: Path) -> None:
    result = runner.invoke(
        cli.app, ["render", "--analysis", str(analysis_file), "--format", "html"]
    )

    assert result.exit_code == 1
    assert "Render failed" in result.output


@pytest.mark.unit
def test_render_rejects_unreadable_analysis(tmp_path: Path) -> None:
    result = runner.invoke(cli.app, ["render", "--analysis", str(tmp_path / "missing.json")])

    assert result.exit_code == 2


@pytest.mark.unit
def test_decorate_prints_result_and_partial_failures(
    monkeypatch: pytest.MonkeyPatch, analysis_file: Path
) -> None:
    stub = _StubDecorator(
        result=DecorationResult(
            pull_request_url="https://github.com/acme/rocket/pull/42",
            annotation_failures=[
                AnnotationFailure(path="src/app.py", line=3, action="create", message="boom")
            ],
            stats=DecorationStats(comments_created=2),
        )
    )
    monkeypatch.setattr(cli, "decorator_for_alm", lambda alm, settings: stub)

    result = runner.invoke(
        cli.app,
        [
            "decorate",
            "--analysis",
            str(analysis_file),
            "--alm",
            "github",
            "--repo",
            "acme/rocket",
            "--token",
            "secret",
            "--monorepo",
            "--no-summary-comment",
        ],
    )

    assert result.exit_code == 0
    assert '"comments_created": 2' in result.output
    assert "1 annotation(s) could not be applied." in result.output
    alm_setting, project_setting = stub.calls[0]
    assert alm_setting.alm is Alm.GITHUB
    assert alm_setting.personal_access_token is not None
    assert alm_setting.personal_access_token.get_secret_value() == "secret"
    assert project_setting.monorepo
    assert not project_setting.summary_comment_enabled


@pytest.mark.unit
def test_decorate_exits_non_zero_on_fatal_failure(
    monkeypatch: pytest.MonkeyPatch, analysis_file: Path
) -> None:
    stub = _StubDecorator(
        error=ClientResolutionError(alm=Alm.GITLAB, pull_request_id="42", detail="no token")
    )
    monkeypatch.setattr(cli, "decorator_for_alm", lambda alm, settings: stub)

    result = runner.invoke(
        cli.app,
        ["decorate", "--analysis", str(analysis_file), "--alm", "gitlab", "--repo", "acme/r"],
    )

    assert result.exit_code == 1
    assert "Decoration failed: Could not decorate Pull Request 42 on GitLab" in result.output
