"""Typer CLI for pull request decoration."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import httpx
import typer
from pydantic import SecretStr, ValidationError

from pr_decorator.clock import SystemClock
from pr_decorator.decorator import decorator_for_alm
from pr_decorator.errors import DecorationError
from pr_decorator.factory import ClientFactory, resolve_token
from pr_decorator.logs import configure_logging
from pr_decorator.markup.formatters import formatter_for_flavour
from pr_decorator.models import ALM_LABELS, Alm, AlmSettings, AnalysisDetails, ProjectAlmSettings
from pr_decorator.platforms.http import AlmApiError, AlmAuthError, AlmInputError
from pr_decorator.report import ReportGenerator
from pr_decorator.settings import load_settings

CLI_ALM_SETTING_KEY = "cli"

app = typer.Typer(help="Decorate pull requests with code analysis results.")


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option(help="Log debug details to stderr.")] = False,
) -> None:
    configure_logging("DEBUG" if verbose else "WARNING")


def _load_analysis(path: Path) -> AnalysisDetails:
    try:
        return AnalysisDetails.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as error:
        raise typer.BadParameter(f"Cannot read analysis from {path}: {error}") from error


def _alm_setting(
    alm: Alm, *, url: str | None, workspace: str | None, token: str | None
) -> AlmSettings:
    return AlmSettings(
        key=CLI_ALM_SETTING_KEY,
        alm=alm,
        url=url,
        personal_access_token=SecretStr(token) if token else None,
        workspace=workspace,
    )


def _project_setting(
    repo: str, *, slug: str | None, monorepo: bool = False, summary_comment: bool = True
) -> ProjectAlmSettings:
    try:
        return ProjectAlmSettings(
            alm_setting_key=CLI_ALM_SETTING_KEY,
            alm_repo=repo,
            alm_slug=slug,
            monorepo=monorepo,
            summary_comment_enabled=summary_comment,
        )
    except ValidationError as error:
        raise typer.BadParameter(f"Invalid repository binding: {error}") from error


@app.command("decorate")
def decorate_command(
    analysis: Annotated[Path, typer.Option(help="Analysis details JSON file.")],
    alm: Annotated[Alm, typer.Option(help="Platform hosting the pull request.")],
    repo: Annotated[
        str,
        typer.Option(help="Repository: owner/repo, project path, project key or repo name."),
    ],
    url: Annotated[str | None, typer.Option(help="Platform API URL.")] = None,
    slug: Annotated[
        str | None,
        typer.Option(help="Bitbucket Server repository slug or Azure DevOps project."),
    ] = None,
    workspace: Annotated[str | None, typer.Option(help="Bitbucket Cloud workspace.")] = None,
    token: Annotated[
        str | None,
        typer.Option(help="Personal access token; defaults to the platform token variable."),
    ] = None,
    monorepo: Annotated[
        bool, typer.Option(help="Scope decorations to this project within the repository.")
    ] = False,
    summary_comment: Annotated[
        bool,
        typer.Option("--summary-comment/--no-summary-comment", help="Post the summary comment."),
    ] = True,
) -> None:
    """Publish quality gate status, summary and annotations on a pull request."""
    details = _load_analysis(analysis)
    alm_setting = _alm_setting(alm, url=url, workspace=workspace, token=token)
    project_alm_setting = _project_setting(
        repo, slug=slug, monorepo=monorepo, summary_comment=summary_comment
    )
    try:
        settings = load_settings()
        decorator = decorator_for_alm(alm, settings=settings)
        result = decorator.decorate_quality_gate_status(details, alm_setting, project_alm_setting)
    except DecorationError as error:
        typer.echo(f"Decoration failed: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(result.model_dump_json(indent=2))
    if result.partial:
        typer.echo(f"{len(result.annotation_failures)} annotation(s) could not be applied.")


@app.command("render")
def render_command(
    analysis: Annotated[Path, typer.Option(help="Analysis details JSON file.")],
    output_format: Annotated[
        str, typer.Option("--format", help="Markup flavour: markdown|gitlab|adf.")
    ] = "markdown",
    max_length: Annotated[
        int | None, typer.Option(help="Shrink the summary to fit this many characters.")
    ] = None,
) -> None:
    """Print the analysis summary without contacting any platform."""
    details = _load_analysis(analysis)
    try:
        settings = load_settings()
        formatter = formatter_for_flavour(output_format)
    except DecorationError as error:
        typer.echo(f"Render failed: {error}")
        raise typer.Exit(code=1) from error

    summary = ReportGenerator(settings, SystemClock()).create_analysis_summary(details)
    typer.echo(summary.format(formatter, max_length=max_length), nl=False)


@app.command("auth-check")
def auth_check_command(
    alm: Annotated[Alm, typer.Option(help="Platform to check.")],
    repo: Annotated[
        str | None, typer.Option(help="Optional repository used with --pr for an access check.")
    ] = None,
    pr: Annotated[
        str | None, typer.Option(help="Optional pull request id used with --repo.")
    ] = None,
    url: Annotated[str | None, typer.Option(help="Platform API URL.")] = None,
    slug: Annotated[
        str | None,
        typer.Option(help="Bitbucket Server repository slug or Azure DevOps project."),
    ] = None,
    workspace: Annotated[str | None, typer.Option(help="Bitbucket Cloud workspace.")] = None,
) -> None:
    """Validate token setup and optional pull request read access."""
    if (repo is None) != (pr is None):
        raise typer.BadParameter("Provide both --repo and --pr together, or neither.")

    label = ALM_LABELS[alm]
    alm_setting = _alm_setting(alm, url=url, workspace=workspace, token=None)
    try:
        _token, token_source = resolve_token(alm_setting)
    except AlmAuthError as error:
        typer.echo(f"{label} auth check failed: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(f"Token detected in {token_source}.")
    if repo is None or pr is None:
        typer.echo(f"{label} token setup is valid.")
        return

    try:
        factory = ClientFactory(load_settings())
        project_alm_setting = _project_setting(repo, slug=slug)
        with factory.create_client(alm_setting, project_alm_setting) as client:
            pull_request = client.fetch_pull_request(pr)
    except AlmApiError as error:
        typer.echo(
            f"{label} auth check failed: status={error.status_code} endpoint={error.endpoint}."
        )
        raise typer.Exit(code=1) from error
    except (AlmInputError, DecorationError) as error:
        typer.echo(f"{label} auth check failed: {error}")
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"{label} auth check failed: network error ({error}).")
        raise typer.Exit(code=1) from error
    except ImportError as error:
        typer.echo(
            f"{label} auth check failed: proxy transport dependency is missing. "
            "Try setting PR_DECORATOR_TRUST_ENV=false, or install `httpx[socks]`."
        )
        raise typer.Exit(code=1) from error

    typer.echo(f"Pull request access check passed: {pull_request.url}")
    typer.echo(f"{label} token setup is valid.")
