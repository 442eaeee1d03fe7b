"""Shared pytest fixtures, analysis builders and test-run configuration."""

from __future__ import annotations

import os
from collections.abc import Callable
from datetime import UTC, datetime

import pytest
from pr_decorator.clock import FixedClock
from pr_decorator.models import (
    AnalysisDetails,
    AnalysisMeasures,
    ComponentIssue,
    ConditionStatus,
    LightIssue,
    QualityGateCondition,
    Severity,
    SoftwareQuality,
)
from pr_decorator.settings import DecoratorSettings


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom pytest options for integration test execution."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked as integration (external dependencies).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly enabled."""
    run_integration = config.getoption("--run-integration")
    env_enabled = os.getenv("RUN_INTEGRATION_TESTS") == "1"
    if run_integration or env_enabled:
        return

    skip_marker = pytest.mark.skip(
        reason=(
            "Integration tests are disabled by default. "
            "Use --run-integration or set RUN_INTEGRATION_TESTS=1."
        )
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_marker)


def make_issue(
    key: str,
    *,
    path: str | None = "src/app.py",
    line: int | None = 10,
    severity: Severity | None = Severity.MEDIUM,
    quality: SoftwareQuality = SoftwareQuality.MAINTAINABILITY,
    rule_key: str = "python:S1481",
    message: str | None = None,
) -> ComponentIssue:
    """Build a component issue with one impact (or none when ``severity`` is None)."""
    impacts = {quality: severity} if severity is not None else {}
    return ComponentIssue(
        issue=LightIssue(
            key=key,
            message=message or f"Issue {key}",
            rule_key=rule_key,
            line=line,
            impacts=impacts,
        ),
        component_key=f"project:{path or 'unmapped'}",
        scm_path=path,
    )


@pytest.fixture
def issue_factory() -> Callable[..., ComponentIssue]:
    return make_issue


@pytest.fixture
def analysis_details() -> AnalysisDetails:
    """Failed-gate analysis with three issues, one of them without an SCM path."""
    return AnalysisDetails(
        analysis_id="AX-1",
        project_key="rocket",
        project_name="Rocket",
        commit_sha="head-sha",
        pull_request_id="42",
        analysis_date=datetime(2026, 10, 1, 12, 0, tzinfo=UTC),
        quality_gate_status="ERROR",
        quality_gate_conditions=(
            QualityGateCondition(
                metric_key="new_coverage",
                operator="LESS_THAN",
                error_threshold="80",
                value="12.5",
                status=ConditionStatus.ERROR,
            ),
            QualityGateCondition(
                metric_key="new_duplicated_lines_density",
                operator="GREATER_THAN",
                error_threshold="3",
                value="1.2",
                status=ConditionStatus.OK,
            ),
        ),
        measures=AnalysisMeasures(
            coverage=71.0,
            new_coverage=12.5,
            duplicated_lines_density=2.0,
            new_duplicated_lines_density=1.2,
        ),
        issues=(
            make_issue("I1", line=10, severity=Severity.HIGH, quality=SoftwareQuality.SECURITY),
            make_issue("I2", line=11, severity=Severity.LOW),
            make_issue("I3", path=None, line=3, severity=Severity.BLOCKER),
        ),
    )


@pytest.fixture
def fixed_clock() -> FixedClock:
    return FixedClock(datetime(2026, 10, 1, 12, 5, tzinfo=UTC))


@pytest.fixture
def decorator_settings() -> DecoratorSettings:
    return DecoratorSettings(server_url="https://analysis.example.com")
