"""Platform-independent analysis summary."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from urllib.parse import quote

from loguru import logger

from pr_decorator.clock import Clock
from pr_decorator.markup.document import Document, DocumentBuilder
from pr_decorator.markup.formatters import Formatter
from pr_decorator.models import (
    SEVERITY_ORDER,
    AnalysisDetails,
    ConditionStatus,
    QualityGateCondition,
    Severity,
    SoftwareQuality,
)
from pr_decorator.settings import DecoratorSettings

RATING_LETTERS = {"1": "A", "2": "B", "3": "C", "4": "D", "5": "E"}
COMPACT_CONDITION_LIMIT = 5


class GateStatus(StrEnum):
    """Badge shown for the quality gate."""

    PASSED = "passed"
    FAILED = "failed"
    UNKNOWN = "unknown"


GATE_DESCRIPTIONS = {
    GateStatus.PASSED: "Quality Gate passed",
    GateStatus.FAILED: "Quality Gate failed",
    GateStatus.UNKNOWN: "Quality Gate status unknown",
}


@dataclass(frozen=True, slots=True)
class MetricFormat:
    """Display name and value kind for a quality-gate metric."""

    name: str
    kind: str


METRIC_FORMATS: dict[str, MetricFormat] = {
    "coverage": MetricFormat("Coverage", "percent"),
    "new_coverage": MetricFormat("Coverage on New Code", "percent"),
    "duplicated_lines_density": MetricFormat("Duplicated Lines", "percent"),
    "new_duplicated_lines_density": MetricFormat("Duplicated Lines on New Code", "percent"),
    "new_violations": MetricFormat("New Issues", "int"),
    "new_security_hotspots_reviewed": MetricFormat(
        "Security Hotspots Reviewed on New Code", "percent"
    ),
    "new_reliability_rating": MetricFormat("Reliability Rating on New Code", "rating"),
    "new_security_rating": MetricFormat("Security Rating on New Code", "rating"),
    "new_maintainability_rating": MetricFormat("Maintainability Rating on New Code", "rating"),
    "reliability_rating": MetricFormat("Reliability Rating", "rating"),
    "security_rating": MetricFormat("Security Rating", "rating"),
    "sqale_rating": MetricFormat("Maintainability Rating", "rating"),
}

OPERATOR_DESCRIPTIONS = {
    "LESS_THAN": "is less than",
    "GREATER_THAN": "is greater than",
}


def gate_status_for(raw_status: str | None) -> GateStatus:
    """Map the engine's gate status onto a badge; anything unexpected is unknown."""
    if raw_status is None:
        return GateStatus.UNKNOWN
    normalized = raw_status.strip().upper()
    if normalized == "OK":
        return GateStatus.PASSED
    if normalized == "ERROR":
        return GateStatus.FAILED
    return GateStatus.UNKNOWN


def _format_number(value: str | None, kind: str) -> str:
    if value is None:
        return "no value"
    if kind == "rating":
        return RATING_LETTERS.get(value.split(".")[0], value)
    try:
        number = float(value)
    except ValueError:
        return value
    if kind == "percent":
        return f"{number:.2f}%"
    if kind == "int" and number.is_integer():
        return str(int(number))
    return value


def describe_condition(condition: QualityGateCondition) -> str:
    """Describe a failed condition, e.g. ``12.50% Coverage on New Code (is less than 80.00%)``."""
    metric = METRIC_FORMATS.get(condition.metric_key, MetricFormat(condition.metric_key, "raw"))
    value = _format_number(condition.value, metric.kind)
    threshold = _format_number(condition.error_threshold, metric.kind)
    if metric.kind == "rating":
        return f"{value} {metric.name} (is worse than {threshold})"
    operator = OPERATOR_DESCRIPTIONS.get(condition.operator, condition.operator.lower())
    return f"{value} {metric.name} ({operator} {threshold})"


def _coverage_bucket(coverage: float | None) -> str:
    if coverage is None:
        return "NoCoverageInfo"
    for bucket in (0, 25, 50, 75):
        if coverage < bucket + 25:
            return str(bucket)
    return "100"


def _duplication_bucket(duplication: float | None) -> str:
    if duplication is None:
        return "NoDuplicationInfo"
    for bucket in (3, 5, 10, 20):
        if duplication < bucket:
            return str(bucket)
    return "20plus"


def _plural(count: int, singular: str) -> str:
    return f"{count} {singular}" if count == 1 else f"{count} {singular}s"


@dataclass(frozen=True, slots=True)
class AnalysisSummary:
    """Immutable snapshot of what a pull request decoration reports."""

    project_key: str
    project_name: str
    dashboard_url: str
    image_base_url: str
    gate_status: GateStatus
    failed_conditions: tuple[str, ...]
    total_issue_count: int
    severity_counts: tuple[tuple[Severity, int], ...]
    quality_counts: tuple[tuple[SoftwareQuality, int], ...]
    new_coverage: float | None
    coverage: float | None
    new_duplication: float | None
    duplication: float | None
    analysis_date: datetime
    generated_at: datetime

    @property
    def passed(self) -> bool:
        return self.gate_status is GateStatus.PASSED

    @property
    def status_description(self) -> str:
        return GATE_DESCRIPTIONS[self.gate_status]

    @property
    def status_image_url(self) -> str:
        return f"{self.image_base_url}/checks/QualityGateBadge/{self.gate_status.value}.svg"

    def severity_count(self, severity: Severity) -> int:
        return dict(self.severity_counts).get(severity, 0)

    def coverage_text(self) -> str:
        if self.new_coverage is None:
            return "No coverage information"
        text = f"{self.new_coverage:.2f}% Coverage"
        if self.coverage is not None:
            text = f"{text} ({self.coverage:.2f}% Estimated after merge)"
        return text

    def duplication_text(self) -> str:
        if self.new_duplication is None:
            return "No duplication information"
        text = f"{self.new_duplication:.2f}% Duplication"
        if self.duplication is not None:
            text = f"{text} ({self.duplication:.2f}% Estimated after merge)"
        return text

    def to_document(self, *, compact: bool = False, condition_limit: int | None = None) -> Document:
        """Build the summary markup tree.

        ``compact`` drops the software-quality and coverage sections and
        ``condition_limit`` caps the failed-condition list; both are used to fit
        a platform's comment size limit.
        """
        builder = DocumentBuilder()
        builder.paragraph().image(self.status_description, self.status_image_url).text(
            f" {self.status_description}"
        )

        if self.failed_conditions:
            builder.paragraph().bold("Failed conditions")
            conditions = builder.list()
            shown = self.failed_conditions
            if condition_limit is not None:
                shown = self.failed_conditions[:condition_limit]
            for condition in shown:
                conditions.item().text(condition)
            hidden = len(self.failed_conditions) - len(shown)
            if hidden:
                conditions.item().text(f"... and {_plural(hidden, 'more condition')}")

        builder.heading(1).text("Analysis Details")
        builder.heading(2).text(_plural(self.total_issue_count, "Issue"))
        severities = builder.list()
        for severity, count in self.severity_counts:
            label = severity.value.capitalize()
            severities.item().image(
                label, f"{self.image_base_url}/checks/Severity/{severity.value.lower()}.svg"
            ).text(f" {count} {label}")

        if not compact:
            builder.heading(2).text("Software Qualities")
            qualities = builder.list()
            for quality, count in self.quality_counts:
                label = quality.value.capitalize()
                qualities.item().image(
                    label,
                    f"{self.image_base_url}/checks/SoftwareQuality/{quality.value.lower()}.svg",
                ).text(f" {count} {label}")

            builder.heading(2).text("Coverage and Duplications")
            measures = builder.list()
            measures.item().image(
                "Coverage",
                f"{self.image_base_url}/checks/CoverageChart/"
                f"{_coverage_bucket(self.new_coverage)}.svg",
            ).text(f" {self.coverage_text()}")
            measures.item().image(
                "Duplications",
                f"{self.image_base_url}/checks/Duplications/"
                f"{_duplication_bucket(self.new_duplication)}.svg",
            ).text(f" {self.duplication_text()}")

        builder.paragraph().bold("Project ID:").text(f" {self.project_key}")
        builder.paragraph().link("View in the analysis dashboard", self.dashboard_url)
        builder.paragraph().text(
            f"Analysed {self.analysis_date.isoformat()}, reported {self.generated_at.isoformat()}"
        )
        return builder.build()

    def format(self, formatter: Formatter, *, max_length: int | None = None) -> str:
        """Render with ``formatter``, shrinking deterministically to fit ``max_length``."""
        rendered = formatter.format(self.to_document())
        if max_length is None or len(rendered) <= max_length:
            return rendered

        logger.debug(
            "Summary for {} is {} characters, over the {} limit; rendering compact form",
            self.project_key,
            len(rendered),
            max_length,
        )
        rendered = formatter.format(self.to_document(compact=True))
        if len(rendered) <= max_length:
            return rendered
        rendered = formatter.format(
            self.to_document(compact=True, condition_limit=COMPACT_CONDITION_LIMIT)
        )
        if len(rendered) <= max_length:
            return rendered
        return formatter.format(self.to_document(compact=True, condition_limit=0))


class ReportGenerator:
    """Builds :class:`AnalysisSummary` snapshots from analysis details."""

    def __init__(self, settings: DecoratorSettings, clock: Clock) -> None:
        self._settings = settings
        self._clock = clock

    def dashboard_url(self, analysis_details: AnalysisDetails) -> str:
        server_url = self._settings.server_url.rstrip("/")
        project = quote(analysis_details.project_key, safe="")
        pull_request = quote(analysis_details.pull_request_id, safe="")
        return f"{server_url}/dashboard?id={project}&pullRequest={pull_request}"

    def create_analysis_summary(self, analysis_details: AnalysisDetails) -> AnalysisSummary:
        """Summarize the supplied issues, gate and measures at one clock instant."""
        severity_totals = {severity: 0 for severity in SEVERITY_ORDER}
        quality_totals = {quality: 0 for quality in SoftwareQuality}
        for component_issue in analysis_details.issues:
            issue = component_issue.issue
            severity_totals[issue.severity] += 1
            for quality in issue.impacts:
                quality_totals[quality] += 1

        failed_conditions = tuple(
            describe_condition(condition)
            for condition in analysis_details.quality_gate_conditions
            if condition.status is ConditionStatus.ERROR
        )
        measures = analysis_details.measures
        gate_status = gate_status_for(analysis_details.quality_gate_status)
        if gate_status is GateStatus.UNKNOWN:
            logger.warning(
                "Quality gate status '{}' for analysis {} is not recognized; reporting unknown",
                analysis_details.quality_gate_status,
                analysis_details.analysis_id,
            )

        return AnalysisSummary(
            project_key=analysis_details.project_key,
            project_name=analysis_details.project_name,
            dashboard_url=self.dashboard_url(analysis_details),
            image_base_url=self._settings.resolved_image_base_url,
            gate_status=gate_status,
            failed_conditions=failed_conditions,
            total_issue_count=len(analysis_details.issues),
            severity_counts=tuple(severity_totals.items()),
            quality_counts=tuple(quality_totals.items()),
            new_coverage=measures.new_coverage,
            coverage=measures.coverage,
            new_duplication=measures.new_duplicated_lines_density,
            duplication=measures.duplicated_lines_density,
            analysis_date=analysis_details.analysis_date,
            generated_at=self._clock.now(),
        )
