"""Inbound analysis contract and decoration result models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


class Alm(StrEnum):
    """Supported ALM platform identifiers."""

    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"
    BITBUCKET_CLOUD = "bitbucketcloud"
    AZURE_DEVOPS = "azure"


ALM_LABELS: dict[Alm, str] = {
    Alm.GITHUB: "GitHub",
    Alm.GITLAB: "GitLab",
    Alm.BITBUCKET: "Bitbucket Server",
    Alm.BITBUCKET_CLOUD: "Bitbucket Cloud",
    Alm.AZURE_DEVOPS: "Azure DevOps",
}


class SoftwareQuality(StrEnum):
    """Software quality an issue impacts."""

    SECURITY = "SECURITY"
    RELIABILITY = "RELIABILITY"
    MAINTAINABILITY = "MAINTAINABILITY"


class Severity(StrEnum):
    """Impact severity, declared highest first."""

    BLOCKER = "BLOCKER"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        """Return sort rank where larger is more severe."""
        return len(SEVERITY_ORDER) - SEVERITY_ORDER.index(self)


SEVERITY_ORDER: tuple[Severity, ...] = tuple(Severity)


class ConditionStatus(StrEnum):
    """Evaluation status of one quality-gate condition."""

    OK = "OK"
    ERROR = "ERROR"
    NO_VALUE = "NO_VALUE"


class LightIssue(BaseModel):
    """Issue fields needed to decorate a pull request."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    key: str = Field(min_length=1)
    message: str = Field(min_length=1)
    rule_key: str = Field(min_length=1)
    line: int | None = Field(default=None, ge=1)
    impacts: dict[SoftwareQuality, Severity] = Field(default_factory=dict)
    effort_minutes: int | None = Field(default=None, ge=0)

    @property
    def severity(self) -> Severity:
        """Highest severity across impacts, INFO when the issue has none."""
        if not self.impacts:
            return Severity.INFO
        return max(self.impacts.values(), key=lambda severity: severity.rank)


class ComponentIssue(BaseModel):
    """Issue together with its owning component and SCM path."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    issue: LightIssue
    component_key: str = Field(min_length=1)
    scm_path: str | None = None

    @field_validator("scm_path")
    @classmethod
    def normalize_scm_path(cls, value: str | None) -> str | None:
        """Strip leading slashes so paths align with diff paths."""
        if value is None:
            return None
        normalized = value.lstrip("/")
        return normalized or None


class QualityGateCondition(BaseModel):
    """One evaluated quality-gate condition."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    metric_key: str = Field(min_length=1)
    operator: str = Field(default="LESS_THAN")
    error_threshold: str | None = None
    value: str | None = None
    status: ConditionStatus = ConditionStatus.OK


class AnalysisMeasures(BaseModel):
    """Project measures reported alongside the quality gate."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    coverage: float | None = Field(default=None, ge=0.0, le=100.0)
    new_coverage: float | None = Field(default=None, ge=0.0, le=100.0)
    duplicated_lines_density: float | None = Field(default=None, ge=0.0, le=100.0)
    new_duplicated_lines_density: float | None = Field(default=None, ge=0.0, le=100.0)


class AnalysisDetails(BaseModel):
    """Read-only analysis snapshot for one pull request."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    analysis_id: str = Field(min_length=1)
    project_key: str = Field(min_length=1)
    project_name: str = Field(min_length=1)
    commit_sha: str = Field(min_length=1)
    pull_request_id: str = Field(min_length=1)
    analysis_date: datetime
    quality_gate_status: str | None = None
    quality_gate_conditions: tuple[QualityGateCondition, ...] = ()
    measures: AnalysisMeasures = Field(default_factory=AnalysisMeasures)
    issues: tuple[ComponentIssue, ...] = ()


class AlmSettings(BaseModel):
    """Server-wide connection settings for one ALM instance."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    key: str = Field(min_length=1)
    alm: Alm
    url: str | None = None
    personal_access_token: SecretStr | None = None
    workspace: str | None = None


class ProjectAlmSettings(BaseModel):
    """Per-project binding to a remote repository."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    alm_setting_key: str = Field(min_length=1)
    alm_repo: str = Field(min_length=1)
    alm_slug: str | None = None
    monorepo: bool = False
    summary_comment_enabled: bool = True


class AnnotationFailure(BaseModel):
    """One inline annotation that could not be applied."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str
    line: int
    action: str
    message: str


class DecorationStats(BaseModel):
    """Rollup of remote writes for one decoration run."""

    model_config = ConfigDict(extra="forbid")

    comments_created: int = Field(default=0, ge=0)
    comments_updated: int = Field(default=0, ge=0)
    comments_deleted: int = Field(default=0, ge=0)
    comments_unchanged: int = Field(default=0, ge=0)
    issues_positioned: int = Field(default=0, ge=0)
    issues_unpositioned: int = Field(default=0, ge=0)


class DecorationResult(BaseModel):
    """Outcome of decorating one pull request."""

    model_config = ConfigDict(extra="forbid")

    pull_request_url: str | None = None
    annotation_failures: list[AnnotationFailure] = Field(default_factory=list)
    stats: DecorationStats = Field(default_factory=DecorationStats)

    @property
    def partial(self) -> bool:
        """Whether some annotations failed while the summary succeeded."""
        return bool(self.annotation_failures)
