"""Pull request decoration: summary, check run and inline annotations."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from loguru import logger

from pr_decorator.clock import Clock, SystemClock
from pr_decorator.diff_mapper import limit_annotations, map_issues, render_annotation
from pr_decorator.errors import (
    AnnotationApplyError,
    ClientResolutionError,
    ConfigurationError,
    DecorationFailedError,
    PullRequestNotFoundError,
    RemoteStateFetchError,
    SummaryApplyError,
)
from pr_decorator.factory import ClientFactory
from pr_decorator.limits import limits_for_alm
from pr_decorator.markup.formatters import formatter_for_alm
from pr_decorator.models import (
    ALM_LABELS,
    Alm,
    AlmSettings,
    AnalysisDetails,
    AnnotationFailure,
    DecorationResult,
    ProjectAlmSettings,
)
from pr_decorator.observability import DecorationTelemetry
from pr_decorator.platforms.base import CheckRunReport, PlatformClient, PullRequest
from pr_decorator.platforms.http import AlmApiError, AlmAuthError, AlmInputError
from pr_decorator.reconcile import (
    AnnotationAction,
    AnnotationActionKind,
    ReconciliationPlan,
    annotation_marker,
    decoration_scope,
    marker_overhead,
    plan_reconciliation,
    summary_marker,
)
from pr_decorator.report import AnalysisSummary, GateStatus, ReportGenerator
from pr_decorator.settings import DecoratorSettings

CLIENT_ERRORS = (AlmAuthError, AlmInputError, ConfigurationError, httpx.HTTPError, OSError)
REMOTE_ERRORS = (AlmApiError, AlmInputError, httpx.HTTPError)


@dataclass(frozen=True, slots=True)
class PlatformProfile:
    """ALMs one decorator instance serves."""

    name: str
    alms: tuple[Alm, ...]


GITHUB_PROFILE = PlatformProfile(name="github", alms=(Alm.GITHUB,))
GITLAB_PROFILE = PlatformProfile(name="gitlab", alms=(Alm.GITLAB,))
BITBUCKET_PROFILE = PlatformProfile(name="bitbucket", alms=(Alm.BITBUCKET, Alm.BITBUCKET_CLOUD))
AZURE_DEVOPS_PROFILE = PlatformProfile(name="azure-devops", alms=(Alm.AZURE_DEVOPS,))
PLATFORM_PROFILES: tuple[PlatformProfile, ...] = (
    GITHUB_PROFILE,
    GITLAB_PROFILE,
    BITBUCKET_PROFILE,
    AZURE_DEVOPS_PROFILE,
)


def check_run_name(
    settings: DecoratorSettings, project_alm_setting: ProjectAlmSettings, project_key: str
) -> str:
    """Name of the check run or status; monorepo bindings carry the project key."""
    if project_alm_setting.monorepo:
        return f"{settings.check_run_name} ({project_key})"
    return settings.check_run_name


class PullRequestDecorator:
    """Decorates pull requests on the ALMs of one platform profile."""

    def __init__(
        self,
        profile: PlatformProfile,
        client_factory: ClientFactory,
        report_generator: ReportGenerator,
        clock: Clock,
        settings: DecoratorSettings,
    ) -> None:
        self._profile = profile
        self._client_factory = client_factory
        self._report_generator = report_generator
        self._clock = clock
        self._settings = settings

    def alm(self) -> list[Alm]:
        return list(self._profile.alms)

    def decorate_quality_gate_status(
        self,
        analysis_details: AnalysisDetails,
        alm_setting: AlmSettings,
        project_alm_setting: ProjectAlmSettings,
    ) -> DecorationResult:
        """Publish the analysis onto its pull request.

        Raises a :class:`DecorationFailedError` subclass when the client, the
        pull request, the remote state or the summary cannot be handled.
        Individual annotation failures are reported in the result instead.
        """
        alm = alm_setting.alm
        pull_request_id = analysis_details.pull_request_id
        if alm not in self._profile.alms:
            raise ConfigurationError(
                f"The {self._profile.name} decorator does not handle ALM '{alm}'."
            )

        try:
            client = self._client_factory.create_client(alm_setting, project_alm_setting)
        except CLIENT_ERRORS as error:
            raise self._failure(ClientResolutionError, alm, pull_request_id, error) from error

        with client:
            return self._decorate(client, alm, analysis_details, project_alm_setting)

    def _failure(
        self,
        error_type: type[DecorationFailedError],
        alm: Alm,
        pull_request_id: str,
        error: BaseException,
    ) -> DecorationFailedError:
        failure = error_type(alm=alm, pull_request_id=pull_request_id, detail=str(error))
        logger.error("{} failed during {}: {}", ALM_LABELS[alm], error_type.step, error)
        return failure

    def _locate_pull_request(
        self, client: PlatformClient, alm: Alm, pull_request_id: str
    ) -> PullRequest:
        try:
            return client.fetch_pull_request(pull_request_id)
        except AlmApiError as error:
            if error.status_code == 404:
                raise self._failure(
                    PullRequestNotFoundError, alm, pull_request_id, error
                ) from error
            raise self._failure(RemoteStateFetchError, alm, pull_request_id, error) from error
        except (AlmInputError, httpx.HTTPError) as error:
            raise self._failure(RemoteStateFetchError, alm, pull_request_id, error) from error

    def _build_check_run(
        self,
        summary: AnalysisSummary,
        summary_text: str,
        analysis_details: AnalysisDetails,
        project_alm_setting: ProjectAlmSettings,
    ) -> CheckRunReport:
        passed = None if summary.gate_status is GateStatus.UNKNOWN else summary.passed
        return CheckRunReport(
            name=check_run_name(self._settings, project_alm_setting, analysis_details.project_key),
            passed=passed,
            title=summary.status_description,
            summary=summary_text,
            details_url=summary.dashboard_url,
            started_at=analysis_details.analysis_date,
            completed_at=summary.generated_at,
        )

    def _decorate(
        self,
        client: PlatformClient,
        alm: Alm,
        analysis_details: AnalysisDetails,
        project_alm_setting: ProjectAlmSettings,
    ) -> DecorationResult:
        pull_request_id = analysis_details.pull_request_id
        pull_request = self._locate_pull_request(client, alm, pull_request_id)

        formatter = formatter_for_alm(alm)
        limits = limits_for_alm(alm)
        scope = decoration_scope(project_alm_setting, analysis_details.project_key)
        summary = self._report_generator.create_analysis_summary(analysis_details)
        summary_limit = limits.max_comment_length - marker_overhead(summary_marker(scope))
        summary_text = summary.format(formatter, max_length=summary_limit)
        check_run = self._build_check_run(
            summary, summary_text, analysis_details, project_alm_setting
        )

        try:
            diff_files = client.fetch_diff(pull_request)
            existing_comments = client.list_comments(pull_request)
        except REMOTE_ERRORS as error:
            raise self._failure(RemoteStateFetchError, alm, pull_request_id, error) from error

        telemetry = DecorationTelemetry(alm=ALM_LABELS[alm], pull_request_id=pull_request_id)
        mapping = map_issues(analysis_details.issues, diff_files)
        kept, dropped = limit_annotations(mapping.annotations, self._settings.max_annotations)
        telemetry.issues_positioned = sum(len(annotation.issues) for annotation in kept)
        telemetry.issues_unpositioned = len(mapping.unpositioned) + sum(
            len(annotation.issues) for annotation in dropped
        )
        telemetry.annotations_dropped = len(dropped)
        if dropped:
            logger.info(
                "Keeping {} of {} annotations for pull request {}",
                len(kept),
                len(mapping.annotations),
                pull_request_id,
            )

        rendered = [
            (
                annotation,
                render_annotation(
                    annotation,
                    formatter,
                    max_messages=self._settings.max_messages_per_annotation,
                    max_length=limits.max_comment_length
                    - marker_overhead(annotation_marker(scope, annotation.key)),
                ),
            )
            for annotation in kept
        ]
        plan = plan_reconciliation(
            scope=scope,
            summary_body=summary_text if project_alm_setting.summary_comment_enabled else None,
            annotations=rendered,
            existing_comments=existing_comments,
        )
        telemetry.comments_unchanged = len(plan.unchanged)

        try:
            self._apply_summary(client, pull_request, check_run, plan, telemetry)
        except REMOTE_ERRORS as error:
            raise self._failure(SummaryApplyError, alm, pull_request_id, error) from error

        for action in plan.annotation_actions:
            try:
                self._apply_annotation(client, pull_request, action, telemetry)
            except AnnotationApplyError as error:
                telemetry.record_failure(
                    AnnotationFailure(
                        path=error.path, line=error.line, action=error.action, message=str(error)
                    )
                )

        telemetry.log_summary()
        return DecorationResult(
            pull_request_url=pull_request.url,
            annotation_failures=list(telemetry.failures),
            stats=telemetry.to_stats(),
        )

    def _apply_summary(
        self,
        client: PlatformClient,
        pull_request: PullRequest,
        check_run: CheckRunReport,
        plan: ReconciliationPlan,
        telemetry: DecorationTelemetry,
    ) -> None:
        client.upsert_check_run(pull_request, check_run)
        if plan.summary_body is None:
            return
        if plan.summary_unchanged:
            telemetry.comments_unchanged += 1
        else:
            client.upsert_comment(pull_request, plan.summary_body, existing=plan.summary_existing)
            if plan.summary_existing is None:
                telemetry.comments_created += 1
            else:
                telemetry.comments_updated += 1
        for duplicate in plan.duplicate_summaries:
            try:
                client.delete_annotation(pull_request, duplicate)
            except REMOTE_ERRORS as error:
                logger.warning(
                    "Could not delete duplicate summary comment {} on {} pull request {}: {}",
                    duplicate.comment_id,
                    telemetry.alm,
                    pull_request.pull_request_id,
                    error,
                )
                continue
            telemetry.comments_deleted += 1

    def _apply_annotation(
        self,
        client: PlatformClient,
        pull_request: PullRequest,
        action: AnnotationAction,
        telemetry: DecorationTelemetry,
    ) -> None:
        try:
            if action.kind is AnnotationActionKind.DELETE and action.existing is not None:
                client.delete_annotation(pull_request, action.existing)
                telemetry.comments_deleted += 1
            elif action.kind is AnnotationActionKind.UPDATE and action.body is not None:
                client.upsert_comment(pull_request, action.body, existing=action.existing)
                telemetry.comments_updated += 1
            elif action.body is not None:
                client.upsert_comment(pull_request, action.body, position=action.position)
                telemetry.comments_created += 1
        except REMOTE_ERRORS as error:
            raise AnnotationApplyError(
                str(error), path=action.path, line=action.line, action=action.kind.value
            ) from error


def decorator_for_alm(
    alm: Alm | str,
    *,
    settings: DecoratorSettings,
    clock: Clock | None = None,
    client_factory: ClientFactory | None = None,
) -> PullRequestDecorator:
    """Return the decorator registered for ``alm``."""
    try:
        resolved = Alm(alm)
    except ValueError as error:
        raise ConfigurationError(f"No decorator registered for ALM '{alm}'.") from error
    clock = clock or SystemClock()
    for profile in PLATFORM_PROFILES:
        if resolved in profile.alms:
            return PullRequestDecorator(
                profile,
                client_factory or ClientFactory(settings),
                ReportGenerator(settings, clock),
                clock,
                settings,
            )
    raise ConfigurationError(f"No decorator registered for ALM '{alm}'.")
