"""Decoration telemetry models and helpers."""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from pr_decorator.models import AnnotationFailure, DecorationStats


@dataclass(slots=True)
class DecorationTelemetry:
    """Counters collected while one pull request is decorated."""

    alm: str
    pull_request_id: str
    comments_created: int = 0
    comments_updated: int = 0
    comments_deleted: int = 0
    comments_unchanged: int = 0
    issues_positioned: int = 0
    issues_unpositioned: int = 0
    annotations_dropped: int = 0
    failures: list[AnnotationFailure] = field(default_factory=list)

    def record_failure(self, failure: AnnotationFailure) -> None:
        self.failures.append(failure)
        logger.warning(
            "Could not {} annotation at {}:{} on {} pull request {}: {}",
            failure.action,
            failure.path,
            failure.line,
            self.alm,
            self.pull_request_id,
            failure.message,
        )

    def to_stats(self) -> DecorationStats:
        return DecorationStats(
            comments_created=self.comments_created,
            comments_updated=self.comments_updated,
            comments_deleted=self.comments_deleted,
            comments_unchanged=self.comments_unchanged,
            issues_positioned=self.issues_positioned,
            issues_unpositioned=self.issues_unpositioned,
        )

    def log_summary(self) -> None:
        logger.info(
            "Decorated {} pull request {}: {} created, {} updated, {} deleted, "
            "{} unchanged, {} annotation failures",
            self.alm,
            self.pull_request_id,
            self.comments_created,
            self.comments_updated,
            self.comments_deleted,
            self.comments_unchanged,
            len(self.failures),
        )
