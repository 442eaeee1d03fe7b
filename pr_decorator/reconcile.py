"""Reconcile freshly rendered decorations with what is already on the pull request.

Every body this integration posts ends with a marker line, a markdown
link-reference definition that renders as nothing on all supported platforms::

    [//]: # (pr-decorator:summary scope=my-project)
    [//]: # (pr-decorator:annotation scope=* key=src%2Fapp.py%3A12)

The scope is the project key for monorepo bindings and ``*`` otherwise, so
projects sharing a repository never touch each other's comments. Comments
without a marker, or with another scope, are never modified.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import quote, unquote

from pr_decorator.diff_mapper import InlineAnnotation
from pr_decorator.models import ProjectAlmSettings
from pr_decorator.platforms.base import CommentPosition, RemoteComment

MARKER_NAMESPACE = "pr-decorator"
DEFAULT_SCOPE = "*"
MARKER_PATTERN = re.compile(
    r"^\[//\]: # \(pr-decorator:(?P<kind>summary|annotation)"
    r" scope=(?P<scope>[^\s)]+)(?: key=(?P<key>[^\s)]+))?\)\s*$",
    re.MULTILINE,
)


class MarkerKind(StrEnum):
    SUMMARY = "summary"
    ANNOTATION = "annotation"


@dataclass(frozen=True, slots=True)
class Marker:
    """Identity of one integration-authored comment."""

    kind: MarkerKind
    scope: str
    key: str | None = None

    def render(self) -> str:
        text = f"{MARKER_NAMESPACE}:{self.kind.value} scope={quote(self.scope, safe='*')}"
        if self.key is not None:
            text = f"{text} key={quote(self.key, safe='')}"
        return f"[//]: # ({text})"


def decoration_scope(project_alm_settings: ProjectAlmSettings, project_key: str) -> str:
    """Return the project key for monorepo bindings, ``*`` otherwise."""
    if project_alm_settings.monorepo:
        return project_key
    return DEFAULT_SCOPE


def summary_marker(scope: str) -> Marker:
    return Marker(kind=MarkerKind.SUMMARY, scope=scope)


def annotation_marker(scope: str, key: str) -> Marker:
    return Marker(kind=MarkerKind.ANNOTATION, scope=scope, key=key)


def with_marker(body: str, marker: Marker) -> str:
    """Append ``marker`` after a blank line so it never joins the last block."""
    return f"{body.rstrip()}\n\n{marker.render()}\n"


def marker_overhead(marker: Marker) -> int:
    """Characters :func:`with_marker` adds beyond the rendered body."""
    return len(marker.render()) + 3


def parse_marker(body: str) -> Marker | None:
    """Return the last marker found in ``body``, if any."""
    matches = list(MARKER_PATTERN.finditer(body))
    if not matches:
        return None
    match = matches[-1]
    key = match.group("key")
    return Marker(
        kind=MarkerKind(match.group("kind")),
        scope=unquote(match.group("scope")),
        key=unquote(key) if key is not None else None,
    )


def _same_body(left: str, right: str) -> bool:
    return left.strip() == right.strip()


def _location_for(comment: RemoteComment, key: str) -> tuple[str, int]:
    if comment.position is not None:
        return comment.position.path, comment.position.line
    path, _, line = key.rpartition(":")
    if path and line.isdigit():
        return path, int(line)
    return key, 0


class AnnotationActionKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class AnnotationAction:
    """One write needed to bring an inline annotation up to date."""

    kind: AnnotationActionKind
    path: str
    line: int
    body: str | None = None
    existing: RemoteComment | None = None

    @property
    def position(self) -> CommentPosition:
        return CommentPosition(path=self.path, line=self.line)


@dataclass(frozen=True, slots=True)
class ReconciliationPlan:
    """Writes needed to converge remote decorations on the current analysis.

    ``summary_body`` is ``None`` when the summary comment is disabled; existing
    summary comments are then left as they are.
    """

    summary_body: str | None
    summary_existing: RemoteComment | None
    duplicate_summaries: tuple[RemoteComment, ...]
    annotation_actions: tuple[AnnotationAction, ...]
    unchanged: tuple[RemoteComment, ...]

    @property
    def summary_unchanged(self) -> bool:
        return (
            self.summary_body is not None
            and self.summary_existing is not None
            and _same_body(self.summary_existing.body, self.summary_body)
        )

    def actions_of(self, kind: AnnotationActionKind) -> tuple[AnnotationAction, ...]:
        return tuple(action for action in self.annotation_actions if action.kind is kind)


def plan_reconciliation(
    *,
    scope: str,
    summary_body: str | None,
    annotations: Sequence[tuple[InlineAnnotation, str]],
    existing_comments: Sequence[RemoteComment],
) -> ReconciliationPlan:
    """Compute the writes for one decoration.

    ``summary_body`` and annotation bodies are rendered text without markers;
    markers are added here. Deletions come first, then updates, then creations.
    """
    summaries: list[RemoteComment] = []
    annotation_comments: dict[str, list[RemoteComment]] = {}
    for comment in existing_comments:
        marker = parse_marker(comment.body)
        if marker is None or marker.scope != scope:
            continue
        if marker.kind is MarkerKind.SUMMARY:
            summaries.append(comment)
        elif marker.key is not None:
            annotation_comments.setdefault(marker.key, []).append(comment)

    marked_summary = None
    summary_existing = None
    duplicate_summaries: tuple[RemoteComment, ...] = ()
    if summary_body is not None:
        marked_summary = with_marker(summary_body, summary_marker(scope))
        if summaries:
            summary_existing = summaries[0]
            duplicate_summaries = tuple(summaries[1:])

    deletes: list[AnnotationAction] = []
    updates: list[AnnotationAction] = []
    creates: list[AnnotationAction] = []
    unchanged: list[RemoteComment] = []
    wanted_keys: set[str] = set()
    for annotation, body in annotations:
        wanted_keys.add(annotation.key)
        marked_body = with_marker(body, annotation_marker(scope, annotation.key))
        matches = annotation_comments.get(annotation.key, [])
        # Outdated or detached comments are no longer shown on the diff.
        placed = [
            comment
            for comment in matches
            if comment.position == CommentPosition(path=annotation.path, line=annotation.line)
        ]
        current = placed[0] if placed else None
        for stale in matches:
            if stale is current:
                continue
            deletes.append(
                AnnotationAction(
                    kind=AnnotationActionKind.DELETE,
                    path=annotation.path,
                    line=annotation.line,
                    existing=stale,
                )
            )
        if current is None:
            creates.append(
                AnnotationAction(
                    kind=AnnotationActionKind.CREATE,
                    path=annotation.path,
                    line=annotation.line,
                    body=marked_body,
                )
            )
            continue
        if _same_body(current.body, marked_body):
            unchanged.append(current)
            continue
        updates.append(
            AnnotationAction(
                kind=AnnotationActionKind.UPDATE,
                path=annotation.path,
                line=annotation.line,
                body=marked_body,
                existing=current,
            )
        )

    for key, comments in annotation_comments.items():
        if key in wanted_keys:
            continue
        for comment in comments:
            path, line = _location_for(comment, key)
            deletes.append(
                AnnotationAction(
                    kind=AnnotationActionKind.DELETE, path=path, line=line, existing=comment
                )
            )

    return ReconciliationPlan(
        summary_body=marked_summary,
        summary_existing=summary_existing,
        duplicate_summaries=duplicate_summaries,
        annotation_actions=(*deletes, *updates, *creates),
        unchanged=tuple(unchanged),
    )
