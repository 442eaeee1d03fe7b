"""Map analysis issues onto pull request diff positions."""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass, field

from pr_decorator.markup.document import Document, DocumentBuilder
from pr_decorator.markup.formatters import Formatter
from pr_decorator.models import ComponentIssue, Severity

HUNK_HEADER_PATTERN = re.compile(
    r"^@@ -(?P<base_start>\d+)(?:,(?P<base_count>\d+))? "
    r"\+(?P<head_start>\d+)(?:,(?P<head_count>\d+))? @@"
)
DIFF_FILE_HEADER_PATTERN = re.compile(r"^diff --git a/(?P<base_path>.+) b/(?P<head_path>.+)$")


@dataclass(frozen=True, slots=True)
class ChangedRange:
    """Span of changed line numbers in the pull request head revision."""

    line_start: int
    line_end: int

    def __contains__(self, line: object) -> bool:
        return isinstance(line, int) and self.line_start <= line <= self.line_end


@dataclass(frozen=True, slots=True)
class FileDiff:
    """Head-side changed lines for one file of a pull request.

    ``whole_file`` marks platforms that only report which files changed; every
    line of such a file is treated as changed.
    """

    path: str
    changed_ranges: tuple[ChangedRange, ...] = ()
    whole_file: bool = False

    def contains_line(self, line: int) -> bool:
        if self.whole_file:
            return True
        return any(line in changed_range for changed_range in self.changed_ranges)


@dataclass(frozen=True, slots=True)
class InlineAnnotation:
    """One diff position with every issue reported on it.

    Issues are ordered by severity descending, then rule key ascending.
    """

    path: str
    line: int
    issues: tuple[ComponentIssue, ...]

    @property
    def key(self) -> str:
        return f"{self.path}:{self.line}"

    @property
    def severity(self) -> Severity:
        return self.issues[0].issue.severity


@dataclass(frozen=True, slots=True)
class IssueMapping:
    """Mapper output: positioned annotations and issues kept for the summary only."""

    annotations: tuple[InlineAnnotation, ...]
    unpositioned: tuple[ComponentIssue, ...] = field(default_factory=tuple)

    @property
    def positioned_issue_count(self) -> int:
        return sum(len(annotation.issues) for annotation in self.annotations)


def parse_head_changed_ranges_from_patch(patch: str) -> tuple[ChangedRange, ...]:
    """Extract head-side changed line spans from a unified diff patch."""
    ranges: list[ChangedRange] = []
    in_hunk = False
    head_line = 0
    range_start: int | None = None
    range_end: int | None = None

    def flush_open_range() -> None:
        nonlocal range_start, range_end
        if range_start is None or range_end is None:
            return
        ranges.append(ChangedRange(line_start=range_start, line_end=range_end))
        range_start = None
        range_end = None

    for line in patch.splitlines():
        header_match = HUNK_HEADER_PATTERN.match(line)
        if header_match is not None:
            flush_open_range()
            in_hunk = True
            head_line = int(header_match.group("head_start"))
            continue

        if not in_hunk:
            continue

        # Inside a hunk only the first character classifies a line.
        if line.startswith("+"):
            if range_start is None:
                range_start = head_line
            range_end = head_line
            head_line += 1
            continue

        if line.startswith(" "):
            flush_open_range()
            head_line += 1
            continue

        if line.startswith("-"):
            flush_open_range()
            continue

        if line.startswith("\\"):
            continue

        flush_open_range()

    flush_open_range()
    return tuple(ranges)


def parse_unified_diff(raw_diff: str) -> tuple[FileDiff, ...]:
    """Split a multi-file ``git diff`` into per-file changed ranges.

    Deleted files are skipped since nothing on the head side can be annotated.
    """
    files: list[FileDiff] = []
    head_path: str | None = None
    patch_lines: list[str] = []
    in_hunk = False

    def flush_file() -> None:
        if head_path is None:
            return
        files.append(
            FileDiff(
                path=head_path,
                changed_ranges=parse_head_changed_ranges_from_patch("\n".join(patch_lines)),
            )
        )

    for line in raw_diff.splitlines():
        header_match = DIFF_FILE_HEADER_PATTERN.match(line)
        if header_match is not None:
            flush_file()
            head_path = header_match.group("head_path")
            patch_lines = []
            in_hunk = False
            continue
        if not in_hunk and line.startswith("+++ "):
            target = line[4:].strip()
            if target == "/dev/null":
                head_path = None
            elif target.startswith("b/"):
                head_path = target[2:]
            continue
        if not in_hunk and line.startswith("--- "):
            continue
        if HUNK_HEADER_PATTERN.match(line) is not None:
            in_hunk = True
        patch_lines.append(line)

    flush_file()
    return tuple(files)


def _issue_sort_key(component_issue: ComponentIssue) -> tuple[int, str, str]:
    issue = component_issue.issue
    return (-issue.severity.rank, issue.rule_key, issue.key)


def map_issues(
    issues: tuple[ComponentIssue, ...] | list[ComponentIssue],
    diff_files: tuple[FileDiff, ...] | list[FileDiff],
) -> IssueMapping:
    """Position issues on changed lines, merging issues that share a line.

    An issue is positioned only when it has an SCM path, a line, and that line
    is a changed head-side line of the file; every other issue is returned as
    unpositioned.
    """
    diff_by_path = {diff_file.path: diff_file for diff_file in diff_files}
    grouped: dict[tuple[str, int], list[ComponentIssue]] = defaultdict(list)
    unpositioned: list[ComponentIssue] = []

    for component_issue in issues:
        path = component_issue.scm_path
        line = component_issue.issue.line
        diff_file = diff_by_path.get(path) if path is not None else None
        if path is None or line is None or diff_file is None or not diff_file.contains_line(line):
            unpositioned.append(component_issue)
            continue
        grouped[(path, line)].append(component_issue)

    annotations = tuple(
        InlineAnnotation(path=path, line=line, issues=tuple(sorted(group, key=_issue_sort_key)))
        for (path, line), group in sorted(grouped.items())
    )
    return IssueMapping(annotations=annotations, unpositioned=tuple(unpositioned))


def limit_annotations(
    annotations: tuple[InlineAnnotation, ...], max_annotations: int
) -> tuple[tuple[InlineAnnotation, ...], tuple[InlineAnnotation, ...]]:
    """Keep the most severe annotations; return ``(kept, dropped)`` in position order."""
    if len(annotations) <= max_annotations:
        return annotations, ()
    ranked = sorted(
        annotations,
        key=lambda annotation: (-annotation.severity.rank, annotation.path, annotation.line),
    )
    kept_keys = {annotation.key for annotation in ranked[:max_annotations]}
    return (
        tuple(annotation for annotation in annotations if annotation.key in kept_keys),
        tuple(annotation for annotation in annotations if annotation.key not in kept_keys),
    )


def _shorten(message: str, limit: int | None) -> str:
    if limit is None or len(message) <= limit:
        return message
    return message[: max(limit, 0)] + "..."


def _annotation_document(
    annotation: InlineAnnotation, shown: int, message_limit: int | None = None
) -> Document:
    builder = DocumentBuilder()
    visible = annotation.issues[:shown]
    if len(annotation.issues) == 1:
        issue = visible[0].issue
        builder.paragraph().bold(issue.severity.value.capitalize()).text(
            f" {_shorten(issue.message, message_limit)} ({issue.rule_key})"
        )
        return builder.build()

    builder.paragraph().bold(f"{len(annotation.issues)} issues on this line")
    items = builder.list()
    for component_issue in visible:
        issue = component_issue.issue
        items.item().bold(issue.severity.value.capitalize()).text(
            f" {_shorten(issue.message, message_limit)} ({issue.rule_key})"
        )
    hidden = len(annotation.issues) - len(visible)
    if hidden:
        items.item().text(f"... and {hidden} more")
    return builder.build()


def render_annotation(
    annotation: InlineAnnotation,
    formatter: Formatter,
    *,
    max_messages: int,
    max_length: int | None = None,
) -> str:
    """Render an annotation body that fits ``max_length``.

    The least severe messages are dropped first. When a single message is
    still too long, its text is cut and ends with ``...``.
    """
    shown = min(max_messages, len(annotation.issues))
    rendered = formatter.format(_annotation_document(annotation, shown))
    while max_length is not None and len(rendered) > max_length and shown > 1:
        shown -= 1
        rendered = formatter.format(_annotation_document(annotation, shown))
    if max_length is None or len(rendered) <= max_length:
        return rendered

    message_limit = len(annotation.issues[0].issue.message)
    while len(rendered) > max_length and message_limit > 0:
        overflow = len(rendered) - max_length + len("...")
        message_limit = max(0, message_limit - overflow)
        rendered = formatter.format(_annotation_document(annotation, shown, message_limit))
    return rendered
