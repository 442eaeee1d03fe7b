"""Render markup documents into platform text."""

from __future__ import annotations

import json
import re
from typing import Any, Protocol

from pr_decorator.errors import ConfigurationError
from pr_decorator.markup.document import (
    Bold,
    Document,
    Heading,
    Image,
    Inline,
    LineBreak,
    Link,
    ListBlock,
    ListStyle,
    Paragraph,
    Table,
    Text,
)
from pr_decorator.models import Alm

MARKDOWN_RESERVED_CHARACTERS = "\\`*_{}[]()<>#|~!"
GITLAB_RESERVED_CHARACTERS = MARKDOWN_RESERVED_CHARACTERS + "$@"


class Formatter(Protocol):
    """Renders a document to a single string without mutating it."""

    def format(self, document: Document) -> str:
        """Return the platform text for a document."""


def escape_markdown(value: str, reserved: str = MARKDOWN_RESERVED_CHARACTERS) -> str:
    """Backslash-escape reserved characters."""
    return "".join(
        f"\\{character}" if character in reserved else character for character in value
    )


def unescape_markdown(value: str, reserved: str = MARKDOWN_RESERVED_CHARACTERS) -> str:
    """Reverse :func:`escape_markdown`."""
    pattern = re.compile(r"\\([" + re.escape(reserved) + r"])")
    return pattern.sub(r"\1", value)


class MarkdownFormatter:
    """CommonMark renderer used by GitHub, Bitbucket and Azure DevOps."""

    reserved_characters = MARKDOWN_RESERVED_CHARACTERS

    def format(self, document: Document) -> str:
        blocks = [self._format_block(block) for block in document.children]
        return "\n\n".join(block for block in blocks if block) + "\n"

    def escape(self, value: str) -> str:
        return escape_markdown(value, self.reserved_characters)

    def _format_block(self, block: object) -> str:
        if isinstance(block, Heading):
            return f"{'#' * block.level} {self._format_inlines(block.children)}"
        if isinstance(block, Paragraph):
            return self._format_inlines(block.children)
        if isinstance(block, ListBlock):
            lines = []
            for index, item in enumerate(block.items, start=1):
                bullet = f"{index}." if block.style is ListStyle.ORDERED else "-"
                lines.append(f"{bullet} {self._format_inlines(item.children)}")
            return "\n".join(lines)
        if isinstance(block, Table):
            return self._format_table(block)
        raise ValueError(f"Unsupported block node {type(block).__name__}.")

    def _format_table(self, table: Table) -> str:
        header = "| " + " | ".join(self.escape(cell) for cell in table.headers) + " |"
        divider = "|" + "|".join(" --- " for _ in table.headers) + "|"
        rows = ["| " + " | ".join(self.escape(cell) for cell in row) + " |" for row in table.rows]
        return "\n".join([header, divider, *rows])

    def _format_inlines(self, children: tuple[Inline, ...]) -> str:
        return "".join(self._format_inline(child) for child in children)

    def _format_inline(self, node: Inline) -> str:
        if isinstance(node, Text):
            return self.escape(node.value)
        if isinstance(node, Bold):
            return f"**{self._format_inlines(node.children)}**"
        if isinstance(node, Link):
            return f"[{self._format_inlines(node.children)}]({node.url})"
        if isinstance(node, Image):
            return f"![{self.escape(node.alt)}]({node.url})"
        if isinstance(node, LineBreak):
            return "  \n"
        raise ValueError(f"Unsupported inline node {type(node).__name__}.")


class GitlabMarkdownFormatter(MarkdownFormatter):
    """GitLab Flavored Markdown: also neutralizes math and mentions."""

    reserved_characters = GITLAB_RESERVED_CHARACTERS


class AdfFormatter:
    """Atlassian Document Format renderer, emitted as compact JSON."""

    def format(self, document: Document) -> str:
        payload = {
            "version": 1,
            "type": "doc",
            "content": [self._block(block) for block in document.children],
        }
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)

    def _block(self, block: object) -> dict[str, Any]:
        if isinstance(block, Heading):
            return {
                "type": "heading",
                "attrs": {"level": block.level},
                "content": self._inlines(block.children),
            }
        if isinstance(block, Paragraph):
            return {"type": "paragraph", "content": self._inlines(block.children)}
        if isinstance(block, ListBlock):
            list_type = "orderedList" if block.style is ListStyle.ORDERED else "bulletList"
            return {
                "type": list_type,
                "content": [
                    {
                        "type": "listItem",
                        "content": [
                            {"type": "paragraph", "content": self._inlines(item.children)}
                        ],
                    }
                    for item in block.items
                ],
            }
        if isinstance(block, Table):
            return {
                "type": "table",
                "content": [
                    self._table_row(table_cells=block.headers, cell_type="tableHeader"),
                    *(
                        self._table_row(table_cells=row, cell_type="tableCell")
                        for row in block.rows
                    ),
                ],
            }
        raise ValueError(f"Unsupported block node {type(block).__name__}.")

    def _table_row(self, *, table_cells: tuple[str, ...], cell_type: str) -> dict[str, Any]:
        return {
            "type": "tableRow",
            "content": [
                {
                    "type": cell_type,
                    "content": [
                        {"type": "paragraph", "content": [{"type": "text", "text": cell}]}
                    ],
                }
                for cell in table_cells
            ],
        }

    def _inlines(
        self, children: tuple[Inline, ...], marks: tuple[dict[str, Any], ...] = ()
    ) -> list[dict[str, Any]]:
        nodes: list[dict[str, Any]] = []
        for child in children:
            if isinstance(child, Text):
                if not child.value:
                    continue
                node: dict[str, Any] = {"type": "text", "text": child.value}
                if marks:
                    node["marks"] = list(marks)
                nodes.append(node)
            elif isinstance(child, Bold):
                nodes.extend(self._inlines(child.children, (*marks, {"type": "strong"})))
            elif isinstance(child, Link):
                link_mark = {"type": "link", "attrs": {"href": child.url}}
                nodes.extend(self._inlines(child.children, (*marks, link_mark)))
            elif isinstance(child, Image):
                # Inline images are not part of ADF paragraphs; keep the alt text linked.
                nodes.append(
                    {
                        "type": "text",
                        "text": child.alt,
                        "marks": [*marks, {"type": "link", "attrs": {"href": child.url}}],
                    }
                )
            elif isinstance(child, LineBreak):
                nodes.append({"type": "hardBreak"})
            else:
                raise ValueError(f"Unsupported inline node {type(child).__name__}.")
        return nodes


FORMATTERS_BY_FLAVOUR: dict[str, Formatter] = {
    "markdown": MarkdownFormatter(),
    "gitlab": GitlabMarkdownFormatter(),
    "adf": AdfFormatter(),
}

FLAVOUR_BY_ALM: dict[Alm, str] = {
    Alm.GITHUB: "markdown",
    Alm.GITLAB: "gitlab",
    Alm.BITBUCKET: "markdown",
    Alm.BITBUCKET_CLOUD: "markdown",
    Alm.AZURE_DEVOPS: "markdown",
}


def formatter_for_flavour(flavour: str) -> Formatter:
    """Resolve a formatter by flavour name."""
    formatter = FORMATTERS_BY_FLAVOUR.get(flavour)
    if formatter is None:
        known = ", ".join(sorted(FORMATTERS_BY_FLAVOUR))
        raise ConfigurationError(f"Unknown markup flavour '{flavour}'. Expected one of: {known}.")
    return formatter


def formatter_for_alm(alm: Alm | str) -> Formatter:
    """Resolve the single formatter registered for a platform."""
    try:
        flavour = FLAVOUR_BY_ALM[Alm(alm)]
    except (KeyError, ValueError) as error:
        raise ConfigurationError(f"No formatter registered for ALM '{alm}'.") from error
    return formatter_for_flavour(flavour)
