"""Immutable markup document tree and its builders."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Union


class ListStyle(StrEnum):
    """Rendering style of a list."""

    BULLET = "bullet"
    ORDERED = "ordered"


@dataclass(frozen=True, slots=True)
class Text:
    """Plain text run; escaped by formatters."""

    value: str


@dataclass(frozen=True, slots=True)
class Bold:
    """Strong-emphasis inline container."""

    children: tuple[Inline, ...]


@dataclass(frozen=True, slots=True)
class Link:
    """Hyperlink around inline content."""

    url: str
    children: tuple[Inline, ...]


@dataclass(frozen=True, slots=True)
class Image:
    """Inline image with alternate text."""

    alt: str
    url: str


@dataclass(frozen=True, slots=True)
class LineBreak:
    """Hard line break."""


Inline = Union[Text, Bold, Link, Image, LineBreak]
INLINE_TYPES = (Text, Bold, Link, Image, LineBreak)


@dataclass(frozen=True, slots=True)
class Heading:
    """Section heading, level 1 to 6."""

    level: int
    children: tuple[Inline, ...]

    def __post_init__(self) -> None:
        if not 1 <= self.level <= 6:
            raise ValueError(f"Heading level must be between 1 and 6, got {self.level}.")
        _require_children(self, self.children, INLINE_TYPES)


@dataclass(frozen=True, slots=True)
class Paragraph:
    """Block of inline content."""

    children: tuple[Inline, ...]

    def __post_init__(self) -> None:
        _require_children(self, self.children, INLINE_TYPES)


@dataclass(frozen=True, slots=True)
class ListItem:
    """One entry of a list."""

    children: tuple[Inline, ...]

    def __post_init__(self) -> None:
        _require_children(self, self.children, INLINE_TYPES)


@dataclass(frozen=True, slots=True)
class ListBlock:
    """Bullet or ordered list of items."""

    style: ListStyle
    items: tuple[ListItem, ...]

    def __post_init__(self) -> None:
        _require_children(self, self.items, (ListItem,))


@dataclass(frozen=True, slots=True)
class Table:
    """Table of plain text cells."""

    headers: tuple[str, ...]
    rows: tuple[tuple[str, ...], ...]

    def __post_init__(self) -> None:
        if not self.headers:
            raise ValueError("Table requires at least one header.")
        for row in self.rows:
            if len(row) != len(self.headers):
                raise ValueError(
                    f"Table row has {len(row)} cells but {len(self.headers)} headers."
                )


Block = Union[Heading, Paragraph, ListBlock, Table]
BLOCK_TYPES = (Heading, Paragraph, ListBlock, Table)


@dataclass(frozen=True, slots=True)
class Document:
    """Root of a markup tree."""

    children: tuple[Block, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        _require_children(self, self.children, BLOCK_TYPES)


def _require_children(
    parent: object, children: tuple[object, ...], allowed: tuple[type, ...]
) -> None:
    """Reject children a node type cannot hold."""
    for child in children:
        if not isinstance(child, allowed):
            raise ValueError(
                f"{type(child).__name__} is not a valid child of {type(parent).__name__}."
            )


class InlineBuilder:
    """Collects inline nodes for a heading, paragraph, list item or bold run."""

    def __init__(self) -> None:
        self._children: list[Inline] = []

    def text(self, value: str) -> InlineBuilder:
        self._children.append(Text(value))
        return self

    def bold(self, value: str) -> InlineBuilder:
        self._children.append(Bold((Text(value),)))
        return self

    def link(self, text: str, url: str) -> InlineBuilder:
        self._children.append(Link(url=url, children=(Text(text),)))
        return self

    def image(self, alt: str, url: str) -> InlineBuilder:
        self._children.append(Image(alt=alt, url=url))
        return self

    def line_break(self) -> InlineBuilder:
        self._children.append(LineBreak())
        return self

    def build_children(self) -> tuple[Inline, ...]:
        """Freeze collected inline nodes."""
        return tuple(self._children)


class HeadingBuilder(InlineBuilder):
    def __init__(self, level: int) -> None:
        super().__init__()
        self._level = level

    def build(self) -> Heading:
        return Heading(level=self._level, children=self.build_children())


class ParagraphBuilder(InlineBuilder):
    def build(self) -> Paragraph:
        return Paragraph(children=self.build_children())


class ListItemBuilder(InlineBuilder):
    def build(self) -> ListItem:
        return ListItem(children=self.build_children())


class ListBuilder:
    """Collects list items."""

    def __init__(self, style: ListStyle) -> None:
        self._style = style
        self._items: list[ListItemBuilder] = []

    def item(self) -> ListItemBuilder:
        """Append an item and return its builder."""
        builder = ListItemBuilder()
        self._items.append(builder)
        return builder

    def build(self) -> ListBlock:
        return ListBlock(style=self._style, items=tuple(item.build() for item in self._items))


class TableBuilder:
    """Collects table rows under fixed headers."""

    def __init__(self, headers: tuple[str, ...]) -> None:
        self._headers = headers
        self._rows: list[tuple[str, ...]] = []

    def row(self, *cells: str) -> TableBuilder:
        self._rows.append(tuple(cells))
        return self

    def build(self) -> Table:
        return Table(headers=self._headers, rows=tuple(self._rows))


class DocumentBuilder:
    """Builds a :class:`Document` block by block.

    Block operations return child builders that stay attached to this builder;
    :meth:`build` freezes everything into an immutable tree.
    """

    def __init__(self) -> None:
        self._blocks: list[HeadingBuilder | ParagraphBuilder | ListBuilder | TableBuilder] = []

    def heading(self, level: int) -> HeadingBuilder:
        builder = HeadingBuilder(level)
        self._blocks.append(builder)
        return builder

    def paragraph(self) -> ParagraphBuilder:
        builder = ParagraphBuilder()
        self._blocks.append(builder)
        return builder

    def list(self, *, ordered: bool = False) -> ListBuilder:
        builder = ListBuilder(ListStyle.ORDERED if ordered else ListStyle.BULLET)
        self._blocks.append(builder)
        return builder

    def table(
        self,
        headers: tuple[str, ...] | list[str],
        rows: tuple[tuple[str, ...], ...] | list[tuple[str, ...]] = (),
    ) -> TableBuilder:
        builder = TableBuilder(tuple(headers))
        for row in rows:
            builder.row(*row)
        self._blocks.append(builder)
        return builder

    def build(self) -> Document:
        return Document(children=tuple(block.build() for block in self._blocks))
