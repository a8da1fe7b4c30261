"""
Presentation state wrapped around a loaded record.
"""

import itertools
from typing import Optional

from .shortcuts import KeyShortcut
from .types import Record, generate_title

_ids = itertools.count(1)


class HistoryItemDecorator:
    """
    A loaded Record plus the transient state a list row needs.

    Attributes:
        item: The wrapped Record
        id: Process-unique handle (stable across merges of the same row)
        is_selected: Row is the current selection
        is_visible: False while an active filter excludes the record
        highlights: (start, end) character ranges matched by the filter
        shortcuts: Key shortcuts assigned to the row
        title: Display title
    """

    def __init__(
        self,
        item: Record,
        shortcuts: Optional[list[KeyShortcut]] = None,
        show_special_symbols: bool = False,
    ):
        self.item = item
        self.id = next(_ids)
        self.is_selected = False
        self.is_visible = True
        self.highlights: list[tuple[int, int]] = []
        self.shortcuts: list[KeyShortcut] = list(shortcuts or [])
        self.title = item.title or generate_title(item.contents, show_special_symbols)

    @property
    def is_pinned(self) -> bool:
        return self.item.is_pinned

    @property
    def is_unpinned(self) -> bool:
        return self.item.is_unpinned

    @property
    def text(self) -> str:
        """Text the search engine matches against."""
        return self.item.text or self.title

    def highlight(self, query: str, ranges: list[tuple[int, int]]) -> None:
        """Record match ranges for ``query``; an empty query clears them."""
        self.highlights = list(ranges) if query else []

    def regenerate_title(self, show_special_symbols: bool) -> None:
        title = generate_title(self.item.contents, show_special_symbols)
        self.title = title
        self.item.title = title

    def has_shortcut(self, key: str, modifiers: frozenset[str]) -> bool:
        return any(s.key == key and s.modifiers == modifiers for s in self.shortcuts)

    def __repr__(self) -> str:
        flags = "".join((
            "S" if self.is_selected else "-",
            "V" if self.is_visible else "-",
        ))
        return f"HistoryItemDecorator({self.item!r} {flags})"
