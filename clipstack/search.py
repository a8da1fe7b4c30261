"""
Filtering of loaded history items against a query string.

Modes:
- exact: case-insensitive substring
- regexp: case-insensitive regular expression (invalid patterns match nothing)
- fuzzy: rapidfuzz partial alignment, best matches first
- mixed: exact, then regexp, then fuzzy; the first mode with results wins
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from rapidfuzz import fuzz

logger = logging.getLogger(__name__)

# Minimum alignment score (0-100) for a fuzzy match
FUZZY_SCORE_CUTOFF = 70
# Only the head of long entries takes part in fuzzy matching
FUZZY_TEXT_LIMIT = 5000


@dataclass
class SearchResult:
    object: Any
    ranges: list[tuple[int, int]] = field(default_factory=list)
    score: float = 0.0


class Search:
    """Matches decorators (anything with a ``text`` attribute) against a query."""

    def __init__(self, mode: str = "exact"):
        self.mode = mode

    def search(self, query: str, within: Sequence[Any]) -> list[SearchResult]:
        if not query:
            return [SearchResult(object=item) for item in within]

        if self.mode == "exact":
            return self._exact(query, within)
        if self.mode == "regexp":
            return self._regexp(query, within)
        if self.mode == "fuzzy":
            return self._fuzzy(query, within)
        if self.mode == "mixed":
            return (
                self._exact(query, within)
                or self._regexp(query, within)
                or self._fuzzy(query, within)
            )
        raise ValueError(f"Unknown search mode: {self.mode!r}")

    def _exact(self, query: str, within: Sequence[Any]) -> list[SearchResult]:
        return self._pattern(re.compile(re.escape(query), re.IGNORECASE), within)

    def _regexp(self, query: str, within: Sequence[Any]) -> list[SearchResult]:
        try:
            pattern = re.compile(query, re.IGNORECASE | re.MULTILINE)
        except re.error as e:
            logger.debug("Invalid search pattern %r: %s", query, e)
            return []
        return self._pattern(pattern, within)

    @staticmethod
    def _pattern(pattern: re.Pattern, within: Sequence[Any]) -> list[SearchResult]:
        results = []
        for item in within:
            ranges = [m.span() for m in pattern.finditer(item.text) if m.end() > m.start()]
            if ranges:
                results.append(SearchResult(object=item, ranges=ranges, score=100.0))
        return results

    @staticmethod
    def _fuzzy(query: str, within: Sequence[Any]) -> list[SearchResult]:
        needle = query.lower()
        results = []
        for item in within:
            haystack = item.text[:FUZZY_TEXT_LIMIT].lower()
            alignment = fuzz.partial_ratio_alignment(
                needle, haystack, score_cutoff=FUZZY_SCORE_CUTOFF
            )
            if alignment is None:
                continue
            results.append(SearchResult(
                object=item,
                ranges=[(alignment.dest_start, alignment.dest_end)],
                score=alignment.score,
            ))
        # sorted() is stable, so equal scores keep display order
        return sorted(results, key=lambda r: r.score, reverse=True)
