"""
Presentation order for history records.

Pinned and unpinned records each sort by last copy time, newest first
(ties broken by newest row id). The pin position decides whether the
pinned block comes before or after the unpinned block.
"""

from bisect import bisect_left
from typing import Callable, Sequence, TypeVar

from .types import Record

T = TypeVar("T")


def recency_key(record: Record) -> tuple:
    """Sort key: ascending key order == newest first."""
    return (-record.last_copied_at.timestamp(), -(record.id or 0))


class Sorter:
    """Stateless total order over a mixed pinned/unpinned set."""

    def __init__(self, pin_to: str = "top"):
        self.pin_to = pin_to

    def sort(self, items: Sequence[T], key: Callable[[T], Record] = lambda r: r) -> list[T]:
        """Return ``items`` in presentation order.

        ``key`` maps each item to its Record, so the same order applies to
        records and to decorators wrapping them.
        """
        pinned = sorted((i for i in items if key(i).is_pinned), key=lambda i: recency_key(key(i)))
        unpinned = sorted((i for i in items if key(i).is_unpinned), key=lambda i: recency_key(key(i)))
        if self.pin_to == "bottom":
            return unpinned + pinned
        return pinned + unpinned

    def insertion_index(
        self,
        ordered: Sequence[T],
        record: Record,
        key: Callable[[T], Record] = lambda r: r,
    ) -> int:
        """Slot ``record`` takes in an already ordered sequence."""
        pinned_first = self.pin_to != "bottom"
        # Block rank: 0 sorts before 1
        def rank(r: Record) -> int:
            return 0 if r.is_pinned == pinned_first else 1

        keys = [(rank(key(i)), recency_key(key(i))) for i in ordered]
        return bisect_left(keys, (rank(record), recency_key(record)))
