"""
In-memory map from clipboard change token to the record it produced.

Lives for the lifetime of one history cache and is never persisted. The
merger uses it to recognise a copy that modifies something copied
earlier in the same session.
"""

from typing import Iterator, Optional

from .types import Record


def _same_row(a: Record, b: Record) -> bool:
    return a is b or (a.id is not None and a.id == b.id)


class SessionLog:
    def __init__(self):
        self._entries: dict[int, Record] = {}

    def record(self, token: Optional[int], record: Record) -> None:
        if token is None:
            return
        self._entries[token] = record

    def get(self, token: Optional[int]) -> Optional[Record]:
        if token is None:
            return None
        return self._entries.get(token)

    def replace(self, old: Record, new: Record) -> None:
        """Point every token that resolved to ``old`` at ``new``."""
        for token, logged in self._entries.items():
            if _same_row(logged, old):
                self._entries[token] = new

    def forget(self, record: Record) -> None:
        """Drop every token that resolves to ``record``."""
        stale = [t for t, r in self._entries.items() if _same_row(r, record)]
        for token in stale:
            del self._entries[token]

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, token: object) -> bool:
        return token in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[int]:
        return iter(self._entries)
