"""
Protocol definitions for the history cache and its collaborators.

Defines interface contracts at the cache boundary:
- RecordStoreProtocol: the persisted store (SQLite locally)
- ClipboardProtocol / NotifierProtocol: OS-level side effects
- SchedulerProtocol: delayed execution for debounce and refresh timers
"""

from typing import Callable, Optional, Protocol, runtime_checkable

from .record_store import Predicate, Sort
from .types import Record


@runtime_checkable
class RecordStoreProtocol(Protocol):
    """
    Query contract the cache consumes.

    Implemented by:
    - RecordStore (local SQLite)

    Every method raises StoreUnavailable when the backend fails.
    """

    def count(self, predicate: Predicate = ...) -> int: ...

    def fetch(
        self,
        predicate: Predicate = ...,
        sort: Sort = ...,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[Record]: ...

    def insert(self, record: Record) -> Record: ...

    def update(self, record: Record) -> Record: ...

    def delete(self, record: Record) -> bool: ...

    def delete_where(self, predicate: Predicate) -> int: ...

    def close(self) -> None: ...


@runtime_checkable
class ClipboardProtocol(Protocol):
    """Writes to the system clipboard and simulates paste."""

    def copy(self, record: Record, remove_formatting: bool = False) -> None: ...

    def paste(self) -> None: ...

    def clear(self) -> None: ...


@runtime_checkable
class NotifierProtocol(Protocol):
    """Delivers a user notification when new content is captured."""

    def notify(self, body: str) -> None: ...


@runtime_checkable
class ScheduledTaskProtocol(Protocol):
    """Handle for a callback scheduled to run later."""

    def cancel(self) -> None: ...

    @property
    def cancelled(self) -> bool: ...


@runtime_checkable
class SchedulerProtocol(Protocol):
    """Runs callbacks after a delay (seconds)."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledTaskProtocol: ...
