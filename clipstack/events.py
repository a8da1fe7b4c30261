"""
Change events published by the history cache.

Every mutating operation emits one or more events; presentation code
subscribes instead of observing fields.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class EventKind(Enum):
    LOADED = "loaded"
    ITEMS_CHANGED = "items_changed"
    ITEM_ADDED = "item_added"
    ITEM_DELETED = "item_deleted"
    SEARCH_APPLIED = "search_applied"
    SELECTION_CHANGED = "selection_changed"
    CLEARED = "cleared"
    RESIZE_NEEDED = "resize_needed"
    CLOSE_REQUESTED = "close_requested"


@dataclass(frozen=True)
class HistoryEvent:
    kind: EventKind
    item: Optional[Any] = None
    count: Optional[int] = None
    query: Optional[str] = None


Listener = Callable[[HistoryEvent], None]


class EventBus:
    """Synchronous fan-out of HistoryEvents to subscribers."""

    def __init__(self):
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(
        self,
        kind: EventKind,
        item: Any = None,
        count: Optional[int] = None,
        query: Optional[str] = None,
    ) -> HistoryEvent:
        event = HistoryEvent(kind=kind, item=item, count=count, query=query)
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                # One broken subscriber must not block the others
                logger.exception("Listener failed for %s", kind.value)
        return event
