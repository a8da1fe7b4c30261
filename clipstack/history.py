"""
Paginated, deduplicating clipboard history cache.

History keeps a bounded in-memory working set over the record store:
- load(): all pinned records plus the newest page of unpinned ones
- load_more(): the next page, by date bound with an offset fallback
- add(): merge a captured record into history, or insert it as new
- search_query: debounced filtering of the loaded set

All mutations run under one re-entrant lock, so capture threads, timer
threads and the presentation thread hand off through it. Each mutation
publishes events on the context's EventBus.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from .backend import HistoryContext
from .config import HistoryConfig
from .decorator import HistoryItemDecorator
from .errors import StoreUnavailable
from .events import EventKind
from .merger import IdentityResolver
from .ordering import Sorter
from .record_store import ALL, PINNED, UNPINNED, Sort, UnpinnedOlderThan
from .scheduler import CancellationToken, Debouncer
from .search import Search, SearchResult
from .session_log import SessionLog
from .shortcuts import (
    IGNORED_MODIFIERS,
    HistoryItemAction,
    KeyShortcut,
    assign_pinned_shortcuts,
    assign_unpinned_shortcuts,
)
from .types import SUPPORTED_PINS, Record, generate_title

logger = logging.getLogger(__name__)


class HistoryState(Enum):
    UNINITIALIZED = "uninitialized"
    LOADED = "loaded"
    LOADING_MORE = "loading_more"
    EXHAUSTED = "exhausted"


@dataclass
class PaginationCursor:
    """Where the unpinned page sequence stands."""
    total_count: int = 0
    pinned_count: int = 0
    offset: int = 0
    oldest_loaded: Optional[datetime] = None
    newest_loaded: Optional[datetime] = None
    has_more_items: bool = True

    @property
    def unpinned_total(self) -> int:
        return max(self.total_count - self.pinned_count, 0)


def _record(item: HistoryItemDecorator) -> Record:
    return item.item


class History:
    """
    The history cache.

    ``all`` is every loaded decorator in presentation order; ``items`` is
    what is currently displayed (``all`` filtered by the search query).
    """

    def __init__(self, context: HistoryContext):
        self._context = context
        self._store = context.store
        self.events = context.events
        self.config = context.config

        self._lock = threading.RLock()
        self._load_more_gate = threading.Lock()
        self._loading_more = False

        self.all: list[HistoryItemDecorator] = []
        self.items: list[HistoryItemDecorator] = []
        self.cursor = PaginationCursor()
        self.state = HistoryState.UNINITIALIZED

        self.session_log = SessionLog()
        self._resolver = IdentityResolver(self._store, self.session_log)
        self._sorter = Sorter(self.config.pin_to)
        self._search = Search(self.config.search_mode)
        self._debouncer = Debouncer(context.scheduler, self.config.search_debounce)
        self._search_query = ""
        self._applied_query = ""
        self._selected_item: Optional[HistoryItemDecorator] = None

    # -------------------------------------------------------------------------
    # Views over the working set
    # -------------------------------------------------------------------------

    @property
    def pinned_items(self) -> list[HistoryItemDecorator]:
        return [item for item in self.items if item.is_pinned]

    @property
    def unpinned_items(self) -> list[HistoryItemDecorator]:
        return [item for item in self.items if item.is_unpinned]

    @property
    def has_more_items(self) -> bool:
        return self.cursor.has_more_items

    @property
    def selected_item(self) -> Optional[HistoryItemDecorator]:
        return self._selected_item

    @selected_item.setter
    def selected_item(self, item: Optional[HistoryItemDecorator]) -> None:
        with self._lock:
            if self._selected_item is not None:
                self._selected_item.is_selected = False
            if item is not None:
                item.is_selected = True
            self._selected_item = item
        self.events.emit(EventKind.SELECTION_CHANGED, item=item)

    # -------------------------------------------------------------------------
    # Pagination
    # -------------------------------------------------------------------------

    def load(self) -> None:
        """
        (Re)build the working set from the store.

        Loads every pinned record and the newest page of unpinned records,
        and resets the pagination cursor.

        Raises:
            StoreUnavailable: If counting or fetching fails. The previous
                working set and cursor are left as they were.
        """
        with self._lock:
            page_size = self.config.page_size
            total = self._store.count(ALL)
            pinned_count = self._store.count(PINNED)
            pinned = self._store.fetch(PINNED)
            unpinned = self._store.fetch(UNPINNED, Sort.LAST_COPIED_DESC, limit=page_size)

            cursor = PaginationCursor(
                total_count=total,
                pinned_count=pinned_count,
                offset=len(unpinned),
            )
            if unpinned:
                cursor.newest_loaded = unpinned[0].last_copied_at
                cursor.oldest_loaded = unpinned[-1].last_copied_at
            cursor.has_more_items = cursor.offset < cursor.unpinned_total

            self.cursor = cursor
            self.all = self._sorter.sort(
                [self._decorate(record) for record in pinned + unpinned],
                key=_record,
            )
            self._selected_item = None
            self.state = HistoryState.LOADED if cursor.has_more_items else HistoryState.EXHAUSTED
            logger.debug(
                "Loaded %d pinned + %d unpinned of %d records",
                len(pinned), len(unpinned), total,
            )

            assign_pinned_shortcuts(self.all, self.config.paste_by_default)
            self._republish()

        self.events.emit(EventKind.LOADED, count=len(self.all))
        self.events.emit(EventKind.RESIZE_NEEDED)

    def load_more(self) -> bool:
        """
        Append the next page of unpinned records to the working set.

        No-op while a filter is active, after the last page, or while
        another load_more() is in flight.

        Returns:
            True if records were appended

        Raises:
            StoreUnavailable: If the page fetch fails
        """
        with self._load_more_gate:
            if self._loading_more:
                logger.debug("load_more already in flight, skipping")
                return False
            self._loading_more = True

        try:
            with self._lock:
                if self._search_query or not self.cursor.has_more_items:
                    return False
                previous = self.state
                self.state = HistoryState.LOADING_MORE
                try:
                    appended = self._load_next_page()
                except StoreUnavailable:
                    self.state = previous
                    raise
                self.state = HistoryState.LOADED if self.cursor.has_more_items else HistoryState.EXHAUSTED
        finally:
            with self._load_more_gate:
                self._loading_more = False

        if appended:
            self.events.emit(EventKind.ITEMS_CHANGED, count=len(self.all))
            self.events.emit(EventKind.RESIZE_NEEDED)
        return appended

    def _load_next_page(self) -> bool:
        cursor = self.cursor
        page_size = self.config.page_size

        self._prune_old_items_if_needed()

        # Records sharing the oldest loaded timestamp (or a clock step
        # backwards) make the date bound skip or stall; the offset does not.
        if cursor.oldest_loaded is not None and self._date_bound_is_exact():
            results = self._store.fetch(
                UnpinnedOlderThan(cursor.oldest_loaded),
                Sort.LAST_COPIED_DESC,
                limit=page_size,
            )
        else:
            logger.debug("Date bound unusable, fetching from offset %d", cursor.offset)
            results = self._store.fetch(
                UNPINNED,
                Sort.LAST_COPIED_DESC,
                limit=page_size,
                offset=cursor.offset,
            )

        if not results:
            logger.debug("No more history at offset %d", cursor.offset)
            cursor.has_more_items = False
            return False

        loaded_ids = {item.item.id for item in self.all}
        fresh = [record for record in results if record.id not in loaded_ids]

        cursor.offset += len(results)
        oldest = min(record.last_copied_at for record in results)
        if cursor.oldest_loaded is None or oldest < cursor.oldest_loaded:
            cursor.oldest_loaded = oldest
        if cursor.offset >= cursor.unpinned_total:
            cursor.has_more_items = False

        logger.debug(
            "Loaded %d more records (%d already loaded), offset %d/%d",
            len(fresh), len(results) - len(fresh), cursor.offset, cursor.unpinned_total,
        )
        if not fresh:
            return False

        self.all = self._sorter.sort(
            self.all + [self._decorate(record) for record in fresh],
            key=_record,
        )
        self._republish()
        return True

    def _date_bound_is_exact(self) -> bool:
        """True when everything older than the date bound is exactly what remains."""
        remaining = self.cursor.unpinned_total - self.cursor.offset
        older = self._store.count(UnpinnedOlderThan(self.cursor.oldest_loaded))
        return older == remaining

    def _prune_old_items_if_needed(self) -> None:
        """Drop the oldest loaded unpinned records beyond twice the page size.

        Only the in-memory set shrinks; the store keeps the records.
        """
        unpinned = [item for item in self.all if item.is_unpinned]
        limit = self.config.page_size * 2
        if len(unpinned) <= limit:
            return

        excess = len(unpinned) - limit
        oldest = sorted(unpinned, key=lambda i: (i.item.last_copied_at, i.item.id or 0))[:excess]
        dropped = {id(item) for item in oldest}
        self.all = [item for item in self.all if id(item) not in dropped]
        self.items = [item for item in self.items if id(item) not in dropped]
        if self._selected_item is not None and id(self._selected_item) in dropped:
            self._selected_item = None
        logger.debug("Pruned %d old records from memory", excess)

    def reset_view(self) -> None:
        """Reload from the store unless a filter is active."""
        with self._lock:
            if self._search_query:
                logger.debug("Filter active, keeping current view")
                return
            self.load()

    # -------------------------------------------------------------------------
    # Capture
    # -------------------------------------------------------------------------

    def add(self, record: Record, change_token: Optional[int] = None) -> HistoryItemDecorator:
        """
        Merge a captured record into history.

        Args:
            record: The captured record (persisted here if it has no id)
            change_token: Clipboard change counter that produced it

        Returns:
            The decorator now representing the record in the working set

        Raises:
            StoreUnavailable: If the store cannot be read or written
        """
        with self._lock:
            if not record.title:
                record.title = generate_title(record.contents, self.config.show_special_symbols)
            inserted = record.id is None
            if inserted:
                self._store.insert(record)

            try:
                decision = self._resolver.resolve(record)
            except StoreUnavailable:
                if inserted:
                    self._discard(record)
                raise

            removed_index: Optional[int] = None
            was_loaded = False

            if decision.is_new:
                if record.is_unpinned:
                    self._evict_overflow(keep=record)
                self.cursor.total_count += 1
                if record.is_pinned:
                    self.cursor.pinned_count += 1
                else:
                    self.cursor.offset += 1
            else:
                existing = decision.existing
                removed_index = self._index_of(existing)
                if removed_index is not None:
                    was_loaded = True
                    removed = self.all.pop(removed_index)
                    self.items = [item for item in self.items if item is not removed]
                    if removed is self._selected_item:
                        self._selected_item = None
                self._resolver.absorb(record, existing, modification=decision.modification)
                if not was_loaded and record.is_unpinned and not self._in_loaded_range(existing):
                    self.cursor.offset += 1

            self.session_log.record(change_token, record)

            item = self._decorate(record)
            if record.is_pinned:
                item.shortcuts = KeyShortcut.create(record.pin, self.config.paste_by_default)
                # Keep pins where they were
                if removed_index is not None:
                    self.all.insert(removed_index, item)
                else:
                    self.all.insert(self._sorter.insertion_index(self.all, record, key=_record), item)
            else:
                self.all.insert(self._sorter.insertion_index(self.all, record, key=_record), item)

            if record.is_unpinned and self.cursor.oldest_loaded is None:
                self.cursor.oldest_loaded = record.last_copied_at
            if self.cursor.newest_loaded is None or record.last_copied_at > self.cursor.newest_loaded:
                self.cursor.newest_loaded = record.last_copied_at

            self._republish()

        if decision.is_new:
            self._context.notifier.notify(item.title)
            logger.info("Captured new record %s", record.id)
        self.events.emit(EventKind.ITEM_ADDED, item=item)
        self.events.emit(EventKind.RESIZE_NEEDED)
        return item

    def _discard(self, record: Record) -> None:
        """Take back a row inserted by an add() that could not finish."""
        try:
            self._store.delete(record)
        except StoreUnavailable as e:
            logger.warning("Failed to roll back record %s, next load() shows it: %s", record.id, e)
        record.id = None

    def _evict_overflow(self, keep: Record) -> None:
        """Delete the oldest unpinned records until the store is within max_size."""
        while self._store.count(UNPINNED) > self.config.max_size:
            candidates = self._store.fetch(UNPINNED, Sort.LAST_COPIED_ASC, limit=2)
            victims = [r for r in candidates if r.id != keep.id]
            if not victims:
                return
            victim = victims[0]
            self._store.delete(victim)
            self.session_log.forget(victim)
            self.cursor.total_count -= 1

            index = self._index_of(victim)
            if index is not None:
                removed = self.all.pop(index)
                self.items = [item for item in self.items if item is not removed]
                if removed is self._selected_item:
                    self._selected_item = None
                self.cursor.offset -= 1
            logger.info("Evicted record %s (history limit %d)", victim.id, self.config.max_size)

    def _in_loaded_range(self, record: Record) -> bool:
        """True if an unloaded record falls within the pages already fetched (pruned)."""
        oldest = self.cursor.oldest_loaded
        return oldest is not None and record.last_copied_at >= oldest

    def _decorate(self, record: Record) -> HistoryItemDecorator:
        return HistoryItemDecorator(record, show_special_symbols=self.config.show_special_symbols)

    def _within_fetched_pages(self, record: Record) -> bool:
        """True if an unpinned record belongs among the pages already fetched."""
        if self.cursor.oldest_loaded is None or not self.cursor.has_more_items:
            return True
        return self._in_loaded_range(record)

    def _index_of(self, record: Record) -> Optional[int]:
        for index, item in enumerate(self.all):
            if item.item is record or (record.id is not None and item.item.id == record.id):
                return index
        return None

    # -------------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------------

    def delete(self, item: Optional[HistoryItemDecorator]) -> None:
        """Delete one record from the store and the working set.

        Raises:
            StoreUnavailable: If the store delete fails
        """
        if item is None:
            return
        with self._lock:
            existed = self._store.delete(item.item)
            if existed:
                self.cursor.total_count -= 1
                if item.is_pinned:
                    self.cursor.pinned_count -= 1
            if item in self.all:
                self.all.remove(item)
                if item.is_unpinned and existed:
                    self.cursor.offset -= 1
            self.items = [i for i in self.items if i is not item]
            if item is self._selected_item:
                self._selected_item = None
            self.session_log.forget(item.item)
            assign_unpinned_shortcuts(self._shortcut_order(), self.config.paste_by_default)

        self.events.emit(EventKind.ITEM_DELETED, item=item)
        self.events.emit(EventKind.RESIZE_NEEDED)

    def clear(self) -> None:
        """Remove every unpinned record. Pinned records stay."""
        with self._lock:
            removed = [item for item in self.all if item.is_unpinned]
            self.all = [item for item in self.all if item.is_pinned]
            self.items = [item for item in self.items if item.is_pinned]
            if self._selected_item is not None and self._selected_item.is_unpinned:
                self._selected_item = None
            for item in removed:
                self.session_log.forget(item.item)
            try:
                self._store.delete_where(UNPINNED)
            except StoreUnavailable as e:
                # Stale rows reappear on the next load(); nothing else breaks
                logger.warning("Failed to delete unpinned records: %s", e)

            self.cursor = PaginationCursor(
                total_count=self.cursor.pinned_count,
                pinned_count=self.cursor.pinned_count,
                has_more_items=False,
            )
            self.state = HistoryState.EXHAUSTED
            logger.info("Cleared %d unpinned records", len(removed))

        self._after_clear(len(removed))

    def clear_all(self) -> None:
        """Remove every record, pinned or not."""
        with self._lock:
            count = len(self.all)
            self.all = []
            self.items = []
            self._selected_item = None
            self.session_log.clear()
            try:
                self._store.delete_where(ALL)
            except StoreUnavailable as e:
                logger.warning("Failed to delete records: %s", e)

            self.cursor = PaginationCursor(has_more_items=False)
            self.state = HistoryState.EXHAUSTED
            logger.info("Cleared all %d loaded records", count)

        self._after_clear(count)

    def _after_clear(self, count: int) -> None:
        self._context.clipboard.clear()
        self.events.emit(EventKind.CLOSE_REQUESTED)
        self.events.emit(EventKind.CLEARED, count=count)
        self.events.emit(EventKind.RESIZE_NEEDED)

    # -------------------------------------------------------------------------
    # Selection and pins
    # -------------------------------------------------------------------------

    def select(self, item: Optional[HistoryItemDecorator], modifiers: Iterable[str] = ()) -> None:
        """
        Copy (and maybe paste) an item, as the held modifiers ask.

        With no modifiers the configured defaults apply. Modifiers that map
        to no action leave everything untouched.
        """
        if item is None:
            return

        held = frozenset(m.lower() for m in modifiers) - IGNORED_MODIFIERS
        clipboard = self._context.clipboard

        if not held:
            self.events.emit(EventKind.CLOSE_REQUESTED)
            clipboard.copy(item.item, remove_formatting=self.config.remove_formatting_by_default)
            if self.config.paste_by_default:
                clipboard.paste()
        else:
            action = HistoryItemAction.from_modifiers(held, self.config.paste_by_default)
            if action is HistoryItemAction.UNKNOWN:
                return
            self.events.emit(EventKind.CLOSE_REQUESTED)
            if action is HistoryItemAction.COPY:
                clipboard.copy(item.item)
            elif action is HistoryItemAction.PASTE:
                clipboard.copy(item.item)
                clipboard.paste()
            else:
                clipboard.copy(item.item, remove_formatting=True)
                clipboard.paste()

        self.search_query = ""

    def toggle_pin(self, item: Optional[HistoryItemDecorator]) -> None:
        """
        Pin an unpinned item with the first free pin character, or unpin it.

        Raises:
            ValueError: If every pin character is already in use
            StoreUnavailable: If the store update fails
        """
        if item is None:
            return

        with self._lock:
            record = item.item
            pin = None if record.is_pinned else self._next_free_pin()
            self._store.update(record.copy(pin=pin))
            record.pin = pin
            keep_loaded = True
            if pin is None:
                self.cursor.pinned_count -= 1
                keep_loaded = self._within_fetched_pages(record)
                if keep_loaded:
                    self.cursor.offset += 1
                    if self.cursor.oldest_loaded is None:
                        self.cursor.oldest_loaded = record.last_copied_at
                else:
                    # Older than every fetched page: load_more() reaches it in order
                    self.cursor.has_more_items = True
                    if self.state is HistoryState.EXHAUSTED:
                        self.state = HistoryState.LOADED
            else:
                self.cursor.pinned_count += 1
                self.cursor.offset -= 1
            logger.debug("Record %s pin -> %r", record.id, record.pin)

            if item in self.all:
                self.all.remove(item)
            if keep_loaded:
                self.all.insert(self._sorter.insertion_index(self.all, record, key=_record), item)
            else:
                if item is self._selected_item:
                    item.is_selected = False
                    self._selected_item = None
                logger.debug("Record %s falls past the fetched pages, unloaded", record.id)
            item.shortcuts = (
                KeyShortcut.create(record.pin, self.config.paste_by_default) if record.pin else []
            )

            self._search_query = ""
            self._applied_query = ""
            self._debouncer.cancel()
            self._republish()

        self.events.emit(EventKind.ITEMS_CHANGED, item=item, count=len(self.all))
        self.events.emit(EventKind.RESIZE_NEEDED)

    def _next_free_pin(self) -> str:
        used = {record.pin for record in self._store.fetch(PINNED)}
        for pin in SUPPORTED_PINS:
            if pin not in used:
                return pin
        raise ValueError(f"All {len(SUPPORTED_PINS)} pins are in use")

    def item_for_shortcut(self, key: str, modifiers: Iterable[str]) -> Optional[HistoryItemDecorator]:
        """The displayed item a pressed shortcut refers to, if any."""
        held = frozenset(m.lower() for m in modifiers) - IGNORED_MODIFIERS
        if HistoryItemAction.from_modifiers(held, self.config.paste_by_default) is HistoryItemAction.UNKNOWN:
            return None
        with self._lock:
            for item in self.items:
                if item.has_shortcut(key, held):
                    return item
        return None

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    @property
    def search_query(self) -> str:
        return self._search_query

    @search_query.setter
    def search_query(self, query: str) -> None:
        """
        Filter the loaded set by ``query``.

        Non-empty queries apply after the debounce interval, and only the
        latest one does. An empty query cancels any pending pass and
        restores the full set immediately.
        """
        with self._lock:
            self._search_query = query
            if not query:
                self._debouncer.cancel()
                self._apply_search("", self._search.search("", self.all))
                applied = True
            else:
                applied = False

        if applied:
            self._emit_search_applied("")
        else:
            self._debouncer.call(lambda token: self._run_search_pass(query, token))

    def _run_search_pass(self, query: str, token: CancellationToken) -> None:
        with self._lock:
            if token.cancelled or query != self._search_query:
                return
            results = self._search.search(query, self.all)
            if token.cancelled:
                return
            self._apply_search(query, results)
        self._emit_search_applied(query)

    def _apply_search(self, query: str, results: list[SearchResult]) -> None:
        self._applied_query = query
        self._show(query, results)

        if self._selected_item is not None:
            self._selected_item.is_selected = False
        if query:
            self._selected_item = self.items[0] if self.items else None
        else:
            unpinned = self.unpinned_items
            self._selected_item = unpinned[0] if unpinned else None
        if self._selected_item is not None:
            self._selected_item.is_selected = True

    def _emit_search_applied(self, query: str) -> None:
        self.events.emit(EventKind.SEARCH_APPLIED, count=len(self.items), query=query)
        self.events.emit(EventKind.SELECTION_CHANGED, item=self._selected_item)
        self.events.emit(EventKind.RESIZE_NEEDED)

    # -------------------------------------------------------------------------
    # Republishing
    # -------------------------------------------------------------------------

    def _republish(self) -> None:
        """Recompute ``items`` and unpinned shortcuts after ``all`` changed.

        Filters by the last applied query; a query still in its debounce
        window is not shown early.
        """
        query = self._applied_query
        self._show(query, self._search.search(query, self.all))

    def _show(self, query: str, results: list[SearchResult]) -> None:
        matched = {id(result.object) for result in results}
        for item in self.all:
            item.is_visible = id(item) in matched
            item.highlights = []
        for result in results:
            result.object.highlight(query, result.ranges)
        self.items = [result.object for result in results]
        assign_unpinned_shortcuts(self._shortcut_order(), self.config.paste_by_default)

    def _shortcut_order(self) -> list[HistoryItemDecorator]:
        """Displayed items in order, then hidden ones (which get no shortcut)."""
        shown = {id(item) for item in self.items}
        return self.items + [item for item in self.all if id(item) not in shown]

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def apply_config(self, config: HistoryConfig) -> None:
        """
        Adopt changed settings, recomputing only what they affect.

        Raises:
            StoreUnavailable: If a reload is needed and fails
        """
        with self._lock:
            old = self.config
            self.config = config
            self._sorter.pin_to = config.pin_to
            self._search.mode = config.search_mode
            self._debouncer.delay = config.search_debounce

            if config.show_special_symbols != old.show_special_symbols:
                for item in self.all:
                    item.regenerate_title(config.show_special_symbols)

            if config.pin_to != old.pin_to or config.page_size != old.page_size:
                self.load()
            elif config.paste_by_default != old.paste_by_default:
                assign_pinned_shortcuts(self.all, config.paste_by_default)
                assign_unpinned_shortcuts(self._shortcut_order(), config.paste_by_default)

    def close(self) -> None:
        """Cancel pending work. The context owns and closes the store."""
        self._debouncer.cancel()
