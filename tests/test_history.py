"""Tests for the history cache: capture, selection, pins and removal."""

import pytest

from clipstack.events import EventKind
from clipstack.errors import StoreUnavailable
from clipstack.record_store import ALL, PINNED, UNPINNED
from clipstack.shortcuts import COMMAND, CONTROL, OPTION, SHIFT, KeyShortcut
from clipstack.types import SUPPORTED_PINS
from tests.conftest import at, texts


def kinds(events):
    return [e.kind for e in events]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class TestLoad:

    def test_first_page_plus_all_pinned(self, make_history, store, seed, make_record):
        seed(5)
        store.insert(make_record("pin one", -10, pin="b"))
        store.insert(make_record("pin two", -20, pin="c"))

        history = make_history()
        history.load()

        assert texts(history.items) == ["pin one", "pin two", "item 4", "item 3", "item 2"]
        assert history.items == history.all
        assert history.cursor.total_count == 7
        assert history.cursor.pinned_count == 2
        assert history.cursor.offset == 3
        assert history.has_more_items
        assert history.state.value == "loaded"

    def test_small_history_is_exhausted_at_once(self, make_history, seed):
        seed(2)
        history = make_history()
        history.load()

        assert not history.has_more_items
        assert history.state.value == "exhausted"

    def test_load_emits_events(self, history, events):
        history.load()
        assert kinds(events) == [EventKind.LOADED, EventKind.RESIZE_NEEDED]


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

class TestAdd:

    def test_adding_same_content_twice_keeps_one_record(self, history, store, make_record):
        history.add(make_record("hello", 0))
        item = history.add(make_record("hello", 5))

        assert store.count(ALL) == 1
        assert item.item.number_of_copies == 2
        assert texts(history.items) == ["hello"]

    def test_repeated_adds_count_every_copy(self, history, store, make_record):
        for i in range(4):
            history.add(make_record("again", i))

        [record] = store.fetch(ALL)
        assert record.number_of_copies == 4
        assert len(history.all) == 1

    def test_creation_time_survives_merges(self, history, store, make_record):
        history.add(make_record("hello", 0))
        history.add(make_record("hello", 30))

        [record] = store.fetch(ALL)
        assert record.first_copied_at == at(0)
        assert record.last_copied_at == at(30)

    def test_new_record_goes_to_top_of_unpinned(self, history, store, make_record):
        store.insert(make_record("pinned", 0, pin="b"))
        history.load()
        history.add(make_record("older", 1))
        history.add(make_record("newer", 2))

        assert texts(history.items) == ["pinned", "newer", "older"]

    def test_repeat_moves_to_front(self, history, make_record):
        history.add(make_record("a", 0))
        history.add(make_record("b", 1))
        history.add(make_record("a", 2))

        assert texts(history.items) == ["a", "b"]

    def test_pinned_repeat_keeps_its_slot(self, make_history, store, make_record):
        store.insert(make_record("first pin", 10, pin="b"))
        store.insert(make_record("second pin", 5, pin="c"))
        history = make_history()
        history.load()

        item = history.add(make_record("second pin", 20))

        assert texts(history.items) == ["first pin", "second pin"]
        assert item.item.pin == "c"
        assert item.has_shortcut("c", frozenset({COMMAND}))
        assert store.count(PINNED) == 2

    def test_new_content_notifies(self, history, notifier, make_record):
        history.add(make_record("hello", 0))
        history.add(make_record("hello", 1))

        assert notifier.bodies == ["hello"]

    def test_add_emits_events(self, history, events, make_record):
        item = history.add(make_record("hello", 0))

        assert kinds(events) == [EventKind.ITEM_ADDED, EventKind.RESIZE_NEEDED]
        assert events[0].item is item

    def test_richer_stored_payload_survives_plain_repeat(self, history, store):
        from clipstack.types import HTML, Record, RecordContent
        rich = Record(
            contents=[RecordContent.text("hello"), RecordContent.text("<b>hello</b>", HTML)],
            first_copied_at=at(0),
            last_copied_at=at(0),
        )
        history.add(rich)
        history.add(Record.from_text("hello", first_copied_at=at(1), last_copied_at=at(1)))

        [record] = store.fetch(ALL)
        assert {c.type for c in record.contents} == {"text/plain", HTML}


class TestModificationChain:

    def test_in_session_edits_collapse_into_one_record(self, history, store, make_record):
        history.add(make_record("abc", 0), change_token=1)
        history.add(make_record("abcd", 1, modified=1), change_token=2)
        item = history.add(make_record("abcde", 2, modified=2), change_token=3)

        [record] = store.fetch(ALL)
        assert record.text == "abcde"
        assert record.number_of_copies == 3
        assert record.first_copied_at == at(0)
        assert texts(history.items) == ["abcde"]
        assert item.item.id == record.id

    def test_modification_of_unknown_token_is_new(self, history, store, make_record):
        history.add(make_record("abc", 0), change_token=1)
        history.add(make_record("xyz", 1, modified=42), change_token=2)

        assert store.count(ALL) == 2


class TestEviction:

    def test_unpinned_records_stay_within_max_size(self, make_history, store, make_record):
        history = make_history(max_size=3)
        history.load()
        for i in range(5):
            history.add(make_record(f"clip {i}", i))

        assert store.count(UNPINNED) == 3
        assert [r.text for r in store.fetch(UNPINNED)] == ["clip 4", "clip 3", "clip 2"]
        assert texts(history.items) == ["clip 4", "clip 3", "clip 2"]
        assert history.cursor.total_count == 3

    def test_pinned_records_are_never_evicted(self, make_history, store, make_record):
        store.insert(make_record("keep me", -100, pin="b"))
        history = make_history(max_size=2)
        history.load()
        for i in range(4):
            history.add(make_record(f"clip {i}", i))

        assert store.count(PINNED) == 1
        assert store.count(UNPINNED) == 2
        assert "keep me" in texts(history.items)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

class TestSelect:

    def test_plain_select_copies(self, history, clipboard, events, make_record):
        item = history.add(make_record("hello", 0))
        events.clear()

        history.select(item)

        assert clipboard.copies == [(item.item, False)]
        assert clipboard.pastes == 0
        assert EventKind.CLOSE_REQUESTED in kinds(events)

    def test_plain_select_pastes_when_configured(self, make_history, clipboard, make_record):
        history = make_history(paste_by_default=True, remove_formatting_by_default=True)
        history.load()
        item = history.add(make_record("hello", 0))

        history.select(item)

        assert clipboard.copies == [(item.item, True)]
        assert clipboard.pastes == 1

    @pytest.mark.parametrize("modifiers, remove_formatting, pastes", [
        ({COMMAND}, False, 0),
        ({COMMAND, OPTION}, False, 1),
        ({COMMAND, OPTION, SHIFT}, True, 1),
        ({COMMAND, "capslock"}, False, 0),
    ])
    def test_modifiers_pick_the_action(self, history, clipboard, make_record,
                                       modifiers, remove_formatting, pastes):
        item = history.add(make_record("hello", 0))

        history.select(item, modifiers)

        assert clipboard.copies == [(item.item, remove_formatting)]
        assert clipboard.pastes == pastes

    def test_unknown_modifiers_do_nothing(self, history, clipboard, events, make_record):
        item = history.add(make_record("hello", 0))
        events.clear()

        history.select(item, {CONTROL})

        assert clipboard.copies == []
        assert events == []

    def test_select_clears_search(self, history, scheduler, make_record):
        item = history.add(make_record("hello", 0))
        history.add(make_record("other", 1))
        history.search_query = "hell"
        scheduler.advance(1)
        assert texts(history.items) == ["hello"]

        history.select(item)

        assert history.search_query == ""
        assert len(history.items) == 2

    def test_selected_item_flags(self, history, make_record):
        first = history.add(make_record("a", 0))
        second = history.add(make_record("b", 1))

        history.selected_item = first
        history.selected_item = second

        assert second.is_selected
        assert not first.is_selected


# ---------------------------------------------------------------------------
# Pins
# ---------------------------------------------------------------------------

class TestTogglePin:

    def test_pin_uses_first_free_character(self, history, store, make_record):
        a = history.add(make_record("a", 0))
        b = history.add(make_record("b", 1))

        history.toggle_pin(a)
        history.toggle_pin(b)

        assert a.item.pin == SUPPORTED_PINS[0]
        assert b.item.pin == SUPPORTED_PINS[1]
        assert store.count(PINNED) == 2

    def test_pinned_item_moves_to_pinned_block(self, history, make_record):
        history.add(make_record("old", 0))
        history.add(make_record("new", 1))
        old = history.items[1]

        history.toggle_pin(old)
        assert texts(history.items) == ["old", "new"]
        assert old.has_shortcut(old.item.pin, frozenset({COMMAND}))

        history.toggle_pin(old)
        assert old.item.pin is None
        assert texts(history.items) == ["new", "old"]

    def test_pin_cursor_bookkeeping(self, history, make_record):
        item = history.add(make_record("a", 0))
        offset = history.cursor.offset

        history.toggle_pin(item)
        assert history.cursor.pinned_count == 1
        assert history.cursor.offset == offset - 1

        history.toggle_pin(item)
        assert history.cursor.pinned_count == 0
        assert history.cursor.offset == offset

    def test_no_free_pins(self, make_history, store, make_record):
        for i, pin in enumerate(SUPPORTED_PINS):
            store.insert(make_record(f"pinned {i}", i, pin=pin))
        history = make_history()
        history.load()
        item = history.add(make_record("one more", 100))

        with pytest.raises(ValueError):
            history.toggle_pin(item)
        assert item.item.pin is None


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------

class TestRemoval:

    def test_delete_removes_from_store_and_view(self, history, store, events, make_record):
        item = history.add(make_record("bye", 0))
        history.add(make_record("stay", 1))

        history.delete(item)

        assert texts(history.items) == ["stay"]
        assert store.count(ALL) == 1
        assert EventKind.ITEM_DELETED in kinds(events)

    def test_delete_twice_is_harmless(self, history, store, make_record):
        item = history.add(make_record("bye", 0))

        history.delete(item)
        history.delete(item)
        history.delete(None)

        assert store.count(ALL) == 0
        assert history.cursor.total_count == 0

    def test_clear_keeps_pinned(self, history, store, clipboard, events, make_record):
        pinned = history.add(make_record("pinned", 0))
        history.toggle_pin(pinned)
        history.add(make_record("a", 1))
        history.add(make_record("b", 2))

        history.clear()

        assert texts(history.items) == ["pinned"]
        assert store.count(UNPINNED) == 0
        assert store.count(PINNED) == 1
        assert clipboard.clears == 1
        assert EventKind.CLOSE_REQUESTED in kinds(events)
        assert EventKind.CLEARED in kinds(events)
        assert not history.has_more_items

    def test_clear_all(self, history, store, make_record):
        pinned = history.add(make_record("pinned", 0))
        history.toggle_pin(pinned)
        history.add(make_record("a", 1))

        history.clear_all()

        assert history.items == []
        assert store.count(ALL) == 0
        assert len(history.session_log) == 0

    def test_clear_survives_store_failure(self, make_history, flaky_store, make_record):
        history = make_history(store_override=flaky_store)
        history.load()
        history.add(make_record("a", 0))
        flaky_store.fail.add("delete_where")

        history.clear()

        assert history.items == []


# ---------------------------------------------------------------------------
# Shortcuts
# ---------------------------------------------------------------------------

class TestShortcuts:

    def test_at_most_ten_unpinned_shortcuts(self, make_history, make_record):
        history = make_history(page_size=20, max_size=50)
        history.load()
        for i in range(12):
            history.add(make_record(f"clip {i}", i))

        keys = [item.shortcuts[0].key for item in history.unpinned_items if item.shortcuts]
        assert keys == [str(n) for n in range(1, 11)]
        assert history.unpinned_items[10].shortcuts == []

    def test_item_for_shortcut(self, history, make_record):
        history.add(make_record("older", 0))
        newest = history.add(make_record("newest", 1))

        assert history.item_for_shortcut("1", {COMMAND}) is newest
        assert history.item_for_shortcut("1", {COMMAND, OPTION}) is newest
        assert history.item_for_shortcut("1", {CONTROL}) is None
        assert history.item_for_shortcut("9", {COMMAND}) is None

    def test_pinned_items_use_pin_character(self, history, make_record):
        item = history.add(make_record("a", 0))
        history.toggle_pin(item)

        assert KeyShortcut(item.item.pin, frozenset({COMMAND})) in item.shortcuts
        assert history.item_for_shortcut(item.item.pin, {COMMAND}) is item


# ---------------------------------------------------------------------------
# Configuration changes
# ---------------------------------------------------------------------------

class TestApplyConfig:

    def test_pin_position_change_reloads(self, history, make_record):
        item = history.add(make_record("pinned", 0))
        history.toggle_pin(item)
        history.add(make_record("plain", 1))

        history.apply_config(history.config.with_changes(pin_to="bottom"))

        assert texts(history.items) == ["plain", "pinned"]

    def test_paste_by_default_swaps_chords(self, history, make_record):
        item = history.add(make_record("a", 0))
        assert item.has_shortcut("1", frozenset({COMMAND}))

        history.apply_config(history.config.with_changes(paste_by_default=True))

        copy_chord = frozenset({COMMAND, OPTION})
        assert KeyShortcut("1", copy_chord) == item.shortcuts[0]

    def test_special_symbols_regenerate_titles(self, make_history, make_record):
        history = make_history(show_special_symbols=False)
        history.load()
        item = history.add(make_record("  spaced\tout", 0))
        assert item.title == "spaced\tout"

        history.apply_config(history.config.with_changes(show_special_symbols=True))

        assert item.title == "··spaced⇥out"

    def test_new_titles_follow_special_symbols(self, history, make_record):
        item = history.add(make_record("  two\nlines ", 0))

        assert item.title == "··two⏎lines·"
        assert item.item.title == "··two⏎lines·"

    def test_loaded_titles_follow_special_symbols(self, make_history, store, make_record):
        store.insert(make_record(" tabbed\t", 0))
        history = make_history()
        history.load()

        assert history.items[0].title == "·tabbed⇥"

    def test_search_mode_switch(self, history, scheduler, make_record):
        history.add(make_record("hello world", 0))
        history.apply_config(history.config.with_changes(search_mode="fuzzy"))

        history.search_query = "helloo"
        scheduler.advance(1)

        assert texts(history.items) == ["hello world"]


class TestStoreFailures:

    def test_add_propagates_store_failure(self, make_history, flaky_store, make_record):
        history = make_history(store_override=flaky_store)
        history.load()
        flaky_store.fail.add("insert")

        with pytest.raises(StoreUnavailable):
            history.add(make_record("x", 0))
        assert history.items == []

    def test_toggle_pin_failure_leaves_item_unpinned(self, make_history, flaky_store, make_record):
        history = make_history(store_override=flaky_store)
        history.load()
        item = history.add(make_record("x", 0))
        offset = history.cursor.offset
        flaky_store.fail.add("update")

        with pytest.raises(StoreUnavailable):
            history.toggle_pin(item)

        assert item.item.pin is None
        assert history.cursor.offset == offset
        assert history.cursor.pinned_count == 0
        assert flaky_store.get(item.item.id).pin is None

    def test_failed_lookup_takes_back_inserted_row(self, make_history, flaky_store, store, make_record):
        history = make_history(store_override=flaky_store)
        history.add(make_record("kept", 0))
        history.load()
        total = history.cursor.total_count
        flaky_store.fail.add("fetch")

        record = make_record("lost", 1)
        with pytest.raises(StoreUnavailable):
            history.add(record)

        assert record.id is None
        assert store.count() == total == 1
        assert texts(history.items) == ["kept"]
