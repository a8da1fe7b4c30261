"""Tests for the presentation lifecycle: show, hide and periodic refresh."""

import pytest

from clipstack.view import HistoryView
from tests.conftest import texts


@pytest.fixture
def view(history, scheduler):
    return HistoryView(history, scheduler, refresh_interval=30)


class TestAppear:

    def test_selects_first_unpinned(self, view, history, make_record):
        pinned = history.add(make_record("pinned", 0))
        history.toggle_pin(pinned)
        history.add(make_record("plain", 1))

        view.appear()

        assert history.selected_item.item.text == "plain"
        assert history.selected_item.is_selected

    def test_falls_back_to_pinned(self, view, history, make_record):
        item = history.add(make_record("pinned", 0))
        history.toggle_pin(item)

        view.appear()

        assert history.selected_item.item.text == "pinned"

    def test_picks_up_external_copies(self, view, history, store, make_record):
        store.insert(make_record("from elsewhere", 5))

        view.appear()

        assert texts(history.items) == ["from elsewhere"]

    def test_starts_refresh(self, view):
        view.appear()
        assert view.is_visible
        assert view.refresh_running


class TestRefresh:

    def test_refresh_reloads_while_visible(self, view, history, store, scheduler, make_record):
        view.appear()
        store.insert(make_record("late arrival", 10))
        assert texts(history.items) == []

        scheduler.advance(30)

        assert texts(history.items) == ["late arrival"]

    def test_refresh_keeps_active_filter(self, view, history, store, scheduler, make_record):
        history.add(make_record("apple", 0))
        history.add(make_record("banana", 1))
        view.appear()
        history.search_query = "apple"
        scheduler.advance(1)

        store.insert(make_record("apple two", 10))
        scheduler.advance(30)

        assert texts(history.items) == ["apple"]

    def test_no_refresh_while_hidden(self, view, history, store, scheduler, make_record):
        view.appear()
        view.disappear()
        store.insert(make_record("while hidden", 10))

        scheduler.advance(120)

        assert not view.refresh_running
        assert texts(history.items) == []


class TestDisappear:

    def test_cancels_pending_search(self, view, history, scheduler, make_record):
        history.add(make_record("apple", 0))
        history.add(make_record("banana", 1))
        view.appear()

        history.search_query = "apple"
        view.disappear()
        scheduler.advance(1)

        assert len(history.items) == 2
        assert scheduler.pending == 0

    def test_trims_to_first_page(self, view, history, seed):
        seed(9)
        history.load()
        view.appear()
        view.load_more()
        view.load_more()
        assert len(history.items) == 9

        view.disappear()

        assert len(history.items) == 3
        assert history.has_more_items


class TestLoadMoreGate:

    def test_gate_blocks_while_loading(self, view, history, seed):
        seed(9)
        view.appear()
        view.is_loading = True

        assert view.load_more() is False
        assert len(history.items) == 3

        view.is_loading = False
        assert view.load_more() is True
        assert not view.is_loading
