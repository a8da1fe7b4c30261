"""
Shared pytest fixtures for clipstack tests.

Provides a temporary SQLite store, a manually driven scheduler, recording
clipboard/notifier collaborators and a record factory with explicit
timestamps, so that ordering and timing are deterministic.
"""

from datetime import datetime, timedelta, timezone

import pytest

from clipstack.backend import create_context
from clipstack.config import HistoryConfig
from clipstack.errors import StoreUnavailable
from clipstack.history import History
from clipstack.record_store import RecordStore
from clipstack.scheduler import ManualScheduler
from clipstack.types import Record

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """A fixed point in time, ``seconds`` after BASE_TIME."""
    return BASE_TIME + timedelta(seconds=seconds)


class RecordingClipboard:
    """Clipboard collaborator that remembers what it was asked to do."""

    def __init__(self):
        self.copies: list[tuple[Record, bool]] = []
        self.pastes = 0
        self.clears = 0

    def copy(self, record: Record, remove_formatting: bool = False) -> None:
        self.copies.append((record, remove_formatting))

    def paste(self) -> None:
        self.pastes += 1

    def clear(self) -> None:
        self.clears += 1


class RecordingNotifier:
    def __init__(self):
        self.bodies: list[str] = []

    def notify(self, body: str) -> None:
        self.bodies.append(body)


class FlakyStore:
    """Record store wrapper that raises StoreUnavailable on demand."""

    def __init__(self, real: RecordStore):
        self._real = real
        self.fail = set()
        self.on_fetch = None

    def __getattr__(self, name):
        attr = getattr(self._real, name)
        if name in ("count", "fetch", "insert", "update", "delete", "delete_where"):
            def wrapper(*args, **kwargs):
                if name in self.fail:
                    raise StoreUnavailable(f"simulated {name} failure")
                if name == "fetch" and self.on_fetch is not None:
                    self.on_fetch()
                return attr(*args, **kwargs)
            return wrapper
        return attr


@pytest.fixture
def store(tmp_path):
    s = RecordStore(tmp_path / "history.db")
    yield s
    s.close()


@pytest.fixture
def flaky_store(store):
    return FlakyStore(store)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def clipboard():
    return RecordingClipboard()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config(tmp_path):
    return HistoryConfig(path=tmp_path, page_size=3, max_size=10)


@pytest.fixture
def make_record():
    """Factory: make_record("text", seconds, **fields) -> unsaved Record."""
    def factory(text: str, seconds: float = 0, **kwargs) -> Record:
        kwargs.setdefault("first_copied_at", at(seconds))
        kwargs.setdefault("last_copied_at", at(seconds))
        return Record.from_text(text, **kwargs)
    return factory


@pytest.fixture
def seed(store, make_record):
    """Insert records straight into the store: seed(n, start=0, same_time=False)."""
    def factory(count: int, start: float = 0, prefix: str = "item", same_time: bool = False) -> list[Record]:
        records = []
        for i in range(count):
            seconds = start if same_time else start + i
            records.append(store.insert(make_record(f"{prefix} {i}", seconds)))
        return records
    return factory


@pytest.fixture
def make_history(config, store, scheduler, clipboard, notifier):
    """Factory: make_history(store=None, **config_changes) -> unloaded History."""
    def factory(store_override=None, **changes) -> History:
        cfg = config.with_changes(**changes) if changes else config
        context = create_context(
            cfg,
            store=store_override or store,
            scheduler=scheduler,
            clipboard=clipboard,
            notifier=notifier,
            ops_log=False,
        )
        return History(context)
    return factory


@pytest.fixture
def history(make_history):
    h = make_history()
    h.load()
    return h


@pytest.fixture
def events(history):
    """Events emitted by the ``history`` fixture, in order."""
    received = []
    history.events.subscribe(received.append)
    return received


def texts(items) -> list[str]:
    return [item.item.text for item in items]
