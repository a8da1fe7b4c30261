"""
Explicit context for a history cache.

Everything the cache talks to (configuration, record store, scheduler,
clipboard, notifier, event bus) is bundled into one HistoryContext that
the application constructs at startup and closes at shutdown. Tests and
embedders inject their own collaborators; create_context() fills in the
local defaults.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .config import HistoryConfig, load_or_create_config
from .events import EventBus
from .protocol import ClipboardProtocol, NotifierProtocol, RecordStoreProtocol, SchedulerProtocol
from .types import Record

logger = logging.getLogger(__name__)


class NullClipboard:
    """No-op clipboard for headless use (CLI, tests)."""

    def copy(self, record: Record, remove_formatting: bool = False) -> None:
        pass

    def paste(self) -> None:
        pass

    def clear(self) -> None:
        pass


class NullNotifier:
    """No-op notifier."""

    def notify(self, body: str) -> None:
        pass


@dataclass
class HistoryContext:
    """Collaborators shared by one history cache."""
    config: HistoryConfig
    store: RecordStoreProtocol
    scheduler: SchedulerProtocol
    clipboard: ClipboardProtocol = field(default_factory=NullClipboard)
    notifier: NotifierProtocol = field(default_factory=NullNotifier)
    events: EventBus = field(default_factory=EventBus)
    ops_log_handler: Optional[logging.Handler] = None

    def close(self) -> None:
        """Release the store and detach the operations log."""
        self.store.close()
        if self.ops_log_handler is not None:
            logging.getLogger("clipstack").removeHandler(self.ops_log_handler)
            self.ops_log_handler.close()
            self.ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def create_context(
    config: Optional[HistoryConfig] = None,
    *,
    store: Optional[RecordStoreProtocol] = None,
    scheduler: Optional[SchedulerProtocol] = None,
    clipboard: Optional[ClipboardProtocol] = None,
    notifier: Optional[NotifierProtocol] = None,
    ops_log: bool = True,
) -> HistoryContext:
    """
    Build a HistoryContext, creating local defaults for anything not given.

    The default store is a SQLite RecordStore at ``config.db_path`` and the
    default scheduler runs timers on threads.
    """
    if config is None:
        config = load_or_create_config()

    if store is None:
        from .record_store import RecordStore
        store = RecordStore(config.db_path)

    if scheduler is None:
        from .scheduler import ThreadScheduler
        scheduler = ThreadScheduler()

    handler = None
    if ops_log:
        from .logging_config import configure_ops_log
        handler = configure_ops_log(config.path)

    logger.debug("Created history context at %s", config.path)
    return HistoryContext(
        config=config,
        store=store,
        scheduler=scheduler,
        clipboard=clipboard or NullClipboard(),
        notifier=notifier or NullNotifier(),
        ops_log_handler=handler,
    )
