"""
Presentation lifecycle around a History.

The view owns the periodic refresh: while it is shown, the history is
reloaded every ``refresh_interval`` seconds so that records captured by
other processes appear. When hidden, timers stop and the working set is
trimmed back to the first page.
"""

import logging
import threading
from typing import Optional

from .errors import StoreUnavailable
from .history import History
from .protocol import SchedulerProtocol
from .scheduler import CancellationToken, RepeatingTimer

logger = logging.getLogger(__name__)


class HistoryView:
    """Shows and hides one History, driving its refresh timer."""

    def __init__(
        self,
        history: History,
        scheduler: SchedulerProtocol,
        refresh_interval: Optional[float] = None,
    ):
        self.history = history
        self.is_visible = False
        self.is_loading = False
        self._gate = threading.Lock()
        interval = refresh_interval if refresh_interval is not None else history.config.refresh_interval
        self._timer = RepeatingTimer(scheduler, interval, self._refresh)

    @property
    def refresh_running(self) -> bool:
        return self._timer.is_running

    def appear(self) -> None:
        """Show the view: load newer records, select the top item, start refreshing."""
        self.is_visible = True
        self.history.reset_view()
        unpinned = self.history.unpinned_items
        pinned = self.history.pinned_items
        self.history.selected_item = (unpinned or pinned or [None])[0]
        self._timer.start()
        logger.debug("View shown, refresh every %.1fs", self._timer.interval)

    def disappear(self) -> None:
        """Hide the view and release everything past the first page."""
        self.is_visible = False
        self._timer.cancel()
        self.history.search_query = ""
        try:
            self.history.load()
        except StoreUnavailable as e:
            logger.warning("Failed to reload history on hide: %s", e)
        logger.debug("View hidden")

    def load_more(self) -> bool:
        with self._gate:
            if self.is_loading:
                return False
            self.is_loading = True
        try:
            return self.history.load_more()
        finally:
            with self._gate:
                self.is_loading = False

    def _refresh(self, token: CancellationToken) -> None:
        if token.cancelled or not self.is_visible:
            return
        try:
            self.history.reset_view()
        except StoreUnavailable as e:
            logger.warning("Periodic refresh failed: %s", e)
