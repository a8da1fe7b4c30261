"""
Cancellable scheduled work for the history cache.

Debounced search passes and the periodic "check for newer items" refresh
are both expressed as scheduled tasks carrying a cancellation token.
Cancellation is cooperative: a task that has already started checks its
token before applying results and drops them silently when cancelled.

ThreadScheduler runs tasks on threading.Timer threads. ManualScheduler
runs them only when its clock is advanced, which makes timing
deterministic for callers that drive it explicitly (tests, single-threaded
embedders).
"""

import heapq
import itertools
import logging
import threading
from typing import Callable, Optional

from .protocol import SchedulerProtocol

logger = logging.getLogger(__name__)


class CancellationToken:
    """Set once; checked by work that may outlive its request."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ScheduledTask:
    """A callback scheduled to run once, unless cancelled first."""

    def __init__(self, callback: Callable[[], None]):
        self.token = CancellationToken()
        self._callback = callback
        self._timer: Optional[threading.Timer] = None

    def run(self) -> None:
        if self.token.cancelled:
            return
        self._callback()

    def cancel(self) -> None:
        self.token.cancel()
        if self._timer is not None:
            self._timer.cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled


class ThreadScheduler:
    """Schedules callbacks on daemon timer threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        task = ScheduledTask(callback)
        timer = threading.Timer(delay, self._run, args=(task,))
        timer.daemon = True
        task._timer = timer
        timer.start()
        return task

    @staticmethod
    def _run(task: ScheduledTask) -> None:
        try:
            task.run()
        except Exception:
            # Timer threads have no caller to propagate to
            logger.exception("Scheduled task failed")


class ManualScheduler:
    """Scheduler driven by an explicit clock (seconds)."""

    def __init__(self):
        self.now = 0.0
        self._queue: list[tuple[float, int, ScheduledTask]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        task = ScheduledTask(callback)
        with self._lock:
            heapq.heappush(self._queue, (self.now + delay, next(self._seq), task))
        return task

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running every task that falls due.

        Tasks scheduled by running tasks also run if they fall due within
        the window. Returns the number of tasks run.
        """
        target = self.now + seconds
        ran = 0
        while True:
            with self._lock:
                if not self._queue or self._queue[0][0] > target:
                    break
                due, _, task = heapq.heappop(self._queue)
            self.now = max(self.now, due)
            if not task.cancelled:
                task.run()
                ran += 1
        self.now = target
        return ran

    @property
    def pending(self) -> int:
        """Number of scheduled tasks not yet run or cancelled."""
        with self._lock:
            return sum(1 for _, _, task in self._queue if not task.cancelled)


class Debouncer:
    """
    Runs only the last of a burst of calls, once ``delay`` passes quietly.

    Each call supersedes and cancels the pending one. The callback receives
    the task's cancellation token so it can drop its result if it is
    superseded while running.
    """

    def __init__(self, scheduler: SchedulerProtocol, delay: float):
        self.delay = delay
        self._scheduler = scheduler
        self._pending: Optional[ScheduledTask] = None
        self._lock = threading.Lock()

    def call(self, callback: Callable[[CancellationToken], None]) -> ScheduledTask:
        with self._lock:
            self._cancel_locked()
            holder: dict[str, ScheduledTask] = {}

            def fire():
                task = holder["task"]
                with self._lock:
                    if self._pending is not task:
                        return
                    self._pending = None
                callback(task.token)

            task = self._scheduler.call_later(self.delay, fire)
            holder["task"] = task
            self._pending = task
            return task

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()

    def _cancel_locked(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not None


class RepeatingTimer:
    """Calls ``callback(token)`` every ``interval`` seconds until cancelled."""

    def __init__(
        self,
        scheduler: SchedulerProtocol,
        interval: float,
        callback: Callable[[CancellationToken], None],
    ):
        self.interval = interval
        self._scheduler = scheduler
        self._callback = callback
        self._task: Optional[ScheduledTask] = None
        self._lock = threading.Lock()

    def start(self) -> None:
        """Start, or restart from a full interval if already running."""
        with self._lock:
            if self._task is not None:
                self._task.cancel()
            self._schedule_locked()

    def cancel(self) -> None:
        with self._lock:
            if self._task is not None:
                self._task.cancel()
                self._task = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._task is not None

    def _schedule_locked(self) -> None:
        holder: dict[str, ScheduledTask] = {}

        def tick():
            task = holder["task"]
            if task.cancelled:
                return
            self._callback(task.token)
            with self._lock:
                if self._task is task and not task.cancelled:
                    self._schedule_locked()

        task = self._scheduler.call_later(self.interval, tick)
        holder["task"] = task
        self._task = task
