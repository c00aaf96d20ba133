"""Timers for the client event loop.

``SocketIOScheduler`` runs callbacks as Socket.IO background tasks inside an
app context. ``ManualScheduler`` keeps a virtual clock so tests decide when
time passes; callbacks run in due-time order when the clock is advanced.
"""

import heapq
import itertools
from typing import Callable


class TimerHandle:
    """Cancellable reference to a scheduled callback."""

    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class PeriodicHandle(TimerHandle):
    """Handle for a repeating timer; ``cancel`` stops all future ticks."""

    def __init__(self, scheduler, interval: float, fn: Callable, args: tuple):
        super().__init__()
        self._scheduler = scheduler
        self._interval = interval
        self._fn = fn
        self._args = args
        self._next = None

    def _arm(self) -> None:
        if not self.cancelled:
            self._next = self._scheduler.call_later(self._interval, self._fire)

    def _fire(self) -> None:
        if self.cancelled:
            return
        # Re-arm first so the callback may cancel the timer it runs on
        self._arm()
        self._fn(*self._args)

    def cancel(self) -> None:
        super().cancel()
        if self._next is not None:
            self._next.cancel()


class _BaseScheduler:
    def call_later(self, delay: float, fn: Callable, *args) -> TimerHandle:
        raise NotImplementedError

    def call_every(self, interval: float, fn: Callable, *args) -> PeriodicHandle:
        handle = PeriodicHandle(self, interval, fn, args)
        handle._arm()
        return handle


class SocketIOScheduler(_BaseScheduler):
    def __init__(self, socketio, app):
        self._socketio = socketio
        self._app = app

    def call_later(self, delay: float, fn: Callable, *args) -> TimerHandle:
        handle = TimerHandle()

        def _worker():
            if delay > 0:
                self._socketio.sleep(delay)
            if handle.cancelled:
                return
            with self._app.app_context():
                try:
                    fn(*args)
                except Exception:
                    self._app.logger.exception(f"[task-error] callback={getattr(fn, '__name__', fn)}")

        self._socketio.start_background_task(_worker)
        return handle


class ManualScheduler(_BaseScheduler):
    def __init__(self):
        self.now = 0.0
        self._queue = []
        self._seq = itertools.count()

    def call_later(self, delay: float, fn: Callable, *args) -> TimerHandle:
        handle = TimerHandle()
        heapq.heappush(self._queue, (self.now + max(0.0, delay), next(self._seq), handle, fn, args))
        return handle

    def advance(self, seconds: float = 0.0) -> None:
        """Move the clock forward, running every callback that falls due."""
        deadline = self.now + seconds
        while self._queue and self._queue[0][0] <= deadline:
            due, _, handle, fn, args = heapq.heappop(self._queue)
            self.now = max(self.now, due)
            if not handle.cancelled:
                fn(*args)
        self.now = deadline

    @property
    def pending(self) -> int:
        return sum(1 for item in self._queue if not item[2].cancelled)
