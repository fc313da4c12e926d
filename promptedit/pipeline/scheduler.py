# promptedit/pipeline/scheduler.py
from __future__ import annotations

import heapq
import itertools
import threading
from typing import Callable, Protocol


class Cancellable(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """One-shot delayed callbacks. Repetition is the caller's job."""

    def call_later(self, delay_s: float, fn: Callable[[], None]) -> Cancellable:
        ...


class ThreadingScheduler(Scheduler):
    """Real wall-clock timers; each callback runs on its own daemon thread."""

    def call_later(self, delay_s: float, fn: Callable[[], None]) -> Cancellable:
        t = threading.Timer(delay_s, fn)
        t.daemon = True
        t.start()
        return t


class _ManualHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(Scheduler):
    """
    Virtual clock for tests. Nothing fires until advance() moves time forward;
    callbacks then run synchronously on the caller's thread, in due-time order.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._seq = itertools.count()
        self._queue: list[tuple[float, int, _ManualHandle, Callable[[], None]]] = []

    def call_later(self, delay_s: float, fn: Callable[[], None]) -> Cancellable:
        handle = _ManualHandle()
        heapq.heappush(self._queue, (self.now + delay_s, next(self._seq), handle, fn))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h, _ in self._queue if not h.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, fn = heapq.heappop(self._queue)
            self.now = due
            if not handle.cancelled:
                fn()
        self.now = target
