# promptedit/pipeline/retry.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from promptedit.pipeline.scheduler import Cancellable, Scheduler

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    default_delay_s: int = 60
    tick_s: float = 1.0


class RetryController:
    """
    Countdown for quota failures: Idle <-> Counting(seconds_remaining).

    start(n, token) counts down once per tick, calling on_tick(token, remaining) after every
    decrement. When remaining reaches 0 the countdown clears itself and on_elapsed(token)
    fires exactly once. cancel() drops the countdown; any timer callback already queued
    sees a stale epoch and does nothing.

    `token` is opaque here; the session passes its own epoch so it can reject a
    resubmission that outlived the request it belonged to.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        on_tick: Callable[[int, int], None],
        on_elapsed: Callable[[int], None],
        policy: RetryPolicy | None = None,
        lock: threading.RLock | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._on_tick = on_tick
        self._on_elapsed = on_elapsed
        self._policy = policy or RetryPolicy()
        self._lock = lock if lock is not None else threading.RLock()

        self._epoch = 0
        self._token: int | None = None
        self._remaining: int | None = None
        self._handle: Cancellable | None = None

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def active(self) -> bool:
        return self._remaining is not None

    @property
    def seconds_remaining(self) -> int | None:
        return self._remaining

    def start(self, seconds: int | None, token: int) -> int:
        """Begin counting. Non-positive or missing delays fall back to the policy default."""
        n = int(seconds) if seconds is not None and seconds > 0 else self._policy.default_delay_s
        with self._lock:
            self._clear()
            self._epoch += 1
            self._token = token
            self._remaining = n
            self._schedule(self._epoch)
        LOGGER.info("quota limit reached; retrying in %ds", n)
        return n

    def cancel(self) -> None:
        with self._lock:
            if self._remaining is not None:
                LOGGER.info("countdown cancelled at %ds", self._remaining)
            self._clear()
            self._epoch += 1

    def _clear(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._remaining = None
        self._token = None

    def _schedule(self, epoch: int) -> None:
        self._handle = self._scheduler.call_later(self._policy.tick_s, lambda: self._tick(epoch))

    def _tick(self, epoch: int) -> None:
        with self._lock:
            if epoch != self._epoch or self._remaining is None:
                return

            self._remaining = max(0, self._remaining - 1)
            token = self._token
            remaining = self._remaining
            assert token is not None
            self._on_tick(token, remaining)

            if remaining > 0:
                self._schedule(epoch)
                return

            self._handle = None
            self._remaining = None
            self._token = None
            self._epoch += 1

        # resubmission runs outside the lock; it suspends on the remote call
        self._on_elapsed(token)
