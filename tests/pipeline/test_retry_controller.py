from __future__ import annotations

from promptedit.pipeline.retry import RetryController, RetryPolicy
from promptedit.pipeline.scheduler import ManualScheduler


def _controller(sched: ManualScheduler):
    ticks: list[tuple[int, int]] = []
    fired: list[int] = []
    ctl = RetryController(
        sched,
        on_tick=lambda token, remaining: ticks.append((token, remaining)),
        on_elapsed=fired.append,
    )
    return ctl, ticks, fired


def test_counts_down_once_per_second_then_fires_once() -> None:
    sched = ManualScheduler()
    ctl, ticks, fired = _controller(sched)

    assert ctl.start(5, token=7) == 5
    assert ctl.active
    assert ctl.seconds_remaining == 5

    sched.advance(4)
    assert [r for _, r in ticks] == [4, 3, 2, 1]
    assert fired == []

    sched.advance(1)
    assert [r for _, r in ticks] == [4, 3, 2, 1, 0]
    assert fired == [7]
    assert not ctl.active
    assert ctl.seconds_remaining is None

    sched.advance(120)
    assert fired == [7]
    assert sched.pending == 0


def test_partial_seconds_do_not_tick() -> None:
    sched = ManualScheduler()
    ctl, ticks, _ = _controller(sched)
    ctl.start(3, token=1)

    sched.advance(0.5)
    assert ticks == []
    sched.advance(0.5)
    assert ticks == [(1, 2)]


def test_non_positive_delay_falls_back_to_default() -> None:
    sched = ManualScheduler()
    ctl, _, _ = _controller(sched)
    assert ctl.start(0, token=1) == 60
    ctl.cancel()
    assert ctl.start(None, token=1) == 60
    ctl.cancel()
    assert ctl.start(-3, token=1) == 60


def test_policy_default_is_configurable() -> None:
    sched = ManualScheduler()
    ctl = RetryController(
        sched,
        on_tick=lambda t, r: None,
        on_elapsed=lambda t: None,
        policy=RetryPolicy(default_delay_s=10),
    )
    assert ctl.start(0, token=0) == 10


def test_cancel_mid_countdown_prevents_resubmission() -> None:
    sched = ManualScheduler()
    ctl, ticks, fired = _controller(sched)
    ctl.start(5, token=1)

    sched.advance(3)
    ctl.cancel()
    sched.advance(10)

    assert len(ticks) == 3
    assert fired == []
    assert not ctl.active


def test_restart_invalidates_previous_countdown() -> None:
    sched = ManualScheduler()
    ctl, ticks, fired = _controller(sched)
    ctl.start(2, token=1)
    sched.advance(1)
    ctl.start(3, token=2)

    sched.advance(3)
    assert fired == [2]
    assert ticks == [(1, 1), (2, 2), (2, 1), (2, 0)]


def test_stale_callback_is_ignored_even_if_handle_not_cancelled() -> None:
    fired: list[int] = []
    captured = []

    class LeakyScheduler(ManualScheduler):
        def call_later(self, delay_s, fn):
            captured.append(fn)
            return super().call_later(delay_s, fn)

    sched = LeakyScheduler()
    ctl = RetryController(sched, on_tick=lambda t, r: None, on_elapsed=fired.append)
    ctl.start(1, token=1)
    ctl.cancel()

    # fire the orphaned callback by hand
    captured[0]()
    assert fired == []
    assert not ctl.active
