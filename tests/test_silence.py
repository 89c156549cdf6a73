import asyncio

import pytest

from conftest import FakeScheduler
from realtalk.silence import SilenceDetector


def _detector(scheduler, fired, quiet=1.0):
    # Record when the stop happens, on the fake clock.
    return SilenceDetector(
        on_silence=lambda _quiet_for: fired.append(scheduler.now),
        threshold=10.0,
        quiet_period_s=quiet,
        clock=scheduler.clock,
        schedule=scheduler.call_later,
    )


def _feed(detector, scheduler, levels, step=0.1):
    for level in levels:
        detector.observe(level)
        scheduler.advance(step)


def test_stops_one_quiet_period_after_speech_ends():
    scheduler = FakeScheduler()
    fired = []
    detector = _detector(scheduler, fired)
    detector.begin()

    # Speech for 0.5s, then silence from T = 0.5.
    _feed(detector, scheduler, [60.0] * 5)
    _feed(detector, scheduler, [2.0] * 9)
    assert fired == []

    _feed(detector, scheduler, [2.0] * 2)
    assert fired == [pytest.approx(1.5)]
    assert not detector.active


def test_spike_resets_debounce():
    scheduler = FakeScheduler()
    fired = []
    detector = _detector(scheduler, fired)
    detector.begin()

    _feed(detector, scheduler, [2.0] * 8)
    assert detector.pending
    _feed(detector, scheduler, [40.0])
    assert not detector.pending

    # Silence resumes at T = 0.9; the stop moves out to 1.9.
    _feed(detector, scheduler, [2.0] * 9)
    assert fired == []
    _feed(detector, scheduler, [2.0] * 2)
    assert len(fired) == 1


def test_never_speaking_still_ends_session():
    scheduler = FakeScheduler()
    fired = []
    detector = _detector(scheduler, fired)
    detector.begin()

    detector.observe(0.0)
    scheduler.advance(0.75)
    assert fired == []
    scheduler.advance(0.25)
    assert fired == [pytest.approx(1.0)]


def test_only_one_timer_pending():
    scheduler = FakeScheduler()
    detector = _detector(scheduler, [])
    detector.begin()

    for _ in range(5):
        detector.observe(0.0)
    assert len(scheduler.timers) == 1


def test_inert_until_begin_and_after_cancel():
    scheduler = FakeScheduler()
    fired = []
    detector = _detector(scheduler, fired)

    detector.observe(0.0)
    assert scheduler.timers == []

    detector.begin()
    detector.observe(0.0)
    [timer] = scheduler.timers
    detector.cancel()
    assert timer.cancel_calls == 1

    scheduler.advance(2.0)
    assert fired == []


def test_stale_timer_is_a_no_op():
    scheduler = FakeScheduler()
    fired = []
    detector = _detector(scheduler, fired)
    detector.begin()
    detector.observe(0.0)
    [timer] = scheduler.timers

    # A timer that could not be cancelled fires right after fresh speech.
    scheduler.now = 0.9
    detector._last_speech = 0.8
    timer.fired = True
    timer.callback()

    assert fired == []
    assert detector.active
    assert not detector.pending


@pytest.mark.asyncio
async def test_event_loop_timer_and_monitor():
    fired = []
    detector = SilenceDetector(on_silence=fired.append, quiet_period_s=0.05)
    detector.begin()

    monitor = asyncio.ensure_future(detector.monitor(lambda: 0.0, 0.01))
    await asyncio.wait_for(monitor, timeout=2.0)

    assert len(fired) == 1
    assert fired[0] >= 0.04
