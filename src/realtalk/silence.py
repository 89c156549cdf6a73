"""End-of-utterance detection."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger("realtalk")

# asyncio may run a timer up to one clock tick early.
_TIMER_SLACK_S = 0.01


class SilenceDetector:
    """Debounced silence detection over a stream of level samples.

    Every sample below ``threshold`` arms a single timer for
    ``quiet_period_s`` unless one is already pending; any louder sample
    disarms it. When the timer fires and the input has been quiet for the
    whole period, ``on_silence`` is called once and the detector goes inert
    until the next ``begin()``.

    ``clock`` and ``schedule`` default to the running event loop's
    ``time`` and ``call_later``; tests swap in a fake clock.
    """

    def __init__(
        self,
        on_silence: Callable[[float], None],
        threshold: float = 10.0,
        quiet_period_s: float = 1.0,
        clock: Optional[Callable[[], float]] = None,
        schedule: Optional[Callable[[float, Callable[[], None]], Any]] = None,
    ) -> None:
        self.on_silence = on_silence
        self.threshold = threshold
        self.quiet_period_s = quiet_period_s
        self._clock = clock
        self._schedule = schedule
        self._timer = None
        self._last_speech = 0.0
        self.active = False

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def _now(self) -> float:
        if self._clock is None:
            return asyncio.get_running_loop().time()
        return self._clock()

    def _call_later(self, delay: float, callback: Callable[[], None]):
        if self._schedule is None:
            return asyncio.get_running_loop().call_later(delay, callback)
        return self._schedule(delay, callback)

    def begin(self) -> None:
        self.cancel()
        # Silence from the very first sample still counts from here.
        self._last_speech = self._now()
        self.active = True

    def observe(self, level: float) -> None:
        if not self.active:
            return
        if level < self.threshold:
            if self._timer is None:
                self._timer = self._call_later(self.quiet_period_s, self._expire)
            return
        self._last_speech = self._now()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _expire(self) -> None:
        self._timer = None
        if not self.active:
            return
        quiet_for = self._now() - self._last_speech
        if quiet_for + _TIMER_SLACK_S < self.quiet_period_s:
            return
        logger.debug("Silence for %.2fs, ending utterance", quiet_for)
        self.active = False
        self.on_silence(quiet_for)

    def cancel(self) -> None:
        self.active = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def monitor(self, sample: Callable[[], float], tick_s: float) -> None:
        """Feed ``sample()`` into the detector once per tick while active."""
        while self.active:
            self.observe(sample())
            await asyncio.sleep(tick_s)
