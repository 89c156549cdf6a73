import asyncio
from typing import Callable, List, Optional

import pytest

from realtalk.config import Config
from realtalk.errors import SynthesisError
from realtalk.loop import VoiceLoop


class FakeTimer:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancel_calls = 0
        self.fired = False

    @property
    def cancelled(self) -> bool:
        return self.cancel_calls > 0

    def cancel(self) -> None:
        self.cancel_calls += 1


class FakeScheduler:
    """Manual clock plus ``call_later`` replacement."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: List[FakeTimer] = []

    def clock(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.now = timer.when
            timer.fired = True
            timer.callback()
        self.now = target


class FakeMicrophone:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.open_calls = 0
        self.pause_calls = 0
        self.close_calls = 0
        self.on_chunk = None
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self, on_chunk) -> None:
        if self.error is not None:
            raise self.error
        self.open_calls += 1
        self.on_chunk = on_chunk
        self._open = True

    def pause(self) -> None:
        self.pause_calls += 1

    def close(self) -> None:
        self.close_calls += 1
        self._open = False


class FakeTranscriber:
    def __init__(self, *results) -> None:
        self.results = list(results)
        self.blobs = []

    async def transcribe(self, blob) -> str:
        self.blobs.append(blob)
        await asyncio.sleep(0)
        result = self.results.pop(0) if self.results else "hello there"
        if isinstance(result, Exception):
            raise result
        return result


class FakeChat:
    """Each call consumes one script: a list of fragments or an exception.

    An exception inside the list is raised after the fragments before it.
    """

    def __init__(self, *scripts) -> None:
        self.scripts = list(scripts)
        self.calls = []

    async def stream_reply(self, messages):
        self.calls.append([dict(m) for m in messages])
        script = self.scripts.pop(0) if self.scripts else ["Hi", " there", "!"]
        if isinstance(script, Exception):
            raise script
        for fragment in script:
            await asyncio.sleep(0)
            if isinstance(fragment, Exception):
                raise fragment
            yield fragment


class FakeSynthesizer:
    def __init__(self) -> None:
        self.spoken: List[str] = []
        self.cancel_calls = 0
        self._callbacks = None

    def speak(self, text, on_start, on_end, on_error) -> None:
        self.spoken.append(text)
        self._callbacks = (on_start, on_end, on_error)

    def start(self) -> None:
        self._callbacks[0]()

    def finish(self) -> None:
        self._callbacks[1]()

    def fail(self, message: str = "audio device busy") -> None:
        self._callbacks[2](SynthesisError(message))

    def cancel(self) -> None:
        self.cancel_calls += 1


# 1000 16-bit samples; comfortably above the default size threshold once
# wrapped in a WAV container.
SPEECH_CHUNK = b"\x10\x00" * 1000


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def microphone():
    return FakeMicrophone()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def make_loop(scheduler, microphone, synthesizer):
    def _make(transcriber=None, chat=None, mic=None, config=None):
        cfg = config or Config()
        # Level sampling is driven by hand through the detector in tests.
        cfg.silence.tick_ms = 0
        return VoiceLoop(
            mic or microphone,
            transcriber or FakeTranscriber(),
            chat or FakeChat(),
            synthesizer,
            cfg,
            clock=scheduler.clock,
            schedule=scheduler.call_later,
        )

    return _make
