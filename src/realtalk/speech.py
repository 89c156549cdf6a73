"""Text-to-speech output."""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from typing import Callable, Optional, Protocol

from .config import SpeechConfig
from .errors import SynthesisError

logger = logging.getLogger("realtalk")

# pyttsx3 speaks at roughly this many words per minute at rate 1.0.
BASE_WORDS_PER_MINUTE = 180


def clean_for_speech(text: str) -> str:
    """Strip markdown, code and URLs so only spoken text remains."""
    text = re.sub(r"```.*?```", "", text, flags=re.DOTALL)
    text = re.sub(r"`[^`]+`", "", text)
    text = re.sub(r"\*{1,2}([^*]+)\*{1,2}", r"\1", text)
    text = re.sub(r"^#+\s*", "", text, flags=re.MULTILINE)
    text = re.sub(r"https?://\S+", "", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


class SpeechSynthesizer(Protocol):
    def speak(
        self,
        text: str,
        on_start: Callable[[], None],
        on_end: Callable[[], None],
        on_error: Callable[[SynthesisError], None],
    ) -> None:
        ...

    def cancel(self) -> None:
        ...


class Pyttsx3Synthesizer:
    """Speaks one utterance at a time on a worker thread.

    Callbacks are delivered on the event loop that called ``speak``.
    ``on_end`` or ``on_error`` fires exactly once per utterance, including
    after ``cancel()``. A cancel that lands before the engine starts
    playing skips the utterance entirely.
    """

    def __init__(self, config: Optional[SpeechConfig] = None) -> None:
        self.config = config or SpeechConfig()
        self._lock = threading.Lock()
        self._engine = None
        self._cancelled: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def speaking(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def speak(self, text, on_start, on_end, on_error) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        spoken = clean_for_speech(text)
        cancelled = threading.Event()
        with self._lock:
            self._cancelled = cancelled
        previous = self._thread
        self._thread = threading.Thread(
            target=self._run,
            args=(loop, spoken, cancelled, previous, on_start, on_end, on_error),
            name="realtalk-tts",
            daemon=True,
        )
        self._thread.start()

    def _run(self, loop, text, cancelled, previous, on_start, on_end, on_error) -> None:
        finished = threading.Event()

        def _deliver(callback, *args) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(callback, *args)

        def _started(name) -> None:
            if not cancelled.is_set():
                _deliver(on_start)

        def _finished(name, completed) -> None:
            if not finished.is_set():
                finished.set()
                _deliver(on_end)

        # pyttsx3 hands out one engine per process; its run loop must be idle.
        if previous is not None:
            previous.join()

        engine = None
        try:
            if not cancelled.is_set():
                import pyttsx3

                engine = pyttsx3.init()
                engine.setProperty(
                    "rate", int(BASE_WORDS_PER_MINUTE * self.config.rate)
                )
                engine.setProperty("volume", self.config.volume)
                if self.config.voice:
                    engine.setProperty("voice", self.config.voice)
                engine.connect("started-utterance", _started)
                engine.connect("finished-utterance", _finished)
                # Queued under the lock: a later cancel() clears the queue.
                with self._lock:
                    if not cancelled.is_set():
                        engine.say(text)
                        self._engine = engine
                if self._engine is engine:
                    engine.runAndWait()
        except Exception as exc:  # pyttsx3 drivers raise assorted errors
            logger.warning("Speech synthesis failed: %s", exc)
            if not finished.is_set():
                finished.set()
                _deliver(on_error, SynthesisError(str(exc)))
            return
        finally:
            with self._lock:
                if engine is not None and self._engine is engine:
                    self._engine = None
        if not finished.is_set():
            finished.set()
            _deliver(on_end)

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled is not None:
                self._cancelled.set()
            engine = self._engine
        if engine is not None:
            logger.info("Cancelling speech")
            engine.stop()


class SilentSynthesizer:
    """Plays nothing and ends each utterance right away."""

    def speak(self, text, on_start, on_end, on_error) -> None:
        loop = asyncio.get_running_loop()
        loop.call_soon(on_start)
        loop.call_soon(on_end)

    def cancel(self) -> None:
        return None
