"""Continuous voice conversation loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional, Set

from .config import Config
from .chat import ChatService
from .errors import (
    ChatServiceError,
    DeviceError,
    MicrophonePermissionError,
    SynthesisError,
    TranscriptionError,
)
from .models import (
    AudioBlob,
    ChatFailed,
    ChunkReceived,
    Conversation,
    LoopState,
    RecordingFinished,
    Role,
    SilenceDetected,
    SpeechEnded,
    SpeechStarted,
    StateChanged,
    StreamEnded,
    StreamFragment,
    TranscriptFailed,
    TranscriptReady,
)
from .recorder import Microphone, RecordingSession
from .speech import SpeechSynthesizer
from .transcriber import Transcriber

logger = logging.getLogger("realtalk")

Listener = Callable[[Any], None]


class VoiceLoop:
    """Turn-taking between the user's microphone and the assistant.

    Idle -> Listening -> Transcribing -> Submitting -> Speaking, then back
    to Listening in continuous mode or Idle otherwise. Typed text goes
    straight from Idle to Submitting.

    All methods run on the event loop thread. Device and synthesizer
    callbacks are marshalled onto it before they reach the loop, so state
    only ever changes here and no locking is needed. The guards on each
    operation keep at most one recording, one transcription and one chat
    request in flight.
    """

    def __init__(
        self,
        microphone: Microphone,
        transcriber: Transcriber,
        chat: ChatService,
        synthesizer: SpeechSynthesizer,
        config: Optional[Config] = None,
        clock: Optional[Callable[[], float]] = None,
        schedule: Optional[Callable[[float, Callable[[], None]], Any]] = None,
    ) -> None:
        self.config = config or Config()
        self.transcriber = transcriber
        self.chat = chat
        self.synthesizer = synthesizer
        self.recorder = RecordingSession(
            microphone,
            audio=self.config.audio,
            silence=self.config.silence,
            on_silence=self._silence_detected,
            on_chunk=self._chunk_received,
            clock=clock,
            schedule=schedule,
        )
        self.min_blob_bytes = self.config.audio.min_blob_bytes
        self.continuous = False
        self.state = LoopState.IDLE
        self.conversation = Conversation()
        self.input_text = ""
        self.error: Optional[str] = None
        self.is_loading = False
        self._listeners: List[Listener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._utterance = 0
        self._closed = False

    # -- view state ---------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def can_record(self) -> bool:
        return (
            not self._closed
            and not self.is_loading
            and self.state in (LoopState.IDLE, LoopState.LISTENING)
        )

    @property
    def can_submit(self) -> bool:
        return self.can_type and bool(self.input_text.strip())

    @property
    def can_type(self) -> bool:
        return not self._closed and not self.is_loading and self.state is LoopState.IDLE

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed on %s", type(event).__name__)

    def _set_state(self, state: LoopState) -> None:
        if state is self.state:
            return
        previous, self.state = self.state, state
        logger.debug("State %s -> %s", previous.value, state.value)
        self._emit(StateChanged(previous, state, self.continuous))

    # -- user actions ---------------------------------------------------------

    def start_listening(self) -> bool:
        if self._closed or self.state is not LoopState.IDLE or self.is_loading:
            logger.info("Ignoring start_listening while %s", self.state.value)
            return False
        self.error = None
        return self._open_recording()

    def stop_listening(self) -> bool:
        if self.state is not LoopState.LISTENING:
            return False
        self._finish_recording()
        return True

    def toggle_listening(self) -> bool:
        if self.state is LoopState.LISTENING:
            return self.stop_listening()
        return self.start_listening()

    def set_input(self, text: str) -> bool:
        if not self.can_type:
            return False
        self.input_text = text
        return True

    def submit(self, text: Optional[str] = None) -> bool:
        content = self.input_text if text is None else text
        if not content.strip():
            return False
        if not self.can_type:
            logger.info("Ignoring submit while %s", self.state.value)
            return False
        self.input_text = ""
        self._begin_chat(content)
        return True

    def toggle_continuous(self) -> bool:
        self.continuous = not self.continuous
        logger.info("Continuous mode %s", "on" if self.continuous else "off")
        if self.continuous:
            if self.state is LoopState.IDLE and not self.is_loading:
                self.start_listening()
        elif self.state is LoopState.LISTENING:
            self.stop_listening()
        elif self.state is LoopState.IDLE:
            self.recorder.release_device()
        return self.continuous

    def toggle_playback(self) -> bool:
        if self.state is LoopState.SPEAKING:
            self._utterance += 1
            self.synthesizer.cancel()
            self._emit(SpeechEnded(cancelled=True))
            self._settle()
            return True
        if self.state is not LoopState.IDLE or self.is_loading:
            return False
        last = self.conversation.last
        if last is None or last.role is not Role.ASSISTANT or last.error or not last.content:
            return False
        self._speak(last.content)
        return True

    # -- recording ----------------------------------------------------------

    def _open_recording(self) -> bool:
        try:
            self.recorder.start()
        except (MicrophonePermissionError, DeviceError) as exc:
            logger.warning("Could not start recording: %s", exc)
            self.error = str(exc)
            self._set_state(LoopState.IDLE)
            self.recorder.release_device()
            return False
        self._set_state(LoopState.LISTENING)
        return True

    def _chunk_received(self, data: bytes) -> None:
        self._emit(ChunkReceived(data))

    def _silence_detected(self, quiet_for: float) -> None:
        if self.state is not LoopState.LISTENING:
            return
        self._emit(SilenceDetected(quiet_for))
        self._finish_recording()

    def _finish_recording(self) -> None:
        blob = self.recorder.stop(keep_device=self.continuous)
        self._emit(RecordingFinished(blob))
        if blob is None or blob.size < self.min_blob_bytes:
            logger.info(
                "Audio too short (%s bytes), ignoring", blob.size if blob else 0
            )
            self._settle()
            return
        self._set_state(LoopState.TRANSCRIBING)
        self._spawn(self._transcribe(blob))

    async def _transcribe(self, blob: AudioBlob) -> None:
        try:
            text = (await self.transcriber.transcribe(blob)).strip()
            if not text:
                raise TranscriptionError("No transcription received")
        except TranscriptionError as exc:
            logger.warning("Transcription failed: %s", exc)
            self.error = str(exc)
            self._emit(TranscriptFailed(str(exc)))
            self._settle()
            return

        logger.info("Transcribed %s characters", len(text))
        self.error = None
        self._emit(TranscriptReady(text))
        if self.continuous:
            self._begin_chat(text)
        else:
            self.input_text = text
            self._set_state(LoopState.IDLE)
            self.recorder.release_device()

    # -- chat -----------------------------------------------------------------

    def _begin_chat(self, text: str) -> None:
        self.conversation.add_user(text)
        messages = self.conversation.messages()
        self.conversation.start_assistant()
        self.is_loading = True
        self.error = None
        self._set_state(LoopState.SUBMITTING)
        self._spawn(self._stream_reply(messages))

    async def _stream_reply(self, messages) -> None:
        parts: List[str] = []
        try:
            async for fragment in self.chat.stream_reply(messages):
                self.conversation.append_fragment(fragment)
                parts.append(fragment)
                self._emit(StreamFragment(fragment))
        except ChatServiceError as exc:
            logger.warning("Chat request failed: %s", exc)
            self.is_loading = False
            self.error = str(exc)
            self.conversation.fail_assistant(f"Error: {exc}")
            self._emit(ChatFailed(str(exc)))
            self._settle()
            return

        self.is_loading = False
        reply = "".join(parts)
        self._emit(StreamEnded(reply))
        if not reply.strip():
            self._settle()
            return
        self._speak(reply)

    # -- speech ---------------------------------------------------------------

    def _speak(self, text: str) -> None:
        self._utterance += 1
        utterance = self._utterance
        self._set_state(LoopState.SPEAKING)
        try:
            self.synthesizer.speak(
                text,
                on_start=lambda: self._speech_started(utterance, text),
                on_end=lambda: self._speech_ended(utterance),
                on_error=lambda exc: self._speech_ended(utterance, exc),
            )
        except SynthesisError as exc:
            self._speech_ended(utterance, exc)

    def _speech_started(self, utterance: int, text: str) -> None:
        if utterance == self._utterance and self.state is LoopState.SPEAKING:
            self._emit(SpeechStarted(text))

    def _speech_ended(self, utterance: int, error: Optional[SynthesisError] = None) -> None:
        # Callbacks from an interrupted utterance arrive after we moved on.
        if utterance != self._utterance or self.state is not LoopState.SPEAKING:
            return
        if error is not None:
            logger.warning("Speech synthesis error: %s", error)
        self._emit(SpeechEnded(error=str(error) if error else None))
        self._settle()

    # -- plumbing -------------------------------------------------------------

    def _settle(self) -> None:
        """Take the next natural transition: listen again or go idle."""
        if self._closed:
            return
        if self.continuous:
            self._open_recording()
            return
        self._set_state(LoopState.IDLE)
        self.recorder.release_device()

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("Voice loop task failed", exc_info=exc)
        self.is_loading = False
        self.error = str(exc) or type(exc).__name__
        if self.state is LoopState.SUBMITTING:
            # The open placeholder must not be sent back to the model.
            self.conversation.fail_assistant(f"Error: {self.error}")
            self._emit(ChatFailed(self.error))
        if self.state in (LoopState.TRANSCRIBING, LoopState.SUBMITTING):
            self._settle()

    async def wait_settled(self) -> None:
        """Wait until no transcription or chat request is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Release the microphone, timers, tasks and speech. Idempotent."""
        if self._closed:
            return
        self._closed = True
        logger.info("Closing voice loop")
        for task in list(self._tasks):
            task.cancel()
        self.recorder.release()
        self._utterance += 1
        self.synthesizer.cancel()
        self.is_loading = False
        self._set_state(LoopState.IDLE)

    async def aclose(self) -> None:
        self.close()
        await self.wait_settled()

    async def __aenter__(self) -> "VoiceLoop":
        return self

    async def __aexit__(self, *_exc) -> None:
        await self.aclose()
