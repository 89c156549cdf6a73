"""Microphone capture and recording sessions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from .audio_utils import SpectrumAnalyser, pcm_to_wav
from .config import AudioConfig, SilenceConfig
from .errors import DeviceError, MicrophonePermissionError
from .models import AudioBlob
from .silence import SilenceDetector

logger = logging.getLogger("realtalk")

PERMISSION_MARKERS = (
    "permission",
    "not authorized",
    "not permitted",
    "access denied",
    "unanticipated host error",
)


def list_input_devices() -> List[Dict[str, Any]]:
    try:
        import sounddevice as sd
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise DeviceError("sounddevice is required for device detection.") from exc

    devices = sd.query_devices()
    return [d for d in devices if d.get("max_input_channels", 0) > 0]


def select_preferred_device(
    candidates: List[Dict[str, Any]],
    prefer_name: Optional[str] = None,
) -> Dict[str, Any]:
    if not candidates:
        raise DeviceError("No input devices found.")
    if prefer_name:
        preferred = [
            d for d in candidates if prefer_name.lower() in d.get("name", "").lower()
        ]
        if preferred:
            return preferred[0]
        logger.warning("No input device matches %r; using default", prefer_name)
    return candidates[0]


def find_input_device(prefer_name: Optional[str] = None) -> dict:
    candidates = list_input_devices()
    return select_preferred_device(candidates, prefer_name=prefer_name)


class Microphone(Protocol):
    @property
    def is_open(self) -> bool:
        ...

    def open(self, on_chunk: Callable[[bytes], None]) -> None:
        ...

    def pause(self) -> None:
        ...

    def close(self) -> None:
        ...


class SounddeviceMicrophone:
    """16-bit PCM input stream delivering one chunk every ``chunk_ms``.

    ``pause()`` stops capture but keeps the stream, so reopening does not
    go back through device selection or the OS permission prompt.
    ``on_chunk`` runs on the PortAudio thread.
    """

    def __init__(self, audio: Optional[AudioConfig] = None, device_name: Optional[str] = None) -> None:
        self.audio = audio or AudioConfig()
        self.device_name = device_name
        self._stream = None
        self._on_chunk: Optional[Callable[[bytes], None]] = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def _callback(self, indata, _frames, _time, status) -> None:
        if status:
            logger.debug("Input stream status: %s", status)
        if self._on_chunk is not None:
            self._on_chunk(bytes(indata))

    def open(self, on_chunk: Callable[[bytes], None]) -> None:
        try:
            import sounddevice as sd
        except Exception as exc:  # pragma: no cover - environment-dependent
            raise DeviceError("sounddevice is required for recording.") from exc

        self._on_chunk = on_chunk
        try:
            if self._stream is None:
                device = find_input_device(self.device_name)
                blocksize = int(self.audio.sample_rate_hz * self.audio.chunk_ms / 1000)
                logger.info("Opening input device: %s", device.get("name"))
                self._stream = sd.RawInputStream(
                    samplerate=self.audio.sample_rate_hz,
                    channels=self.audio.channels,
                    dtype="int16",
                    device=device.get("index"),
                    blocksize=blocksize,
                    callback=self._callback,
                )
            self._stream.start()
        except sd.PortAudioError as exc:
            self._discard_stream()
            message = str(exc)
            if any(marker in message.lower() for marker in PERMISSION_MARKERS):
                raise MicrophonePermissionError(
                    f"Microphone access was denied: {message}"
                ) from exc
            raise DeviceError(f"Could not open input device: {message}") from exc

    def pause(self) -> None:
        if self._stream is not None and self._stream.active:
            self._stream.stop()

    def close(self) -> None:
        if self._stream is None:
            return
        logger.info("Releasing input device")
        try:
            self._stream.stop()
        finally:
            self._discard_stream()

    def _discard_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.close()


class RecordingSession:
    """Owns the microphone and the utterance buffer for one recording.

    Chunks are appended in capture order. While recording, the silence
    detector samples the spectrum of the most recent audio once per tick
    and calls ``on_silence`` after the configured quiet period.
    """

    def __init__(
        self,
        microphone: Microphone,
        audio: Optional[AudioConfig] = None,
        silence: Optional[SilenceConfig] = None,
        on_silence: Optional[Callable[[float], None]] = None,
        on_chunk: Optional[Callable[[bytes], None]] = None,
        clock: Optional[Callable[[], float]] = None,
        schedule: Optional[Callable[[float, Callable[[], None]], Any]] = None,
    ) -> None:
        self.microphone = microphone
        self.audio = audio or AudioConfig()
        self.silence = silence or SilenceConfig()
        self.on_silence = on_silence
        self.on_chunk = on_chunk
        self.analyser = SpectrumAnalyser(fft_size=self.silence.fft_size)
        self.detector = SilenceDetector(
            on_silence=self._silence_detected,
            threshold=self.silence.threshold,
            quiet_period_s=self.silence.quiet_period_ms / 1000.0,
            clock=clock,
            schedule=schedule,
        )
        self.recording = False
        self._chunks: List[bytes] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._monitor: Optional[asyncio.Task] = None

    @property
    def buffered_bytes(self) -> int:
        return sum(len(chunk) for chunk in self._chunks)

    def start(self) -> None:
        if self.recording:
            return
        self._loop = asyncio.get_running_loop()
        self.microphone.open(self._chunk_from_device)
        self._chunks = []
        self.analyser.reset()
        self.recording = True
        self.detector.begin()
        if self.silence.tick_ms > 0:
            self._monitor = self._loop.create_task(
                self.detector.monitor(
                    self.analyser.mean_level, self.silence.tick_ms / 1000.0
                )
            )
        logger.info("Recording started")

    def _chunk_from_device(self, data: bytes) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self.add_chunk, data)

    def add_chunk(self, data: bytes) -> None:
        if not self.recording or not data:
            return
        self._chunks.append(data)
        self.analyser.push(data, channels=self.audio.channels)
        if self.on_chunk is not None:
            self.on_chunk(data)

    def _silence_detected(self, quiet_for: float) -> None:
        if self.recording and self.on_silence is not None:
            self.on_silence(quiet_for)

    def _halt(self) -> None:
        self.recording = False
        self.detector.cancel()
        if self._monitor is not None:
            self._monitor.cancel()
            self._monitor = None

    def stop(self, keep_device: bool = False) -> Optional[AudioBlob]:
        if not self.recording:
            return None
        self._halt()
        if keep_device:
            self.microphone.pause()
        else:
            self.microphone.close()
        pcm = b"".join(self._chunks)
        self._chunks = []
        logger.info("Recording stopped (%s bytes of audio)", len(pcm))
        return AudioBlob(
            data=pcm_to_wav(pcm, self.audio.sample_rate_hz, self.audio.channels),
            mime_type="audio/wav",
            sample_rate_hz=self.audio.sample_rate_hz,
            channels=self.audio.channels,
        )

    def release_device(self) -> None:
        if not self.recording and self.microphone.is_open:
            self.microphone.close()

    def release(self) -> None:
        if self.recording:
            self._halt()
            self._chunks = []
        if self.microphone.is_open:
            self.microphone.close()
