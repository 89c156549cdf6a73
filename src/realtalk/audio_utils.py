"""Audio helpers."""

from __future__ import annotations

import base64
import io
import wave

import numpy as np

MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


class SpectrumAnalyser:
    """Byte-scaled frequency data for a rolling window of PCM samples.

    Mirrors a browser analyser node: Blackman window, magnitude spectrum
    smoothed over time, decibels clamped to ``[min_db, max_db]`` and mapped
    onto 0-255.
    """

    def __init__(
        self,
        fft_size: int = 2048,
        smoothing: float = 0.8,
        min_db: float = MIN_DECIBELS,
        max_db: float = MAX_DECIBELS,
    ) -> None:
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError("fft_size must be a power of two >= 32.")
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db
        self._window = np.blackman(fft_size)
        self._samples = np.zeros(fft_size, dtype=np.float32)
        self._smoothed = np.zeros(fft_size // 2, dtype=np.float64)

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def reset(self) -> None:
        self._samples[:] = 0.0
        self._smoothed[:] = 0.0

    def push(self, pcm16: bytes, channels: int = 1) -> None:
        data = np.frombuffer(pcm16, dtype=np.int16).astype(np.float32) / 32768.0
        if channels > 1:
            data = data[: len(data) - len(data) % channels]
            data = data.reshape(-1, channels).mean(axis=1)
        if data.size >= self.fft_size:
            self._samples = data[-self.fft_size :].copy()
        elif data.size:
            self._samples = np.concatenate([self._samples[data.size :], data])

    def byte_frequency_data(self) -> np.ndarray:
        spectrum = np.fft.rfft(self._samples * self._window)[: self.bin_count]
        magnitude = np.abs(spectrum) / self.fft_size
        self._smoothed = (
            self.smoothing * self._smoothed + (1.0 - self.smoothing) * magnitude
        )
        with np.errstate(divide="ignore"):
            decibels = 20.0 * np.log10(self._smoothed)
        scaled = (decibels - self.min_db) * (255.0 / (self.max_db - self.min_db))
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)

    def mean_level(self) -> float:
        """Average byte magnitude across all frequency bins."""
        return float(np.mean(self.byte_frequency_data()))


def pcm_to_wav(pcm16: bytes, sample_rate_hz: int, channels: int = 1) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as handle:
        handle.setnchannels(channels)
        handle.setsampwidth(2)
        handle.setframerate(sample_rate_hz)
        handle.writeframes(pcm16)
    return buffer.getvalue()


def read_wav(path: str) -> tuple[bytes, int, int]:
    with wave.open(path, "rb") as handle:
        if handle.getsampwidth() != 2:
            raise ValueError("Only 16-bit PCM is supported.")
        frames = handle.readframes(handle.getnframes())
        return frames, handle.getframerate(), handle.getnchannels()


def encode_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")
