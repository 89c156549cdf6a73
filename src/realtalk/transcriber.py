"""Speech-to-text backends."""

from __future__ import annotations

import asyncio
import io
import logging
from typing import Optional, Protocol

import httpx

from .audio_utils import encode_base64, read_wav
from .config import WhisperConfig
from .errors import TranscriptionError
from .http_client import (
    RETRYABLE_ERRORS,
    ServiceClient,
    error_message,
    raise_for_server_error,
)
from .models import AudioBlob
from .retry import retry_async

logger = logging.getLogger("realtalk")


class Transcriber(Protocol):
    async def transcribe(self, blob: AudioBlob) -> str:
        ...


class HttpTranscriber(ServiceClient):
    """Posts ``{"audio": <base64>}`` and expects ``{"text": ...}`` back."""

    async def transcribe(self, blob: AudioBlob) -> str:
        payload = {"audio": encode_base64(blob.data)}

        async def _post() -> httpx.Response:
            response = await self.client.post(
                self.url, json=payload, headers=self.headers()
            )
            raise_for_server_error(response)
            return response

        logger.debug("Transcribing %s bytes via %s", blob.size, self.url)
        try:
            response = await retry_async(
                _post, self.retry, retry_on=RETRYABLE_ERRORS, label="Transcription"
            )
        except httpx.HTTPStatusError as exc:
            raise TranscriptionError(
                error_message(exc.response, "Transcription failed")
            ) from exc
        except httpx.HTTPError as exc:
            raise TranscriptionError(f"Transcription request failed: {exc}") from exc

        if response.is_error:
            raise TranscriptionError(error_message(response, "Transcription failed"))
        try:
            data = response.json()
        except ValueError as exc:
            raise TranscriptionError("Transcription response was not JSON.") from exc

        text = ""
        if isinstance(data, dict):
            text = data.get("text") or data.get("transcript") or ""
        text = str(text).strip()
        if not text:
            raise TranscriptionError("No transcription received")
        return text


class WhisperTranscriber:
    """Local transcription with Faster-Whisper."""

    def __init__(self, config: Optional[WhisperConfig] = None) -> None:
        self.config = config or WhisperConfig()
        self._model = None

    def _load_model(self):
        if self._model is None:
            try:
                from faster_whisper import WhisperModel
            except Exception as exc:  # pragma: no cover - optional dependency
                raise TranscriptionError(
                    "faster-whisper is required for local transcription."
                ) from exc

            kwargs = {}
            if self.config.device:
                kwargs["device"] = self.config.device
            if self.config.compute_type:
                kwargs["compute_type"] = self.config.compute_type
            logger.info("Loading whisper model %s", self.config.model)
            self._model = WhisperModel(self.config.model, **kwargs)
        return self._model

    def _transcribe_sync(self, data: bytes) -> str:
        model = self._load_model()
        try:
            segments, _info = model.transcribe(
                io.BytesIO(data), language=self.config.language
            )
            text = " ".join(seg.text.strip() for seg in segments)
        except Exception as exc:  # decoders raise assorted errors
            logger.warning("Local transcription failed: %s", exc)
            raise TranscriptionError(f"Local transcription failed: {exc}") from exc
        return text.strip()

    async def transcribe(self, blob: AudioBlob) -> str:
        text = await asyncio.to_thread(self._transcribe_sync, blob.data)
        if not text:
            raise TranscriptionError("No transcription received")
        return text


def load_wav_blob(path: str) -> AudioBlob:
    _frames, sample_rate_hz, channels = read_wav(path)
    with open(path, "rb") as handle:
        data = handle.read()
    return AudioBlob(
        data=data,
        mime_type="audio/wav",
        sample_rate_hz=sample_rate_hz,
        channels=channels,
    )


async def transcribe_file(path: str, transcriber: Transcriber) -> str:
    return await transcriber.transcribe(load_wav_blob(path))
