"""Error types raised by the voice loop and its collaborators."""

from __future__ import annotations

from typing import Optional


class RealTalkError(Exception):
    """Base class for every error the voice loop knows how to handle."""


class MicrophonePermissionError(RealTalkError, PermissionError):
    """The user or the OS refused microphone access."""


class DeviceError(RealTalkError):
    """No usable audio input device."""


class TranscriptionError(RealTalkError):
    """The transcription service failed or returned nothing."""


class ChatServiceError(RealTalkError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SynthesisError(RealTalkError):
    """Speech playback failed."""
