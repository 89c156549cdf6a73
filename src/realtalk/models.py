"""Data models for RealTalk."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class LoopState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    TRANSCRIBING = "transcribing"
    SUBMITTING = "submitting"
    SPEAKING = "speaking"


@dataclass
class Turn:
    role: Role
    content: str
    error: bool = False

    def as_message(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class AudioBlob:
    data: bytes
    mime_type: str = "audio/wav"
    sample_rate_hz: int = 16000
    channels: int = 1

    @property
    def size(self) -> int:
        return len(self.data)


class Conversation:
    """Append-only list of turns.

    Only the most recent assistant turn may change after it is appended,
    and only by growing: streamed fragments are appended to it in arrival
    order. A failed reply swaps that placeholder for an error turn.
    """

    def __init__(self) -> None:
        self._turns: List[Turn] = []

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self):
        return iter(list(self._turns))

    @property
    def turns(self) -> List[Turn]:
        return list(self._turns)

    @property
    def last(self) -> Optional[Turn]:
        return self._turns[-1] if self._turns else None

    def add_user(self, content: str) -> Turn:
        turn = Turn(role=Role.USER, content=content)
        self._turns.append(turn)
        return turn

    def start_assistant(self) -> Turn:
        turn = Turn(role=Role.ASSISTANT, content="")
        self._turns.append(turn)
        return turn

    def append_fragment(self, fragment: str) -> Turn:
        turn = self.last
        if turn is None or turn.role is not Role.ASSISTANT or turn.error:
            raise ValueError("No assistant turn is open for streaming.")
        turn.content += fragment
        return turn

    def fail_assistant(self, message: str) -> Turn:
        turn = Turn(role=Role.ASSISTANT, content=message, error=True)
        last = self.last
        if last is not None and last.role is Role.ASSISTANT and not last.error:
            self._turns[-1] = turn
        else:
            self._turns.append(turn)
        return turn

    def messages(self) -> List[Dict[str, str]]:
        # Error turns are shown to the user but never sent back to the model.
        return [turn.as_message() for turn in self._turns if not turn.error]


# Loop events. Collaborators report what happened; the loop decides what it
# means for the current state.


@dataclass
class ChunkReceived:
    data: bytes


@dataclass
class SilenceDetected:
    quiet_seconds: float


@dataclass
class RecordingFinished:
    blob: Optional[AudioBlob]


@dataclass
class TranscriptReady:
    text: str


@dataclass
class TranscriptFailed:
    message: str


@dataclass
class StreamFragment:
    text: str


@dataclass
class StreamEnded:
    text: str


@dataclass
class ChatFailed:
    message: str


@dataclass
class SpeechStarted:
    text: str


@dataclass
class SpeechEnded:
    cancelled: bool = False
    error: Optional[str] = None


@dataclass
class StateChanged:
    previous: LoopState
    current: LoopState
    continuous: bool = field(default=False)
