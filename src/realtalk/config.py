"""Configuration handling."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from typing import Optional
import yaml

from .retry import RetryPolicy


@dataclass
class AudioConfig:
    sample_rate_hz: int = 16000
    channels: int = 1
    chunk_ms: int = 100
    min_blob_bytes: int = 1000


@dataclass
class SilenceConfig:
    threshold: float = 10.0
    quiet_period_ms: int = 1000
    fft_size: int = 2048
    tick_ms: int = 16


@dataclass
class ServiceConfig:
    transcribe_url: str = "http://localhost:3000/api/gemini/transcribe"
    chat_url: str = "http://localhost:3000/api/gemini/chat"
    timeout_s: float = 60.0
    api_key: Optional[str] = None
    system_prompt: Optional[str] = None


@dataclass
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    jitter: float = 0.1

    def policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay,
            backoff_factor=self.backoff_factor,
            jitter=self.jitter,
        )


@dataclass
class SpeechConfig:
    enabled: bool = True
    rate: float = 1.0
    volume: float = 1.0
    voice: Optional[str] = None


@dataclass
class WhisperConfig:
    model: str = "small"
    language: Optional[str] = None
    device: Optional[str] = None
    compute_type: Optional[str] = None


@dataclass
class Config:
    device_name: Optional[str] = None
    continuous: bool = False
    log_dir: str = "logs"
    audio: AudioConfig = field(default_factory=AudioConfig)
    silence: SilenceConfig = field(default_factory=SilenceConfig)
    services: ServiceConfig = field(default_factory=ServiceConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    whisper: WhisperConfig = field(default_factory=WhisperConfig)


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    services = ServiceConfig(**data.get("services", {}))
    if not services.api_key:
        services.api_key = os.environ.get("REALTALK_API_KEY") or None

    return Config(
        device_name=data.get("device_name"),
        continuous=bool(data.get("continuous", False)),
        log_dir=data.get("log_dir", "logs"),
        audio=AudioConfig(**data.get("audio", {})),
        silence=SilenceConfig(**data.get("silence", {})),
        services=services,
        retry=RetryConfig(**data.get("retry", {})),
        speech=SpeechConfig(**data.get("speech", {})),
        whisper=WhisperConfig(**data.get("whisper", {})),
    )


def load_or_default(path: Optional[str]) -> Config:
    if path and os.path.exists(path):
        return load_config(path)
    config = Config()
    config.services.api_key = os.environ.get("REALTALK_API_KEY") or None
    return config


def save_config(path: str, config: Config) -> None:
    data = asdict(config)
    # Keys belong in the environment, not on disk.
    data["services"].pop("api_key", None)
    with open(path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(data, handle, sort_keys=False)
