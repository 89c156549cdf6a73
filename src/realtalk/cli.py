"""CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

from .chat import ChatClient, DEFAULT_SYSTEM_PROMPT
from .config import Config, load_or_default, save_config
from .errors import RealTalkError
from .logging_utils import setup_logging
from .loop import VoiceLoop
from .models import (
    ChatFailed,
    LoopState,
    SpeechStarted,
    StateChanged,
    StreamEnded,
    StreamFragment,
    TranscriptFailed,
    TranscriptReady,
)
from .recorder import SounddeviceMicrophone, list_input_devices
from .speech import Pyttsx3Synthesizer, SilentSynthesizer
from .transcriber import HttpTranscriber, WhisperTranscriber, transcribe_file

DEFAULT_CONFIG = "realtalk_config.yml"

HELP_TEXT = (
    "Type a message and press Enter to send it.\n"
    "  (empty line)  send the staged transcript\n"
    "  /mic          start or stop listening\n"
    "  /continuous   toggle continuous mode\n"
    "  /speak        stop speaking, or replay the last reply\n"
    "  /quit         exit"
)


def _build_transcriber(config: Config, local_whisper: bool):
    if local_whisper:
        return WhisperTranscriber(config.whisper)
    return HttpTranscriber(
        config.services.transcribe_url,
        timeout_s=config.services.timeout_s,
        api_key=config.services.api_key,
        retry=config.retry.policy(),
    )


def _printer(loop: VoiceLoop):
    def _on_event(event) -> None:
        if isinstance(event, StateChanged):
            if event.current is LoopState.LISTENING:
                print("[listening...]", flush=True)
            elif event.current is LoopState.TRANSCRIBING:
                print("[transcribing...]", flush=True)
            elif event.current is LoopState.SUBMITTING:
                print("assistant> ", end="", flush=True)
        elif isinstance(event, TranscriptReady):
            print(f"you> {event.text}", flush=True)
            if not loop.continuous:
                print("(press Enter to send, or type a replacement)", flush=True)
        elif isinstance(event, TranscriptFailed):
            print(f"[transcription failed: {event.message}]", flush=True)
        elif isinstance(event, StreamFragment):
            print(event.text, end="", flush=True)
        elif isinstance(event, StreamEnded):
            print(flush=True)
        elif isinstance(event, ChatFailed):
            print(f"\n[error: {event.message}]", flush=True)
        elif isinstance(event, SpeechStarted):
            print("[speaking]", flush=True)

    return _on_event


def _handle_line(loop: VoiceLoop, line: str) -> bool:
    command = line.strip()
    if command == "/quit":
        return False
    if command == "/help":
        print(HELP_TEXT)
    elif command == "/mic":
        if not loop.toggle_listening():
            print(f"[microphone unavailable: {loop.error or loop.state.value}]")
    elif command == "/continuous":
        enabled = loop.toggle_continuous()
        print(f"[continuous mode {'on' if enabled else 'off'}]")
        if enabled and loop.error:
            print(f"[error: {loop.error}]")
    elif command == "/speak":
        loop.toggle_playback()
    elif not command:
        if loop.input_text and not loop.submit():
            print(f"[busy: {loop.state.value}]")
    elif not loop.submit(command):
        print(f"[busy: {loop.state.value}]")
    return True


async def _talk(args: argparse.Namespace, config: Config) -> int:
    if args.continuous:
        config.continuous = True
    microphone = SounddeviceMicrophone(config.audio, device_name=args.device or config.device_name)
    transcriber = _build_transcriber(config, args.local_whisper)
    chat = ChatClient(
        config.services.chat_url,
        system_prompt=config.services.system_prompt,
        timeout_s=config.services.timeout_s,
        api_key=config.services.api_key,
        retry=config.retry.policy(),
    )
    if args.no_speech or not config.speech.enabled:
        synthesizer = SilentSynthesizer()
    else:
        synthesizer = Pyttsx3Synthesizer(config.speech)

    try:
        async with VoiceLoop(microphone, transcriber, chat, synthesizer, config) as loop:
            loop.add_listener(_printer(loop))
            print(HELP_TEXT)
            if config.continuous:
                loop.toggle_continuous()
            while True:
                line = await asyncio.to_thread(sys.stdin.readline)
                if not line or not _handle_line(loop, line):
                    break
    finally:
        await chat.aclose()
        if isinstance(transcriber, HttpTranscriber):
            await transcriber.aclose()
    return 0


async def _transcribe(args: argparse.Namespace, config: Config) -> int:
    transcriber = _build_transcriber(config, args.local_whisper)
    try:
        text = await transcribe_file(args.audio_path, transcriber)
    finally:
        if isinstance(transcriber, HttpTranscriber):
            await transcriber.aclose()
    print(text)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(prog="realtalk")
    parser.add_argument("--debug", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="command")

    devices_cmd = sub.add_parser("devices")
    devices_cmd.add_argument("--match", help="Filter device names by substring.")
    devices_cmd.add_argument(
        "--detail",
        action="store_true",
        help="Show detailed device channel info.",
    )

    talk_cmd = sub.add_parser("talk")
    talk_cmd.add_argument("--config", default=DEFAULT_CONFIG, help="Config.")
    talk_cmd.add_argument(
        "--continuous", action="store_true", help="Start in continuous mode."
    )
    talk_cmd.add_argument("--device", help="Preferred device name substring.")
    talk_cmd.add_argument(
        "--no-speech", action="store_true", help="Do not speak replies aloud."
    )
    talk_cmd.add_argument(
        "--local-whisper",
        action="store_true",
        help="Transcribe locally with faster-whisper.",
    )

    transcribe_cmd = sub.add_parser("transcribe")
    transcribe_cmd.add_argument("audio_path", help="Path to a 16-bit WAV file.")
    transcribe_cmd.add_argument("--config", default=DEFAULT_CONFIG, help="Config.")
    transcribe_cmd.add_argument(
        "--local-whisper",
        action="store_true",
        help="Transcribe locally with faster-whisper.",
    )

    config_cmd = sub.add_parser("config")
    config_cmd.add_argument("--config", default=DEFAULT_CONFIG, help="Config.")
    config_cmd.add_argument(
        "--force", action="store_true", help="Overwrite an existing file."
    )

    args = parser.parse_args()
    if args.command == "devices":
        try:
            devices = list_input_devices()
        except RealTalkError as exc:
            print(exc)
            return 1
        if args.match:
            devices = [
                d for d in devices if args.match.lower() in d.get("name", "").lower()
            ]
        for device in devices:
            name = device.get("name", "Unknown")
            index = device.get("index", "?")
            channels = device.get("max_input_channels", 0)
            line = f"[{index}] {name} (inputs: {channels})"
            if args.detail:
                extra = []
                if "default_samplerate" in device:
                    extra.append(f"rate={device.get('default_samplerate')}")
                if "hostapi" in device:
                    extra.append(f"hostapi={device.get('hostapi')}")
                if extra:
                    line = f"{line} [{', '.join(extra)}]"
            print(line)
        return 0

    if args.command == "config":
        if os.path.exists(args.config) and not args.force:
            print(f"{args.config} already exists (use --force to overwrite)")
            return 1
        config = Config()
        config.services.system_prompt = DEFAULT_SYSTEM_PROMPT
        save_config(args.config, config)
        print(f"Wrote {args.config}")
        return 0

    if args.command in ("talk", "transcribe"):
        config = load_or_default(args.config)
        logger, log_path = setup_logging(
            log_dir=config.log_dir,
            level=logging.DEBUG if args.debug else logging.INFO,
            console=True,
        )
        logger.info("Command %s (log: %s)", args.command, log_path)
        runner = _talk if args.command == "talk" else _transcribe
        try:
            return asyncio.run(runner(args, config))
        except KeyboardInterrupt:
            return 130
        except RealTalkError as exc:
            print(f"Error: {exc}")
            return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
