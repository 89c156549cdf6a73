import argparse
import asyncio
import os
import sys
import time

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from realtalk.config import WhisperConfig
from realtalk.retry import NO_RETRY
from realtalk.transcriber import HttpTranscriber, WhisperTranscriber, load_wav_blob


async def _run(args) -> str:
    blob = load_wav_blob(args.audio_path)
    print(f"Blob: {blob.size} bytes, {blob.sample_rate_hz} Hz, {blob.channels} ch")
    if args.url:
        async with HttpTranscriber(args.url, retry=NO_RETRY) as transcriber:
            return await transcriber.transcribe(blob)
    transcriber = WhisperTranscriber(
        WhisperConfig(
            model=args.model,
            language=args.language,
            device=args.device,
            compute_type=args.compute_type,
        )
    )
    return await transcriber.transcribe(blob)


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("audio_path", help="Path to a WAV file to transcribe.")
    parser.add_argument("--url", help="Transcription endpoint; omit for local whisper.")
    parser.add_argument("--model", default="small", help="Whisper model name.")
    parser.add_argument("--language", help="Language code (e.g., en).")
    parser.add_argument("--device", help="Device preference (cpu/cuda).")
    parser.add_argument("--compute-type", help="Compute type (int8/float16).")
    args = parser.parse_args()

    started = time.time()
    text = asyncio.run(_run(args))
    elapsed = time.time() - started
    print(f"Text: {text}")
    print(f"Elapsed: {elapsed:.2f}s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
