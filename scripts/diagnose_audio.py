import argparse
import os
import sys
import threading
import time

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import sounddevice as sd

from realtalk.audio_utils import SpectrumAnalyser
from realtalk.recorder import find_input_device


def _describe_device(info: dict) -> None:
    print(f"Input device: {info.get('name', '')}")
    print(f"Index: {info.get('index', '')}")
    print(f"Host API: {info.get('hostapi', '')}")
    print(f"Max input channels: {info.get('max_input_channels', 0)}")
    print(f"Default sample rate: {info.get('default_samplerate', '')}")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Print the silence detector's level readings for a device."
    )
    parser.add_argument("--device", help="Device name substring.")
    parser.add_argument("--seconds", type=float, default=6.0, help="Test duration.")
    parser.add_argument("--rate", type=int, default=16000, help="Sample rate.")
    parser.add_argument("--threshold", type=float, default=10.0, help="Silence level.")
    args = parser.parse_args()

    info = find_input_device(args.device)
    _describe_device(info)

    analyser = SpectrumAnalyser()
    lock = threading.Lock()

    def _callback(indata, _frames, _time, status):
        if status:
            return
        with lock:
            analyser.push(bytes(indata))

    stream = sd.RawInputStream(
        samplerate=args.rate,
        channels=1,
        dtype="int16",
        device=info.get("index"),
        blocksize=int(args.rate / 10),
        callback=_callback,
    )
    stream.start()
    print("Streaming... press Ctrl+C to stop early.")

    end = time.time() + args.seconds
    try:
        while time.time() < end:
            with lock:
                level = analyser.mean_level()
            state = "silent" if level < args.threshold else "speech"
            bar = "#" * int(level / 4)
            print(f"{level:6.1f} {state:<6} {bar}")
            time.sleep(0.25)
    finally:
        stream.stop()
        stream.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
