import asyncio

import pytest

from conftest import FakeMicrophone, FakeScheduler
from realtalk.audio_utils import pcm_to_wav
from realtalk.config import AudioConfig, SilenceConfig
from realtalk.errors import MicrophonePermissionError
from realtalk.recorder import RecordingSession


def _session(mic, scheduler=None, on_silence=None):
    scheduler = scheduler or FakeScheduler()
    return RecordingSession(
        mic,
        audio=AudioConfig(sample_rate_hz=16000),
        silence=SilenceConfig(tick_ms=0),
        on_silence=on_silence,
        clock=scheduler.clock,
        schedule=scheduler.call_later,
    )


@pytest.mark.asyncio
async def test_chunks_are_kept_in_capture_order():
    session = _session(FakeMicrophone())
    session.start()
    for chunk in (b"\x01\x00", b"\x02\x00", b"\x03\x00"):
        session.add_chunk(chunk)

    blob = session.stop()

    assert blob.data == pcm_to_wav(b"\x01\x00\x02\x00\x03\x00", 16000, 1)
    assert blob.mime_type == "audio/wav"
    assert not session.recording


@pytest.mark.asyncio
async def test_device_chunks_arrive_through_event_loop():
    mic = FakeMicrophone()
    session = _session(mic)
    session.start()

    mic.on_chunk(b"\x05\x00" * 10)
    assert session.buffered_bytes == 0
    await asyncio.sleep(0)
    assert session.buffered_bytes == 20


@pytest.mark.asyncio
async def test_stop_is_a_no_op_when_not_recording():
    mic = FakeMicrophone()
    session = _session(mic)
    assert session.stop() is None
    assert mic.close_calls == 0


@pytest.mark.asyncio
async def test_keep_device_pauses_instead_of_closing():
    mic = FakeMicrophone()
    session = _session(mic)

    session.start()
    session.stop(keep_device=True)
    assert mic.pause_calls == 1
    assert mic.is_open

    session.start()
    session.stop(keep_device=False)
    assert mic.close_calls == 1
    assert not mic.is_open


@pytest.mark.asyncio
async def test_permission_error_propagates():
    session = _session(FakeMicrophone(error=MicrophonePermissionError("denied")))
    with pytest.raises(PermissionError):
        session.start()
    assert not session.recording


@pytest.mark.asyncio
async def test_release_drops_buffer_and_closes_once():
    mic = FakeMicrophone()
    session = _session(mic)
    session.start()
    session.add_chunk(b"\x01\x00" * 100)

    session.release()
    session.release()

    assert mic.close_calls == 1
    assert session.buffered_bytes == 0
    session.add_chunk(b"\x01\x00")
    assert session.buffered_bytes == 0


@pytest.mark.asyncio
async def test_silence_is_reported_while_recording():
    scheduler = FakeScheduler()
    heard = []
    session = _session(FakeMicrophone(), scheduler, on_silence=heard.append)
    session.start()

    session.detector.observe(session.analyser.mean_level())
    scheduler.advance(1.0)

    assert heard == [pytest.approx(1.0)]
