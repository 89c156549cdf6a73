import json
import os
import tempfile

import httpx
import pytest

from realtalk.audio_utils import encode_base64, pcm_to_wav
from realtalk.errors import TranscriptionError
from realtalk.models import AudioBlob
from realtalk.retry import RetryPolicy
from realtalk.transcriber import HttpTranscriber, WhisperTranscriber, load_wav_blob

URL = "http://transcribe.test/api/transcribe"
BLOB = AudioBlob(data=pcm_to_wav(b"\x10\x00" * 800, 16000))


def _transcriber(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpTranscriber(URL, client=client, **kwargs)


@pytest.mark.asyncio
async def test_posts_base64_audio_and_returns_text():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"text": "  hello world \n"})

    transcriber = _transcriber(handler, api_key="abc123")
    assert await transcriber.transcribe(BLOB) == "hello world"

    [request] = seen
    assert json.loads(request.content) == {"audio": encode_base64(BLOB.data)}
    assert request.headers["Authorization"] == "Bearer abc123"


@pytest.mark.asyncio
async def test_accepts_transcript_key():
    transcriber = _transcriber(
        lambda request: httpx.Response(200, json={"transcript": "from deepgram"})
    )
    assert await transcriber.transcribe(BLOB) == "from deepgram"


@pytest.mark.asyncio
async def test_error_body_becomes_transcription_error():
    transcriber = _transcriber(
        lambda request: httpx.Response(400, json={"error": "No audio data provided"})
    )
    with pytest.raises(TranscriptionError, match="No audio data provided"):
        await transcriber.transcribe(BLOB)


@pytest.mark.asyncio
async def test_empty_text_is_an_error():
    transcriber = _transcriber(lambda request: httpx.Response(200, json={"text": "  "}))
    with pytest.raises(TranscriptionError, match="No transcription received"):
        await transcriber.transcribe(BLOB)


@pytest.mark.asyncio
async def test_server_error_is_retried():
    responses = [
        httpx.Response(503, json={"error": "busy"}),
        httpx.Response(200, json={"text": "second time lucky"}),
    ]

    def handler(request):
        return responses.pop(0)

    transcriber = _transcriber(
        handler, retry=RetryPolicy(max_attempts=2, initial_delay=0.0, jitter=0.0)
    )
    assert await transcriber.transcribe(BLOB) == "second time lucky"
    assert responses == []


@pytest.mark.asyncio
async def test_connection_failure_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    transcriber = _transcriber(handler)
    with pytest.raises(TranscriptionError, match="connection refused"):
        await transcriber.transcribe(BLOB)


def test_load_wav_blob_keeps_container_bytes():
    data = pcm_to_wav(b"\x01\x00" * 10, 22050, 1)
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "clip.wav")
        with open(path, "wb") as handle:
            handle.write(data)
        blob = load_wav_blob(path)

    assert blob.data == data
    assert blob.sample_rate_hz == 22050


class _BrokenModel:
    def transcribe(self, audio, language=None):
        raise IndexError("no audio stream in container")


@pytest.mark.asyncio
async def test_local_decoder_errors_become_transcription_error():
    transcriber = WhisperTranscriber()
    transcriber._model = _BrokenModel()
    with pytest.raises(TranscriptionError, match="no audio stream"):
        await transcriber.transcribe(BLOB)
