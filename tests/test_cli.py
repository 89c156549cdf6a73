import logging
from logging.handlers import RotatingFileHandler

import pytest

from realtalk.cli import _handle_line
from realtalk.logging_utils import setup_logging
from realtalk.models import LoopState


@pytest.mark.asyncio
async def test_handle_line_commands(make_loop, capsys):
    loop = make_loop()

    assert _handle_line(loop, "/mic\n")
    assert loop.state is LoopState.LISTENING
    assert _handle_line(loop, "/continuous\n")
    assert loop.continuous
    assert not _handle_line(loop, "/quit\n")

    _handle_line(loop, "/help")
    assert "/continuous" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_empty_line_sends_staged_transcript(make_loop):
    loop = make_loop()
    loop.set_input("staged words")

    _handle_line(loop, "\n")
    await loop.wait_settled()

    assert loop.conversation.turns[0].content == "staged words"


def test_setup_logging_attaches_handlers_once(tmp_path):
    logger, log_path = setup_logging(log_dir=str(tmp_path), console=True)
    setup_logging(log_dir=str(tmp_path), console=True)

    rotating = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
    streams = [h for h in logger.handlers if type(h) is logging.StreamHandler]
    try:
        assert len(rotating) == 1
        assert len(streams) == 1
        assert log_path.endswith("realtalk.log")
    finally:
        for handler in rotating + streams:
            logger.removeHandler(handler)
            handler.close()
