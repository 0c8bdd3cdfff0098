from __future__ import annotations

import io
import json
import logging
from pathlib import Path

from avimux.index import IndexStyle
from avimux.logging_utils import LogFormat, create_event_logger


def _make_logger(name: str):
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    logger.handlers = [handler]
    return logger, handler, stream


def test_json_logging_format():
    logger, handler, stream = _make_logger("avimux.test.json")
    event_logger = create_event_logger(logger, LogFormat.JSON)
    event_logger.log("index_flush", pages=2, fourcc=b"ix00", path=Path("/tmp/a.avi"))
    handler.flush()
    payload = json.loads(stream.getvalue())
    assert payload["event"] == "index_flush"
    assert payload["fields"]["pages"] == 2
    assert payload["fields"]["fourcc"] == "ix00"
    assert payload["fields"]["path"] == "/tmp/a.avi"
    logger.handlers.clear()


def test_human_format_contains_event_type():
    logger, handler, stream = _make_logger("avimux.test.human")
    event_logger = create_event_logger(logger, LogFormat.HUMAN)
    event_logger.log("writer_open", index_style=IndexStyle.BASIC, width=320)
    handler.flush()
    message = stream.getvalue()
    assert "[writer_open]" in message
    assert "index_style=basic" in message
    assert "width=320" in message
    logger.handlers.clear()


def test_unknown_format_falls_back_to_human():
    logger, handler, stream = _make_logger("avimux.test.fallback")
    event_logger = create_event_logger(logger, "xml")
    assert event_logger.log_format is LogFormat.HUMAN
    event_logger.log("fourcc_warning", level="warning", fourcc=b"ZZ9\0")
    handler.flush()
    assert "[fourcc_warning]" in stream.getvalue()
    assert "fourcc=ZZ9" in stream.getvalue()
    logger.handlers.clear()
