"""
Structured logging helpers for avimux.

Writer lifecycle events (open, index flushes, close) are emitted through an
``EventLogger`` so a host application can choose between a human-readable line
or one JSON object per event.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


class LogFormat(str, Enum):
    HUMAN = "human"
    JSON = "json"


def _render_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("ascii", errors="backslashreplace")
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_render_value(item) for item in value]
    return value


class EventLogger:
    """Wrapper that emits structured events in human or JSON format."""

    def __init__(self, logger: logging.Logger, log_format: LogFormat = LogFormat.HUMAN) -> None:
        self.logger = logger
        self.log_format = log_format

    def log(self, event_type: str, *, level: str = "info", **fields: Any) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        rendered = {key: _render_value(value) for key, value in fields.items()}
        log_method = getattr(self.logger, level, self.logger.info)

        if self.log_format == LogFormat.JSON:
            payload = {
                "timestamp": timestamp,
                "event": event_type,
                "fields": rendered,
            }
            log_method(json.dumps(payload, separators=(",", ":")))
            return

        field_blob = " ".join(f"{key}={rendered[key]}" for key in sorted(rendered))
        message = f"[{event_type}] {timestamp}"
        if field_blob:
            message = f"{message} | {field_blob}"
        log_method(message)


def create_event_logger(logger: logging.Logger, fmt: str | LogFormat) -> EventLogger:
    try:
        log_format = LogFormat(fmt)
    except ValueError:
        log_format = LogFormat.HUMAN
    return EventLogger(logger, log_format)
