"""
avimux package initialization.

The streaming writer lives in `avimux.writer`; the CLI entry point is exposed
via `avimux.cli:main`.
"""

from .errors import (
    AvimuxError,
    InvalidArgumentError,
    WriterIOError,
    WriterStateError,
)
from .headers import AudioConfig
from .index import IndexStyle
from .writer import AviWriter, open_writer

__all__ = [
    "AudioConfig",
    "AviWriter",
    "AvimuxError",
    "IndexStyle",
    "InvalidArgumentError",
    "WriterIOError",
    "WriterStateError",
    "open_writer",
]
