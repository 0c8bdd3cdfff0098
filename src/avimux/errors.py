"""
Custom exception hierarchy for avimux.
"""

from __future__ import annotations

from dataclasses import dataclass


class AvimuxError(Exception):
    """Base class for avimux exceptions."""


class InvalidArgumentError(AvimuxError, ValueError):
    """Raised when a caller passes a value the container cannot represent."""


class WriterIOError(AvimuxError):
    """Raised when a read, write or seek on the output file fails."""


class WriterStateError(AvimuxError, RuntimeError):
    """Raised when the writer is used outside of its open/closed lifecycle."""


class AviIndexError(AvimuxError):
    """Base class for index-building failures."""


@dataclass
class IndexCapacityError(AviIndexError):
    stream: str
    capacity: int

    def __str__(self) -> str:
        return (
            f"super index for {self.stream} stream is full "
            f"({self.capacity} pages); raise super_index_capacity"
        )


class IndexOverflowError(AviIndexError):
    """Raised when an offset does not fit its 32-bit index field."""


class InspectError(AvimuxError):
    """Raised when an AVI file cannot be parsed for inspection."""
