"""
RIFF chunk framing and the checked file sink used by the writer.

Every chunk is a four byte ASCII id, a little-endian 32-bit payload length and
the payload, followed by a single zero byte when the length is odd. LIST chunks
carry a four byte list type as the first part of their payload.
"""

from __future__ import annotations

import logging
import os
import struct
from pathlib import Path
from typing import BinaryIO

from .errors import WriterIOError

logger = logging.getLogger(__name__)

WORD_SIZE = 2
U32_MAX = 0xFFFFFFFF
CHUNK_HEADER_SIZE = 8

_U32 = struct.Struct("<I")


def as_fourcc(value: str | bytes) -> bytes:
    """Return *value* as exactly four bytes, NUL-padded or truncated."""
    raw = value.encode("ascii", errors="replace") if isinstance(value, str) else bytes(value)
    return raw[:4].ljust(4, b"\0")


def pad_size(length: int) -> int:
    """Number of zero bytes needed to word-align a payload of *length* bytes."""
    return length % WORD_SIZE


def padded_length(length: int) -> int:
    return length + pad_size(length)


def chunk_header(fourcc: bytes | str, length: int) -> bytes:
    return as_fourcc(fourcc) + _U32.pack(length)


def encode_chunk(fourcc: bytes | str, payload: bytes) -> bytes:
    """Frame *payload* as a complete, word-aligned chunk."""
    return chunk_header(fourcc, len(payload)) + payload + b"\0" * pad_size(len(payload))


def encode_list(list_type: bytes | str, *chunks: bytes) -> bytes:
    """Frame already-encoded *chunks* inside a LIST of *list_type*."""
    payload = as_fourcc(list_type) + b"".join(chunks)
    return encode_chunk(b"LIST", payload)


def clamp_u32(value: int, field: str) -> int:
    """Saturate a size field at 0xFFFFFFFF, warning when it would overflow."""
    if value > U32_MAX:
        logger.warning("%s of %s bytes does not fit 32 bits; saturating", field, value)
        return U32_MAX
    return value


class FileSink:
    """Append-oriented binary file with checked writes and seeks.

    All ``OSError`` failures and short writes surface as ``WriterIOError`` so
    the writer can abort the current call with a single exception type.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._fh: BinaryIO | None = None

    @property
    def closed(self) -> bool:
        return self._fh is None

    def open(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = self.path.open("w+b")
        except OSError as exc:
            raise WriterIOError(f"cannot open '{self.path}' for writing: {exc}") from exc
        logger.debug("Opened %s for writing", self.path)

    def tell(self) -> int:
        fh = self._require()
        try:
            return fh.tell()
        except OSError as exc:
            raise WriterIOError(f"tell failed on '{self.path}': {exc}") from exc

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        fh = self._require()
        try:
            return fh.seek(offset, whence)
        except OSError as exc:
            raise WriterIOError(f"seek to {offset} failed on '{self.path}': {exc}") from exc

    def write(self, data: bytes) -> None:
        fh = self._require()
        try:
            written = fh.write(data)
        except OSError as exc:
            raise WriterIOError(f"write failed on '{self.path}': {exc}") from exc
        if written is not None and written != len(data):
            raise WriterIOError(
                f"short write on '{self.path}': {written} of {len(data)} bytes"
            )

    def write_u32(self, value: int) -> None:
        self.write(_U32.pack(value))

    def write_chunk(self, fourcc: bytes | str, payload: bytes) -> int:
        """Write a framed chunk and return the offset of its header."""
        offset = self.tell()
        self.write(encode_chunk(fourcc, payload))
        return offset

    def flush(self) -> None:
        fh = self._require()
        try:
            fh.flush()
        except OSError as exc:
            raise WriterIOError(f"flush failed on '{self.path}': {exc}") from exc

    def write_u32_at(self, offset: int, value: int) -> None:
        """Patch a 32-bit field in place and return to the end of the file."""
        self.seek(offset)
        self.write_u32(value)
        self.seek(0, os.SEEK_END)

    def close(self) -> None:
        if self._fh is None:
            return
        fh, self._fh = self._fh, None
        try:
            fh.close()
        except OSError as exc:
            raise WriterIOError(f"close failed on '{self.path}': {exc}") from exc

    def _require(self) -> BinaryIO:
        if self._fh is None:
            raise WriterIOError(f"'{self.path}' is not open")
        return self._fh
