"""
Index builder for the ``movi`` payload.

Placement records accumulate as chunks are appended and are serialized either
as a single legacy ``idx1`` chunk, or as OpenDML standard-index pages
(``ix00``/``ix01``) referenced from one super index (``indx``) per stream. In
OpenDML mode records are paged out whenever the video offset relative to the
current index base would no longer fit a signed 32-bit field, which keeps the
live record list bounded for arbitrarily long recordings.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Iterable, List

from .errors import IndexCapacityError, IndexOverflowError
from .riff import CHUNK_HEADER_SIZE, U32_MAX, FileSink, encode_chunk

logger = logging.getLogger(__name__)

MAX_RELATIVE_OFFSET = 0x7FFFFFFF
DEFAULT_SUPER_INDEX_CAPACITY = 256

AVI_INDEX_OF_INDEXES = 0x00
AVI_INDEX_OF_CHUNKS = 0x01
AVIIF_KEYFRAME = 0x00000010
DELTA_FRAME_BIT = 0x80000000


class IndexStyle(str, Enum):
    OPENDML = "opendml"
    BASIC = "basic"


class StreamKind(Enum):
    VIDEO = 0
    AUDIO = 1

    @property
    def chunk_id(self) -> bytes:
        return b"00dc" if self is StreamKind.VIDEO else b"01wb"

    @property
    def page_id(self) -> bytes:
        return b"ix%02d" % self.value

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class PlacementRecord:
    """Where one appended chunk landed; *offset* is the chunk header position."""

    offset: int
    length: int
    kind: StreamKind
    key_frame: bool = True


@dataclass(frozen=True)
class SuperIndexEntry:
    STRUCT: ClassVar[struct.Struct] = struct.Struct("<QII")

    offset: int
    size: int
    duration: int

    def pack(self) -> bytes:
        return self.STRUCT.pack(self.offset, self.size, self.duration)


@dataclass
class SuperIndex:
    """An ``indx`` chunk with a fixed number of reserved entry slots."""

    HEADER: ClassVar[struct.Struct] = struct.Struct("<HBBI4s12x")

    chunk_id: bytes
    capacity: int = DEFAULT_SUPER_INDEX_CAPACITY
    entries: List[SuperIndexEntry] = field(default_factory=list)

    @property
    def chunk_size(self) -> int:
        return CHUNK_HEADER_SIZE + self.HEADER.size + self.capacity * SuperIndexEntry.STRUCT.size

    def add(self, entry: SuperIndexEntry, stream: str = "") -> None:
        if len(self.entries) >= self.capacity:
            raise IndexCapacityError(stream=stream or self.chunk_id.decode("ascii"), capacity=self.capacity)
        self.entries.append(entry)

    def pack(self) -> bytes:
        header = self.HEADER.pack(4, 0, AVI_INDEX_OF_INDEXES, len(self.entries), self.chunk_id)
        body = b"".join(entry.pack() for entry in self.entries)
        unused = (self.capacity - len(self.entries)) * SuperIndexEntry.STRUCT.size
        return header + body + b"\0" * unused

    @classmethod
    def unpack(cls, payload: bytes) -> SuperIndex:
        longs_per_entry, _, index_type, in_use, chunk_id = cls.HEADER.unpack_from(payload)
        if index_type != AVI_INDEX_OF_INDEXES or longs_per_entry != 4:
            raise ValueError(f"not a super index (type={index_type}, longs={longs_per_entry})")
        entry_size = SuperIndexEntry.STRUCT.size
        capacity = (len(payload) - cls.HEADER.size) // entry_size
        entries = [
            SuperIndexEntry(*SuperIndexEntry.STRUCT.unpack_from(payload, cls.HEADER.size + i * entry_size))
            for i in range(in_use)
        ]
        return cls(chunk_id=chunk_id, capacity=capacity, entries=entries)


@dataclass(frozen=True)
class StandardIndexEntry:
    offset: int
    size: int
    key_frame: bool


@dataclass
class StandardIndexPage:
    """A decoded ``ix##`` page; entry offsets are relative to *base_offset*."""

    HEADER: ClassVar[struct.Struct] = struct.Struct("<HBBI4sQI")
    ENTRY: ClassVar[struct.Struct] = struct.Struct("<II")

    chunk_id: bytes
    base_offset: int
    entries: List[StandardIndexEntry] = field(default_factory=list)

    @classmethod
    def encode(cls, chunk_id: bytes, base_offset: int, records: Iterable[PlacementRecord]) -> bytes:
        body = bytearray()
        count = 0
        for record in records:
            relative = record.offset + CHUNK_HEADER_SIZE - base_offset
            if not 0 <= relative <= U32_MAX:
                raise IndexOverflowError(
                    f"chunk at {record.offset} is {relative} bytes from index base {base_offset}"
                )
            if record.length >= DELTA_FRAME_BIT:
                raise IndexOverflowError(f"chunk of {record.length} bytes is too large to index")
            size = record.length if record.key_frame else record.length | DELTA_FRAME_BIT
            body += cls.ENTRY.pack(relative, size)
            count += 1
        header = cls.HEADER.pack(2, 0, AVI_INDEX_OF_CHUNKS, count, chunk_id, base_offset, 0)
        return header + bytes(body)

    @classmethod
    def unpack(cls, payload: bytes) -> StandardIndexPage:
        longs_per_entry, _, index_type, in_use, chunk_id, base_offset, _ = cls.HEADER.unpack_from(payload)
        if index_type != AVI_INDEX_OF_CHUNKS or longs_per_entry != 2:
            raise ValueError(f"not a standard index (type={index_type}, longs={longs_per_entry})")
        entries = []
        for i in range(in_use):
            offset, size = cls.ENTRY.unpack_from(payload, cls.HEADER.size + i * cls.ENTRY.size)
            entries.append(
                StandardIndexEntry(
                    offset=offset,
                    size=size & ~DELTA_FRAME_BIT,
                    key_frame=not size & DELTA_FRAME_BIT,
                )
            )
        return cls(chunk_id=chunk_id, base_offset=base_offset, entries=entries)


@dataclass(frozen=True)
class LegacyIndexEntry:
    STRUCT: ClassVar[struct.Struct] = struct.Struct("<4sIII")

    chunk_id: bytes
    flags: int
    offset: int
    size: int

    @property
    def key_frame(self) -> bool:
        return bool(self.flags & AVIIF_KEYFRAME)


def decode_legacy_index(payload: bytes) -> list[LegacyIndexEntry]:
    size = LegacyIndexEntry.STRUCT.size
    return [
        LegacyIndexEntry(*LegacyIndexEntry.STRUCT.unpack_from(payload, pos))
        for pos in range(0, len(payload) - size + 1, size)
    ]


class IndexBuilder:
    """Accumulates placement records and writes them out as index chunks."""

    def __init__(
        self,
        style: IndexStyle | str = IndexStyle.OPENDML,
        *,
        super_index_capacity: int = DEFAULT_SUPER_INDEX_CAPACITY,
        has_audio: bool = False,
    ) -> None:
        self.style = IndexStyle(style)
        self.kinds = [StreamKind.VIDEO, StreamKind.AUDIO] if has_audio else [StreamKind.VIDEO]
        self.records: list[PlacementRecord] = []
        self._bases: dict[StreamKind, int | None] = {kind: None for kind in self.kinds}
        self.super_indexes: dict[StreamKind, SuperIndex] = {
            kind: SuperIndex(chunk_id=kind.chunk_id, capacity=super_index_capacity)
            for kind in self.kinds
        }
        self.pages_written = 0
        self.records_indexed = 0

    @property
    def paged(self) -> bool:
        return self.style is IndexStyle.OPENDML

    def base(self, kind: StreamKind) -> int | None:
        return self._bases[kind]

    def needs_flush(self, position: int) -> bool:
        """True when a video chunk at *position* would overflow the current page."""
        if not self.paged:
            return False
        base = self._bases[StreamKind.VIDEO]
        if base is None:
            return False
        return position - base > MAX_RELATIVE_OFFSET

    def record(self, kind: StreamKind, offset: int, length: int, key_frame: bool = True) -> PlacementRecord:
        if self._bases[kind] is None:
            self._bases[kind] = offset
        placement = PlacementRecord(offset=offset, length=length, kind=kind, key_frame=key_frame)
        self.records.append(placement)
        return placement

    def flush_pages(self, sink: FileSink) -> list[int]:
        """Write one standard-index page per stream with pending records.

        Returns the file offsets of the pages written. Records and stream bases
        are cleared afterwards.
        """
        offsets: list[int] = []
        for kind in self.kinds:
            pending = [r for r in self.records if r.kind is kind]
            if not pending:
                continue
            base = self._bases[kind]
            payload = StandardIndexPage.encode(kind.chunk_id, base, pending)
            super_index = self.super_indexes[kind]
            entry = SuperIndexEntry(
                offset=sink.tell(),
                size=CHUNK_HEADER_SIZE + len(payload),
                duration=len(pending),
            )
            super_index.add(entry, stream=kind.label)
            sink.write_chunk(kind.page_id, payload)
            offsets.append(entry.offset)
            self.pages_written += 1
            self.records_indexed += len(pending)
            logger.debug(
                "Wrote %s page at %s (base=%s, entries=%s)",
                kind.page_id.decode("ascii"),
                entry.offset,
                base,
                len(pending),
            )
        self.reset()
        return offsets

    def write_legacy_index(self, sink: FileSink, movi_offset: int) -> int:
        """Write every pending record as one ``idx1`` chunk; return its offset."""
        body = bytearray()
        for record in self.records:
            relative = record.offset - movi_offset
            if not 0 <= relative <= U32_MAX:
                raise IndexOverflowError(
                    f"chunk at {record.offset} is beyond the reach of a legacy index"
                )
            flags = AVIIF_KEYFRAME if record.key_frame else 0
            body += LegacyIndexEntry.STRUCT.pack(record.kind.chunk_id, flags, relative, record.length)
        offset = sink.write_chunk(b"idx1", bytes(body))
        self.records_indexed += len(self.records)
        logger.debug("Wrote idx1 at %s with %s entries", offset, len(self.records))
        self.reset()
        return offset

    def super_index_chunk(self, kind: StreamKind) -> bytes:
        return encode_chunk(b"indx", self.super_indexes[kind].pack())

    def reset(self) -> None:
        self.records.clear()
        for kind in self._bases:
            self._bases[kind] = None
