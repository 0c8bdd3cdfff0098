"""
Read-only inspection of existing AVI files.

``read_chunk_tree`` walks the RIFF/LIST nesting of a file without loading
payloads; ``AviInspector`` decodes the headers and index structures found in
that tree. Nothing in this module writes to disk.
"""

from __future__ import annotations

import logging
import os
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, List, TypeVar

from .errors import InspectError
from .headers import AudioFormat, MainHeader, OdmlHeader, StreamHeader, VideoFormat
from .index import (
    LegacyIndexEntry,
    StandardIndexPage,
    SuperIndex,
    decode_legacy_index,
)
from .riff import CHUNK_HEADER_SIZE, U32_MAX

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CONTAINER_IDS = (b"RIFF", b"LIST")
_HEADER = struct.Struct("<4sI")


@dataclass
class ChunkNode:
    fourcc: str
    offset: int
    size: int
    list_type: str | None = None
    children: List[ChunkNode] = field(default_factory=list)

    @property
    def is_list(self) -> bool:
        return self.list_type is not None

    @property
    def data_offset(self) -> int:
        return self.offset + CHUNK_HEADER_SIZE + (4 if self.is_list else 0)

    @property
    def data_size(self) -> int:
        return self.size - (4 if self.is_list else 0)

    def walk(self) -> Iterator[ChunkNode]:
        yield self
        for child in self.children:
            yield from child.walk()

    def find_list(self, list_type: str) -> ChunkNode | None:
        return next((c for c in self.children if c.list_type == list_type), None)

    def find_chunk(self, fourcc: str) -> ChunkNode | None:
        return next((c for c in self.children if c.fourcc == fourcc and not c.is_list), None)


def _text(raw: bytes) -> str:
    return raw.decode("ascii", errors="backslashreplace")


def read_chunk_tree(path: str | Path) -> ChunkNode:
    """Parse the chunk hierarchy of *path* and return the root RIFF node."""
    path = Path(path)
    try:
        with path.open("rb") as fh:
            file_size = os.fstat(fh.fileno()).st_size
            preamble = fh.read(12)
            if len(preamble) < 12 or preamble[:4] != b"RIFF":
                raise InspectError(f"'{path}' is not a RIFF file")
            _, riff_size = _HEADER.unpack_from(preamble)
            root = ChunkNode("RIFF", 0, riff_size, list_type=_text(preamble[8:12]))
            # A saturated RIFF size means the real extent is the file itself.
            end = file_size if riff_size == U32_MAX else min(CHUNK_HEADER_SIZE + riff_size, file_size)
            root.children = _read_children(fh, 12, end, file_size)
    except OSError as exc:
        raise InspectError(f"cannot read '{path}': {exc}") from exc
    return root


def _read_children(fh: BinaryIO, start: int, end: int, file_size: int) -> list[ChunkNode]:
    nodes: list[ChunkNode] = []
    pos = start
    while pos + CHUNK_HEADER_SIZE <= end:
        fh.seek(pos)
        header = fh.read(CHUNK_HEADER_SIZE)
        if len(header) < CHUNK_HEADER_SIZE:
            raise InspectError(f"unexpected EOF reading chunk header at {pos}")
        fourcc, size = _HEADER.unpack(header)
        chunk_end = pos + CHUNK_HEADER_SIZE + size
        if chunk_end > file_size:
            raise InspectError(
                f"chunk '{_text(fourcc)}' at {pos} claims {size} bytes past end of file"
            )
        node = ChunkNode(_text(fourcc), pos, size)
        if fourcc in _CONTAINER_IDS and size >= 4:
            node.list_type = _text(fh.read(4))
            node.children = _read_children(fh, pos + 12, min(chunk_end, end), file_size)
        nodes.append(node)
        pos = chunk_end + (size & 1)
    return nodes


class AviInspector:
    """Decoded view over an AVI file's headers and indexes."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.tree = read_chunk_tree(self.path)
        if self.tree.list_type != "AVI ":
            raise InspectError(f"'{self.path}' is a RIFF '{self.tree.list_type}' file, not AVI")

    def read_payload(self, node: ChunkNode) -> bytes:
        with self.path.open("rb") as fh:
            fh.seek(node.data_offset)
            data = fh.read(node.data_size)
        if len(data) != node.data_size:
            raise InspectError(f"unexpected EOF reading '{node.fourcc}' at {node.offset}")
        return data

    def read_chunk_at(self, offset: int) -> tuple[str, bytes]:
        with self.path.open("rb") as fh:
            fh.seek(offset)
            header = fh.read(CHUNK_HEADER_SIZE)
            if len(header) < CHUNK_HEADER_SIZE:
                raise InspectError(f"unexpected EOF reading chunk at {offset}")
            fourcc, size = _HEADER.unpack(header)
            data = fh.read(size)
        if len(data) != size:
            raise InspectError(f"unexpected EOF reading chunk at {offset}")
        return _text(fourcc), data

    def _hdrl(self) -> ChunkNode:
        hdrl = self.tree.find_list("hdrl")
        if hdrl is None:
            raise InspectError("missing 'hdrl' list")
        return hdrl

    def _decode(self, node: ChunkNode, decoder: Callable[[bytes], T]) -> T:
        payload = self.read_payload(node)
        try:
            return decoder(payload)
        except (ValueError, struct.error) as exc:
            raise InspectError(f"malformed '{node.fourcc}' chunk at {node.offset}: {exc}") from exc

    def main_header(self) -> MainHeader:
        avih = self._hdrl().find_chunk("avih")
        if avih is None:
            raise InspectError("missing 'avih' chunk")
        return self._decode(avih, MainHeader.unpack)

    def odml_header(self) -> OdmlHeader | None:
        odml = self._hdrl().find_list("odml")
        dmlh = odml.find_chunk("dmlh") if odml is not None else None
        if dmlh is None:
            return None
        return self._decode(dmlh, OdmlHeader.unpack)

    def stream_headers(self) -> list[tuple[StreamHeader, VideoFormat | AudioFormat | None]]:
        result = []
        for strl in self._hdrl().children:
            if strl.list_type != "strl":
                continue
            strh = strl.find_chunk("strh")
            if strh is None:
                raise InspectError(f"stream list at {strl.offset} has no 'strh'")
            header = self._decode(strh, StreamHeader.unpack)
            strf = strl.find_chunk("strf")
            fmt: VideoFormat | AudioFormat | None = None
            if strf is not None:
                decoder = VideoFormat.unpack if header.media_type == b"vids" else AudioFormat.unpack
                fmt = self._decode(strf, decoder)
            result.append((header, fmt))
        return result

    def movi(self) -> ChunkNode:
        movi = self.tree.find_list("movi")
        if movi is None:
            raise InspectError("missing 'movi' list")
        return movi

    def media_chunks(self) -> list[ChunkNode]:
        return [c for c in self.movi().children if c.fourcc[2:] in ("dc", "db", "wb")]

    def legacy_index(self) -> list[LegacyIndexEntry]:
        idx1 = self.tree.find_chunk("idx1")
        if idx1 is None:
            return []
        return self._decode(idx1, decode_legacy_index)

    def super_indexes(self) -> list[SuperIndex]:
        result = []
        for strl in self._hdrl().children:
            indx = strl.find_chunk("indx") if strl.list_type == "strl" else None
            if indx is not None:
                result.append(self._decode(indx, SuperIndex.unpack))
        return result

    def standard_index(self, offset: int) -> StandardIndexPage:
        fourcc, payload = self.read_chunk_at(offset)
        if not fourcc.startswith("ix"):
            raise InspectError(f"chunk at {offset} is '{fourcc}', not a standard index")
        try:
            return StandardIndexPage.unpack(payload)
        except (ValueError, struct.error) as exc:
            raise InspectError(f"malformed standard index at {offset}: {exc}") from exc

    def check_indexes(self) -> list[str]:
        """Return one message per index entry that does not point at a matching chunk.

        Every ``idx1`` entry and every standard-index page entry must land on a
        chunk header carrying the indexed chunk id and payload size.
        """
        targets: list[tuple[str, int, bytes, int]] = []
        movi_data = self.movi().offset + CHUNK_HEADER_SIZE
        for number, entry in enumerate(self.legacy_index()):
            targets.append((f"idx1[{number}]", movi_data + entry.offset, entry.chunk_id, entry.size))
        for super_index in self.super_indexes():
            for page_entry in super_index.entries:
                page = self.standard_index(page_entry.offset)
                for number, entry in enumerate(page.entries):
                    offset = page.base_offset + entry.offset - CHUNK_HEADER_SIZE
                    targets.append((f"page @{page_entry.offset}[{number}]", offset, page.chunk_id, entry.size))

        problems = []
        with self.path.open("rb") as fh:
            for label, offset, chunk_id, size in targets:
                header = b""
                if offset >= 0:
                    fh.seek(offset)
                    header = fh.read(CHUNK_HEADER_SIZE)
                if len(header) < CHUNK_HEADER_SIZE:
                    problems.append(f"{label}: offset {offset} is outside the file")
                    continue
                found_id, found_size = _HEADER.unpack(header)
                if found_id != chunk_id or found_size != size:
                    problems.append(
                        f"{label}: expected '{_text(chunk_id)}' ({size} bytes) at {offset}, "
                        f"found '{_text(found_id)}' ({found_size} bytes)"
                    )
        if problems:
            logger.warning("%s index entries of %s do not match their chunks", len(problems), self.path)
        return problems


def render_tree(node: ChunkNode, level: int = 0) -> list[str]:
    indent = "   " * level
    if node.is_list:
        lines = [f"{indent}{node.fourcc} '{node.list_type}'  size={node.size}  @{node.offset}"]
        for child in node.children:
            lines.extend(render_tree(child, level + 1))
        return lines
    return [f"{indent}{node.fourcc}  size={node.size}  @{node.offset}"]


def render_report(path: str | Path, *, max_media_chunks: int = 8) -> str:
    """Return a printable description of *path* for debugging."""
    inspector = AviInspector(path)
    tree = inspector.tree
    movi = inspector.movi()
    collapsed = ChunkNode(movi.fourcc, movi.offset, movi.size, movi.list_type, movi.children[:max_media_chunks])

    lines = [f"File: {inspector.path}", f"RIFF size: {tree.size}"]
    for child in tree.children:
        lines.extend(render_tree(collapsed if child is movi else child, 1))
    hidden = len(movi.children) - max_media_chunks
    if hidden > 0:
        lines.append(f"      ... {hidden} more chunks in 'movi'")

    main = inspector.main_header()
    lines.append("Main header:")
    for name in (
        "micro_sec_per_frame",
        "max_bytes_per_sec",
        "flags",
        "total_frames",
        "streams",
        "suggested_buffer_size",
        "width",
        "height",
    ):
        lines.append(f"   {name:<22}: {getattr(main, name)}")

    for number, (header, fmt) in enumerate(inspector.stream_headers()):
        lines.append(
            f"Stream {number}: type={_text(header.media_type)} codec={_text(header.codec)!r} "
            f"scale={header.time_scale} rate={header.data_rate} length={header.length}"
        )
        if fmt is not None:
            lines.append(f"   format: {fmt!r}"[:200])

    for super_index in inspector.super_indexes():
        lines.append(
            f"Super index {_text(super_index.chunk_id)}: "
            f"{len(super_index.entries)}/{super_index.capacity} pages"
        )
        for entry in super_index.entries:
            lines.append(f"   page @{entry.offset} size={entry.size} entries={entry.duration}")

    legacy = inspector.legacy_index()
    if legacy:
        keys = sum(1 for entry in legacy if entry.key_frame)
        lines.append(f"Legacy index: {len(legacy)} entries ({keys} key)")

    problems = inspector.check_indexes()
    if problems:
        lines.append(f"Index check: {len(problems)} mismatched entries")
        lines.extend(f"   {problem}" for problem in problems[:max_media_chunks])
    else:
        lines.append("Index check: ok")
    return "\n".join(lines)
