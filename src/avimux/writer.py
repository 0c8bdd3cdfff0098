"""
Streaming AVI writer.

The writer owns the output file for its whole lifetime. ``open()`` writes the
RIFF preamble with placeholder sizes, ``append_video_frame()`` and
``append_audio()`` stream chunks straight to disk, and ``close()`` flushes the
index, then seeks back to patch the ``movi`` size, rewrite the header list in
full and store the final RIFF size.

Typical use::

    with open_writer("out.avi", 320, 240, "I420", 30.0) as writer:
        for frame in frames:
            writer.append_video_frame(frame, key_frame=True)
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import AvimuxError, InvalidArgumentError, WriterStateError
from .headers import (
    AVIF_HASINDEX,
    AudioConfig,
    FileHeader,
    MainHeader,
    OdmlHeader,
    StreamDescriptor,
    bits_per_pixel_for,
    build_audio_descriptor,
    build_video_descriptor,
    check_fourcc,
    frame_buffer_size,
    frame_interval_us,
)
from .index import DEFAULT_SUPER_INDEX_CAPACITY, IndexBuilder, IndexStyle, StreamKind
from .logging_utils import EventLogger, create_event_logger
from .riff import (
    FileSink,
    as_fourcc,
    chunk_header,
    clamp_u32,
    encode_chunk,
    encode_list,
    pad_size,
    padded_length,
)
from .stats import MuxStats

logger = logging.getLogger(__name__)

RIFF_SIZE_OFFSET = 4


class WriterState(str, Enum):
    NEW = "new"
    OPEN = "open"
    CLOSED = "closed"


class AviWriter:
    """Writes one video stream and an optional PCM audio stream to an AVI file."""

    def __init__(
        self,
        *,
        index_style: IndexStyle | str = IndexStyle.OPENDML,
        super_index_capacity: int = DEFAULT_SUPER_INDEX_CAPACITY,
        event_logger: EventLogger | None = None,
    ) -> None:
        try:
            self.index_style = IndexStyle(index_style)
        except ValueError as exc:
            raise InvalidArgumentError(f"unknown index style: {index_style!r}") from exc
        if super_index_capacity < 1:
            raise InvalidArgumentError("super_index_capacity must be positive")
        self.super_index_capacity = super_index_capacity
        self.event_logger = event_logger or create_event_logger(logger, "human")

        self._state = WriterState.NEW
        self._sink: FileSink | None = None
        self._header = FileHeader()
        self._odml = OdmlHeader()
        self._index: IndexBuilder | None = None
        self._fps: float = 0.0
        self._bits_per_pixel = 24
        self._header_offset = 0
        self._header_length = 0
        self._movi_size_offset = 0
        self._movi_offset = 0
        self._key_frames = 0
        self._audio_chunks = 0

    # ------------------------------------------------------------------ #
    # Lifecycle

    def open(
        self,
        path: str | Path,
        width: int,
        height: int,
        fourcc: str | bytes,
        fps: float,
        audio: AudioConfig | None = None,
        *,
        palette: bytes = b"",
    ) -> None:
        """Create *path* and write the preamble with placeholder sizes."""
        if self._state is not WriterState.NEW:
            raise WriterStateError(f"writer cannot be opened in state '{self._state.value}'")

        interval = frame_interval_us(fps)
        if width <= 0 or height <= 0:
            raise InvalidArgumentError(f"frame size must be positive, got {width}x{height}")
        if len(palette) % 4 != 0:
            raise InvalidArgumentError("palette length must be a multiple of 4 (RGBQUAD entries)")

        codec = as_fourcc(fourcc)
        self._warn_on_fourcc(fourcc)
        self._fps = fps
        self._bits_per_pixel = bits_per_pixel_for(codec)
        if (width * height * self._bits_per_pixel) % 8 != 0:
            logger.warning(
                "Video buffer size not on an 8 bit boundary: %sx%s:%s",
                width,
                height,
                self._bits_per_pixel,
            )
        size = frame_buffer_size(width, height, self._bits_per_pixel)

        self._header = FileHeader(
            main=MainHeader(
                micro_sec_per_frame=interval,
                max_bytes_per_sec=width * height * 3 * (int(fps) + 1),
                flags=AVIF_HASINDEX,
                streams=2 if audio is not None else 1,
                suggested_buffer_size=size,
                width=width,
                height=height,
            ),
            video=build_video_descriptor(
                width, height, codec, interval, self._bits_per_pixel, bytes(palette)
            ),
            audio=build_audio_descriptor(audio) if audio is not None else None,
        )
        self._odml = OdmlHeader()
        self._index = IndexBuilder(
            self.index_style,
            super_index_capacity=self.super_index_capacity,
            has_audio=audio is not None,
        )

        self._sink = FileSink(path)
        self._sink.open()
        self._state = WriterState.OPEN
        try:
            self._write_preamble()
        except AvimuxError:
            self._state = WriterState.CLOSED
            self._release()
            raise

        self.event_logger.log(
            "writer_open",
            path=self._sink.path,
            width=width,
            height=height,
            fourcc=codec,
            fps=fps,
            streams=self._header.main.streams,
            index_style=self.index_style,
        )

    def append_video_frame(self, data: bytes, key_frame: bool = True) -> None:
        """Append one encoded video frame as a ``00dc`` chunk."""
        sink, index = self._require_open()
        if not data:
            raise InvalidArgumentError("video frame must not be empty")

        if index.needs_flush(sink.tell()):
            self._flush_pages(reason="overflow")

        position = sink.tell()
        self._header.video.header.length += 1
        index.record(StreamKind.VIDEO, position, len(data), key_frame)
        self._write_payload(sink, StreamKind.VIDEO.chunk_id, data)
        if key_frame:
            self._key_frames += 1
        logger.debug("Video frame %s at %s (%s bytes)", self.video_frames, position, len(data))

    def append_audio(self, data: bytes) -> None:
        """Append a block of PCM samples as a ``01wb`` chunk."""
        sink, index = self._require_open()
        if self._header.audio is None:
            raise WriterStateError("audio stream was not enabled at open()")
        if not data:
            raise InvalidArgumentError("audio chunk must not be empty")

        # Audio never pages the index on its own; only video appends check the
        # relative-offset boundary.
        position = sink.tell()
        index.record(StreamKind.AUDIO, position, len(data), True)
        self._write_payload(sink, StreamKind.AUDIO.chunk_id, data)
        self._header.audio.header.length += padded_length(len(data))
        self._audio_chunks += 1

    def close(self) -> MuxStats:
        """Flush the index and patch every size field; the writer is done afterwards."""
        sink, index = self._require_open()
        try:
            self._finalize(sink, index)
            stats = self._build_stats(sink, index)
        finally:
            self._state = WriterState.CLOSED
            self._release()

        self.event_logger.log(
            "writer_close",
            path=stats.path,
            video_frames=stats.video_frames,
            audio_bytes=stats.audio_bytes,
            index_pages=stats.index_pages,
            file_size=stats.file_size,
        )
        return stats

    def abort(self) -> None:
        """Release the file without finalizing it; sizes and index stay unpatched."""
        if self._state is not WriterState.OPEN:
            return
        logger.warning("Aborting %s; the file is left unfinalized", self.path)
        self._state = WriterState.CLOSED
        self._release()

    # ------------------------------------------------------------------ #
    # Header mutation

    def set_frame_rate(self, fps: float) -> None:
        self._require_open()
        interval = frame_interval_us(fps)
        self._fps = fps
        self._header.main.micro_sec_per_frame = interval
        self._header.video.header.time_scale = interval
        self._header.video.header.data_rate = 1_000_000

    def set_codec(self, fourcc: str | bytes) -> None:
        self._require_open()
        self._warn_on_fourcc(fourcc)
        codec = as_fourcc(fourcc)
        # bits_per_pixel stays as derived at open()
        self._header.video.header.codec = codec
        self._header.video.video_format.compression = codec

    def set_size(self, width: int, height: int) -> None:
        self._require_open()
        if width <= 0 or height <= 0:
            raise InvalidArgumentError(f"frame size must be positive, got {width}x{height}")
        size = frame_buffer_size(width, height, self._bits_per_pixel)
        main = self._header.main
        main.max_bytes_per_sec = size
        main.width = width
        main.height = height
        main.suggested_buffer_size = size
        video = self._header.video
        video.header.suggested_buffer_size = size
        video.header.frame_right = width
        video.header.frame_bottom = height
        video.video_format.width = width
        video.video_format.height = height
        video.video_format.image_size = size

    # ------------------------------------------------------------------ #
    # Introspection

    @property
    def path(self) -> Path | None:
        return self._sink.path if self._sink is not None else None

    @property
    def state(self) -> WriterState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is WriterState.OPEN

    @property
    def audio_enabled(self) -> bool:
        return self._header.audio is not None

    @property
    def video_frames(self) -> int:
        return self._header.video.header.length if self._header.video else 0

    @property
    def audio_bytes(self) -> int:
        return self._header.audio.header.length if self._header.audio else 0

    @property
    def bits_per_pixel(self) -> int:
        return self._bits_per_pixel

    @property
    def frame_interval_us(self) -> int:
        return self._header.main.micro_sec_per_frame

    @property
    def header(self) -> FileHeader:
        return self._header

    @property
    def index(self) -> IndexBuilder | None:
        return self._index

    def __enter__(self) -> AviWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._state is not WriterState.OPEN:
            return
        if exc_type is None:
            self.close()
        else:
            self.abort()

    # ------------------------------------------------------------------ #
    # Internal helpers

    def _require_open(self) -> tuple[FileSink, IndexBuilder]:
        if self._state is not WriterState.OPEN or self._sink is None or self._index is None:
            raise WriterStateError(f"writer is not open (state '{self._state.value}')")
        return self._sink, self._index

    def _warn_on_fourcc(self, fourcc: str | bytes) -> None:
        if check_fourcc(fourcc):
            return
        logger.warning("Given fourcc does not seem to be valid: %r", fourcc)
        self.event_logger.log("fourcc_warning", level="warning", fourcc=as_fourcc(fourcc))

    def _write_preamble(self) -> None:
        sink = self._sink
        sink.write(b"RIFF")
        sink.write_u32(0)
        sink.write(b"AVI ")

        self._header_offset = sink.tell()
        header = self._encode_header()
        self._header_length = len(header)
        sink.write(header)

        sink.write(b"LIST")
        self._movi_size_offset = sink.tell()
        sink.write_u32(0)
        self._movi_offset = sink.tell()
        sink.write(b"movi")

    def _encode_header(self) -> bytes:
        paged = self._index.paged
        parts = [encode_chunk(b"avih", self._header.main.pack())]
        for kind, descriptor in self._descriptors():
            children = [
                encode_chunk(b"strh", descriptor.header.pack()),
                encode_chunk(b"strf", descriptor.format_bytes()),
            ]
            if paged:
                children.append(self._index.super_index_chunk(kind))
            parts.append(encode_list(b"strl", *children))
        if paged:
            parts.append(encode_list(b"odml", encode_chunk(b"dmlh", self._odml.pack())))
        return encode_list(b"hdrl", *parts)

    def _descriptors(self) -> list[tuple[StreamKind, StreamDescriptor]]:
        pairs = [(StreamKind.VIDEO, self._header.video)]
        if self._header.audio is not None:
            pairs.append((StreamKind.AUDIO, self._header.audio))
        return pairs

    @staticmethod
    def _write_payload(sink: FileSink, chunk_id: bytes, data: bytes) -> None:
        sink.write(chunk_header(chunk_id, len(data)))
        sink.write(data)
        padding = pad_size(len(data))
        if padding:
            sink.write(b"\0" * padding)

    def _flush_pages(self, *, reason: str) -> None:
        sink = self._sink
        position = sink.tell()
        pages = self._index.flush_pages(sink)
        sink.flush()
        self.event_logger.log("index_flush", reason=reason, position=position, pages=len(pages))

    def _finalize(self, sink: FileSink, index: IndexBuilder) -> None:
        end = sink.tell()
        sink.write_u32_at(
            self._movi_size_offset,
            clamp_u32(end - self._movi_size_offset - 4, "movi LIST size"),
        )

        if index.paged:
            self._flush_pages(reason="close")
        else:
            index.write_legacy_index(sink, self._movi_offset)

        total_frames = self._header.video.header.length
        self._header.main.total_frames = total_frames
        self._odml.total_frames = total_frames

        header = self._encode_header()
        if len(header) != self._header_length:
            raise AvimuxError(
                f"header grew from {self._header_length} to {len(header)} bytes; cannot rewrite in place"
            )
        sink.seek(self._header_offset)
        sink.write(header)
        sink.seek(0, os.SEEK_END)

        file_size = sink.tell()
        sink.write_u32_at(RIFF_SIZE_OFFSET, clamp_u32(file_size - 8, "RIFF size"))

    def _build_stats(self, sink: FileSink, index: IndexBuilder) -> MuxStats:
        return MuxStats(
            path=str(sink.path),
            index_style=self.index_style.value,
            video_frames=self.video_frames,
            key_frames=self._key_frames,
            audio_chunks=self._audio_chunks,
            audio_bytes=self.audio_bytes,
            index_pages=index.pages_written,
            indexed_records=index.records_indexed,
            file_size=sink.tell(),
        )

    def _release(self) -> None:
        if self._sink is not None and not self._sink.closed:
            self._sink.close()


def open_writer(
    path: str | Path,
    width: int,
    height: int,
    fourcc: str | bytes,
    fps: float,
    audio: AudioConfig | None = None,
    *,
    palette: bytes = b"",
    **options: Any,
) -> AviWriter:
    """Create an ``AviWriter`` and open *path* in one step."""
    writer = AviWriter(**options)
    writer.open(path, width, height, fourcc, fps, audio, palette=palette)
    return writer
