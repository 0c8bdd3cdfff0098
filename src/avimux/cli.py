"""
Command-line interface for avimux.

The CLI muxes a sequence of already-encoded frame files, one video frame per
file, plus an optional PCM WAV soundtrack into a single AVI file. It can also
print the chunk structure of an existing AVI file for debugging.
"""

from __future__ import annotations

import argparse
import logging
import wave
from pathlib import Path
from typing import Optional, Sequence

from .config import MuxConfig, load_config
from .errors import (
    AviIndexError,
    AvimuxError,
    InspectError,
    InvalidArgumentError,
    WriterIOError,
)
from .headers import AudioConfig
from .index import IndexStyle
from .inspector import render_report
from .logging_utils import EventLogger, create_event_logger
from .stats import MuxStats, emit_stats_json
from .writer import open_writer

logger = logging.getLogger(__name__)

__version__ = "0.1.0"


def create_parser() -> argparse.ArgumentParser:
    """Create the top-level argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="avimux",
        description=(
            "Assemble encoded video frames (one file per frame) and an optional\n"
            "PCM WAV soundtrack into an AVI file with an OpenDML index."
        ),
    )
    parser.add_argument(
        "output",
        nargs="?",
        help="Path of the AVI file to create.",
    )
    parser.add_argument(
        "frames",
        nargs="*",
        metavar="FRAME",
        help="Encoded frame files, in presentation order.",
    )
    parser.add_argument(
        "--inspect",
        metavar="AVI",
        help="Print the chunk structure of an existing AVI file and exit.",
    )
    parser.add_argument(
        "--audio",
        metavar="WAV",
        help="PCM WAV file interleaved with the video as the audio stream.",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to an optional configuration file (avimux.toml).",
    )
    parser.add_argument(
        "--size",
        metavar="WxH",
        help="Frame size, e.g. 640x480 (default 320x240).",
    )
    parser.add_argument(
        "--fourcc",
        help="Codec FourCC of the frames (default I420).",
    )
    parser.add_argument(
        "--fps",
        type=float,
        help="Frames per second, at least 1 (default 30).",
    )
    parser.add_argument(
        "--keyframe-interval",
        dest="keyframe_interval",
        type=int,
        help="Mark every Nth frame as a key frame (default 1: all frames).",
    )
    parser.add_argument(
        "--index-style",
        dest="index_style",
        choices=[style.value for style in IndexStyle],
        help="Index layout: OpenDML super index (default) or legacy idx1.",
    )
    parser.add_argument(
        "--super-index-capacity",
        dest="super_index_capacity",
        type=int,
        help="Index pages reserved per stream in the header (default 256).",
    )
    parser.add_argument(
        "--stats-json",
        dest="stats_json",
        metavar="PATH",
        help="Write session statistics as JSON.",
    )
    parser.add_argument(
        "--json-log",
        action="store_true",
        help="Emit lifecycle events as JSON lines.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the planned file layout without writing anything.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"avimux {__version__}",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (repeatable).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-essential log output.",
    )
    return parser


def _configure_logging(verbosity: int, quiet: bool) -> None:
    """Configure root logger based on verbosity flags."""
    if quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
        if verbosity == 1:
            level = logging.INFO
        elif verbosity >= 2:
            level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logger.debug("Logging configured (level=%s)", logging.getLevelName(level))


def _print_plan(output: Path, frames: Sequence[Path], config: MuxConfig, audio: str | None) -> None:
    print("Dry run mode. No file written.")
    print(
        f"Output: {output} | Size: {config.width}x{config.height} | "
        f"FourCC: {config.fourcc} | FPS: {config.fps} | Index: {config.index_style}"
    )
    print(f"Frames: {len(frames)} total (keyframe_interval={config.keyframe_interval})")
    for idx, frame in enumerate(frames, start=1):
        size = frame.stat().st_size if frame.exists() else "missing"
        key = (idx - 1) % config.keyframe_interval == 0
        print(f"  {idx}. {frame.name} | bytes={size} | key={key}")
    if audio:
        print(f"Audio: {audio}")


def _audio_config(reader: wave.Wave_read) -> AudioConfig:
    return AudioConfig(
        channels=reader.getnchannels(),
        bits=reader.getsampwidth() * 8,
        samples_per_second=reader.getframerate(),
    )


def mux_files(
    output: str | Path,
    frames: Sequence[Path],
    config: MuxConfig,
    *,
    audio_path: str | Path | None = None,
    event_logger: EventLogger | None = None,
) -> MuxStats:
    """Write *frames* (and optionally a WAV soundtrack) to *output*."""
    reader = wave.open(str(audio_path), "rb") if audio_path else None
    try:
        audio = _audio_config(reader) if reader is not None else None
        samples_per_frame = (
            max(1, round(reader.getframerate() / config.fps)) if reader is not None else 0
        )
        with open_writer(
            output,
            config.width,
            config.height,
            config.fourcc,
            config.fps,
            audio,
            index_style=config.index_style,
            super_index_capacity=config.super_index_capacity,
            event_logger=event_logger,
        ) as writer:
            for number, frame in enumerate(frames):
                writer.append_video_frame(
                    frame.read_bytes(),
                    key_frame=number % config.keyframe_interval == 0,
                )
                if reader is not None:
                    samples = reader.readframes(samples_per_frame)
                    if samples:
                        writer.append_audio(samples)
            if reader is not None:
                remainder = reader.readframes(reader.getnframes())
                if remainder:
                    writer.append_audio(remainder)
            return writer.close()
    finally:
        if reader is not None:
            reader.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point invoked by the ``avimux`` console script."""
    parser = create_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose, args.quiet)

    if args.inspect:
        try:
            print(render_report(args.inspect))
        except InspectError as exc:
            logger.error("Inspection failed: %s", exc)
            print(f"avimux: cannot inspect '{args.inspect}' - {exc}")
            return 3
        return 0

    try:
        config = load_config(args)
    except ValueError as exc:
        print(f"avimux: invalid configuration - {exc}")
        return 2
    logger.debug("Loaded configuration: %s", config)

    if not args.output or not args.frames:
        parser.print_help()
        return 2

    output = Path(args.output)
    frames = [Path(frame) for frame in args.frames]

    if config.dry_run:
        _print_plan(output, frames, config, args.audio)
        return 0

    event_logger = create_event_logger(logging.getLogger("avimux"), config.log_format)
    try:
        stats = mux_files(
            output,
            frames,
            config,
            audio_path=args.audio,
            event_logger=event_logger,
        )
    except InvalidArgumentError as exc:
        logger.error("Invalid input: %s", exc)
        print(f"avimux: {exc}")
        return 2
    except WriterIOError as exc:
        logger.error("Write failure: %s", exc)
        print(f"avimux: could not write '{output}' - {exc}")
        return 3
    except (OSError, wave.Error) as exc:
        logger.error("Input failure: %s", exc)
        print(f"avimux: could not read input - {exc}")
        return 3
    except AviIndexError as exc:
        logger.error("Index failure: %s", exc)
        print(f"avimux: {exc}")
        return 4
    except AvimuxError as exc:
        logger.exception("Unexpected writer failure")
        print(f"avimux: {exc}")
        return 1

    if args.stats_json:
        emit_stats_json(stats, args.stats_json)

    logger.info(
        "Mux finished | frames=%s | audio_bytes=%s | pages=%s | size=%s",
        stats.video_frames,
        stats.audio_bytes,
        stats.index_pages,
        stats.file_size,
    )
    print(f"Wrote {stats.video_frames} frames ({stats.file_size} bytes) to {output}")
    return 0


if __name__ == "__main__":  # pragma: no cover - allows `python cli.py`
    raise SystemExit(main())
