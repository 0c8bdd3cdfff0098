"""
Session statistics for a finished AVI file.

``AviWriter.close()`` returns a ``MuxStats`` snapshot; the CLI can persist it as
JSON for diagnostics.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from pathlib import Path


@dataclass
class MuxStats:
    path: str
    index_style: str
    video_frames: int = 0
    key_frames: int = 0
    audio_chunks: int = 0
    audio_bytes: int = 0
    index_pages: int = 0
    indexed_records: int = 0
    file_size: int = 0

    @property
    def delta_frames(self) -> int:
        return self.video_frames - self.key_frames

    @property
    def key_frame_ratio(self) -> float:
        if self.video_frames == 0:
            return 0.0
        return round(self.key_frames / self.video_frames, 6)


def summarise_stats(stats: MuxStats) -> dict[str, float]:
    chunks = stats.video_frames + stats.audio_chunks
    return {
        "chunks": chunks,
        "key_frame_ratio": stats.key_frame_ratio,
        "avg_chunk_bytes": (
            round(stats.file_size / chunks, 3) if chunks else 0.0
        ),
        "index_coverage": (
            round(stats.indexed_records / chunks, 6) if chunks else 1.0
        ),
    }


def emit_stats_json(stats: MuxStats, path: str | Path | None = None) -> dict:
    payload = asdict(stats)
    payload["delta_frames"] = stats.delta_frames
    document = {"file": payload, "summary": summarise_stats(stats)}

    if path is not None:
        output_path = Path(path)
        output_path.write_text(json.dumps(document, indent=2), encoding="utf-8")

    return document
