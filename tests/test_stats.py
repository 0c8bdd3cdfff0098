import json

import pytest

from avimux.stats import MuxStats, emit_stats_json, summarise_stats


def _stats(**overrides):
    values = dict(
        path="out.avi",
        index_style="opendml",
        video_frames=10,
        key_frames=4,
        audio_chunks=10,
        audio_bytes=8000,
        index_pages=2,
        indexed_records=20,
        file_size=40_000,
    )
    values.update(overrides)
    return MuxStats(**values)


def test_summarise_stats():
    summary = summarise_stats(_stats())
    assert summary["chunks"] == 20
    assert summary["key_frame_ratio"] == pytest.approx(0.4)
    assert summary["avg_chunk_bytes"] == pytest.approx(2000.0)
    assert summary["index_coverage"] == pytest.approx(1.0)


def test_empty_file_summary():
    stats = _stats(video_frames=0, key_frames=0, audio_chunks=0, indexed_records=0)
    summary = summarise_stats(stats)
    assert summary["key_frame_ratio"] == 0.0
    assert summary["avg_chunk_bytes"] == 0.0
    assert summary["index_coverage"] == 1.0


def test_emit_stats_json_writes_file(tmp_path):
    target = tmp_path / "stats.json"
    document = emit_stats_json(_stats(), target)
    assert document["file"]["delta_frames"] == 6
    on_disk = json.loads(target.read_text(encoding="utf-8"))
    assert on_disk == document
    assert on_disk["file"]["index_style"] == "opendml"
