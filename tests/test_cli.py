from __future__ import annotations

import io
import json
import wave
from contextlib import redirect_stdout

import pytest

from avimux import cli
from avimux.inspector import AviInspector

from conftest import make_frame


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for key in ("AVIMUX_FPS", "AVIMUX_INDEX_STYLE", "AVIMUX_DRY_RUN", "AVIMUX_JSON_LOG"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def frame_files(tmp_path):
    paths = []
    for i in range(6):
        path = tmp_path / f"frame{i:03d}.jpg"
        path.write_bytes(make_frame(200 + i, seed=i))
        paths.append(path)
    return paths


def _write_wav(path, seconds: float = 0.25, rate: int = 8000) -> None:
    with wave.open(str(path), "wb") as writer:
        writer.setnchannels(1)
        writer.setsampwidth(2)
        writer.setframerate(rate)
        writer.writeframes(b"\x01\x00" * int(rate * seconds))


def _run(argv):
    buffer = io.StringIO()
    with redirect_stdout(buffer):
        exit_code = cli.main(argv)
    return exit_code, buffer.getvalue()


def test_cli_requires_output_and_frames():
    exit_code, output = _run([])
    assert exit_code == 2
    assert "usage:" in output


def test_cli_dry_run_lists_frames(tmp_path, frame_files):
    out = tmp_path / "plan.avi"
    exit_code, output = _run(
        ["--dry-run", "--keyframe-interval", "3", str(out), *map(str, frame_files)]
    )
    assert exit_code == 0
    assert "Dry run mode" in output
    assert "Frames: 6 total" in output
    assert "4. frame003.jpg | bytes=203 | key=True" in output
    assert not out.exists()


def test_cli_rejects_invalid_fps(tmp_path, frame_files):
    exit_code, output = _run(["--fps", "0.5", str(tmp_path / "x.avi"), str(frame_files[0])])
    assert exit_code == 2
    assert "invalid configuration" in output


def test_cli_muxes_frames_and_audio(tmp_path, frame_files):
    wav_path = tmp_path / "tone.wav"
    _write_wav(wav_path)
    out = tmp_path / "movie.avi"
    stats_path = tmp_path / "stats.json"

    exit_code, output = _run(
        [
            "--fourcc",
            "MJPG",
            "--fps",
            "24",
            "--size",
            "64x48",
            "--keyframe-interval",
            "2",
            "--audio",
            str(wav_path),
            "--stats-json",
            str(stats_path),
            str(out),
            *map(str, frame_files),
        ]
    )

    assert exit_code == 0
    assert "Wrote 6 frames" in output

    inspector = AviInspector(out)
    assert inspector.main_header().total_frames == 6
    assert inspector.main_header().width == 64
    (video, _), (audio, audio_fmt) = inspector.stream_headers()
    assert video.codec == b"MJPG"
    assert audio_fmt.sample_rate == 8000
    assert audio.length == 2 * 2000

    video_super = inspector.super_indexes()[0]
    page = inspector.standard_index(video_super.entries[0].offset)
    assert [e.key_frame for e in page.entries] == [True, False] * 3

    document = json.loads(stats_path.read_text(encoding="utf-8"))
    assert document["file"]["video_frames"] == 6
    assert document["file"]["key_frames"] == 3
    assert document["summary"]["index_coverage"] == 1.0


def test_cli_basic_index_and_inspect(tmp_path, frame_files):
    out = tmp_path / "legacy.avi"
    exit_code, _ = _run(["--index-style", "basic", str(out), *map(str, frame_files)])
    assert exit_code == 0

    exit_code, report = _run(["--inspect", str(out)])
    assert exit_code == 0
    assert "idx1" in report
    assert "Legacy index: 6 entries (6 key)" in report


def test_cli_inspect_failure(tmp_path):
    bogus = tmp_path / "bogus.avi"
    bogus.write_bytes(b"not an avi file at all")
    exit_code, output = _run(["--inspect", str(bogus)])
    assert exit_code == 3
    assert "cannot inspect" in output


def test_cli_missing_frame_file(tmp_path):
    exit_code, output = _run([str(tmp_path / "out.avi"), str(tmp_path / "missing.jpg")])
    assert exit_code == 3
    assert "could not read input" in output


def test_cli_reports_index_capacity(tmp_path, frame_files, small_pages):
    out = tmp_path / "full.avi"
    exit_code, output = _run(
        ["--super-index-capacity", "1", str(out), *map(str, frame_files)]
    )
    assert exit_code == 4
    assert "super_index_capacity" in output
