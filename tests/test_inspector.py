from __future__ import annotations

import struct

import pytest

from avimux.errors import InspectError
from avimux.headers import AudioConfig
from avimux.inspector import AviInspector, read_chunk_tree, render_report
from avimux.writer import open_writer

from conftest import make_frame


@pytest.fixture
def sample_avi(avi_path):
    audio = AudioConfig(channels=1, bits=16, samples_per_second=8000)
    with open_writer(avi_path, 16, 16, "MJPG", 25, audio) as writer:
        for i in range(12):
            writer.append_video_frame(make_frame(90 + i, seed=i), key_frame=i % 4 == 0)
            writer.append_audio(make_frame(640, seed=i))
    return avi_path


def test_chunk_tree_layout(sample_avi):
    tree = read_chunk_tree(sample_avi)
    assert tree.fourcc == "RIFF"
    assert tree.list_type == "AVI "
    assert [c.list_type or c.fourcc for c in tree.children] == ["hdrl", "movi", "ix00", "ix01"]

    hdrl = tree.find_list("hdrl")
    assert hdrl.offset == 12
    assert [c.list_type or c.fourcc for c in hdrl.children] == ["avih", "strl", "strl", "odml"]
    strl = hdrl.children[1]
    assert [c.fourcc for c in strl.children] == ["strh", "strf", "indx"]
    assert [n.fourcc for n in tree.walk()].count("strh") == 2


def test_report_mentions_structures(sample_avi):
    report = render_report(sample_avi, max_media_chunks=4)
    assert "Main header:" in report
    assert "total_frames" in report
    assert "Stream 0: type=vids codec='MJPG'" in report
    assert "Stream 1: type=auds" in report
    assert "Super index 00dc: 1/256 pages" in report
    assert "... 20 more chunks in 'movi'" in report


def test_report_for_legacy_index(avi_path):
    with open_writer(avi_path, 16, 16, "MJPG", 25, index_style="basic") as writer:
        writer.append_video_frame(b"\x00" * 8, key_frame=True)
        writer.append_video_frame(b"\x00" * 8, key_frame=False)
    report = render_report(avi_path)
    assert "Legacy index: 2 entries (1 key)" in report
    assert "Super index" not in report


def test_rejects_non_riff(tmp_path):
    path = tmp_path / "bogus.avi"
    path.write_bytes(b"RIFX" + b"\0" * 20)
    with pytest.raises(InspectError, match="not a RIFF file"):
        read_chunk_tree(path)


def test_rejects_wave_files(tmp_path):
    path = tmp_path / "tone.avi"
    path.write_bytes(b"RIFF" + (4).to_bytes(4, "little") + b"WAVE")
    with pytest.raises(InspectError, match="not AVI"):
        AviInspector(path)


def test_truncated_chunk_is_reported(sample_avi):
    data = sample_avi.read_bytes()
    sample_avi.write_bytes(data[:200])
    with pytest.raises(InspectError, match="past end of file"):
        read_chunk_tree(sample_avi)


def test_standard_index_requires_ix_chunk(sample_avi):
    inspector = AviInspector(sample_avi)
    with pytest.raises(InspectError):
        inspector.standard_index(inspector.movi().children[0].offset)


def _patch_u32(path, offset, value):
    with path.open("r+b") as fh:
        fh.seek(offset)
        fh.write(struct.pack("<I", value))


def test_written_indexes_point_at_their_chunks(sample_avi):
    assert AviInspector(sample_avi).check_indexes() == []
    assert "Index check: ok" in render_report(sample_avi)


def test_legacy_entry_with_wrong_size_is_reported(avi_path):
    with open_writer(avi_path, 16, 16, "MJPG", 25, index_style="basic") as writer:
        writer.append_video_frame(b"\x00" * 8)
        writer.append_video_frame(b"\x00" * 8)
    idx1 = read_chunk_tree(avi_path).find_chunk("idx1")
    # size field of the second entry
    _patch_u32(avi_path, idx1.data_offset + 16 + 12, 9)

    problems = AviInspector(avi_path).check_indexes()
    assert len(problems) == 1
    assert problems[0].startswith("idx1[1]: expected '00dc' (9 bytes)")
    assert "Index check: 1 mismatched entries" in render_report(avi_path)


def test_standard_index_entry_with_wrong_offset_is_reported(sample_avi):
    inspector = AviInspector(sample_avi)
    page_offset = inspector.super_indexes()[0].entries[0].offset
    page = inspector.standard_index(page_offset)
    # offset field of the first entry, past the chunk and page headers
    _patch_u32(sample_avi, page_offset + 8 + 24, page.entries[0].offset + 2)

    problems = AviInspector(sample_avi).check_indexes()
    assert len(problems) == 1
    assert problems[0].startswith(f"page @{page_offset}[0]")


def test_malformed_super_index_raises_inspect_error(sample_avi):
    indx = read_chunk_tree(sample_avi).find_list("hdrl").children[1].find_chunk("indx")
    with sample_avi.open("r+b") as fh:
        fh.seek(indx.data_offset)
        fh.write(struct.pack("<H", 3))
    with pytest.raises(InspectError, match="malformed 'indx'"):
        AviInspector(sample_avi).super_indexes()


def test_truncated_main_header_raises_inspect_error(tmp_path):
    avih = b"avih" + struct.pack("<I", 8) + b"\0" * 8
    hdrl = b"LIST" + struct.pack("<I", 4 + len(avih)) + b"hdrl" + avih
    path = tmp_path / "short.avi"
    path.write_bytes(b"RIFF" + struct.pack("<I", 4 + len(hdrl)) + b"AVI " + hdrl)
    with pytest.raises(InspectError, match="malformed 'avih'"):
        AviInspector(path).main_header()
