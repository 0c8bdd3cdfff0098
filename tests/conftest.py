from __future__ import annotations

import struct
from pathlib import Path

import pytest


def read_u32(path: Path, offset: int) -> int:
    with path.open("rb") as fh:
        fh.seek(offset)
        return struct.unpack("<I", fh.read(4))[0]


def make_frame(size: int, seed: int = 1) -> bytes:
    return bytes((seed + i) % 251 for i in range(size))


@pytest.fixture
def avi_path(tmp_path):
    return tmp_path / "out.avi"


@pytest.fixture
def small_pages(monkeypatch):
    """Shrink the index page window so paging triggers after a few hundred bytes."""
    from avimux import index

    monkeypatch.setattr(index, "MAX_RELATIVE_OFFSET", 1000)
    return 1000
