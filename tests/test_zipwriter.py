from __future__ import annotations

import io
import struct
import zipfile
from datetime import datetime

import pytest

from paper_exporter.zipwriter import build_zip, dos_date, dos_time

WHEN = datetime(2024, 3, 5, 14, 30, 42)


def test_dos_timestamp_packing() -> None:
    assert dos_time(WHEN) == (14 << 11) | (30 << 5) | 21
    assert dos_date(WHEN) == (44 << 9) | (3 << 5) | 5
    assert dos_date(datetime(1975, 1, 1)) >> 9 == 0


def test_archive_is_readable_by_zipfile() -> None:
    data = build_zip([("text.md", "# Hi\n"), ("assets/a.png", b"\x89PNG\x00\x01")], WHEN)
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.testzip() is None
        assert zf.namelist() == ["text.md", "assets/a.png"]
        assert zf.read("text.md") == b"# Hi\n"
        assert zf.read("assets/a.png") == b"\x89PNG\x00\x01"
        for info in zf.infolist():
            assert info.compress_type == zipfile.ZIP_STORED
            assert info.flag_bits == 0
            assert info.date_time == (2024, 3, 5, 14, 30, 42)


def test_local_header_layout() -> None:
    data = build_zip([("a.txt", b"abc")], WHEN)
    sig, version, flags, method = struct.unpack_from("<IHHH", data, 0)
    assert sig == 0x04034B50
    assert (version, flags, method) == (20, 0, 0)
    assert data[30:35] == b"a.txt"
    assert data[35:38] == b"abc"
    assert data[-22:-18] == struct.pack("<I", 0x06054B50)


def test_empty_archive() -> None:
    data = build_zip([], WHEN)
    assert len(data) == 22
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.namelist() == []


def test_too_many_entries() -> None:
    with pytest.raises(ValueError, match="too many entries"):
        build_zip([(f"f{i}", b"") for i in range(0x10000)], WHEN)
