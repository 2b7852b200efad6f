"""Minimal in-memory ZIP writer (STORED entries only, no ZIP64)."""

from __future__ import annotations

import struct
import zlib
from datetime import datetime

_LOCAL_SIG = 0x04034B50
_CENTRAL_SIG = 0x02014B50
_EOCD_SIG = 0x06054B50
_VERSION = 20
_MAX_ENTRIES = 0xFFFF
_MAX_U32 = 0xFFFFFFFF


def dos_time(when: datetime) -> int:
    return (when.hour << 11) | (when.minute << 5) | (when.second // 2)


def dos_date(when: datetime) -> int:
    year = min(max(when.year, 1980), 2107)
    return ((year - 1980) << 9) | (when.month << 5) | when.day


def _check_u32(value: int, what: str) -> None:
    if value > _MAX_U32:
        raise ValueError(f"{what} exceeds 4 GiB; ZIP64 is not supported")


def build_zip(entries: list[tuple[str, bytes | str]], when: datetime | None = None) -> bytes:
    """Pack ``(name, data)`` pairs into a ZIP archive.

    String data is encoded as UTF-8. Every entry is stored uncompressed with
    the same DOS timestamp.
    """
    if len(entries) > _MAX_ENTRIES:
        raise ValueError(f"too many entries ({len(entries)}); at most {_MAX_ENTRIES} supported")

    when = when or datetime.now()
    mod_time = dos_time(when)
    mod_date = dos_date(when)

    chunks: list[bytes] = []
    central: list[bytes] = []
    offset = 0

    for name, data in entries:
        name_bytes = name.encode("utf-8")
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        crc = zlib.crc32(payload) & _MAX_U32
        size = len(payload)
        _check_u32(size, f"entry {name!r}")
        _check_u32(offset, "archive offset")

        local = struct.pack(
            "<IHHHHHIIIHH",
            _LOCAL_SIG,
            _VERSION,
            0,  # flags
            0,  # method: stored
            mod_time,
            mod_date,
            crc,
            size,
            size,
            len(name_bytes),
            0,  # extra length
        )
        chunks.append(local)
        chunks.append(name_bytes)
        chunks.append(payload)

        central.append(
            struct.pack(
                "<IHHHHHHIIIHHHHHII",
                _CENTRAL_SIG,
                _VERSION,  # made by
                _VERSION,  # needed to extract
                0,
                0,
                mod_time,
                mod_date,
                crc,
                size,
                size,
                len(name_bytes),
                0,  # extra length
                0,  # comment length
                0,  # disk number
                0,  # internal attributes
                0,  # external attributes
                offset,
            )
            + name_bytes
        )
        offset += len(local) + len(name_bytes) + size

    central_bytes = b"".join(central)
    _check_u32(offset, "central directory offset")
    _check_u32(len(central_bytes), "central directory size")

    eocd = struct.pack(
        "<IHHHHIIH",
        _EOCD_SIG,
        0,
        0,
        len(entries),
        len(entries),
        len(central_bytes),
        offset,
        0,
    )
    return b"".join(chunks) + central_bytes + eocd
