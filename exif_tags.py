# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#

"""
EXIF Tag Walker.

Parses the TIFF structure carried in a JPEG APP1 "Exif" segment and lists
the tags it contains, following the Exif, GPS and Interoperability sub-IFDs
and the IFD chain (IFD0 -> IFD1 thumbnail directory).

TIFF layout:
- 2 bytes byte order ("II" little-endian, "MM" big-endian)
- 2 bytes magic (42)
- 4 bytes offset of IFD0
- each IFD: 2-byte entry count, 12-byte entries, 4-byte next-IFD offset
- each entry: tag (2), type (2), count (4), value or value offset (4)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Final

from PIL.ExifTags import GPSTAGS, TAGS

__all__: Final[list[str]] = [
    "EXIF_HEADER",
    "ExifFormatError",
    "ExifTag",
    "parse_exif_tags",
]

EXIF_HEADER: Final[bytes] = b"Exif\x00\x00"

# Byte size of one value for each TIFF field type
_TYPE_SIZES: Final[dict[int, int]] = {
    1: 1,  # BYTE
    2: 1,  # ASCII
    3: 2,  # SHORT
    4: 4,  # LONG
    5: 8,  # RATIONAL
    6: 1,  # SBYTE
    7: 1,  # UNDEFINED
    8: 2,  # SSHORT
    9: 4,  # SLONG
    10: 8,  # SRATIONAL
    11: 4,  # FLOAT
    12: 8,  # DOUBLE
    13: 4,  # IFD
}

# Pointer tags -> name of the directory they point to
_SUB_IFD_TAGS: Final[dict[int, str]] = {
    0x8769: "Exif",
    0x8825: "GPS",
    0xA005: "Interop",
}

_MAX_ENTRIES: Final[int] = 1000


class ExifFormatError(ValueError):
    """Raised when the TIFF structure inside an EXIF payload is malformed."""


@dataclass(frozen=True, slots=True)
class ExifTag:
    """One directory entry of an EXIF payload.

    Attributes:
        ifd: Directory the entry lives in ("IFD0", "Exif", "GPS", "Interop", "IFD1", ...)
        tag_id: Numeric TIFF tag
        name: Human-readable tag name, or Tag_0xNNNN when unknown
    """

    ifd: str
    tag_id: int
    name: str


def _tag_name(ifd: str, tag_id: int) -> str:
    table = GPSTAGS if ifd == "GPS" else TAGS
    return table.get(tag_id) or f"Tag_0x{tag_id:04x}"


def parse_exif_tags(payload: bytes) -> list[ExifTag]:
    """List every tag in an EXIF payload.

    Args:
        payload: APP1 segment data, with or without the "Exif\\0\\0" prefix

    Returns:
        Tags in directory order: IFD0 entries, then its sub-IFDs, then IFD1

    Raises:
        ExifFormatError: If the TIFF header or any directory is malformed
    """
    tiff = payload[len(EXIF_HEADER):] if payload.startswith(EXIF_HEADER) else payload

    if len(tiff) < 8:
        raise ExifFormatError(f"TIFF header truncated ({len(tiff)} bytes)")

    if tiff[:2] == b"II":
        fmt = "<"
    elif tiff[:2] == b"MM":
        fmt = ">"
    else:
        raise ExifFormatError(f"Unknown TIFF byte order {tiff[:2]!r}")

    magic, ifd0_offset = struct.unpack(f"{fmt}HI", tiff[2:8])
    if magic != 42:
        raise ExifFormatError(f"Bad TIFF magic number {magic}")

    tags: list[ExifTag] = []
    visited: set[int] = set()

    next_offset = _walk_ifd(tiff, fmt, ifd0_offset, "IFD0", tags, visited)
    index = 1
    while next_offset:
        next_offset = _walk_ifd(tiff, fmt, next_offset, f"IFD{index}", tags, visited)
        index += 1

    return tags


def _walk_ifd(
    tiff: bytes,
    fmt: str,
    offset: int,
    ifd: str,
    tags: list[ExifTag],
    visited: set[int],
) -> int:
    """Collect one directory (and its sub-IFDs); return the next-IFD offset."""
    if offset in visited:
        raise ExifFormatError(f"{ifd} at offset {offset} forms a loop")
    visited.add(offset)

    if offset < 8 or offset + 2 > len(tiff):
        raise ExifFormatError(f"{ifd} offset {offset} outside payload")

    num_entries = struct.unpack(f"{fmt}H", tiff[offset : offset + 2])[0]
    if num_entries > _MAX_ENTRIES:
        raise ExifFormatError(f"{ifd} claims {num_entries} entries")

    entries_end = offset + 2 + num_entries * 12
    if entries_end > len(tiff):
        raise ExifFormatError(f"{ifd} entries run past end of payload")

    children: list[tuple[str, int]] = []

    for i in range(num_entries):
        entry = offset + 2 + i * 12
        tag_id, type_id, count = struct.unpack(f"{fmt}HHI", tiff[entry : entry + 8])
        value_field = tiff[entry + 8 : entry + 12]

        # Unknown field types are skipped by readers; only the name is kept
        size = _TYPE_SIZES.get(type_id, 0) * count
        if size > 4:
            value_offset = struct.unpack(f"{fmt}I", value_field)[0]
            if value_offset + size > len(tiff):
                raise ExifFormatError(
                    f"{ifd} tag 0x{tag_id:04x} value at {value_offset} "
                    f"({size} bytes) outside payload"
                )

        tags.append(ExifTag(ifd=ifd, tag_id=tag_id, name=_tag_name(ifd, tag_id)))

        if tag_id in _SUB_IFD_TAGS and ifd != "GPS":
            children.append(
                (_SUB_IFD_TAGS[tag_id], struct.unpack(f"{fmt}I", value_field)[0])
            )

    for child_ifd, child_offset in children:
        _walk_ifd(tiff, fmt, child_offset, child_ifd, tags, visited)

    # Some writers drop the trailing next-IFD pointer on the last directory
    if entries_end + 4 > len(tiff):
        return 0
    return struct.unpack(f"{fmt}I", tiff[entries_end : entries_end + 4])[0]
