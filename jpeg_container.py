# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#

"""
JPEG Container Parser/Writer Module.

Splits a JPEG byte stream into its marker segments, removes or inspects the
APP1 "Exif" segment, and writes the stream back out byte-for-byte.
"""

from __future__ import annotations

import logging
import os
import shutil
import struct
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from exif_tags import EXIF_HEADER, ExifFormatError, parse_exif_tags

__all__: Final[list[str]] = [
    "JpegSegment",
    "ParseError",
    "parse_jpeg_segments",
    "write_jpeg_segments",
    "strip_metadata",
    "has_metadata",
    "extract_exif",
    "remove_exif_from_jpeg",
    "check_exif_in_jpeg",
    "write_bytes_atomic",
]

logger = logging.getLogger(__name__)

# Marker codes (second byte after 0xFF)
SOI: Final[int] = 0xD8
EOI: Final[int] = 0xD9
SOS: Final[int] = 0xDA
APP1: Final[int] = 0xE1
TEM: Final[int] = 0x01
RST0: Final[int] = 0xD0
RST7: Final[int] = 0xD7

# Pseudo-marker for bytes found after EOI (never a valid JPEG marker)
TRAILER: Final[int] = 0x00

# Markers that carry no length field
STANDALONE_MARKERS: Final[frozenset[int]] = frozenset(
    {SOI, EOI, TEM, *range(RST0, RST7 + 1)}
)

_MARKER_NAMES: Final[dict[int, str]] = {
    SOI: "SOI",
    EOI: "EOI",
    SOS: "SOS",
    TEM: "TEM",
    TRAILER: "TRAILER",
    0xC0: "SOF0",
    0xC1: "SOF1",
    0xC2: "SOF2",
    0xC4: "DHT",
    0xDB: "DQT",
    0xDD: "DRI",
    0xFE: "COM",
}


# Mode for newly created files (0o666 less the umask, as open() would give)
_UMASK: Final[int] = os.umask(0)
os.umask(_UMASK)
_NEW_FILE_MODE: Final[int] = 0o666 & ~_UMASK


class ParseError(ValueError):
    """Raised when a byte stream is not a well-formed JPEG container."""


@dataclass(frozen=True, slots=True)
class JpegSegment:
    """A single marker segment in a JPEG stream.

    Attributes:
        marker: Marker code, the byte following 0xFF (e.g. 0xE1 for APP1)
        data: Segment payload (excludes marker and 2-byte length field)
        scan: Entropy-coded bytes following an SOS header, or the raw
            trailing bytes of a TRAILER pseudo-segment
    """

    marker: int
    data: bytes = b""
    scan: bytes = b""

    @property
    def name(self) -> str:
        if 0xE0 <= self.marker <= 0xEF:
            return f"APP{self.marker - 0xE0}"
        if RST0 <= self.marker <= RST7:
            return f"RST{self.marker - RST0}"
        return _MARKER_NAMES.get(self.marker, f"0x{self.marker:02X}")

    @property
    def is_exif(self) -> bool:
        """True for an APP1 segment carrying an EXIF payload."""
        return self.marker == APP1 and self.data.startswith(EXIF_HEADER)

    def __repr__(self) -> str:
        if self.scan:
            return f"JpegSegment({self.name}, size={len(self.data)}, scan={len(self.scan)})"
        return f"JpegSegment({self.name}, size={len(self.data)})"


def _scan_end(data: bytes, pos: int) -> int:
    """Offset of the marker that terminates entropy-coded data starting at pos.

    0xFF00 (stuffed byte) and RSTn markers belong to the scan.
    """
    i = pos
    while True:
        i = data.find(b"\xff", i)
        if i == -1 or i + 1 >= len(data):
            raise ParseError(f"Entropy-coded data starting at offset {pos} is not terminated")
        following = data[i + 1]
        if following == 0x00 or RST0 <= following <= RST7:
            i += 2
            continue
        return i


def parse_jpeg_segments(data: bytes) -> list[JpegSegment]:
    """Parse a JPEG byte stream into its ordered list of segments.

    Segment structure:
    - 0xFF, marker (1 byte)
    - length (2 bytes, big-endian): payload size + 2, absent for
      SOI/EOI/RSTn/TEM
    - payload (length - 2 bytes)
    - after SOS only: entropy-coded data up to the next real marker

    Fill bytes (0xFF runs before a marker) are not preserved.

    Args:
        data: Complete JPEG file contents

    Returns:
        List of JpegSegment instances, SOI first; EOI last unless trailing
        bytes follow it, in which case a TRAILER pseudo-segment holds them

    Raises:
        ParseError: If the stream is not a valid JPEG container
    """
    if not data.startswith(bytes((0xFF, SOI))):
        raise ParseError("Not a JPEG stream: missing SOI marker")

    segments: list[JpegSegment] = [JpegSegment(marker=SOI)]
    pos = 2

    while True:
        if pos >= len(data):
            raise ParseError("Unexpected end of data before EOI marker")
        if data[pos] != 0xFF:
            raise ParseError(f"Expected marker at offset {pos}, found 0x{data[pos]:02X}")

        # Skip 0xFF fill bytes
        while pos < len(data) and data[pos] == 0xFF:
            pos += 1
        if pos >= len(data):
            raise ParseError("Unexpected end of data inside marker")

        marker = data[pos]
        pos += 1

        if marker in (TRAILER, SOI):
            raise ParseError(f"Invalid marker 0xFF{marker:02X} at offset {pos - 2}")

        if marker == EOI:
            segments.append(JpegSegment(marker=EOI))
            if pos < len(data):
                segments.append(JpegSegment(marker=TRAILER, scan=data[pos:]))
            return segments

        if marker in STANDALONE_MARKERS:
            segments.append(JpegSegment(marker=marker))
            continue

        if pos + 2 > len(data):
            raise ParseError(f"Segment 0xFF{marker:02X} truncated before length field")
        length = struct.unpack(">H", data[pos : pos + 2])[0]
        if length < 2 or pos + length > len(data):
            raise ParseError(
                f"Segment 0xFF{marker:02X} at offset {pos - 2} has invalid length {length}"
            )

        payload = data[pos + 2 : pos + length]
        pos += length

        if marker == SOS:
            end = _scan_end(data, pos)
            segments.append(JpegSegment(marker=SOS, data=payload, scan=data[pos:end]))
            pos = end
        else:
            segments.append(JpegSegment(marker=marker, data=payload))


def write_jpeg_segments(segments: list[JpegSegment]) -> bytes:
    """Serialize a list of segments back into a JPEG byte stream.

    Args:
        segments: List of JpegSegment instances, in file order

    Returns:
        JPEG bytes
    """
    out = bytearray()
    for segment in segments:
        if segment.marker == TRAILER:
            out += segment.scan
            continue

        out += bytes((0xFF, segment.marker))
        if segment.marker in STANDALONE_MARKERS:
            continue

        length = len(segment.data) + 2
        if length > 0xFFFF:
            raise ValueError(f"{segment.name} payload too large: {len(segment.data)} bytes")
        out += struct.pack(">H", length)
        out += segment.data
        out += segment.scan

    return bytes(out)


def strip_metadata(data: bytes) -> bytes:
    """Remove every APP1 "Exif" segment from a JPEG stream.

    All other segments, the entropy-coded data included, are written back
    unchanged and in their original order. A stream without EXIF comes back
    identical, so stripping twice equals stripping once.

    Raises:
        ParseError: If the stream is not a valid JPEG container
    """
    segments = parse_jpeg_segments(data)
    kept = [segment for segment in segments if not segment.is_exif]

    dropped = len(segments) - len(kept)
    if dropped:
        logger.debug("Dropped %d EXIF segment(s)", dropped)

    return write_jpeg_segments(kept)


def extract_exif(data: bytes) -> bytes | None:
    """Return the TIFF payload of the first EXIF segment, or None if absent.

    Raises:
        ParseError: If the stream is not a valid JPEG container
    """
    for segment in parse_jpeg_segments(data):
        if segment.is_exif:
            return segment.data[len(EXIF_HEADER):]
    return None


def has_metadata(data: bytes) -> tuple[bool, list[str]]:
    """Check a JPEG stream for EXIF and list the tag names it carries.

    Returns:
        (False, []) when there is no EXIF segment, else (True, tag names)

    Raises:
        ParseError: If the container or the EXIF tag structure is malformed
    """
    exif = extract_exif(data)
    if exif is None:
        return False, []

    try:
        tags = parse_exif_tags(exif)
    except ExifFormatError as e:
        raise ParseError(f"Malformed EXIF data: {e}") from e

    return True, [tag.name for tag in tags]


# ═══════════════════════════════════════════════════════════════════
#                        FILE OPERATIONS
# ═══════════════════════════════════════════════════════════════════


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write data to path through a hidden temp file and an atomic rename.

    The temp file lives next to the target under a unique name and is removed
    if anything fails, so the target is either untouched or fully written.
    An existing target keeps its permission bits; a new one gets the
    process umask defaults.
    """
    temp_file = tempfile.NamedTemporaryFile(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
    )
    temp_path = Path(temp_file.name)
    try:
        with temp_file as f:
            f.write(data)
        if path.exists():
            shutil.copymode(path, temp_path)
        else:
            os.chmod(temp_path, _NEW_FILE_MODE)
        os.replace(temp_path, path)
    finally:
        temp_path.unlink(missing_ok=True)


def remove_exif_from_jpeg(path: Path) -> None:
    """Strip EXIF from a JPEG file, rewriting it in place.

    Raises:
        OSError: If the file cannot be read or written
        ParseError: If the file is not a valid JPEG container
    """
    data = path.read_bytes()
    write_bytes_atomic(path, strip_metadata(data))


def check_exif_in_jpeg(path: Path) -> tuple[bool, list[str]]:
    """has_metadata() for a file on disk.

    Raises:
        OSError: If the file cannot be read
        ParseError: If the file or its EXIF structure is malformed
    """
    return has_metadata(path.read_bytes())


if __name__ == "__main__":
    import sys

    if len(sys.argv) < 2:
        print("Usage: jpeg_container.py <file.jpg>")
        sys.exit(1)

    jpeg_path = Path(sys.argv[1])
    segments = parse_jpeg_segments(jpeg_path.read_bytes())

    print(f"JPEG Container: {jpeg_path}")
    print(f"Total segments: {len(segments)}")
    print()

    for i, segment in enumerate(segments):
        print(f"  [{i}] {segment!r}")
