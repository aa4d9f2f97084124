"""Shared fixtures: small HEIC and JPEG files generated on the fly."""

from __future__ import annotations

import io
from collections.abc import Callable
from pathlib import Path

import pytest
from PIL import Image

import heic_convert  # noqa: F401  registers the HEIF opener/saver with Pillow

HEIC_SIZE = (64, 48)


def make_jpeg(
    size: tuple[int, int] = (32, 24),
    color: tuple[int, int, int] = (200, 100, 50),
    exif: dict[int, str | int] | None = None,
) -> bytes:
    """Encode a solid-colour JPEG, optionally with IFD0 EXIF tags."""
    buffer = io.BytesIO()
    image = Image.new("RGB", size, color)
    if exif:
        exif_data = Image.Exif()
        for tag, value in exif.items():
            exif_data[tag] = value
        image.save(buffer, format="JPEG", quality=90, exif=exif_data)
    else:
        image.save(buffer, format="JPEG", quality=90)
    return buffer.getvalue()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_jpeg()


@pytest.fixture
def exif_jpeg_bytes() -> bytes:
    return make_jpeg(exif={0x010F: "Apple", 0x0110: "iPhone 15 Pro", 0x0131: "17.1"})


@pytest.fixture
def write_heic() -> Callable[..., Path]:
    """Factory writing a solid-colour HEIC file and returning its path."""

    def _write(
        path: Path,
        color: tuple[int, ...] = (200, 100, 50),
        mode: str = "RGB",
        size: tuple[int, int] = HEIC_SIZE,
    ) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new(mode, size, color).save(path, format="HEIF", quality=95)
        return path

    return _write
