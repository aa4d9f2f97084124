# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
#

"""
Raster Normalization Module.

Turns a decoded image, in whichever pixel layout the decoder produced, into a
canonical 8-bit RGBA raster that is fully opaque and ready for JPEG encoding.
Transparent pixels are composited over a white background.

Supported layouts:
    - PremultipliedRaster: 8-bit RGBA with associated alpha (Pillow "RGBa")
    - StraightRaster: 8-bit RGBA with straight alpha (Pillow "RGBA")
    - YCbCrRaster: 8-bit luma plane + subsampled chroma planes, always opaque
    - GenericRaster: anything else, as 16-bit straight RGBA

Any other object exposing ``bounds`` and ``rgba64()`` is handled through the
generic path.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Final, Protocol, Self

import numpy as np
from numpy.typing import NDArray
from PIL import Image

__all__: Final[list[str]] = [
    "Bounds",
    "CanonicalRaster",
    "ChromaSubsampling",
    "GenericRaster",
    "PixelSource",
    "PremultipliedRaster",
    "StraightRaster",
    "YCbCrRaster",
    "from_pillow",
    "normalize",
]

OPAQUE_8: Final[int] = 0xFF
OPAQUE_16: Final[int] = 0xFFFF

# Pillow modes holding single-channel 16-bit samples
_GRAY16_MODES: Final[frozenset[str]] = frozenset({"I;16", "I;16L", "I;16B", "I;16N"})


# ═══════════════════════════════════════════════════════════════════
#                        GEOMETRY
# ═══════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Bounds:
    """Pixel rectangle, min inclusive and max exclusive on both axes."""

    min_x: int
    min_y: int
    max_x: int
    max_y: int

    def __post_init__(self) -> None:
        if self.max_x < self.min_x or self.max_y < self.min_y:
            raise ValueError(f"Inverted bounds: {self}")

    @classmethod
    def of_size(cls, width: int, height: int) -> Self:
        """Bounds anchored at the origin."""
        return cls(0, 0, width, height)

    @property
    def width(self) -> int:
        return self.max_x - self.min_x

    @property
    def height(self) -> int:
        return self.max_y - self.min_y

    @property
    def shape(self) -> tuple[int, int]:
        """Array shape (rows, columns) for a plane covering these bounds."""
        return self.height, self.width

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    def contains(self, x: int, y: int) -> bool:
        return self.min_x <= x < self.max_x and self.min_y <= y < self.max_y


def _require_array(
    name: str, array: NDArray, shape: tuple[int, ...], dtype: type[np.generic]
) -> None:
    if array.dtype != dtype:
        raise TypeError(f"{name} must be {np.dtype(dtype).name}, got {array.dtype}")
    if array.shape != shape:
        raise ValueError(f"{name} has shape {array.shape}, expected {shape}")


# ═══════════════════════════════════════════════════════════════════
#                        PIXEL SOURCES
# ═══════════════════════════════════════════════════════════════════


class PixelSource(Protocol):
    """Anything that can answer the universal colour query.

    ``rgba64()`` returns straight (non-premultiplied) RGBA scaled to 16 bits,
    shape ``(height, width, 4)``, dtype ``uint16``.
    """

    @property
    def bounds(self) -> Bounds: ...

    def rgba64(self) -> NDArray[np.uint16]: ...


class _PointQuery:
    """Single-pixel access on top of ``rgba64()``."""

    __slots__ = ()

    def at(self, x: int, y: int) -> tuple[int, int, int, int]:
        """Return 16-bit (r, g, b, a) at absolute coordinates (x, y)."""
        bounds: Bounds = self.bounds  # type: ignore[attr-defined]
        if not bounds.contains(x, y):
            raise IndexError(f"Pixel ({x}, {y}) outside {bounds}")
        r, g, b, a = self.rgba64()[y - bounds.min_y, x - bounds.min_x]  # type: ignore[attr-defined]
        return int(r), int(g), int(b), int(a)


@dataclass(frozen=True, slots=True, eq=False)
class PremultipliedRaster(_PointQuery):
    """8-bit RGBA, colour channels already scaled by alpha."""

    bounds: Bounds
    pix: NDArray[np.uint8]

    def __post_init__(self) -> None:
        _require_array("pix", self.pix, (*self.bounds.shape, 4), np.uint8)

    def rgba64(self) -> NDArray[np.uint16]:
        pix = self.pix.astype(np.uint32)
        alpha = pix[..., 3:]
        straight = np.where(alpha > 0, pix[..., :3] * OPAQUE_16 // np.maximum(alpha, 1), 0)
        straight = np.minimum(straight, OPAQUE_16)
        return np.concatenate([straight, alpha * 0x101], axis=-1).astype(np.uint16)


@dataclass(frozen=True, slots=True, eq=False)
class StraightRaster(_PointQuery):
    """8-bit RGBA, colour independent of the separately stored alpha."""

    bounds: Bounds
    pix: NDArray[np.uint8]

    def __post_init__(self) -> None:
        _require_array("pix", self.pix, (*self.bounds.shape, 4), np.uint8)

    def rgba64(self) -> NDArray[np.uint16]:
        return self.pix.astype(np.uint16) * 0x101


class ChromaSubsampling(StrEnum):
    """Chroma plane layouts, named after their J:a:b ratio."""

    S444 = "4:4:4"
    S422 = "4:2:2"
    S440 = "4:4:0"
    S420 = "4:2:0"

    @property
    def factors(self) -> tuple[int, int]:
        """Horizontal and vertical chroma decimation."""
        return _SUBSAMPLING_FACTORS[self]


_SUBSAMPLING_FACTORS: Final[dict[ChromaSubsampling, tuple[int, int]]] = {
    ChromaSubsampling.S444: (1, 1),
    ChromaSubsampling.S422: (2, 1),
    ChromaSubsampling.S440: (1, 2),
    ChromaSubsampling.S420: (2, 2),
}


@dataclass(frozen=True, slots=True, eq=False)
class YCbCrRaster(_PointQuery):
    """Full-range JFIF Y'CbCr planes with implicit full opacity.

    Chroma plane sample (i, j) covers the luma samples whose absolute
    coordinates divide down to it: ``x // h - min_x // h`` and likewise for y.
    """

    bounds: Bounds
    y: NDArray[np.uint8]
    cb: NDArray[np.uint8]
    cr: NDArray[np.uint8]
    subsampling: ChromaSubsampling = ChromaSubsampling.S444

    def __post_init__(self) -> None:
        _require_array("y", self.y, self.bounds.shape, np.uint8)
        chroma_shape = self._chroma_shape()
        _require_array("cb", self.cb, chroma_shape, np.uint8)
        _require_array("cr", self.cr, chroma_shape, np.uint8)

    def _chroma_shape(self) -> tuple[int, int]:
        h, v = self.subsampling.factors
        b = self.bounds
        if b.is_empty:
            return b.shape
        return (
            (b.max_y + v - 1) // v - b.min_y // v,
            (b.max_x + h - 1) // h - b.min_x // h,
        )

    def _upsample(self, plane: NDArray[np.uint8]) -> NDArray[np.uint8]:
        h, v = self.subsampling.factors
        b = self.bounds
        cols = np.arange(b.min_x, b.max_x) // h - b.min_x // h
        rows = np.arange(b.min_y, b.max_y) // v - b.min_y // v
        return plane[np.ix_(rows, cols)]

    def rgba64(self) -> NDArray[np.uint16]:
        """Fixed-point Y'CbCr to RGB, 16-bit result per channel.

        Y is widened by 0x10101 so a neutral grey v maps to exactly v * 0x101.
        Channel values are clamped to 24 bits before dropping the low byte.
        """
        yy = self.y.astype(np.int64) * 0x10101
        cb = self._upsample(self.cb).astype(np.int64) - 128
        cr = self._upsample(self.cr).astype(np.int64) - 128

        r = yy + 91881 * cr
        g = yy - 22554 * cb - 46802 * cr
        b = yy + 116130 * cb

        rgb = np.stack([r, g, b], axis=-1)
        rgb = np.clip(rgb, 0, 0xFFFFFF) >> 8
        alpha = np.full((*self.bounds.shape, 1), OPAQUE_16, dtype=np.int64)
        return np.concatenate([rgb, alpha], axis=-1).astype(np.uint16)


@dataclass(frozen=True, slots=True, eq=False)
class GenericRaster(_PointQuery):
    """Raster known only through its 16-bit straight RGBA samples."""

    bounds: Bounds
    rgba: NDArray[np.uint16]

    def __post_init__(self) -> None:
        _require_array("rgba", self.rgba, (*self.bounds.shape, 4), np.uint16)

    def rgba64(self) -> NDArray[np.uint16]:
        return self.rgba


@dataclass(frozen=True, slots=True, eq=False)
class CanonicalRaster(_PointQuery):
    """Opaque 8-bit RGBA raster; alpha is 255 everywhere."""

    bounds: Bounds
    pix: NDArray[np.uint8]

    def __post_init__(self) -> None:
        _require_array("pix", self.pix, (*self.bounds.shape, 4), np.uint8)

    def rgba64(self) -> NDArray[np.uint16]:
        return self.pix.astype(np.uint16) * 0x101

    def to_pillow(self) -> Image.Image:
        """RGB Pillow image of the colour channels."""
        return Image.fromarray(np.ascontiguousarray(self.pix[..., :3]))


# ═══════════════════════════════════════════════════════════════════
#                        PILLOW ADAPTER
# ═══════════════════════════════════════════════════════════════════


def from_pillow(image: Image.Image) -> PremultipliedRaster | StraightRaster | YCbCrRaster | GenericRaster:
    """Wrap a decoded Pillow image in the matching raster variant."""
    bounds = Bounds.of_size(image.width, image.height)

    if image.mode == "RGBa":
        return PremultipliedRaster(bounds, _pixels(image, 4))
    if image.mode == "RGBA":
        return StraightRaster(bounds, _pixels(image, 4))
    if image.mode == "YCbCr":
        planes = _pixels(image, 3)
        return YCbCrRaster(
            bounds,
            np.ascontiguousarray(planes[..., 0]),
            np.ascontiguousarray(planes[..., 1]),
            np.ascontiguousarray(planes[..., 2]),
        )
    if image.mode in _GRAY16_MODES:
        # Keep the full 16-bit precision instead of Pillow's 8-bit convert()
        gray = np.asarray(image).astype(np.uint16).reshape(bounds.shape)
        alpha = np.full(bounds.shape, OPAQUE_16, dtype=np.uint16)
        return GenericRaster(bounds, np.stack([gray, gray, gray, alpha], axis=-1))

    rgba = _pixels(image.convert("RGBA"), 4).astype(np.uint16) * 0x101
    return GenericRaster(bounds, rgba)


def _pixels(image: Image.Image, channels: int) -> NDArray[np.uint8]:
    return np.array(image, dtype=np.uint8).reshape(image.height, image.width, channels)


# ═══════════════════════════════════════════════════════════════════
#                        NORMALIZATION
# ═══════════════════════════════════════════════════════════════════


def normalize(raster: PixelSource) -> CanonicalRaster:
    """Produce the canonical opaque raster for any pixel source.

    Dispatches on the raster variant; unknown sources take the generic path.
    The result has the same bounds as the input.
    """
    if isinstance(raster, CanonicalRaster):
        pix = raster.pix.copy()
    elif isinstance(raster, PremultipliedRaster):
        pix = _copy_premultiplied(raster.pix)
    elif isinstance(raster, StraightRaster):
        pix = _composite_straight(raster.pix)
    elif isinstance(raster, YCbCrRaster):
        pix = _drop_alpha(raster.rgba64())
    else:
        pix = _composite_generic(raster.rgba64())
    return CanonicalRaster(raster.bounds, pix)


def _copy_premultiplied(pix: NDArray[np.uint8]) -> NDArray[np.uint8]:
    # Colour bytes are taken as final; the layout already matches.
    out = pix.copy()
    out[..., 3] = OPAQUE_8
    return out


def _composite_straight(pix: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """Premultiply with truncating division, then add the white complement.

    The two integer steps round differently from a direct blend onto white,
    so they must stay separate: (255, 0, 0, 128) becomes (255, 127, 127).
    """
    wide = pix.astype(np.uint16)
    rgb = wide[..., :3]
    alpha = wide[..., 3:]

    premultiplied = rgb * alpha // OPAQUE_8
    composited = premultiplied + (OPAQUE_8 - alpha)
    rgb = np.where(alpha < OPAQUE_8, composited, rgb)

    out = np.empty(pix.shape, dtype=np.uint8)
    out[..., :3] = rgb
    out[..., 3] = OPAQUE_8
    return out


def _drop_alpha(rgba64: NDArray[np.uint16]) -> NDArray[np.uint8]:
    out = (rgba64 >> 8).astype(np.uint8)
    out[..., 3] = OPAQUE_8
    return out


def _composite_generic(rgba64: NDArray[np.uint16]) -> NDArray[np.uint8]:
    """Linear blend over white in floating point, rounding half up.

    Fully opaque pixels are copied untouched to avoid float drift.
    """
    rgba8 = (rgba64 >> 8).astype(np.uint8)
    color = rgba8[..., :3].astype(np.float64)
    alpha8 = rgba8[..., 3:]
    alpha = alpha8.astype(np.float64) / 255.0

    blended = np.floor(color * alpha + 255.0 * (1.0 - alpha) + 0.5)
    blended = np.clip(blended, 0.0, 255.0)
    rgb = np.where(alpha8 < OPAQUE_8, blended, color)

    out = np.empty(rgba8.shape, dtype=np.uint8)
    out[..., :3] = rgb.astype(np.uint8)
    out[..., 3] = OPAQUE_8
    return out
