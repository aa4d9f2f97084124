"""Tests for raster normalization."""

from __future__ import annotations

import numpy as np
import pytest
from PIL import Image

from raster import (
    Bounds,
    CanonicalRaster,
    ChromaSubsampling,
    GenericRaster,
    PremultipliedRaster,
    StraightRaster,
    YCbCrRaster,
    from_pillow,
    normalize,
)


def straight(*pixels: tuple[int, int, int, int]) -> StraightRaster:
    pix = np.array([pixels], dtype=np.uint8)
    return StraightRaster(Bounds.of_size(len(pixels), 1), pix)


def generic(*pixels: tuple[int, int, int, int]) -> GenericRaster:
    rgba = np.array([pixels], dtype=np.uint16)
    return GenericRaster(Bounds.of_size(len(pixels), 1), rgba)


def ycbcr(
    y: list[list[int]],
    cb: list[list[int]],
    cr: list[list[int]],
    subsampling: ChromaSubsampling = ChromaSubsampling.S444,
    bounds: Bounds | None = None,
) -> YCbCrRaster:
    y_plane = np.array(y, dtype=np.uint8)
    return YCbCrRaster(
        bounds or Bounds.of_size(y_plane.shape[1], y_plane.shape[0]),
        y_plane,
        np.array(cb, dtype=np.uint8),
        np.array(cr, dtype=np.uint8),
        subsampling,
    )


def colors(raster: CanonicalRaster) -> list[tuple[int, ...]]:
    return [tuple(int(c) for c in px) for px in raster.pix.reshape(-1, 4)]


# ═══════════════════════════════════════════════════════════════════
#                        STRAIGHT ALPHA
# ═══════════════════════════════════════════════════════════════════


def test_straight_half_transparent_red_uses_two_step_integer_math() -> None:
    result = normalize(straight((255, 0, 0, 128)))
    assert colors(result) == [(255, 127, 127, 255)]


def test_straight_fully_transparent_collapses_to_white() -> None:
    result = normalize(straight((0, 0, 0, 0), (12, 200, 99, 0), (255, 255, 255, 0)))
    assert colors(result) == [(255, 255, 255, 255)] * 3


def test_straight_fully_opaque_is_unchanged() -> None:
    pixels = [(0, 0, 0, 255), (1, 2, 3, 255), (200, 100, 50, 255)]
    result = normalize(straight(*pixels))
    assert colors(result) == pixels


def test_straight_blend_moves_toward_color_as_alpha_grows() -> None:
    color = np.array([30, 140, 250])
    previous = None
    for alpha in range(0, 255):
        out = np.array(colors(normalize(straight((*color, alpha))))[0][:3])
        distance = np.abs(out - color)
        if previous is not None:
            assert np.all(distance <= previous)
        previous = distance


# ═══════════════════════════════════════════════════════════════════
#                        PREMULTIPLIED
# ═══════════════════════════════════════════════════════════════════


def test_premultiplied_copies_color_and_forces_opacity() -> None:
    pix = np.array([[[10, 20, 30, 255], [40, 50, 60, 200]]], dtype=np.uint8)
    result = normalize(PremultipliedRaster(Bounds.of_size(2, 1), pix))
    assert colors(result) == [(10, 20, 30, 255), (40, 50, 60, 255)]
    # Source untouched
    assert pix[0, 1, 3] == 200


def test_premultiplied_transparent_pixel_is_not_whitened() -> None:
    pix = np.array([[[0, 0, 0, 0]]], dtype=np.uint8)
    result = normalize(PremultipliedRaster(Bounds.of_size(1, 1), pix))
    assert colors(result) == [(0, 0, 0, 255)]


def test_premultiplied_query_unpremultiplies() -> None:
    pix = np.array([[[64, 0, 128, 128], [9, 9, 9, 0]]], dtype=np.uint8)
    raster = PremultipliedRaster(Bounds.of_size(2, 1), pix)
    r, g, b, a = raster.at(0, 0)
    assert a == 128 * 0x101
    assert g == 0
    assert r == 64 * 0xFFFF // 128
    assert raster.at(1, 0) == (0, 0, 0, 0)


# ═══════════════════════════════════════════════════════════════════
#                        YCbCr
# ═══════════════════════════════════════════════════════════════════


def test_ycbcr_neutral_grey_is_exact() -> None:
    result = normalize(ycbcr([[0, 77, 128, 255]], [[128] * 4], [[128] * 4]))
    assert colors(result) == [(v, v, v, 255) for v in (0, 77, 128, 255)]


def test_ycbcr_saturated_red() -> None:
    result = normalize(ycbcr([[76]], [[85]], [[255]]))
    assert colors(result) == [(254, 0, 0, 255)]


def test_ycbcr_query_is_sixteen_bit_and_opaque() -> None:
    raster = ycbcr([[128]], [[128]], [[128]])
    assert raster.at(0, 0) == (128 * 0x101, 128 * 0x101, 128 * 0x101, 0xFFFF)


def test_ycbcr_420_chroma_covers_two_by_two_blocks() -> None:
    y = [[128] * 4 for _ in range(4)]
    cb = [[128, 128], [128, 128]]
    cr = [[128, 128], [128, 200]]
    result = normalize(ycbcr(y, cb, cr, ChromaSubsampling.S420))

    grid = result.pix
    assert tuple(grid[0, 0]) == (128, 128, 128, 255)
    assert tuple(grid[1, 1]) == (128, 128, 128, 255)
    for row, col in [(2, 2), (2, 3), (3, 2), (3, 3)]:
        assert grid[row, col, 0] > 128
        assert grid[row, col, 1] < 128


def test_ycbcr_420_with_odd_origin_validates_chroma_shape() -> None:
    bounds = Bounds(1, 1, 4, 4)
    y = np.full((3, 3), 100, dtype=np.uint8)
    chroma = np.full((2, 2), 128, dtype=np.uint8)
    raster = YCbCrRaster(bounds, y, chroma, chroma, ChromaSubsampling.S420)
    assert normalize(raster).bounds == bounds

    with pytest.raises(ValueError):
        YCbCrRaster(bounds, y, chroma[:1], chroma[:1], ChromaSubsampling.S420)


# ═══════════════════════════════════════════════════════════════════
#                        GENERIC
# ═══════════════════════════════════════════════════════════════════


def test_generic_zero_alpha_is_white() -> None:
    result = normalize(generic((0x1234, 0xFFFF, 0, 0x00FF)))
    assert colors(result) == [(255, 255, 255, 255)]


def test_generic_full_alpha_takes_high_byte_exactly() -> None:
    result = normalize(generic((0x12FF, 0xAB00, 0x0101, 0xFFFF)))
    assert colors(result) == [(0x12, 0xAB, 0x01, 255)]


def test_generic_partial_alpha_rounds_linear_blend() -> None:
    result = normalize(generic((0, 0, 0xFFFF, 0x8000), (0x6400, 0x6400, 0x6400, 0x3300)))
    # alpha8 = 128: 255 * (1 - 128/255) = 127.0
    # alpha8 = 51: 100 * 0.2 + 255 * 0.8 = 224.0
    assert colors(result) == [(127, 127, 255, 255), (224, 224, 224, 255)]


def test_generic_blend_is_monotonic() -> None:
    previous = 255
    for alpha8 in range(0, 255):
        out = colors(normalize(generic((0, 0, 0, alpha8 << 8))))[0][0]
        assert out <= previous
        previous = out


class _Checkerboard:
    """Pixel source outside the known variants."""

    bounds = Bounds.of_size(2, 2)

    def rgba64(self) -> np.ndarray:
        rgba = np.zeros((2, 2, 4), dtype=np.uint16)
        rgba[0, 0] = rgba[1, 1] = (0, 0, 0, 0xFFFF)
        return rgba


def test_unknown_source_falls_back_to_generic() -> None:
    result = normalize(_Checkerboard())
    assert colors(result) == [
        (0, 0, 0, 255),
        (255, 255, 255, 255),
        (255, 255, 255, 255),
        (0, 0, 0, 255),
    ]


# ═══════════════════════════════════════════════════════════════════
#                        PROPERTIES
# ═══════════════════════════════════════════════════════════════════


@pytest.mark.parametrize("width,height", [(0, 0), (0, 3), (3, 0), (5, 2)])
def test_bounds_preserved_for_every_variant(width: int, height: int) -> None:
    bounds = Bounds(2, 3, 2 + width, 3 + height)
    shape = bounds.shape
    rasters = [
        PremultipliedRaster(bounds, np.zeros((*shape, 4), dtype=np.uint8)),
        StraightRaster(bounds, np.zeros((*shape, 4), dtype=np.uint8)),
        YCbCrRaster(
            bounds,
            np.zeros(shape, dtype=np.uint8),
            np.zeros(shape, dtype=np.uint8),
            np.zeros(shape, dtype=np.uint8),
        ),
        GenericRaster(bounds, np.zeros((*shape, 4), dtype=np.uint16)),
    ]
    for raster in rasters:
        result = normalize(raster)
        assert result.bounds == bounds
        assert result.pix.shape == (*shape, 4)
        assert np.all(result.pix[..., 3] == 255)


def test_normalize_is_idempotent() -> None:
    rng = np.random.default_rng(7)
    pix = rng.integers(0, 256, size=(6, 5, 4), dtype=np.uint8)
    once = normalize(StraightRaster(Bounds.of_size(5, 6), pix))

    assert np.array_equal(normalize(once).pix, once.pix)
    assert np.array_equal(normalize(StraightRaster(once.bounds, once.pix)).pix, once.pix)
    assert np.array_equal(normalize(GenericRaster(once.bounds, once.rgba64())).pix, once.pix)


def test_full_opacity_matches_across_variants() -> None:
    rng = np.random.default_rng(11)
    rgb = rng.integers(0, 256, size=(3, 4, 3), dtype=np.uint8)
    opaque = np.concatenate([rgb, np.full((3, 4, 1), 255, dtype=np.uint8)], axis=-1)
    bounds = Bounds.of_size(4, 3)

    expected = normalize(StraightRaster(bounds, opaque)).pix
    assert np.array_equal(expected[..., :3], rgb)
    assert np.array_equal(normalize(PremultipliedRaster(bounds, opaque)).pix, expected)
    assert np.array_equal(normalize(GenericRaster(bounds, opaque.astype(np.uint16) * 0x101)).pix, expected)


def test_inverted_bounds_rejected() -> None:
    with pytest.raises(ValueError):
        Bounds(5, 0, 4, 1)


def test_array_shape_and_dtype_checked() -> None:
    with pytest.raises(ValueError):
        StraightRaster(Bounds.of_size(2, 2), np.zeros((2, 3, 4), dtype=np.uint8))
    with pytest.raises(TypeError):
        StraightRaster(Bounds.of_size(2, 2), np.zeros((2, 2, 4), dtype=np.uint16))


def test_point_query_outside_bounds() -> None:
    raster = straight((1, 2, 3, 4))
    assert raster.at(0, 0) == (0x101, 0x202, 0x303, 0x404)
    with pytest.raises(IndexError):
        raster.at(1, 0)


# ═══════════════════════════════════════════════════════════════════
#                        PILLOW ADAPTER
# ═══════════════════════════════════════════════════════════════════


def test_from_pillow_picks_variant_by_mode() -> None:
    rgba = Image.new("RGBA", (3, 2), (255, 0, 0, 128))
    assert isinstance(from_pillow(rgba), StraightRaster)
    assert isinstance(from_pillow(rgba.convert("RGBa")), PremultipliedRaster)
    assert isinstance(from_pillow(Image.new("YCbCr", (3, 2), (128, 128, 128))), YCbCrRaster)
    assert isinstance(from_pillow(Image.new("L", (3, 2), 9)), GenericRaster)
    assert isinstance(from_pillow(Image.new("RGB", (3, 2))), GenericRaster)


def test_from_pillow_straight_alpha_end_to_end() -> None:
    raster = from_pillow(Image.new("RGBA", (2, 2), (255, 0, 0, 128)))
    assert raster.bounds == Bounds.of_size(2, 2)
    assert colors(normalize(raster)) == [(255, 127, 127, 255)] * 4


def test_from_pillow_keeps_sixteen_bit_grey() -> None:
    raster = from_pillow(Image.new("I;16", (2, 1), 0x1234))
    assert raster.at(1, 0) == (0x1234, 0x1234, 0x1234, 0xFFFF)
    assert colors(normalize(raster)) == [(0x12, 0x12, 0x12, 255)] * 2


def test_canonical_to_pillow_is_rgb() -> None:
    raster = normalize(straight((10, 20, 30, 255), (0, 0, 0, 0)))
    image = raster.to_pillow()
    assert image.mode == "RGB"
    assert image.size == (2, 1)
    assert image.getpixel((1, 0)) == (255, 255, 255)
