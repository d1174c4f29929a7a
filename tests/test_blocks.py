from __future__ import annotations

from pathlib import Path
import sys

import pytest
from hypothesis import given, settings, strategies as st

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

np = pytest.importorskip("numpy")

from raster_enhancer import blocks  # noqa: E402  # pylint: disable=wrong-import-position
from raster_enhancer.adjustments import EnhancementSettings  # noqa: E402  # pylint: disable=wrong-import-position
from raster_enhancer.blocks import (  # noqa: E402  # pylint: disable=wrong-import-position
    Tile,
    axis_weights,
    blend_weight,
    merge_tiles,
    process_image_in_tiles,
    process_tiles,
    split_image_into_tiles,
)
from raster_enhancer.denoise import DenoiseVariant  # noqa: E402  # pylint: disable=wrong-import-position
from raster_enhancer.image import (  # noqa: E402  # pylint: disable=wrong-import-position
    ImageDimensionError,
    InvalidConfigurationError,
    RasterImage,
)
from raster_enhancer.pipeline import EnhancementTransform  # noqa: E402  # pylint: disable=wrong-import-position


def _gradient_image(width: int, height: int) -> RasterImage:
    ys, xs = np.mgrid[0:height, 0:width]
    arr = np.stack([(xs + ys) // 8, xs // 4, 200 - ys // 4], axis=-1)
    return RasterImage.from_array(arr)


def _random_image(width: int, height: int, seed: int) -> RasterImage:
    rng = np.random.default_rng(seed)
    return RasterImage.from_array(rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8))


def _identity(tile: Tile) -> Tile:
    return tile


def test_split_lays_out_overlapping_grid():
    image = _gradient_image(100, 70)

    tiles = split_image_into_tiles(image, 64)

    assert [(t.x, t.y) for t in tiles] == [(0, 0), (48, 0), (96, 0), (0, 48), (48, 48), (96, 48)]
    assert [t.width for t in tiles[:3]] == [64, 52, 4]
    assert [t.height for t in tiles[::3]] == [64, 22]
    assert all(t.overlap == 16 for t in tiles)


def test_tiles_hold_read_only_copies_of_their_region():
    image = _gradient_image(40, 40)

    tiles = split_image_into_tiles(image, 32)
    second = tiles[1]

    assert np.array_equal(second.pixels, image.pixels[0:32, 24:40])
    assert not second.pixels.flags.writeable
    assert second.to_image() is second.image


def test_split_rejects_non_positive_tile_size():
    with pytest.raises(InvalidConfigurationError):
        split_image_into_tiles(RasterImage.filled(4, 4, (0, 0, 0)), 0)


def test_axis_weights_ramp_from_each_edge():
    ramp = axis_weights(64, 16)

    assert ramp[0] == 0.0
    assert ramp[4] == pytest.approx(0.125)
    assert ramp[8] == pytest.approx(0.5 ** 1.5)
    assert ramp[16] == 1.0
    assert ramp[47] == 1.0
    assert ramp[48] == pytest.approx((15 / 16) ** 1.5)
    assert ramp[63] == 0.0


def test_axis_weights_prefer_leading_ramp_on_short_axes():
    ramp = axis_weights(4, 16)

    assert ramp.tolist() == pytest.approx([(i / 16) ** 1.5 for i in range(4)])


def test_zero_overlap_weights_are_uniform():
    assert (axis_weights(5, 0) == 1.0).all()
    assert blend_weight(0, 0, 3, 3, 0) == 1.0


def test_blend_weight_is_product_of_axes():
    assert blend_weight(0, 20, 64, 64, 16) == 0.0
    assert blend_weight(16, 16, 64, 64, 16) == 1.0
    assert blend_weight(4, 8, 64, 64, 16) == pytest.approx(0.125 * 0.5 ** 1.5)


def test_blend_weight_rejects_pixels_outside_tile():
    with pytest.raises(ImageDimensionError):
        blend_weight(64, 0, 64, 64, 16)


def test_split_then_merge_reconstructs_smooth_image():
    image = _gradient_image(100, 70)

    merged = merge_tiles(split_image_into_tiles(image, 64), 100, 70)
    diff = merged.as_float() - image.as_float()

    assert np.abs(diff).max() <= 1
    assert (diff[1:-1, 1:-1] == 0).all()


@settings(max_examples=25, deadline=None)
@given(
    st.integers(min_value=8, max_value=32),
    st.integers(min_value=1, max_value=40),
    st.integers(min_value=1, max_value=40),
    st.integers(min_value=0, max_value=2**16),
)
def test_merge_is_exact_wherever_tiles_carry_weight(tile_size: int, extra_w: int, extra_h: int, seed: int):
    width = tile_size + extra_w
    height = tile_size + extra_h
    image = _random_image(width, height, seed)

    merged = merge_tiles(split_image_into_tiles(image, tile_size), width, height)

    np.testing.assert_array_equal(merged.pixels[1:-1, 1:-1], image.pixels[1:-1, 1:-1])


def test_merge_ignores_tile_order():
    image = _random_image(70, 50, 4)
    tiles = split_image_into_tiles(image, 32)

    assert merge_tiles(tiles, 70, 50) == merge_tiles(list(reversed(tiles)), 70, 50)


def test_merge_clips_tiles_to_canvas():
    image = _gradient_image(40, 40)

    merged = merge_tiles(split_image_into_tiles(image, 32), 30, 30)

    assert (merged.width, merged.height) == (30, 30)
    assert np.array_equal(merged.pixels[1:-1, 1:-1], image.pixels[1:29, 1:29])


def test_merge_fills_zero_weight_pixels_from_neighbours():
    tile = Tile(x=0, y=0, image=RasterImage.filled(8, 8, (90, 60, 30)), overlap=2)

    merged = merge_tiles([tile], 8, 8)

    assert merged == tile.image


def test_merge_without_coverage_is_an_error():
    with pytest.raises(InvalidConfigurationError):
        merge_tiles([], 4, 4)

    lone = Tile(x=0, y=0, image=RasterImage.filled(1, 1, (1, 1, 1)), overlap=1)
    with pytest.raises(InvalidConfigurationError):
        merge_tiles([lone], 1, 1)


def test_with_image_requires_matching_dimensions():
    tile = split_image_into_tiles(_gradient_image(16, 16), 8)[0]

    replaced = tile.with_image(RasterImage.filled(8, 8, (1, 2, 3)))
    assert (replaced.x, replaced.y, replaced.overlap) == (tile.x, tile.y, tile.overlap)

    with pytest.raises(ImageDimensionError):
        tile.with_image(RasterImage.filled(7, 8, (1, 2, 3)))


def test_tile_rejects_negative_origin():
    with pytest.raises(ImageDimensionError):
        Tile(x=-1, y=0, image=RasterImage.filled(2, 2, (0, 0, 0)), overlap=0)


def test_process_tiles_preserves_order_sequentially():
    tiles = split_image_into_tiles(_gradient_image(50, 50), 16)

    processed = process_tiles(tiles, _identity, workers=1)

    assert [(t.x, t.y) for t in processed] == [(t.x, t.y) for t in tiles]


def test_process_tiles_progress_bar_does_not_change_results():
    tiles = split_image_into_tiles(_gradient_image(40, 40), 16)

    tracked = process_tiles(tiles, _identity, progress=True)

    assert [t.image for t in tracked] == [t.image for t in tiles]


def test_parallel_tiles_match_sequential_tiles():
    image = _random_image(90, 70, 9)
    transform = EnhancementTransform(
        EnhancementSettings(denoise=DenoiseVariant.MEDIAN_FILTER, brightness=0.1, sharpness=0.4)
    )
    tiles = split_image_into_tiles(image, 32)

    sequential = process_tiles(tiles, transform, workers=1)
    parallel = process_tiles(tiles, transform, workers=2)

    assert [(t.x, t.y) for t in parallel] == [(t.x, t.y) for t in tiles]
    assert [t.image for t in parallel] == [t.image for t in sequential]


def test_process_image_in_tiles_with_identity_keeps_interior():
    image = _random_image(60, 45, 2)

    result = process_image_in_tiles(image, 32, _identity)

    assert np.array_equal(result.pixels[1:-1, 1:-1], image.pixels[1:-1, 1:-1])
    assert blocks.BLEND_EXPONENT == 1.5
