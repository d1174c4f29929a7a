from __future__ import annotations

from pathlib import Path
import sys

import pytest
from hypothesis import given, settings, strategies as st

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

np = pytest.importorskip("numpy")

from raster_enhancer import denoise  # noqa: E402  # pylint: disable=wrong-import-position
from raster_enhancer.denoise import DenoiseVariant, denoise_image  # noqa: E402  # pylint: disable=wrong-import-position
from raster_enhancer.image import InvalidConfigurationError, RasterImage  # noqa: E402  # pylint: disable=wrong-import-position
from raster_enhancer.kernels import truncate_to_uint8  # noqa: E402  # pylint: disable=wrong-import-position


def _ramp_image() -> RasterImage:
    """4x4 image whose red channel is ``4 * y + x``; green and blue are zero."""
    arr = np.zeros((4, 4, 3), dtype=np.uint8)
    arr[..., 0] = np.arange(16, dtype=np.uint8).reshape((4, 4))
    return RasterImage.from_array(arr)


def _noisy_image(seed: int, size: int = 16, sigma: float = 12.0) -> RasterImage:
    rng = np.random.default_rng(seed)
    arr = 128.0 + rng.normal(0.0, sigma, size=(size, size, 3))
    return RasterImage.from_array(np.clip(arr, 0, 255))


def test_mean_filter_uses_in_bounds_integer_average():
    result = denoise_image(_ramp_image(), DenoiseVariant.MEAN_FILTER, 3)
    red = result.pixels[..., 0]

    # Corner: (0 + 1 + 4 + 5) // 4
    assert red[0, 0] == 2
    # Top edge: (0 + 1 + 2 + 4 + 5 + 6) // 6
    assert red[0, 1] == 3
    # Interior: 45 // 9
    assert red[1, 1] == 5
    # Bottom-right corner: (10 + 11 + 14 + 15) // 4
    assert red[3, 3] == 12
    assert not result.pixels[..., 1:].any()


@pytest.mark.parametrize("variant", [v for v in DenoiseVariant if v is not DenoiseVariant.GAUSSIAN_FILTER])
def test_uniform_images_are_fixed_points(variant: DenoiseVariant):
    image = RasterImage.filled(12, 9, (37, 128, 250))

    assert denoise_image(image, variant, 5) == image


def test_gaussian_preserves_uniform_interior_but_darkens_border():
    image = RasterImage.filled(9, 9, (100, 100, 100))

    result = denoise_image(image, DenoiseVariant.GAUSSIAN_FILTER, 3)
    red = result.pixels[..., 0]

    assert (red[1:-1, 1:-1] == 100).all()
    # Missing neighbours are not renormalised; sigma = 0.5.
    assert red[0, 0] == 79
    assert red[0, 4] == 89
    assert red[4, 0] == 89


def test_median_picks_upper_median_for_even_counts():
    image = RasterImage.from_buffer(2, 1, bytes([10, 10, 10, 20, 20, 20]))

    result = denoise_image(image, DenoiseVariant.MEDIAN_FILTER, 3)

    assert result.pixels[0, 0].tolist() == [20, 20, 20]
    assert result.pixels[0, 1].tolist() == [20, 20, 20]


def test_median_sorts_channels_independently():
    image = RasterImage.from_buffer(3, 1, bytes([10, 200, 30, 50, 20, 90, 30, 60, 10]))

    result = denoise_image(image, DenoiseVariant.MEDIAN_FILTER, 3)

    assert result.pixels[0, 1].tolist() == [30, 60, 30]


def test_median_removes_impulse_noise():
    arr = np.full((5, 5, 3), 100, dtype=np.uint8)
    arr[2, 2] = 255
    arr[0, 4] = 0

    result = denoise_image(RasterImage.from_array(arr), DenoiseVariant.MEDIAN_FILTER, 3)

    assert (result.pixels == 100).all()


def test_bilateral_preserves_hard_edges_that_mean_blurs():
    arr = np.zeros((8, 8, 3), dtype=np.uint8)
    arr[:, 4:] = 255
    image = RasterImage.from_array(arr)

    bilateral = denoise_image(image, DenoiseVariant.BILATERAL_FILTER, 3)
    mean = denoise_image(image, DenoiseVariant.MEAN_FILTER, 3)

    assert bilateral == image
    assert mean.pixels[4, 3, 0] == 85


@settings(max_examples=10, deadline=None)
@given(st.integers(min_value=0, max_value=2**32 - 1))
def test_non_local_means_reduces_noise(seed: int):
    image = _noisy_image(seed)

    result = denoise_image(image, DenoiseVariant.NON_LOCAL_MEANS, 3)

    assert (result.width, result.height) == (image.width, image.height)
    assert result.as_float().std() < image.as_float().std()


def test_non_local_means_ignores_kernel_size():
    image = _noisy_image(7)

    assert denoise_image(image, DenoiseVariant.NON_LOCAL_MEANS, 3) == denoise_image(
        image, DenoiseVariant.NON_LOCAL_MEANS, 9
    )


def test_total_variation_uses_fixed_parameters():
    image = _noisy_image(3)
    expected = RasterImage.from_array(
        truncate_to_uint8(denoise._total_variation_solve(image.pixels, 0.1, 50))  # pylint: disable=protected-access
    )

    default = denoise_image(image, DenoiseVariant.TOTAL_VARIATION, 3)
    no_iterations = denoise_image(image, DenoiseVariant.TOTAL_VARIATION, 3, tv_iterations=0)
    strong = denoise_image(image, DenoiseVariant.TOTAL_VARIATION, 3, tv_lambda=5.0, tv_iterations=500)

    assert default == expected
    assert no_iterations == expected
    assert strong == expected
    assert default != image


def test_total_variation_smooths_noise():
    image = _noisy_image(11)

    result = denoise_image(image, DenoiseVariant.TOTAL_VARIATION, 3)

    interior = (slice(2, -2), slice(2, -2))
    assert result.as_float()[interior].std() < image.as_float()[interior].std()


def test_total_variation_leaves_tiny_images_unchanged():
    image = RasterImage.from_buffer(5, 2, bytes(range(30)))

    assert denoise_image(image, DenoiseVariant.TOTAL_VARIATION, 3) == image


@pytest.mark.parametrize("variant", list(DenoiseVariant))
def test_every_variant_is_dispatched_and_keeps_dimensions(variant: DenoiseVariant):
    image = _noisy_image(5, size=10)

    result = denoise_image(image, variant.value, 3)

    assert (result.width, result.height) == (10, 10)
    assert set(denoise._FILTERS) == set(DenoiseVariant)  # pylint: disable=protected-access


@pytest.mark.parametrize("kernel_size", [0, 1])
def test_zero_radius_window_is_rejected(kernel_size: int):
    with pytest.raises(InvalidConfigurationError):
        denoise_image(RasterImage.filled(4, 4, (1, 2, 3)), DenoiseVariant.MEAN_FILTER, kernel_size)


def test_unknown_variant_is_rejected():
    with pytest.raises(InvalidConfigurationError):
        denoise_image(RasterImage.filled(4, 4, (1, 2, 3)), "wiener", 3)


def test_even_kernel_size_rounds_radius_down():
    image = _noisy_image(1, size=12)

    assert denoise_image(image, DenoiseVariant.MEAN_FILTER, 6) == denoise_image(
        image, DenoiseVariant.MEAN_FILTER, 7
    )
