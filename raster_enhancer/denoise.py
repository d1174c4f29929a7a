"""Noise reduction filters and the variant dispatcher.

Six algorithms are available, selected with :class:`DenoiseVariant`:

mean / gaussian
    Window averages over in-bounds neighbours. Neighbours outside the image
    are dropped; the Gaussian weights are *not* renormalised, so border pixels
    come out slightly darker than the interior.

median
    Per-channel median of in-bounds neighbours (upper median for even
    counts). Channels are sorted independently.

bilateral
    Spatial x range weighted mean with a fixed range sigma of 30.

nlm
    Non-local means over a 11x11 search window with 5x5 patches. Patch
    distances come from one summed-area table per displacement so each
    pixel's distance is four lookups.

tv
    Total-variation diffusion solved by fixed-point iteration. The solver
    always uses ``TV_LAMBDA`` and ``TV_ITERATIONS``; the caller's values are
    accepted for interface compatibility and ignored.
"""
from __future__ import annotations

import enum
import logging
from typing import Callable, Dict

import numpy as np

from .image import InvalidConfigurationError, RasterImage
from .kernels import gaussian_kernel_cached, iter_window, round_to_uint8, truncate_to_uint8

LOGGER = logging.getLogger("raster_enhancer")

BILATERAL_SIGMA_RANGE = 30.0

NLM_PATCH_RADIUS = 2
NLM_SEARCH_RADIUS = 5
NLM_DECAY = 10.0

TV_LAMBDA = 0.1
TV_ITERATIONS = 50
TV_EPSILON = 1e-10

# Upper bound on the number of gathered samples per median band.
_MEDIAN_BAND_SAMPLES = 4_000_000


class DenoiseVariant(enum.Enum):
    """Supported noise reduction algorithms."""

    MEAN_FILTER = "mean"
    GAUSSIAN_FILTER = "gaussian"
    MEDIAN_FILTER = "median"
    BILATERAL_FILTER = "bilateral"
    NON_LOCAL_MEANS = "nlm"
    TOTAL_VARIATION = "tv"


def mean_filter(image: RasterImage, radius: int) -> RasterImage:
    """Integer average of the in-bounds ``(2r+1)^2`` neighbourhood."""
    arr = image.pixels.astype(np.int64)
    total = np.zeros_like(arr)
    count = np.zeros(arr.shape[:2], dtype=np.int64)
    for _dy, _dx, values, valid in iter_window(arr, radius):
        total += values
        count += valid
    LOGGER.debug("Mean filter radius=%s", radius)
    return RasterImage.from_array(total // count[..., None])


def gaussian_filter(image: RasterImage, radius: int) -> RasterImage:
    """Gaussian-weighted sum with ``sigma = radius / 2``.

    Out-of-bounds neighbours contribute nothing and the remaining weights are
    not rescaled.
    """
    kernel = gaussian_kernel_cached(radius)
    arr = image.as_float()
    total = np.zeros_like(arr)
    for dy, dx, values, _valid in iter_window(arr, radius):
        total += values * kernel[dy + radius, dx + radius]
    LOGGER.debug("Gaussian filter radius=%s sigma=%.2f", radius, radius / 2.0)
    return RasterImage.from_array(truncate_to_uint8(total))


def median_filter(image: RasterImage, radius: int) -> RasterImage:
    """Per-channel median of the in-bounds neighbourhood.

    The element at ``count // 2`` of the ascending values is taken, so even
    counts (at the border) pick the upper median.
    """
    arr = image.pixels.astype(np.float32)
    height, width = arr.shape[:2]
    window = 2 * radius + 1
    samples = window * window
    padded = np.pad(
        arr,
        ((radius, radius), (radius, radius), (0, 0)),
        mode="constant",
        constant_values=np.nan,
    )
    band = max(1, _MEDIAN_BAND_SAMPLES // (width * 3 * samples))
    result = np.empty(arr.shape, dtype=np.uint8)

    for top in range(0, height, band):
        bottom = min(height, top + band)
        rows = bottom - top
        stack = np.stack(
            [
                padded[top + dy : bottom + dy, dx : dx + width]
                for dy in range(window)
                for dx in range(window)
            ],
            axis=-1,
        )
        # NaN (outside the image) sorts after every real value.
        stack.sort(axis=-1)
        count = np.count_nonzero(~np.isnan(stack[:, :, 0, :]), axis=-1)
        index = np.broadcast_to((count // 2)[:, :, None, None], (rows, width, 3, 1))
        result[top:bottom] = np.take_along_axis(stack, index, axis=-1)[..., 0].astype(np.uint8)

    LOGGER.debug("Median filter radius=%s", radius)
    return RasterImage.from_array(result)


def bilateral_filter(image: RasterImage, radius: int) -> RasterImage:
    """Edge-preserving weighted mean.

    Each in-bounds neighbour is weighted by
    ``exp(-(dx^2 + dy^2) / (2 radius^2))`` times
    ``exp(-msd / (2 * 30^2))`` where ``msd`` is the mean squared channel
    difference to the centre pixel.
    """
    arr = image.as_float()
    sigma_d = float(radius)
    sigma_r = BILATERAL_SIGMA_RANGE
    sums = np.zeros_like(arr)
    weight_sum = np.zeros(arr.shape[:2], dtype=np.float64)
    for dy, dx, values, valid in iter_window(arr, radius):
        spatial = np.exp(-(dx * dx + dy * dy) / (2.0 * sigma_d * sigma_d))
        msd = np.mean((arr - values) ** 2, axis=-1)
        weight = np.where(valid, spatial * np.exp(-msd / (2.0 * sigma_r * sigma_r)), 0.0)
        sums += values * weight[..., None]
        weight_sum += weight

    # Pixels without any weight keep their source value.
    result = arr.copy()
    np.divide(sums, weight_sum[..., None], out=result, where=weight_sum[..., None] > 0)
    LOGGER.debug("Bilateral filter radius=%s sigma_d=%.1f sigma_r=%.1f", radius, sigma_d, sigma_r)
    return RasterImage.from_array(truncate_to_uint8(result))


def _symmetric_indices(size: int, pad: int) -> np.ndarray:
    idx = np.arange(-pad, size + pad)
    idx = np.where(idx < 0, -idx - 1, idx)
    idx = np.where(idx >= size, 2 * size - idx - 1, idx)
    return np.clip(idx, 0, size - 1)


def non_local_means(image: RasterImage) -> RasterImage:
    """Non-local means with summed-area-table patch distances.

    For every displacement in the search window the channel-averaged squared
    difference between the image and its shifted copy is integrated once;
    the patch distance around each pixel is then a four-corner box sum.
    """
    ds = NLM_PATCH_RADIUS
    search = NLM_SEARCH_RADIUS
    h = NLM_DECAY
    offset = ds + search
    arr = image.as_float()
    height, width = arr.shape[:2]

    padded = arr[np.ix_(_symmetric_indices(height, offset), _symmetric_indices(width, offset))]
    patch = 2 * ds + 1
    patch_area = float(patch * patch)
    region_h = height + 2 * ds
    region_w = width + 2 * ds
    core = padded[search : search + region_h, search : search + region_w]

    sums = np.zeros_like(arr)
    total = np.zeros((height, width), dtype=np.float64)
    max_weight = np.zeros((height, width), dtype=np.float64)
    integral = np.zeros((region_h + 1, region_w + 1), dtype=np.float64)

    for r in range(-search, search + 1):
        for s in range(-search, search + 1):
            if r == 0 and s == 0:
                continue
            shifted = padded[search + r : search + r + region_h, search + s : search + s + region_w]
            diff = np.mean((core - shifted) ** 2, axis=-1)
            integral[1:, 1:] = diff.cumsum(axis=0).cumsum(axis=1)
            box = (
                integral[patch:, patch:]
                - integral[:-patch, patch:]
                - integral[patch:, :-patch]
                + integral[:-patch, :-patch]
            )
            weight = np.exp(-(box / patch_area) / (h * h))
            neighbour = padded[offset + r : offset + r + height, offset + s : offset + s + width]
            sums += neighbour * weight[..., None]
            total += weight
            np.maximum(max_weight, weight, out=max_weight)

    # The centre patch is weighted like its most similar neighbour.
    sums += arr * max_weight[..., None]
    total += max_weight

    result = arr.copy()
    np.divide(sums, total[..., None], out=result, where=total[..., None] > 0)
    LOGGER.debug("Non-local means ds=%s Ds=%s h=%.1f", ds, search, h)
    return RasterImage.from_array(round_to_uint8(result))


def _total_variation_solve(arr: np.ndarray, tv_lambda: float, iterations: int) -> np.ndarray:
    u0 = np.asarray(arr, dtype=np.float64)
    u = u0.copy()
    height, width = u.shape[:2]
    if height < 3 or width < 3:
        return u

    step = 1.0
    coupling = 1.0 / (tv_lambda * step * step)
    eps = TV_EPSILON
    fidelity = u0[1:-1, 1:-1]

    for _ in range(iterations):
        centre = u[1:-1, 1:-1]
        down = u[2:, 1:-1]
        up = u[:-2, 1:-1]
        right = u[1:-1, 2:]
        left = u[1:-1, :-2]
        up_right = u[:-2, 2:]
        up_left = u[:-2, :-2]
        down_left = u[2:, :-2]

        co1 = 1.0 / (np.hypot((down - centre) / step, (right - left) / (2.0 * step)) + eps)
        co2 = 1.0 / (np.hypot((centre - up) / step, (up_right - up_left) / (2.0 * step)) + eps)
        co3 = 1.0 / (np.hypot((down - up) / (2.0 * step), (right - centre) / step) + eps)
        co4 = 1.0 / (np.hypot((down_left - up_left) / (2.0 * step), (centre - left) / step) + eps)

        numerator = fidelity + coupling * (co1 * down + co2 * up + co3 * right + co4 * left)
        denominator = 1.0 + coupling * (co1 + co2 + co3 + co4)
        u[1:-1, 1:-1] = numerator / denominator

        # Neumann boundary: zero gradient across every edge.
        u[1:-1, 0] = u[1:-1, 1]
        u[1:-1, -1] = u[1:-1, -2]
        u[0, 1:-1] = u[1, 1:-1]
        u[-1, 1:-1] = u[-2, 1:-1]
        u[0, 0] = u[1, 1]
        u[0, -1] = u[1, -2]
        u[-1, 0] = u[-2, 1]
        u[-1, -1] = u[-2, -2]
    return u


def total_variation(image: RasterImage, tv_lambda: float = TV_LAMBDA, tv_iterations: int = TV_ITERATIONS) -> RasterImage:
    """Total-variation denoising with the fixed solver parameters.

    Args:
        image: Source image.
        tv_lambda: Accepted for interface compatibility; ``TV_LAMBDA`` is used.
        tv_iterations: Accepted for interface compatibility; ``TV_ITERATIONS``
            is used.
    """
    if tv_lambda != TV_LAMBDA or tv_iterations != TV_ITERATIONS:
        LOGGER.debug(
            "Total variation ignores lambda=%s iterations=%s; using lambda=%s iterations=%s",
            tv_lambda,
            tv_iterations,
            TV_LAMBDA,
            TV_ITERATIONS,
        )
    solved = _total_variation_solve(image.pixels, TV_LAMBDA, TV_ITERATIONS)
    return RasterImage.from_array(truncate_to_uint8(solved))


_FilterFn = Callable[[RasterImage, int, float, int], RasterImage]

_FILTERS: Dict[DenoiseVariant, _FilterFn] = {
    DenoiseVariant.MEAN_FILTER: lambda image, radius, lam, its: mean_filter(image, radius),
    DenoiseVariant.GAUSSIAN_FILTER: lambda image, radius, lam, its: gaussian_filter(image, radius),
    DenoiseVariant.MEDIAN_FILTER: lambda image, radius, lam, its: median_filter(image, radius),
    DenoiseVariant.BILATERAL_FILTER: lambda image, radius, lam, its: bilateral_filter(image, radius),
    DenoiseVariant.NON_LOCAL_MEANS: lambda image, radius, lam, its: non_local_means(image),
    DenoiseVariant.TOTAL_VARIATION: lambda image, radius, lam, its: total_variation(image, lam, its),
}


def denoise_image(
    image: RasterImage,
    variant: DenoiseVariant | str,
    kernel_size: int,
    tv_lambda: float = TV_LAMBDA,
    tv_iterations: int = TV_ITERATIONS,
) -> RasterImage:
    """Run the selected noise reduction algorithm.

    Args:
        image: Source image.
        variant: Algorithm to run, as a :class:`DenoiseVariant` or its value.
        kernel_size: Window width; the radius is ``kernel_size // 2``.
        tv_lambda: Forwarded to total variation.
        tv_iterations: Forwarded to total variation.

    Returns:
        Denoised image with the same dimensions.

    Raises:
        InvalidConfigurationError: If the variant is unknown or the kernel
            size yields a radius below 1.
    """
    try:
        variant = DenoiseVariant(variant)
    except ValueError as exc:
        raise InvalidConfigurationError(f"Unknown denoise variant: {variant!r}") from exc
    radius = kernel_size // 2
    if radius < 1:
        raise InvalidConfigurationError(f"kernel_size {kernel_size} gives a zero-radius window")
    LOGGER.debug("Denoising %s with %s (kernel_size=%s)", image, variant.value, kernel_size)
    return _FILTERS[variant](image, radius, tv_lambda, tv_iterations)


__all__ = [
    "BILATERAL_SIGMA_RANGE",
    "DenoiseVariant",
    "NLM_DECAY",
    "NLM_PATCH_RADIUS",
    "NLM_SEARCH_RADIUS",
    "TV_ITERATIONS",
    "TV_LAMBDA",
    "bilateral_filter",
    "denoise_image",
    "gaussian_filter",
    "mean_filter",
    "median_filter",
    "non_local_means",
    "total_variation",
]
