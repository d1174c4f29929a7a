"""Convolution kernels and neighbourhood helpers shared by the filters."""
from __future__ import annotations

import functools
from typing import Iterator, Tuple

import numpy as np

from .image import InvalidConfigurationError

# Values closer than this to the next integer are treated as that integer
# when truncating filter output.
_TRUNCATION_EPSILON = 1e-6

SHARPEN_KERNEL = np.array(
    [
        [0.0, -1.0, 0.0],
        [-1.0, 5.0, -1.0],
        [0.0, -1.0, 0.0],
    ],
    dtype=np.float64,
)
SHARPEN_KERNEL.setflags(write=False)


@functools.lru_cache(maxsize=16)
def _gaussian_kernel_cached(radius: int) -> np.ndarray:
    if radius < 1:
        raise InvalidConfigurationError(f"Gaussian kernel radius must be at least 1, got {radius}")
    sigma = radius / 2.0
    ax = np.arange(-radius, radius + 1, dtype=np.float64)
    dist_sq = ax[:, None] ** 2 + ax[None, :] ** 2
    kernel = np.exp(-dist_sq / (2.0 * sigma ** 2))
    kernel /= np.sum(kernel)
    kernel.setflags(write=False)
    return kernel


def gaussian_kernel(radius: int) -> np.ndarray:
    """Generate a square Gaussian kernel as a writable copy.

    Args:
        radius: Kernel half-width in pixels; the kernel is ``2 * radius + 1`` wide.

    Returns:
        2D float64 array of weights with ``sigma = radius / 2`` summing to 1.
    """
    return _gaussian_kernel_cached(radius).copy()


def gaussian_kernel_cached(radius: int) -> np.ndarray:
    """Return the cached read-only Gaussian kernel for ``radius``."""
    return _gaussian_kernel_cached(radius)


gaussian_kernel.cache_clear = _gaussian_kernel_cached.cache_clear  # type: ignore[attr-defined]
gaussian_kernel.cache_info = _gaussian_kernel_cached.cache_info  # type: ignore[attr-defined]


def iter_window(arr: np.ndarray, radius: int) -> Iterator[Tuple[int, int, np.ndarray, np.ndarray]]:
    """Yield every neighbour offset of a ``(2r+1)^2`` window over *arr*.

    Neighbours outside the image are not padded in: the yielded values are
    zero there and the accompanying mask is ``False`` so callers can exclude
    them from sums and counts.

    Args:
        arr: Array of shape ``(height, width, ...)``.
        radius: Window half-width.

    Yields:
        ``(dy, dx, values, valid)`` with ``values`` shaped like *arr* and
        ``valid`` a boolean ``(height, width)`` mask.
    """
    height, width = arr.shape[:2]
    pad_width = [(radius, radius), (radius, radius)] + [(0, 0)] * (arr.ndim - 2)
    padded = np.pad(arr, pad_width, mode="constant")
    inside = np.pad(np.ones((height, width), dtype=bool), radius, mode="constant")
    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            rows = slice(radius + dy, radius + dy + height)
            cols = slice(radius + dx, radius + dx + width)
            yield dy, dx, padded[rows, cols], inside[rows, cols]


def mirror_indices(size: int, offset: int) -> Tuple[np.ndarray, np.ndarray]:
    """Map ``index + offset`` back into ``[0, size)`` by mirroring.

    Indices below zero reflect without repeating the edge (``-i``); indices
    past the end reflect with the edge repeated (``2 * size - i - 1``). The
    returned mask is ``False`` where the mirrored index still falls outside.
    """
    raw = np.arange(size) + offset
    idx = np.where(raw < 0, -raw, np.where(raw >= size, 2 * size - raw - 1, raw))
    valid = (idx >= 0) & (idx < size)
    return np.clip(idx, 0, size - 1), valid


def truncate_to_uint8(values: np.ndarray) -> np.ndarray:
    """Clamp to [0, 255] and drop the fractional part."""
    return np.clip(np.floor(values + _TRUNCATION_EPSILON), 0, 255).astype(np.uint8)


def round_to_uint8(values: np.ndarray) -> np.ndarray:
    """Clamp to [0, 255] rounding halves away from zero."""
    return np.clip(np.floor(values + 0.5), 0, 255).astype(np.uint8)


__all__ = [
    "SHARPEN_KERNEL",
    "gaussian_kernel",
    "gaussian_kernel_cached",
    "iter_window",
    "mirror_indices",
    "round_to_uint8",
    "truncate_to_uint8",
]
