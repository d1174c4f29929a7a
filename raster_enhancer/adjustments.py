"""Enhancement settings, presets, tone adjustments and sharpening."""
from __future__ import annotations

import dataclasses
import logging
from typing import Optional

import numpy as np

from .denoise import DenoiseVariant
from .image import InvalidConfigurationError, RasterImage
from .kernels import SHARPEN_KERNEL, mirror_indices, truncate_to_uint8

LOGGER = logging.getLogger("raster_enhancer")


@dataclasses.dataclass(frozen=True)
class EnhancementSettings:
    """Holds the enhancement parameters for a processing run.

    Instances are immutable; derive variants with :func:`dataclasses.replace`,
    which re-runs validation.
    """

    denoise: DenoiseVariant = DenoiseVariant.MEAN_FILTER
    kernel_size: int = 3
    tv_lambda: float = 0.1
    tv_iterations: int = 50
    brightness: float = 0.0
    contrast: float = 0.0
    sharpness: float = 0.0
    block_size: int = 64
    use_parallel: bool = False
    workers: Optional[int] = None

    def __post_init__(self) -> None:
        try:
            variant = DenoiseVariant(self.denoise)
        except ValueError as exc:
            raise InvalidConfigurationError(f"Unknown denoise variant: {self.denoise!r}") from exc
        object.__setattr__(self, "denoise", variant)
        self._validate()

    def _validate(self) -> None:
        def ensure_range(name: str, value: float, minimum: float, maximum: float) -> None:
            if not (minimum <= value <= maximum):
                raise InvalidConfigurationError(f"{name} must be between {minimum} and {maximum}, got {value}")

        def ensure_int(name: str, value: object) -> None:
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
                raise InvalidConfigurationError(f"{name} must be an integer, got {value!r}")

        ensure_int("kernel_size", self.kernel_size)
        ensure_range("kernel_size", self.kernel_size, 3, 9)
        if not self.tv_lambda > 0:
            raise InvalidConfigurationError(f"tv_lambda must be positive, got {self.tv_lambda}")
        ensure_int("tv_iterations", self.tv_iterations)
        if self.tv_iterations < 0:
            raise InvalidConfigurationError(f"tv_iterations must not be negative, got {self.tv_iterations}")
        ensure_range("brightness", self.brightness, -1.0, 1.0)
        ensure_range("contrast", self.contrast, -1.0, 1.0)
        ensure_range("sharpness", self.sharpness, -1.0, 1.0)
        ensure_int("block_size", self.block_size)
        ensure_range("block_size", self.block_size, 32, 256)
        if self.workers is not None:
            ensure_int("workers", self.workers)
            if self.workers < 1:
                raise InvalidConfigurationError(f"workers must be a positive integer, got {self.workers}")


ENHANCEMENT_PRESETS = {
    "default": EnhancementSettings(),
    "smooth": EnhancementSettings(
        denoise=DenoiseVariant.GAUSSIAN_FILTER,
        kernel_size=5,
        contrast=0.05,
    ),
    "edge_preserving": EnhancementSettings(
        denoise=DenoiseVariant.BILATERAL_FILTER,
        kernel_size=5,
        contrast=0.1,
        sharpness=0.2,
    ),
    "detail": EnhancementSettings(
        denoise=DenoiseVariant.NON_LOCAL_MEANS,
        sharpness=0.3,
        block_size=128,
        use_parallel=True,
    ),
}


def adjust_brightness(image: RasterImage, amount: float) -> RasterImage:
    """Shift every channel by ``amount * 0.5 * 255``.

    Args:
        image: Source image.
        amount: Brightness delta in [-1, 1]; 0 leaves the image untouched.

    Returns:
        New image with clamped, truncated samples.
    """
    if amount == 0:
        return image
    offset = amount * 0.5 * 255.0
    LOGGER.debug("Brightness amount=%s offset=%.2f", amount, offset)
    return RasterImage.from_array(truncate_to_uint8(image.as_float() + offset))


def contrast_factor(amount: float) -> float:
    """Map a contrast amount in [-1, 1] onto a gain in [0.25, 4]."""
    if amount >= 0:
        return 1.0 + amount * 3.0
    return 1.0 / (1.0 - amount * 3.0)


def adjust_contrast(image: RasterImage, amount: float) -> RasterImage:
    """Scale every channel's distance from mid-grey (128).

    Args:
        image: Source image.
        amount: Contrast delta in [-1, 1]; 0 leaves the image untouched.

    Returns:
        New image with clamped, truncated samples.
    """
    if amount == 0:
        return image
    factor = contrast_factor(amount)
    LOGGER.debug("Contrast amount=%s factor=%.3f", amount, factor)
    return RasterImage.from_array(truncate_to_uint8((image.as_float() - 128.0) * factor + 128.0))


def sharpen(image: RasterImage, amount: float) -> RasterImage:
    """Blend the image with its Laplacian-sharpened version.

    Neighbours are mirrored at the border. Within two pixels of an edge each
    kernel weight is halved and the result is normalised by the weights that
    were actually used.

    Args:
        image: Source image.
        amount: Blend strength in [-1, 1]; values <= 0 return the input.

    Returns:
        New image with clamped, truncated samples.
    """
    if amount <= 0:
        return image
    arr = image.as_float()
    height, width = arr.shape[:2]

    ys = np.arange(height)[:, None]
    xs = np.arange(width)[None, :]
    near_edge = (xs < 2) | (xs >= width - 2) | (ys < 2) | (ys >= height - 2)
    edge_factor = np.where(near_edge, 0.5, 1.0)

    accum = np.zeros_like(arr)
    weight_sum = np.zeros((height, width), dtype=np.float64)
    for ky in (-1, 0, 1):
        rows, rows_valid = mirror_indices(height, ky)
        for kx in (-1, 0, 1):
            weight = SHARPEN_KERNEL[ky + 1, kx + 1]
            if weight == 0:
                continue
            cols, cols_valid = mirror_indices(width, kx)
            valid = rows_valid[:, None] & cols_valid[None, :]
            adjusted = np.where(valid, weight * edge_factor, 0.0)
            accum += arr[np.ix_(rows, cols)] * adjusted[..., None]
            weight_sum += adjusted

    convolved = accum / weight_sum[..., None]
    LOGGER.debug("Sharpen amount=%s", amount)
    return RasterImage.from_array(truncate_to_uint8(convolved * amount + arr * (1.0 - amount)))


__all__ = [
    "ENHANCEMENT_PRESETS",
    "EnhancementSettings",
    "adjust_brightness",
    "adjust_contrast",
    "contrast_factor",
    "sharpen",
]
