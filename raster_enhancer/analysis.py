"""Global image statistics and automatic tone parameter estimation."""
from __future__ import annotations

import dataclasses
import logging
from typing import Optional

import numpy as np

from .adjustments import EnhancementSettings
from .image import RasterImage

LOGGER = logging.getLogger("raster_enhancer")

TARGET_BRIGHTNESS = 0.5
LOW_CONTRAST_STD = 0.1
HIGH_CONTRAST_STD = 0.3

AUTO_SHARPNESS = 1.0
AUTO_KERNEL_SIZE = 6


@dataclasses.dataclass(frozen=True)
class AutoAdjustment:
    """Recommended tone parameters derived from image statistics.

    Iterating yields ``(brightness, contrast)`` so the result unpacks as a
    pair.

    Attributes:
        brightness: Recommended brightness delta, roughly in [-1, 1].
        contrast: Recommended contrast delta.
        mean_brightness: Mean of the per-pixel channel average in [0, 1].
        std_brightness: Population standard deviation of the same quantity.
    """

    brightness: float
    contrast: float
    mean_brightness: float
    std_brightness: float

    def __iter__(self):
        yield self.brightness
        yield self.contrast


def recommend_contrast(std_brightness: float) -> float:
    """Pick a contrast delta for the measured brightness spread."""
    if std_brightness < LOW_CONTRAST_STD:
        return 0.5
    if std_brightness > HIGH_CONTRAST_STD:
        return -0.3
    return 0.1


def analyze_image(image: RasterImage) -> AutoAdjustment:
    """Estimate brightness and contrast corrections for *image*.

    Per-pixel brightness is the mean of the three channels scaled to [0, 1].
    The brightness delta pulls the image mean towards mid-grey; the contrast
    delta is chosen from the spread of the per-pixel brightness.
    """
    brightness = image.as_float().mean(axis=-1) / 255.0
    avg = float(brightness.mean())
    std = float(brightness.std())
    result = AutoAdjustment(
        brightness=(TARGET_BRIGHTNESS - avg) * 2.0,
        contrast=recommend_contrast(std),
        mean_brightness=avg,
        std_brightness=std,
    )
    LOGGER.debug("Auto analysis mean=%.4f std=%.4f -> %s", avg, std, result)
    return result


def auto_optimize_settings(
    image: RasterImage, base: Optional[EnhancementSettings] = None
) -> EnhancementSettings:
    """Return *base* with tone, sharpness and kernel size chosen automatically.

    Brightness and contrast come from :func:`analyze_image`; sharpness is set
    to full strength and the kernel widened to 6. The denoise variant, total
    variation parameters and block options are kept from *base*.
    """
    if base is None:
        base = EnhancementSettings()
    adjustment = analyze_image(image)
    brightness = float(np.clip(adjustment.brightness, -1.0, 1.0))
    settings = dataclasses.replace(
        base,
        brightness=brightness,
        contrast=adjustment.contrast,
        sharpness=AUTO_SHARPNESS,
        kernel_size=AUTO_KERNEL_SIZE,
    )
    LOGGER.debug("Auto-optimised settings: %s", settings)
    return settings


__all__ = [
    "AUTO_KERNEL_SIZE",
    "AUTO_SHARPNESS",
    "AutoAdjustment",
    "analyze_image",
    "auto_optimize_settings",
    "recommend_contrast",
]
