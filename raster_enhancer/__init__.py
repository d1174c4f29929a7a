"""Pixel-level enhancement toolkit for 8-bit RGB raster images.

The package denoises, tone-adjusts and sharpens images, estimates tone
corrections from image statistics, and can run any of these stages over
overlapping tiles in parallel worker processes before blending the tiles back
into a seamless result.

Module Organization
-------------------

image
    The immutable :class:`RasterImage` container and the error hierarchy.

kernels
    Gaussian and sharpening kernels plus neighbourhood helpers shared by the
    filters.

denoise
    Mean, Gaussian, median, bilateral, non-local means and total-variation
    filters behind a single :func:`denoise_image` dispatcher.

adjustments
    Brightness, contrast and sharpening, the immutable
    :class:`EnhancementSettings` parameter set and its presets.

analysis
    Image statistics and automatic brightness/contrast recommendations.

blocks
    Tile decomposition, parallel tile processing and overlap-weighted merge.

pipeline
    Denoise -> brightness -> contrast -> sharpen orchestration, timing and
    single-file processing.

io_utils
    Pillow-backed loading and saving with staged atomic writes.

cli
    Batch command-line interface with presets and JSON/YAML configuration.

Example Usage
-------------

    from pathlib import Path

    from raster_enhancer import (
        DenoiseVariant,
        EnhancementSettings,
        enhance_image,
        load_image,
    )

    image = load_image(Path("noisy.png"))
    settings = EnhancementSettings(
        denoise=DenoiseVariant.BILATERAL_FILTER,
        kernel_size=5,
        sharpness=0.3,
        use_parallel=True,
    )
    result = enhance_image(image, settings)
    print(f"took {result.duration:.3f}s")
"""
from __future__ import annotations

import logging

from .adjustments import (
    ENHANCEMENT_PRESETS,
    EnhancementSettings,
    adjust_brightness,
    adjust_contrast,
    contrast_factor,
    sharpen,
)
from .analysis import AutoAdjustment, analyze_image, auto_optimize_settings
from .blocks import (
    Tile,
    axis_weights,
    blend_weight,
    merge_tiles,
    process_image_in_tiles,
    process_tiles,
    split_image_into_tiles,
)
from .cli import build_settings, default_output_folder, main, parse_args, run_pipeline
from .denoise import (
    DenoiseVariant,
    bilateral_filter,
    denoise_image,
    gaussian_filter,
    mean_filter,
    median_filter,
    non_local_means,
    total_variation,
)
from .image import EnhancementConfigError, ImageDimensionError, InvalidConfigurationError, RasterImage
from .io_utils import LoadedImage, StagedOutput, UnsupportedFormatError, load_image, save_image
from .kernels import gaussian_kernel, gaussian_kernel_cached
from .pipeline import (
    EnhancementTransform,
    ProcessingResult,
    apply_enhancements,
    collect_images,
    enhance_image,
    ensure_output_path,
    process_single_image,
)

LOGGER = logging.getLogger("raster_enhancer")

__all__ = [
    "AutoAdjustment",
    "DenoiseVariant",
    "ENHANCEMENT_PRESETS",
    "EnhancementConfigError",
    "EnhancementSettings",
    "EnhancementTransform",
    "ImageDimensionError",
    "InvalidConfigurationError",
    "LoadedImage",
    "ProcessingResult",
    "RasterImage",
    "StagedOutput",
    "Tile",
    "UnsupportedFormatError",
    "adjust_brightness",
    "adjust_contrast",
    "analyze_image",
    "apply_enhancements",
    "auto_optimize_settings",
    "axis_weights",
    "bilateral_filter",
    "blend_weight",
    "build_settings",
    "collect_images",
    "contrast_factor",
    "default_output_folder",
    "denoise_image",
    "enhance_image",
    "ensure_output_path",
    "gaussian_filter",
    "gaussian_kernel",
    "gaussian_kernel_cached",
    "load_image",
    "main",
    "mean_filter",
    "median_filter",
    "merge_tiles",
    "non_local_means",
    "parse_args",
    "process_image_in_tiles",
    "process_single_image",
    "process_tiles",
    "run_pipeline",
    "save_image",
    "sharpen",
    "split_image_into_tiles",
    "total_variation",
]
