"""Processing orchestration shared between the CLI and library callers."""
from __future__ import annotations

import dataclasses
import logging
import os
import time
from pathlib import Path
from typing import Iterable, Iterator, Optional

from tqdm import tqdm

from .adjustments import EnhancementSettings, adjust_brightness, adjust_contrast, sharpen
from .analysis import auto_optimize_settings
from .blocks import Tile, process_image_in_tiles
from .denoise import denoise_image
from .image import RasterImage
from .io_utils import StagedOutput, format_for_path, load_image_with_info, save_image

LOGGER = logging.getLogger("raster_enhancer")
WORKER_LOGGER = LOGGER.getChild("worker")

IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff")


def _tqdm_progress(
    iterable: Iterable[object], *, total: Optional[int], description: Optional[str]
) -> Iterable[object]:
    return tqdm(iterable, total=total, desc=description, unit="image")


_PROGRESS_WRAPPER = _tqdm_progress


def _wrap_with_progress(
    iterable: Iterable[Path],
    *,
    total: Optional[int],
    description: str,
    enabled: bool,
) -> Iterable[Path]:
    """Return *iterable* wrapped with the progress helper when enabled."""

    if not enabled:
        return iterable
    return _PROGRESS_WRAPPER(iterable, total=total, description=description)


def apply_enhancements(image: RasterImage, settings: EnhancementSettings) -> RasterImage:
    """Run denoise, brightness, contrast and sharpen on *image*.

    Denoising always runs; the tone stages run only for non-zero amounts and
    sharpening only for positive amounts.
    """
    result = denoise_image(
        image,
        settings.denoise,
        settings.kernel_size,
        settings.tv_lambda,
        settings.tv_iterations,
    )
    if settings.brightness != 0:
        result = adjust_brightness(result, settings.brightness)
    if settings.contrast != 0:
        result = adjust_contrast(result, settings.contrast)
    if settings.sharpness > 0:
        result = sharpen(result, settings.sharpness)
    return result


@dataclasses.dataclass(frozen=True)
class EnhancementTransform:
    """Picklable per-tile transform applying :func:`apply_enhancements`."""

    settings: EnhancementSettings

    def __call__(self, tile: Tile) -> Tile:
        WORKER_LOGGER.debug("Enhancing tile at (%s, %s) %sx%s", tile.x, tile.y, tile.width, tile.height)
        return tile.with_image(apply_enhancements(tile.image, self.settings))


@dataclasses.dataclass(frozen=True)
class ProcessingResult:
    """Processed image with the wall-clock time the enhancement took.

    Attributes:
        image: Enhanced pixels, same dimensions as the input.
        duration: Elapsed seconds.
        settings: Settings that produced the image (after auto optimisation).
    """

    image: RasterImage
    duration: float
    settings: EnhancementSettings


def resolve_workers(settings: EnhancementSettings) -> int:
    if settings.workers is not None:
        return settings.workers
    return os.cpu_count() or 1


def enhance_image(
    image: RasterImage, settings: EnhancementSettings, *, progress: bool = False
) -> ProcessingResult:
    """Enhance *image* directly or tile by tile, and time it.

    With ``settings.use_parallel`` the image is split into overlapping tiles
    of ``settings.block_size`` which are enhanced in worker processes and
    blended back together; ``progress`` shows a tile progress bar then.
    """
    start = time.perf_counter()
    if settings.use_parallel:
        workers = resolve_workers(settings)
        LOGGER.debug("Block processing with size %s on %s worker(s)", settings.block_size, workers)
        output = process_image_in_tiles(
            image,
            settings.block_size,
            EnhancementTransform(settings),
            workers=workers,
            progress=progress,
        )
    else:
        output = apply_enhancements(image, settings)
    duration = time.perf_counter() - start
    return ProcessingResult(image=output, duration=duration, settings=settings)


def collect_images(folder: Path, recursive: bool) -> Iterator[Path]:
    candidates = folder.rglob("*") if recursive else folder.glob("*")
    for path in candidates:
        if path.is_file() and path.suffix.lower() in IMAGE_SUFFIXES:
            yield path


def ensure_output_path(
    input_root: Path,
    output_root: Path,
    source: Path,
    suffix: str,
    recursive: bool,
    *,
    create: bool = True,
) -> Path:
    relative = source.relative_to(input_root) if recursive else Path(source.name)
    destination = output_root / relative
    if create:
        destination.parent.mkdir(parents=True, exist_ok=True)
    return destination.with_name(destination.stem + suffix + destination.suffix)


def process_single_image(
    source: Path,
    destination: Path,
    settings: EnhancementSettings,
    *,
    auto: bool = False,
    dry_run: bool = False,
    progress: bool = False,
) -> Optional[ProcessingResult]:
    """Load, enhance and save one file.

    Args:
        source: Input image path.
        destination: Output path; its suffix selects the output format.
        settings: Base enhancement settings.
        auto: Derive tone, sharpness and kernel size from the image first.
        dry_run: Validate the destination and log the plan without processing.
        progress: Show tile progress when block processing is enabled.

    Returns:
        The processing result, or ``None`` for a dry run.
    """
    WORKER_LOGGER.info("Processing %s -> %s", source, destination)
    if destination.exists() and not destination.is_file():
        raise ValueError(f"Destination path exists but is not a file: {destination}")
    output_format = format_for_path(destination)
    if dry_run:
        WORKER_LOGGER.info("Dry run enabled, skipping %s", destination)
        return None

    loaded = load_image_with_info(source)
    effective = auto_optimize_settings(loaded.image, settings) if auto else settings
    result = enhance_image(loaded.image, effective, progress=progress)
    with StagedOutput(destination) as staged_path:
        save_image(staged_path, result.image, format=output_format, icc_profile=loaded.icc_profile)
    WORKER_LOGGER.info("Enhanced %s in %.3f seconds", source.name, result.duration)
    return result


__all__ = [
    "EnhancementTransform",
    "IMAGE_SUFFIXES",
    "ProcessingResult",
    "apply_enhancements",
    "collect_images",
    "enhance_image",
    "ensure_output_path",
    "process_single_image",
    "resolve_workers",
]
