"""Image I/O boundary: Pillow decoding/encoding and staged atomic writes.

The enhancement core only understands :class:`~raster_enhancer.image.RasterImage`;
this module converts to and from files.

Key Components
--------------

LoadedImage
    Decoded image plus the source format and ICC profile to carry through.

StagedOutput
    Context manager that writes to a hidden sibling file and moves it over the
    destination only when the write succeeds.
"""
from __future__ import annotations

import contextlib
import dataclasses
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

import numpy as np
from PIL import Image

from .image import RasterImage

LOGGER = logging.getLogger("raster_enhancer")


class UnsupportedFormatError(ValueError):
    """Raised when no Pillow writer is registered for an output suffix."""


@dataclasses.dataclass(frozen=True)
class LoadedImage:
    """Decoded source image with the metadata worth preserving.

    Attributes:
        image: RGB pixels of the source.
        source_format: Pillow format name reported by the decoder, if any.
        icc_profile: Embedded colour profile bytes, if any.
    """

    image: RasterImage
    source_format: Optional[str] = None
    icc_profile: Optional[bytes] = None


def image_from_pil(pil_image: Image.Image) -> RasterImage:
    """Convert a Pillow image to a :class:`RasterImage`.

    Greyscale images are expanded to three channels and alpha is dropped.
    """
    if pil_image.mode != "RGB":
        pil_image = pil_image.convert("RGB")
    return RasterImage.from_array(np.asarray(pil_image, dtype=np.uint8))


def image_to_pil(image: RasterImage) -> Image.Image:
    return Image.fromarray(np.array(image.pixels, copy=True))


def load_image_with_info(path: Path) -> LoadedImage:
    """Decode *path* and keep its format and ICC profile."""
    with Image.open(path) as pil_image:
        icc_profile = None
        if isinstance(pil_image.info, dict):
            icc_profile = pil_image.info.get("icc_profile")
        source_format = pil_image.format
        image = image_from_pil(pil_image)
    LOGGER.debug("Loaded %s (%s, %sx%s)", path, source_format, image.width, image.height)
    return LoadedImage(image=image, source_format=source_format, icc_profile=icc_profile)


def load_image(path: Path) -> RasterImage:
    """Decode *path* into RGB pixels."""
    return load_image_with_info(path).image


def format_for_path(path: Path) -> str:
    """Return the Pillow format name that writes files with *path*'s suffix.

    Raises:
        UnsupportedFormatError: If the suffix has no registered writer.
    """
    suffix = Path(path).suffix.lower()
    fmt = Image.registered_extensions().get(suffix)
    if fmt is None or fmt not in Image.SAVE:
        raise UnsupportedFormatError(f"No image writer registered for '{suffix or path}'")
    return fmt


def save_image(
    destination: Path,
    image: RasterImage,
    *,
    format: Optional[str] = None,  # pylint: disable=redefined-builtin
    icc_profile: Optional[bytes] = None,
) -> None:
    """Encode *image* to *destination*.

    Args:
        destination: Output path.
        image: Pixels to write.
        format: Pillow format name; inferred from the suffix when omitted.
        icc_profile: Optional colour profile to embed.
    """
    fmt = format or format_for_path(destination)
    save_kwargs = {}
    if icc_profile and fmt in {"PNG", "JPEG", "TIFF", "WEBP"}:
        save_kwargs["icc_profile"] = icc_profile
    if fmt == "JPEG":
        save_kwargs["quality"] = 95
    image_to_pil(image).save(os.fspath(destination), format=fmt, **save_kwargs)


@dataclasses.dataclass
class StagedOutput:
    """Write to a temporary sibling of *destination* and publish on success.

    Entering the context yields the staging path. On a clean exit the staged
    file replaces *destination*; on an exception it is removed and the
    original destination is left untouched.

    Attributes:
        destination: Final output file path.
        suffix: Marker inserted into the temporary file name.
    """

    destination: Path
    suffix: str = ".partial"
    _staged: Optional[Path] = dataclasses.field(default=None, init=False, repr=False)

    def __enter__(self) -> Path:
        self.destination.parent.mkdir(parents=True, exist_ok=True)
        self._staged = self.destination.with_name(
            f".{self.destination.name}{self.suffix}-{uuid.uuid4().hex}"
        )
        return self._staged

    def __exit__(self, exc_type, exc, tb) -> bool:
        staged, self._staged = self._staged, None
        if staged is None:
            return False
        if exc_type is not None:
            with contextlib.suppress(FileNotFoundError):
                staged.unlink()
            return False
        try:
            os.replace(staged, self.destination)
        except OSError:
            with contextlib.suppress(FileNotFoundError):
                staged.unlink()
            raise
        return False


__all__ = [
    "LoadedImage",
    "StagedOutput",
    "UnsupportedFormatError",
    "format_for_path",
    "image_from_pil",
    "image_to_pil",
    "load_image",
    "load_image_with_info",
    "save_image",
]
