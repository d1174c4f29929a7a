"""Immutable RGB raster container shared by every enhancement stage."""
from __future__ import annotations

import dataclasses
from typing import Union

import numpy as np


class EnhancementConfigError(ValueError):
    """Raised when an image or parameter set cannot be processed."""


class InvalidConfigurationError(EnhancementConfigError):
    """Raised for out-of-range parameters or degenerate processing windows."""


class ImageDimensionError(EnhancementConfigError):
    """Raised when pixel data does not match the declared dimensions."""


BufferLike = Union[bytes, bytearray, memoryview, np.ndarray]


@dataclasses.dataclass(frozen=True)
class RasterImage:
    """Width x height grid of 8-bit RGB samples.

    The pixel array is stored row-major with shape ``(height, width, 3)`` and
    is flagged read-only; every transform returns a new instance.

    Attributes:
        pixels: uint8 array holding the image samples.
    """

    pixels: np.ndarray

    def __post_init__(self) -> None:
        arr = self.pixels
        if arr.ndim != 3 or arr.shape[2] != 3:
            raise ImageDimensionError(f"Expected an (height, width, 3) array, got shape {arr.shape}")
        if arr.shape[0] == 0 or arr.shape[1] == 0:
            raise ImageDimensionError(f"Image dimensions must be positive, got {arr.shape[1]}x{arr.shape[0]}")
        if arr.dtype != np.uint8:
            raise ImageDimensionError(f"Expected uint8 samples, got {arr.dtype}")
        # Only a read-only, C-ordered array that owns its memory cannot be
        # changed through another reference.
        if arr.flags.writeable or not arr.flags.c_contiguous or not arr.flags.owndata:
            frozen = np.array(arr, dtype=np.uint8, copy=True, order="C")
            frozen.setflags(write=False)
            object.__setattr__(self, "pixels", frozen)

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "RasterImage":
        """Build an image from any ``(height, width, 3)`` numeric array.

        Values are clipped to [0, 255] and truncated; the array is copied so
        later changes by the caller cannot leak into the image.
        """
        working = np.asarray(arr)
        if working.ndim != 3 or working.shape[2] != 3:
            raise ImageDimensionError(f"Expected an (height, width, 3) array, got shape {working.shape}")
        if working.dtype != np.uint8:
            working = np.clip(working, 0, 255).astype(np.uint8)
        frozen = np.array(working, dtype=np.uint8, copy=True, order="C")
        frozen.setflags(write=False)
        return cls(pixels=frozen)

    @classmethod
    def from_buffer(cls, width: int, height: int, data: BufferLike) -> "RasterImage":
        """Build an image from a flat row-major RGB buffer.

        Raises:
            ImageDimensionError: If the dimensions are not positive or the
                buffer length differs from ``width * height * 3``.
        """
        if width <= 0 or height <= 0:
            raise ImageDimensionError(f"Image dimensions must be positive, got {width}x{height}")
        flat = np.frombuffer(bytes(data), dtype=np.uint8) if not isinstance(data, np.ndarray) else data.ravel()
        expected = width * height * 3
        if flat.size != expected:
            raise ImageDimensionError(
                f"Buffer holds {flat.size} samples but a {width}x{height} RGB image needs {expected}"
            )
        return cls.from_array(flat.reshape((height, width, 3)))

    @classmethod
    def filled(cls, width: int, height: int, color: tuple[int, int, int]) -> "RasterImage":
        """Return a uniform image of the given colour."""
        if width <= 0 or height <= 0:
            raise ImageDimensionError(f"Image dimensions must be positive, got {width}x{height}")
        arr = np.empty((height, width, 3), dtype=np.uint8)
        arr[...] = np.asarray(color, dtype=np.uint8)
        return cls.from_array(arr)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def buffer(self) -> bytes:
        """Flat row-major RGB bytes."""
        return self.pixels.tobytes()

    def as_float(self) -> np.ndarray:
        """Return a writable float64 copy of the samples."""
        return self.pixels.astype(np.float64)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RasterImage):
            return NotImplemented
        return self.pixels.shape == other.pixels.shape and bool(np.array_equal(self.pixels, other.pixels))

    def __hash__(self) -> int:
        return hash((self.pixels.shape, self.pixels.tobytes()))

    def __repr__(self) -> str:
        return f"RasterImage(width={self.width}, height={self.height})"

    def __reduce__(self):
        # Rebuild through from_array so unpickled copies are read-only again.
        return (self.__class__.from_array, (np.asarray(self.pixels),))


__all__ = [
    "EnhancementConfigError",
    "ImageDimensionError",
    "InvalidConfigurationError",
    "RasterImage",
]
