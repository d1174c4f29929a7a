"""Block decomposition: overlapping tiles, parallel dispatch and seamless merge.

Tiles are laid on a grid with stride ``tile_size - tile_size // 4`` so that
neighbouring tiles share ``overlap = tile_size // 4`` pixels. Each tile owns a
read-only copy of its pixels, which lets tiles be shipped to worker processes
without any shared state. Merging blends tiles with a per-pixel weight that
ramps from 0 at a tile's outer edge to 1 at ``overlap`` pixels inwards.
"""
from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import ProcessPoolExecutor
from typing import Callable, Iterable, List

import numpy as np
from tqdm import tqdm

from .image import ImageDimensionError, InvalidConfigurationError, RasterImage
from .kernels import round_to_uint8

LOGGER = logging.getLogger("raster_enhancer")

BLEND_EXPONENT = 1.5


@dataclasses.dataclass(frozen=True)
class Tile:
    """Axis-aligned sub-rectangle of a source image.

    Attributes:
        x: Column of the tile's top-left pixel in the source image.
        y: Row of the tile's top-left pixel in the source image.
        image: The tile's own pixels.
        overlap: Blend margin shared with neighbouring tiles.
    """

    x: int
    y: int
    image: RasterImage
    overlap: int

    def __post_init__(self) -> None:
        if self.x < 0 or self.y < 0:
            raise ImageDimensionError(f"Tile origin must not be negative, got ({self.x}, {self.y})")
        if self.overlap < 0:
            raise InvalidConfigurationError(f"Tile overlap must not be negative, got {self.overlap}")

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def pixels(self) -> np.ndarray:
        return self.image.pixels

    def to_image(self) -> RasterImage:
        return self.image

    def with_image(self, image: RasterImage) -> "Tile":
        """Return a tile at the same position carrying *image*.

        Raises:
            ImageDimensionError: If *image* does not match the tile size.
        """
        if (image.width, image.height) != (self.width, self.height):
            raise ImageDimensionError(
                f"Processed tile is {image.width}x{image.height}, expected {self.width}x{self.height}"
            )
        return dataclasses.replace(self, image=image)


TileTransform = Callable[[Tile], Tile]


def split_image_into_tiles(image: RasterImage, tile_size: int) -> List[Tile]:
    """Cut *image* into overlapping tiles.

    Args:
        image: Source image.
        tile_size: Nominal tile width and height. Tiles on the right and
            bottom edges are clipped to the image.

    Returns:
        Tiles in row-major order.
    """
    if tile_size < 1:
        raise InvalidConfigurationError(f"tile_size must be at least 1, got {tile_size}")
    overlap = tile_size // 4
    stride = tile_size - overlap
    tiles: List[Tile] = []
    for y in range(0, image.height, stride):
        for x in range(0, image.width, stride):
            tile_width = min(image.width - x, tile_size)
            tile_height = min(image.height - y, tile_size)
            region = image.pixels[y : y + tile_height, x : x + tile_width]
            tiles.append(Tile(x=x, y=y, image=RasterImage.from_array(region), overlap=overlap))
    LOGGER.debug(
        "Split %s into %s tile(s) of %s px (overlap %s)", image, len(tiles), tile_size, overlap
    )
    return tiles


def _track(results: Iterable[Tile], total: int, enabled: bool) -> Iterable[Tile]:
    if not enabled:
        return results
    return tqdm(results, total=total, desc="Processing tiles", unit="tile", leave=False)


def process_tiles(
    tiles: Iterable[Tile],
    transform: TileTransform,
    *,
    workers: int = 1,
    progress: bool = False,
) -> List[Tile]:
    """Apply *transform* to every tile.

    With ``workers > 1`` the tiles are distributed over a process pool, so
    *transform* must be picklable (a module-level function or a picklable
    callable object). Results keep the input order.

    Args:
        tiles: Tiles to process.
        transform: Pure ``Tile -> Tile`` callable.
        workers: Number of worker processes; 1 runs in the calling process.
        progress: Show a tqdm bar while tiles complete.
    """
    tile_list = list(tiles)
    if workers <= 1 or len(tile_list) <= 1:
        return list(_track(map(transform, tile_list), len(tile_list), progress))

    LOGGER.debug("Processing %s tile(s) across %s worker(s)", len(tile_list), workers)
    chunksize = max(1, len(tile_list) // (workers * 4))
    with ProcessPoolExecutor(max_workers=workers) as executor:
        results = executor.map(transform, tile_list, chunksize=chunksize)
        return list(_track(results, len(tile_list), progress))


def axis_weights(size: int, overlap: int) -> np.ndarray:
    """Blend ramp along one tile axis.

    Positions within ``overlap`` of the start get ``(i / overlap) ** 1.5``;
    otherwise positions within ``overlap`` of the end get
    ``((size - i - 1) / overlap) ** 1.5``; everything else gets 1.
    """
    idx = np.arange(size, dtype=np.float64)
    ramp = np.ones(size, dtype=np.float64)
    if overlap <= 0:
        return ramp
    leading = idx < overlap
    trailing = ~leading & (idx >= size - overlap)
    ramp[leading] = (idx[leading] / overlap) ** BLEND_EXPONENT
    ramp[trailing] = ((size - idx[trailing] - 1) / overlap) ** BLEND_EXPONENT
    return ramp


def blend_weight(x: int, y: int, width: int, height: int, overlap: int) -> float:
    """Merge weight of pixel ``(x, y)`` inside a ``width x height`` tile."""
    if not (0 <= x < width and 0 <= y < height):
        raise ImageDimensionError(f"Pixel ({x}, {y}) lies outside a {width}x{height} tile")
    return float(axis_weights(width, overlap)[x] * axis_weights(height, overlap)[y])


def _nearest_weighted_neighbour(filled: np.ndarray, x: int, y: int):
    height, width = filled.shape
    best = None
    best_dist = None
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            nx = x + dx
            ny = y + dy
            if 0 <= nx < width and 0 <= ny < height and filled[ny, nx]:
                dist = dx * dx + dy * dy
                if best_dist is None or dist < best_dist:
                    best_dist = dist
                    best = (ny, nx)
    return best


def merge_tiles(tiles: Iterable[Tile], width: int, height: int) -> RasterImage:
    """Blend tiles back into a ``width x height`` image.

    Every tile adds ``weight * value`` and ``weight`` to a per-pixel
    accumulator; the output is the rounded weighted mean, which does not
    depend on tile order. Pixels that received no weight copy the closest
    8-neighbour that did.

    Raises:
        ImageDimensionError: If the canvas size is not positive.
        InvalidConfigurationError: If a pixel has no weight and no weighted
            neighbour.
    """
    if width <= 0 or height <= 0:
        raise ImageDimensionError(f"Merge canvas must be positive, got {width}x{height}")
    accum = np.zeros((height, width, 3), dtype=np.float64)
    weights = np.zeros((height, width), dtype=np.float64)

    merged = 0
    for tile in tiles:
        if tile.x >= width or tile.y >= height:
            continue
        visible_w = min(tile.width, width - tile.x)
        visible_h = min(tile.height, height - tile.y)
        tile_weight = np.outer(
            axis_weights(tile.height, tile.overlap), axis_weights(tile.width, tile.overlap)
        )[:visible_h, :visible_w]
        rows = slice(tile.y, tile.y + visible_h)
        cols = slice(tile.x, tile.x + visible_w)
        accum[rows, cols] += tile.pixels[:visible_h, :visible_w] * tile_weight[..., None]
        weights[rows, cols] += tile_weight
        merged += 1

    filled = weights > 0
    averaged = np.zeros_like(accum)
    np.divide(accum, weights[..., None], out=averaged, where=filled[..., None])
    result = round_to_uint8(averaged)

    for y, x in np.argwhere(~filled):
        source = _nearest_weighted_neighbour(filled, int(x), int(y))
        if source is None:
            raise InvalidConfigurationError(
                f"Pixel ({x}, {y}) received no tile weight and has no weighted neighbour"
            )
        result[y, x] = result[source]

    LOGGER.debug("Merged %s tile(s) into %sx%s image", merged, width, height)
    return RasterImage.from_array(result)


def process_image_in_tiles(
    image: RasterImage,
    tile_size: int,
    transform: TileTransform,
    *,
    workers: int = 1,
    progress: bool = False,
) -> RasterImage:
    """Split *image*, transform every tile and merge the results."""
    tiles = split_image_into_tiles(image, tile_size)
    processed = process_tiles(tiles, transform, workers=workers, progress=progress)
    return merge_tiles(processed, image.width, image.height)


__all__ = [
    "BLEND_EXPONENT",
    "Tile",
    "TileTransform",
    "axis_weights",
    "blend_weight",
    "merge_tiles",
    "process_image_in_tiles",
    "process_tiles",
    "split_image_into_tiles",
]
