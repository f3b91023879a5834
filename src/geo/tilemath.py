"""Slippy-map tile math (Web Mercator).

Pure functions, no I/O. Tile (0, 0) is the north-west corner of the
``2**zoom`` x ``2**zoom`` grid; y grows southward.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, NamedTuple

from domain.errors import InvalidRange
from shared.constants import MERCATOR_MAX_LAT_DEG

if TYPE_CHECKING:
    from collections.abc import Iterator

    from domain.models import BoundingBox, ZoomRange


class TileRange(NamedTuple):
    min_x: int
    min_y: int
    max_x: int
    max_y: int

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def count(self) -> int:
        return self.width * self.height


def tile_for_point(lon: float, lat: float, zoom: int) -> tuple[int, int]:
    """Return the (x, y) tile containing a WGS84 point at ``zoom``."""
    n = 2**zoom
    lat = min(max(lat, -MERCATOR_MAX_LAT_DEG), MERCATOR_MAX_LAT_DEG)
    lat_rad = math.radians(lat)
    x = math.floor((lon + 180.0) / 360.0 * n)
    y = math.floor(
        (1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n
    )
    # east edge (lon=180) and the clamped poles land one past the grid
    return min(max(x, 0), n - 1), min(max(y, 0), n - 1)


def _lat_for_mercator_y(y: float, zoom: int) -> float:
    n = 2**zoom
    return math.degrees(math.atan(math.sinh(math.pi * (1.0 - 2.0 * y / n))))


def point_for_tile(x: float, y: float, zoom: int) -> tuple[float, float]:
    """Return (lon, lat) of the north-west corner of tile (x, y)."""
    n = 2**zoom
    lon = x / n * 360.0 - 180.0
    return lon, _lat_for_mercator_y(y, zoom)


def tile_center(x: int, y: int, zoom: int) -> tuple[float, float]:
    """Return the (lon, lat) render centre of a tile.

    The latitude is taken at the Mercator midpoint of the tile, which keeps
    the rendered frame aligned with the tile grid; the plain average of the
    corner latitudes drifts north at high latitudes.
    """
    west, _ = point_for_tile(x, y, zoom)
    east, _ = point_for_tile(x + 1, y + 1, zoom)
    return (west + east) / 2.0, _lat_for_mercator_y(y + 0.5, zoom)


def tile_range_for_bounds(bounds: BoundingBox, zoom: int) -> TileRange:
    """Tile range covering ``bounds`` at ``zoom``.

    South-west gives (min_x, max_y) and north-east gives (max_x, min_y).
    """
    min_x, max_y = tile_for_point(bounds.west, bounds.south, zoom)
    max_x, min_y = tile_for_point(bounds.east, bounds.north, zoom)
    return TileRange(min_x, min_y, max_x, max_y)


def validate_tile_range(min_x: float, min_y: float, max_x: float, max_y: float) -> None:
    """Raise InvalidRange for non-finite or inverted ranges."""
    coords = (min_x, min_y, max_x, max_y)
    if not all(isinstance(c, (int, float)) and math.isfinite(c) for c in coords):
        msg = f'Tile range contains non-finite coordinates: {coords}'
        raise InvalidRange(msg)
    if min_x > max_x:
        msg = f'Tile range min_x ({min_x}) is greater than max_x ({max_x})'
        raise InvalidRange(msg)
    if min_y > max_y:
        msg = f'Tile range min_y ({min_y}) is greater than max_y ({max_y})'
        raise InvalidRange(msg)


def checked_tile_range(bounds: BoundingBox, zoom: int) -> TileRange:
    tr = tile_range_for_bounds(bounds, zoom)
    validate_tile_range(*tr)
    return tr


def iter_tiles(tile_range: TileRange) -> Iterator[tuple[int, int]]:
    """Yield (x, y) in row-major order: x outer, y inner."""
    for x in range(tile_range.min_x, tile_range.max_x + 1):
        for y in range(tile_range.min_y, tile_range.max_y + 1):
            yield x, y


def quad_key(x: int, y: int, zoom: int) -> str:
    """Encode a tile as a quadtree key.

    Zoom 0 has no quadkey tile, so it is treated as zoom 1.
    """
    zoom = max(zoom, 1)
    digits = []
    for i in range(zoom, 0, -1):
        mask = 1 << (i - 1)
        digit = 0
        if x & mask:
            digit += 1
        if y & mask:
            digit += 2
        digits.append(str(digit))
    return ''.join(digits)


def count_tiles(bounds: BoundingBox, zoom_range: ZoomRange) -> dict[int, int]:
    """Number of tiles per zoom level covering ``bounds``."""
    return {z: checked_tile_range(bounds, z).count for z in zoom_range.levels()}
