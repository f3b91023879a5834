"""Geo module - slippy-map tile math."""

from .tilemath import (
    TileRange,
    checked_tile_range,
    count_tiles,
    iter_tiles,
    point_for_tile,
    quad_key,
    tile_center,
    tile_for_point,
    tile_range_for_bounds,
    validate_tile_range,
)

__all__ = [
    'TileRange',
    'checked_tile_range',
    'count_tiles',
    'iter_tiles',
    'point_for_tile',
    'quad_key',
    'tile_center',
    'tile_for_point',
    'tile_range_for_bounds',
    'validate_tile_range',
]
