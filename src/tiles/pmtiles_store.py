"""PMTiles (single-file, range-addressed) tile store.

Local archives are memory-mapped per call. Remote ``http(s)`` archives are
read with HTTP Range requests over the shared aiohttp session; the
synchronous ``pmtiles`` reader runs in a worker thread and bridges each
byte-range read back onto the event loop.
"""

from __future__ import annotations

import asyncio
import gzip
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pmtiles.reader import MmapSource, Reader
from pmtiles.tile import Compression, TileType

from domain.models import TileJSON
from infrastructure.http import fetch_range, redact_url
from shared.constants import (
    HTTP_BACKOFF_FACTOR,
    HTTP_RETRIES_DEFAULT,
    HTTP_TIMEOUT_DEFAULT,
    WORLD_BOUNDS,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    import aiohttp

logger = logging.getLogger(__name__)

_E7 = 10_000_000

_TILE_TYPE_NAMES = {
    TileType.UNKNOWN: 'unknown',
    TileType.MVT: 'mvt',
    TileType.PNG: 'png',
    TileType.JPEG: 'jpg',
    TileType.WEBP: 'webp',
}


@dataclass
class PMTilesInfo:
    """Summary of a PMTiles header."""

    tile_type: int
    tile_type_name: str
    tile_compression: int
    min_zoom: int
    max_zoom: int
    bounds: list[float]
    center: list[float]

    @property
    def is_vector(self) -> bool:
        return self.tile_type == TileType.MVT.value

    @property
    def format(self) -> str:
        return 'pbf' if self.is_vector else self.tile_type_name


def info_from_header(header: dict[str, Any]) -> PMTilesInfo:
    """Normalize a raw header dict.

    All-zero bounds mean "not declared" and become the whole world; a zero
    center becomes the bounds midpoint and a zero center zoom half of
    ``max_zoom``.
    """
    min_zoom = int(header.get('min_zoom', 0))
    max_zoom = int(header.get('max_zoom', 0))
    raw_bounds = [
        header.get('min_lon_e7', 0),
        header.get('min_lat_e7', 0),
        header.get('max_lon_e7', 0),
        header.get('max_lat_e7', 0),
    ]
    if all(v == 0 for v in raw_bounds):
        bounds = list(WORLD_BOUNDS)
    else:
        bounds = [v / _E7 for v in raw_bounds]

    center_lon = header.get('center_lon_e7', 0)
    center_lat = header.get('center_lat_e7', 0)
    if center_lon == 0 and center_lat == 0:
        lon = (bounds[0] + bounds[2]) / 2
        lat = (bounds[1] + bounds[3]) / 2
    else:
        lon, lat = center_lon / _E7, center_lat / _E7
    center_zoom = int(header.get('center_zoom', 0)) or max_zoom // 2

    tile_type = _enum_value(header.get('tile_type', TileType.UNKNOWN))
    try:
        type_name = _TILE_TYPE_NAMES[TileType(tile_type)]
    except ValueError:
        type_name = 'unknown'
    return PMTilesInfo(
        tile_type=tile_type,
        tile_type_name=type_name,
        tile_compression=_enum_value(header.get('tile_compression', Compression.NONE)),
        min_zoom=min_zoom,
        max_zoom=max_zoom,
        bounds=bounds,
        center=[lon, lat, center_zoom],
    )


def decompress_tile(data: bytes, compression: int) -> bytes:
    """Undo the archive-level tile compression (gzip only)."""
    if compression == Compression.GZIP.value:
        return gzip.decompress(data)
    if compression in (Compression.NONE.value, Compression.UNKNOWN.value):
        return data
    msg = f'Unsupported PMTiles tile compression: {compression}'
    raise ValueError(msg)


def tilejson_for(info: PMTilesInfo, name: str) -> TileJSON:
    ext = '.pbf' if info.is_vector else ''
    return TileJSON(
        tiles=[f'pmtiles://{name}/{{z}}/{{x}}/{{y}}{ext}'],
        minzoom=info.min_zoom,
        maxzoom=info.max_zoom,
        center=info.center,
        bounds=info.bounds,
        format=info.format,
        name=name,
    )


def _enum_value(value: Any) -> int:
    return int(getattr(value, 'value', value))


def _read_tile(reader: Reader, zoom: int, x: int, y: int) -> tuple[PMTilesInfo, bytes | None]:
    info = info_from_header(reader.header())
    data = reader.get(zoom, x, y)
    if data is None:
        return info, None
    if info.is_vector:
        data = decompress_tile(data, info.tile_compression)
    return info, data


class PMTilesFile:
    """Local PMTiles archive, opened and closed on every call."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _with_reader(self, fn: Callable[[Reader], Any]) -> Any:
        with self.path.open('rb') as f:
            return fn(Reader(MmapSource(f)))

    def info(self) -> PMTilesInfo:
        return self._with_reader(lambda r: info_from_header(r.header()))

    def get_tile(self, zoom: int, x: int, y: int) -> bytes | None:
        """Tile bytes; vector tiles are decompressed."""
        return self._with_reader(lambda r: _read_tile(r, zoom, x, y)[1])

    def tilejson(self, name: str) -> TileJSON:
        return tilejson_for(self.info(), name)


class RemotePMTiles:
    """PMTiles archive served over HTTP, read with Range requests."""

    def __init__(
        self,
        url: str,
        session: aiohttp.ClientSession,
        *,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
        retries: int = HTTP_RETRIES_DEFAULT,
        backoff: float = HTTP_BACKOFF_FACTOR,
    ) -> None:
        self.url = url
        self.session = session
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff

    def _get_bytes(self, loop: asyncio.AbstractEventLoop) -> Callable[[int, int], bytes]:
        def get_bytes(offset: int, length: int) -> bytes:
            future = asyncio.run_coroutine_threadsafe(
                fetch_range(
                    self.session,
                    self.url,
                    offset,
                    length,
                    timeout=self.timeout,
                    retries=self.retries,
                    backoff=self.backoff,
                ),
                loop,
            )
            return future.result()

        return get_bytes

    async def _run(self, fn: Callable[[Reader], Any]) -> Any:
        loop = asyncio.get_running_loop()
        reader = Reader(self._get_bytes(loop))
        logger.debug('Reading remote PMTiles %s', redact_url(self.url))
        return await asyncio.to_thread(fn, reader)

    async def info(self) -> PMTilesInfo:
        return await self._run(lambda r: info_from_header(r.header()))

    async def get_tile(self, zoom: int, x: int, y: int) -> bytes | None:
        return await self._run(lambda r: _read_tile(r, zoom, x, y)[1])

    async def tilejson(self, name: str) -> TileJSON:
        return tilejson_for(await self.info(), name)
