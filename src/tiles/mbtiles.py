"""MBTiles container store.

A single SQLite file holding tiles keyed by (zoom, column, row) plus a
name/value metadata table. Rows are stored in TMS order, so the y of a
slippy-map tile is flipped on the way in and out.
"""

from __future__ import annotations

import json
import logging
import math
import sqlite3
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from domain.errors import StorageFailed
from domain.models import TileJSON
from shared.constants import MAX_ZOOM, MIN_ZOOM, WORLD_BOUNDS

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

logger = logging.getLogger(__name__)

_GZIP_MAGIC = b'\x1f\x8b'
_ZLIB_MAGIC = (b'\x78\x01', b'\x78\x5e', b'\x78\x9c', b'\x78\xda')


def flip_y(zoom: int, y: int) -> int:
    """Convert between XYZ and TMS row numbering (self-inverse)."""
    return (1 << zoom) - 1 - y


def maybe_decompress(data: bytes) -> bytes:
    """Inflate gzip/zlib payloads; anything else is returned unchanged."""
    if data[:2] == _GZIP_MAGIC or data[:2] in _ZLIB_MAGIC:
        # wbits | 32 auto-detects the gzip or zlib header
        return zlib.decompress(data, zlib.MAX_WBITS | 32)
    return data


@dataclass
class MBTilesInfo:
    """Metadata declared by an MBTiles file."""

    name: str | None
    format: str | None
    minzoom: int
    maxzoom: int
    bounds: list[float]
    center: list[float]
    attribution: str | None
    extra: dict[str, str]


class MBTilesStore:
    """Random-access MBTiles file.

    Readers use one short-lived store per request (``with MBTilesStore(p):``)
    so that thousands of tile pulls never pile up open handles. The archive
    writer keeps a single store open in write mode for the whole job.

    Usage:
        with MBTilesStore(path, create=True) as store:
            store.put_metadata({'name': 'out', 'format': 'jpg'})
            store.put_tile(3, 2, 1, data)
    """

    def __init__(self, path: str | Path, *, create: bool = False) -> None:
        self.path = Path(path)
        self._create = create
        self._closed = False
        if not create and not self.path.is_file():
            msg = f'MBTiles file not found: {self.path}'
            raise FileNotFoundError(msg)
        try:
            if create:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
                self._conn.execute('PRAGMA synchronous=OFF')
                self._conn.execute('PRAGMA journal_mode=DELETE')
                self._init_schema()
            else:
                uri = f'{self.path.resolve().as_uri()}?mode=ro'
                self._conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        except sqlite3.Error as e:
            msg = f'Cannot open MBTiles file {self.path}: {e}'
            raise StorageFailed(msg) from e

    def _init_schema(self) -> None:
        """Initialize database schema."""
        self._conn.executescript('''
            CREATE TABLE IF NOT EXISTS metadata (
                name TEXT,
                value TEXT
            );
            CREATE UNIQUE INDEX IF NOT EXISTS metadata_name ON metadata (name);

            CREATE TABLE IF NOT EXISTS tiles (
                zoom_level INTEGER,
                tile_column INTEGER,
                tile_row INTEGER,
                tile_data BLOB
            );
            CREATE UNIQUE INDEX IF NOT EXISTS tile_index
                ON tiles (zoom_level, tile_column, tile_row);
        ''')
        self._conn.commit()

    # --- read side

    def get_tile(self, zoom: int, x: int, y: int) -> bytes | None:
        """Tile bytes for slippy-map (zoom, x, y), or None if absent."""
        cursor = self._conn.execute(
            '''SELECT tile_data FROM tiles
               WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?''',
            (zoom, x, flip_y(zoom, y)),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return bytes(row[0])

    def get_metadata(self) -> dict[str, str]:
        cursor = self._conn.execute('SELECT name, value FROM metadata')
        return {name: value for name, value in cursor.fetchall()}

    def get_info(self) -> MBTilesInfo:
        """Declared zoom/bounds/center/format, with the usual fallbacks.

        Zoom levels missing from the metadata table are read from the tiles
        table; the center defaults to the middle of the bounds at half the
        zoom range.
        """
        meta = self.get_metadata()
        minzoom = _as_int(meta.get('minzoom'))
        maxzoom = _as_int(meta.get('maxzoom'))
        if minzoom is None or maxzoom is None:
            row = self._conn.execute(
                'SELECT MIN(zoom_level), MAX(zoom_level) FROM tiles'
            ).fetchone()
            if minzoom is None:
                minzoom = row[0] if row and row[0] is not None else MIN_ZOOM
            if maxzoom is None:
                maxzoom = row[1] if row and row[1] is not None else MAX_ZOOM

        bounds = _as_floats(meta.get('bounds'), 4) or list(WORLD_BOUNDS)
        center = _as_floats(meta.get('center'), 3)
        if center is None:
            zoom_span = maxzoom - minzoom
            center_zoom = maxzoom if zoom_span <= 1 else math.floor(zoom_span * 0.5) + minzoom
            center = [
                (bounds[2] - bounds[0]) / 2 + bounds[0],
                (bounds[3] - bounds[1]) / 2 + bounds[1],
                center_zoom,
            ]

        known = {'name', 'format', 'minzoom', 'maxzoom', 'bounds', 'center', 'attribution'}
        return MBTilesInfo(
            name=meta.get('name'),
            format=meta.get('format'),
            minzoom=minzoom,
            maxzoom=maxzoom,
            bounds=bounds,
            center=center,
            attribution=meta.get('attribution'),
            extra={k: v for k, v in meta.items() if k not in known},
        )

    def tilejson(self, service: str) -> TileJSON:
        info = self.get_info()
        ext = '.pbf' if info.format == 'pbf' else ''
        return TileJSON(
            tilejson='1.0.0',
            tiles=[f'mbtiles://{service}/{{z}}/{{x}}/{{y}}{ext}'],
            minzoom=info.minzoom,
            maxzoom=info.maxzoom,
            center=info.center,
            bounds=info.bounds,
            format=info.format,
            name=info.name,
            attribution=info.attribution,
        )

    def tile_count(self) -> int:
        return int(self._conn.execute('SELECT COUNT(*) FROM tiles').fetchone()[0])

    def tile_counts_by_zoom(self) -> dict[int, int]:
        cursor = self._conn.execute(
            'SELECT zoom_level, COUNT(*) FROM tiles GROUP BY zoom_level ORDER BY zoom_level'
        )
        return {int(z): int(n) for z, n in cursor.fetchall()}

    # --- write side

    def put_metadata(self, metadata: Mapping[str, Any]) -> None:
        """Store metadata; lists/dicts are serialized the MBTiles way."""
        rows = [(str(k), _metadata_value(v)) for k, v in metadata.items()]
        try:
            self._conn.executemany(
                'INSERT OR REPLACE INTO metadata (name, value) VALUES (?, ?)', rows
            )
            self._conn.commit()
        except sqlite3.Error as e:
            msg = f'Cannot write metadata to {self.path}: {e}'
            raise StorageFailed(msg) from e

    def put_tile(self, zoom: int, x: int, y: int, data: bytes) -> None:
        self.put_tiles([(zoom, x, y, data)])

    def put_tiles(self, tiles: Iterable[tuple[int, int, int, bytes]]) -> None:
        """Store multiple tiles in a single transaction."""
        rows = [(z, x, flip_y(z, y), sqlite3.Binary(data)) for z, x, y, data in tiles]
        if not rows:
            return
        try:
            self._conn.executemany(
                '''INSERT OR REPLACE INTO tiles
                   (zoom_level, tile_column, tile_row, tile_data)
                   VALUES (?, ?, ?, ?)''',
                rows,
            )
            self._conn.commit()
        except sqlite3.Error as e:
            msg = f'Cannot write tiles to {self.path}: {e}'
            raise StorageFailed(msg) from e

    def finalize(self) -> None:
        """Commit anything pending and close; the archive is complete afterwards."""
        if self._closed:
            return
        try:
            self._conn.commit()
        except sqlite3.Error as e:
            msg = f'Cannot finalize MBTiles file {self.path}: {e}'
            raise StorageFailed(msg) from e
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._conn.close()
        except sqlite3.Error as e:
            msg = f'Cannot close MBTiles file {self.path}: {e}'
            raise StorageFailed(msg) from e

    def __enter__(self) -> MBTilesStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def read_tilejson(path: Path, service: str) -> TileJSON:
    with MBTilesStore(path) as store:
        return store.tilejson(service)


def read_tile(path: Path, zoom: int, x: int, y: int, *, vector: bool) -> bytes | None:
    """Open, read one tile, close. Vector payloads come back inflated."""
    with MBTilesStore(path) as store:
        data = store.get_tile(zoom, x, y)
    if data is None:
        return None
    return maybe_decompress(data) if vector else data


def _metadata_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ','.join(str(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value)
    return str(value)


def _as_int(value: str | None) -> int | None:
    if value is None or value == '':
        return None
    try:
        return int(float(value))
    except ValueError:
        logger.warning('Ignoring non-numeric zoom metadata value %r', value)
        return None


def _as_floats(value: str | None, count: int) -> list[float] | None:
    if not value:
        return None
    try:
        items = [float(v) for v in value.split(',')]
    except ValueError:
        return None
    if len(items) != count:
        return None
    return items
