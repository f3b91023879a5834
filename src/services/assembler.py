"""Archive assembly: render every tile of bounds x zooms into one MBTiles."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

from domain.errors import MapPackerError, RenderFailed, StorageFailed
from domain.results import JobResult, utcnow
from geo.tilemath import checked_tile_range, iter_tiles, tile_center
from imaging.encode import encode_image
from render.engine import RenderOptions
from services.style import with_bounds_overlay
from shared.constants import (
    METADATA_FILENAME,
    RENDER_TILE_SIZE,
    THUMBNAIL_HEIGHT,
    THUMBNAIL_SUFFIX,
    THUMBNAIL_WIDTH,
    THUMBNAIL_ZOOM,
    ImageFormat,
)
from shared.diagnostics import log_memory_usage
from tiles.mbtiles import MBTilesStore
from tiles.writer import ArchiveWriter

if TYPE_CHECKING:
    from collections.abc import Collection

    from domain.models import BoundingBox, ZoomRange
    from render.engine import RenderEngine
    from tiles.resolver import RequestHandler, SourceResolver

logger = logging.getLogger(__name__)


def default_metadata(
    name: str,
    image_format: ImageFormat,
    bounds: BoundingBox,
    zoom_range: ZoomRange,
) -> dict[str, Any]:
    span = zoom_range.max_zoom - zoom_range.min_zoom
    center_zoom = zoom_range.max_zoom if span <= 1 else math.floor(span * 0.5) + zoom_range.min_zoom
    lon, lat = bounds.center
    return {
        'name': name,
        'format': image_format.value,
        'minzoom': zoom_range.min_zoom,
        'maxzoom': zoom_range.max_zoom,
        'type': 'overlay',
        'bounds': bounds.as_list(),
        'center': [lon, lat, center_zoom],
    }


def read_source_metadata(source_dir: Path | None) -> dict[str, Any]:
    """``metadata.json`` from the source directory; {} if absent or malformed."""
    if source_dir is None:
        return {}
    path = Path(source_dir) / METADATA_FILENAME
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except (OSError, ValueError) as e:
        logger.error('Error reading %s: %s', path, e)
        return {}
    if not isinstance(data, dict):
        logger.error('Ignoring %s: expected a JSON object', path)
        return {}
    return data


class ArchiveAssembler:
    """Drives one render per tile and commits the results to MBTiles.

    States: opened -> metadata written -> (per zoom: range computed -> per
    tile: rendered -> written) -> finalized -> published. Per-tile failures
    are logged and skipped; anything that prevents finalizing the archive
    fails the whole job.
    """

    def __init__(
        self,
        engine: RenderEngine,
        resolver: SourceResolver,
        *,
        tile_size: int = RENDER_TILE_SIZE,
        thumbnail: bool = False,
        work_dir: Path | None = None,
    ) -> None:
        self.engine = engine
        self.resolver = resolver
        self.tile_size = tile_size
        self.thumbnail = thumbnail
        self.work_dir = work_dir

    async def assemble(
        self,
        style: dict[str, Any],
        source_dir: Path | None,
        bounds: BoundingBox,
        zoom_range: ZoomRange,
        ratio: int,
        image_format: ImageFormat | str,
        destination: Path,
        *,
        skip_zooms: Collection[int] = (),
    ) -> JobResult:
        """Render bounds x zooms into ``destination``.

        Levels in ``skip_zooms`` have no source data and are left out of
        the archive.
        """
        started_at = utcnow()
        warnings: list[str] = []
        image_format = ImageFormat.parse(image_format)
        destination = Path(destination)
        log_memory_usage('assembly start')

        try:
            work_parent = self.work_dir or destination.parent
            await asyncio.to_thread(work_parent.mkdir, parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(dir=work_parent, prefix='assemble-') as tmp:
                tmp_path = Path(tmp) / destination.name
                metadata = default_metadata(destination.stem, image_format, bounds, zoom_range)
                metadata.update(await asyncio.to_thread(read_source_metadata, source_dir))
                # source metadata describes the downloaded tiles, not the rendered ones
                metadata['format'] = image_format.value

                tile_count, tiles_by_zoom, failed = await self._render_archive(
                    tmp_path,
                    metadata,
                    style,
                    bounds,
                    zoom_range,
                    ratio,
                    image_format,
                    frozenset(skip_zooms),
                )
                if failed:
                    warnings.append(f'{failed} tiles failed to render and were skipped')

                thumbnail_path = None
                if self.thumbnail:
                    thumbnail_path = await self._write_thumbnail(
                        style, bounds, ratio, destination, warnings
                    )

                file_size = tmp_path.stat().st_size
                await asyncio.to_thread(_publish, tmp_path, destination)
        except MapPackerError as e:
            logger.error('Archive assembly failed: %s', e)
            return JobResult.from_error(e, started_at=started_at, warnings=warnings)
        except Exception as e:
            logger.exception('Archive assembly failed')
            msg = f'Archive assembly failed: {e}'
            err = StorageFailed(msg)
            return JobResult.from_error(err, started_at=started_at, warnings=warnings)
        finally:
            log_memory_usage('assembly end')

        logger.info(
            'MBTiles file generation completed: %s (%d tiles, %d bytes)',
            destination,
            tile_count,
            file_size,
        )
        return JobResult.success(
            output_path=str(destination),
            file_size=file_size,
            tile_count=tile_count,
            tiles_by_zoom=tiles_by_zoom,
            thumbnail_path=str(thumbnail_path) if thumbnail_path else None,
            warnings=warnings,
            started_at=started_at,
        )

    async def _render_archive(
        self,
        path: Path,
        metadata: dict[str, Any],
        style: dict[str, Any],
        bounds: BoundingBox,
        zoom_range: ZoomRange,
        ratio: int,
        image_format: ImageFormat,
        skip_zooms: frozenset[int],
    ) -> tuple[int, dict[int, int], int]:
        handler = self.resolver.request_handler()
        failed = 0
        store = await asyncio.to_thread(MBTilesStore, path, create=True)
        try:
            await asyncio.to_thread(store.put_metadata, metadata)
            writer = ArchiveWriter(store)
            writer.start()
            try:
                for zoom in zoom_range.levels():
                    if zoom in skip_zooms:
                        logger.warning('Skipping zoom level %d: no source tiles', zoom)
                        continue
                    tile_range = checked_tile_range(bounds, zoom)
                    logger.info(
                        'Rendering zoom level %d (%d tiles)...', zoom, tile_range.count
                    )
                    for x, y in iter_tiles(tile_range):
                        try:
                            data = await self.render_tile(
                                style, handler, zoom, x, y, ratio, image_format
                            )
                        except RenderFailed as e:
                            logger.error('%s', e)
                            failed += 1
                            continue
                        await asyncio.to_thread(writer.put, zoom, x, y, data)
            finally:
                await asyncio.to_thread(writer.stop)
            tile_count = await asyncio.to_thread(store.tile_count)
            tiles_by_zoom = await asyncio.to_thread(store.tile_counts_by_zoom)
            await asyncio.to_thread(store.finalize)
        finally:
            await asyncio.to_thread(store.close)
        return tile_count, tiles_by_zoom, failed

    async def render_tile(
        self,
        style: dict[str, Any],
        handler: RequestHandler,
        zoom: int,
        x: int,
        y: int,
        ratio: int,
        image_format: ImageFormat,
    ) -> bytes:
        """Render and encode one tile; any failure becomes RenderFailed."""
        options = RenderOptions(
            zoom=zoom,
            center=tile_center(x, y, zoom),
            width=self.tile_size,
            height=self.tile_size,
            ratio=ratio,
        )
        try:
            image = await self.engine.render(style, handler, options)
            return await asyncio.to_thread(
                encode_image, image.data, image.width, image.height, image_format
            )
        except Exception as e:
            raise RenderFailed(zoom, x, y, e) from e

    async def _write_thumbnail(
        self,
        style: dict[str, Any],
        bounds: BoundingBox,
        ratio: int,
        destination: Path,
        warnings: list[str],
    ) -> Path | None:
        options = RenderOptions(
            zoom=THUMBNAIL_ZOOM,
            center=bounds.center,
            width=THUMBNAIL_WIDTH,
            height=THUMBNAIL_HEIGHT,
            ratio=ratio,
            mode='static',
        )
        path = destination.with_suffix(THUMBNAIL_SUFFIX)
        try:
            image = await self.engine.render(
                with_bounds_overlay(style, bounds), self.resolver.request_handler(), options
            )
            data = await asyncio.to_thread(
                encode_image, image.data, image.width, image.height, ImageFormat.JPG
            )
            await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(path.write_bytes, data)
        except Exception as e:
            msg = f'Thumbnail could not be rendered: {e}'
            logger.warning(msg)
            warnings.append(msg)
            return None
        logger.info('Thumbnail saved to %s', path)
        return path


def _publish(tmp_path: Path, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.move(str(tmp_path), str(destination))
