"""Bulk download of provider tiles into a local directory store."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from domain.errors import AcquisitionFailed
from geo.tilemath import checked_tile_range, iter_tiles
from services.providers import check_credentials, get_provider
from shared.constants import (
    DOWNLOAD_CONCURRENCY,
    HTTP_BACKOFF_FACTOR,
    HTTP_RETRIES_DEFAULT,
    HTTP_TIMEOUT_DEFAULT,
    METADATA_FILENAME,
    TILE_INDEX_FILENAME,
)
from tiles.directory import DirectoryTileStore
from tiles.executor import TileOutcome, TileStatus, run_tiles, summarize
from tiles.fetcher import ProviderTileFetcher

if TYPE_CHECKING:
    from pathlib import Path

    import aiohttp

    from domain.models import AcquisitionJob

logger = logging.getLogger(__name__)


@dataclass
class ZoomReport:
    zoom: int
    requested: int
    fetched: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def available(self) -> int:
        return self.fetched + self.skipped


@dataclass
class AcquisitionReport:
    provider: str
    destination: Path
    tile_format: str
    zooms: list[ZoomReport] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def fetched(self) -> int:
        return sum(z.fetched for z in self.zooms)

    @property
    def skipped(self) -> int:
        return sum(z.skipped for z in self.zooms)

    @property
    def failed(self) -> int:
        return sum(z.failed for z in self.zooms)

    @property
    def available(self) -> int:
        return sum(z.available for z in self.zooms)

    @property
    def empty_zooms(self) -> frozenset[int]:
        """Zoom levels where no tile could be downloaded."""
        return frozenset(z.zoom for z in self.zooms if z.available == 0)


def _zoom_report(zoom: int, outcomes: list[TileOutcome]) -> ZoomReport:
    counts = summarize(outcomes)
    return ZoomReport(
        zoom=zoom,
        requested=len(outcomes),
        fetched=counts[TileStatus.FETCHED],
        skipped=counts[TileStatus.SKIPPED],
        failed=counts[TileStatus.FAILED],
    )


async def acquire(
    job: AcquisitionJob,
    session: aiohttp.ClientSession,
    *,
    concurrency: int = DOWNLOAD_CONCURRENCY,
    timeout: float = HTTP_TIMEOUT_DEFAULT,
    retries: int = HTTP_RETRIES_DEFAULT,
    backoff: float = HTTP_BACKOFF_FACTOR,
) -> AcquisitionReport:
    """Populate ``job.destination`` with provider tiles for bounds x zooms.

    Tiles already on disk are not fetched again, so rerunning an
    interrupted job only downloads what is missing. Failed tiles are logged
    and counted; a zoom level with no tile at all becomes a warning.

    Raises:
        InvalidInput: unknown provider or missing credentials.
        InvalidRange: the bounds project to an unusable tile range.
        AcquisitionFailed: no tile is available across the whole range.
    """
    provider = get_provider(job.provider)
    check_credentials(provider, job.credentials)
    store = DirectoryTileStore(job.destination, ext=provider.tile_format)
    fetcher = ProviderTileFetcher(
        session,
        provider,
        job.credentials,
        timeout=timeout,
        retries=retries,
        backoff=backoff,
    )
    report = AcquisitionReport(
        provider=provider.name,
        destination=job.destination,
        tile_format=provider.tile_format,
    )

    logger.info(
        'Downloading %s tiles from %s (zoom %d-%d) into %s',
        provider.tile_format,
        provider.label,
        job.zoom.min_zoom,
        job.zoom.max_zoom,
        job.destination,
    )
    if provider.requires_key:
        logger.debug('Using %s key %s', provider.label, job.credentials.masked_key())
    await asyncio.to_thread(job.destination.mkdir, parents=True, exist_ok=True)

    async def process_tile(zoom: int, x: int, y: int) -> None:
        data = await fetcher.fetch(zoom, x, y)
        await asyncio.to_thread(store.write_tile, zoom, x, y, data)

    for zoom in job.zoom.levels():
        tile_range = checked_tile_range(job.bounds, zoom)
        outcomes = await run_tiles(
            iter_tiles(tile_range),
            zoom=zoom,
            process_tile=process_tile,
            concurrency=concurrency,
            should_skip=lambda x, y, z=zoom: store.exists(z, x, y),
        )
        zr = _zoom_report(zoom, outcomes)
        report.zooms.append(zr)
        logger.info(
            'Zoom level %d downloaded with %d tiles (%d already present, %d failed)',
            zoom,
            zr.fetched,
            zr.skipped,
            zr.failed,
        )
        if zr.available == 0:
            msg = f'Zoom level {zoom}: no tiles could be downloaded ({zr.failed} failed)'
            logger.warning(msg)
            report.warnings.append(msg)

    if report.available == 0:
        msg = (
            f'No tiles could be downloaded from {provider.label} for zoom '
            f'{job.zoom.min_zoom}-{job.zoom.max_zoom}'
        )
        raise AcquisitionFailed(msg)

    await asyncio.to_thread(_write_json, job.destination / METADATA_FILENAME, provider.metadata())

    if provider.tilejson_url is not None:
        try:
            companion = await fetcher.fetch_companion()
        except Exception as e:
            msg = f'Could not download {provider.label} TileJSON: {e}'
            logger.warning(msg)
            report.warnings.append(msg)
        else:
            if companion is not None:
                path = job.destination / TILE_INDEX_FILENAME
                await asyncio.to_thread(path.write_bytes, companion)

    logger.info(
        'Tiles downloaded from %s: %d fetched, %d already present, %d failed',
        provider.label,
        report.fetched,
        report.skipped,
        report.failed,
    )
    return report


def _write_json(path: Path, data: dict) -> None:
    path.write_text(json.dumps(data, indent=4, ensure_ascii=False), encoding='utf-8')
