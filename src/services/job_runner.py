"""One archive job end to end: acquire (provider styles), check, assemble."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from domain.results import JobResult, utcnow
from services.acquisition import acquire
from services.assembler import ArchiveAssembler
from services.providers import check_credentials, get_provider
from services.style import check_local_sources, companion_tilejson, generate_style
from shared.constants import OVERLAY_FILENAME, SOURCES_DIRNAME, STYLE_FILENAME
from tiles.resolver import SourceResolver

if TYPE_CHECKING:
    from typing import Any

    import aiohttp

    from domain.models import ArchiveJob
    from render.engine import RenderEngine
    from settings import AppSettings

logger = logging.getLogger(__name__)


async def _prepare_provider_workspace(
    job: ArchiveJob,
    workspace: Path,
    session: aiohttp.ClientSession,
    settings: AppSettings,
    warnings: list[str],
) -> tuple[dict[str, Any], frozenset[int]]:
    """Download provider tiles into ``workspace/sources`` and write a style.

    Also returns the zoom levels that ended up with no tile on disk.
    """
    provider = get_provider(job.style)
    check_credentials(provider, job.credentials)
    sources = workspace / SOURCES_DIRNAME

    report = await acquire(
        job.acquisition_job(sources),
        session,
        concurrency=settings.http.concurrency,
        timeout=settings.http.timeout,
        retries=settings.http.retries,
        backoff=settings.http.backoff,
    )
    warnings.extend(report.warnings)

    if job.overlay:
        await asyncio.to_thread((sources / OVERLAY_FILENAME).write_text, job.overlay, 'utf-8')
        logger.info('Overlay GeoJSON saved to file')

    style = generate_style(provider, overlay=job.overlay is not None)
    if provider.is_vector:
        tilejson = await asyncio.to_thread(companion_tilejson, sources)
        if tilejson and 'maxzoom' in tilejson:
            style['sources'][provider.name]['maxzoom'] = tilejson['maxzoom']
    await asyncio.to_thread(
        (workspace / STYLE_FILENAME).write_text, json.dumps(style, indent=2), 'utf-8'
    )
    logger.info('Style file generated and saved')
    return style, report.empty_zooms


async def run_archive_job(
    job: ArchiveJob,
    *,
    engine: RenderEngine,
    session: aiohttp.ClientSession,
    settings: AppSettings,
) -> JobResult:
    """Run a job and always return a JobResult; never raises."""
    started_at = utcnow()
    warnings: list[str] = []
    workspace: Path | None = None
    skip_zooms: frozenset[int] = frozenset()
    logger.info(
        'Initiating rendering: style=%s bounds=%s zoom=%d-%d output=%s',
        job.style,
        job.bounds.as_list(),
        job.zoom.min_zoom,
        job.zoom.max_zoom,
        job.output_path,
    )
    try:
        if job.uses_provider:
            work_dir = settings.output.work_dir
            if work_dir is not None:
                await asyncio.to_thread(work_dir.mkdir, parents=True, exist_ok=True)
            workspace = Path(tempfile.mkdtemp(prefix='mappacker-', dir=work_dir))
            style, skip_zooms = await _prepare_provider_workspace(
                job, workspace, session, settings, warnings
            )
            source_dir: Path | None = workspace / SOURCES_DIRNAME
            style_dir: Path | None = workspace
        else:
            style = job.style_object or {}
            source_dir = job.source_dir
            style_dir = job.style_dir

        check_local_sources(style, source_dir)

        resolver = SourceResolver(
            source_dir=source_dir,
            style_dir=style_dir,
            session=session,
            timeout=settings.http.timeout,
            retries=settings.http.retries,
            backoff=settings.http.backoff,
        )
        assembler = ArchiveAssembler(
            engine,
            resolver,
            tile_size=settings.render.tile_size,
            thumbnail=settings.render.thumbnail,
            work_dir=workspace or settings.output.work_dir,
        )
        result = await assembler.assemble(
            style,
            source_dir,
            job.bounds,
            job.zoom,
            job.ratio,
            job.image_format,
            job.output_path,
            skip_zooms=skip_zooms,
        )
    except Exception as e:
        if getattr(e, 'is_caller_fault', False):
            logger.error('Job rejected: %s', e)
        else:
            logger.exception('Job failed')
        return JobResult.from_error(e, started_at=started_at, warnings=warnings)
    finally:
        if workspace is not None:
            await asyncio.to_thread(shutil.rmtree, workspace, True)

    return result.model_copy(
        update={'warnings': (*warnings, *result.warnings), 'started_at': started_at}
    )
