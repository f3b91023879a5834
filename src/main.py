"""Command line entry point: ``mappacker render`` and ``mappacker worker``."""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from domain.errors import InvalidInput, MapPackerError
from domain.models import SELF_STYLE, ArchiveJob
from domain.results import JobResult, JobStatus
from infrastructure.http import make_http_session
from render.engine import load_engine
from services.job_runner import run_archive_job
from services.providers import PROVIDERS
from services.queue_worker import DirectoryQueue, JsonStatusStore, QueueWorker
from services.style import load_style
from settings import AppSettings, load_settings
from shared.diagnostics import log_resource_usage

if TYPE_CHECKING:
    import aiohttp

    from render.engine import RenderEngine

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SYSTEM_FAULT = 1
EXIT_CALLER_FAULT = 2


def setup_logging(level: str = 'INFO', log_file: Path | None = None) -> None:
    """Configure logging once: stderr plus an optional log file."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_file), encoding='utf-8'))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='mappacker',
        description='Render styled map tiles for a bounding box into an MBTiles archive',
    )
    parser.add_argument('--config', help='Settings TOML file (default: configs/default.toml)')
    parser.add_argument('--log-level', help='Override logging.level from the settings')
    sub = parser.add_subparsers(dest='command', required=True)

    render = sub.add_parser('render', help='Produce one archive and exit')
    styles = ', '.join([*PROVIDERS, SELF_STYLE])
    render.add_argument('-s', '--style', required=True, help=f'Style source: {styles}')
    render.add_argument('-l', '--stylelocation', help='Your style JSON file (style "self")')
    render.add_argument(
        '-i', '--stylesources', help='Directory holding the local sources of your style'
    )
    render.add_argument('-k', '--apikey', help='API key for the online source')
    render.add_argument('-m', '--mapboxstyle', help='Mapbox style: <username>/<styleid>')
    render.add_argument('-p', '--monthyear', help='Planet basemap month (YYYY-MM)')
    render.add_argument('-u', '--tileurl', help='Tile URL template for the xyz source')
    render.add_argument('-a', '--overlay', help='GeoJSON to draw over the online source')
    render.add_argument('-b', '--bounds', required=True, help='west,south,east,north')
    render.add_argument('-z', '--minzoom', type=int, default=0, help='Minimum zoom (default 0)')
    render.add_argument('-Z', '--maxzoom', type=int, required=True, help='Maximum zoom')
    render.add_argument('-r', '--ratio', type=int, default=1, help='Pixel ratio 1-4')
    render.add_argument('-t', '--tiletype', default='jpg', help='jpg, png or webp')
    render.add_argument('-d', '--outputdir', help='Output directory')
    render.add_argument('-o', '--output', default='output', help='Output name')
    render.add_argument(
        '--thumbnail', action='store_true', default=None, help='Also save a thumbnail'
    )

    worker = sub.add_parser('worker', help='Process queued archive requests')
    worker.add_argument(
        '--max-messages', type=int, help='Stop after this many messages (default: run forever)'
    )
    return parser


def job_from_args(args: argparse.Namespace, settings: AppSettings) -> ArchiveJob:
    """Translate CLI options to an ArchiveJob; raises InvalidInput."""
    options: dict[str, Any] = {
        'style': args.style,
        'apiKey': args.apikey,
        'mapboxStyle': args.mapboxstyle,
        'monthYear': args.monthyear,
        'tileUrl': args.tileurl,
        'overlay': args.overlay,
        'bounds': args.bounds,
        'minZoom': args.minzoom,
        'maxZoom': args.maxzoom,
        'ratio': args.ratio,
        'tiletype': args.tiletype,
        'outputDir': args.outputdir or settings.output.directory,
        'outputFilename': args.output,
    }
    if (args.style or '').strip().lower() == SELF_STYLE:
        if not args.stylelocation or not args.stylesources:
            msg = (
                'If you are providing your own style, you must provide a style '
                'location and a source directory'
            )
            raise InvalidInput(msg)
        style_path = Path(args.stylelocation)
        options['styleObject'] = load_style(style_path)
        options['styleDir'] = style_path.resolve().parent
        options['sourceDir'] = Path(args.stylesources)
    return ArchiveJob.from_options(options)


def _session(settings: AppSettings) -> aiohttp.ClientSession:
    cache_dir = settings.http.cache_dir if settings.http.cache_enabled else None
    return make_http_session(cache_dir, expire_hours=settings.http.cache_expire_hours)


def _load_object(path: str) -> Any:
    module_name, _, attr = path.partition(':')
    try:
        return getattr(importlib.import_module(module_name), attr)()
    except (ImportError, AttributeError) as e:
        msg = f'Cannot load {path}: {e}'
        raise InvalidInput(msg) from e


async def run_render(
    job: ArchiveJob,
    settings: AppSettings,
    engine: RenderEngine | None = None,
) -> JobResult:
    engine = engine or load_engine(settings.render.engine)
    async with _session(settings) as session:
        return await run_archive_job(job, engine=engine, session=session, settings=settings)


async def run_worker(
    settings: AppSettings,
    *,
    max_messages: int | None = None,
    engine: RenderEngine | None = None,
) -> int:
    engine = engine or load_engine(settings.render.engine)
    if settings.worker.transport:
        transport = _load_object(settings.worker.transport)
    else:
        transport = DirectoryQueue(settings.worker.queue_dir)
    status_store = JsonStatusStore(settings.worker.status_dir)

    async with _session(settings) as session:

        async def run_job(job: ArchiveJob) -> JobResult:
            result = await run_archive_job(
                job, engine=engine, session=session, settings=settings
            )
            log_resource_usage('after job')
            return result

        worker = QueueWorker(
            transport,
            status_store,
            run_job,
            output_dir=settings.worker.output_dir,
            poll_interval=settings.worker.poll_interval,
        )
        logger.info('Worker started, polling every %ss', settings.worker.poll_interval)
        return await worker.run(max_messages=max_messages)


def exit_code_for(result: JobResult) -> int:
    if result.status is JobStatus.SUCCESS:
        return EXIT_OK
    if result.status is JobStatus.BAD_REQUEST:
        return EXIT_CALLER_FAULT
    return EXIT_SYSTEM_FAULT


def _report(result: JobResult) -> int:
    for warning in result.warnings:
        print(f'WARNING: {warning}', file=sys.stderr)
    if result.ok:
        print(
            f'{result.output_path} ({result.tile_count} tiles, {result.file_size} bytes)'
        )
    else:
        print(f'ERROR: {result.error_message}', file=sys.stderr)
    return exit_code_for(result)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args.config)
    except (OSError, ValueError) as e:
        print(f'ERROR: invalid settings: {e}', file=sys.stderr)
        return EXIT_CALLER_FAULT
    setup_logging(args.log_level or settings.logging.level, settings.logging.file)

    if args.command == 'worker':
        try:
            asyncio.run(run_worker(settings, max_messages=args.max_messages))
        except MapPackerError as e:
            print(f'ERROR: {e}', file=sys.stderr)
            return EXIT_CALLER_FAULT if e.is_caller_fault else EXIT_SYSTEM_FAULT
        except KeyboardInterrupt:
            logger.info('Worker stopped')
        return EXIT_OK

    if args.thumbnail:
        settings = settings.model_copy(
            update={'render': settings.render.model_copy(update={'thumbnail': True})}
        )
    try:
        job = job_from_args(args, settings)
        result = asyncio.run(run_render(job, settings))
    except MapPackerError as e:
        result = JobResult.from_error(e)
    return _report(result)


if __name__ == '__main__':
    sys.exit(main())
