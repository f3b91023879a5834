"""Resource resolution for the rendering engine.

The engine asks for resources by URL and kind; :class:`SourceResolver`
answers each request from local tile stores or, for glyphs and sprites,
from the network.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from domain.errors import UnsupportedSource
from infrastructure.http import redact_url
from shared.constants import (
    ARCHIVE_SUFFIX,
    HTTP_BACKOFF_FACTOR,
    HTTP_RETRIES_DEFAULT,
    HTTP_TIMEOUT_DEFAULT,
    PMTILES_SUFFIX,
    ResourceKind,
)
from tiles import geojson, mbtiles
from tiles.directory import read_path
from tiles.pmtiles_store import PMTilesFile, RemotePMTiles
from tiles.remote import fetch_remote
from tiles.sources import (
    ResourceRequest,
    ResourceResponse,
    SourceKind,
    classify_url,
    container_name,
    is_network_url,
    local_path,
    parse_tile_address,
    range_file_target,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    import aiohttp

    ResponseCallback = Callable[[BaseException | None, ResourceResponse | None], None]
    RequestHandler = Callable[[Any, ResponseCallback], None]

logger = logging.getLogger(__name__)


class SourceResolver:
    """Answers engine resource requests for one job.

    Container files are opened and closed per request. ``source_dir`` holds
    ``<name>.mbtiles``/``<name>.pmtiles`` containers; relative file paths
    (directories, GeoJSON, glyphs, sprites) hang off ``style_dir``.
    """

    def __init__(
        self,
        *,
        source_dir: Path | None,
        style_dir: Path | None,
        session: aiohttp.ClientSession | None = None,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
        retries: int = HTTP_RETRIES_DEFAULT,
        backoff: float = HTTP_BACKOFF_FACTOR,
    ) -> None:
        self.source_dir = Path(source_dir) if source_dir is not None else None
        self.style_dir = Path(style_dir) if style_dir is not None else None
        self.session = session
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self._tasks: set[asyncio.Future] = set()

    # --- path helpers

    def container_path(self, name: str, suffix: str) -> Path:
        base = self.source_dir or self.style_dir or Path()
        return base / f'{name}{suffix}'

    def _local(self, url: str, *, decode: bool = False) -> Path:
        return local_path(self.style_dir, url, decode=decode)

    def _require_session(self, url: str) -> aiohttp.ClientSession:
        if self.session is None:
            msg = f'No HTTP session available for remote resource: {redact_url(url)}'
            raise UnsupportedSource(msg)
        return self.session

    def _remote_pmtiles(self, target: str, url: str) -> RemotePMTiles:
        return RemotePMTiles(
            target,
            self._require_session(url),
            timeout=self.timeout,
            retries=self.retries,
            backoff=self.backoff,
        )

    # --- dispatch

    async def resolve(self, request: ResourceRequest) -> ResourceResponse:
        """Resolve one request; raises on failure."""
        kind = request.kind
        url = request.url
        if kind is ResourceKind.SOURCE:
            return ResourceResponse(await self._resolve_source(url))
        if kind is ResourceKind.TILE:
            return ResourceResponse(await self._resolve_tile(url))
        if kind in (ResourceKind.GLYPHS, ResourceKind.SPRITE_IMAGE, ResourceKind.SPRITE_JSON):
            decode = kind is ResourceKind.GLYPHS
            return ResourceResponse(await self._resolve_static(url, decode=decode))
        msg = f'Request kind not handled: {int(kind)}'
        raise UnsupportedSource(msg)

    async def _resolve_source(self, url: str) -> bytes | None:
        kind = classify_url(url)
        if kind is SourceKind.CONTAINER:
            name = container_name(url)
            path = self.container_path(name, ARCHIVE_SUFFIX)
            tilejson = await asyncio.to_thread(mbtiles.read_tilejson, path, name)
            return tilejson.to_bytes()
        if kind is SourceKind.RANGE_FILE:
            target = range_file_target(url)
            if is_network_url(target):
                remote = self._remote_pmtiles(target, url)
                return (await remote.tilejson(target)).to_bytes()
            archive = PMTilesFile(self.container_path(target, PMTILES_SUFFIX))
            return (await asyncio.to_thread(archive.tilejson, target)).to_bytes()
        if kind is SourceKind.SINGLE_DOCUMENT:
            return await asyncio.to_thread(geojson.read_document, self._local(url))
        if kind is SourceKind.DIRECTORY:
            return await asyncio.to_thread(read_path, self._local(url))
        msg = f'Only local sources are currently supported. Received: {redact_url(url)}'
        raise UnsupportedSource(msg)

    async def _resolve_tile(self, url: str) -> bytes | None:
        kind = classify_url(url)
        if kind is SourceKind.CONTAINER:
            address = parse_tile_address(url)
            if address is None:
                msg = f'Malformed container tile URL: {url}'
                raise UnsupportedSource(msg)
            path = self.container_path(container_name(url), ARCHIVE_SUFFIX)
            return await asyncio.to_thread(
                mbtiles.read_tile,
                path,
                address.zoom,
                address.x,
                address.y,
                vector=address.is_vector,
            )
        if kind is SourceKind.RANGE_FILE:
            address = parse_tile_address(url)
            if address is None:
                msg = f'Malformed PMTiles tile URL: {url}'
                raise UnsupportedSource(msg)
            target = range_file_target(url)
            if is_network_url(target):
                remote = self._remote_pmtiles(target, url)
                return await remote.get_tile(address.zoom, address.x, address.y)
            archive = PMTilesFile(self.container_path(target, PMTILES_SUFFIX))
            return await asyncio.to_thread(
                archive.get_tile, address.zoom, address.x, address.y
            )
        if kind is SourceKind.DIRECTORY:
            return await asyncio.to_thread(read_path, self._local(url))
        if kind is SourceKind.SINGLE_DOCUMENT:
            return await asyncio.to_thread(geojson.read_document, self._local(url))
        msg = f'Only local tiles are currently supported. Received: {redact_url(url)}'
        raise UnsupportedSource(msg)

    async def _resolve_static(self, url: str, *, decode: bool) -> bytes | None:
        if is_network_url(url):
            return await fetch_remote(
                self._require_session(url),
                url,
                timeout=self.timeout,
                retries=self.retries,
                backoff=self.backoff,
            )
        return await asyncio.to_thread(self._local(url, decode=decode).read_bytes)

    # --- engine-facing callback form

    def request_handler(self) -> RequestHandler:
        """Callback adapter: ``handler(request, callback)``.

        ``request`` is a ResourceRequest, a mapping or any object with
        ``url`` and ``kind``. ``callback(error, response)`` is invoked
        exactly once; failures are passed to it, never raised. The handler
        may be called from the loop thread or from an engine thread.
        """
        loop = asyncio.get_running_loop()
        loop_thread = threading.get_ident()

        def handler(request: Any, callback: ResponseCallback) -> None:
            coro = self._answer(_as_request(request), callback)
            if threading.get_ident() == loop_thread:
                self._spawn(coro)
            else:
                loop.call_soon_threadsafe(self._spawn, coro)

        return handler

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight handler requests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _answer(self, request: ResourceRequest, callback: ResponseCallback) -> None:
        try:
            response = await self.resolve(request)
        except Exception as e:
            logger.warning(
                'Error while making resource request to %s: %s',
                redact_url(request.url),
                e,
            )
            callback(e, None)
            return
        callback(None, response)


def _as_request(request: Any) -> ResourceRequest:
    if isinstance(request, ResourceRequest):
        return request
    if isinstance(request, dict):
        return ResourceRequest.of(request.get('url', ''), request.get('kind', 0))
    return ResourceRequest.of(getattr(request, 'url', ''), getattr(request, 'kind', 0))
