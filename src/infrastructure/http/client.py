from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from datetime import timedelta
from http import HTTPStatus
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

import aiohttp
import certifi
from aiohttp_client_cache import CachedSession, SQLiteBackend

from shared.constants import (
    HTTP_5XX_MAX,
    HTTP_5XX_MIN,
    HTTP_BACKOFF_FACTOR,
    HTTP_CACHE_EXPIRE_HOURS,
    HTTP_RETRIES_DEFAULT,
    HTTP_TIMEOUT_DEFAULT,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

# Statuses that will not change on retry
_TERMINAL_STATUSES = (
    HTTPStatus.UNAUTHORIZED,
    HTTPStatus.FORBIDDEN,
    HTTPStatus.NOT_FOUND,
)


class HttpStatusError(RuntimeError):
    """Non-success HTTP response."""

    def __init__(self, status: int, url: str, message: str | None = None) -> None:
        self.status = status
        self.url = url
        super().__init__(message or f'HTTP {status} for {url}')

    @property
    def is_not_found(self) -> bool:
        return self.status == HTTPStatus.NOT_FOUND


def redact_url(url: str) -> str:
    """Drop the query string so tokens never reach logs or error messages."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, '', ''))


def make_http_session(
    cache_dir: Path | None = None,
    *,
    expire_hours: int = HTTP_CACHE_EXPIRE_HOURS,
) -> aiohttp.ClientSession:
    """Create the shared HTTP session.

    With ``cache_dir`` set, responses are cached in a SQLite file there; this
    is meant for glyph/sprite passthrough, which the engine requests again
    for every tile.
    """
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context)

    if cache_dir is None:
        return aiohttp.ClientSession(connector=connector)

    cache_dir.mkdir(parents=True, exist_ok=True)
    cache_path = cache_dir / 'http_cache.sqlite'
    expire_td = timedelta(hours=max(0, int(expire_hours)))
    backend = SQLiteBackend(str(cache_path), expire_after=expire_td)
    logger.info('HTTP cache enabled at %s', cache_path)
    return CachedSession(
        cache=backend,
        connector=connector,
        expire_after=expire_td,
    )


def _release(resp: object) -> None:
    # aiohttp and CachedResponse both expose release()/close(), not always both
    with contextlib.suppress(Exception):
        close = getattr(resp, 'close', None)
        if callable(close):
            close()
        release = getattr(resp, 'release', None)
        if callable(release):
            release()


async def fetch_bytes(
    client: aiohttp.ClientSession,
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    auth: aiohttp.BasicAuth | None = None,
    timeout: float = HTTP_TIMEOUT_DEFAULT,
    retries: int = HTTP_RETRIES_DEFAULT,
    backoff: float = HTTP_BACKOFF_FACTOR,
    accept: tuple[int, ...] = (HTTPStatus.OK,),
) -> bytes:
    """GET ``url`` and return the body.

    401/403/404 fail immediately with HttpStatusError; 429, 5xx and
    transport errors are retried up to ``retries`` attempts in total with
    exponential backoff. The query string is never included in messages.
    """
    safe_url = redact_url(url)
    attempts = max(1, int(retries))
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    last_exc: Exception | None = None

    for attempt in range(attempts):
        try:
            resp = await client.get(
                url, headers=headers, auth=auth, timeout=client_timeout
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            last_exc = e
        else:
            try:
                sc = resp.status
                if sc in accept:
                    return await resp.read()
                if sc in _TERMINAL_STATUSES:
                    raise HttpStatusError(sc, safe_url)
                is_rate_or_5xx = (sc == HTTPStatus.TOO_MANY_REQUESTS) or (
                    HTTP_5XX_MIN <= sc < HTTP_5XX_MAX
                )
                if is_rate_or_5xx:
                    last_exc = HttpStatusError(sc, safe_url)
                else:
                    raise HttpStatusError(
                        sc, safe_url, f'Unexpected HTTP {sc} for {safe_url}'
                    )
            finally:
                _release(resp)
        if attempt + 1 < attempts:
            await asyncio.sleep(backoff**attempt)

    if isinstance(last_exc, HttpStatusError):
        raise last_exc
    msg = f'Request to {safe_url} failed: {last_exc}'
    raise ConnectionError(msg) from last_exc


async def fetch_range(
    client: aiohttp.ClientSession,
    url: str,
    offset: int,
    length: int,
    *,
    timeout: float = HTTP_TIMEOUT_DEFAULT,
    retries: int = HTTP_RETRIES_DEFAULT,
    backoff: float = HTTP_BACKOFF_FACTOR,
) -> bytes:
    """Read ``length`` bytes at ``offset`` with an HTTP Range request.

    Servers that ignore Range and answer 200 get their body sliced.
    """
    headers = {'Range': f'bytes={offset}-{offset + length - 1}'}
    data = await fetch_bytes(
        client,
        url,
        headers=headers,
        timeout=timeout,
        retries=retries,
        backoff=backoff,
        accept=(HTTPStatus.OK, HTTPStatus.PARTIAL_CONTENT),
    )
    if len(data) > length:
        data = data[offset : offset + length]
    return data
