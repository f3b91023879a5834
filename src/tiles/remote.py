"""Remote passthrough for glyphs, sprites and other network resources."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from infrastructure.http import HttpStatusError, fetch_bytes, redact_url
from shared.constants import HTTP_BACKOFF_FACTOR, HTTP_RETRIES_DEFAULT, HTTP_TIMEOUT_DEFAULT

if TYPE_CHECKING:
    import aiohttp

logger = logging.getLogger(__name__)


async def fetch_remote(
    session: aiohttp.ClientSession,
    url: str,
    *,
    timeout: float = HTTP_TIMEOUT_DEFAULT,
    retries: int = HTTP_RETRIES_DEFAULT,
    backoff: float = HTTP_BACKOFF_FACTOR,
) -> bytes | None:
    """GET ``url``; 404 is an absent resource, other failures raise."""
    try:
        return await fetch_bytes(
            session, url, timeout=timeout, retries=retries, backoff=backoff
        )
    except HttpStatusError as e:
        if e.is_not_found:
            logger.debug('Remote resource not found: %s', redact_url(url))
            return None
        raise
