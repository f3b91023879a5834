from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from infrastructure.http import fetch_bytes, redact_url
from shared.constants import HTTP_BACKOFF_FACTOR, HTTP_RETRIES_DEFAULT, HTTP_TIMEOUT_DEFAULT

if TYPE_CHECKING:
    import aiohttp

    from domain.models import Credentials
    from services.providers import Provider

logger = logging.getLogger(__name__)


class ProviderTileFetcher:
    """Downloads provider tiles with the provider's auth convention."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        provider: Provider,
        credentials: Credentials,
        *,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
        retries: int = HTTP_RETRIES_DEFAULT,
        backoff: float = HTTP_BACKOFF_FACTOR,
    ) -> None:
        self.session = session
        self.provider = provider
        self.credentials = credentials
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self._headers = provider.request_headers(credentials)
        self._auth = provider.request_auth(credentials)

    async def fetch(self, zoom: int, x: int, y: int) -> bytes:
        url = self.provider.tile_url(self.credentials, zoom, x, y)
        logger.debug('GET %s', redact_url(url))
        return await self._get(url)

    async def fetch_companion(self) -> bytes | None:
        """Provider TileJSON document, for providers that publish one."""
        url = self.provider.companion_url(self.credentials)
        if url is None:
            return None
        return await self._get(url)

    async def _get(self, url: str) -> bytes:
        return await fetch_bytes(
            self.session,
            url,
            headers=self._headers,
            auth=self._auth,
            timeout=self.timeout,
            retries=self.retries,
            backoff=self.backoff,
        )
