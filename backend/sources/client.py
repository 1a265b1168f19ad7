"""
Catalog HTTP client
aiohttp session per source run, with failure classification and bounded retries
"""

from typing import Any, Optional
import asyncio
import logging

import aiohttp

from config.sources import CatalogSourceConfig
from utils.errors import CatalogNotFound, CatalogRequestError, RetryableCatalogError

logger = logging.getLogger(__name__)


class CatalogClient:
    """One sequential HTTP worker for a catalog source."""

    def __init__(self, config: CatalogSourceConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.session = session
        self._owns_session = session is None
        self.requests_issued = 0

    async def __aenter__(self) -> "CatalogClient":
        await self.create_session()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close_session()

    async def create_session(self):
        """Create aiohttp session carrying the source's required headers"""
        if self.session is not None:
            return
        # one connection per source keeps requests strictly sequential
        connector = aiohttp.TCPConnector(limit=1, ttl_dns_cache=300, use_dns_cache=True)
        self.session = aiohttp.ClientSession(
            connector=connector,
            headers=dict(self.config.headers),
            timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
        )
        self._owns_session = True

    async def close_session(self):
        """Close aiohttp session"""
        if self.session and self._owns_session:
            await self.session.close()
            logger.debug(f"Closed {self.config.source_id} catalog session")
        self.session = None

    async def get_json(self, url: str, timeout: Optional[float] = None) -> Any:
        """GET a JSON document, raising a classified error on failure."""
        if self.session is None:
            await self.create_session()

        self.requests_issued += 1
        request_timeout = aiohttp.ClientTimeout(total=timeout or self.config.request_timeout)
        try:
            async with self.session.get(url, timeout=request_timeout) as response:
                if response.status == 404:
                    raise CatalogNotFound(f"Not found: {url}", url=url, status=404)
                if response.status == 429 or response.status >= 500:
                    raise RetryableCatalogError(
                        f"HTTP {response.status} from {url}", url=url, status=response.status
                    )
                if response.status >= 400:
                    raise CatalogRequestError(
                        f"HTTP {response.status} from {url}", url=url, status=response.status
                    )
                return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise RetryableCatalogError(f"Timeout after {request_timeout.total}s: {url}", url=url) from e
        except aiohttp.ClientError as e:
            raise RetryableCatalogError(f"Connection error for {url}: {e}", url=url) from e
        except ValueError as e:
            raise CatalogRequestError(f"Invalid JSON from {url}: {e}", url=url) from e


async def fetch_with_retry(client, url: str, *, attempts: int, backoff: float,
                           timeout: Optional[float] = None) -> Any:
    """Call ``client.get_json`` up to ``attempts`` times.

    Only retryable failures are retried, with a fixed ``backoff`` between
    attempts. Terminal failures and the last retryable failure propagate.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await client.get_json(url, timeout=timeout)
        except RetryableCatalogError as e:
            if attempt == attempts:
                raise
            logger.warning(f"⚠️ Attempt {attempt}/{attempts} failed ({e}), retrying in {backoff}s")
            await asyncio.sleep(backoff)
