"""
Chunked Detail Fetcher
Splits identities into bounded batched detail requests with retry and backoff
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence
import asyncio

from config.sources import CatalogSourceConfig
from sources.client import fetch_with_retry
from utils.errors import CatalogRequestError, RunCancelled
from utils.logging import ScrapingLogger

ChunkCallback = Callable[[int, Sequence[str], List[Dict[str, Any]]], None]


def chunk_identities(identities: Sequence[str], size: int) -> List[List[str]]:
    """Split preserving order: ceil(N/size) chunks, the last one possibly shorter."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [list(identities[start:start + size]) for start in range(0, len(identities), size)]


def extract_detail_products(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, dict):
        return list(payload.get("products") or [])
    if isinstance(payload, list):
        return payload
    return []


@dataclass
class FetchResult:
    details: List[Dict[str, Any]] = field(default_factory=list)
    requested: int = 0
    chunks_total: int = 0
    chunks_failed: int = 0
    failed_identities: List[str] = field(default_factory=list)

    @property
    def missing(self) -> int:
        """Requested identities the source did not return (delisted or failed)."""
        return max(0, self.requested - len(self.details))


class DetailFetcher:
    """Sequential chunked fetcher for one source."""

    def __init__(self, config: CatalogSourceConfig, client, logger: Optional[ScrapingLogger] = None):
        self.config = config
        self.client = client
        self.logger = logger or ScrapingLogger(config.source_id)

    async def fetch(
        self,
        identities: Sequence[str],
        on_chunk: Optional[ChunkCallback] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> FetchResult:
        """Fetch details for every identity, skipping chunks that exhaust their retries."""
        chunks = chunk_identities(identities, self.config.chunk_size)
        result = FetchResult(requested=len(identities), chunks_total=len(chunks))

        for index, chunk in enumerate(chunks):
            if should_stop and should_stop():
                raise RunCancelled(f"{self.config.source_id} fetch cancelled")

            try:
                payload = await fetch_with_retry(
                    self.client,
                    self.config.product_details_url(chunk),
                    attempts=self.config.max_retries,
                    backoff=self.config.retry_backoff,
                    timeout=self.config.request_timeout,
                )
                products = extract_detail_products(payload)
            except CatalogRequestError as e:
                products = []
                result.chunks_failed += 1
                result.failed_identities.extend(chunk)
                self.logger.error(
                    f"❌ Chunk {index + 1}/{len(chunks)} skipped: {e}",
                    chunk_size=len(chunk),
                )

            result.details.extend(products)
            if on_chunk:
                on_chunk(index, chunk, products)
            self.logger.debug(f"Chunk {index + 1}/{len(chunks)}: {len(products)}/{len(chunk)} details")

            if index < len(chunks) - 1:
                await asyncio.sleep(self.config.chunk_delay)

        return result
