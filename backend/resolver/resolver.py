"""
Product Resolver
Maps marketing URLs and short reference codes to canonical product records
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional
import logging
import uuid

from config.sources import CatalogSourceConfig
from database.client import CatalogDatabase
from database.models import CanonicalProduct
from pipeline.canonicalizer import canonicalize_many
from pipeline.fetcher import DetailFetcher
from progress.tracker import ProgressTracker
from sources.client import CatalogClient
from sources.registry import SourceRegistry
from sources.rules import format_reference, normalize_reference_code, reference_digits
from sources.url_rules import ParsedProductUrl
from utils.errors import CatalogEngineError, ColorUnavailable, NotFound, UnsupportedSource
from utils.logging import ScrapingLogger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedProduct:
    source: str
    canonical_id: str
    product: CanonicalProduct
    requested_color_id: Optional[str] = None
    fetched: bool = False


def _same_color(left: Optional[str], right: Optional[str]) -> bool:
    if left is None or right is None:
        return False
    return left.lstrip("0") == right.lstrip("0")


def _sibling_for(product: CanonicalProduct, color_id: str) -> Optional[str]:
    for sibling_color, canonical_id in product.siblings.items():
        if _same_color(sibling_color, color_id):
            return canonical_id
    return None


class ProductResolver:
    """Source-agnostic resolution over the registry's matchers, URL rules and stores."""

    def __init__(
        self,
        registry: SourceRegistry,
        db: CatalogDatabase,
        tracker: Optional[ProgressTracker] = None,
        client_factory: Callable[[CatalogSourceConfig], Any] = CatalogClient,
    ):
        self.registry = registry
        self.db = db
        self.tracker = tracker
        self.client_factory = client_factory

    async def resolve(self, text: str) -> ResolvedProduct:
        """Resolve a link or reference code; raises a typed ResolverError on failure."""
        text = (text or "").strip()
        if not text:
            raise UnsupportedSource("Empty product link")

        reference = normalize_reference_code(text)
        if reference:
            return await self._resolve_reference(reference)

        match = self.registry.match_url(text)
        if match is None:
            raise UnsupportedSource(f"Unsupported brand or link: {text}")

        config, parsed = match
        if parsed is None:
            raise NotFound(f"No product id found in {config.display_name} link")

        product, fetched = await self._locate(config, parsed)
        product = await self._apply_color(config, product, parsed.color_id)
        logger.info(f"🔎 Resolved {config.source_id} link to {product.canonical_id}")
        return ResolvedProduct(
            source=config.source_id,
            canonical_id=product.canonical_id,
            product=product,
            requested_color_id=parsed.color_id,
            fetched=fetched,
        )

    async def _resolve_reference(self, reference: str) -> ResolvedProduct:
        digits = reference_digits(reference)
        for config in self.registry:
            candidates = await self.db.get_products_by_reference(
                config.source_id, format_reference(digits, config.reference_style)
            )
            if candidates:
                product = candidates[0]
                return ResolvedProduct(source=config.source_id, canonical_id=product.canonical_id, product=product)
        raise NotFound(f"No product with reference {reference}")

    async def _locate(self, config: CatalogSourceConfig, parsed: ParsedProductUrl):
        if parsed.variant_id:
            product = await self.db.get_product(config.source_id, parsed.variant_id)
            if product:
                return product, False

        variants = await self.db.find_products_by_identity(config.source_id, parsed.identity)
        fetched = False
        if not variants:
            await self.fetch_single(config, parsed.identity)
            fetched = True
            variants = await self.db.find_products_by_identity(config.source_id, parsed.identity)
        if not variants:
            raise NotFound(f"{config.display_name} product {parsed.identity} not found")

        if parsed.variant_id:
            for variant in variants:
                if variant.canonical_id == parsed.variant_id:
                    return variant, fetched
        return variants[0], fetched

    async def _apply_color(self, config: CatalogSourceConfig, product: CanonicalProduct,
                           color_id: Optional[str]) -> CanonicalProduct:
        if not color_id or _same_color(product.color_id, color_id):
            return product

        sibling_id = _sibling_for(product, color_id)
        if sibling_id is None:
            raise ColorUnavailable(f"Color {color_id} is not available for {product.name or product.canonical_id}")

        sibling = await self.db.get_product(config.source_id, sibling_id)
        if sibling is None:
            raise ColorUnavailable(f"Color {color_id} of {product.canonical_id} is not stored")
        return sibling

    async def fetch_single(self, config: CatalogSourceConfig, identity: str) -> int:
        """Fetch, canonicalize and persist one identity. Returns saved variant count."""
        if config.details_in_listing:
            raise NotFound(
                f"{config.display_name} product {identity} is not in the catalog yet; "
                f"it is picked up by the next {config.display_name} run"
            )

        job_id = f"{config.source_id}-single-{identity}-{uuid.uuid4().hex[:6]}"
        scrape_logger = ScrapingLogger(config.source_id, job_id)
        if self.tracker:
            self.tracker.start(job_id, total_items=1)

        try:
            async with self.client_factory(config) as client:
                fetcher = DetailFetcher(config, client, scrape_logger)
                fetched = await fetcher.fetch([identity])
            canonical = canonicalize_many(fetched.details, config)
            saved = await self.db.upsert_products(config, canonical.records)
        except CatalogEngineError as e:
            if self.tracker:
                self.tracker.fail(job_id, str(e))
            raise NotFound(f"{config.display_name} product {identity} could not be fetched: {e}") from e

        if self.tracker:
            self.tracker.increment_processed(job_id, 1)
            if fetched.details:
                self.tracker.complete(job_id, total_saved=saved)
            else:
                reason = "detail request failed" if fetched.chunks_failed else "source returned no product"
                self.tracker.fail(job_id, f"{identity}: {reason}")
        scrape_logger.info(f"📥 On-demand fetch of {identity} saved {saved} variants")
        return saved
