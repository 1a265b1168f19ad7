"""
Category & Identity Discovery
Flattens a source's category tree and collects deduplicated product identities
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set
import asyncio

from config.sources import CatalogApi, CatalogSourceConfig, CategoryTreeShape
from database.client import CatalogDatabase
from database.models import CategoryNode
from sources.client import fetch_with_retry
from utils.errors import CatalogNotFound, CatalogRequestError, RunCancelled, StoreWriteError
from utils.logging import ScrapingLogger


def flatten_category_tree(payload: Any, config: CatalogSourceConfig) -> List[CategoryNode]:
    """Walk the tree depth-first and keep product-owning nodes.

    Nodes whose name contains an excluded keyword (landing and marketing
    pages) are dropped together with their subtree.
    """
    roots = payload.get("categories", []) if isinstance(payload, dict) else payload or []
    excluded = [keyword.lower() for keyword in config.excluded_category_keywords]
    nodes: List[CategoryNode] = []
    seen: Set[str] = set()

    def visit(category: Dict[str, Any], parent_path: str):
        name = str(category.get("name") or "").strip()
        if any(keyword in name.lower() for keyword in excluded):
            return
        category_id = category.get("id")
        path = f"{parent_path}/{name}" if name else parent_path
        children = category.get("subcategories") or []

        is_leaf = not children
        keep = is_leaf or config.category_tree_shape == CategoryTreeShape.ALL_NODES
        if keep and category_id is not None and str(category_id) not in seen:
            seen.add(str(category_id))
            nodes.append(CategoryNode(
                source=config.source_id,
                category_id=str(category_id),
                name=name,
                path=path or "/",
            ))

        for child in children:
            visit(child, path)

    for root in roots:
        visit(root, "")
    return nodes


def flatten_zara_categories(payload: Any, config: CatalogSourceConfig) -> List[CategoryNode]:
    """Sections own subcategories; a subcategory lists products under its redirect id.

    Subcategories without a redirect id or SEO keyword are navigation only.
    """
    roots = payload.get("categories", []) if isinstance(payload, dict) else payload or []
    excluded = [keyword.lower() for keyword in config.excluded_category_keywords]
    nodes: List[CategoryNode] = []
    seen: Set[str] = set()

    for section in roots:
        section_name = str(section.get("name") or "").strip()
        for sub in section.get("subcategories") or []:
            name = str(sub.get("name") or "").strip()
            listing_id = sub.get("redirectCategoryId")
            if not listing_id or not (sub.get("seo") or {}).get("keyword"):
                continue
            if any(keyword in name.lower() for keyword in excluded) or str(listing_id) in seen:
                continue
            seen.add(str(listing_id))
            nodes.append(CategoryNode(
                source=config.source_id,
                category_id=str(listing_id),
                name=name,
                path=f"/{section_name}/{name}" if section_name else f"/{name}",
            ))
    return nodes


def static_categories(config: CatalogSourceConfig) -> List[CategoryNode]:
    return [
        CategoryNode(source=config.source_id, category_id=str(category_id), name=name, path=f"/{name}")
        for category_id, name in config.static_categories
    ]


def extract_listing_ids(payload: Any) -> List[str]:
    """Product ids of one category listing, in listing order."""
    if not isinstance(payload, dict):
        return []
    ids = payload.get("productIds")
    if ids is None:
        ids = [product.get("id") for product in payload.get("products") or [] if product.get("id")]
    return [str(product_id) for product_id in ids]


def zara_listing_products(payload: Any) -> List[Dict[str, Any]]:
    """Product components of a category listing; each already carries its colors."""
    products = []
    if not isinstance(payload, dict):
        return products
    for group in payload.get("productGroups") or []:
        for element in group.get("elements") or []:
            for component in element.get("commercialComponents") or []:
                if component.get("type") != "Product" or component.get("id") is None:
                    continue
                if not (component.get("detail") or {}).get("colors"):
                    continue
                products.append(component)
    return products


def _matching_swatch(product: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    swatches = product.get("swatches") or []
    for swatch in swatches:
        if str(swatch.get("articleId")) == str(product.get("id")):
            return swatch
    return swatches[0] if swatches else None


def hm_listing_products(payload: Any) -> List[Dict[str, Any]]:
    """One listing page; each article is reshaped into a single-color product."""
    products = []
    if not isinstance(payload, dict):
        return products
    for item in (payload.get("plpList") or {}).get("productList") or []:
        if item.get("id") is None:
            continue
        product = {
            "id": str(item["id"]),
            "name": item.get("productName"),
            "url": item.get("url"),
            "detail": {"colors": []},
        }
        swatch = _matching_swatch(item)
        if swatch is not None:
            prices = item.get("prices") or []
            color = {
                "id": swatch.get("colorCode") or str(item["id"]),
                "name": swatch.get("colorName"),
                "price": prices[0].get("price") if prices else None,
            }
            stock_state = (item.get("availability") or {}).get("stockState")
            if stock_state:
                color["availability"] = stock_state
            if swatch.get("productImage"):
                color["image"] = {"url": swatch["productImage"]}
            product["detail"]["colors"].append(color)
        products.append(product)
    return products


def total_pages(payload: Any) -> int:
    if not isinstance(payload, dict):
        return 1
    return int((payload.get("pagination") or {}).get("totalPages") or 1)


LISTING_PRODUCT_PARSERS = {
    CatalogApi.ZARA: zara_listing_products,
    CatalogApi.HM: hm_listing_products,
}


@dataclass
class DiscoveryResult:
    total_categories: int = 0
    successful_categories: int = 0
    empty_categories: int = 0
    failed_categories: int = 0
    total_listed: int = 0
    checkpoints: int = 0
    identity_categories: Dict[str, Set[str]] = field(default_factory=dict)
    category_counts: Dict[str, int] = field(default_factory=dict)
    # full product payloads, only for sources whose listings carry them
    payloads: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    failures: List[Dict[str, str]] = field(default_factory=list)

    @property
    def unique_identities(self) -> int:
        return len(self.identity_categories)

    @property
    def duplicate_identities(self) -> int:
        return self.total_listed - self.unique_identities

    @property
    def identities(self) -> List[str]:
        return list(self.identity_categories)


class CategoryDiscovery:
    """Discovery for one source run. Owns the run's deduplicated identity set."""

    def __init__(self, config: CatalogSourceConfig, client, db: Optional[CatalogDatabase] = None,
                 logger: Optional[ScrapingLogger] = None):
        self.config = config
        self.client = client
        self.db = db
        self.logger = logger or ScrapingLogger(config.source_id)

    async def discover_categories(self) -> List[CategoryNode]:
        """Fetch the category tree, flatten it and persist the nodes.

        Sources with configured categories skip the tree request.
        """
        if self.config.static_categories:
            categories = static_categories(self.config)
        else:
            payload = await fetch_with_retry(
                self.client,
                self.config.category_tree_url(),
                attempts=self.config.max_retries,
                backoff=self.config.retry_backoff,
                timeout=self.config.category_timeout,
            )
            if self.config.api == CatalogApi.ZARA:
                categories = flatten_zara_categories(payload, self.config)
            else:
                categories = flatten_category_tree(payload, self.config)
        self.logger.info(f"🗂️ Discovered {len(categories)} product categories")

        if self.db is not None and categories:
            await self.db.upsert_categories(categories)
            await self.db.deactivate_missing_categories(
                self.config.source_id, [c.category_id for c in categories]
            )
        return categories

    async def _fetch_listing(self, category_id: str, page: int = 1) -> Any:
        return await fetch_with_retry(
            self.client,
            self.config.category_products_url(category_id, page),
            attempts=self.config.max_retries,
            backoff=self.config.retry_backoff,
            timeout=self.config.category_timeout,
        )

    async def fetch_listing_products(self, category: CategoryNode) -> List[Dict[str, Any]]:
        """Every product payload of one category, following pagination.

        A failing later page ends the walk; products from earlier pages are kept.
        """
        parse = LISTING_PRODUCT_PARSERS[self.config.api]
        payload = await self._fetch_listing(category.category_id)
        products = parse(payload)

        pages = min(total_pages(payload), self.config.max_pages)
        for page in range(2, pages + 1):
            await asyncio.sleep(self.config.category_delay)
            try:
                payload = await self._fetch_listing(category.category_id, page)
            except CatalogRequestError as e:
                self.logger.warning(f"⚠️ {category.path} page {page}/{pages} failed, keeping earlier pages: {e}")
                break
            products.extend(parse(payload))
        return products

    async def collect_identities(
        self,
        categories: List[CategoryNode],
        on_category: Optional[Callable[[CategoryNode], None]] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> DiscoveryResult:
        """One listing request per category; a 404 counts as an empty category."""
        result = DiscoveryResult(total_categories=len(categories))
        pending: Dict[str, Set[str]] = {}

        for index, category in enumerate(categories, start=1):
            if should_stop and should_stop():
                raise RunCancelled(f"{self.config.source_id} discovery cancelled")
            if on_category:
                on_category(category)

            try:
                if self.config.details_in_listing:
                    products = await self.fetch_listing_products(category)
                    product_ids = [str(product["id"]) for product in products]
                    for product in products:
                        result.payloads.setdefault(str(product["id"]), product)
                else:
                    product_ids = extract_listing_ids(await self._fetch_listing(category.category_id))
                result.successful_categories += 1
            except CatalogNotFound:
                product_ids = []
                result.successful_categories += 1
                result.empty_categories += 1
                self.logger.debug(f"Category {category.category_id} not found, treating as empty")
            except CatalogRequestError as e:
                product_ids = []
                result.failed_categories += 1
                result.failures.append({"category_id": category.category_id, "error": str(e)})
                self.logger.warning(f"⚠️ Category {category.path} failed: {e}")

            result.total_listed += len(product_ids)
            result.category_counts[category.category_id] = len(product_ids)
            for product_id in product_ids:
                result.identity_categories.setdefault(product_id, set()).add(category.category_id)
                pending[product_id] = result.identity_categories[product_id]

            if index % self.config.checkpoint_every == 0 and await self._checkpoint(pending, result):
                pending = {}

            await asyncio.sleep(self.config.category_delay)

        await self._checkpoint(pending, result)
        self.logger.info(
            f"📦 Collected {result.unique_identities} unique identities "
            f"({result.total_listed} listed, {result.duplicate_identities} duplicates)",
            successful_categories=result.successful_categories,
            failed_categories=result.failed_categories,
        )

        if self.db is not None:
            for category in categories:
                category.product_count = result.category_counts.get(category.category_id, 0)
            await self.db.upsert_categories(categories)
        return result

    async def _checkpoint(self, pending: Dict[str, Set[str]], result: DiscoveryResult) -> bool:
        """Persist pending mappings. On failure they stay pending for the next checkpoint."""
        if self.db is None or not pending:
            return True
        try:
            await self.db.checkpoint_identities(self.config.source_id, pending)
        except StoreWriteError as e:
            self.logger.error(f"❌ Identity checkpoint failed: {e}")
            return False
        result.checkpoints += 1
        return True
