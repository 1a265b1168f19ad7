"""
Supabase Database Client
Canonical store for categories, product identities, canonical products and tracking lists
"""

from typing import Optional, Dict, Any, List, Iterable, Sequence, Tuple
from datetime import datetime, timezone
import logging
import re
import time

from supabase import acreate_client, AsyncClient

from config.settings import settings
from config.sources import CatalogSourceConfig
from database.models import CategoryNode, ProductIdentity, CanonicalProduct, TrackingRecord
from utils.errors import StoreWriteError
from utils.logging import performance_logger

logger = logging.getLogger(__name__)

CATEGORIES_TABLE = "catalog_categories"
IDENTITIES_TABLE = "catalog_identities"
PRODUCTS_TABLE = "catalog_products"
TRACKING_TABLE = "tracked_products"

PAGE_SIZE = 1000
IN_FILTER_CHUNK = 200
MAX_PRODUCT_PAGE = 100
PRODUCT_SORT_COLUMNS = ("last_updated", "price", "name", "created_at")
# characters with meaning inside a PostgREST or() filter
SEARCH_UNSAFE = re.compile(r"[,()*%]")


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _chunks(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class CatalogDatabase:
    """Supabase-backed store. Every batch write is a single PostgREST request."""

    def __init__(self, client: Optional[AsyncClient] = None):
        self._client = client

    @property
    def client(self) -> AsyncClient:
        if self._client is None:
            raise RuntimeError("Database client not initialized")
        return self._client

    async def initialize(self) -> bool:
        """Create the async Supabase client."""
        if self._client is not None:
            return True
        try:
            self._client = await acreate_client(
                settings.SUPABASE_URL,
                settings.SUPABASE_SERVICE_ROLE_KEY
            )
            logger.info("Supabase client initialized successfully")
            return True
        except Exception as e:
            logger.error(f"Failed to initialize Supabase client: {e}")
            return False

    async def health_check(self) -> Dict[str, Any]:
        """Check database connection health."""
        try:
            start_time = time.monotonic()
            await self.client.table(PRODUCTS_TABLE).select("id").limit(1).execute()
            response_time = (time.monotonic() - start_time) * 1000

            return {
                "status": "healthy",
                "response_time_ms": round(response_time, 2),
                "timestamp": _utcnow(),
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "error", "message": str(e), "timestamp": _utcnow()}

    # Categories

    async def upsert_categories(self, categories: List[CategoryNode]) -> int:
        if not categories:
            return 0
        now = _utcnow()
        rows = []
        for category in categories:
            row = category.to_row()
            row["last_updated"] = now
            rows.append(row)

        await self.client.table(CATEGORIES_TABLE)\
            .upsert(rows, on_conflict="source,category_id")\
            .execute()
        return len(rows)

    async def deactivate_missing_categories(self, source: str, seen_ids: Iterable[str]) -> int:
        """Mark categories not seen in the latest discovery as inactive."""
        seen = set(seen_ids)
        result = await self.client.table(CATEGORIES_TABLE)\
            .select("category_id")\
            .eq("source", source)\
            .eq("is_active", True)\
            .execute()

        missing = [row["category_id"] for row in result.data or [] if row["category_id"] not in seen]
        for chunk in _chunks(missing, IN_FILTER_CHUNK):
            await self.client.table(CATEGORIES_TABLE)\
                .update({"is_active": False, "last_updated": _utcnow()})\
                .eq("source", source)\
                .in_("category_id", list(chunk))\
                .execute()

        if missing:
            logger.info(f"🗂️ Deactivated {len(missing)} stale {source} categories")
        return len(missing)

    async def get_categories(self, source: str, active_only: bool = True) -> List[CategoryNode]:
        query = self.client.table(CATEGORIES_TABLE).select("*").eq("source", source)
        if active_only:
            query = query.eq("is_active", True)
        result = await query.order("category_id").execute()
        return [CategoryNode.model_validate(row) for row in result.data or []]

    # Identities

    async def checkpoint_identities(self, source: str, mapping: Dict[str, Iterable[str]]) -> int:
        """Upsert identity -> owning categories mappings collected so far."""
        if not mapping:
            return 0
        rows = []
        for product_id, categories in mapping.items():
            category_list = sorted(set(categories))
            rows.append({
                "source": source,
                "product_id": product_id,
                "categories": category_list,
                "category_count": len(category_list),
                "is_processed": False,
                "last_updated": _utcnow(),
            })

        start = time.monotonic()
        try:
            await self.client.table(IDENTITIES_TABLE)\
                .upsert(rows, on_conflict="source,product_id")\
                .execute()
        except Exception as e:
            raise StoreWriteError(f"Identity checkpoint failed for {source}: {e}") from e

        performance_logger.log_database_operation(
            "upsert", IDENTITIES_TABLE, time.monotonic() - start, len(rows)
        )
        return len(rows)

    async def load_identities(self, source: str, only_unprocessed: bool = False) -> List[ProductIdentity]:
        """Load every known identity for a source, paging through PostgREST limits."""
        identities: List[ProductIdentity] = []
        offset = 0
        while True:
            query = self.client.table(IDENTITIES_TABLE)\
                .select("source,product_id,categories,is_processed")\
                .eq("source", source)
            if only_unprocessed:
                query = query.eq("is_processed", False)
            result = await query.order("product_id")\
                .range(offset, offset + PAGE_SIZE - 1)\
                .execute()

            rows = result.data or []
            identities.extend(ProductIdentity.model_validate(row) for row in rows)
            if len(rows) < PAGE_SIZE:
                break
            offset += PAGE_SIZE

        return identities

    async def mark_identities_processed(self, source: str, product_ids: Sequence[str]) -> int:
        for chunk in _chunks(list(product_ids), IN_FILTER_CHUNK):
            await self.client.table(IDENTITIES_TABLE)\
                .update({"is_processed": True, "last_updated": _utcnow()})\
                .eq("source", source)\
                .in_("product_id", list(chunk))\
                .execute()
        return len(product_ids)

    # Canonical products

    async def upsert_products(self, config: CatalogSourceConfig, records: List[CanonicalProduct]) -> int:
        """Write one batch atomically, keyed by the source's uniqueness key.

        The key value is copied into ``unique_key``. Rows sharing a key inside
        the batch are collapsed (last wins) since Postgres refuses to touch the
        same row twice in one statement.
        """
        if not records:
            return 0

        now = _utcnow()
        unique_rows: Dict[str, Dict[str, Any]] = {}
        for record in records:
            row = record.to_row()
            row["unique_key"] = row[config.unique_key_field]
            row["last_updated"] = now
            unique_rows[row["unique_key"]] = row

        rows = list(unique_rows.values())
        start = time.monotonic()
        try:
            await self.client.table(PRODUCTS_TABLE)\
                .upsert(rows, on_conflict="source,unique_key")\
                .execute()
        except Exception as e:
            raise StoreWriteError(
                f"Batch of {len(rows)} {config.source_id} products rejected: {e}"
            ) from e

        performance_logger.log_database_operation(
            "upsert", PRODUCTS_TABLE, time.monotonic() - start, len(rows)
        )
        return len(rows)

    async def get_product(self, source: str, canonical_id: str) -> Optional[CanonicalProduct]:
        result = await self.client.table(PRODUCTS_TABLE)\
            .select("*")\
            .eq("source", source)\
            .eq("canonical_id", canonical_id)\
            .limit(1)\
            .execute()
        rows = result.data or []
        return CanonicalProduct.model_validate(rows[0]) if rows else None

    async def get_products_by_reference(self, source: str, reference: str) -> List[CanonicalProduct]:
        result = await self.client.table(PRODUCTS_TABLE)\
            .select("*")\
            .eq("source", source)\
            .eq("reference", reference)\
            .order("color_index")\
            .execute()
        return [CanonicalProduct.model_validate(row) for row in result.data or []]

    async def find_products_by_identity(self, source: str, identity: str) -> List[CanonicalProduct]:
        """Variants of a parent product id, or the record whose canonical id is the identity."""
        result = await self.client.table(PRODUCTS_TABLE)\
            .select("*")\
            .eq("source", source)\
            .eq("product_id", identity)\
            .order("color_index")\
            .execute()
        rows = result.data or []
        if rows:
            return [CanonicalProduct.model_validate(row) for row in rows]

        product = await self.get_product(source, identity)
        return [product] if product else []

    async def count_products(self, source: str) -> int:
        result = await self.client.table(PRODUCTS_TABLE)\
            .select("id", count="exact")\
            .eq("source", source)\
            .execute()
        return result.count or 0

    # Catalog queries

    async def list_products(
        self,
        source: Optional[str] = None,
        search: Optional[str] = None,
        availability: Optional[str] = None,
        sort_by: str = "last_updated",
        descending: bool = True,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[CanonicalProduct], int]:
        """One page of catalog products and the total matching count.

        ``search`` matches name or reference case-insensitively.
        """
        if sort_by not in PRODUCT_SORT_COLUMNS:
            raise ValueError(f"Cannot sort products by {sort_by}")
        page = max(1, page)
        limit = max(1, min(limit, MAX_PRODUCT_PAGE))

        query = self.client.table(PRODUCTS_TABLE).select("*", count="exact")
        if source:
            query = query.eq("source", source)
        if availability:
            query = query.eq("availability", availability)
        if search:
            pattern = f"%{SEARCH_UNSAFE.sub(' ', search).strip()}%"
            query = query.or_(f"name.ilike.{pattern},reference.ilike.{pattern}")

        offset = (page - 1) * limit
        result = await query.order(sort_by, desc=descending)\
            .range(offset, offset + limit - 1)\
            .execute()
        products = [CanonicalProduct.model_validate(row) for row in result.data or []]
        return products, result.count or 0

    async def product_stats(self, source: Optional[str] = None) -> Dict[str, Any]:
        """Counts and price spread over the stored catalog, paging through every row."""
        total = in_stock = on_sale = 0
        price_sum = 0
        min_price: Optional[int] = None
        max_price: Optional[int] = None
        last_update: Optional[str] = None

        offset = 0
        while True:
            query = self.client.table(PRODUCTS_TABLE)\
                .select("id,price,old_price,availability,last_updated")
            if source:
                query = query.eq("source", source)
            result = await query.order("id").range(offset, offset + PAGE_SIZE - 1).execute()
            rows = result.data or []

            for row in rows:
                price = row.get("price") or 0
                total += 1
                price_sum += price
                in_stock += row.get("availability") == "in_stock"
                on_sale += bool(row.get("old_price") and row["old_price"] > price)
                min_price = price if min_price is None else min(min_price, price)
                max_price = price if max_price is None else max(max_price, price)
                if row.get("last_updated") and (last_update is None or row["last_updated"] > last_update):
                    last_update = row["last_updated"]

            if len(rows) < PAGE_SIZE:
                break
            offset += PAGE_SIZE

        return {
            "source": source,
            "total_products": total,
            "in_stock": in_stock,
            "out_of_stock": total - in_stock,
            "on_sale": on_sale,
            "min_price": min_price,
            "max_price": max_price,
            "avg_price": round(price_sum / total) if total else None,
            "last_update": last_update,
        }

    async def delete_stale_products(self, older_than: datetime, source: Optional[str] = None) -> int:
        """Delete products whose last refresh is older than ``older_than``."""
        query = self.client.table(PRODUCTS_TABLE)\
            .delete()\
            .lt("last_updated", older_than.astimezone(timezone.utc).isoformat())
        if source:
            query = query.eq("source", source)
        try:
            result = await query.execute()
        except Exception as e:
            raise StoreWriteError(f"Stale product cleanup failed: {e}") from e

        deleted = len(result.data or [])
        logger.info(f"🧹 Deleted {deleted} stale products{f' from {source}' if source else ''}")
        return deleted

    # Tracking lists

    async def count_tracked(self, user_id: str) -> int:
        result = await self.client.table(TRACKING_TABLE)\
            .select("id", count="exact")\
            .eq("user_id", user_id)\
            .execute()
        return result.count or 0

    async def list_tracked(self, user_id: str) -> List[TrackingRecord]:
        result = await self.client.table(TRACKING_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .order("tracking_started_at", desc=True)\
            .execute()
        return [TrackingRecord.model_validate(row) for row in result.data or []]

    async def get_products_for_tracking(
        self, records: Sequence[TrackingRecord]
    ) -> Dict[Tuple[str, str], CanonicalProduct]:
        """Join tracked records to their catalog rows, keyed by (source, canonical_id)."""
        by_source: Dict[str, set] = {}
        for record in records:
            by_source.setdefault(record.source, set()).add(record.canonical_id)

        products: Dict[Tuple[str, str], CanonicalProduct] = {}
        for source, canonical_ids in by_source.items():
            for chunk in _chunks(sorted(canonical_ids), IN_FILTER_CHUNK):
                result = await self.client.table(PRODUCTS_TABLE)\
                    .select("*")\
                    .eq("source", source)\
                    .in_("canonical_id", list(chunk))\
                    .execute()
                for row in result.data or []:
                    product = CanonicalProduct.model_validate(row)
                    products[(product.source, product.canonical_id)] = product
        return products

    async def list_alert_subscriptions(self, stock_only: bool = False, limit: int = 1000) -> List[TrackingRecord]:
        """Notification-enabled records across all users, least recently checked first."""
        query = self.client.table(TRACKING_TABLE)\
            .select("*")\
            .eq("notification_enabled", True)
        if stock_only:
            query = query.eq("stock_alert", True)
        result = await query.order("last_checked").limit(limit).execute()
        return [TrackingRecord.model_validate(row) for row in result.data or []]

    async def get_tracked(self, user_id: str, source: str, canonical_id: str) -> Optional[TrackingRecord]:
        result = await self.client.table(TRACKING_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("source", source)\
            .eq("canonical_id", canonical_id)\
            .limit(1)\
            .execute()
        rows = result.data or []
        return TrackingRecord.model_validate(rows[0]) if rows else None

    async def get_tracked_by_id(self, user_id: str, tracking_id: str) -> Optional[TrackingRecord]:
        result = await self.client.table(TRACKING_TABLE)\
            .select("*")\
            .eq("user_id", user_id)\
            .eq("id", tracking_id)\
            .limit(1)\
            .execute()
        rows = result.data or []
        return TrackingRecord.model_validate(rows[0]) if rows else None

    async def insert_tracked(self, record: TrackingRecord) -> TrackingRecord:
        row = record.to_row()
        row.pop("id", None)
        row["tracking_started_at"] = _utcnow()
        result = await self.client.table(TRACKING_TABLE).insert(row).execute()
        if not result.data:
            raise StoreWriteError(f"Tracking insert returned no row for user {record.user_id}")
        return TrackingRecord.model_validate(result.data[0])

    async def update_tracked(self, user_id: str, tracking_id: str, fields: Dict[str, Any]) -> Optional[TrackingRecord]:
        result = await self.client.table(TRACKING_TABLE)\
            .update(fields)\
            .eq("user_id", user_id)\
            .eq("id", tracking_id)\
            .execute()
        rows = result.data or []
        return TrackingRecord.model_validate(rows[0]) if rows else None

    async def delete_tracked(self, user_id: str, tracking_id: str) -> bool:
        result = await self.client.table(TRACKING_TABLE)\
            .delete()\
            .eq("user_id", user_id)\
            .eq("id", tracking_id)\
            .execute()
        return bool(result.data)
