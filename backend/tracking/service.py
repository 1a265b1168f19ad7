"""
Tracking Service
Capacity-bounded per-user tracking lists kept consistent with the tracking cache
"""

from collections import Counter
from typing import Any, Dict, List, Optional
import logging

from database.client import CatalogDatabase
from database.models import AlertType, TrackedProduct, TrackingPreferences, TrackingRecord
from resolver.resolver import ProductResolver
from tracking.cache import TrackingCache
from utils.errors import CapacityExceeded, TrackingNotFound

logger = logging.getLogger(__name__)


class TrackingService:
    def __init__(self, db: CatalogDatabase, resolver: ProductResolver, cache: TrackingCache,
                 max_per_user: int = 10):
        self.db = db
        self.resolver = resolver
        self.cache = cache
        self.max_per_user = max_per_user

    async def list(self, user_id: str) -> List[TrackingRecord]:
        return await self.cache.get(user_id, self.db.list_tracked)

    async def list_with_products(self, user_id: str) -> List[TrackedProduct]:
        """The user's list joined with current catalog rows; delisted products carry no product."""
        records = await self.list(user_id)
        products = await self.db.get_products_for_tracking(records)
        return [TrackedProduct.join(record, products.get((record.source, record.canonical_id))) for record in records]

    async def alert_candidates(self, alert_type: AlertType = AlertType.ALL,
                               limit: int = 1000) -> List[TrackedProduct]:
        """Records across all users whose alert condition holds against the catalog now.

        Price alerts fire at or below the threshold, stock alerts while the
        product is in stock. ``all`` returns records meeting either condition.
        """
        alert_type = AlertType(alert_type)
        records = await self.db.list_alert_subscriptions(stock_only=alert_type == AlertType.STOCK, limit=limit)
        products = await self.db.get_products_for_tracking(records)

        candidates = []
        for record in records:
            product = products.get((record.source, record.canonical_id))
            if product is None:
                continue
            reasons = []
            if alert_type != AlertType.STOCK and record.price_alert_threshold is not None \
                    and product.price <= record.price_alert_threshold:
                reasons.append(AlertType.PRICE.value)
            if alert_type != AlertType.PRICE and record.stock_alert and product.availability == "in_stock":
                reasons.append(AlertType.STOCK.value)
            if reasons:
                candidates.append(TrackedProduct.join(record, product, reasons))

        logger.info(f"🔔 {len(candidates)} {alert_type.value} alert candidates out of {len(records)} subscriptions")
        return candidates

    async def add(self, user_id: str, text: str,
                  preferences: Optional[TrackingPreferences] = None) -> TrackingRecord:
        """Resolve ``text`` and track it. Re-adding a tracked product updates its preferences."""
        preferences = preferences or TrackingPreferences()
        resolved = await self.resolver.resolve(text)

        async with self.cache.lock_for(user_id):
            existing = await self.db.get_tracked(user_id, resolved.source, resolved.canonical_id)
            if existing is not None:
                record = await self.db.update_tracked(user_id, existing.id, preferences.model_dump())
            else:
                count = await self.db.count_tracked(user_id)
                if count >= self.max_per_user:
                    raise CapacityExceeded(
                        f"Tracking limit reached ({count}/{self.max_per_user} products)"
                    )
                record = await self.db.insert_tracked(TrackingRecord(
                    user_id=user_id,
                    source=resolved.source,
                    canonical_id=resolved.canonical_id,
                    custom_settings={
                        "original_input": text,
                        "requested_color_id": resolved.requested_color_id,
                    },
                    **preferences.model_dump(),
                ))
            await self.cache.refresh_locked(user_id, self.db.list_tracked)

        logger.info(f"⭐ User {user_id} tracking {resolved.source}/{resolved.canonical_id}")
        return record

    async def get(self, user_id: str, tracking_id: str) -> TrackingRecord:
        record = await self.db.get_tracked_by_id(user_id, tracking_id)
        if record is None:
            raise TrackingNotFound(f"Tracking record {tracking_id} not found")
        return record

    async def update(self, user_id: str, tracking_id: str, preferences: TrackingPreferences) -> TrackingRecord:
        async with self.cache.lock_for(user_id):
            record = await self.db.update_tracked(user_id, tracking_id, preferences.model_dump())
            if record is None:
                raise TrackingNotFound(f"Tracking record {tracking_id} not found")
            await self.cache.refresh_locked(user_id, self.db.list_tracked)
        return record

    async def remove(self, user_id: str, tracking_id: str):
        async with self.cache.lock_for(user_id):
            deleted = await self.db.delete_tracked(user_id, tracking_id)
            if not deleted:
                raise TrackingNotFound(f"Tracking record {tracking_id} not found")
            await self.cache.refresh_locked(user_id, self.db.list_tracked)
        logger.info(f"🗑️ User {user_id} stopped tracking {tracking_id}")

    async def stats(self, user_id: str) -> Dict[str, Any]:
        records = await self.list(user_id)
        return {
            "tracked": len(records),
            "limit": self.max_per_user,
            "remaining": max(0, self.max_per_user - len(records)),
            "by_source": dict(Counter(record.source for record in records)),
            "price_alerts": sum(1 for r in records if r.price_alert_threshold is not None),
            "stock_alerts": sum(1 for r in records if r.stock_alert),
        }
