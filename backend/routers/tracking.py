"""
Tracking API Router
Per-user tracking lists: add by link or reference code, update, remove, list; alert candidates
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Dict, Any, Optional
import logging
from pydantic import BaseModel

from context import EngineContext
from database.models import AlertType, TrackingPreferences
from routers.dependencies import get_engine, get_user_id
from utils.errors import ResolverError

logger = logging.getLogger(__name__)
router = APIRouter()

ERROR_STATUS = {
    "unsupported_source": 400,
    "not_found": 404,
    "color_unavailable": 409,
    "capacity_exceeded": 409,
    "tracking_not_found": 404,
}


class TrackProductRequest(BaseModel):
    url: str
    price_alert_threshold: Optional[int] = None
    stock_alert: bool = False
    notification_enabled: bool = True

    def preferences(self) -> TrackingPreferences:
        return TrackingPreferences(
            price_alert_threshold=self.price_alert_threshold,
            stock_alert=self.stock_alert,
            notification_enabled=self.notification_enabled,
        )


class ResolveRequest(BaseModel):
    url: str


def _http_error(error: ResolverError) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS.get(error.code, 400),
        detail={"error": error.code, "message": str(error)},
    )


@router.get("")
async def list_tracked(
    user_id: str = Depends(get_user_id),
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    """The user's tracked products with their current catalog rows"""
    items = await engine.tracking.list_with_products(user_id)
    return {
        "items": [item.model_dump(mode="json") for item in items],
        "total": len(items),
        "limit": engine.tracking.max_per_user,
    }


@router.post("", status_code=201)
async def track_product(
    request: TrackProductRequest,
    user_id: str = Depends(get_user_id),
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    """Resolve a product link or reference code and add it to the user's list"""
    try:
        record = await engine.tracking.add(user_id, request.url, request.preferences())
    except ResolverError as e:
        logger.info(f"Tracking request rejected ({e.code}): {e}")
        raise _http_error(e)
    return record.model_dump(mode="json")


@router.get("/stats")
async def tracking_stats(
    user_id: str = Depends(get_user_id),
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    return await engine.tracking.stats(user_id)


@router.get("/alerts")
async def alert_candidates(
    alert_type: AlertType = Query(AlertType.ALL, alias="type"),
    limit: int = Query(1000, ge=1, le=5000),
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    """Tracked products whose price or stock alert currently holds, across all users"""
    candidates = await engine.tracking.alert_candidates(alert_type, limit=limit)
    return {
        "alert_type": alert_type.value,
        "candidates": [candidate.model_dump(mode="json") for candidate in candidates],
        "total": len(candidates),
    }


@router.post("/resolve")
async def resolve_product(
    request: ResolveRequest,
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    """Resolve without tracking"""
    try:
        resolved = await engine.resolver.resolve(request.url)
    except ResolverError as e:
        raise _http_error(e)
    return {
        "source": resolved.source,
        "canonical_id": resolved.canonical_id,
        "requested_color_id": resolved.requested_color_id,
        "fetched": resolved.fetched,
        "product": resolved.product.model_dump(mode="json"),
    }


@router.get("/{tracking_id}")
async def get_tracked(
    tracking_id: str,
    user_id: str = Depends(get_user_id),
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        record = await engine.tracking.get(user_id, tracking_id)
    except ResolverError as e:
        raise _http_error(e)
    return record.model_dump(mode="json")


@router.patch("/{tracking_id}")
async def update_tracked(
    tracking_id: str,
    preferences: TrackingPreferences,
    user_id: str = Depends(get_user_id),
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        record = await engine.tracking.update(user_id, tracking_id, preferences)
    except ResolverError as e:
        raise _http_error(e)
    return record.model_dump(mode="json")


@router.delete("/{tracking_id}")
async def untrack_product(
    tracking_id: str,
    user_id: str = Depends(get_user_id),
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        await engine.tracking.remove(user_id, tracking_id)
    except ResolverError as e:
        raise _http_error(e)
    return {"deleted": True, "tracking_id": tracking_id}
