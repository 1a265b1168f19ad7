"""
Products API Router
Catalog browsing, search, statistics and stale-row cleanup over the canonical store
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Dict, Any, Optional
from datetime import datetime, timedelta, timezone
import logging
import math

from context import EngineContext
from database.client import MAX_PRODUCT_PAGE, PRODUCT_SORT_COLUMNS
from routers.dependencies import get_engine

logger = logging.getLogger(__name__)
router = APIRouter()


def _check_source(engine: EngineContext, source: Optional[str]):
    if source and source not in engine.registry:
        raise HTTPException(status_code=404, detail=f"Unknown catalog source: {source}")


@router.get("")
async def list_products(
    source: Optional[str] = Query(None),
    search: Optional[str] = Query(None, min_length=2),
    availability: Optional[str] = Query(None, pattern="^(in_stock|out_of_stock)$"),
    sort_by: str = Query("last_updated"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=MAX_PRODUCT_PAGE),
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    """Paged catalog listing with optional source, availability and text filters"""
    _check_source(engine, source)
    if sort_by not in PRODUCT_SORT_COLUMNS:
        raise HTTPException(status_code=400, detail=f"sort_by must be one of {', '.join(PRODUCT_SORT_COLUMNS)}")

    products, total = await engine.db.list_products(
        source=source,
        search=search,
        availability=availability,
        sort_by=sort_by,
        descending=order == "desc",
        page=page,
        limit=limit,
    )
    return {
        "products": [product.model_dump(mode="json") for product in products],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if total else 0,
    }


@router.get("/search")
async def search_products(
    q: str = Query(..., min_length=2),
    source: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=MAX_PRODUCT_PAGE),
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    """Name or reference search, newest first"""
    _check_source(engine, source)
    products, total = await engine.db.list_products(source=source, search=q, limit=limit)
    return {
        "query": q,
        "products": [product.model_dump(mode="json") for product in products],
        "total": total,
    }


@router.get("/stats")
async def product_stats(
    source: Optional[str] = Query(None),
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    _check_source(engine, source)
    return await engine.db.product_stats(source)


@router.delete("/stale")
async def cleanup_stale_products(
    days_old: int = Query(30, ge=1),
    source: Optional[str] = Query(None),
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    """Delete products no run has refreshed for ``days_old`` days"""
    _check_source(engine, source)
    cutoff = datetime.now(timezone.utc) - timedelta(days=days_old)
    deleted = await engine.db.delete_stale_products(cutoff, source)
    return {"deleted": deleted, "days_old": days_old, "source": source, "cutoff": cutoff.isoformat()}


@router.get("/{source}/{canonical_id}")
async def get_product(
    source: str,
    canonical_id: str,
    engine: EngineContext = Depends(get_engine)
) -> Dict[str, Any]:
    _check_source(engine, source)
    product = await engine.db.get_product(source, canonical_id)
    if product is None:
        raise HTTPException(status_code=404, detail=f"Product {source}/{canonical_id} not found")
    return product.model_dump(mode="json")
