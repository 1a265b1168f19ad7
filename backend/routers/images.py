"""
Image Relay Router
Passes catalog images through for allow-listed hosts with a fixed cache lifetime
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from fastapi.responses import Response
from typing import Tuple
import logging
import asyncio
import aiohttp

from context import EngineContext
from routers.dependencies import get_engine

logger = logging.getLogger(__name__)
router = APIRouter()

IMAGE_ACCEPT = "image/avif,image/webp,image/apng,image/*,*/*;q=0.8"


async def fetch_image(url: str, referer: str, timeout: float) -> Tuple[bytes, str]:
    """Download one image; raises aiohttp.ClientError or asyncio.TimeoutError on failure."""
    headers = {
        "Referer": referer,
        "Accept": IMAGE_ACCEPT,
        "User-Agent": "Mozilla/5.0 (compatible; CatalogImageRelay/1.0)",
    }
    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
        async with session.get(url, headers=headers) as response:
            response.raise_for_status()
            body = await response.read()
            return body, response.headers.get("Content-Type", "image/jpeg")


@router.get("")
async def relay_image(
    url: str = Query(..., min_length=1),
    engine: EngineContext = Depends(get_engine)
):
    config = engine.registry.image_source(url)
    if config is None:
        raise HTTPException(status_code=400, detail="Image host not allowed")

    try:
        body, content_type = await fetch_image(
            url, referer=f"{config.site_url.rstrip('/')}/",
            timeout=engine.settings.IMAGE_PROXY_TIMEOUT,
        )
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning(f"⚠️ Image relay failed for {url}: {e}")
        raise HTTPException(status_code=502, detail="Upstream image fetch failed")

    return Response(
        content=body,
        media_type=content_type,
        headers={"Cache-Control": f"public, max-age={engine.settings.IMAGE_CACHE_MAX_AGE}"},
    )
