"""
Image Optimize Proxy API Routes

Provides endpoints for:
- Fetching, resizing and recompressing external images (cached)
- Cache statistics
- Cache management (sweep of stale entries)
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel, Field

from .cache_manager import ImageCacheManager
from .config import DEFAULT_FORMAT, DEFAULT_QUALITY, Settings
from .errors import ConfigurationError, StoreInitError, TransformFailure
from .fingerprint import TransformRequest

logger = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


# ============================================
# Response Models
# ============================================

class CacheStats(BaseModel):
    """Counters kept by the cache manager."""
    total_requests: int
    hits: int
    misses: int
    hit_rate_percent: float
    stale_evictions: int
    write_failures: int
    transform_failures: int
    cache_ttl_hours: int
    cache_control: str


class CacheStatsResponse(BaseModel):
    success: bool
    stats: CacheStats


class CleanupResponse(BaseModel):
    success: bool
    removed_entries: int = Field(..., description="Stale entries deleted from the store")
    current_stats: CacheStats


class HealthResponse(BaseModel):
    status: str
    service: str
    store: dict


# ============================================
# Dependencies
# ============================================

def get_cache_manager(request: Request) -> ImageCacheManager:
    return request.app.state.cache_manager


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def parse_int(value: Optional[str]) -> Optional[int]:
    """
    Parse the leading integer of a query value ("200px" -> 200).

    Returns None for an absent or empty value.

    Raises:
        ValueError: value has no leading integer
    """
    if value is None or value == "":
        return None
    match = _LEADING_INT.match(value)
    if match is None:
        raise ValueError(f"not an integer: {value!r}")
    return int(match.group(1))


def clamp_dimension(value: Optional[int], max_dimension: int) -> Optional[int]:
    """Cap a dimension at max_dimension. Values below zero pass through."""
    if value is None:
        return None
    return min(value, max_dimension)


# ============================================
# Router
# ============================================

router = APIRouter(prefix="/api/ImageOptimizeProxy", tags=["Image Optimize Proxy"])


@router.api_route("", methods=["GET", "POST"])
@router.api_route("/", methods=["GET", "POST"], include_in_schema=False)
async def optimize_image(
    request: Request,
    url: Optional[str] = Query(None, description="URL of the source image"),
    w: Optional[str] = Query(None, description="Target width (max 1024)"),
    h: Optional[str] = Query(None, description="Target height (max 1024)"),
    format: Optional[str] = Query(None, description="Output format, default webp"),
    quality: Optional[str] = Query(None, description="Encoder quality, default 75"),
    cache_manager: ImageCacheManager = Depends(get_cache_manager),
    settings: Settings = Depends(get_settings),
):
    """
    Resize and recompress an external image.

    This endpoint:
    1. Fingerprints the request parameters
    2. Serves the stored result if it is fresh
    3. Otherwise fetches, transforms and stores the image

    Example:
        GET /api/ImageOptimizeProxy?url=https://example.com/a.png&w=200&h=100&format=webp&quality=80
    """
    logger.info(f'[ImageOptimize] Processing request for url "{request.url}"')

    if not url:
        return PlainTextResponse("Missing 'url' query parameter.", status_code=400)

    try:
        width = clamp_dimension(parse_int(w), settings.max_dimension)
        height = clamp_dimension(parse_int(h), settings.max_dimension)
        parsed_quality = parse_int(quality)
    except ValueError as e:
        return PlainTextResponse(f"Invalid query parameter: {e}", status_code=400)

    transform_request = TransformRequest(
        source_url=url,
        width=width,
        height=height,
        output_format=format or DEFAULT_FORMAT,
        quality=DEFAULT_QUALITY if parsed_quality is None else parsed_quality,
    )

    try:
        result = await cache_manager.get(transform_request)
    except (TransformFailure, ConfigurationError, StoreInitError) as e:
        logger.error(f"[ImageOptimize] Failed: {url[:60]}... - {e}")
        return PlainTextResponse(f"Error processing image: {e}", status_code=500)

    return Response(
        content=result.data,
        media_type=result.content_type,
        headers={
            "Cache-Control": cache_manager.cache_control,
            "X-Cache": result.cache_status,
        },
    )


@router.get("/stats", response_model=CacheStatsResponse)
async def get_cache_stats(cache_manager: ImageCacheManager = Depends(get_cache_manager)):
    """Get hit/miss counters and cache configuration."""
    return {"success": True, "stats": cache_manager.get_stats()}


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_cache(cache_manager: ImageCacheManager = Depends(get_cache_manager)):
    """
    Delete stale entries from the store.

    Stale entries are also removed when a request reads them; this sweeps
    the ones nobody asks for anymore.
    """
    try:
        removed = await cache_manager.cleanup_expired()
    except (ConfigurationError, StoreInitError) as e:
        return PlainTextResponse(f"Error cleaning cache: {e}", status_code=500)
    return {
        "success": True,
        "removed_entries": removed,
        "current_stats": cache_manager.get_stats(),
    }


@router.get("/health", response_model=HealthResponse)
async def health_check(cache_manager: ImageCacheManager = Depends(get_cache_manager)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "image-optimize-proxy",
        "store": cache_manager.store.status(),
    }
