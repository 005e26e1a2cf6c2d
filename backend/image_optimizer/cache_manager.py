"""
Image Cache Manager

Content-addressed cache in front of the transform pipeline:
- Requests are keyed by their fingerprint (see fingerprint.py)
- Results persist in the durable blob store across restarts
- Entries older than the staleness threshold are deleted on read
- Store faults degrade to "recompute", never to a failed request
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from .blob_store import BlobStoreAdapter
from .config import DEFAULT_BROWSER_MAX_AGE, DEFAULT_STALE_HOURS
from .errors import StoreError, TransformFailure
from .fingerprint import TransformRequest, blob_name
from .transformer import ImageTransformer

logger = logging.getLogger(__name__)

CACHE_HIT = "HIT"
CACHE_MISS = "MISS"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheResult:
    """Image bytes plus how they were obtained."""
    data: bytes
    content_type: str
    cache_status: str

    @property
    def is_hit(self) -> bool:
        return self.cache_status == CACHE_HIT


class ImageCacheManager:
    """
    Serves transformed images from the durable cache, computing them on a miss.

    Concurrent misses for the same key are not merged: each runs the
    pipeline and writes, and the last write wins.
    """

    def __init__(
        self,
        store: BlobStoreAdapter,
        transformer: ImageTransformer,
        stale_after_seconds: int = DEFAULT_STALE_HOURS * 3600,
        browser_max_age: int = DEFAULT_BROWSER_MAX_AGE,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.transformer = transformer
        self.stale_after_seconds = stale_after_seconds
        self.cache_control = f"public, max-age={browser_max_age}"
        self._clock = clock

        self._requests = 0
        self._hits = 0
        self._misses = 0
        self._stale_evictions = 0
        self._write_failures = 0
        self._transform_failures = 0

    def _age_seconds(self, last_modified: datetime) -> float:
        if last_modified.tzinfo is None:
            last_modified = last_modified.replace(tzinfo=timezone.utc)
        return (self._clock() - last_modified).total_seconds()

    def is_stale(self, last_modified: datetime) -> bool:
        return self._age_seconds(last_modified) > self.stale_after_seconds

    async def get(self, request: TransformRequest) -> CacheResult:
        """
        Return the transformed image for a request.

        Raises:
            TransformFailure: the pipeline failed on a miss
            ConfigurationError, StoreInitError: the store handle cannot be built
        """
        name = blob_name(request)

        cached = await self._lookup(name)
        self._requests += 1
        if cached is not None:
            self._hits += 1
            logger.debug(f"[ImageCache] Cache hit: {name}")
            return CacheResult(
                data=cached,
                content_type=request.content_type,
                cache_status=CACHE_HIT,
            )

        self._misses += 1
        logger.debug(f"[ImageCache] Cache miss: {name}")
        try:
            transformed = await self.transformer.run(request)
        except TransformFailure as e:
            self._transform_failures += 1
            logger.error(f"[ImageCache] Transform failed for {request.source_url[:60]}: {e}")
            raise

        await self._persist(name, transformed.data, request.content_type)
        return CacheResult(
            data=transformed.data,
            content_type=request.content_type,
            cache_status=CACHE_MISS,
        )

    async def _lookup(self, name: str) -> Optional[bytes]:
        props = await self.store.get_properties(name)
        if props is None:
            return None

        if self.is_stale(props.last_modified):
            logger.debug(f"[ImageCache] Cache expired for: {name}")
            await self.store.delete_if_exists(name)
            self._stale_evictions += 1
            return None

        blob = await self.store.get(name)
        if blob is None:
            return None
        return blob.data

    async def _persist(self, name: str, data: bytes, content_type: str) -> None:
        try:
            stored = await self.store.put(name, data, content_type, self.cache_control)
        except StoreError as e:
            logger.error(f"[ImageCache] Failed to cache {name}: {e}")
            stored = False

        if stored:
            logger.debug(f"[ImageCache] Cached: {name} ({len(data)} bytes)")
        else:
            self._write_failures += 1

    async def cleanup_expired(self) -> int:
        """
        Remove all stale entries from the store.

        Returns:
            Number of entries removed.
        """
        removed = 0
        for props in await self.store.list_blobs():
            if self.is_stale(props.last_modified):
                if await self.store.delete_if_exists(props.name):
                    removed += 1

        self._stale_evictions += removed
        if removed:
            logger.info(f"[ImageCache] Cleaned up {removed} expired entries")
        return removed

    def get_stats(self) -> dict:
        """Get cache statistics."""
        return {
            "total_requests": self._requests,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate_percent": round(self._hits / self._requests * 100, 1) if self._requests > 0 else 0,
            "stale_evictions": self._stale_evictions,
            "write_failures": self._write_failures,
            "transform_failures": self._transform_failures,
            "cache_ttl_hours": self.stale_after_seconds // 3600,
            "cache_control": self.cache_control,
        }
