"""
Application factory.

Builds the store adapter, the transformer and the cache manager once per
app and hands them to the routes through app.state.

Run:
    uvicorn image_optimizer.app:build_app --factory --app-dir backend
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .blob_store import BlobStoreAdapter
from .cache_manager import ImageCacheManager
from .config import Settings
from .routes_fastapi import router
from .transformer import ImageTransformer

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[BlobStoreAdapter] = None,
    transformer: Optional[ImageTransformer] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    store = store or BlobStoreAdapter(settings)
    transformer = transformer or ImageTransformer(
        timeout=settings.fetch_timeout,
        max_image_size_bytes=settings.max_image_size_bytes,
    )
    cache_manager = ImageCacheManager(
        store=store,
        transformer=transformer,
        stale_after_seconds=settings.stale_after_seconds,
        browser_max_age=settings.browser_max_age,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"[ImageOptimize] Using container: {settings.container}")
        yield
        await transformer.close()

    app = FastAPI(title="Image Optimize Proxy", lifespan=lifespan)
    app.state.settings = settings
    app.state.cache_manager = cache_manager
    app.include_router(router)
    return app


def build_app() -> FastAPI:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return create_app(settings)
