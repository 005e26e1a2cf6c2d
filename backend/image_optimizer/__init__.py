"""
Image Optimizer Module

Resizes and recompresses external images behind a durable,
content-addressed cache.

Features:
- SHA-256 fingerprint of every output-affecting parameter
- S3-compatible blob store, lazily connected, fail-open on faults
- Lazy expiry of stale entries plus a manual sweep
- Cover-fit resize and re-encode with Pillow
"""

from .routes_fastapi import router
from .cache_manager import ImageCacheManager
from .fingerprint import TransformRequest, cache_key
from .app import create_app

__all__ = ["router", "ImageCacheManager", "TransformRequest", "cache_key", "create_app"]
