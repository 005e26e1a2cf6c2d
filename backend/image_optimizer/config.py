"""
Image Optimizer Configuration

All settings come from environment variables. The store credential is
the only required value; it is checked lazily by the blob store when the
first request needs it, not at import time.
"""

import os
from dataclasses import dataclass
from typing import Optional

# Browser cache 7 days
DEFAULT_BROWSER_MAX_AGE = 604800
# Stored objects older than this are treated as absent
DEFAULT_STALE_HOURS = 24
DEFAULT_CONTAINER = "image-cache"
DEFAULT_MAX_DIMENSION = 1024
DEFAULT_FORMAT = "webp"
DEFAULT_QUALITY = 75


def _optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value or None


@dataclass
class Settings:
    """Runtime configuration for the optimizer service."""
    # Store credential (required, validated by BlobStoreAdapter.ensure_ready)
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None

    # Store location
    endpoint_url: Optional[str] = None
    region: str = "us-east-1"
    container: str = DEFAULT_CONTAINER
    store_timeout: float = 10.0     # Connect/read timeout in seconds

    # Cache policy
    stale_after_seconds: int = DEFAULT_STALE_HOURS * 3600
    browser_max_age: int = DEFAULT_BROWSER_MAX_AGE

    # Transform settings
    max_dimension: int = DEFAULT_MAX_DIMENSION
    max_image_size_mb: int = 10     # 0 disables the origin size cap
    fetch_timeout: float = 30.0

    log_level: str = "INFO"

    @property
    def cache_control(self) -> str:
        return f"public, max-age={self.browser_max_age}"

    @property
    def max_image_size_bytes(self) -> Optional[int]:
        if self.max_image_size_mb <= 0:
            return None
        return self.max_image_size_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            access_key_id=_optional("IMAGE_CACHE_ACCESS_KEY_ID"),
            secret_access_key=_optional("IMAGE_CACHE_SECRET_ACCESS_KEY"),
            endpoint_url=_optional("IMAGE_CACHE_ENDPOINT_URL"),
            region=os.getenv("IMAGE_CACHE_REGION", "us-east-1"),
            container=os.getenv("IMAGE_CACHE_CONTAINER", DEFAULT_CONTAINER),
            store_timeout=float(os.getenv("IMAGE_CACHE_STORE_TIMEOUT", "10")),
            stale_after_seconds=int(os.getenv("IMAGE_CACHE_STALE_HOURS", str(DEFAULT_STALE_HOURS))) * 3600,
            browser_max_age=int(os.getenv("IMAGE_CACHE_BROWSER_MAX_AGE", str(DEFAULT_BROWSER_MAX_AGE))),
            max_dimension=int(os.getenv("IMAGE_MAX_DIMENSION", str(DEFAULT_MAX_DIMENSION))),
            max_image_size_mb=int(os.getenv("IMAGE_MAX_SIZE_MB", "10")),
            fetch_timeout=float(os.getenv("IMAGE_FETCH_TIMEOUT", "30")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
