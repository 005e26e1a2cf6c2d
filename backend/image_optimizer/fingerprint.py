"""
Request fingerprinting.

The cache key is a SHA-256 digest over a "|"-joined canonical form of
every parameter that changes the output bytes. Field order is fixed:
reordering or adding a field makes every existing entry unreachable.

An absent dimension renders as "" and a zero renders as "0", so a zero
width or height never shares a key with an absent one.
"""

import hashlib
from dataclasses import dataclass
from typing import Optional

from .config import DEFAULT_FORMAT, DEFAULT_QUALITY


@dataclass(frozen=True)
class TransformRequest:
    """Immutable description of one transform."""
    source_url: str
    width: Optional[int] = None
    height: Optional[int] = None
    output_format: str = DEFAULT_FORMAT
    quality: int = DEFAULT_QUALITY

    def __post_init__(self):
        if not self.source_url:
            raise ValueError("source_url is required")
        if not self.output_format:
            object.__setattr__(self, "output_format", DEFAULT_FORMAT)

    @property
    def content_type(self) -> str:
        return f"image/{self.output_format}"


def _dimension(value: Optional[int]) -> str:
    return "" if value is None else str(value)


def cache_key(request: TransformRequest) -> str:
    """Return the lowercase hex fingerprint of a request."""
    canonical = "|".join([
        request.source_url,
        _dimension(request.width),
        _dimension(request.height),
        request.output_format,
        str(request.quality),
    ])
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def blob_name(request: TransformRequest) -> str:
    """Object name under which the transform result is stored."""
    return f"{cache_key(request)}.{request.output_format}"
