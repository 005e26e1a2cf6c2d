"""
Image Transform Pipeline

Handles:
- Fetching the source image from its origin URL
- Decoding any raster format Pillow understands
- Cover-fit resizing to the requested box
- Re-encoding to the requested format and quality

Every failure is raised as a TransformFailure subclass tagged with the
stage that failed. Nothing here retries.
"""

import asyncio
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import httpx
from PIL import Image, ImageOps

from .errors import DecodeError, EncodeError, OriginFetchError, TransformFailure
from .fingerprint import TransformRequest

logger = logging.getLogger(__name__)

# Requested format -> Pillow writer name
FORMAT_MAP = {
    "webp": "WEBP",
    "jpeg": "JPEG",
    "jpg": "JPEG",
    "png": "PNG",
    "gif": "GIF",
    "tiff": "TIFF",
    "avif": "AVIF",
}

# Writers that take a quality setting
LOSSY_FORMATS = {"JPEG", "WEBP", "AVIF"}


@dataclass
class TransformedImage:
    """Result of one pipeline run."""
    data: bytes
    content_type: str
    width: int
    height: int


class ImageTransformer:
    """
    Fetches and re-encodes images.

    Usage:
        transformer = ImageTransformer(timeout=30.0)
        result = await transformer.run(request)
        await transformer.close()
    """

    def __init__(
        self,
        timeout: Optional[float] = 30.0,
        max_image_size_bytes: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.max_image_size_bytes = max_image_size_bytes
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={
                "User-Agent": "Mozilla/5.0 (compatible; ImageOptimizeProxy/1.0)",
                "Accept": "image/avif,image/webp,image/apng,image/*,*/*;q=0.8",
            },
        )

    async def close(self):
        """Close HTTP client if we created it."""
        if self._owns_client:
            await self.http_client.aclose()

    async def run(self, request: TransformRequest) -> TransformedImage:
        """
        Produce the derived image for a request.

        Raises:
            OriginFetchError, DecodeError, EncodeError, TransformFailure
        """
        source = await self.fetch(request.source_url)
        result = await asyncio.to_thread(self._process, source, request)
        logger.info(
            f"[ImageTransform] {request.source_url[:60]}: "
            f"{len(source)//1024}KB -> {len(result.data)//1024}KB "
            f"({result.width}x{result.height} {request.output_format} q{request.quality})"
        )
        return result

    async def fetch(self, url: str) -> bytes:
        """Download the origin bytes."""
        logger.info(f"[ImageTransform] Fetching: {url[:80]}...")
        try:
            response = await self.http_client.get(url)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise OriginFetchError(f"timeout fetching {url}") from e
        except httpx.HTTPStatusError as e:
            raise OriginFetchError(f"HTTP {e.response.status_code} fetching {url}") from e
        except httpx.InvalidURL as e:
            raise OriginFetchError(f"invalid URL {url}: {e}") from e
        except httpx.HTTPError as e:
            raise OriginFetchError(f"{type(e).__name__} fetching {url}: {e}") from e

        data = response.content
        if self.max_image_size_bytes is not None and len(data) > self.max_image_size_bytes:
            raise OriginFetchError(
                f"response too large ({len(data)} bytes, max {self.max_image_size_bytes})"
            )
        return data

    def _process(self, source: bytes, request: TransformRequest) -> TransformedImage:
        img = self._decode(source)
        img = self._resize(img, request.width, request.height)
        data = self._encode(img, request.output_format, request.quality)
        width, height = img.size
        return TransformedImage(
            data=data,
            content_type=request.content_type,
            width=width,
            height=height,
        )

    @staticmethod
    def _decode(source: bytes) -> Image.Image:
        try:
            img = Image.open(BytesIO(source))
            img.load()
        except Exception as e:
            raise DecodeError(f"unrecognized or corrupt image ({e})") from e
        return img

    @staticmethod
    def _resize(img: Image.Image, width: Optional[int], height: Optional[int]) -> Image.Image:
        """
        Cover-fit resize.

        Both sides given: scale to fill the box and crop the overflow
        around the centre. One side given: the other follows the aspect
        ratio. Neither: original size.
        """
        if width is None and height is None:
            return img

        original_width, original_height = img.size
        try:
            if width is not None and height is not None:
                return ImageOps.fit(img, (width, height), method=Image.Resampling.LANCZOS)
            if width is not None:
                height = max(1, round(original_height * width / original_width))
            else:
                width = max(1, round(original_width * height / original_height))
            return img.resize((width, height), Image.Resampling.LANCZOS)
        except Exception as e:
            raise TransformFailure(f"cannot resize to {width}x{height} ({e})", stage="resize") from e

    @staticmethod
    def _encode(img: Image.Image, output_format: str, quality: int) -> bytes:
        save_format = FORMAT_MAP.get(output_format.lower())
        Image.init()
        if save_format is None or save_format not in Image.SAVE:
            raise EncodeError(f"unsupported output format '{output_format}'")

        has_alpha = img.mode in ("RGBA", "LA", "PA") or (
            img.mode == "P" and "transparency" in img.info
        )
        if save_format == "JPEG":
            if has_alpha:
                # White background for transparency
                rgba = img.convert("RGBA")
                background = Image.new("RGB", rgba.size, (255, 255, 255))
                background.paste(rgba, mask=rgba.split()[3])
                img = background
            elif img.mode != "RGB":
                img = img.convert("RGB")
        elif img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if has_alpha else "RGB")

        save_kwargs = {"format": save_format}
        if save_format in LOSSY_FORMATS:
            save_kwargs["quality"] = quality
        if save_format == "WEBP":
            save_kwargs["method"] = 4  # Compression method (0-6)

        output = BytesIO()
        try:
            img.save(output, **save_kwargs)
        except Exception as e:
            raise EncodeError(f"cannot encode {output_format} ({e})") from e
        return output.getvalue()
