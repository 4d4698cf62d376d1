"""
Image download and transcoding helpers.

Marketplace CDNs serve AVIF/WebP that vision APIs may reject, and description
images are often huge. Everything sent inline to the AI is re-encoded as a
JPEG that fits within MAX_DIMENSION and MAX_BYTES.
"""

import io
import logging

import httpx
from PIL import Image, UnidentifiedImageError

from importer.core.exceptions import ImageProcessingError

logger = logging.getLogger(__name__)

MAX_DIMENSION = 2048
MAX_BYTES = 4 * 1024 * 1024
START_QUALITY = 85
QUALITY_STEP = 15
MIN_QUALITY = 30

# Some CDNs refuse requests without a browser-like agent.
DOWNLOAD_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    ),
    "Accept": "image/*,*/*;q=0.8",
}


def to_jpeg(data: bytes) -> bytes:
    """
    Re-encode image bytes as an RGB JPEG within the size limits.

    Raises:
        ImageProcessingError: If the bytes are not a decodable image.
    """
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageProcessingError(f"Cannot decode image: {e}") from e

    if image.mode != "RGB":
        image = image.convert("RGB")
    image.thumbnail((MAX_DIMENSION, MAX_DIMENSION))

    quality = START_QUALITY
    encoded = _encode(image, quality)
    while len(encoded) > MAX_BYTES and quality > MIN_QUALITY:
        quality = max(MIN_QUALITY, quality - QUALITY_STEP)
        encoded = _encode(image, quality)
        logger.debug(f"Re-encoded at quality {quality}: {len(encoded)} bytes")

    return encoded


def _encode(image: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue()


async def download_image(url: str, timeout: float = 30.0) -> bytes:
    """Download raw image bytes."""
    try:
        async with httpx.AsyncClient(
            timeout=timeout, follow_redirects=True, headers=DOWNLOAD_HEADERS
        ) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        raise ImageProcessingError(
            f"Image download failed: {e}",
            details={"url": url[:200], "error_type": type(e).__name__},
        ) from e

    if response.status_code != 200:
        raise ImageProcessingError(
            f"Image download returned {response.status_code}",
            details={"url": url[:200], "status": response.status_code},
        )
    return response.content


async def fetch_image_as_jpeg(url: str, timeout: float = 30.0) -> bytes:
    """Download an image and return it as a size-limited JPEG."""
    return to_jpeg(await download_image(url, timeout=timeout))
