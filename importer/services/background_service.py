"""
Background removal via the PhotoRoom image editing API.

Replaces a product photo's background with a flat light grey. The API
answers with the edited image bytes, which are carried inline to the
publisher (no intermediate hosting).
"""

import logging

import httpx

from importer.config import Settings
from importer.core.exceptions import BackgroundRemovalError
from importer.core.models import ProcessedImageRef

logger = logging.getLogger(__name__)

VALID_KEY_PREFIXES = ("sandbox_", "sk_pr_")
URL_FIELDS = ("url", "result_url", "imageUrl")


class BackgroundRemovalService:
    """Adapter for ``GET {base}/edit?imageUrl=...``."""

    def __init__(
        self,
        api_key: str,
        api_base: str = "https://image-api.photoroom.com/v2",
        background_color: str = "F5F5F5",
        timeout: float = 60.0,
    ):
        self._api_key = api_key
        self._api_base = api_base.rstrip("/")
        self._background_color = background_color
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackgroundRemovalService":
        return cls(
            api_key=settings.photoroom_api_key,
            api_base=settings.photoroom_api_base,
            background_color=settings.photoroom_background_color,
        )

    async def remove_background(self, image_url: str) -> ProcessedImageRef:
        """
        Return the image with its background replaced.

        Raises:
            BackgroundRemovalError: On transport errors, non-2xx responses or
                a body that is neither an image nor a JSON result URL.
        """
        params = {
            "imageUrl": image_url,
            "background.color": self._background_color,
            "outputSize": "originalImage",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(
                    f"{self._api_base}/edit",
                    params=params,
                    headers={"x-api-key": self._api_key},
                )
        except httpx.HTTPError as e:
            raise BackgroundRemovalError(
                f"Background removal request failed: {e}",
                details={"url": image_url[:200], "error_type": type(e).__name__},
            ) from e

        if not response.is_success:
            raise BackgroundRemovalError(
                f"PhotoRoom API error ({response.status_code})",
                details={"status": response.status_code, "body": response.text[:500]},
            )

        content_type = response.headers.get("content-type", "").split(";")[0].strip()

        if content_type.startswith("image/"):
            logger.debug(f"Background removed: {len(response.content)} bytes {content_type}")
            return ProcessedImageRef.from_bytes(response.content, media_type=content_type)

        if content_type == "application/json":
            try:
                body = response.json()
            except ValueError as e:
                raise BackgroundRemovalError("PhotoRoom returned malformed JSON") from e
            for field in URL_FIELDS:
                if isinstance(body, dict) and body.get(field):
                    return ProcessedImageRef.from_url(body[field])

        raise BackgroundRemovalError(
            f"PhotoRoom returned unexpected content type: {content_type or 'none'}",
            details={"url": image_url[:200]},
        )

    async def test_connection(self) -> bool:
        """Validate the key format only; a real call would spend credits."""
        if not self._api_key:
            logger.warning("PhotoRoom API key not set")
            return False
        if not self._api_key.startswith(VALID_KEY_PREFIXES):
            logger.warning("PhotoRoom API key format invalid")
            return False
        return True
