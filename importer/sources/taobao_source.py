"""
Taobao Global product connector.

Calls the signed ``/product/get`` endpoint of the Taobao Global open API and
normalizes whatever shape comes back into a canonical Listing.

Request signing:
    sign = upper(hex(HMAC-SHA256(app_secret,
                 api_path + concat(k + v for k, v in sorted(params)))))

Prices come back in fen and are converted to yuan by the normalizers.
"""

import hashlib
import hmac
import json
import logging
import time
from typing import Any

import httpx

from importer.config import Settings
from importer.core.exceptions import SourceError, SourceNotFoundError, SourceRateLimitError
from importer.core.models import Listing
from importer.core.resilience import CircuitBreaker
from importer.sources.base_source import BaseSource
from importer.sources.normalizers import normalize_listing, unwrap_payload

logger = logging.getLogger(__name__)

PRODUCT_PATH = "/product/get"
SIGN_METHOD = "sha256"


def generate_signature(api_path: str, params: dict[str, str], app_secret: str) -> str:
    """
    Sign a request the way the Taobao Global gateway expects.

    Args:
        api_path: Endpoint path, e.g. ``/product/get``.
        params: Every query parameter except ``sign`` itself.
        app_secret: Application secret used as the HMAC key.

    Returns:
        Upper-case hex digest.
    """
    payload = api_path + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(
        app_secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return digest.upper()


class TaobaoSource(BaseSource):
    """
    Connector for Taobao Global listings.

    Handles:
    - HMAC-SHA256 request signing with a millisecond timestamp
    - Error envelopes (``error`` / ``error_response``) returned with HTTP 200
    - 429 rate limiting (retried by the base class)
    - Every known response shape (see importer.sources.normalizers)
    """

    SOURCE_NAME = "taobao"

    def __init__(
        self,
        app_key: str,
        app_secret: str,
        access_token: str,
        api_base: str = "https://api.taobao.global/rest",
        test_item_id: str = "846881782232",
        circuit_breaker: CircuitBreaker | None = None,
        timeout: float = 30.0,
    ):
        super().__init__(circuit_breaker=circuit_breaker)
        self._app_key = app_key
        self._app_secret = app_secret
        self._access_token = access_token
        self._api_base = api_base.rstrip("/")
        self._test_item_id = test_item_id
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "TaobaoSource":
        return cls(
            app_key=settings.taobao_app_key,
            app_secret=settings.taobao_app_secret,
            access_token=settings.taobao_access_token,
            api_base=settings.taobao_api_base,
            test_item_id=settings.taobao_test_item_id,
            circuit_breaker=CircuitBreaker(
                name=cls.SOURCE_NAME,
                failure_threshold=settings.source_circuit_failure_threshold,
                cooldown_seconds=settings.source_circuit_cooldown_seconds,
            ),
        )

    # ─── Request Signing ──────────────────────────────────────

    def _build_params(self, api_path: str, extra: dict[str, Any]) -> dict[str, str]:
        """Assemble common parameters plus the signature."""
        params = {
            "app_key": self._app_key,
            "timestamp": str(int(time.time() * 1000)),
            "sign_method": SIGN_METHOD,
            "access_token": self._access_token,
            **{key: str(value) for key, value in extra.items()},
        }
        params["sign"] = generate_signature(api_path, params, self._app_secret)
        return params

    async def _request(self, api_path: str, extra: dict[str, Any]) -> dict[str, Any]:
        """Make a signed GET request and return the decoded body."""
        if not (self._app_key and self._app_secret):
            raise SourceError("Taobao app key/secret not configured")

        params = self._build_params(api_path, extra)

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(f"{self._api_base}{api_path}", params=params)
        except httpx.HTTPError as e:
            raise SourceError(
                f"Taobao request failed: {e}",
                details={"path": api_path, "error_type": type(e).__name__},
            ) from e

        if response.status_code == 429:
            raise SourceRateLimitError(
                "Taobao API rate limit exceeded",
                details={"status": 429, "path": api_path},
            )

        if response.status_code != 200:
            raise SourceError(
                f"Taobao API error ({response.status_code})",
                details={"status": response.status_code, "body": response.text[:500]},
            )

        try:
            body = response.json()
        except json.JSONDecodeError as e:
            raise SourceError(
                "Taobao API returned invalid JSON",
                details={"path": api_path, "body": response.text[:500]},
            ) from e

        if not isinstance(body, dict):
            raise SourceError("Taobao API returned a non-object body", details={"path": api_path})

        error = body.get("error") or body.get("error_response")
        if error:
            message = error
            if isinstance(error, dict):
                message = error.get("msg") or error.get("message") or error.get("code")
            raise SourceError(
                f"Taobao API error: {message}",
                details={"path": api_path, "error": error},
            )

        return body

    # ─── Template Method Hooks ────────────────────────────────

    async def _fetch_raw(self, item_id: str) -> dict[str, Any]:
        return await self._request(PRODUCT_PATH, {"item_id": item_id})

    def _transform(self, raw_data: dict[str, Any], item_id: str) -> Listing:
        payload = unwrap_payload(raw_data)
        listing = normalize_listing(payload)
        if listing is None:
            raise SourceNotFoundError(item_id, details={"raw_keys": sorted(payload)})
        return listing

    async def test_connection(self) -> bool:
        """Fetch the configured probe item; True if it normalizes cleanly."""
        try:
            listing = await self.fetch_listing(self._test_item_id)
        except SourceError as e:
            logger.warning(f"[taobao] Connection test failed: {e}")
            return False
        logger.info(f"[taobao] Connection OK: '{listing.title[:50]}'")
        return True
