"""
Shopify product publishing via the Admin REST API.

Implements the publish workflow:
1. Create product + variants, no images (POST /products.json)
2. Map each colour option to the variant IDs Shopify assigned
3. Upload images in small batches (POST /products/{id}/images.json), each
   linked to the variant IDs of every colour it is tagged with
4. Write custom metafields concurrently (POST /products/{id}/metafields.json)

Linking an image to a colour's variants is what makes the storefront show
that image as the colour's swatch; untagged images show for every variant.
"""

import asyncio
import json
import logging
from typing import Any

import httpx

from importer.config import Settings
from importer.core.exceptions import CommerceAuthError, PublishError, TransientPublishError
from importer.core.interfaces import IPublisher
from importer.core.models import (
    FinalImage,
    FinalProduct,
    ImageUploadResult,
    ImageUploadStatus,
    ProductMetafields,
    PublishedProduct,
)
from importer.core.resilience import backoff_delay

logger = logging.getLogger(__name__)

METAFIELD_NAMESPACE = "custom"

# Gateway-class failures: the request never completed in Shopify's app layer.
TRANSIENT_STATUS_CODES = frozenset({502, 503, 504, 520, 521, 522, 523, 524})

PUBLISH_MUTATION = """
mutation publishProduct($id: ID!, $input: [PublicationInput!]!) {
  publishablePublish(id: $id, input: $input) {
    publishable { ... on Product { id title } }
    userErrors { field message }
  }
}
"""


def variant_ids_by_color(variants: list[dict[str, Any]], color: str) -> list[int]:
    """IDs of created variants whose colour option matches (case-insensitive)."""
    wanted = color.lower()
    return [v["id"] for v in variants if str(v.get("option2") or "").lower() == wanted]


def group_variant_ids(variants: list[dict[str, Any]]) -> dict[str, list[int]]:
    """Colour option → variant IDs, in creation order."""
    by_color: dict[str, list[int]] = {}
    for variant in variants:
        by_color.setdefault(variant.get("option2") or "", []).append(variant["id"])
    return by_color


def build_metafields(metafields: ProductMetafields) -> list[dict[str, str]]:
    """Serialize the metadata bundle into Shopify metafield payloads."""
    fields = [
        {"key": "gender", "value": metafields.gender.value, "type": "single_line_text_field"},
        {
            "key": "colors",
            "value": json.dumps(metafields.colors, ensure_ascii=False),
            "type": "list.single_line_text_field",
        },
    ]

    if metafields.size_chart is not None:
        fields.append({
            "key": "size_chart",
            "value": metafields.size_chart.model_dump_json(exclude_none=True),
            "type": "json",
        })

    for key in ("materials", "care_instructions"):
        value = getattr(metafields, key)
        if value:
            field_type = "multi_line_text_field" if "\n" in value else "single_line_text_field"
            fields.append({"key": key, "value": value, "type": field_type})

    return fields


class ShopifyLister(IPublisher):
    """
    Publishes assembled products to a Shopify store.

    Product creation failures raise; individual image and metafield
    failures are logged and reported in the PublishedProduct.
    """

    def __init__(
        self,
        store: str,
        access_token: str = "",
        api_version: str = "2025-01",
        publication_id: str = "",
        request_delay_ms: int = 500,
        batch_size: int = 3,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        timeout: float = 60.0,
    ):
        self._store = store
        self._access_token = access_token
        self._base_url = f"https://{store}/admin/api/{api_version}"
        self._publication_id = publication_id
        self._request_delay = request_delay_ms / 1000
        self._batch_size = max(1, batch_size)
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "ShopifyLister":
        return cls(
            store=settings.shopify_store,
            access_token=settings.shopify_access_token,
            api_version=settings.shopify_api_version,
            publication_id=settings.shopify_publication_id,
            request_delay_ms=settings.shopify_request_delay_ms,
            batch_size=settings.image_upload_batch_size,
            max_attempts=settings.image_upload_max_attempts,
            retry_delay=settings.image_upload_retry_delay,
        )

    def _get_headers(self) -> dict[str, str]:
        """Build authorization and content headers."""
        if not self._access_token:
            raise CommerceAuthError("No Shopify access token configured")
        return {
            "X-Shopify-Access-Token": self._access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        json_data: dict | None = None,
    ) -> dict | None:
        """Make an authenticated request to the Admin API, then pause politely."""
        url = f"{self._base_url}{path}"
        headers = self._get_headers()

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=headers,
                    json=json_data,
                )
        except httpx.TimeoutException as e:
            raise TransientPublishError(
                f"Shopify request timed out: {method} {path}",
                details={"path": path, "method": method},
            ) from e
        except httpx.HTTPError as e:
            raise PublishError(
                f"Shopify request failed: {e}",
                details={"path": path, "method": method, "error_type": type(e).__name__},
            ) from e

        if response.status_code in (401, 403):
            raise CommerceAuthError(
                "Shopify access token invalid or missing scope",
                status_code=response.status_code,
                details={"status": response.status_code, "path": path},
            )

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientPublishError(
                f"Shopify gateway error ({response.status_code})",
                status_code=response.status_code,
                details={"status": response.status_code, "path": path, "method": method},
            )

        if not response.is_success:
            error_detail = response.text
            try:
                errors = response.json().get("errors")
                if errors:
                    error_detail = json.dumps(errors, ensure_ascii=False)
            except (ValueError, AttributeError):
                pass

            raise PublishError(
                f"Shopify API error ({response.status_code}): {error_detail[:300]}",
                status_code=response.status_code,
                details={"status": response.status_code, "path": path, "method": method},
            )

        if self._request_delay:
            await asyncio.sleep(self._request_delay)

        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as e:
            raise PublishError(
                f"Shopify returned a non-JSON body ({response.status_code}): {response.text[:100]}",
                status_code=response.status_code,
                details={"status": response.status_code, "path": path, "method": method},
            ) from e
        if not isinstance(body, dict):
            raise PublishError(
                f"Shopify returned {type(body).__name__} instead of an object",
                status_code=response.status_code,
                details={"status": response.status_code, "path": path, "method": method},
            )
        return body

    def product_url(self, product_id: int) -> str:
        return f"https://{self._store}/products/{product_id}"

    # ─── Step 1: Product + Variants ───────────────────────────

    @staticmethod
    def _build_product_payload(product: FinalProduct) -> dict:
        sizes = list(dict.fromkeys(v.option1 for v in product.variants))
        colors = list(dict.fromkeys(v.option2 for v in product.variants))
        return {
            "product": {
                "title": product.title,
                "body_html": product.body_html,
                "vendor": product.vendor,
                "product_type": product.product_type,
                "tags": ", ".join(product.tags),
                "options": [
                    {"name": "Size", "values": sizes},
                    {"name": "Color", "values": colors},
                ],
                "variants": [v.model_dump() for v in product.variants],
            }
        }

    # ─── Step 3: Images ───────────────────────────────────────

    @staticmethod
    def _build_image_payload(image: FinalImage, variant_ids: list[int]) -> dict:
        payload: dict[str, Any] = {"position": image.position}
        if image.image.is_inline:
            payload["attachment"] = image.image.base64_payload()
        else:
            payload["src"] = image.image.url
        if variant_ids:
            payload["variant_ids"] = variant_ids
        return {"image": payload}

    @staticmethod
    def _variant_ids_for(image: FinalImage, variants: list[dict[str, Any]]) -> list[int]:
        """Union of variant IDs for every colour the image is tagged with."""
        ids: list[int] = []
        for color in image.variant_colors or []:
            for variant_id in variant_ids_by_color(variants, color):
                if variant_id not in ids:
                    ids.append(variant_id)
        return ids

    async def _upload_image(
        self,
        product_id: int,
        image: FinalImage,
        variant_ids: list[int],
    ) -> ImageUploadResult:
        """Upload one image, retrying transient failures with a growing delay."""
        payload = self._build_image_payload(image, variant_ids)
        path = f"/products/{product_id}/images.json"

        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self._request("POST", path, payload)
                break
            except TransientPublishError as e:
                if attempt >= self._max_attempts:
                    return self._failed(image, variant_ids, attempt, e)
                delay = backoff_delay(attempt, self._retry_delay, linear=True)
                logger.warning(
                    f"Image {image.position} attempt {attempt}/{self._max_attempts} "
                    f"failed ({e}), retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
            except PublishError as e:
                return self._failed(image, variant_ids, attempt, e)

        created = (response or {}).get("image")
        return ImageUploadResult(
            position=image.position,
            status=ImageUploadStatus.UPLOADED,
            attempts=attempt,
            image_id=created.get("id") if isinstance(created, dict) else None,
            variant_ids=variant_ids,
        )

    @staticmethod
    def _failed(
        image: FinalImage,
        variant_ids: list[int],
        attempts: int,
        error: PublishError,
    ) -> ImageUploadResult:
        logger.error(f"Image {image.position} failed permanently after {attempts} attempt(s): {error}")
        return ImageUploadResult(
            position=image.position,
            status=ImageUploadStatus.FAILED,
            attempts=attempts,
            variant_ids=variant_ids,
            error=str(error)[:300],
        )

    async def upload_images(
        self,
        product_id: int,
        images: list[FinalImage],
        variants: list[dict[str, Any]],
    ) -> list[ImageUploadResult]:
        """Upload in sequential batches; images within a batch run concurrently."""
        results: list[ImageUploadResult] = []
        ordered = sorted(images, key=lambda img: img.position)

        for start in range(0, len(ordered), self._batch_size):
            batch = ordered[start:start + self._batch_size]
            results.extend(
                await asyncio.gather(
                    *(
                        self._upload_image(product_id, image, self._variant_ids_for(image, variants))
                        for image in batch
                    )
                )
            )

        return results

    # ─── Step 4: Metafields ───────────────────────────────────

    async def write_metafields(self, product_id: int, metafields: ProductMetafields) -> list[str]:
        """Write all metafields concurrently; returns the keys that succeeded."""
        fields = build_metafields(metafields)
        path = f"/products/{product_id}/metafields.json"

        outcomes = await asyncio.gather(
            *(
                self._request("POST", path, {"metafield": {"namespace": METAFIELD_NAMESPACE, **field}})
                for field in fields
            ),
            return_exceptions=True,
        )

        written = []
        for field, outcome in zip(fields, outcomes):
            if isinstance(outcome, PublishError):
                logger.error(f"Metafield '{field['key']}' failed: {outcome}")
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                written.append(field["key"])
        return written

    # ─── Publish ──────────────────────────────────────────────

    async def publish(self, product: FinalProduct) -> PublishedProduct:
        logger.info(f"Creating Shopify product: '{product.title}'")

        response = await self._request("POST", "/products.json", self._build_product_payload(product))
        created = (response or {}).get("product") or {}
        if not created.get("id"):
            raise PublishError("Shopify did not return a product id", details={"response": response})

        product_id = int(created["id"])
        created_variants = created.get("variants") or []
        by_color = group_variant_ids(created_variants)
        logger.info(f"Product created: {product_id} ({sum(len(v) for v in by_color.values())} variants)")

        image_results = await self.upload_images(product_id, product.images, created_variants)
        uploaded = sum(1 for r in image_results if r.status == ImageUploadStatus.UPLOADED)
        logger.info(f"Images: {uploaded} uploaded, {len(image_results) - uploaded} failed")

        written = await self.write_metafields(product_id, product.metafields)

        if self._publication_id:
            await self.publish_to_channel(product_id)

        return PublishedProduct(
            product_id=product_id,
            url=self.product_url(product_id),
            variant_ids_by_color=by_color,
            image_results=image_results,
            metafields_written=written,
        )

    # ─── Supporting Operations ────────────────────────────────

    async def publish_to_channel(self, product_id: int) -> bool:
        """Make the product visible on the configured sales channel."""
        if not self._publication_id:
            return False

        publication_id = self._publication_id
        if not publication_id.startswith("gid://"):
            publication_id = f"gid://shopify/Publication/{publication_id}"

        body = {
            "query": PUBLISH_MUTATION,
            "variables": {
                "id": f"gid://shopify/Product/{product_id}",
                "input": [{"publicationId": publication_id}],
            },
        }

        try:
            response = await self._request("POST", "/graphql.json", body)
        except PublishError as e:
            logger.warning(f"Publishing {product_id} to sales channel failed: {e}")
            return False

        result = ((response or {}).get("data") or {}).get("publishablePublish") or {}
        errors = result.get("userErrors") or (response or {}).get("errors")
        if errors:
            logger.warning(f"Publishing {product_id} to sales channel rejected: {errors}")
            return False

        logger.info(f"Product {product_id} published to sales channel")
        return True

    async def delete_product(self, product_id: int) -> None:
        await self._request("DELETE", f"/products/{product_id}.json")
        logger.info(f"Product deleted: {product_id}")

    async def test_connection(self) -> bool:
        try:
            await self._request("GET", "/shop.json")
        except PublishError as e:
            logger.warning(f"Shopify connection test failed: {e}")
            return False
        return True
