"""
Integration tests for the full import pipeline.

Uses REAL component instances (TaobaoSource, AIService, ImagePipeline,
ProductAssembler, ShopifyLister, BrandContextService) and mocks only the
outbound I/O seams:
    - TaobaoSource._request (signed marketplace call)
    - the Anthropic client's messages.create
    - BackgroundRemovalService.remove_background
    - ShopifyLister._request (Admin API)

This verifies the listing flows correctly from the raw marketplace body
through translation, image ordering and variant linking to the exact
requests sent to Shopify.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from importer.converters.prompts import CLASSIFY_IMAGE_PROMPT, EXTRACT_SIZE_CHART_PROMPT
from importer.core.exceptions import TransientPublishError
from importer.core.models import ProcessedImageRef
from importer.listers.shopify_lister import ShopifyLister
from importer.services.ai_service import AIService
from importer.services.background_service import BackgroundRemovalService
from importer.services.brand_service import BrandContextService
from importer.services.image_pipeline import ImagePipeline
from importer.services.import_service import ImportService
from importer.sources.taobao_source import TaobaoSource

CDN = "https://img.alicdn.com/imgextra/i1"

TRANSLATION = {
    "title": "Relaxed Alpaca Knit Cardigan",
    "description": "Loose-fit alpaca wool cardigan.",
    "vendor": "Flowery Bubble",
    "product_type": "Cardigan",
    "gender": "Female",
    "color_translations": [
        {"original": "灰-现货", "english": "Gray", "color_standardized": "Gray"},
        {"original": "黑色", "english": "Black", "color_standardized": "Black"},
    ],
}

SIZE_CHART = {
    "found_size_chart": True,
    "type": "tops",
    "source_image_index": 0,
    "measurements": [{"size": "S", "chest": 108}, {"size": "M", "chest": 112}],
    "materials": "70% Alpaca, 30% Wool",
    "care_instructions": "Hand wash cold",
}

COPY = {
    "title": "Ribbed Alpaca Cardigan",
    "description": "<p>A soft, relaxed cardigan.</p>",
}

CLASSIFICATIONS = {
    f"{CDN}/main.jpg": "usable",
    f"{CDN}/back.jpg": "delete",
    f"{CDN}/gray.jpg": "remove_background",
    f"{CDN}/black.jpg": "usable",
}


# ─── Fakes ─────────────────────────────────────────────────


def _text(payload: dict) -> SimpleNamespace:
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=json.dumps(payload))])


async def fake_messages_create(model, max_tokens, messages):
    """Answer each prompt the pipeline sends with a canned response."""
    content = messages[0]["content"]
    if isinstance(content, str):
        prompt = content
    else:
        prompt = content[-1]["text"]

    if prompt == CLASSIFY_IMAGE_PROMPT:
        url = content[0]["source"]["url"]
        return _text({"classification": CLASSIFICATIONS[url], "reason": "test"})
    if prompt == EXTRACT_SIZE_CHART_PROMPT:
        return _text(SIZE_CHART)
    if prompt.startswith("You translate product data"):
        return _text(TRANSLATION)
    if prompt.startswith("You write product copy"):
        return _text(COPY)
    raise AssertionError(f"Unexpected prompt: {prompt[:60]}")


class FakeShopify:
    """Records Admin API calls and answers with realistic bodies."""

    def __init__(self, failing_image_positions: tuple[int, ...] = ()):
        self.calls: list[tuple[str, str, dict | None]] = []
        self._failing = failing_image_positions

    async def __call__(self, method, path, json_data=None):
        self.calls.append((method, path, json_data))
        if path == "/products.json":
            return {
                "product": {
                    "id": 777,
                    "variants": [
                        {"id": 1, "option1": "S", "option2": "Gray"},
                        {"id": 2, "option1": "M", "option2": "Gray"},
                        {"id": 3, "option1": "M", "option2": "Black"},
                    ],
                }
            }
        if path.endswith("/images.json"):
            position = json_data["image"]["position"]
            if position in self._failing:
                raise TransientPublishError("Shopify gateway error (503)", status_code=503)
            return {"image": {"id": 900 + position}}
        if path.endswith("/metafields.json"):
            return {"metafield": {"id": 1}}
        raise AssertionError(f"Unexpected Shopify call: {method} {path}")

    def requests_to(self, suffix: str) -> list[dict]:
        return [body for _, path, body in self.calls if path.endswith(suffix)]


# ─── Fixtures ──────────────────────────────────────────────


@pytest.fixture
def ai_client():
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=fake_messages_create)
    return client


@pytest.fixture
def background():
    service = BackgroundRemovalService(api_key="sk_pr_test")
    service.remove_background = AsyncMock(return_value=ProcessedImageRef.from_bytes(b"clean-png"))
    return service


@pytest.fixture
def shopify():
    return FakeShopify()


@pytest.fixture
def build_service(sample_raw_response, ai_client, background, tmp_path):
    def _build(shopify: FakeShopify) -> ImportService:
        source = TaobaoSource(app_key="key", app_secret="secret", access_token="token")
        source._request = AsyncMock(return_value=sample_raw_response)

        lister = ShopifyLister(
            store="axent-test.myshopify.com",
            access_token="shpat_test",
            request_delay_ms=0,
            retry_delay=0,
        )
        lister._request = shopify

        currency = MagicMock()
        currency.get_rate = AsyncMock(return_value=0.14)

        brands_dir = tmp_path / "brands"
        brands_dir.mkdir()
        (brands_dir / "flowery-bubble.md").write_text(
            "# Flowery Bubble\n\n## Brand Summary\nQuiet Shanghai knitwear.\n",
            encoding="utf-8",
        )

        ai = AIService(client=ai_client)
        return ImportService(
            source=source,
            ai=ai,
            image_pipeline=ImagePipeline(ai, background),
            publisher=lister,
            currency=currency,
            brands=BrandContextService(brands_dir),
            markup=2.0,
            batch_pause_seconds=0,
        )

    return _build


@pytest.fixture(autouse=True)
def fake_image_download():
    with patch(
        "importer.services.ai_service.fetch_image_as_jpeg",
        new=AsyncMock(return_value=b"\xff\xd8jpeg"),
    ):
        yield


# ─── Tests ─────────────────────────────────────────────────


class TestImportPipeline:
    """End-to-end import of one Taobao listing."""

    @pytest.mark.asyncio
    async def test_successful_import(self, build_service, shopify):
        result = await build_service(shopify).import_item("846881782232")

        assert result.success is True, result.error
        assert result.product_id == 777
        assert result.product_url == "https://axent-test.myshopify.com/products/777"

    @pytest.mark.asyncio
    async def test_product_payload(self, build_service, shopify):
        await build_service(shopify).import_item("846881782232")

        product = shopify.requests_to("/products.json")[0]["product"]
        assert product["title"] == "Ribbed Alpaca Cardigan"
        assert product["body_html"] == "<p>A soft, relaxed cardigan.</p>"
        assert product["vendor"] == "Flowery Bubble"
        assert product["options"] == [
            {"name": "Size", "values": ["S", "M"]},
            {"name": "Color", "values": ["Gray", "Black"]},
        ]
        # 299 CNY * 0.14 * 2.0 = 83.72 → 84; 319 CNY → 89.32 → 90
        assert [(v["option1"], v["option2"], v["price"]) for v in product["variants"]] == [
            ("S", "Gray", "84"),
            ("M", "Gray", "84"),
            ("M", "Black", "90"),
        ]

    @pytest.mark.asyncio
    async def test_images_ordered_cleaned_and_linked(self, build_service, shopify, background):
        await build_service(shopify).import_item("846881782232")

        images = [body["image"] for body in shopify.requests_to("/images.json")]
        images.sort(key=lambda img: img["position"])

        assert [img["position"] for img in images] == [1, 2, 3]
        assert images[0]["src"] == f"{CDN}/main.jpg"
        assert "variant_ids" not in images[0]
        assert "attachment" in images[1]
        assert images[1]["variant_ids"] == [1, 2]
        assert images[2]["src"] == f"{CDN}/black.jpg"
        assert images[2]["variant_ids"] == [3]
        background.remove_background.assert_awaited_once_with(f"{CDN}/gray.jpg")

    @pytest.mark.asyncio
    async def test_metafields_written(self, build_service, shopify):
        await build_service(shopify).import_item("846881782232")

        fields = {
            body["metafield"]["key"]: body["metafield"]
            for body in shopify.requests_to("/metafields.json")
        }
        assert set(fields) == {"gender", "colors", "size_chart", "materials", "care_instructions"}
        assert fields["gender"]["value"] == "Female"
        assert json.loads(fields["colors"]["value"]) == ["Gray", "Black"]
        assert json.loads(fields["size_chart"]["value"])["type"] == "tops"
        assert fields["materials"]["value"] == "70% Alpaca, 30% Wool"

    @pytest.mark.asyncio
    async def test_brand_context_reaches_copy_prompt(self, build_service, shopify, ai_client):
        await build_service(shopify).import_item("846881782232")

        prompts = []
        for call in ai_client.messages.create.call_args_list:
            content = call.kwargs["messages"][0]["content"]
            prompts.append(content if isinstance(content, str) else content[-1]["text"])
        copy_prompt = next(p for p in prompts if p.startswith("You write product copy"))

        assert "Quiet Shanghai knitwear." in copy_prompt
        assert "70% Alpaca, 30% Wool" in copy_prompt

    @pytest.mark.asyncio
    async def test_image_failure_does_not_fail_item(self, build_service):
        shopify = FakeShopify(failing_image_positions=(3,))

        result = await build_service(shopify).import_item("846881782232")

        assert result.success is True
        attempts = [b for b in shopify.requests_to("/images.json") if b["image"]["position"] == 3]
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_source_not_found(self, build_service, shopify):
        service = build_service(shopify)
        service._source._request = AsyncMock(return_value={"code": "0", "data": {}})

        result = await service.import_item("999")

        assert result.success is False
        assert result.error == "Product not found or invalid response for item: 999"
        assert shopify.calls == []
