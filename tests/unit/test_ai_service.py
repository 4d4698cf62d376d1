"""
Unit tests for AIService.

The Anthropic client is replaced by a mock whose ``messages.create``
returns canned text blocks, so these tests exercise prompt assembly,
response parsing and the degrade-to-fallback rules.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest

from importer.core.exceptions import ImageProcessingError, TranslationError
from importer.core.models import (
    Gender,
    ImageClassification,
    TopsSizeChart,
)
from importer.services.ai_service import (
    NO_BRAND_CONTEXT,
    NOT_SPECIFIED,
    AIService,
    build_color_map,
    extract_json,
    parse_json_response,
)

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


def _text_response(text: str) -> SimpleNamespace:
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])


def _client(*texts: str) -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=[_text_response(t) for t in texts])
    return client


def _api_error() -> anthropic.APIConnectionError:
    return anthropic.APIConnectionError(
        request=httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    )


# ─── Response Parsing ─────────────────────────────────────────


class TestParsing:
    """Tests for JSON extraction from model responses."""

    def test_fenced_json(self):
        assert extract_json('Here:\n```json\n{"a": 1}\n```\nDone') == '{"a": 1}'

    def test_unlabelled_fence(self):
        assert extract_json('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_json(self):
        assert extract_json('  {"a": 1}  ') == '{"a": 1}'

    def test_parse_requires_object(self):
        with pytest.raises(ValueError):
            parse_json_response("[1, 2]")

    def test_parse_invalid_json(self):
        with pytest.raises(ValueError):
            parse_json_response("not json")


class TestColorMap:
    """Tests for the raw colour → translation mapping."""

    def test_color_translations_format(self):
        mapping = build_color_map(TRANSLATION)
        assert mapping["灰-现货"].english == "Gray"
        assert mapping["黑色"].standard == "Black"

    def test_legacy_variants_format(self):
        mapping = build_color_map({
            "variants": [{"original_color": "米白", "color": "Cream", "color_standardized": "Beige"}]
        })
        assert mapping["米白"].english == "Cream"
        assert mapping["米白"].standard == "Beige"

    def test_missing_standard_defaults_to_catch_all(self):
        mapping = build_color_map({"color_translations": [{"original": "花", "english": "Floral"}]})
        assert mapping["花"].standard == "Multicolor"

    def test_incomplete_entries_ignored(self):
        mapping = build_color_map({"color_translations": [{"original": "x"}, "bad", {"english": "y"}]})
        assert mapping == {}

    def test_off_palette_standard_left_unset(self):
        mapping = build_color_map({
            "color_translations": [
                {"original": "炭灰", "english": "Charcoal", "color_standardized": "Charcoal"},
            ]
        })
        assert mapping["炭灰"].english == "Charcoal"
        assert mapping["炭灰"].standard is None

    def test_non_string_names_skipped(self):
        mapping = build_color_map({
            "color_translations": [
                {"original": "黑色", "english": ["Black"], "color_standardized": "Black"},
                {"original": 7, "english": "Red"},
                {"original": "白色", "english": "White", "color_standardized": "White"},
            ],
            "variants": "not a list",
        })
        assert list(mapping) == ["白色"]


# ─── Translation ──────────────────────────────────────────────


class TestTranslateListing:
    """Tests for translation and variant construction."""

    @pytest.mark.asyncio
    async def test_translates_and_prices_variants(self, sample_listing):
        client = _client(f"```json\n{json.dumps(TRANSLATION, ensure_ascii=False)}\n```")
        service = AIService(client=client)

        product = await service.translate_listing(sample_listing, rate=0.14, markup=2.0)

        assert product.title == "Relaxed Alpaca Knit Cardigan"
        assert product.vendor == "Flowery Bubble"
        assert product.gender == Gender.FEMALE
        assert len(product.variants) == len(sample_listing.skus)

        gray_s, gray_m, black_m, sentinel = product.variants
        assert (gray_s.size, gray_s.color, gray_s.color_standardized) == ("S", "Gray", "Gray")
        assert gray_s.price_target == 84  # ceil(299 * 0.14 * 2)
        assert gray_s.image == sample_listing.skus[0].image
        assert black_m.price_target == 90  # ceil(319 * 0.14 * 2)
        assert sentinel.color == ""
        assert sentinel.size == "均码"

    @pytest.mark.asyncio
    async def test_prompt_lists_every_distinct_color(self, sample_listing):
        client = _client(json.dumps(TRANSLATION))
        await AIService(client=client).translate_listing(sample_listing, 0.14, 2.0)

        prompt = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert 'Translate each of these 3 colours' in prompt
        assert '- "灰-现货"' in prompt
        assert '- "黑色"' in prompt
        assert "Flowery Bubble 泡沫花市" in prompt
        assert "{{" not in prompt

    @pytest.mark.asyncio
    async def test_untranslated_color_is_cleaned_and_guessed(self, sample_listing):
        partial = {**TRANSLATION, "color_translations": []}
        client = _client(json.dumps(partial))

        product = await AIService(client=client).translate_listing(sample_listing, 0.14, 2.0)

        assert product.variants[0].color == "灰"
        assert product.variants[0].color_standardized == "Gray"

    @pytest.mark.asyncio
    async def test_off_palette_standard_uses_color_heuristic(self, sample_listing):
        translation = {
            **TRANSLATION,
            "color_translations": [
                {"original": "灰-现货", "english": "Charcoal Grey", "color_standardized": "Charcoal"},
                {"original": "黑色", "english": "Black", "color_standardized": "Black"},
            ],
        }
        client = _client(json.dumps(translation))

        product = await AIService(client=client).translate_listing(sample_listing, 0.14, 2.0)

        assert product.variants[0].color == "Charcoal Grey"
        assert product.variants[0].color_standardized == "Gray"
        assert product.variants[2].color_standardized == "Black"

    @pytest.mark.asyncio
    async def test_non_string_color_entry_does_not_fail_translation(self, sample_listing):
        translation = {
            **TRANSLATION,
            "color_translations": [
                {"original": "灰-现货", "english": {"en": "Gray"}, "color_standardized": "Gray"},
                {"original": "黑色", "english": "Black", "color_standardized": "Black"},
            ],
        }
        client = _client(json.dumps(translation))

        product = await AIService(client=client).translate_listing(sample_listing, 0.14, 2.0)

        assert len(product.variants) == len(sample_listing.skus)
        assert product.variants[0].color == "灰"
        assert product.variants[0].color_standardized == "Gray"

    @pytest.mark.asyncio
    async def test_missing_fields_fall_back_to_listing(self, sample_listing):
        client = _client(json.dumps({"gender": "robot"}))

        product = await AIService(client=client).translate_listing(sample_listing, 0.14, 2.0)

        assert product.title == sample_listing.title
        assert product.vendor == sample_listing.shop_name
        assert product.gender == Gender.UNISEX

    @pytest.mark.asyncio
    async def test_invalid_json_raises_translation_error(self, sample_listing):
        client = _client("I cannot help with that.")
        with pytest.raises(TranslationError, match="not valid JSON"):
            await AIService(client=client).translate_listing(sample_listing, 0.14, 2.0)

    @pytest.mark.asyncio
    async def test_api_error_raises_translation_error(self, sample_listing):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=_api_error())
        with pytest.raises(TranslationError):
            await AIService(client=client).translate_listing(sample_listing, 0.14, 2.0)


# ─── Image Classification ─────────────────────────────────────


class TestClassifyImage:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "label, expected",
        [
            ("delete", ImageClassification.DELETE),
            ("remove", ImageClassification.REMOVE_BACKGROUND),
            ("fine", ImageClassification.USABLE),
        ],
    )
    async def test_labels(self, label, expected):
        client = _client(json.dumps({"classification": label, "reason": "r"}))
        result = await AIService(client=client).classify_image("https://img.alicdn.com/a.jpg")
        assert result.classification == expected
        assert result.reason == "r"

    @pytest.mark.asyncio
    async def test_sends_image_url_block(self):
        client = _client('{"classification": "fine"}')
        await AIService(client=client).classify_image("https://img.alicdn.com/a.jpg")

        content = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert content[0] == {
            "type": "image",
            "source": {"type": "url", "url": "https://img.alicdn.com/a.jpg"},
        }

    @pytest.mark.asyncio
    async def test_unknown_label_raises(self):
        client = _client('{"classification": "maybe"}')
        with pytest.raises(ImageProcessingError):
            await AIService(client=client).classify_image("https://img.alicdn.com/a.jpg")

    @pytest.mark.asyncio
    async def test_api_error_raises(self):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=_api_error())
        with pytest.raises(ImageProcessingError):
            await AIService(client=client).classify_image("https://img.alicdn.com/a.jpg")


# ─── Size Chart ───────────────────────────────────────────────


class TestExtractSizeChart:
    """Tests for size chart extraction from description images."""

    URLS = ["https://img.alicdn.com/d1.jpg", "https://img.alicdn.com/d2.jpg"]

    @pytest.mark.asyncio
    async def test_no_images_skips_model(self):
        client = _client()
        extraction = await AIService(client=client).extract_size_chart([])
        assert not extraction.found
        client.messages.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_extracts_chart_and_source_image(self):
        payload = {
            "found_size_chart": True,
            "type": "tops",
            "measurements": [
                {"size": "S", "length": 59, "chest": "110cm", "shoulder": 58, "sleeve": 47},
                {"size": "M", "length": 60, "chest": 114},
            ],
            "model_info": {"height_cm": 172, "size_worn": "M"},
            "materials": "70% Alpaca, 30% Wool",
            "care_instructions": "Hand wash cold",
            "source_image_index": 1,
        }
        client = _client(json.dumps(payload))

        with patch(
            "importer.services.ai_service.fetch_image_as_jpeg",
            AsyncMock(return_value=b"\xff\xd8jpeg"),
        ):
            extraction = await AIService(client=client).extract_size_chart(self.URLS)

        assert isinstance(extraction.size_chart, TopsSizeChart)
        assert extraction.size_chart.measurements[0].chest == 110.0
        assert extraction.size_chart.source_image_url == self.URLS[1]
        assert extraction.size_chart.model_info.size_worn == "M"
        assert extraction.materials == "70% Alpaca, 30% Wool"

        content = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert content[0]["source"]["type"] == "base64"
        assert content[0]["source"]["media_type"] == "image/jpeg"
        assert content[1] == {"type": "text", "text": "Image 1 of 2"}

    @pytest.mark.asyncio
    async def test_not_found_gives_empty_extraction(self):
        client = _client('{"found_size_chart": false, "type": "tops"}')
        with patch(
            "importer.services.ai_service.fetch_image_as_jpeg",
            AsyncMock(return_value=b"jpeg"),
        ):
            extraction = await AIService(client=client).extract_size_chart(self.URLS)

        assert extraction.size_chart is None
        assert extraction.materials is None

    @pytest.mark.asyncio
    async def test_unknown_type_defaults_to_tops(self):
        client = _client('{"found_size_chart": true, "type": "hats", "measurements": []}')
        with patch(
            "importer.services.ai_service.fetch_image_as_jpeg",
            AsyncMock(return_value=b"jpeg"),
        ):
            extraction = await AIService(client=client).extract_size_chart(self.URLS)

        assert extraction.size_chart.type == "tops"

    @pytest.mark.asyncio
    async def test_non_string_type_defaults_to_tops(self):
        client = _client('{"found_size_chart": true, "type": ["tops"], "measurements": []}')
        with patch(
            "importer.services.ai_service.fetch_image_as_jpeg",
            AsyncMock(return_value=b"jpeg"),
        ):
            extraction = await AIService(client=client).extract_size_chart(self.URLS)

        assert extraction.size_chart.type == "tops"

    @pytest.mark.asyncio
    async def test_model_info_units_are_stripped(self):
        payload = {
            "found_size_chart": True,
            "type": "tops",
            "measurements": [{"size": "M", "chest": "110cm"}],
            "model_info": {"height_cm": "170cm", "weight_kg": "55 kg", "size_worn": "M"},
            "materials": "100% Wool",
            "care_instructions": "Dry clean only",
        }
        client = _client(json.dumps(payload))
        with patch(
            "importer.services.ai_service.fetch_image_as_jpeg",
            AsyncMock(return_value=b"jpeg"),
        ):
            extraction = await AIService(client=client).extract_size_chart(self.URLS)

        assert extraction.size_chart.model_info.height_cm == 170.0
        assert extraction.size_chart.model_info.weight_kg == 55.0
        assert extraction.materials == "100% Wool"
        assert extraction.care_instructions == "Dry clean only"

    @pytest.mark.asyncio
    async def test_malformed_chart_keeps_materials(self):
        payload = {
            "found_size_chart": True,
            "type": "tops",
            "measurements": [{"chest": 100}],
            "materials": "100% Cotton",
            "care_instructions": ["Machine wash"],
        }
        client = _client(json.dumps(payload))
        with patch(
            "importer.services.ai_service.fetch_image_as_jpeg",
            AsyncMock(return_value=b"jpeg"),
        ):
            extraction = await AIService(client=client).extract_size_chart(self.URLS)

        assert extraction.size_chart is None
        assert extraction.materials == "100% Cotton"
        assert extraction.care_instructions is None
        assert not extraction.found

    @pytest.mark.asyncio
    async def test_undownloadable_images_skipped(self):
        client = _client('{"found_size_chart": false}')
        fetch = AsyncMock(side_effect=[ImageProcessingError("404"), b"jpeg"])
        with patch("importer.services.ai_service.fetch_image_as_jpeg", fetch):
            await AIService(client=client).extract_size_chart(self.URLS)

        content = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert content[1] == {"type": "text", "text": "Image 1 of 1"}

    @pytest.mark.asyncio
    async def test_all_downloads_fail(self):
        client = _client()
        with patch(
            "importer.services.ai_service.fetch_image_as_jpeg",
            AsyncMock(side_effect=ImageProcessingError("404")),
        ):
            extraction = await AIService(client=client).extract_size_chart(self.URLS)

        assert not extraction.found
        client.messages.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_model_failure_gives_empty_extraction(self):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=_api_error())
        with patch(
            "importer.services.ai_service.fetch_image_as_jpeg",
            AsyncMock(return_value=b"jpeg"),
        ):
            extraction = await AIService(client=client).extract_size_chart(self.URLS)

        assert not extraction.found

    @pytest.mark.asyncio
    async def test_respects_max_images(self):
        client = _client('{"found_size_chart": false}')
        fetch = AsyncMock(return_value=b"jpeg")
        urls = [f"https://img.alicdn.com/d{i}.jpg" for i in range(12)]
        with patch("importer.services.ai_service.fetch_image_as_jpeg", fetch):
            await AIService(client=client).extract_size_chart(urls, max_images=10)

        assert fetch.await_count == 10


# ─── Copy ─────────────────────────────────────────────────────


class TestGenerateCopy:
    @pytest.mark.asyncio
    async def test_generates_copy(self, sample_translated):
        client = _client(json.dumps({
            "title": "Ribbed Alpaca Cardigan",
            "description": "<p>Relaxed cardigan.</p>",
        }))

        copy = await AIService(client=client).generate_copy(
            sample_translated,
            main_image_url="https://img.alicdn.com/main.jpg",
            brand_context="## Brand Summary\nQuiet knitwear.",
            materials="70% Alpaca",
        )

        assert copy.title == "Ribbed Alpaca Cardigan"
        assert copy.body_html == "<p>Relaxed cardigan.</p>"

        content = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert content[0]["source"]["url"] == "https://img.alicdn.com/main.jpg"
        prompt = content[1]["text"]
        assert "Materials: 70% Alpaca" in prompt
        assert f"Care: {NOT_SPECIFIED}" in prompt
        assert "Quiet knitwear." in prompt

    @pytest.mark.asyncio
    async def test_text_only_prompt_without_image(self, sample_translated):
        client = _client('{"title": "T", "description": "<p>D</p>"}')
        await AIService(client=client).generate_copy(sample_translated)

        content = client.messages.create.call_args.kwargs["messages"][0]["content"]
        assert isinstance(content, str)
        assert NO_BRAND_CONTEXT in content

    @pytest.mark.asyncio
    async def test_falls_back_on_invalid_response(self, sample_translated):
        client = _client("Sorry, no JSON today")
        copy = await AIService(client=client).generate_copy(sample_translated)

        assert copy.title == sample_translated.title
        assert copy.body_html == f"<p>{sample_translated.description}</p>"

    @pytest.mark.asyncio
    async def test_falls_back_on_empty_fields(self, sample_translated):
        client = _client('{"title": "", "description": "<p>D</p>"}')
        copy = await AIService(client=client).generate_copy(sample_translated)
        assert copy.title == sample_translated.title


class TestConnection:
    @pytest.mark.asyncio
    async def test_connection_ok(self):
        assert await AIService(client=_client('{"ok": true}')).test_connection() is True

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=_api_error())
        assert await AIService(client=client).test_connection() is False
