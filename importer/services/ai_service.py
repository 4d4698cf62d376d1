"""
AI operations backed by the Anthropic Messages API.

- Translation: Chinese listing → English title, vendor, type, gender and a
  per-colour mapping onto the standard palette
- Image classification: delete / remove background / usable
- Size chart extraction from description images (vision, inline JPEGs)
- Storefront copy generation with optional brand context

All prompts ask for JSON; responses are parsed with ``extract_json`` which
accepts both fenced and bare payloads.
"""

import base64
import json
import logging
import re
from typing import Any

import anthropic
from pydantic import ValidationError

from importer.config import Settings
from importer.converters.prompts import (
    CLASSIFY_IMAGE_PROMPT,
    COLOR_LIST_SUFFIX,
    DESCRIBE_PRODUCT_PROMPT,
    EXTRACT_SIZE_CHART_PROMPT,
    STANDARD_COLORS_LINE,
    TRANSLATE_PROMPT,
    render,
)
from importer.converters.text_cleaner import clean_color, clean_size, guess_standard_color
from importer.core.exceptions import ImageProcessingError, TranslationError
from importer.core.models import (
    CATCH_ALL_COLOR,
    SIZE_CHART_ADAPTER,
    STANDARD_COLORS,
    ClassifiedImage,
    ColorTranslation,
    Gender,
    GeneratedCopy,
    ImageClassification,
    Listing,
    SizeChartExtraction,
    SizeChartType,
    TranslatedProduct,
    TranslatedVariant,
)
from importer.services.currency_service import CurrencyConverter
from importer.services.image_utils import fetch_image_as_jpeg

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"

MAX_TOKENS_TRANSLATE = 2000
MAX_TOKENS_CLASSIFY = 200
MAX_TOKENS_DESCRIBE = 1500
MAX_TOKENS_SIZE_CHART = 2000

SKU_EXAMPLES_IN_PROMPT = 3

NO_BRAND_CONTEXT = "No brand context available. Write in a general elevated fashion voice."
NOT_SPECIFIED = "Not specified"

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


# ─── Response Parsing ─────────────────────────────────────────


def extract_json(text: str) -> str:
    """Return the JSON payload from a fenced ```json block, else the trimmed text."""
    match = _FENCED_JSON.search(text or "")
    if match:
        return match.group(1).strip()
    return (text or "").strip()


def parse_json_response(text: str) -> dict[str, Any]:
    """
    Parse a model response into a dict.

    Raises:
        ValueError: If the payload is not a JSON object.
    """
    data = json.loads(extract_json(text))
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _palette_color(value: Any) -> str | None:
    """Catch-all when absent, the value when on the palette, else None."""
    if value is None or value == "":
        return CATCH_ALL_COLOR
    return value if value in STANDARD_COLORS else None


def _optional_text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value).strip() or None


def build_color_map(parsed: dict[str, Any]) -> dict[str, ColorTranslation]:
    """
    Collect raw-colour → translation entries from a translation response.

    Reads ``color_translations[{original, english, color_standardized}]``
    and the older ``variants[{original_color, color, color_standardized}]``
    form; later entries win. Entries whose names are not strings are
    skipped. A missing standard colour becomes the catch-all; one off the
    palette is left unset so the caller can derive it from the English name.
    """
    color_map: dict[str, ColorTranslation] = {}

    sources = (
        (parsed.get("color_translations"), "original", "english"),
        (parsed.get("variants"), "original_color", "color"),
    )
    for entries, original_key, english_key in sources:
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            original, english = entry.get(original_key), entry.get(english_key)
            if not (isinstance(original, str) and original and isinstance(english, str) and english):
                continue
            color_map[original] = ColorTranslation(
                original=original,
                english=english,
                standard=_palette_color(entry.get("color_standardized")),
            )

    return color_map


def _parse_gender(value: Any) -> Gender:
    try:
        return Gender(str(value).strip().capitalize())
    except ValueError:
        return Gender.UNISEX


class AIService:
    """
    Thin domain layer over the Anthropic client.

    Translation failures are fatal to the item (TranslationError). Image
    classification raises so the caller can keep the original image. Size
    chart extraction and copy generation degrade to empty/fallback results.
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)
        self._model = model

    @classmethod
    def from_settings(cls, settings: Settings) -> "AIService":
        return cls(api_key=settings.anthropic_api_key, model=settings.anthropic_model)

    async def _complete(self, content: str | list[dict[str, Any]], max_tokens: int) -> str:
        """Send one user message and return the first text block."""
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": content}],
        )
        block = response.content[0] if response.content else None
        if block is None or block.type != "text":
            raise ValueError("Unexpected response type from model")
        return block.text

    # ─── Translation ──────────────────────────────────────────

    def _build_translate_prompt(self, listing: Listing) -> str:
        sku_examples = [
            sku.model_dump(mode="json") for sku in listing.skus[:SKU_EXAMPLES_IN_PROMPT]
        ]
        colors = listing.distinct_colors
        prompt = render(
            TRANSLATE_PROMPT,
            title=listing.title,
            description=listing.description,
            shop_name=listing.shop_name,
            skus=json.dumps(sku_examples, ensure_ascii=False, indent=2),
            standard_colors=STANDARD_COLORS_LINE,
        )
        return prompt + render(
            COLOR_LIST_SUFFIX,
            count=len(colors),
            colors="\n".join(f'- "{c}"' for c in colors),
        )

    async def translate_listing(
        self,
        listing: Listing,
        rate: float,
        markup: float,
    ) -> TranslatedProduct:
        """
        Translate a listing and build its variants with target-currency prices.

        Every SKU becomes a variant here; filtering of unusable colours
        happens later in the assembler.

        Raises:
            TranslationError: On API failure or an unparseable response.
        """
        prompt = self._build_translate_prompt(listing)

        try:
            text = await self._complete(prompt, MAX_TOKENS_TRANSLATE)
            parsed = parse_json_response(text)
        except anthropic.APIError as e:
            raise TranslationError(
                f"Translation request failed: {e}",
                details={"item_id": listing.item_id, "error_type": type(e).__name__},
            ) from e
        except ValueError as e:
            raise TranslationError(
                f"Translation response was not valid JSON: {e}",
                details={"item_id": listing.item_id},
            ) from e

        color_map = build_color_map(parsed)
        missing = [c for c in listing.distinct_colors if c not in color_map]
        if missing:
            logger.warning(f"No translation returned for {len(missing)} colour(s): {missing}")

        variants = []
        for sku in listing.skus:
            raw_color = sku.properties.color
            mapping = color_map.get(raw_color)

            size = clean_size(sku.properties.size or "One Size")
            color = clean_color((mapping.english if mapping else "") or raw_color or "Default")
            standard = (mapping.standard if mapping else None) or guess_standard_color(color)

            variants.append(
                TranslatedVariant(
                    sku_id=sku.sku_id,
                    size=size,
                    color=color,
                    color_standardized=standard,
                    price_source=sku.price,
                    price_target=CurrencyConverter.to_target_price(sku.price, rate, markup),
                    stock=sku.stock,
                    image=sku.image,
                )
            )

        translated = TranslatedProduct(
            title=parsed.get("title") or listing.title,
            description=parsed.get("description") or "",
            vendor=parsed.get("vendor") or listing.shop_name,
            product_type=parsed.get("product_type") or "",
            gender=_parse_gender(parsed.get("gender")),
            variants=variants,
            original=listing,
        )
        logger.info(
            f"Translated '{translated.title[:50]}' "
            f"({translated.vendor}, {translated.product_type}, {len(variants)} variants)"
        )
        return translated

    # ─── Image Classification ─────────────────────────────────

    async def classify_image(self, url: str) -> ClassifiedImage:
        """
        Ask the model whether an image should be dropped, cleaned or kept.

        Raises:
            ImageProcessingError: On API failure or an unrecognised label.
        """
        content = [
            {"type": "image", "source": {"type": "url", "url": url}},
            {"type": "text", "text": CLASSIFY_IMAGE_PROMPT},
        ]
        try:
            parsed = parse_json_response(await self._complete(content, MAX_TOKENS_CLASSIFY))
            classification = ImageClassification.parse(parsed.get("classification", ""))
        except anthropic.APIError as e:
            raise ImageProcessingError(
                f"Image classification failed: {e}",
                details={"url": url[:200], "error_type": type(e).__name__},
            ) from e
        except ValueError as e:
            raise ImageProcessingError(
                f"Unusable classification response: {e}",
                details={"url": url[:200]},
            ) from e

        return ClassifiedImage(
            url=url,
            classification=classification,
            reason=str(parsed.get("reason") or ""),
        )

    # ─── Size Chart Extraction ────────────────────────────────

    async def extract_size_chart(
        self,
        image_urls: list[str],
        max_images: int = 10,
    ) -> SizeChartExtraction:
        """
        Look for a size chart, materials and care text in description images.

        Images are downloaded and re-encoded to JPEG first. Never raises:
        "nothing found" and every failure both return an empty extraction.
        """
        urls = image_urls[:max_images]
        if not urls:
            logger.info("No description images to analyze for size chart")
            return SizeChartExtraction()

        downloaded: list[tuple[str, bytes]] = []
        for url in urls:
            try:
                downloaded.append((url, await fetch_image_as_jpeg(url)))
            except ImageProcessingError as e:
                logger.info(f"Skipping size chart image {url[:60]}: {e}")

        if not downloaded:
            logger.info("No description images could be downloaded for size chart analysis")
            return SizeChartExtraction()

        content: list[dict[str, Any]] = []
        for index, (_, data) in enumerate(downloaded, start=1):
            content.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": "image/jpeg",
                    "data": base64.b64encode(data).decode("ascii"),
                },
            })
            content.append({"type": "text", "text": f"Image {index} of {len(downloaded)}"})
        content.append({"type": "text", "text": EXTRACT_SIZE_CHART_PROMPT})

        try:
            parsed = parse_json_response(await self._complete(content, MAX_TOKENS_SIZE_CHART))
            return self._build_extraction(parsed, [url for url, _ in downloaded])
        except (
            anthropic.APIError,
            ValueError,
            ValidationError,
            TypeError,
            KeyError,
            AttributeError,
        ) as e:
            logger.warning(f"Size chart extraction failed: {type(e).__name__}: {e}")
            return SizeChartExtraction()

    @staticmethod
    def _build_extraction(parsed: dict[str, Any], urls: list[str]) -> SizeChartExtraction:
        if not parsed.get("found_size_chart"):
            logger.info("No size chart found in description images")
            return SizeChartExtraction()

        chart_type = parsed.get("type")
        if not isinstance(chart_type, str) or chart_type not in {t.value for t in SizeChartType}:
            chart_type = SizeChartType.TOPS.value

        index = parsed.get("source_image_index") or 0
        source_url = urls[index] if isinstance(index, int) and 0 <= index < len(urls) else None

        # A malformed table still leaves the materials and care text usable.
        try:
            size_chart = SIZE_CHART_ADAPTER.validate_python({
                "type": chart_type,
                "measurements": parsed.get("measurements") or [],
                "model_info": parsed.get("model_info") or None,
                "fit_notes": _optional_text(parsed.get("fit_notes")),
                "source_image_url": source_url,
            })
        except ValidationError as e:
            logger.warning(f"Discarding malformed size chart: {e.error_count()} error(s)")
            size_chart = None
        else:
            logger.info(
                f"Size chart extracted: {chart_type}, "
                f"{len(size_chart.measurements)} sizes"
            )

        return SizeChartExtraction(
            size_chart=size_chart,
            materials=_optional_text(parsed.get("materials")),
            care_instructions=_optional_text(parsed.get("care_instructions")),
        )

    # ─── Copy Generation ──────────────────────────────────────

    async def generate_copy(
        self,
        product: TranslatedProduct,
        main_image_url: str | None = None,
        brand_context: str = "",
        materials: str | None = None,
        care_instructions: str | None = None,
    ) -> GeneratedCopy:
        """
        Write the storefront title and HTML body.

        Falls back to the translated title and description on any failure.
        """
        prompt = render(
            DESCRIBE_PRODUCT_PROMPT,
            title=product.title,
            vendor=product.vendor,
            product_type=product.product_type,
            gender=product.gender.value,
            colors=", ".join(product.colors),
            sizes=", ".join(product.sizes),
            materials=materials or NOT_SPECIFIED,
            care_instructions=care_instructions or NOT_SPECIFIED,
            brand_context=brand_context or NO_BRAND_CONTEXT,
        )

        content: str | list[dict[str, Any]] = prompt
        if main_image_url:
            content = [
                {"type": "image", "source": {"type": "url", "url": main_image_url}},
                {"type": "text", "text": prompt},
            ]

        try:
            parsed = parse_json_response(await self._complete(content, MAX_TOKENS_DESCRIBE))
        except (anthropic.APIError, ValueError) as e:
            logger.warning(f"Copy generation failed, using translated text: {e}")
            return self._fallback_copy(product)

        title = str(parsed.get("title") or "").strip()
        body = str(parsed.get("description") or "").strip()
        if not title or not body:
            logger.warning("Copy generation returned empty fields, using translated text")
            return self._fallback_copy(product)

        return GeneratedCopy(title=title, body_html=body)

    @staticmethod
    def _fallback_copy(product: TranslatedProduct) -> GeneratedCopy:
        body = f"<p>{product.description}</p>" if product.description else ""
        return GeneratedCopy(title=product.title, body_html=body)

    # ─── Health ───────────────────────────────────────────────

    async def test_connection(self) -> bool:
        try:
            text = await self._complete('Reply with {"ok": true}', 20)
        except (anthropic.APIError, ValueError) as e:
            logger.warning(f"Anthropic connection test failed: {e}")
            return False
        return bool(text)


