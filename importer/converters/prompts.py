"""
Prompt templates for the AI service.

Every prompt asks for a single JSON object. Placeholders use ``{{NAME}}``
so the literal JSON braces in the examples need no escaping; fill them
with ``render()``.
"""

import re

from importer.core.models import STANDARD_COLORS

_PLACEHOLDER = re.compile(r"\{\{([A-Z_]+)\}\}")


def render(template: str, **values: object) -> str:
    """
    Substitute ``{{NAME}}`` placeholders from keyword arguments.

    Unknown placeholders are left intact so a missing value is visible in
    the logged prompt rather than silently blank.
    """
    def _sub(match: re.Match) -> str:
        key = match.group(1).lower()
        if key not in values:
            return match.group(0)
        value = values[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, template)


STANDARD_COLORS_LINE = ", ".join(STANDARD_COLORS)


# ─── Translation ──────────────────────────────────────────────

TRANSLATE_PROMPT = """You translate product data for Axent.store, a curated fashion store bringing Chinese brands to Western shoppers.

Translate and structure this listing from Chinese to English.

## INPUT DATA

Title: {{TITLE}}
Description: {{DESCRIPTION}}
Shop/Brand Name: {{SHOP_NAME}}
SKU Data:
{{SKUS}}

## STANDARD COLORS (map to these)
{{STANDARD_COLORS}}

## INSTRUCTIONS

1. Translate the title. Drop brand names, keep it descriptive.
2. Give the vendor/brand name in English (romanize proper names).
3. Decide the product type, e.g. "Jacket", "T-Shirt", "Pants".
4. Decide the target gender: Male, Female or Unisex.
5. For every colour listed under COLOR TRANSLATIONS NEEDED:
   - translate it to English
   - map it to the closest standard colour above

## SIZE TRANSLATIONS
- 均码 = One Size
- 加大 = Plus Size
- Numbers like 170/88A: use the first number as the S/M/L reference

## OUTPUT FORMAT (JSON only)

{
  "title": "Translated product title without brand",
  "description": "Brief English description",
  "vendor": "Brand Name in English",
  "product_type": "Jacket",
  "gender": "Male" | "Female" | "Unisex",
  "color_translations": [
    {"original": "灰-现货", "english": "Gray", "color_standardized": "Gray"}
  ]
}

Strip stock and shipping notes such as "现货", "预售", "48小时内发货" from colour names.

Return ONLY valid JSON, no other text."""

COLOR_LIST_SUFFIX = """

## COLOR TRANSLATIONS NEEDED
Translate each of these {{COUNT}} colours (include every one in color_translations):
{{COLORS}}"""


# ─── Image Classification ─────────────────────────────────────

CLASSIFY_IMAGE_PROMPT = """Classify this product image.

## OPTIONS

- "delete": do not use the image
  - size chart or measurement diagram
  - mostly text or heavy watermarks
  - model card or lookbook page rather than the product
  - blurry, low quality or not the product

- "remove": good product shot that needs its background removed
  - coloured or patterned background
  - lifestyle setting or distracting background

- "fine": ready to use as-is
  - product on a white or clean background

## OUTPUT FORMAT (JSON only)

{"classification": "delete" | "remove" | "fine", "reason": "Brief explanation"}

Return ONLY valid JSON, no other text."""


# ─── Product Copy ─────────────────────────────────────────────

DESCRIBE_PRODUCT_PROMPT = """You write product copy for Axent.store. Facts first, style second.

## PRODUCT DATA

Title: {{TITLE}}
Brand: {{VENDOR}}
Category: {{PRODUCT_TYPE}}
Gender: {{GENDER}}
Colors: {{COLORS}}
Sizes: {{SIZES}}

## VERIFIED PRODUCT DETAILS

Materials: {{MATERIALS}}
Care: {{CARE_INSTRUCTIONS}}

## BRAND CONTEXT

{{BRAND_CONTEXT}}

## COPY (20-35 words)

One paragraph: brand name, product type and key material, then two or three
concrete construction details (collar, closure, pockets, length). Only use
materials from the VERIFIED section.

Then a fit line: "Fit: [Relaxed/Slim/Oversized/True to size]: [actionable tip]"

Avoid metaphors, design-school language and the words timeless, elevate,
stunning, perfect, essential, effortless.

## TITLE RULES
- No brand name, under 50 characters
- [Adjective] [Material/Style] [Product Type], e.g. "Ribbed Alpaca Cardigan"

## OUTPUT FORMAT (JSON only)

{
  "title": "Cropped Duck Down Puffer",
  "description": "<p>Brand's oversized puffer in 90% white duck down. Stand collar, cropped length.</p><p>Fit: Oversized: size down for structured proportions.</p>"
}

Return ONLY valid JSON."""


# ─── Size Chart Extraction ────────────────────────────────────

EXTRACT_SIZE_CHART_PROMPT = """These images come from a Chinese fashion listing's description. Find and extract size chart information.

## TASK

1. Decide the product TYPE: tops, bottoms, outerwear, dresses, shoes or accessories
2. Find the image(s) with size data (measurement table, model info, fit guide)
3. Extract every measurement row
4. Extract model information and fit notes if present
5. Extract fabric composition and care instructions if present

## COMMON TERMS

- 衣长 / 全长 = length, 胸围 = chest/bust, 肩宽 = shoulder, 袖长 = sleeve
- 腰围 = waist, 臀围 = hip, 裤长 = pants length, 内长 = inseam
- 脚长 = foot length, 欧码 = EU size, 美码 = US size, 英码 = UK size
- 身高 = height, 体重 = weight, 试穿 = size worn, 均码 = One Size

## FIELDS BY TYPE

- tops / outerwear: length, chest, shoulder, sleeve
- bottoms: waist, hip, inseam, length
- dresses: bust, waist, hip, length
- shoes: eu_size, us_size, uk_size, foot_length_cm
- accessories: notes

## OUTPUT FORMAT (JSON only)

{
  "found_size_chart": true,
  "type": "tops",
  "measurements": [{"size": "S", "length": 59, "chest": 110, "shoulder": 58, "sleeve": 47}],
  "model_info": {"height_cm": 172, "weight_kg": 48, "size_worn": "M"},
  "fit_notes": "Relaxed fit. Size down for a closer fit.",
  "materials": "70% Alpaca, 30% Wool",
  "care_instructions": "Hand wash cold, lay flat to dry",
  "source_image_index": 0
}

All measurements in cm except shoe sizes. Omit fields you cannot find.
"type" is required even without a chart. With no size chart return
{"found_size_chart": false, "type": "tops"}.

Return ONLY valid JSON, no other text."""
