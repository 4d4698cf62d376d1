"""
Deterministic cleanup for marketplace size and colour labels.

Taobao sellers pack stock status, presale dates, shipping promises and
sizing advice into SKU property values, e.g. ``灰-现货`` ("grey, in stock")
or ``黑色（预售7天发货）``. The AI translation maps most of these, but the
values that reach the storefront always pass through these rules so the
variant options stay clean regardless of what the model returned.

Colour pipeline:
    1. Reject: size-guide / customer-service sentinels become ``""``
    2. Strip: stock, presale and ship-time annotations
    3. Strip: parenthetical asides (ASCII and full-width)
    4. Trim: trailing dash and whitespace
"""

import re

from importer.core.models import CATCH_ALL_COLOR, STANDARD_COLORS

ONE_SIZE = "One Size"

# ─── Size Rules ───────────────────────────────────────────────

SIZE_NOISE_PATTERNS: list[re.Pattern] = [
    re.compile(r"模特码"),  # "model's size"
    re.compile(r"预售"),  # presale
    re.compile(r"现货"),  # in stock
    re.compile(r"\([^)]*\)"),
    re.compile(r"（[^）]*）"),
]

# ─── Colour Rules ─────────────────────────────────────────────

# A "colour" containing any of these is really a sizing note or a
# contact-support placeholder, not a sellable option.
SIZE_GUIDE_MARKERS = (
    "尺码推荐",
    "详细尺码",
    "尺码",
    "联系客服",
    "size guide",
    "size recommend",
    "size chart",
)

COLOR_NOISE_PATTERNS: list[re.Pattern] = [
    re.compile(r"现货"),
    re.compile(r"预售"),
    re.compile(r"预\d+.*?发货"),  # "ships in N days"
    re.compile(r"\d+小时内发货"),  # "ships within N hours"
    re.compile(r"\([^)]*\)"),
    re.compile(r"（[^）]*）"),
    re.compile(r"-\s*$"),
]

# Checked after substring matching against STANDARD_COLORS fails.
COLOR_SYNONYMS: list[tuple[tuple[str, ...], str]] = [
    (("grey", "gray", "灰"), "Gray"),
    (("cream", "ivory", "米"), "Beige"),
    (("navy",), "Navy"),
    (("khaki", "tan", "卡其"), "Brown"),
]

# Assembler-side filter: lowercase substrings that disqualify a colour.
INVALID_COLOR_MARKERS = ("size", "guide", "chart", "尺码")


# ─── Public API ───────────────────────────────────────────────


def clean_size(size: str | None) -> str:
    """Strip annotations from a size label; empty results become ``One Size``."""
    result = size or ""
    for pattern in SIZE_NOISE_PATTERNS:
        result = pattern.sub("", result)
    result = result.strip()
    return result or ONE_SIZE


def is_size_guide_color(color: str | None) -> bool:
    """True for values that are sizing advice or support placeholders."""
    if not color:
        return False
    lowered = color.lower()
    return any(marker in lowered for marker in SIZE_GUIDE_MARKERS)


def clean_color(color: str | None) -> str:
    """
    Clean a colour label for use as a variant option.

    Returns ``""`` for size-guide sentinels and for the literal ``default``;
    callers treat an empty colour as "drop this variant".
    """
    if not color:
        return ""
    if is_size_guide_color(color) or color.strip().lower() == "default":
        return ""

    result = color
    for pattern in COLOR_NOISE_PATTERNS:
        result = pattern.sub("", result)
    result = result.strip()

    lowered = result.lower()
    if "size" in lowered and "guide" in lowered:
        return ""
    return result


def guess_standard_color(color: str | None) -> str:
    """
    Map a free-form colour onto the standard palette.

    Substring match against the palette first (``Light Blue`` → ``Blue``),
    then the synonym table, then the catch-all.
    """
    if not color:
        return CATCH_ALL_COLOR

    lowered = color.lower()
    for standard in STANDARD_COLORS:
        if standard.lower() in lowered:
            return standard

    for needles, standard in COLOR_SYNONYMS:
        if any(needle in lowered for needle in needles):
            return standard

    return CATCH_ALL_COLOR


def is_valid_variant_color(color: str | None) -> bool:
    """Final gate before a variant reaches the storefront."""
    if not color or color == "Default":
        return False
    lowered = color.lower()
    return not any(marker in lowered for marker in INVALID_COLOR_MARKERS)
