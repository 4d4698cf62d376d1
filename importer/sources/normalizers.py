"""
Shape normalizers for Taobao Global product payloads.

The product endpoint has returned several shapes over time:

- payload nested under ``data`` / ``result`` / ``item`` / ``product`` or bare
- images as a flat ``pic_urls`` array, a legacy single ``pic_url``, an
  ``item_imgs`` list of strings or objects, or ``item_imgs.item_img`` wrapper
- SKUs as a ``sku_list`` array, a ``skus.sku`` wrapper (object or list),
  or a flat ``skus`` array
- SKU properties as ``[{prop_name, value_name}]`` or a legacy
  ``properties_name`` string (``pid:vid:name:value;...``)

Every function here is pure (dict in, canonical data out) so the shapes can
be tested without any network code. Strategy lists are tried in order and
the first non-None result wins. Images are the exception: every known
image location is merged, since the marketplace fills several at once.
"""

import logging
from collections.abc import Callable
from typing import Any

from bs4 import BeautifulSoup

from importer.core.models import Listing, Sku, SkuProperties

logger = logging.getLogger(__name__)

PAYLOAD_KEYS = ("data", "result", "item", "product")

COLOR_PROP_MARKERS = ("颜色", "color")
SIZE_PROP_MARKERS = ("尺码", "尺寸", "规格", "size")

# Description markup is full of layout assets; only CDN product shots matter.
DESCRIPTION_IMAGE_HOSTS = ("alicdn.com",)
DESCRIPTION_IMAGE_BLOCKLIST = ("spacer", "icon", "1x1")

DEFAULT_SKU_STOCK = 10


# ─── Primitive Coercion ───────────────────────────────────────


def fen_to_yuan(value: Any) -> float:
    """Convert a minor-unit price (fen, possibly a string) to major units."""
    try:
        return float(value or 0) / 100
    except (TypeError, ValueError):
        logger.warning(f"Unparseable price value: {value!r}")
        return 0.0


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def normalize_image_url(url: str) -> str:
    """Upgrade protocol-relative CDN URLs to https."""
    url = (url or "").strip()
    if url.startswith("//"):
        return "https:" + url
    return url


# ─── Payload Unwrapping ───────────────────────────────────────


def unwrap_payload(response: dict) -> dict:
    """Return the product object from any of the known response envelopes."""
    for key in PAYLOAD_KEYS:
        value = response.get(key)
        if isinstance(value, dict) and value:
            return value
    return response


# ─── Images ───────────────────────────────────────────────────


def _images_from_pic_urls(raw: dict) -> list[str] | None:
    pic_urls = raw.get("pic_urls")
    if isinstance(pic_urls, list):
        return [u for u in pic_urls if isinstance(u, str)]
    return None


def _images_from_item_imgs(raw: dict) -> list[str] | None:
    item_imgs = raw.get("item_imgs")
    if not item_imgs:
        return None
    entries = item_imgs if isinstance(item_imgs, list) else item_imgs.get("item_img", [])
    if isinstance(entries, dict):
        entries = [entries]
    urls = []
    for entry in entries:
        url = entry if isinstance(entry, str) else (entry or {}).get("url")
        if url:
            urls.append(url)
    return urls


def _images_from_sku_list(raw: dict) -> list[str] | None:
    sku_list = raw.get("sku_list")
    if not isinstance(sku_list, list):
        return None
    return [s["pic_url"] for s in sku_list if isinstance(s, dict) and s.get("pic_url")]


IMAGE_SOURCES: list[Callable[[dict], list[str] | None]] = [
    _images_from_pic_urls,
    _images_from_item_imgs,
    _images_from_sku_list,
]


def extract_images(raw: dict) -> list[str]:
    """
    Merge every known image location, deduplicated, first-seen order.

    The legacy single ``pic_url`` is the main image and always goes first.
    """
    seen: dict[str, None] = {}

    main = raw.get("pic_url")
    if isinstance(main, str) and main:
        seen[normalize_image_url(main)] = None

    for source in IMAGE_SOURCES:
        for url in source(raw) or []:
            url = normalize_image_url(url)
            if url and url not in seen:
                seen[url] = None

    return list(seen)


def extract_description_images(html: str) -> list[str]:
    """
    Pull secondary images out of the description markup.

    These often carry size charts, model info and detail shots. The markup
    is parsed, never executed.
    """
    if not html:
        return []

    soup = BeautifulSoup(html, "lxml")
    images: list[str] = []

    for tag in soup.find_all("img"):
        url = normalize_image_url(tag.get("src") or tag.get("data-src") or "")
        if not url:
            continue
        if any(blocked in url for blocked in DESCRIPTION_IMAGE_BLOCKLIST):
            continue
        if not any(host in url for host in DESCRIPTION_IMAGE_HOSTS):
            continue
        if url not in images:
            images.append(url)

    return images


# ─── SKUs ─────────────────────────────────────────────────────


def _skus_from_sku_list(raw: dict) -> list[dict] | None:
    sku_list = raw.get("sku_list")
    if isinstance(sku_list, list) and sku_list:
        return sku_list
    return None


def _skus_from_wrapped(raw: dict) -> list[dict] | None:
    skus = raw.get("skus")
    if isinstance(skus, dict) and skus.get("sku"):
        inner = skus["sku"]
        return inner if isinstance(inner, list) else [inner]
    return None


def _skus_from_flat(raw: dict) -> list[dict] | None:
    skus = raw.get("skus")
    if isinstance(skus, list) and skus:
        return skus
    return None


SKU_STRATEGIES: list[Callable[[dict], list[dict] | None]] = [
    _skus_from_sku_list,
    _skus_from_wrapped,
    _skus_from_flat,
]


def parse_sku_properties(sku: dict) -> SkuProperties:
    """
    Detect colour and size among a SKU's property pairs.

    Supports the structured array format::

        [{"prop_name": "颜色分类", "value_name": "灰-现货"},
         {"prop_name": "尺码", "value_name": "S"}]

    and the legacy ``properties_name`` string
    ``"1627207:28341:颜色分类:灰-现货;20509:28314:尺码:S"``.
    """
    pairs: list[tuple[str, str]] = []

    properties = sku.get("properties")
    if isinstance(properties, list):
        for prop in properties:
            if isinstance(prop, dict):
                pairs.append((prop.get("prop_name") or "", prop.get("value_name") or ""))
    elif isinstance(sku.get("properties_name"), str):
        for chunk in sku["properties_name"].split(";"):
            parts = chunk.split(":", 3)
            if len(parts) == 4:
                pairs.append((parts[2], parts[3]))

    color = ""
    size = ""
    for prop_name, value in pairs:
        lowered = prop_name.lower()
        if any(marker in lowered for marker in COLOR_PROP_MARKERS):
            color = value
        if any(marker in lowered for marker in SIZE_PROP_MARKERS):
            size = value

    return SkuProperties(color=color, size=size)


def extract_skus(raw: dict) -> list[Sku]:
    """Normalize SKU rows; synthesise one default SKU when the item has none."""
    rows: list[dict] | None = None
    for strategy in SKU_STRATEGIES:
        rows = strategy(raw)
        if rows is not None:
            break

    if not rows:
        return [
            Sku(
                sku_id=str(raw.get("item_id") or "default"),
                price=fen_to_yuan(raw.get("price")),
                stock=_to_int(raw.get("quantity") or raw.get("num"), DEFAULT_SKU_STOCK),
                properties=SkuProperties(),
            )
        ]

    skus = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        image = row.get("pic_url")
        skus.append(
            Sku(
                sku_id=str(row.get("sku_id") or row.get("id") or ""),
                price=fen_to_yuan(row.get("price") or raw.get("price")),
                stock=max(0, _to_int(row.get("quantity") or row.get("stock"))),
                properties=parse_sku_properties(row),
                image=normalize_image_url(image) if image else None,
            )
        )
    return skus


# ─── Listing ──────────────────────────────────────────────────


def normalize_listing(raw: dict, currency: str = "CNY") -> Listing | None:
    """
    Build a canonical Listing from an unwrapped product payload.

    Returns None when the payload has neither a title nor an identifier,
    which the connector reports as "not found".
    """
    if not isinstance(raw, dict) or not (raw.get("title") or raw.get("item_id")):
        return None

    item_id = str(raw.get("item_id") or raw.get("num_iid") or "")
    if not item_id:
        return None

    description_html = raw.get("desc") or raw.get("description") or ""
    category = raw.get("category_id") or raw.get("cid")

    return Listing(
        item_id=item_id,
        title=raw.get("title") or "",
        description=description_html,
        description_images=extract_description_images(description_html),
        price=fen_to_yuan(raw.get("price") or raw.get("reserve_price")),
        currency=currency,
        images=extract_images(raw),
        skus=extract_skus(raw),
        shop_name=raw.get("shop_name") or raw.get("nick") or raw.get("seller_nick") or "",
        category=str(category) if category else None,
        category_path=raw.get("category_path"),
    )
