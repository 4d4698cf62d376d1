"""
Image candidate selection and deterministic ordering.

The storefront uses the first image linked to a variant as that variant's
swatch thumbnail, so the order of uploaded images is a hard contract:

    [shared images in original order]
    + [colour group 1] + [colour group 2] + ...

Colour groups are visited in the order each colour first appears in the
candidate list, and each group keeps its internal order. An image tagged
with several colours is grouped under its first colour.
"""

import logging

from importer.converters.text_cleaner import is_valid_variant_color
from importer.core.models import (
    ImageCandidate,
    ProcessedImage,
    ProcessedImageRef,
    TranslatedVariant,
)

logger = logging.getLogger(__name__)


def build_image_candidates(
    shared_urls: list[str],
    variants: list[TranslatedVariant],
) -> list[ImageCandidate]:
    """
    Union shared product images with per-variant images, deduplicated by URL.

    A URL that is also some variant's image is treated as a variant image
    and leaves the shared set. When several colours use the same image the
    image is tagged with all of them, first-seen colour first. Variant
    images whose colour will not survive assembly are kept as shared.
    """
    variant_colors: dict[str, list[str]] = {}
    for variant in variants:
        if not variant.image or not is_valid_variant_color(variant.color):
            continue
        colors = variant_colors.setdefault(variant.image, [])
        if variant.color not in colors:
            colors.append(variant.color)

    candidates: list[ImageCandidate] = []
    seen: set[str] = set()

    for url in shared_urls:
        if url in seen or url in variant_colors:
            continue
        seen.add(url)
        candidates.append(ImageCandidate(url=url))

    for variant in variants:
        url = variant.image
        if not url or url in seen:
            continue
        seen.add(url)
        candidates.append(ImageCandidate(url=url, colors=variant_colors.get(url)))

    return candidates


def order_images(
    survivors: list[tuple[ImageCandidate, ProcessedImageRef]],
) -> list[ProcessedImage]:
    """
    Arrange surviving images and assign 1-based positions.

    Args:
        survivors: Candidates that were not deleted, in original candidate
            order, each with its (possibly unchanged) processed reference.
    """
    shared: list[tuple[ImageCandidate, ProcessedImageRef]] = []
    groups: dict[str, list[tuple[ImageCandidate, ProcessedImageRef]]] = {}

    for candidate, ref in survivors:
        if candidate.is_shared:
            shared.append((candidate, ref))
        else:
            groups.setdefault(candidate.colors[0], []).append((candidate, ref))

    ordered = shared + [item for group in groups.values() for item in group]

    return [
        ProcessedImage(
            original_url=candidate.url,
            processed=ref,
            position=position,
            variant_colors=list(candidate.colors) if candidate.colors else None,
        )
        for position, (candidate, ref) in enumerate(ordered, start=1)
    ]
