"""
Product assembler — merges translated text, generated copy, ordered images
and extracted metadata into the FinalProduct handed to the publisher.
"""

import logging

from importer.converters.text_cleaner import is_valid_variant_color
from importer.core.exceptions import NoValidVariantsError
from importer.core.models import (
    FinalImage,
    FinalProduct,
    FinalVariant,
    GeneratedCopy,
    ProcessedImage,
    ProductMetafields,
    SizeChartExtraction,
    TranslatedProduct,
    TranslatedVariant,
)

logger = logging.getLogger(__name__)


def dedupe_variants(variants: list[TranslatedVariant]) -> list[TranslatedVariant]:
    """
    Drop unusable colours and collapse duplicates on ``(size, color)``.

    Duplicates keep the first row's SKU and price; stock is summed so
    near-duplicate marketplace rows never lose inventory. Input is not
    mutated, so the same input always yields the same output.
    """
    merged: dict[tuple[str, str], TranslatedVariant] = {}

    for variant in variants:
        if not is_valid_variant_color(variant.color):
            continue

        key = (variant.size, variant.color)
        existing = merged.get(key)
        if existing is None:
            merged[key] = variant.model_copy()
        else:
            merged[key] = existing.model_copy(update={"stock": existing.stock + variant.stock})

    return list(merged.values())


class ProductAssembler:
    """
    Builds the final product record.

    Handles:
    - Colour filtering and (size, color) deduplication
    - Metadata colours from surviving variants only
    - Tags ``[gender, vendor, product_type]`` with blanks dropped
    """

    def assemble(
        self,
        translated: TranslatedProduct,
        copy: GeneratedCopy,
        images: list[ProcessedImage],
        extraction: SizeChartExtraction | None = None,
    ) -> FinalProduct:
        """
        Raises:
            NoValidVariantsError: If no variant survives filtering.
        """
        extraction = extraction or SizeChartExtraction()

        variants = dedupe_variants(translated.variants)
        dropped = len(translated.variants) - len(variants)
        if not variants:
            raise NoValidVariantsError(
                dropped=dropped,
                details={"item_id": translated.original.item_id},
            )
        if dropped:
            logger.info(f"Variants: {len(variants)} kept, {dropped} filtered or merged")

        colors = list(dict.fromkeys(v.color_standardized for v in variants))
        tags = [
            tag
            for tag in (translated.gender.value, translated.vendor, translated.product_type)
            if tag
        ]

        return FinalProduct(
            title=copy.title or translated.title,
            body_html=copy.body_html,
            vendor=translated.vendor,
            product_type=translated.product_type,
            tags=tags,
            variants=[self._to_final_variant(v) for v in variants],
            images=[
                FinalImage(
                    image=image.processed,
                    position=image.position,
                    variant_colors=image.variant_colors,
                )
                for image in images
            ],
            metafields=ProductMetafields(
                gender=translated.gender,
                colors=colors,
                size_chart=extraction.size_chart,
                materials=extraction.materials,
                care_instructions=extraction.care_instructions,
            ),
        )

    @staticmethod
    def _to_final_variant(variant: TranslatedVariant) -> FinalVariant:
        return FinalVariant(
            option1=variant.size,
            option2=variant.color,
            price=str(variant.price_target),
            sku=variant.sku_id,
            inventory_quantity=variant.stock,
        )
