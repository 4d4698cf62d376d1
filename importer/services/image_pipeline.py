"""
Per-image classification and background cleanup.

Every candidate is classified concurrently; images labelled "delete" are
dropped, "remove background" images go through the background removal
service, and anything that fails keeps its original URL. Survivors are
then ordered by importer.converters.image_ordering.
"""

import asyncio
import logging

from importer.converters.image_ordering import build_image_candidates, order_images
from importer.core.exceptions import BackgroundRemovalError, ImageProcessingError
from importer.core.models import (
    ImageCandidate,
    ImageClassification,
    ProcessedImage,
    ProcessedImageRef,
    TranslatedVariant,
)
from importer.services.ai_service import AIService
from importer.services.background_service import BackgroundRemovalService

logger = logging.getLogger(__name__)


class ImagePipeline:
    """Classify → clean → order, for one product's images."""

    def __init__(self, ai: AIService, background: BackgroundRemovalService):
        self._ai = ai
        self._background = background

    @property
    def background(self) -> BackgroundRemovalService:
        return self._background

    async def run(
        self,
        shared_urls: list[str],
        variants: list[TranslatedVariant],
    ) -> list[ProcessedImage]:
        """Build candidates from listing images and variants, then process them."""
        return await self.process(build_image_candidates(shared_urls, variants))

    async def process(self, candidates: list[ImageCandidate]) -> list[ProcessedImage]:
        """
        Process all candidates concurrently and return them in final order.

        Never raises for a single image's failure.
        """
        logger.info(f"Processing {len(candidates)} images in parallel")

        results = await asyncio.gather(
            *(self._process_one(index, c) for index, c in enumerate(candidates, start=1))
        )
        survivors = [
            (candidate, ref)
            for candidate, ref in zip(candidates, results)
            if ref is not None
        ]

        ordered = order_images(survivors)
        logger.info(
            f"Images: {len(ordered)} kept, {len(candidates) - len(ordered)} deleted"
        )
        return ordered

    async def _process_one(self, index: int, candidate: ImageCandidate) -> ProcessedImageRef | None:
        """Return the processed reference, or None when the image is deleted."""
        original = ProcessedImageRef.from_url(candidate.url)

        try:
            classified = await self._ai.classify_image(candidate.url)
        except ImageProcessingError as e:
            logger.warning(f"Image {index}: classification failed, using original ({e})")
            return original

        if classified.classification == ImageClassification.DELETE:
            logger.info(f"Image {index}: deleted ({classified.reason})")
            return None

        if classified.classification == ImageClassification.REMOVE_BACKGROUND:
            try:
                processed = await self._background.remove_background(candidate.url)
            except BackgroundRemovalError as e:
                logger.warning(f"Image {index}: background removal failed, using original ({e})")
                return original
            logger.info(f"Image {index}: background removed")
            return processed

        logger.info(f"Image {index}: usable as-is")
        return original
