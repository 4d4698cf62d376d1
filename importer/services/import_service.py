"""
Import orchestration service.

Orchestrates the full pipeline for one marketplace item:
fetch → rate → translate → (size chart ‖ brand context ‖ images) → copy
→ assemble → publish.

Batch runs call the single-item pipeline directly, strictly one item at a
time with a pause between items. An item's failure becomes a failed
PipelineResult; it never stops the batch.

Supports optional progress callbacks:
    - on_step: called when the pipeline step changes for an item
    - on_item_complete: called when a single item finishes (success or failure)
"""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import StrEnum
from pathlib import Path

from importer.config import Settings
from importer.converters.product_assembler import ProductAssembler
from importer.core.exceptions import (
    AssemblyError,
    ImporterError,
    PublishError,
    SourceError,
    TranslationError,
)
from importer.core.interfaces import IListingSource, IPublisher
from importer.core.logging_config import bind_item_context
from importer.core.models import BatchReport, PipelineResult, PublishedProduct
from importer.services.ai_service import AIService
from importer.services.background_service import BackgroundRemovalService
from importer.services.brand_service import BrandContextService
from importer.services.currency_service import CurrencyConverter
from importer.services.image_pipeline import ImagePipeline

logger = logging.getLogger(__name__)

# Callback type aliases for progress reporting
StepCallback = Callable[[str, str], Awaitable[None]]  # (item_id, step) -> None
ItemCompleteCallback = Callable[[int, PipelineResult], Awaitable[None]]  # (index, result) -> None


class ImportStep(StrEnum):
    """Steps in the import pipeline for progress tracking."""
    FETCHING = "fetching"
    PRICING = "pricing"
    TRANSLATING = "translating"
    ENRICHING = "enriching"
    WRITING_COPY = "writing_copy"
    ASSEMBLING = "assembling"
    PUBLISHING = "publishing"
    COMPLETE = "complete"
    FAILED = "failed"


class ImportService:
    """
    Orchestrates the product import pipeline.

    Pipeline steps:
    1. IListingSource → fetch and normalize the listing
    2. CurrencyConverter → exchange rate (cached, soft dependency)
    3. AIService → translate text, colours and variant prices
    4. Concurrently: size chart extraction, brand context, image pipeline
    5. AIService → storefront title and HTML body
    6. ProductAssembler → FinalProduct
    7. IPublisher → create product, images, metafields

    Usage:
        service = ImportService.from_settings(get_settings())
        result = await service.import_item("846881782232")
    """

    def __init__(
        self,
        source: IListingSource,
        ai: AIService,
        image_pipeline: ImagePipeline,
        publisher: IPublisher,
        currency: CurrencyConverter | None = None,
        brands: BrandContextService | None = None,
        assembler: ProductAssembler | None = None,
        markup: float = 2.0,
        size_chart_max_images: int = 10,
        batch_pause_seconds: float = 2.0,
    ):
        self._source = source
        self._ai = ai
        self._images = image_pipeline
        self._publisher = publisher
        self._currency = currency or CurrencyConverter()
        self._brands = brands or BrandContextService()
        self._assembler = assembler or ProductAssembler()
        self._markup = markup
        self._size_chart_max_images = size_chart_max_images
        self._batch_pause_seconds = batch_pause_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImportService":
        from importer.listers.shopify_lister import ShopifyLister
        from importer.sources.taobao_source import TaobaoSource

        ai = AIService.from_settings(settings)
        return cls(
            source=TaobaoSource.from_settings(settings),
            ai=ai,
            image_pipeline=ImagePipeline(ai, BackgroundRemovalService.from_settings(settings)),
            publisher=ShopifyLister.from_settings(settings),
            currency=CurrencyConverter.from_settings(settings),
            brands=BrandContextService.from_settings(settings),
            markup=settings.price_markup,
            size_chart_max_images=settings.size_chart_max_images,
            batch_pause_seconds=settings.batch_pause_seconds,
        )

    # ─── Single Item ──────────────────────────────────────────

    async def import_item(
        self,
        item_id: str,
        on_step: StepCallback | None = None,
    ) -> PipelineResult:
        """
        Run one item through the full pipeline.

        Never raises for item-level failures: every error is converted into
        a failed PipelineResult.
        """
        bind_item_context(item_id)
        start_time = time.monotonic()
        logger.info(f"Starting import for item {item_id}")

        async def _notify_step(step: ImportStep) -> None:
            if on_step:
                await on_step(item_id, step.value)

        error: str | None = None
        published: PublishedProduct | None = None

        try:
            published = await self._run(item_id, _notify_step)
            await _notify_step(ImportStep.COMPLETE)

        except SourceError as e:
            error = e.message
            logger.error(f"Source error for {item_id}: {e}")

        except TranslationError as e:
            error = f"Translation failed: {e.message}"
            logger.error(f"Translation error for {item_id}: {e}")

        except AssemblyError as e:
            error = e.message
            logger.error(f"Assembly error for {item_id}: {e}")

        except PublishError as e:
            error = f"Publishing failed: {e.message}"
            logger.error(f"Publish error for {item_id}: {e}")

        except ImporterError as e:
            error = str(e)
            logger.error(f"Import error for {item_id}: {e}")

        except Exception as e:
            error = f"Unexpected error: {type(e).__name__}: {e}"
            logger.error(f"Unexpected error importing {item_id}: {e}", exc_info=True)

        elapsed_ms = int((time.monotonic() - start_time) * 1000)

        if published is None:
            await _notify_step(ImportStep.FAILED)
            return PipelineResult(
                success=False,
                item_id=item_id,
                error=error,
                processing_time_ms=elapsed_ms,
            )

        logger.info(
            f"Imported {item_id} → {published.product_id} in {elapsed_ms / 1000:.1f}s "
            f"({published.uploaded_count} images, {published.failed_count} failed)"
        )
        return PipelineResult(
            success=True,
            item_id=item_id,
            product_id=published.product_id,
            product_url=published.url,
            processing_time_ms=elapsed_ms,
        )

    async def _run(
        self,
        item_id: str,
        notify: Callable[[ImportStep], Awaitable[None]],
    ) -> PublishedProduct:
        # Step 1: Fetch
        await notify(ImportStep.FETCHING)
        listing = await self._source.fetch_listing(item_id)

        # Step 2: Exchange rate (prices are set during translation)
        await notify(ImportStep.PRICING)
        rate = await self._currency.get_rate()

        # Step 3: Translate
        await notify(ImportStep.TRANSLATING)
        translated = await self._ai.translate_listing(listing, rate, self._markup)

        # Step 4: Independent enrichment, awaited jointly
        await notify(ImportStep.ENRICHING)
        extraction, brand_context, images = await asyncio.gather(
            self._ai.extract_size_chart(listing.description_images, self._size_chart_max_images),
            self._brands.load_summary(translated.vendor),
            self._images.run(listing.images, translated.variants),
        )

        # Step 5: Copy, using the first surviving image as the visual reference
        await notify(ImportStep.WRITING_COPY)
        copy = await self._ai.generate_copy(
            translated,
            main_image_url=images[0].original_url if images else None,
            brand_context=brand_context,
            materials=extraction.materials,
            care_instructions=extraction.care_instructions,
        )

        # Step 6: Assemble
        await notify(ImportStep.ASSEMBLING)
        product = self._assembler.assemble(translated, copy, images, extraction)

        # Step 7: Publish
        await notify(ImportStep.PUBLISHING)
        return await self._publisher.publish(product)

    # ─── Batch ────────────────────────────────────────────────

    async def import_batch(
        self,
        item_ids: list[str],
        brand: str,
        on_item_complete: ItemCompleteCallback | None = None,
    ) -> BatchReport:
        """
        Import items sequentially with a pause between them.

        Args:
            item_ids: Marketplace item identifiers, processed in order.
            brand: Label recorded in the report.
            on_item_complete: Optional async callback when each item finishes.
                Signature: async (index, result) -> None

        Returns:
            BatchReport with one PipelineResult per item.
        """
        started_at = datetime.now()
        start_time = time.monotonic()
        results: list[PipelineResult] = []
        succeeded = 0

        logger.info(f"Starting batch import of {len(item_ids)} items for '{brand}'")

        for i, item_id in enumerate(item_ids):
            logger.info(f"Batch import [{i + 1}/{len(item_ids)}]: {item_id}")

            result = await self.import_item(item_id)
            results.append(result)
            if result.success:
                succeeded += 1

            if on_item_complete:
                await on_item_complete(i, result)

            logger.info(
                f"Batch progress: {succeeded} succeeded, {len(results) - succeeded} failed, "
                f"{len(item_ids) - len(results)} remaining"
            )

            if i < len(item_ids) - 1 and self._batch_pause_seconds > 0:
                await asyncio.sleep(self._batch_pause_seconds)

        report = BatchReport(
            brand=brand,
            timestamp=started_at,
            total_time_ms=int((time.monotonic() - start_time) * 1000),
            results=results,
        )
        logger.info(f"Batch import finished: {succeeded}/{len(item_ids)} successful")
        return report

    async def test_connections(self) -> dict[str, bool]:
        """Probe every external service concurrently."""
        from importer.core.health import check_services

        report = await check_services(
            source=self._source,
            ai=self._ai,
            background=self._images.background,
            publisher=self._publisher,
        )
        return {name: status["status"] == "up" for name, status in report["services"].items()}


def write_batch_report(report: BatchReport, results_dir: Path | str = ".") -> Path:
    """Write ``import-results-<epoch-ms>.json`` and return its path."""
    directory = Path(results_dir)
    directory.mkdir(parents=True, exist_ok=True)

    epoch_ms = int(report.timestamp.timestamp() * 1000)
    path = directory / f"import-results-{epoch_ms}.json"
    path.write_text(json.dumps(report.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")

    logger.info(f"Batch results written to {path}")
    return path
