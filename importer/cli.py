"""
Command-line entry points.

    importer-item --item 846881782232     Import one marketplace item
    importer-item --test                  Probe all four external services
    importer-batch --list-brands          Brand → row counts from the catalog
    importer-batch --brand "Y OFFICIAL" --limit 20

Exit code 0 on success, 1 when any item failed or the command was misused.
"""

import argparse
import asyncio

from importer.config import Settings, get_settings
from importer.core.exceptions import ImporterError
from importer.core.logging_config import setup_logging
from importer.core.models import BatchReport, PipelineResult
from importer.core.sentry_config import init_sentry
from importer.services.catalog_sheet import CatalogSheet
from importer.services.import_service import ImportService, write_batch_report

SEPARATOR = "=" * 60

SERVICE_LABELS = {
    "source": "Taobao",
    "ai": "Anthropic",
    "background": "PhotoRoom",
    "publisher": "Shopify",
}


def _bootstrap(settings: Settings) -> None:
    setup_logging(settings.app_env, settings.log_level, settings.log_format)
    init_sentry(
        dsn=settings.sentry_dsn,
        app_env=settings.app_env,
        app_version=settings.app_version,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )


def _credentials_ready(settings: Settings) -> bool:
    missing = settings.missing_credentials()
    if missing:
        print("ERROR: missing credentials, set these in .env:")
        for field in missing:
            print(f"  {field.upper()}")
    return not missing


# ─── importer-item ────────────────────────────────────────────


def build_item_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="importer-item",
        description="Import a single Taobao item into the Shopify store.",
    )
    parser.add_argument("--item", metavar="ID", help="Taobao item id to import")
    parser.add_argument(
        "--test",
        action="store_true",
        help="Test connectivity to Taobao, Anthropic, PhotoRoom and Shopify",
    )
    return parser


async def run_connection_test(service: ImportService) -> int:
    print("\nTesting connections...\n")
    results = await service.test_connections()
    for name, ok in results.items():
        print(f"{'✓' if ok else '✗'} {SERVICE_LABELS.get(name, name)}")
    return 0 if all(results.values()) else 1


def print_item_result(result: PipelineResult) -> None:
    if result.success:
        print(f"\n✓ SUCCESS in {result.processing_time_ms / 1000:.1f}s")
        print(f"  Shopify ID: {result.product_id}")
        print(f"  URL: {result.product_url}")
    else:
        print(f"\n✗ FAILED: {result.error}")


def item_main(argv: list[str] | None = None, service: ImportService | None = None) -> int:
    parser = build_item_parser()
    args = parser.parse_args(argv)

    if not args.test and not args.item:
        parser.print_help()
        return 1

    settings = get_settings()
    _bootstrap(settings)

    if service is None:
        if not args.test and not _credentials_ready(settings):
            return 1
        service = ImportService.from_settings(settings)

    if args.test:
        return asyncio.run(run_connection_test(service))

    print(f"\n{SEPARATOR}\nProcessing item: {args.item}\n{SEPARATOR}")
    result = asyncio.run(service.import_item(args.item))
    print_item_result(result)
    return 0 if result.success else 1


# ─── importer-batch ───────────────────────────────────────────


def build_batch_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="importer-batch",
        description="Import a brand's products from the catalog spreadsheet.",
    )
    parser.add_argument("--brand", help="Shop name exactly as in the spreadsheet")
    parser.add_argument("--limit", type=int, default=None, help="Maximum items to import")
    parser.add_argument("--sheet", default=None, help="Path to the catalog .xlsx")
    parser.add_argument(
        "--list-brands",
        action="store_true",
        help="Show available brands and their product counts",
    )
    return parser


def print_brand_counts(sheet: CatalogSheet) -> None:
    print("\nAvailable brands:\n")
    for shop, count in sheet.brand_counts():
        print(f"  {count:>4} {shop}")


def print_batch_summary(report: BatchReport) -> None:
    total = len(report.results)
    print(f"\n{SEPARATOR}\nBATCH IMPORT COMPLETE\n{SEPARATOR}")
    print(f"Total time: {report.total_time_ms / 1000 / 60:.1f} minutes")
    print(f"Successful: {len(report.successful)}/{total}")
    print(f"Failed: {len(report.failed)}/{total}")

    if report.successful:
        print("\nSuccessful products:")
        for r in report.successful:
            print(f"  ✓ {r.item_id} → Shopify ID: {r.product_id}")

    if report.failed:
        print("\nFailed products:")
        for r in report.failed:
            print(f"  ✗ {r.item_id}: {r.error}")


def batch_main(argv: list[str] | None = None, service: ImportService | None = None) -> int:
    parser = build_batch_parser()
    args = parser.parse_args(argv)

    if not args.list_brands and not args.brand:
        parser.print_help()
        return 1
    if args.limit is not None and args.limit < 1:
        parser.error("--limit must be a positive integer")

    settings = get_settings()
    _bootstrap(settings)

    try:
        sheet = CatalogSheet.load(args.sheet or settings.catalog_sheet_path)
    except ImporterError as e:
        print(f"ERROR: {e}")
        return 1

    if args.list_brands:
        print_brand_counts(sheet)
        return 0

    rows = sheet.items_for_brand(args.brand, args.limit)
    if not rows:
        print(f"No products found for brand: {args.brand}")
        print("\nTry --list-brands to see available brands")
        return 1

    print(f"\n{SEPARATOR}\nBATCH IMPORT: {args.brand}\n{SEPARATOR}")
    print(f"Found: {len(sheet.items_for_brand(args.brand))} products")
    print(f"Importing: {len(rows)} products\n{SEPARATOR}\n")

    if service is None:
        if not _credentials_ready(settings):
            return 1
        service = ImportService.from_settings(settings)

    async def _on_item_complete(index: int, result: PipelineResult) -> None:
        mark = "✓" if result.success else "✗"
        print(f"[{index + 1}/{len(rows)}] {mark} {result.item_id}")

    report = asyncio.run(
        service.import_batch(
            [row.item_id for row in rows],
            brand=args.brand,
            on_item_complete=_on_item_complete,
        )
    )

    print_batch_summary(report)
    path = write_batch_report(report, settings.results_dir)
    print(f"\nResults saved to: {path}")

    return 0 if not report.failed else 1

