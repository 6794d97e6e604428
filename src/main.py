"""Main application entry point."""

import argparse
import asyncio
import logging
import sys

from src.config import settings
from src.ingest.category_crawler import CrawlResult
from src.ingest.errors import ScrapeError
from src.ingest.export import load_category_document
from src.ingest.run_state import RunStats
from src.logging_config import setup_logging
from src.metrics import start_metrics_server
from src.worker.tasks import ScrapeRunner

logger = logging.getLogger(__name__)


async def _run(args: argparse.Namespace) -> int:
    async with ScrapeRunner() as runner:
        runner.cancel_token.install_signal_handlers()

        if args.command == "categories":
            report = await runner.run_categories(max_depth=args.max_depth)
            print(f"{len(report.categories)} categories, {len(report.failed_urls)} failed -> {report.artifact}")

        elif args.command == "products":
            categories = load_category_document(args.categories_file)
            leaves = CrawlResult(categories=categories, stats=RunStats()).leaves
            if args.category:
                leaves = [c for c in categories if c.natural_id in set(args.category)]
            report = await runner.run_products(leaves, max_products=args.max_products)
            print(f"{len(report.products)} products, {len(report.failed_urls)} failed -> {report.artifact}")

        elif args.command == "offer":
            product = await runner.run_offer(args.offer_id)
            print(product.model_dump_json(by_alias=True, indent=2) if product else "No product extracted")

        elif args.command == "import":
            count = await runner.import_categories(args.categories_file)
            print(f"Imported {count} categories")

    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Catalog category and product scraper")
    parser.add_argument(
        "--metrics-port", type=int, default=settings.metrics_port,
        help="Expose Prometheus metrics on this port (0 disables)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    cats = sub.add_parser("categories", help="Crawl the category tree")
    cats.add_argument("--max-depth", type=int, default=settings.crawl_max_depth)

    prods = sub.add_parser("products", help="Scrape products of exported leaf categories")
    prods.add_argument("categories_file")
    prods.add_argument("--category", action="append", help="Only this category ID (repeatable)")
    prods.add_argument("--max-products", type=int, default=None)

    offer = sub.add_parser("offer", help="Scrape a single offer by ID")
    offer.add_argument("offer_id")

    imp = sub.add_parser("import", help="Upsert an exported category document into the database")
    imp.add_argument("categories_file")

    args = parser.parse_args(argv)
    setup_logging()
    start_metrics_server(args.metrics_port)

    try:
        return asyncio.run(_run(args))
    except ScrapeError as e:
        logger.error(f"Run aborted: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
