"""Scrape runs: wire transport, crawler, pipeline, sink and export together."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from src.config import Settings, settings as default_settings
from src.db.session import init_models, make_engine, make_session_factory
from src.db.sink import MemorySink, Sink, SqlAlchemySink
from src.ingest.base import Category, Product
from src.ingest.cancellation import CancellationToken
from src.ingest.category_crawler import CategoryCrawler, CrawlResult
from src.ingest.export import (
    build_category_document,
    build_product_document,
    load_category_document,
    write_document,
)
from src.ingest.header_builder import HeaderBuilder
from src.ingest.http_client import ProxiedTransport
from src.ingest.product_pipeline import ProductPipeline
from src.ingest.proxy_manager import ProxyRotator
from src.ingest.rate_limiter import RateLimiter
from src.ingest.run_state import RunStats, SurrogateIdCounter
from src.ingest.session_manager import ClientFactory, SessionManager

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """What a run did: counts of discovered vs failed items and the artifact."""

    stats: RunStats
    categories: list[Category] = field(default_factory=list)
    products: list[Product] = field(default_factory=list)
    failed_urls: list[str] = field(default_factory=list)
    artifact: Optional[Path] = None


class ScrapeRunner:
    """
    One scrape run.

    Owns the run-scoped state: surrogate ID counters, the shared rate
    limiter, the cancellation token and the transport sessions. Nothing is
    shared between two runner instances.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        sink: Optional[Sink] = None,
        client_factory: Optional[ClientFactory] = None,
        cancel_token: Optional[CancellationToken] = None,
        export: bool = True,
    ):
        self.config = config or default_settings
        self.cancel_token = cancel_token or CancellationToken()
        self.stats = RunStats()
        self.export = export
        self.sink = sink
        self._engine = None

        self.rate_limiter = RateLimiter(
            min_interval=self.config.global_min_interval_ms / 1000,
            cancel_token=self.cancel_token,
        )
        jitter_ms = self.config.scrape_request_delay_jitter_ms
        self.transport = ProxiedTransport(
            rotator=ProxyRotator(
                tokens=self.config.proxy_token_list(),
                host=self.config.super_proxy_host,
                port=self.config.super_proxy_port,
                password=self.config.super_proxy_password,
            ),
            sessions=SessionManager(
                client_factory=client_factory,
                isolation=self.config.scrape_session_isolation,
            ),
            header_builder=HeaderBuilder(default_user_agent=self.config.scrape_user_agent or ""),
            rate_limiter=self.rate_limiter,
            cancel_token=self.cancel_token,
            max_retries=self.config.scrape_max_retries,
            base_delay_s=self.config.scrape_request_delay_ms / 1000,
            jitter_max_s=jitter_ms / 1000 if jitter_ms is not None else None,
            timeout_s=self.config.scrape_request_timeout_ms / 1000,
        )
        self.category_ids = SurrogateIdCounter(self.config.category_id_start)
        self.product_ids = SurrogateIdCounter(self.config.product_id_start)

    async def initialize(self) -> None:
        """Open the database sink unless one was injected, then seed the ID counters."""
        if self.sink is None:
            if self.config.database_url:
                self._engine = make_engine(self.config.database_url)
                await init_models(self._engine)
                self.sink = SqlAlchemySink(make_session_factory(self._engine))
            else:
                self.sink = MemorySink()

        # New records continue after whatever earlier runs stored
        top = await self.sink.max_category_surrogate_id()
        if top is not None and top >= self.category_ids.peek:
            self.category_ids = SurrogateIdCounter(top + 1)
        top = await self.sink.max_product_surrogate_id()
        if top is not None and top >= self.product_ids.peek:
            self.product_ids = SurrogateIdCounter(top + 1)

        logger.info(
            f"Run initialized with {type(self.sink).__name__}, next IDs "
            f"category={self.category_ids.peek} product={self.product_ids.peek}"
        )

    async def close(self) -> None:
        """Clean up resources."""
        await self.transport.close()
        if self._engine is not None:
            await self._engine.dispose()

    async def __aenter__(self) -> "ScrapeRunner":
        await self.initialize()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _crawler(self, max_depth: Optional[int] = None) -> CategoryCrawler:
        return CategoryCrawler(
            self.transport,
            sink=self.sink,
            category_ids=self.category_ids,
            stats=self.stats,
            base_url=self.config.catalog_base_url,
            max_depth=max_depth if max_depth is not None else self.config.crawl_max_depth,
            max_nodes=self.config.crawl_max_nodes,
            sibling_delay_s=self.config.crawl_sibling_delay_ms / 1000,
            deep_delay_s=self.config.crawl_deep_delay_ms / 1000,
            concurrency=self.config.crawl_concurrency,
        )

    def _pipeline(self, max_products: Optional[int] = None) -> ProductPipeline:
        return ProductPipeline(
            self.transport,
            sink=self.sink,
            product_ids=self.product_ids,
            stats=self.stats,
            base_url=self.config.catalog_base_url,
            max_products=max_products if max_products is not None else self.config.max_products_per_category,
            max_pages=self.config.max_pages_per_category,
            product_delay_s=self.config.product_delay_base_ms / 1000,
            product_jitter_s=self.config.product_delay_jitter_ms / 1000,
            min_delay_s=self.config.product_delay_min_ms / 1000,
            backoff_factor=self.config.product_backoff_factor,
            page_delay_multiplier=self.config.page_delay_multiplier,
            category_delay_multiplier=self.config.category_delay_multiplier,
            product_timeout_s=self.config.scrape_product_timeout_ms / 1000,
        )

    async def run_categories(
        self,
        root_url: Optional[str] = None,
        max_depth: Optional[int] = None,
    ) -> RunReport:
        """Crawl the category tree and export it."""
        result: CrawlResult = await self._crawler(max_depth).crawl(
            root_url or self.config.catalog_root_url
        )
        report = RunReport(
            stats=self.stats,
            categories=result.categories,
            failed_urls=result.failed_urls,
        )
        if self.export:
            report.artifact = write_document(
                build_category_document(result.categories), "categories", self.config.results_dir
            )
        logger.info(f"Category run complete: {self.stats.summary()}")
        return report

    async def run_products(
        self,
        categories: list[Category],
        max_products: Optional[int] = None,
    ) -> RunReport:
        """Scrape products of the given leaf categories that have offers."""
        leaves = [c for c in categories if c.has_offers]
        if len(leaves) < len(categories):
            logger.info(f"Skipping {len(categories) - len(leaves)} categories without offers")

        results = await self._pipeline(max_products).scrape_categories(leaves)
        report = RunReport(stats=self.stats)
        for result in results:
            report.products.extend(result.products)
            report.failed_urls.extend(result.failed_urls)

        if self.export:
            category = leaves[0] if len(leaves) == 1 else None
            report.artifact = write_document(
                build_product_document(report.products, category), "products", self.config.results_dir
            )
        logger.info(f"Product run complete: {self.stats.summary()}")
        return report

    async def run_offer(self, offer_id: str) -> Optional[Product]:
        return await self._pipeline().scrape_offer(offer_id)

    async def import_categories(self, path: str | Path) -> int:
        """Upsert every category of an export document into the sink."""
        categories = load_category_document(path)
        for category in categories:
            await self.sink.upsert_category(category)
        logger.info(f"Imported {len(categories)} categories from {path}")
        return len(categories)
