"""Product pipeline: paginate leaf categories, fetch offers, emit products."""

import logging
import random
from dataclasses import dataclass, field
from typing import Optional

from src import metrics
from src.config import settings
from src.db.sink import Sink
from src.ingest.base import Category, Product
from src.ingest.errors import FetchExhausted
from src.ingest.extractors import ProductDetail, extract_product_detail, extract_product_links
from src.ingest.http_client import FetchOptions, ProxiedTransport
from src.ingest.run_state import RunStats, SurrogateIdCounter
from src.logging_config import get_logger
from src.normalize.translations import slugify, translate_name, translated_slug, translated_url

logger = logging.getLogger(__name__)


def listing_page_url(category_url: str, page: int) -> str:
    """URL of listing page ``page`` (1-based) of a category."""
    if page <= 1:
        return category_url
    separator = "&" if "?" in category_url else "?"
    return f"{category_url}{separator}p={page}"


@dataclass
class CategoryScrapeResult:
    """Outcome of one category's pagination."""

    category: Category
    products: list[Product] = field(default_factory=list)
    pages_scraped: int = 0
    failed_urls: list[str] = field(default_factory=list)


class ProductPipeline:
    """Walks leaf categories and turns offer pages into Product records."""

    def __init__(
        self,
        transport: ProxiedTransport,
        sink: Optional[Sink] = None,
        product_ids: Optional[SurrogateIdCounter] = None,
        stats: Optional[RunStats] = None,
        base_url: Optional[str] = None,
        max_products: Optional[int] = None,
        max_pages: Optional[int] = None,
        product_delay_s: Optional[float] = None,
        product_jitter_s: Optional[float] = None,
        min_delay_s: Optional[float] = None,
        backoff_factor: Optional[float] = None,
        page_delay_multiplier: Optional[float] = None,
        category_delay_multiplier: Optional[float] = None,
        product_timeout_s: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ):
        self.transport = transport
        self.sink = sink
        self.product_ids = product_ids or SurrogateIdCounter(settings.product_id_start)
        self.stats = stats or RunStats()
        self.base_url = (base_url or settings.catalog_base_url).rstrip("/")
        self.max_products = max_products if max_products is not None else settings.max_products_per_category
        self.max_pages = max_pages if max_pages is not None else settings.max_pages_per_category
        self.product_delay_s = (
            product_delay_s if product_delay_s is not None else settings.product_delay_base_ms / 1000
        )
        self.product_jitter_s = (
            product_jitter_s if product_jitter_s is not None else settings.product_delay_jitter_ms / 1000
        )
        self.min_delay_s = min_delay_s if min_delay_s is not None else settings.product_delay_min_ms / 1000
        self.backoff_factor = backoff_factor if backoff_factor is not None else settings.product_backoff_factor
        self.page_delay_multiplier = (
            page_delay_multiplier if page_delay_multiplier is not None else settings.page_delay_multiplier
        )
        self.category_delay_multiplier = (
            category_delay_multiplier if category_delay_multiplier is not None
            else settings.category_delay_multiplier
        )
        self.product_timeout_s = (
            product_timeout_s if product_timeout_s is not None else settings.scrape_product_timeout_ms / 1000
        )
        self._rng = rng or random.Random()

    def _delay(self, multiplier: float = 1.0) -> float:
        """Base delay plus jitter, floored at the minimum, then scaled."""
        delay = self.product_delay_s
        if self.product_jitter_s > 0:
            delay += self._rng.uniform(0, self.product_jitter_s)
        return max(self.min_delay_s, delay) * multiplier

    async def build_product(self, detail: ProductDetail, category_id: Optional[str]) -> Product:
        surrogate_id = await self.product_ids.next()
        slug_en = translated_slug(detail.name)
        return Product(
            natural_id=detail.natural_id,
            surrogate_id=surrogate_id,
            name=detail.name,
            translated_name=translate_name(detail.name),
            slug=slugify(detail.name),
            translated_slug=slug_en,
            source_url=detail.source_url,
            translated_url=translated_url(slug_en, surrogate_id, "product"),
            price=detail.price,
            currency=detail.currency,
            condition=detail.condition,
            images=detail.gallery_images,
            gallery_images=detail.gallery_images,
            description_text=detail.description_text,
            description_html=detail.description_html,
            ean=detail.ean,
            brand=detail.brand,
            manufacturer=detail.manufacturer,
            part_number=detail.part_number,
            model=detail.model,
            year=detail.year,
            seller_name=detail.seller_name,
            seller_rating=detail.seller_rating,
            specifications=detail.specifications,
            category_natural_id=category_id,
        )

    async def _fetch_product(
        self,
        url: str,
        options: FetchOptions,
        category_id: Optional[str],
    ) -> Optional[Product]:
        html = await self.transport.get(url, options)
        detail = extract_product_detail(html, url)
        if not detail.natural_id:
            logger.warning(f"No offer ID in {url}, skipping")
            return None
        product = await self.build_product(detail, category_id)
        self.stats.products_scraped += 1
        metrics.products_scraped_total.inc()
        return product

    async def scrape_category(self, category: Category) -> CategoryScrapeResult:
        """
        Paginate one category and emit its products page by page.

        Pagination stops at the first page with no offer links, at the
        page cap, at the product cap, or when a listing page fails.

        Args:
            category: Leaf category to scrape

        Returns:
            CategoryScrapeResult
        """
        log = get_logger(__name__, category_id=category.natural_id)
        result = CategoryScrapeResult(category=category)
        session_key = f"category-{category.natural_id}"
        credential = await self.transport.rotator.get_next()
        seen: set[str] = set()
        page = 1

        log.info(f"Scraping products of {category.name} ({category.natural_id})")
        try:
            while True:
                if self.max_pages and page > self.max_pages:
                    break

                page_url = listing_page_url(category.source_url, page)
                try:
                    html = await self.transport.get(
                        page_url,
                        FetchOptions(session_key=session_key, pinned_credential=credential.token),
                    )
                except FetchExhausted as e:
                    self.stats.pages_failed += 1
                    result.failed_urls.append(page_url)
                    log.warning(f"Listing page {page} failed, stopping category: {e}")
                    break

                urls = [u for u in extract_product_links(html, self.base_url) if u not in seen]
                if not urls:
                    log.info(f"No products on page {page}, pagination done")
                    break

                page_products = await self._scrape_page(
                    urls, page_url, session_key, credential.token, category, result, log
                )
                seen.update(urls)
                result.pages_scraped += 1

                # Emit per page so progress survives a later failure
                if self.sink is not None:
                    for product in page_products:
                        await self.sink.upsert_product(product)
                result.products.extend(page_products)
                log.info(f"Page {page}: {len(page_products)}/{len(urls)} products")

                if self.max_products and len(result.products) >= self.max_products:
                    break

                page += 1
                await self.transport.rate_limiter.pause(self._delay(self.page_delay_multiplier))
        finally:
            await self.transport.sessions.destroy(session_key)

        if self.max_products:
            result.products = result.products[:self.max_products]
        return result

    async def _scrape_page(
        self,
        urls: list[str],
        page_url: str,
        session_key: str,
        credential: str,
        category: Category,
        result: CategoryScrapeResult,
        log,
    ) -> list[Product]:
        products: list[Product] = []
        last_failed = False

        for index, url in enumerate(urls):
            if self.max_products and len(result.products) + len(products) >= self.max_products:
                break
            if index > 0:
                multiplier = self.backoff_factor if last_failed else 1.0
                await self.transport.rate_limiter.pause(self._delay(multiplier))

            options = FetchOptions(
                session_key=session_key,
                pinned_credential=credential,
                headers={"Referer": page_url},
                timeout_s=self.product_timeout_s,
            )
            try:
                product = await self._fetch_product(url, options, category.natural_id)
            except FetchExhausted as e:
                self.stats.products_failed += 1
                metrics.products_failed_total.inc()
                result.failed_urls.append(url)
                last_failed = True
                log.warning(f"Skipping product {url}: {e}")
                continue

            last_failed = False
            if product is not None:
                products.append(product)

        return products

    async def scrape_categories(self, categories: list[Category]) -> list[CategoryScrapeResult]:
        """Scrape several leaf categories, pausing between them."""
        results = []
        for index, category in enumerate(categories):
            if index > 0:
                await self.transport.rate_limiter.pause(self._delay(self.category_delay_multiplier))
            results.append(await self.scrape_category(category))
        return results

    async def scrape_offer(self, offer_id: str, category_id: Optional[str] = None) -> Optional[Product]:
        """Fetch a single offer by its site ID and emit it."""
        url = f"{self.base_url}/oferta/{offer_id}"
        session_key = f"offer-{offer_id}"
        try:
            product = await self._fetch_product(
                url,
                FetchOptions(session_key=session_key, timeout_s=self.product_timeout_s),
                category_id,
            )
        finally:
            await self.transport.sessions.destroy(session_key)
        if product is not None and self.sink is not None:
            await self.sink.upsert_product(product)
        return product
