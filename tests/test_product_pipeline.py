"""Tests for listing pagination and offer scraping."""

from decimal import Decimal

import pytest

from conftest import BASE_URL, listing_page, offer_page
from src.db.sink import MemorySink
from src.ingest.base import Category, Condition
from src.ingest.product_pipeline import ProductPipeline, listing_page_url
from src.ingest.run_state import SurrogateIdCounter

CATEGORY_PATH = "/kategoria/klocki-hamulcowe-4094"
CATEGORY_URL = f"{BASE_URL}{CATEGORY_PATH}"

LEAF = Category(
    natural_id="4094",
    surrogate_id=7,
    name="Klocki hamulcowe",
    translated_name="Brake Pads",
    slug="klocki-hamulcowe",
    translated_slug="brake-pads",
    source_url=CATEGORY_URL,
    depth=3,
    parent_natural_id="250847",
    has_offers=True,
)


def add_listing(site, path, offer_hrefs):
    """One listing page of offers followed by an empty second page."""
    site.add(path, listing_page(offer_hrefs))
    site.add(f"{path}?p=2", listing_page([]))


def add_offers(site, *offer_ids):
    for offer_id in offer_ids:
        site.add(f"/oferta/klocki-{offer_id}", offer_page(f"Klocki hamulcowe {offer_id}"))


def make_pipeline(transport, **kwargs):
    kwargs.setdefault("product_ids", SurrogateIdCounter(10000))
    kwargs.setdefault("max_products", 0)
    kwargs.setdefault("max_pages", 0)
    return ProductPipeline(
        transport,
        base_url=BASE_URL,
        product_delay_s=0,
        product_jitter_s=0,
        min_delay_s=0,
        **kwargs,
    )


def test_listing_page_url():
    assert listing_page_url(CATEGORY_URL, 1) == CATEGORY_URL
    assert listing_page_url(CATEGORY_URL, 3) == f"{CATEGORY_URL}?p=3"
    assert listing_page_url(f"{CATEGORY_URL}?order=p", 2) == f"{CATEGORY_URL}?order=p&p=2"


@pytest.mark.asyncio
async def test_paginates_until_empty_page(site, transport_factory):
    site.add(CATEGORY_PATH, listing_page(["/oferta/klocki-1", "/oferta/klocki-2"]))
    site.add(f"{CATEGORY_PATH}?p=2", listing_page(["/oferta/klocki-3"]))
    site.add(f"{CATEGORY_PATH}?p=3", listing_page([]))
    add_offers(site, 1, 2, 3)
    sink = MemorySink()
    pipeline = make_pipeline(transport_factory(), sink=sink)

    result = await pipeline.scrape_category(LEAF)

    assert result.pages_scraped == 2
    assert [p.natural_id for p in result.products] == ["1", "2", "3"]
    assert [p.surrogate_id for p in result.products] == [10000, 10001, 10002]
    assert list(sink.products) == ["1", "2", "3"]
    assert site.requests_for(f"{CATEGORY_PATH}?p=4") == []
    assert len(pipeline.transport.sessions) == 0


@pytest.mark.asyncio
async def test_product_fields(site, transport_factory):
    add_listing(site, CATEGORY_PATH, ["/oferta/klocki-1"])
    add_offers(site, 1)
    pipeline = make_pipeline(transport_factory())

    result = await pipeline.scrape_category(LEAF)

    (product,) = result.products
    assert product.price == Decimal("129.99")
    assert product.condition == Condition.NEW
    assert product.category_natural_id == "4094"
    assert product.source_url == f"{BASE_URL}/oferta/klocki-1"
    assert product.slug == "klocki-hamulcowe-1"
    assert product.translated_url == f"/product/{product.translated_slug}-10000"
    assert product.images == ["https://a.allegroimg.com/original/aa/image.jpg"]


@pytest.mark.asyncio
async def test_repeated_listing_stops_pagination(site, transport_factory):
    site.add(CATEGORY_PATH, listing_page(["/oferta/klocki-1"]))
    site.add(f"{CATEGORY_PATH}?p=2", listing_page(["/oferta/klocki-1"]))
    add_offers(site, 1)
    pipeline = make_pipeline(transport_factory())

    result = await pipeline.scrape_category(LEAF)

    assert len(result.products) == 1
    assert len(site.requests_for("/oferta/klocki-1")) == 1


@pytest.mark.asyncio
async def test_max_products_cap(site, transport_factory):
    site.add(CATEGORY_PATH, listing_page(["/oferta/klocki-1", "/oferta/klocki-2", "/oferta/klocki-3"]))
    add_offers(site, 1, 2, 3)
    pipeline = make_pipeline(transport_factory(), max_products=2)

    result = await pipeline.scrape_category(LEAF)

    assert [p.natural_id for p in result.products] == ["1", "2"]
    assert site.requests_for("/oferta/klocki-3") == []
    assert site.requests_for(f"{CATEGORY_PATH}?p=2") == []


@pytest.mark.asyncio
async def test_max_pages_cap(site, transport_factory):
    site.add(CATEGORY_PATH, listing_page(["/oferta/klocki-1"]))
    site.add(f"{CATEGORY_PATH}?p=2", listing_page(["/oferta/klocki-2"]))
    add_offers(site, 1, 2)
    pipeline = make_pipeline(transport_factory(), max_pages=1)

    result = await pipeline.scrape_category(LEAF)

    assert result.pages_scraped == 1
    assert site.requests_for(f"{CATEGORY_PATH}?p=2") == []


@pytest.mark.asyncio
async def test_listing_failure_keeps_earlier_pages(site, transport_factory):
    site.add(CATEGORY_PATH, listing_page(["/oferta/klocki-1", "/oferta/klocki-2"]))
    site.add(f"{CATEGORY_PATH}?p=2", (503, "busy"))
    add_offers(site, 1, 2)
    sink = MemorySink()
    pipeline = make_pipeline(transport_factory(), sink=sink)

    result = await pipeline.scrape_category(LEAF)

    assert list(sink.products) == ["1", "2"]
    assert result.failed_urls == [f"{CATEGORY_URL}?p=2"]
    assert pipeline.stats.pages_failed == 1


@pytest.mark.asyncio
async def test_failed_product_is_skipped(site, transport_factory):
    add_listing(site, CATEGORY_PATH, ["/oferta/klocki-1", "/oferta/klocki-2", "/oferta/klocki-3"])
    add_offers(site, 1, 3)
    site.add("/oferta/klocki-2", (503, "busy"))
    pipeline = make_pipeline(transport_factory())

    result = await pipeline.scrape_category(LEAF)

    assert [p.natural_id for p in result.products] == ["1", "3"]
    assert result.failed_urls == [f"{BASE_URL}/oferta/klocki-2"]
    assert pipeline.stats.products_failed == 1
    assert pipeline.stats.products_scraped == 2


@pytest.mark.asyncio
async def test_offer_requests_carry_listing_referer(site, transport_factory):
    add_listing(site, CATEGORY_PATH, ["/oferta/klocki-1"])
    add_offers(site, 1)
    pipeline = make_pipeline(transport_factory())

    await pipeline.scrape_category(LEAF)

    (offer_request,) = site.requests_for("/oferta/klocki-1")
    assert offer_request.headers["Referer"] == CATEGORY_URL
    assert offer_request.headers["Sec-Fetch-Site"] == "same-origin"


@pytest.mark.asyncio
async def test_scrape_categories_runs_each_leaf(site, transport_factory):
    other = LEAF.model_copy(update={
        "natural_id": "4095",
        "source_url": f"{BASE_URL}/kategoria/tarcze-4095",
    })
    add_listing(site, CATEGORY_PATH, ["/oferta/klocki-1"])
    add_listing(site, "/kategoria/tarcze-4095", ["/oferta/klocki-2"])
    add_offers(site, 1, 2)
    pipeline = make_pipeline(transport_factory())

    results = await pipeline.scrape_categories([LEAF, other])

    assert [r.products[0].category_natural_id for r in results] == ["4094", "4095"]


@pytest.mark.asyncio
async def test_scrape_single_offer(site, transport_factory):
    site.add("/oferta/12345678", offer_page("Tarcza hamulcowa"))
    sink = MemorySink()
    pipeline = make_pipeline(transport_factory(), sink=sink)

    product = await pipeline.scrape_offer("12345678")

    assert product.natural_id == "12345678"
    assert product.surrogate_id == 10000
    assert sink.products["12345678"] == product
    assert len(pipeline.transport.sessions) == 0
