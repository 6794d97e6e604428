"""End-to-end runs through ScrapeRunner against the fake site."""

import json
import logging

import httpx
import pytest

from conftest import category_page, listing_page, offer_page
from src.config import Settings
from src.db.sink import MemorySink
from src.ingest.base import Category
from src.ingest.errors import NoCredentialsError
from src.ingest.export import build_category_document, write_document
from src.logging_config import get_logger, setup_logging
from src.main import main
from src.metrics import start_metrics_server
from src.worker.tasks import ScrapeRunner

ROOT_PATH = "/kategoria/czesci-samochodowe-620"


def make_config(tmp_path, **overrides):
    values = dict(
        proxy_tokens="token-a,token-b",
        scrape_max_retries=2,
        scrape_request_delay_ms=0,
        scrape_request_delay_jitter_ms=0,
        crawl_sibling_delay_ms=0,
        crawl_deep_delay_ms=0,
        product_delay_base_ms=0,
        product_delay_jitter_ms=0,
        product_delay_min_ms=0,
        database_url="",
        results_dir=str(tmp_path / "results"),
    )
    values.update(overrides)
    return Settings(**values)


def make_runner(site, config, sink=None):
    return ScrapeRunner(
        config=config,
        sink=sink or MemorySink(),
        client_factory=lambda credential: httpx.AsyncClient(transport=httpx.MockTransport(site.handler)),
    )


@pytest.mark.asyncio
async def test_category_run_writes_artifact(site, tmp_path):
    site.add(ROOT_PATH, category_page("Czesci samochodowe", [("4029", "Oswietlenie"), ("250847", "Silniki")]))

    async with make_runner(site, make_config(tmp_path)) as runner:
        report = await runner.run_categories(max_depth=2)

    assert [c.natural_id for c in report.categories] == ["620", "4029", "250847"]
    with open(report.artifact, encoding="utf-8") as f:
        doc = json.load(f)
    assert doc["totalCategories"] == 3
    assert doc["levelBreakdown"] == {"1": 1, "2": 2}
    assert report.stats.categories_discovered == 3


@pytest.mark.asyncio
async def test_product_run_skips_categories_without_offers(site, tmp_path):
    site.add(ROOT_PATH, category_page("Czesci samochodowe", [("4029", "Oswietlenie")]))
    site.add("/kategoria/oswietlenie-4029", listing_page(["/oferta/lampa-1"]))
    site.add("/kategoria/oswietlenie-4029?p=2", listing_page([]))
    site.add("/oferta/lampa-1", offer_page("Lampa tylna"))
    sink = MemorySink()

    async with make_runner(site, make_config(tmp_path), sink=sink) as runner:
        crawl = await runner.run_categories(max_depth=2)
        report = await runner.run_products(crawl.categories)

    # Root has no offer count, so only the leaf listing is paginated
    assert len(site.requests_for(ROOT_PATH)) == 1
    assert [p.natural_id for p in report.products] == ["1"]
    assert report.products[0].surrogate_id == 10000
    assert list(sink.products) == ["1"]
    assert report.artifact.name.startswith("products-")


@pytest.mark.asyncio
async def test_import_categories(site, tmp_path):
    async with make_runner(site, make_config(tmp_path)) as runner:
        site.add(ROOT_PATH, category_page("Czesci samochodowe", [("4029", "Oswietlenie")]))
        crawl = await runner.run_categories(max_depth=2)

    path = write_document(build_category_document(crawl.categories), "categories", tmp_path)
    sink = MemorySink()
    async with make_runner(site, make_config(tmp_path), sink=sink) as runner:
        count = await runner.import_categories(path)

    assert count == 2
    assert list(sink.categories) == ["620", "4029"]


@pytest.mark.asyncio
async def test_run_without_credentials_fails_fast(site, tmp_path):
    site.add(ROOT_PATH, category_page("Czesci samochodowe", [("4029", "Oswietlenie")]))
    config = make_config(tmp_path, proxy_tokens="", proxy_token="")

    async with make_runner(site, config) as runner:
        with pytest.raises(NoCredentialsError):
            await runner.run_categories(max_depth=2)

    assert site.requests == []


@pytest.mark.asyncio
async def test_runner_defaults_to_database_sink(site, tmp_path):
    config = make_config(tmp_path, database_url=f"sqlite+aiosqlite:///{tmp_path / 'db' / 'catalog.db'}")
    site.add(ROOT_PATH, category_page("Czesci samochodowe", [("4029", "Oswietlenie")]))

    runner = ScrapeRunner(
        config=config,
        client_factory=lambda credential: httpx.AsyncClient(transport=httpx.MockTransport(site.handler)),
        export=False,
    )
    async with runner:
        report = await runner.run_categories(max_depth=2)
        row = await runner.sink.get_category("4029")

    assert report.artifact is None
    assert row.parent_natural_id == "620"


@pytest.mark.asyncio
async def test_second_run_continues_surrogate_ids(site, tmp_path):
    config = make_config(tmp_path, database_url=f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    site.add(ROOT_PATH, category_page("Czesci samochodowe", [("4029", "Oswietlenie")]))
    site.add("/kategoria/oswietlenie-4029", listing_page(["/oferta/lampa-1"]))
    site.add("/kategoria/oswietlenie-4029?p=2", listing_page([]))
    site.add("/oferta/lampa-1", offer_page("Lampa tylna"))

    async with ScrapeRunner(
        config=config,
        client_factory=lambda credential: httpx.AsyncClient(transport=httpx.MockTransport(site.handler)),
        export=False,
    ) as first:
        crawl = await first.run_categories(max_depth=2)
        await first.run_products(crawl.categories)

    # A different offer on the second run must not reuse product 10000
    site.add("/kategoria/oswietlenie-4029", listing_page(["/oferta/lampa-2"]))
    site.add("/oferta/lampa-2", offer_page("Lampa przednia"))
    async with ScrapeRunner(
        config=config,
        client_factory=lambda credential: httpx.AsyncClient(transport=httpx.MockTransport(site.handler)),
        export=False,
    ) as second:
        assert second.category_ids.peek == 3
        assert second.product_ids.peek == 10001
        report = await second.run_products(crawl.categories)

        assert [p.surrogate_id for p in report.products] == [10001]
        assert (await second.sink.get_product("1")).surrogate_id == 10000
        assert (await second.sink.get_product("2")).surrogate_id == 10001


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def test_setup_logging_writes_json_lines(tmp_path, restore_logging):
    setup_logging(tmp_path)
    get_logger("catalog.test", session_key="branch-620").warning("branch abandoned")
    for handler in restore_logging.handlers:
        handler.flush()

    lines = (tmp_path / "logs" / "app.log").read_text(encoding="utf-8").splitlines()
    record = json.loads(lines[-1])
    assert record["message"] == "branch abandoned"
    assert record["level"] == "WARNING"
    assert record["session_key"] == "branch-620"


def test_cli_import_command(tmp_path, monkeypatch, capsys, restore_logging):
    category = Category(
        natural_id="620",
        surrogate_id=1,
        name="Części samochodowe",
        translated_name="Car Parts",
        slug="czesci-samochodowe",
        translated_slug="car-parts",
        source_url="https://allegro.pl/kategoria/czesci-samochodowe-620",
        depth=1,
    )
    path = write_document(build_category_document([category]), "categories", tmp_path)
    monkeypatch.chdir(tmp_path)

    assert main(["import", str(path)]) == 0
    assert "Imported 1 categories" in capsys.readouterr().out
    assert (tmp_path / "data" / "catalog.db").exists()


def test_cli_exposes_metrics_when_port_given(tmp_path, monkeypatch, restore_logging):
    ports = []
    monkeypatch.setattr("src.metrics.start_http_server", ports.append)
    path = write_document(build_category_document([]), "categories", tmp_path)
    monkeypatch.chdir(tmp_path)

    assert main(["--metrics-port", "9105", "import", str(path)]) == 0
    assert ports == [9105]


def test_metrics_server_disabled_by_default(monkeypatch):
    ports = []
    monkeypatch.setattr("src.metrics.start_http_server", ports.append)

    assert start_metrics_server(0) is False
    assert ports == []
