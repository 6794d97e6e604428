"""Tests for the in-memory and SQLAlchemy sinks."""

from decimal import Decimal

import pytest
import pytest_asyncio

from src.db.session import init_models, make_engine, make_session_factory
from src.db.sink import MemorySink, Sink, SqlAlchemySink
from src.ingest.base import Category, Product
from src.ingest.errors import SurrogateIdConflict


def make_category(natural_id="620", surrogate_id=1, name="Części samochodowe", **overrides):
    values = dict(
        natural_id=natural_id,
        surrogate_id=surrogate_id,
        name=name,
        translated_name="Car Parts",
        slug="czesci-samochodowe",
        translated_slug="car-parts",
        source_url=f"https://allegro.pl/kategoria/czesci-samochodowe-{natural_id}",
        depth=1,
    )
    values.update(overrides)
    return Category(**values)


def make_product(natural_id="12345678", surrogate_id=10000, price="129.99", **overrides):
    values = dict(
        natural_id=natural_id,
        surrogate_id=surrogate_id,
        name="Klocki hamulcowe",
        translated_name="Brake Pads",
        slug="klocki-hamulcowe",
        translated_slug="brake-pads",
        source_url=f"https://allegro.pl/oferta/klocki-{natural_id}",
        translated_url=f"/product/brake-pads-{surrogate_id}",
        price=Decimal(price),
        images=["a.jpg", "b.jpg", "a.jpg", "c.jpg", "d.jpg"],
        gallery_images=["a.jpg", "b.jpg", "a.jpg", "c.jpg", "d.jpg"],
        specifications={"Stan": "Nowy"},
    )
    values.update(overrides)
    return Product(**values)


@pytest_asyncio.fixture
async def sql_sink(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    await init_models(engine)
    yield SqlAlchemySink(make_session_factory(engine))
    await engine.dispose()


def test_both_sinks_satisfy_protocol():
    assert isinstance(MemorySink(), Sink)
    assert isinstance(SqlAlchemySink(session_factory=None), Sink)


def test_product_image_invariants():
    product = make_product()
    assert product.images == ["a.jpg", "b.jpg", "c.jpg"]
    assert product.gallery_images == ["a.jpg", "b.jpg", "c.jpg", "d.jpg"]


def test_product_rejects_negative_price_and_bad_rating():
    with pytest.raises(ValueError):
        make_product(price="-1")
    with pytest.raises(ValueError):
        make_product(seller_rating=5.5)


class TestMemorySink:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self):
        sink = MemorySink()

        await sink.upsert_category(make_category())
        await sink.upsert_category(make_category(surrogate_id=99, name="Części"))

        assert len(sink.categories) == 1
        stored = sink.categories["620"]
        assert stored.surrogate_id == 1
        assert stored.name == "Części"
        assert sink.category_writes == 2

    @pytest.mark.asyncio
    async def test_products_keyed_by_natural_id(self):
        sink = MemorySink()

        await sink.upsert_product(make_product("1", 10000))
        await sink.upsert_product(make_product("2", 10001))
        await sink.upsert_product(make_product("1", 10005, price="99.00"))

        assert list(sink.products) == ["1", "2"]
        assert sink.products["1"].surrogate_id == 10000
        assert sink.products["1"].price == Decimal("99.00")

    @pytest.mark.asyncio
    async def test_new_natural_id_never_takes_over_a_surrogate_id(self):
        sink = MemorySink()
        await sink.upsert_product(make_product("111", 10000))

        with pytest.raises(SurrogateIdConflict):
            await sink.upsert_product(make_product("222", 10000))

        assert list(sink.products) == ["111"]
        assert sink.products["111"].surrogate_id == 10000

    @pytest.mark.asyncio
    async def test_max_surrogate_ids(self):
        sink = MemorySink()
        assert await sink.max_product_surrogate_id() is None

        await sink.upsert_product(make_product("1", 10003))
        await sink.upsert_product(make_product("2", 10001))
        await sink.upsert_category(make_category("620", 4))

        assert await sink.max_product_surrogate_id() == 10003
        assert await sink.max_category_surrogate_id() == 4


class TestSqlAlchemySink:
    @pytest.mark.asyncio
    async def test_category_upsert_keeps_surrogate_id(self, sql_sink):
        await sql_sink.upsert_category(make_category())
        await sql_sink.upsert_category(make_category(surrogate_id=99, has_offers=True))

        row = await sql_sink.get_category("620")
        assert row.surrogate_id == 1
        assert row.has_offers is True

    @pytest.mark.asyncio
    async def test_product_round_trip(self, sql_sink):
        await sql_sink.upsert_product(make_product())
        await sql_sink.upsert_product(make_product(price="99.50"))

        row = await sql_sink.get_product("12345678")
        assert await sql_sink.count_products() == 1
        assert row.price == Decimal("99.50")
        assert row.condition == "Unknown"
        assert row.images == ["a.jpg", "b.jpg", "c.jpg"]
        assert row.specifications == {"Stan": "Nowy"}

    @pytest.mark.asyncio
    async def test_missing_record(self, sql_sink):
        assert await sql_sink.get_category("nope") is None

    @pytest.mark.asyncio
    async def test_new_natural_id_never_takes_over_a_surrogate_id(self, sql_sink):
        await sql_sink.upsert_product(make_product("111", 10000))

        with pytest.raises(SurrogateIdConflict):
            await sql_sink.upsert_product(make_product("222", 10000))

        row = await sql_sink.get_product("111")
        assert row.surrogate_id == 10000
        assert await sql_sink.get_product("222") is None
        assert await sql_sink.count_products() == 1

    @pytest.mark.asyncio
    async def test_max_surrogate_ids(self, sql_sink):
        assert await sql_sink.max_category_surrogate_id() is None

        await sql_sink.upsert_category(make_category("620", 1))
        await sql_sink.upsert_category(make_category("4029", 2, depth=2, parent_natural_id="620"))
        await sql_sink.upsert_product(make_product("1", 10004))

        assert await sql_sink.max_category_surrogate_id() == 2
        assert await sql_sink.max_product_surrogate_id() == 10004
