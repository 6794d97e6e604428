"""Sinks receiving crawled categories and products.

Both operations are idempotent per natural ID: re-upserting a record
replaces its mutable fields and keeps the surrogate ID assigned first.
A natural ID is never moved to a different row; a new natural ID whose
surrogate ID is already taken raises ``SurrogateIdConflict``.
"""

import logging
from typing import Optional, Protocol, runtime_checkable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.db.models import CategoryRecord, ProductRecord
from src.ingest.base import Category, Product
from src.ingest.errors import SurrogateIdConflict

logger = logging.getLogger(__name__)


@runtime_checkable
class Sink(Protocol):
    """Storage contract consumed by the crawler and the product pipeline."""

    async def upsert_category(self, category: Category) -> None:
        ...

    async def upsert_product(self, product: Product) -> None:
        ...

    async def max_category_surrogate_id(self) -> Optional[int]:
        ...

    async def max_product_surrogate_id(self) -> Optional[int]:
        ...


class MemorySink:
    """In-process sink keyed by natural ID."""

    def __init__(self):
        self.categories: dict[str, Category] = {}
        self.products: dict[str, Product] = {}
        self.category_writes = 0
        self.product_writes = 0

    @staticmethod
    def _merge(store: dict, record, kind: str):
        existing = store.get(record.natural_id)
        if existing is None:
            for other in store.values():
                if other.surrogate_id == record.surrogate_id:
                    raise SurrogateIdConflict(kind, record.natural_id, record.surrogate_id, other.natural_id)
        elif existing.surrogate_id != record.surrogate_id:
            record = record.model_copy(update={"surrogate_id": existing.surrogate_id})
        store[record.natural_id] = record

    async def upsert_category(self, category: Category) -> None:
        self._merge(self.categories, category, "category")
        self.category_writes += 1

    async def upsert_product(self, product: Product) -> None:
        self._merge(self.products, product, "product")
        self.product_writes += 1

    async def max_category_surrogate_id(self) -> Optional[int]:
        return max((c.surrogate_id for c in self.categories.values()), default=None)

    async def max_product_surrogate_id(self) -> Optional[int]:
        return max((p.surrogate_id for p in self.products.values()), default=None)


CATEGORY_FIELDS = (
    "name", "translated_name", "slug", "translated_slug", "source_url",
    "depth", "parent_natural_id", "has_offers", "offer_count_hint",
)

PRODUCT_FIELDS = (
    "name", "translated_name", "slug", "translated_slug", "source_url", "translated_url",
    "price", "currency", "images", "gallery_images", "description_text",
    "description_html", "ean", "brand", "manufacturer", "part_number", "model", "year",
    "seller_name", "seller_rating", "specifications", "category_natural_id", "scraped_at",
)


def _product_values(product: Product) -> dict:
    values = {name: getattr(product, name) for name in PRODUCT_FIELDS}
    values["condition"] = product.condition.value
    values["images"] = list(product.images)
    values["gallery_images"] = list(product.gallery_images)
    values["specifications"] = dict(product.specifications)
    return values


class SqlAlchemySink:
    """Sink writing through an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def _upsert(self, model, natural_id: str, surrogate_id: int, values: dict) -> None:
        async with self.session_factory() as db:
            result = await db.execute(select(model).where(model.natural_id == natural_id))
            row: Optional[object] = result.scalars().first()

            if row is not None:
                for name, value in values.items():
                    setattr(row, name, value)
                logger.debug(f"Updated {model.__tablename__} {natural_id}")
            else:
                owner = await db.scalar(
                    select(model.natural_id).where(model.surrogate_id == surrogate_id)
                )
                if owner is not None:
                    raise SurrogateIdConflict(model.__tablename__, natural_id, surrogate_id, owner)
                db.add(model(natural_id=natural_id, surrogate_id=surrogate_id, **values))
                logger.debug(f"Inserted {model.__tablename__} {natural_id}")

            await db.commit()

    async def _max_surrogate_id(self, model) -> Optional[int]:
        async with self.session_factory() as db:
            return await db.scalar(select(func.max(model.surrogate_id)))

    async def max_category_surrogate_id(self) -> Optional[int]:
        return await self._max_surrogate_id(CategoryRecord)

    async def max_product_surrogate_id(self) -> Optional[int]:
        return await self._max_surrogate_id(ProductRecord)

    async def upsert_category(self, category: Category) -> None:
        values = {name: getattr(category, name) for name in CATEGORY_FIELDS}
        await self._upsert(CategoryRecord, category.natural_id, category.surrogate_id, values)

    async def upsert_product(self, product: Product) -> None:
        await self._upsert(ProductRecord, product.natural_id, product.surrogate_id, _product_values(product))

    async def get_category(self, natural_id: str) -> Optional[CategoryRecord]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(CategoryRecord).where(CategoryRecord.natural_id == natural_id)
            )
            return result.scalars().first()

    async def get_product(self, natural_id: str) -> Optional[ProductRecord]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(ProductRecord).where(ProductRecord.natural_id == natural_id)
            )
            return result.scalars().first()

    async def count_products(self) -> int:
        async with self.session_factory() as db:
            result = await db.execute(select(ProductRecord.id))
            return len(result.scalars().all())
