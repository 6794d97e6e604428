"""Catalog records produced by the crawler and the product pipeline."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Cap for the primary image list kept for downstream consumers
PRIMARY_IMAGE_LIMIT = 3


class Condition(str, Enum):
    """Normalized item condition."""

    NEW = "New"
    USED = "Used"
    DAMAGED = "Damaged"
    REFURBISHED = "Refurbished"
    REGENERATED = "Regenerated"
    ORIGINAL = "Original"
    REPLACEMENT = "Replacement"
    UNKNOWN = "Unknown"


class CatalogRecord(BaseModel):
    """Base model: camelCase on the wire, immutable once built."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class Category(CatalogRecord):
    """A node of the discovered category tree."""

    natural_id: str
    surrogate_id: int
    name: str
    translated_name: str
    slug: str
    translated_slug: str
    source_url: str
    depth: int = Field(ge=0)
    parent_natural_id: Optional[str] = None
    has_offers: bool = False
    offer_count_hint: int = Field(default=0, ge=0)


def _dedupe(urls: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for url in urls:
        if url and url not in seen:
            seen.add(url)
            result.append(url)
    return result


class Product(CatalogRecord):
    """A normalized offer."""

    natural_id: str
    surrogate_id: int
    name: str
    translated_name: str
    slug: str
    translated_slug: str
    source_url: str
    translated_url: str
    price: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "PLN"
    condition: Condition = Condition.UNKNOWN
    images: list[str] = Field(default_factory=list)
    gallery_images: list[str] = Field(default_factory=list)
    description_text: str = ""
    description_html: str = ""
    ean: Optional[str] = None
    brand: Optional[str] = None
    manufacturer: Optional[str] = None
    part_number: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    seller_name: Optional[str] = None
    seller_rating: Optional[float] = Field(default=None, ge=0, le=5)
    specifications: dict[str, str] = Field(default_factory=dict)
    category_natural_id: Optional[str] = None
    scraped_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("gallery_images")
    @classmethod
    def _unique_gallery(cls, value: list[str]) -> list[str]:
        return _dedupe(value)

    @field_validator("images")
    @classmethod
    def _unique_capped_images(cls, value: list[str]) -> list[str]:
        return _dedupe(value)[:PRIMARY_IMAGE_LIMIT]
