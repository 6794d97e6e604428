"""HTML field extractors.

Pure functions over a page: absence of an element yields an empty result,
never an exception.
"""

from __future__ import annotations

from src.ingest.extractors.categories import (
    CategoryLink,
    extract_category_links,
    extract_category_title,
    extract_natural_id,
    extract_offer_count,
)
from src.ingest.extractors.products import (
    ProductDetail,
    extract_offer_id,
    extract_product_detail,
    extract_product_links,
    normalize_image_url,
)
from src.ingest.extractors.strategies import Strategy, first_match, parse_decimal

__all__ = [
    "CategoryLink",
    "ProductDetail",
    "Strategy",
    "extract_category_links",
    "extract_category_title",
    "extract_natural_id",
    "extract_offer_count",
    "extract_offer_id",
    "extract_product_detail",
    "extract_product_links",
    "first_match",
    "normalize_image_url",
    "parse_decimal",
]
