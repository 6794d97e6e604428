"""Run artifacts: timestamped JSON documents of crawled records."""

import json
import logging
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from src.config import settings
from src.ingest.base import Category, Product

logger = logging.getLogger(__name__)

EXPORT_METHOD = "proxied-http-crawl"


def level_breakdown(categories: list[Category]) -> dict[str, int]:
    """Depth -> number of categories, keys as strings for JSON."""
    counts = Counter(category.depth for category in categories)
    return {str(depth): counts[depth] for depth in sorted(counts)}


def _iso(moment: Optional[datetime]) -> str:
    return (moment or datetime.now(timezone.utc)).isoformat()


def build_category_document(
    categories: list[Category],
    scraped_at: Optional[datetime] = None,
    method: str = EXPORT_METHOD,
) -> dict:
    return {
        "scrapedAt": _iso(scraped_at),
        "totalCategories": len(categories),
        "method": method,
        "levelBreakdown": level_breakdown(categories),
        "categories": [c.model_dump(mode="json", by_alias=True) for c in categories],
    }


def build_product_document(
    products: list[Product],
    category: Optional[Category] = None,
    scraped_at: Optional[datetime] = None,
    method: str = EXPORT_METHOD,
) -> dict:
    return {
        "scrapedAt": _iso(scraped_at),
        "totalProducts": len(products),
        "categoryName": category.name if category else None,
        "categoryNaturalId": category.natural_id if category else None,
        "method": method,
        "products": [p.model_dump(mode="json", by_alias=True) for p in products],
    }


def write_document(doc: dict, prefix: str, results_dir: str | Path | None = None) -> Path:
    """
    Write a document as ``{prefix}-{timestamp}.json``.

    Args:
        doc: Document built by one of the ``build_*`` functions
        prefix: File name prefix (e.g. "categories")
        results_dir: Target directory (defaults to config)

    Returns:
        Path of the written file
    """
    directory = Path(results_dir or settings.results_dir)
    directory.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    path = directory / f"{prefix}-{timestamp}.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(doc, f, ensure_ascii=False, indent=2)
    logger.info(f"Saved {prefix} export to {path}")
    return path


def load_category_document(path: str | Path) -> list[Category]:
    """Read a category export back into Category records."""
    with open(path, "r", encoding="utf-8") as f:
        doc = json.load(f)
    return [Category.model_validate(item) for item in doc.get("categories", [])]


def load_product_document(path: str | Path) -> list[Product]:
    with open(path, "r", encoding="utf-8") as f:
        doc = json.load(f)
    return [Product.model_validate(item) for item in doc.get("products", [])]
