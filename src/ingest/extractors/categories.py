"""Category link, title and offer-count extraction."""

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin, urlparse

from selectolax.parser import Node

from src.ingest.extractors.strategies import (
    Document,
    Strategy,
    as_tree,
    collect,
    collapse_ws,
    first_match,
    node_text,
    parse_count,
)

logger = logging.getLogger(__name__)

CATEGORY_PATH = "/kategoria/"
CATEGORY_ID_RE = re.compile(r"/kategoria/[^?#]*?-(\d+)(?:[/?#]|$)")
COUNT_IN_TEXT_RE = re.compile(r"\(\s*(\d[\d\s]*)\s*\)")

# Navigation text that is never a category name
BOILERPLATE_TEXT = frozenset({
    "wszystkie kategorie",
    "kategorie",
    "pokaż więcej",
    "pokaż wszystkie",
    "zobacz wszystkie",
    "zobacz więcej",
    "więcej",
    "mniej",
    "strona główna",
    "allegro",
    "wróć",
})

MIN_NAME_LENGTH = 3


@dataclass(frozen=True)
class CategoryLink:
    """A child category link found on a category page."""

    natural_id: str
    name: str
    url: str
    offer_count: int = 0


def _anchor(node: Node) -> Optional[Node]:
    return node if node.tag == "a" and node.attributes.get("href") else None


# Structural attributes first, generic anchor fallbacks last
CATEGORY_LINK_STRATEGIES: list[Strategy[Node]] = [
    Strategy("category-href", 'a[href*="/kategoria/"]', _anchor),
    Strategy("category-link-class", ".category-link", _anchor),
    Strategy("subcategory-link-class", ".subcategory-link", _anchor),
    Strategy("category-id-attr", "a[data-category-id]", _anchor),
    Strategy("category-tile", ".category-tile a", _anchor),
    Strategy("category-item", ".category-item a", _anchor),
    Strategy("category-container", '[class*="category"] a[href*="/kategoria/"]', _anchor),
]


def _title_text(node: Node) -> Optional[str]:
    text = node_text(node)
    if not text or "allegro" in text.lower():
        return None
    return text


TITLE_STRATEGIES: list[Strategy[str]] = [
    Strategy("h1", "h1", _title_text),
    Strategy("category-title", ".category-title", _title_text),
    Strategy("page-title", ".page-title", _title_text),
    Strategy("role-title", '[data-role="category-title"]', _title_text),
    Strategy("document-title", "title", _title_text),
]


def extract_natural_id(url: str) -> Optional[str]:
    """Site category ID from a category URL (``/kategoria/name-620`` -> ``620``)."""
    match = CATEGORY_ID_RE.search(url or "")
    return match.group(1) if match else None


def normalize_url(href: str, base_url: str) -> str:
    """Absolute URL without query string or fragment."""
    parsed = urlparse(urljoin(base_url, href))
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


def clean_name(text: str) -> str:
    """Strip counts and punctuation noise from link text."""
    text = COUNT_IN_TEXT_RE.sub(" ", text or "")
    text = re.sub(r"[^\w\s,&\-]", " ", text)
    return collapse_ws(text)


def _link_offer_count(node: Node, raw_text: str) -> int:
    for name in ("data-count", "data-product-count"):
        value = node.attributes.get(name)
        if value:
            return parse_count(value)

    match = COUNT_IN_TEXT_RE.search(raw_text)
    if match:
        return parse_count(match.group(1))

    counter = node.css_first(".count, .counter, .results")
    if counter is not None:
        return parse_count(node_text(counter))
    return 0


def extract_category_links(
    doc: Document,
    base_url: str,
    current_id: Optional[str] = None,
) -> list[CategoryLink]:
    """
    Extract child category links from a category page.

    Args:
        doc: Page HTML or parsed tree
        base_url: Site base URL used to absolutize relative links
        current_id: Natural ID of the page being parsed; links back to it
                    are dropped

    Returns:
        Links in document order, unique by URL and by natural ID
    """
    tree = as_tree(doc)
    seen_urls: set[str] = set()
    seen_ids: set[str] = set()
    links: list[CategoryLink] = []

    for strategy_name, node in collect(tree, CATEGORY_LINK_STRATEGIES):
        href = node.attributes.get("href") or ""
        if CATEGORY_PATH not in href:
            continue

        url = normalize_url(href, base_url)
        if url in seen_urls:
            continue

        natural_id = extract_natural_id(url)
        if not natural_id or natural_id == current_id or natural_id in seen_ids:
            continue

        raw_text = node_text(node)
        name = clean_name(raw_text)
        if len(name) < MIN_NAME_LENGTH or name.lower() in BOILERPLATE_TEXT:
            continue

        seen_urls.add(url)
        seen_ids.add(natural_id)
        links.append(CategoryLink(
            natural_id=natural_id,
            name=name,
            url=url,
            offer_count=_link_offer_count(node, raw_text),
        ))
        logger.debug(f"Found category link {natural_id} '{name}' via {strategy_name}")

    return links


def extract_category_title(doc: Document) -> Optional[str]:
    """Display name of a category page, or None if no heading qualifies."""
    return first_match(as_tree(doc), TITLE_STRATEGIES)


# --------------------------------------------------------------------------
# Offer count
# --------------------------------------------------------------------------

def _count_text(node: Node) -> Optional[int]:
    value = node.attributes.get("data-count")
    count = parse_count(value) if value else parse_count(node_text(node))
    return count or None


def _count_phrase(node: Node) -> Optional[int]:
    text = node_text(node).lower()
    if any(word in text for word in ("wyników", "oferuje", "results", "products")):
        return parse_count(text) or None
    return None


COUNT_STRATEGIES: list[Strategy[int]] = [
    Strategy("testid", '[data-testid="results-count"]', _count_text),
    Strategy("role", '[data-role="results-counter"]', _count_text),
    Strategy("results-count", ".results-count", _count_text),
    Strategy("category-counter", ".category-counter", _count_text),
    Strategy("product-count", ".product-count", _count_text),
    Strategy("data-count", "[data-count]", _count_text),
    Strategy("phrase", "span", _count_phrase),
]


def extract_offer_count(doc: Document) -> int:
    """Best-effort result count of a listing; 0 when nothing matches."""
    return first_match(as_tree(doc), COUNT_STRATEGIES) or 0
