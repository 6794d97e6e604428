"""Listing and offer page extraction."""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional
from urllib.parse import parse_qs, urljoin, urlparse

from selectolax.parser import HTMLParser, Node

from src.ingest.base import Condition
from src.ingest.extractors.strategies import (
    Document,
    Strategy,
    as_tree,
    attr,
    collapse_ws,
    first_match,
    first_nonempty,
    inner_html,
    node_text,
    parse_decimal,
)
from src.normalize.translations import translate_condition

logger = logging.getLogger(__name__)

OFFER_PATH = "/oferta/"
CLICK_TRACKER_PATH = "/events/clicks"
OFFER_ID_RE = re.compile(r"/oferta/[^/?#]*?-?(\d+)(?:[/?#]|$)")
IMAGE_SIZE_RE = re.compile(r"/s\d+/")
EAN_ALT_RE = re.compile(r"EAN\s*\(GTIN\)\s*(\d+)", re.IGNORECASE)
SELLER_RE = re.compile(r"^od\s+(.+)$", re.IGNORECASE)
RATING_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*%")
MODEL_RE = re.compile(r"(?:Numer modelu produktu|Model)[:\s]+([A-Z0-9\-]+)", re.IGNORECASE)
YEAR_RE = re.compile(r"\b(\d{4})\b")

DESCRIPTION_TEXT_LIMIT = 1000

LISTING_CONTAINERS = [
    'div[data-box-name="product listing items"]',
    ".opbox-listing",
]


# --------------------------------------------------------------------------
# Listing pages
# --------------------------------------------------------------------------

def unwrap_click_tracker(href: str) -> str:
    """Target of a click-tracking redirect link, or the link itself."""
    if CLICK_TRACKER_PATH in href and "redirect=" in href:
        targets = parse_qs(urlparse(href).query).get("redirect")
        if targets:
            return targets[0]
    return href


def strip_tracking(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


def _offer_href(node: Node) -> Optional[str]:
    return node.attributes.get("href") or None


def _title_href(node: Node) -> Optional[str]:
    href = node.attributes.get("href")
    return unwrap_click_tracker(href) if href else None


def _direct_offer_href(node: Node) -> Optional[str]:
    href = node.attributes.get("href") or ""
    if OFFER_PATH in href and CLICK_TRACKER_PATH not in href:
        return href
    return None


OFFER_LINK_STRATEGIES: list[Strategy[str]] = [
    Strategy("offer-role", 'a[data-role="offer"]', _offer_href),
    Strategy("title-link", "h2 a", _title_href),
    Strategy("offer-pattern", 'a[href*="/oferta/"]', _direct_offer_href),
]


def _listing_root(tree: HTMLParser) -> HTMLParser | Node:
    for selector in LISTING_CONTAINERS:
        container = tree.css_first(selector)
        if container is not None:
            return container
    return tree


def extract_product_links(doc: Document, base_url: str) -> list[str]:
    """
    Extract one canonical offer URL per listing entry.

    Args:
        doc: Listing page HTML or parsed tree
        base_url: Site base URL used to absolutize relative links

    Returns:
        Offer URLs in listing order, without query strings, deduplicated
    """
    root = _listing_root(as_tree(doc))
    urls: list[str] = []
    seen: set[str] = set()

    for article in root.css("article"):
        href = first_match(article, OFFER_LINK_STRATEGIES)
        if not href:
            continue
        url = strip_tracking(urljoin(base_url, href))
        if url not in seen:
            seen.add(url)
            urls.append(url)

    return urls


# --------------------------------------------------------------------------
# Offer pages
# --------------------------------------------------------------------------

@dataclass
class ProductDetail:
    """Fields read from one offer page, before IDs and slugs are assigned."""

    natural_id: Optional[str]
    source_url: str
    name: str
    price: Decimal = Decimal("0")
    currency: str = "PLN"
    condition: Condition = Condition.UNKNOWN
    gallery_images: list[str] = field(default_factory=list)
    description_text: str = ""
    description_html: str = ""
    ean: Optional[str] = None
    brand: Optional[str] = None
    manufacturer: Optional[str] = None
    part_number: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    seller_name: Optional[str] = None
    seller_rating: Optional[float] = None
    specifications: dict[str, str] = field(default_factory=dict)


def extract_offer_id(url: str) -> Optional[str]:
    match = OFFER_ID_RE.search(url or "")
    return match.group(1) if match else None


def normalize_image_url(url: str) -> str:
    """Highest-resolution variant of a sized image URL."""
    return IMAGE_SIZE_RE.sub("/original/", url.strip(), count=1)


def _image_urls(node: Node) -> Optional[list[str]]:
    """Every URL an image node references: src, data-src and both srcsets."""
    candidates = []
    for name in ("src", "data-src", "content"):
        value = node.attributes.get(name)
        if value:
            candidates.append(value)
    for name in ("srcset", "data-srcset"):
        value = node.attributes.get(name)
        if value:
            candidates.extend(part.strip().split(" ")[0] for part in value.split(","))

    urls = []
    for candidate in candidates:
        if candidate.startswith("//"):
            candidate = "https:" + candidate
        if candidate.startswith("http"):
            urls.append(normalize_image_url(candidate))
    return urls or None


GALLERY_STRATEGIES: list[Strategy[list[str]]] = [
    Strategy("gallery-thumbnails", 'button img[src*="allegroimg.com"]', _image_urls),
    Strategy("gallery-box", '[data-box-name*="gallery"] img', _image_urls),
    Strategy("gallery-box-upper", '[data-box-name*="Gallery"] img', _image_urls),
    Strategy("gallery-role", '[data-role="gallery"] img', _image_urls),
    # Generic image roles
    Strategy("image-role", 'img[role="img"], [role="img"] img', _image_urls),
    Strategy("itemprop-image", 'img[itemprop="image"], meta[itemprop="image"]', _image_urls),
]

NAME_STRATEGIES: list[Strategy[str]] = [
    Strategy("meta-name", 'meta[itemprop="name"]', attr("content")),
    Strategy("og-title", 'meta[property="og:title"]', attr("content")),
    Strategy("heading", "h1", lambda node: node_text(node) or None),
]

PRICE_STRATEGIES: list[Strategy[str]] = [
    Strategy("meta-price", 'meta[itemprop="price"]', attr("content")),
    Strategy("og-price", 'meta[property="product:price:amount"]', attr("content")),
]

CURRENCY_STRATEGIES: list[Strategy[str]] = [
    Strategy("meta-currency", 'meta[itemprop="priceCurrency"]', attr("content")),
    Strategy("og-currency", 'meta[property="product:price:currency"]', attr("content")),
]

BRAND_STRATEGIES: list[Strategy[str]] = [
    Strategy("meta-brand", 'meta[itemprop="brand"]', attr("content")),
]

CONDITION_STRATEGIES: list[Strategy[str]] = [
    Strategy("meta-condition", 'meta[itemprop="itemCondition"]', attr("content")),
    Strategy("link-condition", 'link[itemprop="itemCondition"]', attr("href")),
]


def _digits(value: Optional[str]) -> Optional[str]:
    return value if value and value.isdigit() else None


def _ean_from_alt(node: Node) -> Optional[str]:
    match = EAN_ALT_RE.search(node.attributes.get("alt") or "")
    return match.group(1) if match else None


EAN_STRATEGIES: list[Strategy[str]] = [
    Strategy("gtin13", 'meta[itemprop="gtin13"]', lambda n: _digits(attr("content")(n))),
    Strategy("gtin", 'meta[itemprop="gtin"]', lambda n: _digits(attr("content")(n))),
    Strategy("gtin14", 'meta[itemprop="gtin14"]', lambda n: _digits(attr("content")(n))),
    Strategy("gtin8", 'meta[itemprop="gtin8"]', lambda n: _digits(attr("content")(n))),
    Strategy("image-alt", 'img[alt*="EAN"]', _ean_from_alt),
]

DESCRIPTION_CONTAINERS = [
    'div[itemprop="description"]',
    'div[data-box-name="Description"]',
]


def _rating(node: Node) -> Optional[float]:
    match = RATING_RE.search(node_text(node))
    if not match:
        return None
    percent = float(match.group(1).replace(",", "."))
    return round(min(max(percent, 0.0), 100.0) / 100 * 5, 2)


SELLER_RATING_STRATEGIES: list[Strategy[float]] = [
    Strategy("rating-link", 'a[data-analytics-click-label="sellerRating"]', _rating),
    Strategy("rating-header", 'div[data-box-name="showoffer.sellerInfoHeader"] a', _rating),
]


def _parameter_row(node: Node) -> Optional[tuple[str, str]]:
    cells = node.css("td, th")
    if len(cells) < 2:
        return None
    label = node_text(cells[0]).rstrip(":").strip()
    value = node_text(cells[-1])
    return (label, value) if label and value else None


PARAMETER_STRATEGIES: list[Strategy[tuple[str, str]]] = [
    Strategy("parameters-tbody", 'div[data-box-name="Parameters"] table tbody tr', _parameter_row),
    Strategy("parameters-rows", 'div[data-box-name="Parameters"] tr', _parameter_row),
]


def _gallery(tree: HTMLParser) -> list[str]:
    urls: list[str] = []
    for node_urls in first_nonempty(tree, GALLERY_STRATEGIES):
        urls.extend(node_urls)

    # Full-size images embedded in the description
    for container in DESCRIPTION_CONTAINERS:
        for img in tree.css(f"{container} img"):
            urls.extend(_image_urls(img) or [])

    seen: set[str] = set()
    result = []
    for url in urls:
        if url not in seen:
            seen.add(url)
            result.append(url)
    return result


def _description(tree: HTMLParser) -> tuple[str, str]:
    for selector in DESCRIPTION_CONTAINERS:
        node = tree.css_first(selector)
        if node is not None:
            return node_text(node)[:DESCRIPTION_TEXT_LIMIT], inner_html(node)
    return "", ""


def _seller_name(tree: HTMLParser) -> Optional[str]:
    header = tree.css_first('div[data-box-name="showoffer.sellerInfoHeader"]')
    if header is None:
        return None
    # Innermost element whose text reads "od <login>"
    best: Optional[str] = None
    for node in [header, *header.css("div, span, p, a")]:
        match = SELLER_RE.match(node_text(node))
        if match and (best is None or len(match.group(1)) < len(best)):
            best = match.group(1).strip()
    return best


def extract_product_detail(doc: Document, url: str) -> ProductDetail:
    """
    Extract every product field from an offer page.

    Each field is independent: a missing element leaves that field at its
    default and never fails the whole extraction.

    Args:
        doc: Offer page HTML or parsed tree
        url: Offer URL (source of the offer ID)

    Returns:
        ProductDetail
    """
    tree = as_tree(doc)

    name = first_match(tree, NAME_STRATEGIES) or "Unknown Product"
    brand = first_match(tree, BRAND_STRATEGIES)
    description_text, description_html = _description(tree)

    specifications: dict[str, str] = {}
    for label, value in first_nonempty(tree, PARAMETER_STRATEGIES):
        specifications.setdefault(label, value)

    condition_label = first_match(tree, CONDITION_STRATEGIES)
    manufacturer = brand
    part_number = None
    year = None
    ean = first_match(tree, EAN_STRATEGIES)
    table_ean = None

    for label, value in specifications.items():
        key = label.lower()
        if "stan" in key:
            condition_label = condition_label or value
        elif "producent części" in key or "marka" in key:
            manufacturer = value
        elif "numer katalogowy" in key:
            part_number = value
            if value.isdigit():
                table_ean = value
        elif key in ("ean", "ean (gtin)", "kod ean"):
            table_ean = _digits(value) or table_ean
        elif "rok produkcji" in key or "rocznik" in key:
            match = YEAR_RE.search(value)
            if match:
                year = int(match.group(1))

    model_match = MODEL_RE.search(description_text)

    return ProductDetail(
        natural_id=extract_offer_id(url),
        source_url=strip_tracking(url),
        name=collapse_ws(name),
        price=parse_decimal(first_match(tree, PRICE_STRATEGIES)),
        currency=first_match(tree, CURRENCY_STRATEGIES) or "PLN",
        condition=translate_condition(condition_label),
        gallery_images=_gallery(tree),
        description_text=description_text,
        description_html=description_html,
        ean=ean or table_ean,
        brand=brand,
        manufacturer=manufacturer,
        part_number=part_number,
        model=model_match.group(1) if model_match else None,
        year=year,
        seller_name=_seller_name(tree),
        seller_rating=first_match(tree, SELLER_RATING_STRATEGIES),
        specifications=specifications,
    )
