"""Ordered selector strategies evaluated first-match-wins.

Each strategy pairs a CSS selector (which nodes qualify) with an extract
function (what to read from a node). Fallback order lives in data, so a
chain can be tested against a fixture document without any fetching.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Generic, Iterable, Optional, TypeVar, Union

from selectolax.parser import HTMLParser, Node

T = TypeVar("T")

Document = Union[str, HTMLParser]

_WS_RE = re.compile(r"\s+")
_OUTER_TAG_RE = re.compile(r"^\s*<[^>]+>|</[^>]+>\s*$")


@dataclass(frozen=True)
class Strategy(Generic[T]):
    """One way of finding a value in a document."""

    name: str
    selector: str
    extract: Callable[[Node], Optional[T]]


def as_tree(doc: Document) -> HTMLParser:
    return doc if isinstance(doc, HTMLParser) else HTMLParser(doc or "")


def first_match(tree: HTMLParser | Node, strategies: Iterable[Strategy[T]]) -> Optional[T]:
    """Value from the first node, of the first strategy, that yields one.

    Only None and the empty string mean no value; a 0 is kept.
    """
    for strategy in strategies:
        for node in tree.css(strategy.selector):
            value = strategy.extract(node)
            if value is not None and value != "":
                return value
    return None


def first_nonempty(tree: HTMLParser | Node, strategies: Iterable[Strategy[T]]) -> list[T]:
    """All values of the first strategy that yields anything."""
    for strategy in strategies:
        values = [v for v in (strategy.extract(n) for n in tree.css(strategy.selector)) if v]
        if values:
            return values
    return []


def collect(tree: HTMLParser | Node, strategies: Iterable[Strategy[T]]) -> list[tuple[str, T]]:
    """Values of every strategy in order, tagged with the strategy name."""
    results = []
    for strategy in strategies:
        for node in tree.css(strategy.selector):
            value = strategy.extract(node)
            if value:
                results.append((strategy.name, value))
    return results


# --------------------------------------------------------------------------
# Node helpers
# --------------------------------------------------------------------------

def collapse_ws(text: str | None) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def node_text(node: Node) -> str:
    """Visible text of a node with whitespace collapsed."""
    return collapse_ws(node.text(separator=" "))


def attr(name: str) -> Callable[[Node], Optional[str]]:
    """Extract function reading an attribute, stripped."""
    def _read(node: Node) -> Optional[str]:
        value = node.attributes.get(name)
        return value.strip() if value else None
    return _read


def inner_html(node: Node) -> str:
    """Markup inside a node, without the node's own tags."""
    return _OUTER_TAG_RE.sub("", node.html or "").strip()


def parse_decimal(text: str | None) -> Decimal:
    """
    Parse a price written with either decimal separator.

    "129.99", "129,99", "1 299,99 zł" and "1.299,99" all parse; anything
    unparsable gives 0.

    Args:
        text: Raw price text

    Returns:
        Non-negative Decimal
    """
    if not text:
        return Decimal("0")

    cleaned = re.sub(r"[^\d,.]", "", text)
    if not cleaned:
        return Decimal("0")

    if "," in cleaned and "." in cleaned:
        # The right-most separator is the decimal one
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        head, _, tail = cleaned.rpartition(",")
        cleaned = head.replace(",", "") + "." + tail
    elif cleaned.count(".") > 1:
        head, _, tail = cleaned.rpartition(".")
        cleaned = head.replace(".", "") + ("." + tail if len(tail) != 3 else tail)

    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return Decimal("0")
    return value if value >= 0 else Decimal("0")


def parse_count(text: str | None) -> int:
    """First integer in text, allowing space or NBSP thousands separators."""
    if not text:
        return 0
    match = re.search(r"\d[\d\s]*", text)
    if not match:
        return 0
    digits = re.sub(r"\D", "", match.group(0))
    return int(digits) if digits else 0
