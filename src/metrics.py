"""Prometheus metrics for scrape runs."""

import logging

from prometheus_client import Counter, Histogram, Info, start_http_server

logger = logging.getLogger(__name__)

# Application info
app_info = Info("catalog_scraper", "Catalog scraper application info")
app_info.info({"version": "0.1.0", "name": "catalog-scraper"})

# Transport metrics
fetch_attempts_total = Counter(
    "fetch_attempts_total",
    "Total number of HTTP attempts issued through the proxy",
    ["method", "outcome"],
)

fetch_exhausted_total = Counter(
    "fetch_exhausted_total",
    "Total number of URLs that failed after all retries",
)

session_resets_total = Counter(
    "session_resets_total",
    "Total number of sessions discarded after a block-suspected status",
    ["status"],
)

fetch_duration_seconds = Histogram(
    "fetch_duration_seconds",
    "Time spent on a single HTTP attempt",
    ["method"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

# Crawl metrics
categories_discovered_total = Counter(
    "categories_discovered_total",
    "Total number of categories emitted by the crawler",
)

branches_failed_total = Counter(
    "branches_failed_total",
    "Total number of category branches abandoned after fetch failures",
)

# Product metrics
products_scraped_total = Counter(
    "products_scraped_total",
    "Total number of product records extracted",
)

products_failed_total = Counter(
    "products_failed_total",
    "Total number of product pages skipped after fetch failures",
)


def start_metrics_server(port: int) -> bool:
    """Serve /metrics on ``port`` for the lifetime of the process; 0 disables it."""
    if port <= 0:
        return False
    start_http_server(port)
    logger.info(f"Prometheus metrics exposed on :{port}/metrics")
    return True
