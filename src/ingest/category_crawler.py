"""Depth-bounded category tree crawler.

Walks a category tree from one root page, one generic recursive step per
node: fetch, extract child links, emit unseen children, recurse while the
children are still above the depth bound.

Known limitation: when two branches link to the same category, the branch
whose page is processed first owns it ("first discovery wins"); its parent
is never revisited.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from src import metrics
from src.config import settings
from src.db.sink import Sink
from src.ingest.base import Category
from src.ingest.errors import FetchExhausted, RootUnreachableError
from src.ingest.extractors import (
    CategoryLink,
    extract_category_links,
    extract_category_title,
    extract_natural_id,
    extract_offer_count,
)
from src.ingest.http_client import FetchOptions, ProxiedTransport
from src.ingest.run_state import DedupRegistry, RunStats, SurrogateIdCounter
from src.normalize.translations import slugify, translate_name, translated_slug

logger = logging.getLogger(__name__)

ROOT_DEPTH = 1
ROOT_SESSION_KEY = "crawl-root"


@dataclass(frozen=True)
class Branch:
    """Identity a subtree is crawled under."""

    session_key: str
    credential: Optional[str] = None


@dataclass
class CrawlResult:
    """Emitted categories in emission order plus failure details."""

    categories: list[Category]
    stats: RunStats
    failed_urls: list[str] = field(default_factory=list)

    @property
    def root(self) -> Category:
        return self.categories[0]

    @property
    def leaves(self) -> list[Category]:
        """Categories no other emitted category points to as parent."""
        parents = {c.parent_natural_id for c in self.categories if c.parent_natural_id}
        return [c for c in self.categories if c.natural_id not in parents and c.depth > ROOT_DEPTH]

    def level_breakdown(self) -> dict[int, int]:
        breakdown: dict[int, int] = {}
        for category in self.categories:
            breakdown[category.depth] = breakdown.get(category.depth, 0) + 1
        return breakdown


class CategoryCrawler:
    """Discovers the category tree below one root page."""

    def __init__(
        self,
        transport: ProxiedTransport,
        sink: Optional[Sink] = None,
        category_ids: Optional[SurrogateIdCounter] = None,
        stats: Optional[RunStats] = None,
        base_url: Optional[str] = None,
        max_depth: Optional[int] = None,
        max_nodes: Optional[int] = None,
        sibling_delay_s: Optional[float] = None,
        deep_delay_s: Optional[float] = None,
        concurrency: Optional[int] = None,
    ):
        self.transport = transport
        self.sink = sink
        self.category_ids = category_ids or SurrogateIdCounter(settings.category_id_start)
        self.stats = stats or RunStats()
        self.base_url = (base_url or settings.catalog_base_url).rstrip("/")
        self.max_depth = max_depth if max_depth is not None else settings.crawl_max_depth
        if self.max_depth < ROOT_DEPTH:
            raise ValueError(f"max_depth must be at least {ROOT_DEPTH} (the root depth), got {self.max_depth}")
        self.max_nodes = max_nodes if max_nodes is not None else settings.crawl_max_nodes
        self.sibling_delay_s = (
            sibling_delay_s if sibling_delay_s is not None else settings.crawl_sibling_delay_ms / 1000
        )
        self.deep_delay_s = (
            deep_delay_s if deep_delay_s is not None else settings.crawl_deep_delay_ms / 1000
        )
        self.concurrency = max(1, concurrency if concurrency is not None else settings.crawl_concurrency)
        self.registry: DedupRegistry[Category] = DedupRegistry(self.max_nodes)
        self.failed_urls: list[str] = []

    async def crawl(self, root_url: Optional[str] = None) -> CrawlResult:
        """
        Crawl the tree below ``root_url``.

        Args:
            root_url: Root category page (defaults to the configured root)

        Returns:
            CrawlResult with categories in emission order

        Raises:
            RootUnreachableError: If the root page fails or has no child links
            CrawlCancelled: If the run is cancelled
        """
        root_url = root_url or settings.catalog_root_url
        self.registry = DedupRegistry(self.max_nodes)
        self.failed_urls = []

        logger.info(f"Starting category crawl at {root_url} (max depth {self.max_depth})")
        try:
            html = await self.transport.get(root_url, FetchOptions(session_key=ROOT_SESSION_KEY))
        except FetchExhausted as e:
            raise RootUnreachableError(f"Root category unreachable: {root_url}") from e

        natural_id = extract_natural_id(root_url) or settings.catalog_root_id
        name = extract_category_title(html) or settings.catalog_root_name
        root = await self.registry.claim(
            natural_id,
            lambda: self._build(natural_id, name, root_url, ROOT_DEPTH, None, extract_offer_count(html)),
        )
        await self._emit(root)

        children = await self._expand(root, html, Branch(ROOT_SESSION_KEY))
        if not children and self.max_depth > ROOT_DEPTH:
            raise RootUnreachableError(f"No child categories found on root page {root_url}")

        categories = self.registry.values()
        logger.info(
            f"Category crawl finished: {len(categories)} categories, "
            f"{len(self.failed_urls)} failed branches"
        )
        return CrawlResult(categories=categories, stats=self.stats, failed_urls=list(self.failed_urls))

    async def _build(
        self,
        natural_id: str,
        name: str,
        url: str,
        depth: int,
        parent_id: Optional[str],
        offer_count: int,
    ) -> Category:
        return Category(
            natural_id=natural_id,
            surrogate_id=await self.category_ids.next(),
            name=name,
            translated_name=translate_name(name),
            slug=slugify(name),
            translated_slug=translated_slug(name),
            source_url=url,
            depth=depth,
            parent_natural_id=parent_id,
            has_offers=offer_count > 0 or depth >= self.max_depth,
            offer_count_hint=offer_count,
        )

    async def _emit(self, category: Category) -> None:
        self.stats.categories_discovered += 1
        metrics.categories_discovered_total.inc()
        logger.debug(
            f"{'  ' * (category.depth - 1)}{category.name} ({category.natural_id}) "
            f"depth={category.depth} parent={category.parent_natural_id}"
        )
        if self.sink is not None:
            await self.sink.upsert_category(category)

    async def _claim_children(self, parent: Category, links: list[CategoryLink]) -> list[Category]:
        children = []
        for link in links:
            if self.registry.is_full:
                logger.info(f"Node cap of {self.max_nodes} reached, not claiming further categories")
                break
            child = await self.registry.claim(
                link.natural_id,
                lambda link=link: self._build(
                    link.natural_id, link.name, link.url, parent.depth + 1,
                    parent.natural_id, link.offer_count,
                ),
            )
            if child is None:
                logger.debug(f"Category {link.natural_id} already discovered, skipping")
                continue
            await self._emit(child)
            children.append(child)
        return children

    async def _expand(self, parent: Category, html: str, branch: Branch) -> list[Category]:
        """Emit the unseen children of ``parent`` and recurse into each."""
        if parent.depth >= self.max_depth:
            return []

        links = extract_category_links(html, self.base_url, current_id=parent.natural_id)
        children = await self._claim_children(parent, links)
        logger.info(
            f"{parent.name} ({parent.natural_id}): {len(links)} links, {len(children)} new children"
        )

        if parent.depth + 1 >= self.max_depth or not children:
            return children

        delay = self.sibling_delay_s if parent.depth == ROOT_DEPTH else self.deep_delay_s

        if parent.depth == ROOT_DEPTH and self.concurrency > 1:
            await self._visit_concurrently(children, delay)
        else:
            for child in children:
                child_branch = branch if parent.depth > ROOT_DEPTH else await self._new_branch(child)
                await self._visit(child, delay, child_branch)

        return children

    async def _new_branch(self, child: Category) -> Branch:
        credential = await self.transport.rotator.get_next()
        return Branch(session_key=f"branch-{child.natural_id}", credential=credential.token)

    async def _visit_concurrently(self, children: list[Category], delay: float) -> None:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(child: Category) -> None:
            async with semaphore:
                await self._visit(child, delay, await self._new_branch(child))

        tasks = [asyncio.create_task(run(child)) for child in children]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _visit(self, category: Category, delay: float, branch: Branch) -> None:
        owns_session = category.depth == ROOT_DEPTH + 1
        try:
            await self.transport.rate_limiter.pause(delay)
            try:
                html = await self.transport.get(
                    category.source_url,
                    FetchOptions(session_key=branch.session_key, pinned_credential=branch.credential),
                )
            except FetchExhausted as e:
                self.stats.branches_failed += 1
                metrics.branches_failed_total.inc()
                self.failed_urls.append(category.source_url)
                logger.warning(f"Abandoning branch {category.name} ({category.natural_id}): {e}")
                return

            await self._expand(category, html, branch)
        finally:
            if owns_session:
                await self.transport.sessions.destroy(branch.session_key)
