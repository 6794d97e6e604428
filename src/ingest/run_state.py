"""State shared by every branch of one run: ID counters, dedup set, tallies.

All of it is owned by a run and passed explicitly; nothing here is a
module-level singleton, so concurrent runs (and tests) never share IDs.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class SurrogateIdCounter:
    """Monotonically increasing ID source guarded by a lock."""

    def __init__(self, start: int = 1):
        self._next = start
        self._lock = asyncio.Lock()

    async def next(self) -> int:
        async with self._lock:
            value = self._next
            self._next += 1
            return value

    @property
    def peek(self) -> int:
        return self._next


class DedupRegistry(Generic[T]):
    """Natural ID -> record map with first-discovery-wins insertion.

    ``claim`` is atomic: of two branches racing for the same ID, exactly one
    builds and stores a record; the other gets ``None``.
    """

    def __init__(self, max_size: int = 0):
        self.max_size = max_size
        self._records: dict[str, T] = {}
        self._lock = asyncio.Lock()

    @property
    def is_full(self) -> bool:
        return 0 < self.max_size <= len(self._records)

    async def claim(self, natural_id: str, factory: Callable[[], Any]) -> Optional[T]:
        """
        Insert a record for ``natural_id`` unless one exists or the cap is hit.

        Args:
            natural_id: Site-assigned ID
            factory: Zero-argument callable (sync or async) building the record

        Returns:
            The new record, or None when the ID was already claimed or the
            registry is full
        """
        async with self._lock:
            if natural_id in self._records or self.is_full:
                return None
            record = factory()
            if asyncio.iscoroutine(record):
                record = await record
            self._records[natural_id] = record
            return record

    def get(self, natural_id: str) -> Optional[T]:
        return self._records.get(natural_id)

    def __contains__(self, natural_id: str) -> bool:
        return natural_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def values(self) -> list[T]:
        """Records in emission order."""
        return list(self._records.values())


@dataclass
class RunStats:
    """Discovered vs failed tallies reported at the end of a run."""

    categories_discovered: int = 0
    branches_failed: int = 0
    products_scraped: int = 0
    products_failed: int = 0
    pages_failed: int = 0

    def summary(self) -> str:
        return (
            f"categories={self.categories_discovered} branches_failed={self.branches_failed} "
            f"products={self.products_scraped} products_failed={self.products_failed} "
            f"pages_failed={self.pages_failed}"
        )
