"""Run-wide request spacing shared by every concurrent branch."""

import asyncio
import logging
import random
import time
from typing import Optional

from src.config import settings
from src.ingest.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class RateLimiter:
    """Minimum-interval limiter with jitter.

    One instance belongs to one run and is passed to every transport and
    traversal task of that run, so concurrent branches share a single
    request budget.
    """

    def __init__(
        self,
        min_interval: Optional[float] = None,
        jitter: float = 0.0,
        cancel_token: Optional[CancellationToken] = None,
    ):
        """
        Args:
            min_interval: Minimum seconds between two request starts
                          (defaults to config)
            jitter: Random extra spacing range in seconds
            cancel_token: Token checked while waiting
        """
        if min_interval is None:
            min_interval = settings.global_min_interval_ms / 1000
        self.min_interval = max(0.0, min_interval)
        self.jitter = max(0.0, jitter)
        self.cancel_token = cancel_token or CancellationToken()
        self._lock = asyncio.Lock()
        self._last_request: float = 0.0

    async def acquire(self) -> None:
        """Wait until the next request slot is free."""
        async with self._lock:
            if self.min_interval <= 0 and self.jitter <= 0:
                self.cancel_token.raise_if_cancelled()
                self._last_request = time.monotonic()
                return

            interval = self.min_interval
            if self.jitter > 0:
                interval += random.uniform(0, self.jitter)

            elapsed = time.monotonic() - self._last_request
            wait_needed = max(0.0, interval - elapsed)
            if wait_needed > 0:
                logger.debug(f"Rate limiter waiting {wait_needed:.2f}s")
            await self.cancel_token.sleep(wait_needed)

            self._last_request = time.monotonic()

    async def pause(self, seconds: float) -> None:
        """Throttling delay between two fetches of one traversal."""
        await self.cancel_token.sleep(seconds)
