"""Cooperative cancellation for long-running scrape runs.

A token is owned by one run and checked at every suspension point
(before each fetch and each delay), so a stop request halts the run
within one in-flight request.
"""

import asyncio
import logging
import signal
from typing import Optional

from src.ingest.errors import CrawlCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cancellation flag with an interruptible sleep.

    Usage:
        token = CancellationToken()
        token.install_signal_handlers()

        await token.sleep(1.5)      # raises CrawlCancelled once cancelled
        token.raise_if_cancelled()
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            logger.warning(f"Cancellation requested: {reason}")
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CrawlCancelled(self.reason or "cancelled")

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first.

        Raises:
            CrawlCancelled: If the token is or becomes cancelled
        """
        self.raise_if_cancelled()
        if seconds > 0:
            try:
                await asyncio.wait_for(self._event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass
        else:
            await asyncio.sleep(0)
        self.raise_if_cancelled()

    def install_signal_handlers(self) -> "CancellationToken":
        """Cancel on SIGINT/SIGTERM. Must be called from a running loop.

        Returns:
            Self for chaining
        """
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.cancel, f"signal {sig.name}")
            except (NotImplementedError, RuntimeError):
                # Windows event loops do not support add_signal_handler
                logger.debug(f"Signal handler for {sig.name} not installed")
        return self
