"""Proxied HTTP transport with session affinity and retry policy."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx

from src import metrics
from src.config import settings
from src.ingest.cancellation import CancellationToken
from src.ingest.errors import FetchExhausted, NoCredentialsError
from src.ingest.header_builder import HeaderBuilder
from src.ingest.proxy_manager import ProxyRotator
from src.ingest.rate_limiter import RateLimiter
from src.ingest.session_manager import DEFAULT_SESSION_KEY, SessionManager

logger = logging.getLogger(__name__)

# Retryable exceptions (transport errors)
RETRYABLE_EXC = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    httpx.ProxyError,
)

# Statuses that suggest the session was flagged; its cookies are dropped
SESSION_RESET_STATUSES = frozenset({401, 403, 429, 430, 431, 502, 503, 504})

# Jitter ceiling used when none is configured
MAX_DEFAULT_JITTER_S = 2.0


class RetryableResponseError(RuntimeError):
    """Attempt-level failure for a response that is not usable."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass
class FetchOptions:
    """Per-call overrides; unset values fall back to the transport defaults."""

    session_key: Optional[str] = None
    pinned_credential: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout_s: Optional[float] = None
    max_retries: Optional[int] = None
    base_delay_s: Optional[float] = None
    jitter_max_s: Optional[float] = None


def compute_backoff(
    failures: int,
    base_delay: float,
    jitter_max: float,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Delay before the next attempt after ``failures`` failed attempts.

    Grows as ``base * 2^(failures-1)`` plus uniform jitter in ``[0, jitter_max]``.
    """
    rng = rng or random
    exponent = max(0, failures - 1)
    jitter = rng.uniform(0, jitter_max) if jitter_max > 0 else 0.0
    return base_delay * (2 ** exponent) + jitter


class ProxiedTransport:
    """Fetches pages through rotating proxy credentials.

    Callers only ever see a body or ``FetchExhausted``; individual retry
    attempts are logged, not surfaced.
    """

    def __init__(
        self,
        rotator: ProxyRotator,
        sessions: Optional[SessionManager] = None,
        header_builder: Optional[HeaderBuilder] = None,
        rate_limiter: Optional[RateLimiter] = None,
        cancel_token: Optional[CancellationToken] = None,
        max_retries: Optional[int] = None,
        base_delay_s: Optional[float] = None,
        jitter_max_s: Optional[float] = None,
        timeout_s: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.rotator = rotator
        self.sessions = sessions or SessionManager()
        self.header_builder = header_builder or HeaderBuilder()
        self.cancel_token = cancel_token or CancellationToken()
        self.rate_limiter = rate_limiter or RateLimiter(cancel_token=self.cancel_token)
        self.max_retries = max_retries if max_retries is not None else settings.scrape_max_retries
        self.base_delay_s = (
            base_delay_s if base_delay_s is not None else settings.scrape_request_delay_ms / 1000
        )
        if jitter_max_s is None and settings.scrape_request_delay_jitter_ms is not None:
            jitter_max_s = settings.scrape_request_delay_jitter_ms / 1000
        self.jitter_max_s = jitter_max_s
        self.timeout_s = (
            timeout_s if timeout_s is not None else settings.scrape_request_timeout_ms / 1000
        )
        self._sleep = sleep or self.cancel_token.sleep
        self._rng = rng or random.Random()

    def _jitter_for(self, base_delay: float, override: Optional[float]) -> float:
        if override is not None:
            return override
        if self.jitter_max_s is not None:
            return self.jitter_max_s
        return min(base_delay, MAX_DEFAULT_JITTER_S)

    async def get(self, url: str, options: Optional[FetchOptions] = None) -> str:
        """
        GET a page body.

        Args:
            url: URL to fetch
            options: Session, credential, header and retry overrides

        Returns:
            Response body text

        Raises:
            FetchExhausted: If every attempt failed
            NoCredentialsError: If no proxy credential is available
            CrawlCancelled: If the run was cancelled
        """
        return await self._request("GET", url, options or FetchOptions())

    async def post(self, url: str, json_body: Any, options: Optional[FetchOptions] = None) -> str:
        """POST a JSON body; same contract as ``get``."""
        options = options or FetchOptions()
        headers = {"Content-Type": "application/json", **options.headers}
        options = FetchOptions(**{**options.__dict__, "headers": headers})
        return await self._request("POST", url, options, json_body=json_body)

    async def _request(
        self,
        method: str,
        url: str,
        options: FetchOptions,
        json_body: Any = None,
    ) -> str:
        max_retries = max(1, options.max_retries if options.max_retries is not None else self.max_retries)
        base_delay = options.base_delay_s if options.base_delay_s is not None else self.base_delay_s
        jitter_max = self._jitter_for(base_delay, options.jitter_max_s)
        timeout = options.timeout_s if options.timeout_s is not None else self.timeout_s
        session_key = self.sessions.resolve_key(options.session_key)
        ephemeral = session_key != (options.session_key or DEFAULT_SESSION_KEY)

        try:
            return await self._attempt(
                method, url, options, json_body, session_key, max_retries, base_delay, jitter_max, timeout
            )
        finally:
            if ephemeral:
                await self.sessions.destroy(session_key)

    async def _attempt(
        self,
        method: str,
        url: str,
        options: FetchOptions,
        json_body: Any,
        session_key: str,
        max_retries: int,
        base_delay: float,
        jitter_max: float,
        timeout: float,
    ) -> str:
        last_exc: Exception | None = None
        last_status: Optional[int] = None

        for attempt in range(1, max_retries + 1):
            self.cancel_token.raise_if_cancelled()
            credential = await self.rotator.get_next(options.pinned_credential)
            await self.rate_limiter.acquire()

            session = self.sessions.get_or_create(session_key)
            headers = self.header_builder.build_headers(url, overrides=options.headers)
            started = time.monotonic()

            try:
                response = await self.sessions.send(
                    session,
                    credential,
                    method,
                    url,
                    headers=headers,
                    json_body=json_body,
                    timeout=timeout,
                )
                metrics.fetch_duration_seconds.labels(method=method).observe(
                    time.monotonic() - started
                )
                status = response.status_code
                last_status = status

                if 200 <= status < 400 and response.content:
                    metrics.fetch_attempts_total.labels(method=method, outcome="success").inc()
                    logger.debug(
                        f"{method} {url} -> {status} via {credential.label} "
                        f"(session {session_key}, attempt {attempt})"
                    )
                    return response.text

                if 200 <= status < 400:
                    raise RetryableResponseError(f"empty body from {url}", status)
                raise RetryableResponseError(f"status {status} from {url}", status)

            except (RetryableResponseError, *RETRYABLE_EXC) as e:
                last_exc = e
                outcome = "bad_response" if isinstance(e, RetryableResponseError) else "transport_error"
                metrics.fetch_attempts_total.labels(method=method, outcome=outcome).inc()

                status = getattr(e, "status", None)
                if status in SESSION_RESET_STATUSES:
                    metrics.session_resets_total.labels(status=str(status)).inc()
                    logger.warning(f"Block-suspected status {status}, resetting session {session_key}")
                    await self.sessions.reset(session_key)

                if attempt >= max_retries:
                    break

                sleep_s = compute_backoff(attempt, base_delay, jitter_max, self._rng)
                logger.warning(
                    f"{method} {url} failed ({type(e).__name__}: {e}), retrying in {sleep_s:.1f}s "
                    f"(attempt {attempt}/{max_retries})"
                )
                self.cancel_token.raise_if_cancelled()
                await self._sleep(sleep_s)

        metrics.fetch_exhausted_total.inc()
        logger.error(f"{method} {url} failed after {max_retries} attempts")
        raise FetchExhausted(url, max_retries, last_status) from last_exc

    async def reset_session(self, session_key: str) -> None:
        await self.sessions.reset(session_key)

    async def close(self) -> None:
        await self.sessions.close_all()


__all__ = [
    "FetchExhausted",
    "FetchOptions",
    "NoCredentialsError",
    "ProxiedTransport",
    "SESSION_RESET_STATUSES",
    "compute_backoff",
]
