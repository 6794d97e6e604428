"""Proxy credential rotation for the super-proxy gateway."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from src.config import settings
from src.ingest.errors import NoCredentialsError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProxyCredential:
    """One proxy credential; the token is the gateway username."""

    token: str
    host: str
    port: int
    password: str

    @property
    def url(self) -> str:
        """Get proxy URL for httpx."""
        return f"http://{self.token}:{self.password}@{self.host}:{self.port}"

    @property
    def label(self) -> str:
        """Short, log-safe identifier."""
        return f"{self.token[:6]}..." if len(self.token) > 6 else self.token


class ProxyRotator:
    """Round-robin rotation over configured proxy credentials."""

    def __init__(
        self,
        tokens: Optional[list[str]] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        password: Optional[str] = None,
    ):
        self.host = host or settings.super_proxy_host
        self.port = port or settings.super_proxy_port
        self.password = password if password is not None else settings.super_proxy_password
        if tokens is None:
            tokens = settings.proxy_token_list()
        self._credentials: list[ProxyCredential] = [self._make(t) for t in tokens]
        self._current_index: int = 0
        self._lock = asyncio.Lock()

        logger.info(f"Loaded {len(self._credentials)} proxy credentials")

    def _make(self, token: str) -> ProxyCredential:
        return ProxyCredential(
            token=token,
            host=self.host,
            port=self.port,
            password=self.password,
        )

    @property
    def credential_count(self) -> int:
        return len(self._credentials)

    async def get_next(self, pinned: Optional[str] = None) -> ProxyCredential:
        """
        Get the next credential in rotation, or the pinned one.

        Args:
            pinned: Token to use instead of rotating. Tokens that are not in
                    the configured list are still honored.

        Returns:
            ProxyCredential to route the request through

        Raises:
            NoCredentialsError: If no credentials are configured and none is pinned
        """
        if pinned:
            for credential in self._credentials:
                if credential.token == pinned:
                    return credential
            return self._make(pinned)

        async with self._lock:
            if not self._credentials:
                raise NoCredentialsError()
            credential = self._credentials[self._current_index % len(self._credentials)]
            self._current_index += 1
            return credential
