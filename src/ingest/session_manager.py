"""Per-session cookie affinity for proxied requests."""

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

import httpx

from src.config import settings
from src.ingest.proxy_manager import ProxyCredential

logger = logging.getLogger(__name__)

DEFAULT_SESSION_KEY = "default"

ClientFactory = Callable[[ProxyCredential], httpx.AsyncClient]


def default_client_factory(credential: ProxyCredential) -> httpx.AsyncClient:
    """Build an httpx client routed through the credential's proxy."""
    return httpx.AsyncClient(
        proxy=credential.url,
        follow_redirects=True,
        verify=False,  # the super-proxy re-signs TLS
        timeout=httpx.Timeout(settings.scrape_request_timeout_ms / 1000),
    )


@dataclass
class Session:
    """One browsing session: a cookie jar plus the clients that share it."""

    key: str
    cookies: httpx.Cookies = field(default_factory=httpx.Cookies)
    clients: dict[str, httpx.AsyncClient] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)
    request_count: int = 0

    async def close(self) -> None:
        for client in self.clients.values():
            await client.aclose()
        self.clients.clear()
        self.cookies.clear()


class SessionManager:
    """Owns sessions by key with a create/reset/destroy lifecycle.

    A session's jar is only ever touched by the branch that owns the key,
    so no locking is done here.
    """

    def __init__(
        self,
        client_factory: Optional[ClientFactory] = None,
        isolation: Optional[bool] = None,
    ):
        self.client_factory = client_factory or default_client_factory
        self.isolation = settings.scrape_session_isolation if isolation is None else isolation
        self._sessions: dict[str, Session] = {}

    @staticmethod
    def new_isolated_key() -> str:
        """Generate a throwaway session key (disables affinity)."""
        return f"session-{int(time.time() * 1000)}-{random.randrange(36 ** 6):06x}"

    def resolve_key(self, key: Optional[str]) -> str:
        key = key or DEFAULT_SESSION_KEY
        if self.isolation and key == DEFAULT_SESSION_KEY:
            return self.new_isolated_key()
        return key

    def get(self, key: str) -> Optional[Session]:
        return self._sessions.get(key)

    def get_or_create(self, key: str) -> Session:
        session = self._sessions.get(key)
        if session is None:
            session = Session(key=key)
            self._sessions[key] = session
            logger.debug(f"Created session {key}")
        return session

    def client_for(self, session: Session, credential: ProxyCredential) -> httpx.AsyncClient:
        """Get the session's client for a credential, creating it on first use."""
        client = session.clients.get(credential.token)
        if client is None:
            client = self.client_factory(credential)
            session.clients[credential.token] = client
        return client

    async def send(
        self,
        session: Session,
        credential: ProxyCredential,
        method: str,
        url: str,
        headers: dict[str, str],
        json_body=None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """Issue one request with the session's cookies and keep what it sets."""
        client = self.client_for(session, credential)
        client.cookies = session.cookies
        session.request_count += 1
        response = await client.request(
            method,
            url,
            headers=headers,
            json=json_body,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            follow_redirects=True,
        )
        session.cookies = httpx.Cookies(client.cookies)
        return response

    async def reset(self, key: str) -> None:
        """Discard a session's cookies and clients; the next request starts fresh."""
        session = self._sessions.pop(key, None)
        if session is not None:
            await session.close()
            logger.info(f"Reset session {key} after {session.request_count} requests")

    async def destroy(self, key: str) -> None:
        session = self._sessions.pop(key, None)
        if session is not None:
            await session.close()

    async def close_all(self) -> None:
        for key in list(self._sessions):
            await self.destroy(key)

    def __len__(self) -> int:
        return len(self._sessions)
