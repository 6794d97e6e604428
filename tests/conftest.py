"""Shared fixtures: a scripted fake site behind an httpx MockTransport."""

from typing import Callable, Optional

import httpx
import pytest

from src.ingest.cancellation import CancellationToken
from src.ingest.header_builder import HeaderBuilder
from src.ingest.http_client import ProxiedTransport
from src.ingest.proxy_manager import ProxyRotator
from src.ingest.rate_limiter import RateLimiter
from src.ingest.session_manager import SessionManager

BASE_URL = "https://allegro.pl"


class FakeSite:
    """Serves canned responses keyed by path (with query string).

    A route may be a single canned response or a list consumed one per
    request (the last entry repeats). A response is an HTML string, a
    ``(status, body)`` / ``(status, body, headers)`` tuple, an exception
    instance to raise, or a callable taking the request.
    """

    def __init__(self):
        self.routes: dict[str, object] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, route) -> None:
        self.routes[path] = route

    def requests_for(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.raw_path.decode() == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = request.url.raw_path.decode()
        route = self.routes.get(key)
        if isinstance(route, list):
            served = len(self.requests_for(key)) - 1
            route = route[min(served, len(route) - 1)]
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            route = route(request)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, httpx.Response):
            return route
        if isinstance(route, tuple):
            status, body, *rest = route
            return httpx.Response(status, text=body, headers=rest[0] if rest else None)
        return httpx.Response(200, text=route)


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


def build_transport(
    site: FakeSite,
    tokens: tuple[str, ...] = ("token-a", "token-b"),
    max_retries: int = 3,
    base_delay_s: float = 0.0,
    jitter_max_s: float = 0.0,
    cancel_token: Optional[CancellationToken] = None,
    sleep: Optional[Callable] = None,
    isolation: bool = False,
    user_agent: str = "",
) -> ProxiedTransport:
    token = cancel_token or CancellationToken()
    sessions = SessionManager(
        client_factory=lambda credential: httpx.AsyncClient(
            transport=httpx.MockTransport(site.handler)
        ),
        isolation=isolation,
    )
    return ProxiedTransport(
        rotator=ProxyRotator(tokens=list(tokens), host="proxy.test", port=8080, password="pw"),
        sessions=sessions,
        header_builder=HeaderBuilder(default_user_agent=user_agent),
        rate_limiter=RateLimiter(min_interval=0, cancel_token=token),
        cancel_token=token,
        max_retries=max_retries,
        base_delay_s=base_delay_s,
        jitter_max_s=jitter_max_s,
        timeout_s=5,
        sleep=sleep,
    )


@pytest.fixture
def transport_factory(site):
    created = []

    def factory(**kwargs) -> ProxiedTransport:
        transport = build_transport(site, **kwargs)
        created.append(transport)
        return transport

    yield factory


# --------------------------------------------------------------------------
# HTML builders
# --------------------------------------------------------------------------

def category_page(title: str, children: list[tuple[str, str]], count: Optional[int] = None) -> str:
    """Category page with one link per ``(natural_id, name)`` child."""
    items = "".join(
        f'<li class="category-item"><a href="/kategoria/{name.lower().replace(" ", "-")}-{cid}">'
        f"{name}</a></li>"
        for cid, name in children
    )
    counter = f'<span data-testid="results-count">{count} wyników</span>' if count else ""
    return (
        f"<html><head><title>{title} - Allegro</title></head><body>"
        f"<h1>{title}</h1>{counter}<ul>{items}</ul></body></html>"
    )


def listing_page(offer_hrefs: list[str]) -> str:
    articles = "".join(
        f'<article><h2><a href="{href}">Offer</a></h2></article>' for href in offer_hrefs
    )
    return (
        '<html><body><div data-box-name="product listing items">'
        f"{articles}</div></body></html>"
    )


def offer_page(name: str, price: str = "129.99", condition: str = "NewCondition") -> str:
    return f"""
    <html><head>
      <meta itemprop="name" content="{name}">
      <meta itemprop="price" content="{price}">
      <meta itemprop="priceCurrency" content="PLN">
      <meta itemprop="itemCondition" content="https://schema.org/{condition}">
    </head><body>
      <h1>{name}</h1>
      <div data-box-name="showoffer.gallery">
        <img src="https://a.allegroimg.com/s256/aa/image.jpg"
             data-srcset="https://a.allegroimg.com/s256/aa/image.jpg 2x">
      </div>
    </body></html>
    """
