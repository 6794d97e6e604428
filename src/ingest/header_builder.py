"""Browser-consistent HTTP header synthesis.

Client-hint headers (``Sec-CH-UA*``) are Chromium-only, so they are
derived from the chosen user agent family and omitted for Firefox and
Safari.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

from src.config import settings
from src.ingest.user_agent_pool import UserAgentInfo, UserAgentPool, parse_user_agent

logger = logging.getLogger(__name__)

ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8"
ACCEPT_LANGUAGE = "pl-PL,pl;q=0.9,en-US;q=0.8,en;q=0.7"

SEC_CH_UA = {
    "edge": '"Chromium";v="125", "Not.A/Brand";v="24", "Microsoft Edge";v="125"',
    "chrome": '"Not.A/Brand";v="24", "Chromium";v="125", "Google Chrome";v="125"',
}
SEC_CH_UA_FALLBACK = '"Not.A/Brand";v="24", "Chromium";v="125"'


def _host(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def _find_header(headers: dict[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    name = name.lower()
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


class HeaderBuilder:
    """Builds request headers consistent with one user agent."""

    def __init__(
        self,
        user_agent_pool: Optional[UserAgentPool] = None,
        default_user_agent: Optional[str] = None,
    ):
        self.user_agent_pool = user_agent_pool or UserAgentPool()
        self.default_user_agent = (
            default_user_agent if default_user_agent is not None else settings.scrape_user_agent
        )

    def resolve_user_agent(self, overrides: dict[str, str]) -> UserAgentInfo:
        """Caller header first, then the configured override, then a random pool entry."""
        explicit = _find_header(overrides, "User-Agent")
        if explicit:
            return parse_user_agent(explicit)
        if self.default_user_agent:
            return parse_user_agent(self.default_user_agent)
        return self.user_agent_pool.get_random()

    def build_headers(
        self,
        url: str,
        overrides: Optional[dict[str, str]] = None,
        referer: Optional[str] = None,
    ) -> dict[str, str]:
        """
        Build headers for a navigation request.

        Args:
            url: Target URL
            overrides: Caller headers, applied last (case-insensitive)
            referer: Referer URL; also read from ``overrides``

        Returns:
            Dict of HTTP headers
        """
        overrides = dict(overrides or {})
        ua = self.resolve_user_agent(overrides)
        referer = referer or _find_header(overrides, "Referer")

        headers = {
            "User-Agent": ua.user_agent,
            "Accept": ACCEPT,
            "Accept-Language": ACCEPT_LANGUAGE,
            "Accept-Encoding": "gzip, deflate",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
            "Connection": "keep-alive",
            "Upgrade-Insecure-Requests": "1",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": self.get_sec_fetch_site(url, referer),
            "Sec-Fetch-User": "?1",
        }
        if referer:
            headers["Referer"] = referer

        caller_hints = any(key.lower().startswith("sec-ch-ua") for key in overrides)
        if ua.is_chromium and not caller_hints:
            headers.update(self.get_client_hints(ua))

        # Caller values replace ours regardless of key casing
        for key, value in overrides.items():
            for existing in [k for k in headers if k.lower() == key.lower()]:
                del headers[existing]
            headers[key] = value

        return headers

    @staticmethod
    def get_client_hints(ua: UserAgentInfo) -> dict[str, str]:
        return {
            "Sec-CH-UA": SEC_CH_UA.get(ua.browser, SEC_CH_UA_FALLBACK),
            "Sec-CH-UA-Mobile": "?0",
            "Sec-CH-UA-Platform": f'"{ua.platform}"',
        }

    @staticmethod
    def get_sec_fetch_site(url: str, referer: Optional[str]) -> str:
        """Get Sec-Fetch-Site header value."""
        if not referer:
            return "none"
        target = _host(url)
        host = _host(referer)
        if target and (host == target or host.endswith("." + target)):
            return "same-origin"
        return "cross-site"
