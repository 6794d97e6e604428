"""Desktop user agent pool with browser family detection."""

import logging
import random
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserAgentInfo:
    """User agent with metadata."""
    user_agent: str
    browser: str  # 'chrome', 'edge', 'firefox', 'safari'
    platform: str  # 'Windows', 'macOS', 'Linux', 'Unknown'

    @property
    def is_chromium(self) -> bool:
        return self.browser in ("chrome", "edge")


USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/125.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/125.0.0.0 Safari/537.36 Edg/125.0.0.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/125.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.4.1 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/125.0.0.0 Safari/537.36",
]


def parse_user_agent(ua_string: str) -> UserAgentInfo:
    """Detect browser family and platform from a user agent string."""
    if "Edg/" in ua_string:
        browser = "edge"
    elif "Firefox/" in ua_string:
        browser = "firefox"
    elif "Chrome/" in ua_string:
        browser = "chrome"
    elif "Safari/" in ua_string:
        browser = "safari"
    else:
        browser = "unknown"

    if "Windows" in ua_string:
        platform = "Windows"
    elif "Mac OS X" in ua_string or "Macintosh" in ua_string:
        platform = "macOS"
    elif "Linux" in ua_string:
        platform = "Linux"
    else:
        platform = "Unknown"

    return UserAgentInfo(user_agent=ua_string, browser=browser, platform=platform)


class UserAgentPool:
    """Small pool of realistic desktop user agents."""

    def __init__(self, user_agents: Optional[list[str]] = None, rng: Optional[random.Random] = None):
        self._user_agents = [parse_user_agent(ua) for ua in (user_agents or USER_AGENTS)]
        self._rng = rng or random.Random()

    def __len__(self) -> int:
        return len(self._user_agents)

    def get_random(self) -> UserAgentInfo:
        return self._rng.choice(self._user_agents)

    def get_by_browser(self, browser: str) -> Optional[UserAgentInfo]:
        matches = [ua for ua in self._user_agents if ua.browser == browser]
        return self._rng.choice(matches) if matches else None
