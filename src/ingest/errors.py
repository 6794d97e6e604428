"""Exception types raised by the scraping pipeline."""

from typing import Optional


class ScrapeError(RuntimeError):
    """Base class for scraping failures."""
    pass


class NoCredentialsError(ScrapeError):
    """Raised when no proxy credentials are configured."""

    def __init__(self):
        super().__init__("No proxy tokens configured")


class FetchExhausted(ScrapeError):
    """Raised when a URL still fails after every retry attempt.

    The last underlying failure is chained as ``__cause__``.
    """

    def __init__(self, url: str, attempts: int, last_status: Optional[int] = None):
        detail = f"status {last_status}" if last_status is not None else "no response"
        super().__init__(f"Failed to fetch {url} after {attempts} attempts ({detail})")
        self.url = url
        self.attempts = attempts
        self.last_status = last_status


class RootUnreachableError(ScrapeError):
    """Raised when the crawl root cannot be fetched or yields nothing."""
    pass


class CrawlCancelled(ScrapeError):
    """Raised at a suspension point after cancellation was requested."""
    pass


class SurrogateIdConflict(ScrapeError):
    """Raised when a new natural ID arrives with a surrogate ID already in use."""

    def __init__(self, kind: str, natural_id: str, surrogate_id: int, owner: str):
        super().__init__(
            f"Surrogate ID {surrogate_id} of {kind} {natural_id} already belongs to {owner}"
        )
        self.natural_id = natural_id
        self.surrogate_id = surrogate_id
        self.owner = owner
