"""Application configuration using Pydantic settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # App Settings
    log_level: str = "INFO"
    log_dir: str = "logs"
    metrics_port: int = 0                    # Prometheus exporter port, 0 disables it

    # Catalog site
    catalog_base_url: str = "https://allegro.pl"
    catalog_root_path: str = "/kategoria/czesci-samochodowe-620"
    catalog_root_id: str = "620"
    catalog_root_name: str = "Części samochodowe"

    # ==========================================================================
    # Proxy Settings
    # ==========================================================================
    proxy_tokens: str = ""                   # Comma separated credential list
    proxy_token: str = ""                    # Single credential fallback
    super_proxy_host: str = "proxy.scrape.do"
    super_proxy_port: int = 8080
    super_proxy_password: str = "super=true"

    # ==========================================================================
    # Transport Settings
    # ==========================================================================
    scrape_user_agent: Optional[str] = None  # Overrides the random UA pool
    scrape_max_retries: int = 3              # Total attempts per URL
    scrape_request_delay_ms: int = 2000      # Base retry delay
    scrape_request_delay_jitter_ms: Optional[int] = 1000  # Jitter ceiling
    scrape_request_timeout_ms: int = 45000
    scrape_product_timeout_ms: int = 60000
    scrape_session_isolation: bool = False   # Fresh session per call on the default key
    global_min_interval_ms: int = 0          # Spacing shared by all concurrent branches

    # ==========================================================================
    # Category Crawl Settings
    # ==========================================================================
    crawl_max_depth: int = 6
    crawl_max_nodes: int = 0                 # 0 = unbounded
    crawl_concurrency: int = 1               # Sibling subtrees walked in parallel
    crawl_sibling_delay_ms: int = 1000       # Between children of the root
    crawl_deep_delay_ms: int = 500           # Between deeper siblings

    # ==========================================================================
    # Product Pipeline Settings
    # ==========================================================================
    max_products_per_category: int = 0       # 0 = unbounded
    max_pages_per_category: int = 0          # 0 = unbounded
    product_delay_base_ms: int = 3500
    product_delay_jitter_ms: int = 2000
    product_delay_min_ms: int = 500
    product_backoff_factor: float = 2.0      # Applied after a failed product
    page_delay_multiplier: float = 1.5
    category_delay_multiplier: float = 2.0
    product_id_start: int = 10000
    category_id_start: int = 1

    # Storage / export
    database_url: str = "sqlite+aiosqlite:///data/catalog.db"
    results_dir: str = "results"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def catalog_root_url(self) -> str:
        return self.catalog_base_url.rstrip("/") + self.catalog_root_path

    def proxy_token_list(self) -> list[str]:
        """Parse configured proxy credentials, multi-token list first."""
        tokens = [t.strip() for t in self.proxy_tokens.split(",") if t.strip()]
        if tokens:
            return tokens
        if self.proxy_token.strip():
            return [self.proxy_token.strip()]
        return []


settings = Settings()
