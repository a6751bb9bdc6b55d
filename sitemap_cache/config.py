"""
Cache Configuration - Centralized settings for the sitemap cache.

Uses environment variables with sensible defaults. The database path is
resolved to an absolute path for reliability.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


SIX_HOURS_MS = 1000 * 60 * 60 * 6


@dataclass
class CacheConfig:
    """
    Configuration for the import-and-cache engine.

    The database defaults to ~/.sitemap-cache/pages.db.
    Import defaults are tuned for sitemap indexes with thousands of children.
    """

    # --- Paths ---
    db_path: Path = field(default_factory=lambda: Path.home() / ".sitemap-cache" / "pages.db")

    # --- Import ---
    group_size: int = 20            # Child sitemaps per batch request
    concurrency: int = 4            # Batch requests in flight
    ttl_ms: int = SIX_HOURS_MS      # Freshness window written into SourceMeta
    sample_per_batch: int = 50      # Preview rows emitted per batch event
    write_chunk_size: int = 1000    # Rows per write transaction

    # --- Reads ---
    sample_size: int = 200          # Rows returned by cache loads
    fuzzy_visit_cap: int = 800      # Max index entries visited by the fuzzy fallback
    substring_visit_cap: int = 1000 # Default cap for standalone substring scans

    # --- HTTP ---
    http_timeout: float = 20.0
    user_agent: str = "sitemap-cache/0.1"

    def __post_init__(self):
        """Ensure the database path is absolute and its directory exists."""
        self.db_path = Path(self.db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """
        Create config from environment variables.

        Supported env vars:
            SITEMAP_CACHE_DB_PATH: Path to SQLite database
            SITEMAP_CACHE_GROUP_SIZE: Child sitemaps per batch
            SITEMAP_CACHE_CONCURRENCY: Parallel batch requests
            SITEMAP_CACHE_TTL_MS: Cache freshness window in milliseconds
            SITEMAP_CACHE_SAMPLE_PER_BATCH: Preview rows per batch event
            SITEMAP_CACHE_HTTP_TIMEOUT: Per-request timeout in seconds
        """
        config = cls()

        if db_path := os.environ.get("SITEMAP_CACHE_DB_PATH"):
            config.db_path = Path(db_path)

        if group_size := os.environ.get("SITEMAP_CACHE_GROUP_SIZE"):
            config.group_size = int(group_size)

        if concurrency := os.environ.get("SITEMAP_CACHE_CONCURRENCY"):
            config.concurrency = int(concurrency)

        if ttl_ms := os.environ.get("SITEMAP_CACHE_TTL_MS"):
            config.ttl_ms = int(ttl_ms)

        if sample := os.environ.get("SITEMAP_CACHE_SAMPLE_PER_BATCH"):
            config.sample_per_batch = int(sample)

        if timeout := os.environ.get("SITEMAP_CACHE_HTTP_TIMEOUT"):
            config.http_timeout = float(timeout)

        config.__post_init__()
        return config


# Singleton default config
_default_config: CacheConfig | None = None


def get_config() -> CacheConfig:
    """Get the default configuration (singleton)."""
    global _default_config
    if _default_config is None:
        _default_config = CacheConfig.from_env()
    return _default_config


def set_config(config: CacheConfig) -> None:
    """Override the default configuration (for testing)."""
    global _default_config
    _default_config = config
