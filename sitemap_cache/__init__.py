"""
Sitemap Cache - Concurrent sitemap import with a local indexed cache.

Modules:
    - config: Centralized configuration
    - errors: Exception taxonomy and error policies
    - models: Records, progress and event dataclasses
    - store: SQLite page/source store with path indices
    - fetcher: httpx-based sitemap analysis and batch fetching
    - cancellation: Cooperative cancellation token
    - orchestrator: Work-pulling import pool (main entry point)
    - search: Prefix and fuzzy path search
    - freshness: TTL policy and background refresh
    - worker: Background thread with a message protocol

Import Flow:
    Analyze → Partition → Pool (fetch batch → upsert) → Recount → SourceMeta

Usage:
    from sitemap_cache import ImportOrchestrator, SearchEngine

    total = await ImportOrchestrator().import_source(url)
    SearchEngine().search_fuzzy("prod", limit=10)
"""

from .freshness import FreshnessManager
from .orchestrator import ImportOrchestrator
from .search import SearchEngine
from .store import PageStore
from .worker import ImportWorker

__all__ = [
    "FreshnessManager",
    "ImportOrchestrator",
    "ImportWorker",
    "PageStore",
    "SearchEngine",
]
