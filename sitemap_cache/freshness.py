"""
Freshness - TTL policy around cached sources.

Reads are cache-first: a stale source is still served. Expired sources
are refreshed in the background, and a forced refresh re-imports
unconditionally.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Set

from .config import get_config, CacheConfig
from .models import CachedSource, ImportOptions, SourceMeta
from .orchestrator import ImportOrchestrator, now_ms
from .store import PageStore, get_store


logger = logging.getLogger(__name__)


class FreshnessManager:
    """Decides when to (re)run the orchestrator for a source."""

    def __init__(
        self,
        orchestrator: Optional[ImportOrchestrator] = None,
        config: Optional[CacheConfig] = None,
        store: Optional[PageStore] = None,
    ):
        self.config = config or get_config()
        self._store = store or (orchestrator.store if orchestrator else get_store(self.config))
        self._orchestrator = orchestrator or ImportOrchestrator(self.config, store=self._store)
        # Strong references so background refreshes are not garbage collected.
        self._background: Set[asyncio.Task] = set()

    def load(self, url: str, sample_size: Optional[int] = None) -> Optional[CachedSource]:
        """Cached sample and meta for url, stale or not. None if never imported."""
        meta = self._store.get_source(url)
        if meta is None:
            return None
        sample = self._store.sample_by_source(url, sample_size or self.config.sample_size)
        return CachedSource(sample=sample, total=meta.total, meta=meta)

    def list_sources(self) -> List[SourceMeta]:
        return self._store.get_all_sources()

    @staticmethod
    def is_expired(meta: SourceMeta, now: Optional[int] = None) -> bool:
        return (now if now is not None else now_ms()) > meta.expires_at

    async def import_and_cache(
        self,
        url: str,
        options: Optional[ImportOptions] = None,
        sample_size: Optional[int] = None,
    ) -> CachedSource:
        """Run a full import and return a fresh sample."""
        total = await self._orchestrator.import_source(url, options)
        meta = self._store.get_source(url)
        sample = self._store.sample_by_source(url, sample_size or self.config.sample_size)
        return CachedSource(sample=sample, total=total, meta=meta)

    def refresh_if_expired(
        self,
        url: str,
        on_updated: Optional[Callable[[CachedSource], None]] = None,
        options: Optional[ImportOptions] = None,
    ) -> Optional[asyncio.Task]:
        """
        Start a background re-import if url's cache has expired.

        Must be called from a running event loop. Failures are logged and
        never reach the caller.

        Returns:
            The background task, or None when nothing was scheduled
        """
        meta = self._store.get_source(url)
        if meta is None or not self.is_expired(meta):
            return None

        logger.info(f"Cache for {url} expired, refreshing in background")
        task = asyncio.get_running_loop().create_task(
            self._refresh_in_background(url, on_updated, options)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _refresh_in_background(
        self,
        url: str,
        on_updated: Optional[Callable[[CachedSource], None]],
        options: Optional[ImportOptions],
    ):
        try:
            result = await self.import_and_cache(url, options)
            if on_updated is not None:
                on_updated(result)
        except Exception as e:
            logger.warning(f"Background refresh of {url} failed: {e}")

    async def force_refresh(
        self,
        url: str,
        options: Optional[ImportOptions] = None,
        sample_size: Optional[int] = None,
    ) -> CachedSource:
        """Re-import regardless of TTL. Errors propagate to the caller."""
        return await self.import_and_cache(url, options, sample_size)

    async def aclose(self):
        """Wait for pending background refreshes, then release the orchestrator."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self._orchestrator.aclose()
