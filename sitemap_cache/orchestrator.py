"""
Orchestrator - Main entry point for sitemap imports.

Drives one import run:
- Analyze: classify the root as urlset or sitemap index
- Direct: a urlset is fetched and stored in a single pass
- Pool: index children are grouped and pulled by a bounded worker pool
- Finalize: exact recount and a fresh TTL window in SourceMeta
"""

import asyncio
import dataclasses
import logging
import time
from typing import Callable, List, Optional

from .cancellation import CancellationToken
from .config import get_config, CacheConfig
from .errors import ImportCancelled, RUN_POLICIES, error_message, handle_error
from .fetcher import SitemapFetcher, SitemapSource
from .models import (
    ImportEvent, ImportOptions, ImportProgress, IndexAnalysis, SourceMeta,
    UrlEntry, UrlsetAnalysis,
)
from .store import PageStore, get_store


logger = logging.getLogger(__name__)

EventCallback = Callable[[ImportEvent], None]


def now_ms() -> int:
    return int(time.time() * 1000)


def chunk(items: List[str], size: int) -> List[List[str]]:
    """Split items into ordered groups of size (the last may be smaller)."""
    return [items[i:i + size] for i in range(0, len(items), size)]


class ProgressTracker:
    """
    Sole owner of a run's ImportProgress.

    Workers share one event loop and advance() never awaits, so each
    increment is applied atomically with respect to the other workers.
    """

    def __init__(self, total_sitemaps: int):
        self._progress = ImportProgress(
            total_sitemaps=total_sitemaps,
            started_at=now_ms(),
        )

    def advance(self, sitemaps: int, urls: int) -> ImportProgress:
        self._progress.processed_sitemaps += sitemaps
        self._progress.urls_imported += urls
        return self.snapshot()

    def snapshot(self) -> ImportProgress:
        return dataclasses.replace(self._progress)


class ImportOrchestrator:
    """
    Runs sitemap imports against a store.

    One orchestrator drives one run at a time; cancel() applies to the
    run in progress and must be called from the loop running it.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        store: Optional[PageStore] = None,
        fetcher: Optional[SitemapSource] = None,
    ):
        self.config = config or get_config()
        self._store = store or get_store(self.config)
        self._fetcher = fetcher or SitemapFetcher(self.config)
        self._token = CancellationToken()

    @property
    def store(self) -> PageStore:
        return self._store

    async def run(
        self,
        root_url: str,
        options: Optional[ImportOptions] = None,
        emit: Optional[EventCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> Optional[int]:
        """
        Run one import and report through events.

        Never raises for import failures: emits exactly one error event
        instead. Nothing is emitted after a cancellation.

        Pass a token from new_run() to make cancel() apply before the run
        has started.

        Returns:
            Final page count for the source, or None on error/cancellation
        """
        if token is None:
            token = self.new_run()
        try:
            return await self._import(root_url, options, emit, token)
        except ImportCancelled:
            logger.info(f"Import of {root_url} cancelled")
            return None
        except Exception as e:
            if token.cancelled:
                return None
            handle_error(e, root_url, "import", policies=RUN_POLICIES)
            self._emit(emit, ImportEvent(type="error", message=error_message(e)))
            return None

    async def import_source(
        self,
        root_url: str,
        options: Optional[ImportOptions] = None,
        emit: Optional[EventCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> int:
        """
        Run one import and raise on failure.

        Raises:
            ImportCancelled: cancel() was called during the run
            SitemapCacheError: analysis, fetch or store failure
        """
        if token is None:
            token = self.new_run()
        return await self._import(root_url, options, emit, token)

    def new_run(self) -> CancellationToken:
        """Install and return a fresh token; cancel() targets it from now on."""
        self._token = CancellationToken()
        return self._token

    def cancel(self) -> None:
        """Request cooperative termination of the current run."""
        logger.info("Cancelling import")
        self._token.cancel()

    async def _import(
        self,
        root_url: str,
        options: Optional[ImportOptions],
        emit: Optional[EventCallback],
        token: CancellationToken,
    ) -> int:
        options = options or ImportOptions.from_config(self.config)
        start_time = time.monotonic()

        logger.info(f"Analyzing {root_url}...")
        analysis = await token.run(self._fetcher.analyze(root_url))

        if isinstance(analysis, UrlsetAnalysis):
            total = await self._import_urlset(root_url, options, emit, token)
        elif isinstance(analysis, IndexAnalysis):
            total = await self._import_index(root_url, analysis, options, emit, token)
        else:
            raise TypeError(f"Unexpected analysis result: {analysis!r}")

        logger.info(
            f"Import of {root_url} complete: {total} pages "
            f"in {time.monotonic() - start_time:.1f}s"
        )
        return total

    async def _import_urlset(
        self,
        root_url: str,
        options: ImportOptions,
        emit: Optional[EventCallback],
        token: CancellationToken,
    ) -> int:
        """Single pass: no pool needed for a flat urlset."""
        tracker = ProgressTracker(total_sitemaps=1)
        self._emit(emit, ImportEvent(type="start", progress=tracker.snapshot()))

        token.raise_if_cancelled()
        entries = await token.run(self._fetcher.fetch_urlset(root_url))
        self._store.bulk_upsert(root_url, entries, self.config.write_chunk_size)

        total = self._finalize(root_url, options)
        self._emit(emit, ImportEvent(type="batch", sample=entries[:options.sample_per_batch]))
        self._emit(emit, ImportEvent(type="complete", total=total))
        return total

    async def _import_index(
        self,
        root_url: str,
        analysis: IndexAnalysis,
        options: ImportOptions,
        emit: Optional[EventCallback],
        token: CancellationToken,
    ) -> int:
        groups = chunk(analysis.children, options.group_size)
        tracker = ProgressTracker(total_sitemaps=analysis.count or len(analysis.children))
        self._emit(emit, ImportEvent(type="start", progress=tracker.snapshot()))

        pool_size = min(options.concurrency, len(groups))
        logger.info(
            f"Importing {len(analysis.children)} sitemaps in {len(groups)} groups "
            f"with {pool_size} workers"
        )

        # Shared cursor over the ordered groups; workers claim the next index.
        cursor = iter(range(len(groups)))

        async def worker(worker_id: int):
            while not token.cancelled:
                idx = next(cursor, None)
                if idx is None:
                    break
                await self._process_group(
                    root_url, groups[idx], idx, options, tracker, emit, token
                )
            logger.debug(f"Worker {worker_id} finished")

        workers = [asyncio.create_task(worker(i)) for i in range(pool_size)]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            # Abort the run: stop the remaining workers and their requests.
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        token.raise_if_cancelled()

        total = self._finalize(root_url, options)
        self._emit(emit, ImportEvent(type="complete", total=total))
        return total

    async def _process_group(
        self,
        root_url: str,
        group: List[str],
        idx: int,
        options: ImportOptions,
        tracker: ProgressTracker,
        emit: Optional[EventCallback],
        token: CancellationToken,
    ):
        entries: List[UrlEntry] = await token.run(self._fetcher.fetch_batch(group))
        written = self._store.bulk_upsert(root_url, entries, self.config.write_chunk_size)

        progress = tracker.advance(sitemaps=len(group), urls=written)
        logger.debug(
            f"Group {idx}: {len(group)} sitemaps, {written} urls "
            f"({progress.processed_sitemaps}/{progress.total_sitemaps})"
        )
        self._emit(emit, ImportEvent(type="batch", sample=entries[:options.sample_per_batch]))
        self._emit(emit, ImportEvent(type="progress", progress=progress))

    def _finalize(self, root_url: str, options: ImportOptions) -> int:
        """Recount from the store and write a fresh SourceMeta."""
        total = self._store.count_by_source(root_url)
        fetched_at = now_ms()
        self._store.upsert_source(SourceMeta(
            url=root_url,
            last_fetched=fetched_at,
            expires_at=fetched_at + options.ttl_ms,
            total=total,
        ))
        return total

    @staticmethod
    def _emit(emit: Optional[EventCallback], event: ImportEvent):
        if emit is not None:
            emit(event)

    async def aclose(self):
        """Release the fetcher's HTTP client, if it has one."""
        aclose = getattr(self._fetcher, "aclose", None)
        if aclose is not None:
            await aclose()


async def import_sitemap(
    root_url: str,
    options: Optional[ImportOptions] = None,
    config: Optional[CacheConfig] = None,
) -> int:
    """
    Convenience function to run a single import.

    Usage:
        total = await import_sitemap("https://example.com/sitemap.xml")
        print(f"{total} pages cached")
    """
    orchestrator = ImportOrchestrator(config)
    try:
        return await orchestrator.import_source(root_url, options)
    finally:
        await orchestrator.aclose()
