"""
Freshness Tests - Verify cache-first loads and TTL refreshes.
"""

import pytest

from conftest import ROOT, failing_fetcher, urlset_fetcher
from sitemap_cache.errors import NetworkFailure
from sitemap_cache.freshness import FreshnessManager
from sitemap_cache.models import SourceMeta, UrlEntry
from sitemap_cache.orchestrator import ImportOrchestrator, now_ms


LOCS = ["https://example.com/a", "https://example.com/b", "https://example.com/c"]


def make_manager(test_config, store, fetcher):
    orch = ImportOrchestrator(test_config, store=store, fetcher=fetcher)
    return FreshnessManager(orch, test_config)


def seed_stale(store, url=ROOT):
    """A cached source whose TTL ran out a minute ago."""
    store.bulk_upsert(url, [UrlEntry("https://example.com/old")])
    past = now_ms() - 60_000
    store.upsert_source(SourceMeta(url, last_fetched=past - 1000, expires_at=past, total=1))


class TestIsExpired:
    """Tests for the expiry predicate."""

    def test_boundary(self):
        """Expired only strictly after expires_at."""
        meta = SourceMeta(ROOT, last_fetched=0, expires_at=100, total=0)

        assert not FreshnessManager.is_expired(meta, now=99)
        assert not FreshnessManager.is_expired(meta, now=100)
        assert FreshnessManager.is_expired(meta, now=101)


class TestLoad:
    """Tests for cache-first reads."""

    def test_never_imported(self, test_config, store):
        manager = make_manager(test_config, store, urlset_fetcher(LOCS))
        assert manager.load(ROOT) is None

    def test_stale_source_still_served(self, test_config, store):
        """Expired data is returned as is."""
        seed_stale(store)
        manager = make_manager(test_config, store, urlset_fetcher(LOCS))

        cached = manager.load(ROOT)

        assert cached.total == 1
        assert [p.loc for p in cached.sample] == ["https://example.com/old"]
        assert FreshnessManager.is_expired(cached.meta)

    @pytest.mark.asyncio
    async def test_load_after_import(self, test_config, store):
        manager = make_manager(test_config, store, urlset_fetcher(LOCS))
        await manager.import_and_cache(ROOT)

        cached = manager.load(ROOT, sample_size=2)

        assert cached.total == 3
        assert len(cached.sample) == 2
        assert not FreshnessManager.is_expired(cached.meta)

    @pytest.mark.asyncio
    async def test_list_sources(self, test_config, store):
        manager = make_manager(test_config, store, urlset_fetcher(LOCS))
        await manager.import_and_cache(ROOT)

        assert [m.url for m in manager.list_sources()] == [ROOT]


class TestRefresh:
    """Tests for background and forced refreshes."""

    @pytest.mark.asyncio
    async def test_fresh_source_not_refreshed(self, test_config, store):
        manager = make_manager(test_config, store, urlset_fetcher(LOCS))
        await manager.import_and_cache(ROOT)

        assert manager.refresh_if_expired(ROOT) is None

    @pytest.mark.asyncio
    async def test_unknown_source_not_refreshed(self, test_config, store):
        manager = make_manager(test_config, store, urlset_fetcher(LOCS))
        assert manager.refresh_if_expired(ROOT) is None

    @pytest.mark.asyncio
    async def test_expired_source_refreshed(self, test_config, store):
        """An expired source is re-imported and on_updated receives the result."""
        seed_stale(store)
        manager = make_manager(test_config, store, urlset_fetcher(LOCS))
        updates = []

        task = manager.refresh_if_expired(ROOT, on_updated=updates.append)
        assert task is not None
        await task

        assert len(updates) == 1
        assert updates[0].total == 4
        assert not FreshnessManager.is_expired(updates[0].meta)

    @pytest.mark.asyncio
    async def test_background_failure_swallowed(self, test_config, store):
        """A failed background refresh is logged, the stale cache stays."""
        seed_stale(store)
        manager = make_manager(test_config, store, failing_fetcher(500))
        updates = []

        task = manager.refresh_if_expired(ROOT, on_updated=updates.append)
        await task

        assert task.exception() is None
        assert updates == []
        assert manager.load(ROOT).total == 1

    @pytest.mark.asyncio
    async def test_force_refresh_ignores_ttl(self, test_config, store):
        manager = make_manager(test_config, store, urlset_fetcher(LOCS))
        first = await manager.import_and_cache(ROOT)

        refreshed = await manager.force_refresh(ROOT)

        assert refreshed.total == 3
        assert refreshed.meta.last_fetched >= first.meta.last_fetched

    @pytest.mark.asyncio
    async def test_force_refresh_propagates_errors(self, test_config, store):
        manager = make_manager(test_config, store, failing_fetcher(502))

        with pytest.raises(NetworkFailure):
            await manager.force_refresh(ROOT)
