"""
Test Configuration - Shared fixtures for sitemap cache tests.

Uses pytest fixtures to create isolated stores and fake collaborators.
"""

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Optional

import pytest

from sitemap_cache.config import CacheConfig, set_config
from sitemap_cache.errors import NetworkFailure
from sitemap_cache.models import IndexAnalysis, UrlEntry, UrlsetAnalysis
from sitemap_cache.store import PageStore, set_store


ROOT = "https://example.com/sitemap.xml"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for the test database."""
    tmp = tempfile.mkdtemp(prefix="sitemap_cache_test_")
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> Generator[CacheConfig, None, None]:
    """Create an isolated test configuration."""
    config = CacheConfig(
        db_path=temp_dir / "test.db",
        group_size=20,
        concurrency=4,
        write_chunk_size=7,
        sample_per_batch=5,
    )
    set_config(config)
    yield config
    set_store(None)


@pytest.fixture
def store(test_config: CacheConfig) -> Generator[PageStore, None, None]:
    """Create a store backed by the temp database."""
    s = PageStore(test_config)
    set_store(s)
    yield s
    s.close()


def entries_for(child: str, n: int) -> List[UrlEntry]:
    """Deterministic page entries for a child sitemap."""
    base = child.rsplit("/", 1)[-1].replace(".xml", "")
    return [UrlEntry(loc=f"https://example.com/{base}/page-{i}") for i in range(n)]


class FakeFetcher:
    """
    In-memory stand-in for the sitemap collaborators.

    analysis: what analyze() returns (or raises, if an exception)
    pages: child location -> entries returned by fetch_batch
    gates: child location -> asyncio.Event the batch waits on
    blocked: batches that have reached a gate
    """

    def __init__(
        self,
        analysis=None,
        pages: Optional[Dict[str, List[UrlEntry]]] = None,
        urlset: Optional[List[UrlEntry]] = None,
        batch_error: Optional[Exception] = None,
    ):
        self.analysis = analysis
        self.pages = pages or {}
        self.urlset = urlset or []
        self.batch_error = batch_error
        self.gates: Dict[str, asyncio.Event] = {}
        self.batches: List[List[str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.aborted = 0
        self.blocked = 0

    async def analyze(self, url: str):
        await asyncio.sleep(0)
        if isinstance(self.analysis, Exception):
            raise self.analysis
        return self.analysis

    async def fetch_urlset(self, url: str) -> List[UrlEntry]:
        await asyncio.sleep(0)
        return list(self.urlset)

    async def fetch_batch(self, locations: List[str]) -> List[UrlEntry]:
        self.batches.append(list(locations))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            for loc in locations:
                gate = self.gates.get(loc)
                if gate is not None:
                    self.blocked += 1
                    await gate.wait()
            await asyncio.sleep(0)
            if self.batch_error is not None:
                raise self.batch_error
            seen = set()
            out = []
            for loc in locations:
                for entry in self.pages.get(loc, []):
                    if entry.loc not in seen:
                        seen.add(entry.loc)
                        out.append(entry)
            return out
        except asyncio.CancelledError:
            self.aborted += 1
            raise
        finally:
            self.in_flight -= 1


def index_fetcher(children: int, per_child: int = 3) -> FakeFetcher:
    """A fake sitemap index with `children` child sitemaps."""
    locs = [f"https://example.com/sitemaps/child-{i}.xml" for i in range(children)]
    pages = {loc: entries_for(loc, per_child) for loc in locs}
    return FakeFetcher(
        analysis=IndexAnalysis(children=locs, count=len(locs)),
        pages=pages,
    )


def urlset_fetcher(locs: List[str]) -> FakeFetcher:
    entries = [UrlEntry(loc=loc) for loc in locs]
    return FakeFetcher(analysis=UrlsetAnalysis(entries=entries), urlset=entries)


def failing_fetcher(status: int = 503) -> FakeFetcher:
    return FakeFetcher(
        analysis=NetworkFailure(f"Failed to fetch sitemap: {status}", url=ROOT, status=status)
    )
