"""
CLI Tests - Verify the read-only commands against a seeded store.
"""

from conftest import ROOT
from sitemap_cache.cli import main
from sitemap_cache.models import SourceMeta, UrlEntry


def seed(store):
    store.bulk_upsert(ROOT, [
        UrlEntry("https://example.com/products/a"),
        UrlEntry("https://example.com/about"),
    ])
    store.upsert_source(SourceMeta(ROOT, last_fetched=0, expires_at=1000, total=2))


class TestCli:
    """Tests for the sitemap-cache command."""

    def test_search(self, store, capsys):
        seed(store)

        assert main(["search", "prod"]) == 0

        out = capsys.readouterr().out
        assert "/products/a\thttps://example.com/products/a" in out
        assert "/about" not in out

    def test_search_no_matches(self, store, capsys):
        seed(store)

        assert main(["search", "zzz", "--prefix"]) == 0
        assert "No matches." in capsys.readouterr().out

    def test_sources(self, store, capsys):
        seed(store)

        assert main(["sources"]) == 0
        assert f"{ROOT}\t2 pages" in capsys.readouterr().out

    def test_sources_empty(self, store, capsys):
        assert main(["sources"]) == 0
        assert "No cached sources." in capsys.readouterr().out
