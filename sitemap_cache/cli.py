"""
CLI - Command-line entry point for the sitemap cache.

Usage:
    sitemap-cache import https://example.com/sitemap_index.xml
    sitemap-cache search prod --limit 20
    sitemap-cache sources
    sitemap-cache refresh https://example.com/sitemap.xml --force
"""

import argparse
import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from .config import get_config
from .errors import SitemapCacheError
from .freshness import FreshnessManager
from .models import ImportEvent, ImportOptions
from .orchestrator import ImportOrchestrator
from .search import SearchEngine
from .store import get_store


logger = logging.getLogger(__name__)


def _format_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _print_event(event: ImportEvent):
    if event.type == "progress" and event.progress:
        p = event.progress
        print(
            f"  {p.processed_sitemaps}/{p.total_sitemaps} sitemaps, "
            f"{p.urls_imported} urls"
        )
    elif event.type == "error":
        print(f"Error: {event.message}")


async def _cmd_import(args) -> int:
    config = get_config()
    options = ImportOptions(
        group_size=args.group_size or config.group_size,
        concurrency=args.concurrency or config.concurrency,
        ttl_ms=config.ttl_ms,
        sample_per_batch=config.sample_per_batch,
    )
    orchestrator = ImportOrchestrator(config)
    try:
        total = await orchestrator.run(args.url, options, emit=_print_event)
    finally:
        await orchestrator.aclose()

    if total is None:
        return 1
    print(f"\nCached {total} pages from {args.url}")
    return 0


async def _cmd_refresh(args) -> int:
    manager = FreshnessManager()
    try:
        if not args.force:
            cached = manager.load(args.url)
            if cached and not manager.is_expired(cached.meta):
                print(f"{args.url} is fresh until {_format_ms(cached.meta.expires_at)}")
                return 0
        result = await manager.force_refresh(args.url)
    except SitemapCacheError as e:
        print(f"Error: {e}")
        return 1
    finally:
        await manager.aclose()
    print(f"Refreshed {args.url}: {result.total} pages")
    return 0


def _cmd_search(args) -> int:
    engine = SearchEngine()
    if args.prefix:
        results = engine.search_by_prefix(args.query, args.limit)
    else:
        results = engine.search_fuzzy(args.query, args.limit)
    for record in results:
        print(f"{record.path}\t{record.loc}")
    if not results:
        print("No matches.")
    return 0


def _cmd_sources(args) -> int:
    sources = get_store().get_all_sources()
    if not sources:
        print("No cached sources.")
    for meta in sources:
        print(
            f"{meta.url}\t{meta.total} pages\t"
            f"fetched {_format_ms(meta.last_fetched)}\t"
            f"expires {_format_ms(meta.expires_at)}"
        )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Sitemap import-and-cache engine")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="Import a sitemap or sitemap index")
    p_import.add_argument("url")
    p_import.add_argument("--group-size", type=int, help="Child sitemaps per batch")
    p_import.add_argument("--concurrency", type=int, help="Parallel batch requests")

    p_search = sub.add_parser("search", help="Search cached page paths")
    p_search.add_argument("query")
    p_search.add_argument("--limit", type=int, default=10)
    p_search.add_argument("--prefix", action="store_true", help="Prefix matches only")

    sub.add_parser("sources", help="List cached sources")

    p_refresh = sub.add_parser("refresh", help="Re-import a cached source")
    p_refresh.add_argument("url")
    p_refresh.add_argument("--force", action="store_true", help="Ignore the TTL")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s"
    )

    try:
        if args.command == "import":
            return asyncio.run(_cmd_import(args))
        if args.command == "refresh":
            return asyncio.run(_cmd_refresh(args))
        if args.command == "search":
            return _cmd_search(args)
        return _cmd_sources(args)
    except KeyboardInterrupt:
        print("\nStopped.")
        return 130
    finally:
        get_store().close()


if __name__ == "__main__":
    raise SystemExit(main())
