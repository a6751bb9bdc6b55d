"""
Search - Prefix and fuzzy path lookups over the cached pages.

Read-only: every query is an ordered scan of one of the store's path
indices and stops as soon as enough results are collected.
"""

import logging
import re
from itertools import islice
from typing import List, Optional

from .config import get_config, CacheConfig
from .models import PageRecord
from .store import PageStore, get_store


logger = logging.getLogger(__name__)

# Upper bound sentinel for prefix ranges.
MAX_CHAR = "\uffff"

_REPEATED_SLASHES = re.compile(r"/{2,}")


def normalize_prefix(raw: str) -> str:
    """Trim, root with a single "/" and collapse repeated slashes."""
    trimmed = raw.strip()
    if not trimmed:
        return "/"
    lead = trimmed if trimmed.startswith("/") else f"/{trimmed}"
    return _REPEATED_SLASHES.sub("/", lead)


class SearchEngine:
    """Two-stage path search: index prefix scan, then a capped substring scan."""

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        store: Optional[PageStore] = None,
    ):
        self.config = config or get_config()
        self._store = store or get_store(self.config)

    def search_by_prefix(
        self,
        prefix: str,
        limit: int = 50,
        case_sensitive: bool = False,
    ) -> List[PageRecord]:
        """
        Pages whose path starts with the normalized prefix.

        Case-insensitive by default (path_lower index); case_sensitive
        scans the path index with the prefix as typed.
        """
        if limit <= 0:
            return []

        norm = normalize_prefix(prefix)
        if case_sensitive:
            scan = self._store.iter_by_path(norm, norm + MAX_CHAR)
        else:
            norm = norm.lower()
            scan = self._store.iter_by_path_lower(norm, norm + MAX_CHAR)

        try:
            return list(islice(scan, limit))
        finally:
            scan.close()

    def search_by_substring(
        self,
        needle: str,
        limit: int = 10,
        visit_cap: Optional[int] = None,
    ) -> List[PageRecord]:
        """
        Pages whose lowercased path contains needle.

        Visits at most visit_cap index entries, so cost is bounded on
        large corpora and matches past the cap are not found.
        """
        needle = needle.strip().lower()
        if not needle or limit <= 0:
            return []
        visit_cap = self.config.substring_visit_cap if visit_cap is None else visit_cap

        out: List[PageRecord] = []
        visited = 0
        scan = self._store.iter_by_path_lower()
        try:
            for record in scan:
                if visited >= visit_cap:
                    break
                visited += 1
                if needle in (record.path_lower or record.path.lower()):
                    out.append(record)
                    if len(out) >= limit:
                        break
        finally:
            scan.close()

        logger.debug(f"Substring scan for {needle!r}: {len(out)} hits in {visited} entries")
        return out

    def search_fuzzy(self, query: str, limit: int = 10) -> List[PageRecord]:
        """
        Prefix matches first, then substring matches if there are too few.

        The two stages are not deduplicated against each other, so a page
        matched by both can appear twice.
        """
        q = query.strip()
        if not q or limit <= 0:
            return []

        prefix_results = self.search_by_prefix(q, limit)
        if len(prefix_results) >= limit:
            return prefix_results

        fallback = self.search_by_substring(
            q,
            limit - len(prefix_results),
            visit_cap=self.config.fuzzy_visit_cap,
        )
        return (prefix_results + fallback)[:limit]
