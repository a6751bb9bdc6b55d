"""
Store - Local indexed storage for page records and source metadata.

Pages are keyed by loc and carry three secondary indices (source, path,
lowercased path) that back enumeration, counting and prefix search.
Writes are split into small sequential transactions so long imports never
hold the write lock for long.
"""

import logging
import sqlite3
import threading
from typing import Any, Iterable, Iterator, List, Optional
from urllib.parse import urlsplit

from .config import get_config, CacheConfig
from .errors import StoreFailure
from .models import PageRecord, SourceMeta


logger = logging.getLogger(__name__)


# Bump when derived columns change; a new version re-runs the backfill once.
SCHEMA_VERSION = 3
BACKFILL_MARKER = f"paths_backfilled:v{SCHEMA_VERSION}"

_INDEXED_COLUMNS = {"path", "path_lower"}


def derive_path(loc: str) -> str:
    """
    Path component of loc.

    Absolute URLs yield their path ("/" when empty). Anything else is
    treated as a path and rooted with a leading "/".
    """
    try:
        parts = urlsplit(loc)
    except ValueError:
        parts = None

    if parts is not None and parts.scheme and parts.netloc:
        return parts.path or "/"

    return loc if loc.startswith("/") else f"/{loc}"


def _field(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


class PageStore:
    """
    SQLite-backed page and source store.

    Tables:
    - pages: one row per loc, with derived path columns
    - sources: one row per imported root
    - schema_meta: persisted migration markers
    """

    def __init__(self, config: CacheConfig | None = None):
        self.config = config or get_config()
        self._conn: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(str(self.config.db_path))
                self._conn.row_factory = sqlite3.Row
                self._conn.execute("PRAGMA journal_mode = WAL")
                self._conn.execute("PRAGMA synchronous = NORMAL")
                self._init_tables()
            except sqlite3.Error as e:
                self._conn = None
                raise StoreFailure(f"Cannot open store at {self.config.db_path}: {e}") from e
            self.backfill_once()
        return self._conn

    def _init_tables(self):
        """Create tables and indices; add derived columns missing from older schemas."""
        conn = self._conn
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS pages (
                loc TEXT PRIMARY KEY,
                source_url TEXT NOT NULL,
                lastmod TEXT,
                path TEXT,
                path_lower TEXT
            );

            CREATE TABLE IF NOT EXISTS sources (
                url TEXT PRIMARY KEY,
                last_fetched INTEGER NOT NULL,
                expires_at INTEGER NOT NULL,
                total INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS schema_meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
        """)

        columns = {row["name"] for row in conn.execute("PRAGMA table_info(pages)")}
        for column in ("path", "path_lower"):
            if column not in columns:
                logger.info(f"Adding missing column pages.{column}")
                conn.execute(f"ALTER TABLE pages ADD COLUMN {column} TEXT")

        conn.executescript("""
            CREATE INDEX IF NOT EXISTS idx_pages_by_source ON pages(source_url);
            CREATE INDEX IF NOT EXISTS idx_pages_by_path ON pages(path);
            CREATE INDEX IF NOT EXISTS idx_pages_by_path_lower ON pages(path_lower);
        """)
        conn.commit()

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    def bulk_upsert(
        self,
        source_url: str,
        records: Iterable[Any],
        chunk_size: Optional[int] = None,
    ) -> int:
        """
        Insert or replace page records in bounded transactions.

        Every row is stamped with source_url and a freshly derived
        path/path_lower, whatever the caller passed in.

        Args:
            source_url: Root import the records belong to
            records: UrlEntry, PageRecord or dicts with loc/lastmod
            chunk_size: Rows per transaction (default: config.write_chunk_size)

        Returns:
            Number of rows written
        """
        if chunk_size is None:
            chunk_size = self.config.write_chunk_size
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

        rows = []
        for record in records:
            loc = _field(record, "loc")
            if not loc:
                continue
            path = derive_path(loc)
            rows.append((loc, source_url, _field(record, "lastmod"), path, path.lower()))

        conn = self._get_connection()
        for i in range(0, len(rows), chunk_size):
            chunk = rows[i:i + chunk_size]
            try:
                with conn:
                    conn.executemany(
                        """
                        INSERT INTO pages (loc, source_url, lastmod, path, path_lower)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT(loc) DO UPDATE SET
                            source_url = excluded.source_url,
                            lastmod = excluded.lastmod,
                            path = excluded.path,
                            path_lower = excluded.path_lower
                        """,
                        chunk,
                    )
            except sqlite3.Error as e:
                logger.error(f"Bulk upsert failed for {source_url}: {e}")
                raise StoreFailure(f"Bulk upsert failed: {e}") from e

        return len(rows)

    def count_by_source(self, source_url: str) -> int:
        """Exact number of pages stored for a source."""
        conn = self._get_connection()
        row = conn.execute(
            "SELECT COUNT(*) FROM pages WHERE source_url = ?",
            (source_url,)
        ).fetchone()
        return row[0] if row else 0

    def sample_by_source(
        self,
        source_url: str,
        limit: int = 200,
        offset: int = 0,
    ) -> List[PageRecord]:
        """Forward scan of the source index: skip offset rows, collect up to limit."""
        if limit <= 0:
            return []
        conn = self._get_connection()
        cursor = conn.execute(
            """
            SELECT loc, source_url, lastmod, path, path_lower
            FROM pages
            WHERE source_url = ?
            ORDER BY loc
            LIMIT ? OFFSET ?
            """,
            (source_url, limit, max(offset, 0))
        )
        return [self._row_to_record(row) for row in cursor.fetchall()]

    def get_page(self, loc: str) -> Optional[PageRecord]:
        """Find a page by loc. Returns None if not found."""
        conn = self._get_connection()
        row = conn.execute(
            "SELECT loc, source_url, lastmod, path, path_lower FROM pages WHERE loc = ?",
            (loc,)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def iter_by_path_lower(
        self,
        lower: Optional[str] = None,
        upper: Optional[str] = None,
    ) -> Iterator[PageRecord]:
        """Ordered scan of the lowercased-path index, bounds inclusive."""
        return self._iter_index("path_lower", lower, upper)

    def iter_by_path(
        self,
        lower: Optional[str] = None,
        upper: Optional[str] = None,
    ) -> Iterator[PageRecord]:
        """Ordered scan of the case-sensitive path index, bounds inclusive."""
        return self._iter_index("path", lower, upper)

    def _iter_index(
        self,
        column: str,
        lower: Optional[str],
        upper: Optional[str],
    ) -> Iterator[PageRecord]:
        if column not in _INDEXED_COLUMNS:
            raise ValueError(f"No index on column {column!r}")

        conn = self._get_connection()
        sql = (
            "SELECT loc, source_url, lastmod, path, path_lower FROM pages "
            f"WHERE {column} IS NOT NULL"
        )
        params: list[str] = []
        if lower is not None:
            sql += f" AND {column} >= ?"
            params.append(lower)
        if upper is not None:
            sql += f" AND {column} <= ?"
            params.append(upper)
        sql += f" ORDER BY {column}, loc"

        cursor = conn.execute(sql, params)
        try:
            for row in cursor:
                yield self._row_to_record(row)
        finally:
            cursor.close()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> PageRecord:
        return PageRecord(
            loc=row["loc"],
            source_url=row["source_url"],
            lastmod=row["lastmod"],
            path=row["path"] or "",
            path_lower=row["path_lower"] or "",
        )

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def get_source(self, url: str) -> Optional[SourceMeta]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT url, last_fetched, expires_at, total FROM sources WHERE url = ?",
            (url,)
        ).fetchone()
        return self._row_to_meta(row) if row else None

    def upsert_source(self, meta: SourceMeta) -> None:
        """Replace the whole SourceMeta row for meta.url."""
        conn = self._get_connection()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO sources (url, last_fetched, expires_at, total)
                    VALUES (?, ?, ?, ?)
                    """,
                    (meta.url, meta.last_fetched, meta.expires_at, meta.total)
                )
        except sqlite3.Error as e:
            logger.error(f"Source upsert failed for {meta.url}: {e}")
            raise StoreFailure(f"Source upsert failed: {e}") from e

    def get_all_sources(self) -> List[SourceMeta]:
        conn = self._get_connection()
        cursor = conn.execute(
            "SELECT url, last_fetched, expires_at, total FROM sources ORDER BY url"
        )
        return [self._row_to_meta(row) for row in cursor.fetchall()]

    @staticmethod
    def _row_to_meta(row: sqlite3.Row) -> SourceMeta:
        return SourceMeta(
            url=row["url"],
            last_fetched=row["last_fetched"],
            expires_at=row["expires_at"],
            total=row["total"],
        )

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    def backfill_once(self) -> int:
        """
        Recompute missing or inconsistent derived path fields, once per schema version.

        Returns:
            Number of rows updated (0 when the marker says it already ran)
        """
        conn = self._get_connection()
        row = conn.execute(
            "SELECT value FROM schema_meta WHERE key = ?",
            (BACKFILL_MARKER,)
        ).fetchone()
        if row and row["value"] == "true":
            return 0

        updates = []
        for row in conn.execute("SELECT loc, path, path_lower FROM pages"):
            path = row["path"]
            if not path or not isinstance(path, str):
                path = derive_path(row["loc"])
            if path != row["path"] or row["path_lower"] != path.lower():
                updates.append((path, path.lower(), row["loc"]))

        chunk_size = self.config.write_chunk_size
        try:
            for i in range(0, len(updates), chunk_size):
                with conn:
                    conn.executemany(
                        "UPDATE pages SET path = ?, path_lower = ? WHERE loc = ?",
                        updates[i:i + chunk_size]
                    )
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO schema_meta (key, value) VALUES (?, 'true')",
                    (BACKFILL_MARKER,)
                )
        except sqlite3.Error as e:
            logger.error(f"Path backfill failed: {e}")
            raise StoreFailure(f"Path backfill failed: {e}") from e

        if updates:
            logger.info(f"Backfilled derived paths for {len(updates)} pages")
        return len(updates)

    def close(self):
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None


# Process-wide store handle, opened lazily on first use.
_default_store: PageStore | None = None
_store_lock = threading.Lock()


def get_store(config: CacheConfig | None = None) -> PageStore:
    """Get the shared store (created once, thread-safe)."""
    global _default_store
    with _store_lock:
        if _default_store is None:
            _default_store = PageStore(config)
        return _default_store


def set_store(store: PageStore | None) -> None:
    """Override the shared store (for testing). Pass None to reset."""
    global _default_store
    with _store_lock:
        _default_store = store
