"""
Data Models - Type definitions for the import pipeline.

These dataclasses represent the data flowing between the fetcher, the
orchestrator, the store and the worker message protocol.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Union

from .config import CacheConfig, SIX_HOURS_MS


@dataclass
class UrlEntry:
    """A single <url> row as returned by the fetch collaborators."""
    loc: str
    lastmod: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"loc": self.loc}
        if self.lastmod is not None:
            d["lastmod"] = self.lastmod
        return d


@dataclass
class PageRecord:
    """
    One imported URL, keyed by loc.

    path and path_lower are derived from loc by the store at write time;
    values supplied by callers are never trusted.
    """
    loc: str
    source_url: str
    lastmod: Optional[str] = None
    path: str = ""
    path_lower: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SourceMeta:
    """
    Freshness and count metadata for one imported root.

    Timestamps are epoch milliseconds.
    """
    url: str
    last_fetched: int
    expires_at: int
    total: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ImportProgress:
    """Progress of one run. Counters only ever grow."""
    total_sitemaps: int
    processed_sitemaps: int = 0
    urls_imported: int = 0
    started_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalSitemaps": self.total_sitemaps,
            "processedSitemaps": self.processed_sitemaps,
            "urlsImported": self.urls_imported,
            "startedAt": self.started_at,
        }


@dataclass
class ImportOptions:
    """Tuning knobs for a single import run."""
    group_size: int = 20
    concurrency: int = 4
    ttl_ms: int = SIX_HOURS_MS
    sample_per_batch: int = 50

    def __post_init__(self):
        if self.group_size < 1:
            raise ValueError(f"group_size must be >= 1, got {self.group_size}")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.ttl_ms < 1:
            raise ValueError(f"ttl_ms must be >= 1, got {self.ttl_ms}")
        if self.sample_per_batch < 0:
            raise ValueError(f"sample_per_batch must be >= 0, got {self.sample_per_batch}")

    @classmethod
    def from_config(cls, config: CacheConfig) -> "ImportOptions":
        return cls(
            group_size=config.group_size,
            concurrency=config.concurrency,
            ttl_ms=config.ttl_ms,
            sample_per_batch=config.sample_per_batch,
        )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], config: CacheConfig) -> "ImportOptions":
        """Build options from a worker payload (camelCase or snake_case keys)."""
        base = cls.from_config(config)
        data = data or {}
        return cls(
            group_size=int(data.get("groupSize", data.get("group_size", base.group_size))),
            concurrency=int(data.get("concurrency", base.concurrency)),
            ttl_ms=int(data.get("ttlMs", data.get("ttl_ms", base.ttl_ms))),
            sample_per_batch=int(
                data.get("samplePerBatch", data.get("sample_per_batch", base.sample_per_batch))
            ),
        )


@dataclass
class UrlsetAnalysis:
    """The root is itself a flat <urlset>."""
    entries: List[UrlEntry] = field(default_factory=list)
    kind: str = "urlset"


@dataclass
class IndexAnalysis:
    """The root is a <sitemapindex> listing child sitemaps."""
    children: List[str] = field(default_factory=list)
    count: int = 0
    kind: str = "index"


Analysis = Union[UrlsetAnalysis, IndexAnalysis]


@dataclass
class CachedSource:
    """What the freshness manager hands back: a sample plus the meta."""
    sample: List[PageRecord]
    total: int
    meta: SourceMeta


@dataclass
class ImportEvent:
    """
    An outbound event of an import run.

    type is one of: start, progress, batch, complete, error.
    """
    type: str
    progress: Optional[ImportProgress] = None
    sample: Optional[List[UrlEntry]] = None
    total: Optional[int] = None
    message: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        """Serialize to the worker wire format."""
        msg: Dict[str, Any] = {"type": self.type}
        if self.type in ("start", "progress"):
            msg["progress"] = self.progress.to_dict() if self.progress else None
        elif self.type == "batch":
            msg["sample"] = [e.to_dict() for e in self.sample or []]
        elif self.type == "complete":
            msg["total"] = self.total
        elif self.type == "error":
            msg["message"] = self.message
        return msg
