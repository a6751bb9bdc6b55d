"""
Fetcher - Sitemap analysis and batch fetching over HTTP.

Provides the two collaborators the orchestrator depends on:
- analyze(): classify a root as a <urlset> or a <sitemapindex>
- fetch_batch(): fetch a group of child sitemaps, best effort

Uses httpx for transport and xml.etree for parsing. Namespaces are
ignored so both namespaced and bare sitemap documents are accepted.
"""

import asyncio
import logging
import xml.etree.ElementTree as ET
from typing import Dict, Iterable, List, Optional, Protocol
from urllib.parse import urlsplit

import httpx

from .config import get_config, CacheConfig
from .errors import (
    InvalidUrl, NetworkFailure, UnrecognizedFormat, handle_error,
)
from .models import Analysis, IndexAnalysis, UrlEntry, UrlsetAnalysis


logger = logging.getLogger(__name__)


class SitemapSource(Protocol):
    """Collaborator contract used by the orchestrator."""

    async def analyze(self, url: str) -> Analysis: ...

    async def fetch_urlset(self, url: str) -> List[UrlEntry]: ...

    async def fetch_batch(self, locations: List[str]) -> List[UrlEntry]: ...


def _local(tag: str) -> str:
    """Strip an XML namespace: '{ns}url' -> 'url'."""
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> Optional[str]:
    for child in element:
        if _local(child.tag) == name:
            text = (child.text or "").strip()
            return text or None
    return None


def parse_sitemap(xml: bytes | str, url: Optional[str] = None) -> Analysis:
    """
    Parse a sitemap document.

    Raises:
        UnrecognizedFormat: Not XML, or neither <urlset> nor <sitemapindex>
    """
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        logger.debug(f"XML parse error for {url}: {e}")
        raise UnrecognizedFormat(url) from e

    kind = _local(root.tag)

    if kind == "urlset":
        entries = []
        for node in root:
            if _local(node.tag) != "url":
                continue
            loc = _child_text(node, "loc")
            if not loc:
                continue
            entries.append(UrlEntry(loc=loc, lastmod=_child_text(node, "lastmod")))
        return UrlsetAnalysis(entries=entries)

    if kind == "sitemapindex":
        children = []
        for node in root:
            if _local(node.tag) != "sitemap":
                continue
            loc = _child_text(node, "loc")
            if loc:
                children.append(loc)
        return IndexAnalysis(children=children, count=len(children))

    raise UnrecognizedFormat(url)


def dedupe_entries(entries: Iterable[UrlEntry]) -> List[UrlEntry]:
    """Keep the first entry per loc, preserving order."""
    seen: set[str] = set()
    out: List[UrlEntry] = []
    for entry in entries:
        if entry.loc not in seen:
            seen.add(entry.loc)
            out.append(entry)
    return out


def validate_url(url: str) -> str:
    url = (url or "").strip()
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidUrl(url)
    return url


class SitemapFetcher:
    """
    HTTP implementation of the sitemap collaborators.

    One httpx.AsyncClient is shared by all calls; pass a transport to
    route requests elsewhere (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.config = config or get_config()
        self._transport = transport
        self._headers = headers or {"User-Agent": self.config.user_agent}
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.http_timeout,
                headers=self._headers,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def fetch_xml(self, url: str) -> bytes:
        """
        GET a sitemap document.

        Raises:
            InvalidUrl: url is not absolute http(s)
            NetworkFailure: transport error or non-2xx status
        """
        url = validate_url(url)
        try:
            resp = await self._get_client().get(url)
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Failed to fetch sitemap: {e}", url=url) from e

        if not resp.is_success:
            raise NetworkFailure(
                f"Failed to fetch sitemap: {resp.status_code} {resp.reason_phrase}",
                url=url,
                status=resp.status_code,
            )
        return resp.content

    async def analyze(self, url: str) -> Analysis:
        """Classify a root sitemap as urlset or index."""
        xml = await self.fetch_xml(url)
        analysis = parse_sitemap(xml, url)
        if isinstance(analysis, IndexAnalysis):
            logger.info(f"{url}: sitemap index with {analysis.count} children")
        else:
            logger.info(f"{url}: urlset with {len(analysis.entries)} entries")
        return analysis

    async def fetch_urlset(self, url: str) -> List[UrlEntry]:
        """Fetch a single urlset and return its deduplicated entries."""
        analysis = parse_sitemap(await self.fetch_xml(url), url)
        if not isinstance(analysis, UrlsetAnalysis):
            raise UnrecognizedFormat(url)
        return dedupe_entries(analysis.entries)

    async def fetch_batch(self, locations: List[str]) -> List[UrlEntry]:
        """
        Fetch a group of child sitemaps concurrently.

        Failed children and children that are themselves indexes are
        dropped. The result is deduplicated within this batch.
        """
        if not locations:
            return []

        results = await asyncio.gather(
            *(self._fetch_child(loc) for loc in locations),
            return_exceptions=True,
        )

        merged: List[UrlEntry] = []
        for loc, result in zip(locations, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                handle_error(result, loc, "fetch_batch")
                continue
            merged.extend(result)

        deduped = dedupe_entries(merged)
        logger.debug(f"Batch of {len(locations)} sitemaps -> {len(deduped)} urls")
        return deduped

    async def _fetch_child(self, loc: str) -> List[UrlEntry]:
        analysis = parse_sitemap(await self.fetch_xml(loc), loc)
        if isinstance(analysis, IndexAnalysis):
            logger.debug(f"Skipping nested sitemap index in batch: {loc}")
            return []
        return analysis.entries

    async def aclose(self):
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
