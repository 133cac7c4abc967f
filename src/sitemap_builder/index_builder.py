"""Sitemap index construction and robots.txt pointers."""

import logging
from datetime import datetime
from typing import Optional, Sequence
from urllib.parse import urljoin
from .config import MAX_SITEMAPS_PER_INDEX, SITEMAP_NAMESPACE
from .errors import IndexLimitExceededError
from .serializer import XML_DECLARATION, escape_xml, format_lastmod
from .types import IndexEntry, LastmodFormat, SitemapDocument, SitemapIndex
from .utils import to_utc

logger = logging.getLogger(__name__)


def public_location(path: str, base_url: Optional[str]) -> str:
    """Location of a written file as referenced from an index or robots.txt."""
    if not base_url:
        return path
    return urljoin(base_url.rstrip("/") + "/", path.lstrip("/"))


def build_index(documents: Sequence[SitemapDocument], generated_at: datetime) -> SitemapIndex:
    """
    Build the index for a multi-file run.

    Each shard's lastmod is the newest lastmod among its entries, or the
    run's timestamp when none of them carries one.
    """
    if len(documents) < 2:
        raise ValueError("A sitemap index needs more than one sitemap file")
    if len(documents) > MAX_SITEMAPS_PER_INDEX:
        raise IndexLimitExceededError(len(documents), MAX_SITEMAPS_PER_INDEX)

    run_time = to_utc(generated_at)
    return SitemapIndex(entries=[
        IndexEntry(path=document.path, lastmod=document.lastmod or run_time)
        for document in documents
    ])


def render_index(
    index: SitemapIndex,
    base_url: Optional[str] = None,
    lastmod_format: LastmodFormat = LastmodFormat.DATETIME
) -> bytes:
    """Render the ``<sitemapindex>`` document."""
    parts = [XML_DECLARATION, f'<sitemapindex xmlns="{SITEMAP_NAMESPACE}">\n']

    for entry in index.entries:
        parts.append("  <sitemap>\n")
        parts.append(f"    <loc>{escape_xml(public_location(entry.path, base_url))}</loc>\n")
        parts.append(f"    <lastmod>{format_lastmod(entry.lastmod, lastmod_format)}</lastmod>\n")
        parts.append("  </sitemap>\n")

    parts.append("</sitemapindex>\n")
    return "".join(parts).encode("utf-8")


def render_robots_txt(sitemap_url: str) -> bytes:
    """robots.txt body allowing everything and pointing at the sitemap (or index)."""
    return (
        "User-agent: *\n"
        "Allow: /\n"
        "\n"
        f"Sitemap: {sitemap_url}\n"
    ).encode("utf-8")
