"""Sitemap XML rendering and compression."""

import gzip
import logging
from datetime import datetime
from typing import Iterable, Optional
from xml.sax.saxutils import escape
from .config import DEFAULT_PRIORITY_DIGITS, SITEMAP_NAMESPACE
from .types import LastmodFormat, Shard, SitemapDocument, URLEntry
from .utils import to_utc

logger = logging.getLogger(__name__)

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

_QUOTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def escape_xml(text: str) -> str:
    """Escape ``& < > " '`` for use in XML text."""
    return escape(text, _QUOTE_ENTITIES)


def format_lastmod(value: datetime, lastmod_format: LastmodFormat = LastmodFormat.DATETIME) -> str:
    """Render a timestamp in W3C datetime form, always in UTC."""
    value = to_utc(value)
    if lastmod_format == LastmodFormat.DATE:
        return value.strftime("%Y-%m-%d")
    return value.strftime("%Y-%m-%dT%H:%M:%S+00:00")


def format_priority(value: float, digits: int = DEFAULT_PRIORITY_DIGITS) -> str:
    """Render a priority with at most ``digits`` decimals and no trailing zeros."""
    text = f"{value:.{digits}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def compress_bytes(data: bytes) -> bytes:
    """Gzip ``data`` with a fixed header timestamp so equal input gives equal output."""
    return gzip.compress(data, compresslevel=9, mtime=0)


class SitemapSerializer:
    """
    Renders entries into the fixed sitemap document layout.

    The document is the header, one fragment per entry and the footer,
    concatenated, so its size is exactly ``overhead`` plus the sum of the
    fragment sizes. The partitioner relies on this.
    """

    def __init__(
        self,
        lastmod_format: LastmodFormat = LastmodFormat.DATETIME,
        priority_digits: int = DEFAULT_PRIORITY_DIGITS,
        compress: bool = False
    ):
        self.lastmod_format = lastmod_format
        self.priority_digits = priority_digits
        self.compress = compress
        self.header = (
            XML_DECLARATION + f'<urlset xmlns="{SITEMAP_NAMESPACE}">\n'
        ).encode("utf-8")
        self.footer = b"</urlset>\n"

    @property
    def overhead(self) -> int:
        """Bytes every document carries regardless of its entries."""
        return len(self.header) + len(self.footer)

    def render_entry(self, entry: URLEntry) -> bytes:
        """Render one ``<url>`` block, including its trailing newline."""
        parts = ["  <url>\n", f"    <loc>{escape_xml(entry.loc)}</loc>\n"]

        if entry.lastmod is not None:
            parts.append(
                f"    <lastmod>{format_lastmod(entry.lastmod, self.lastmod_format)}</lastmod>\n"
            )

        if entry.changefreq is not None:
            parts.append(f"    <changefreq>{entry.changefreq.value}</changefreq>\n")

        if entry.priority is not None:
            parts.append(
                f"    <priority>{format_priority(entry.priority, self.priority_digits)}</priority>\n"
            )

        parts.append("  </url>\n")
        return "".join(parts).encode("utf-8")

    def entry_size(self, entry: URLEntry) -> int:
        return len(self.render_entry(entry))

    def render(self, entries: Iterable[URLEntry]) -> bytes:
        """Render a complete, uncompressed sitemap document."""
        chunks = [self.header]
        chunks.extend(self.render_entry(entry) for entry in entries)
        chunks.append(self.footer)
        return b"".join(chunks)

    def serialize(self, shard: Shard, path: Optional[str] = None) -> SitemapDocument:
        """Render a shard, compressing it when configured."""
        content = self.render(shard.entries)
        uncompressed_size = len(content)

        if self.compress:
            content = compress_bytes(content)

        logger.debug(
            f"Serialized shard {shard.sequence}: {len(shard.entries)} URLs, "
            f"{uncompressed_size} bytes uncompressed"
        )

        return SitemapDocument(
            path=path or shard.path,
            content=content,
            entry_count=len(shard.entries),
            uncompressed_size=uncompressed_size,
            compressed=self.compress,
            lastmod=shard.lastmod,
        )
