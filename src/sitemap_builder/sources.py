"""Entry sources: static lists, text files and existing sitemap files."""

import asyncio
import gzip
import logging
from typing import Any, AsyncIterator, BinaryIO, Iterable, Optional
from lxml import etree
from .config import SITEMAP_NAMESPACE
from .types import RawEntry, URLEntry

logger = logging.getLogger(__name__)

# Hand control back to the event loop every N entries read from disk
_YIELD_EVERY = 1000


def as_raw_entry(item: Any) -> RawEntry:
    """
    Coerce a source item to a RawEntry.

    Accepts RawEntry, URLEntry, a URL string, a ``(url, lastmod, changefreq,
    priority)`` tuple (trailing fields optional) or a mapping with ``url`` or
    ``loc`` plus optional metadata keys.
    """
    if isinstance(item, RawEntry):
        return item
    if isinstance(item, str):
        return RawEntry(url=item)
    if isinstance(item, URLEntry):
        return RawEntry(item.loc, item.lastmod, item.changefreq, item.priority)
    if isinstance(item, dict):
        url = item.get("url", item.get("loc"))
        if url is None:
            raise TypeError(f"Mapping entry has no 'url' or 'loc' key: {item!r}")
        return RawEntry(
            url=url,
            lastmod=item.get("lastmod"),
            changefreq=item.get("changefreq"),
            priority=item.get("priority"),
        )
    if isinstance(item, (tuple, list)) and 1 <= len(item) <= 4:
        return RawEntry(*item)
    raise TypeError(f"Cannot build a sitemap entry from {type(item).__name__}")


class StaticSource:
    """
    Entries supplied up front by the caller.

    Items are passed through as given; the collector coerces them and
    records the ones it cannot read.
    """

    def __init__(self, items: Iterable[Any]):
        self.items = items

    async def entries(self) -> AsyncIterator[Any]:
        for count, item in enumerate(self.items, 1):
            yield item
            if count % _YIELD_EVERY == 0:
                await asyncio.sleep(0)

    def __aiter__(self) -> AsyncIterator[Any]:
        return self.entries()


class TextFileSource:
    """
    Entries read from a text file, one per line.

    Each line holds a URL optionally followed by tab-separated lastmod,
    changefreq and priority columns. Blank lines and lines starting with
    ``#`` are ignored; empty columns mean "absent".
    """

    def __init__(self, path: str, encoding: str = "utf-8"):
        self.path = path
        self.encoding = encoding

    @staticmethod
    def parse_line(line: str) -> Optional[RawEntry]:
        text = line.rstrip("\r\n")
        if not text.strip() or text.lstrip().startswith("#"):
            return None
        columns = [column.strip() or None for column in text.split("\t")]
        if columns[0] is None:
            return None
        return RawEntry(*columns[:4])

    async def entries(self) -> AsyncIterator[RawEntry]:
        with open(self.path, "r", encoding=self.encoding) as f:
            for line_number, line in enumerate(f, 1):
                entry = self.parse_line(line)
                if entry is not None:
                    yield entry
                if line_number % _YIELD_EVERY == 0:
                    await asyncio.sleep(0)

    def __aiter__(self) -> AsyncIterator[RawEntry]:
        return self.entries()


class SitemapFileSource:
    """Entries read back from an existing sitemap file (plain or gzipped)."""

    def __init__(self, path: str):
        self.path = path

    def _open(self) -> BinaryIO:
        with open(self.path, "rb") as head:
            is_gzip = head.read(2) == b"\x1f\x8b"
        if is_gzip:
            return gzip.open(self.path, "rb")
        return open(self.path, "rb")

    async def entries(self) -> AsyncIterator[RawEntry]:
        tag = f"{{{SITEMAP_NAMESPACE}}}url"
        count = 0

        with self._open() as f:
            context = etree.iterparse(
                f, events=("end",), tag=tag, resolve_entities=False, huge_tree=True
            )
            for _, element in context:
                fields = {
                    etree.QName(child).localname: (child.text or "").strip() or None
                    for child in element
                    if isinstance(child.tag, str)
                }
                element.clear()
                while element.getprevious() is not None:
                    del element.getparent()[0]

                if not fields.get("loc"):
                    logger.debug(f"Skipping <url> without <loc> in {self.path}")
                    continue

                count += 1
                yield RawEntry(
                    url=fields["loc"],
                    lastmod=fields.get("lastmod"),
                    changefreq=fields.get("changefreq"),
                    priority=fields.get("priority"),
                )
                if count % _YIELD_EVERY == 0:
                    await asyncio.sleep(0)

        if count == 0:
            logger.warning(f"No <url> entries found in {self.path}")

    def __aiter__(self) -> AsyncIterator[RawEntry]:
        return self.entries()
