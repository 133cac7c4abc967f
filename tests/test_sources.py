"""Tests for entry sources."""

import gzip
import os
import tempfile
import pytest
from sitemap_builder.sources import (
    SitemapFileSource,
    StaticSource,
    TextFileSource,
    as_raw_entry,
)
from sitemap_builder.types import ChangeFrequency, RawEntry, URLEntry

SITEMAP_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url>
    <loc>https://example.com/</loc>
    <lastmod>2024-01-01</lastmod>
    <changefreq>daily</changefreq>
    <priority>1.0</priority>
  </url>
  <url>
    <loc> https://example.com/a?x=1&amp;y=2 </loc>
  </url>
  <url>
    <priority>0.5</priority>
  </url>
</urlset>
"""


async def collect(source):
    return [entry async for entry in source]


def test_as_raw_entry_shapes():
    assert as_raw_entry("https://e.com/") == RawEntry("https://e.com/")
    assert as_raw_entry(("https://e.com/", None, "daily")) == RawEntry("https://e.com/", None, "daily")
    assert as_raw_entry({"url": "https://e.com/", "priority": 0.3}) == RawEntry(
        "https://e.com/", priority=0.3
    )
    assert as_raw_entry(URLEntry("https://e.com/", changefreq=ChangeFrequency.NEVER)) == RawEntry(
        "https://e.com/", changefreq=ChangeFrequency.NEVER
    )
    entry = RawEntry("https://e.com/")
    assert as_raw_entry(entry) is entry


@pytest.mark.parametrize("item", [None, 3.5, {"priority": 1}, (), ("a", "b", "c", "d", "e")])
def test_as_raw_entry_rejects(item):
    with pytest.raises(TypeError):
        as_raw_entry(item)


@pytest.mark.asyncio
async def test_static_source():
    """Items come out exactly as given, in order."""
    items = ["https://e.com/1", ("https://e.com/2", "2024-01-01"), {"href": "x"}]
    assert await collect(StaticSource(items)) == items


@pytest.mark.parametrize("line, expected", [
    ("https://e.com/\n", RawEntry("https://e.com/")),
    ("https://e.com/\t2024-01-01\tweekly\t0.4\r\n", RawEntry("https://e.com/", "2024-01-01", "weekly", "0.4")),
    ("https://e.com/\t\t\t0.4", RawEntry("https://e.com/", None, None, "0.4")),
    ("# comment\n", None),
    ("   \n", None),
    ("\t2024-01-01\n", None),
])
def test_text_line_parsing(line, expected):
    assert TextFileSource.parse_line(line) == expected


@pytest.mark.asyncio
async def test_text_file_source():
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "urls.txt")
        with open(path, "w", encoding="utf-8") as f:
            f.write("# site pages\nhttps://e.com/\n\nhttps://e.com/about\t2024-02-02\n")

        entries = await collect(TextFileSource(path))

    assert entries == [RawEntry("https://e.com/"), RawEntry("https://e.com/about", "2024-02-02")]


@pytest.mark.asyncio
@pytest.mark.parametrize("compressed", [False, True])
async def test_sitemap_file_source(compressed):
    """Existing sitemaps are read back, plain or gzipped; entries without loc are skipped."""
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "sitemap.xml.gz" if compressed else "sitemap.xml")
        with open(path, "wb") as f:
            f.write(gzip.compress(SITEMAP_XML) if compressed else SITEMAP_XML)

        entries = await collect(SitemapFileSource(path))

    assert entries == [
        RawEntry("https://example.com/", "2024-01-01", "daily", "1.0"),
        RawEntry("https://example.com/a?x=1&y=2"),
    ]


@pytest.mark.asyncio
async def test_sitemap_file_source_empty_urlset():
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "empty.xml")
        with open(path, "wb") as f:
            f.write(b'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9"/>')

        assert await collect(SitemapFileSource(path)) == []
