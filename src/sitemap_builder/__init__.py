"""
Sitemap Builder

Generates sitemaps.org compliant XML sitemaps from URL lists, existing
sitemap files or a crawl of a site.

Key Features:
- Canonicalizes URLs so equivalent spellings collapse to one entry
- Validates entries and reports every discarded one in the run manifest
- Splits output to respect the 50,000 URL and 50 MiB per-file limits
- Writes a sitemap index when more than one file is needed
- Optional gzip output
- Concurrent crawl source with robots.txt exclusion and retry/backoff
"""

__version__ = "1.0.0"

from .collector import DeduplicatingCollector
from .crawler import CrawlSource
from .errors import (
    EntryCapExceededError,
    EntryExceedsMaxSizeError,
    EntryValidationError,
    GenerationCancelledError,
    MalformedURLError,
    NoValidEntriesError,
    SinkWriteError,
    SitemapError,
    UnsupportedSchemeError,
)
from .generator import SitemapGenerator, run_generation
from .normalizer import normalize_url
from .partitioner import LimitAwarePartitioner
from .serializer import SitemapSerializer
from .sink import FileSystemSink, MemorySink
from .sources import SitemapFileSource, StaticSource, TextFileSource
from .types import (
    ChangeFrequency,
    CrawlConfig,
    GenerationManifest,
    GeneratorConfig,
    RawEntry,
    URLEntry,
)
from .validator import EntryValidator
from .main import main

__all__ = [
    "ChangeFrequency",
    "CrawlConfig",
    "CrawlSource",
    "DeduplicatingCollector",
    "EntryCapExceededError",
    "EntryExceedsMaxSizeError",
    "EntryValidationError",
    "EntryValidator",
    "FileSystemSink",
    "GenerationCancelledError",
    "GenerationManifest",
    "GeneratorConfig",
    "LimitAwarePartitioner",
    "MalformedURLError",
    "MemorySink",
    "NoValidEntriesError",
    "RawEntry",
    "SinkWriteError",
    "SitemapError",
    "SitemapFileSource",
    "SitemapGenerator",
    "SitemapSerializer",
    "StaticSource",
    "TextFileSource",
    "URLEntry",
    "UnsupportedSchemeError",
    "main",
    "normalize_url",
    "run_generation",
]
