"""Type definitions for the sitemap builder."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class ChangeFrequency(Enum):
    """Sitemap change frequency values."""
    ALWAYS = "always"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    NEVER = "never"


class DuplicatePolicy(Enum):
    """Which metadata survives when a URL is seen more than once."""
    LAST_WRITE_WINS = "last_write_wins"
    FIRST_WRITE_WINS = "first_write_wins"


class CapPolicy(Enum):
    """What to do once the collector holds the configured number of entries."""
    FAIL = "fail"
    TRUNCATE = "truncate"


class OversizePolicy(Enum):
    """What to do with an entry too large for any sitemap file."""
    FAIL = "fail"
    SKIP = "skip"


class LastmodFormat(Enum):
    """W3C datetime precision used for every lastmod in a run."""
    DATETIME = "datetime"
    DATE = "date"


class GenerationState(Enum):
    """Stages of a generation run."""
    IDLE = "idle"
    COLLECTING = "collecting"
    PARTITIONING = "partitioning"
    SERIALIZING = "serializing"
    INDEX_BUILDING = "index_building"
    DONE = "done"
    FAILED = "failed"


class CrawlStatus(Enum):
    """Status of URL crawling."""
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


LastmodValue = Union[datetime, date, str]


@dataclass
class RawEntry:
    """Entry as produced by a source, before normalization and validation."""
    url: str
    lastmod: Optional[LastmodValue] = None
    changefreq: Optional[Union[ChangeFrequency, str]] = None
    priority: Optional[Union[float, str]] = None


@dataclass
class URLEntry:
    """Canonical, validated entry in a sitemap."""
    loc: str
    lastmod: Optional[datetime] = None
    changefreq: Optional[ChangeFrequency] = None
    priority: Optional[float] = None


@dataclass
class Shard:
    """One sitemap file's worth of entries."""
    sequence: int
    entries: List[URLEntry]
    path: str = ""
    size: int = 0

    @property
    def lastmod(self) -> Optional[datetime]:
        """Latest lastmod among the shard's entries."""
        values = [entry.lastmod for entry in self.entries if entry.lastmod]
        return max(values) if values else None


@dataclass
class SitemapDocument:
    """Rendered payload for one shard."""
    path: str
    content: bytes
    entry_count: int
    uncompressed_size: int
    compressed: bool = False
    lastmod: Optional[datetime] = None


@dataclass
class IndexEntry:
    """Reference to one sitemap file inside a sitemap index."""
    path: str
    lastmod: datetime


@dataclass
class SitemapIndex:
    """Ordered references to every shard of a run."""
    entries: List[IndexEntry] = field(default_factory=list)


@dataclass
class EntryWarning:
    """
    A discarded entry, as reported in the manifest.

    ``kind`` is the first reason; ``kinds`` lists every reason found, which
    is more than one only when several metadata fields failed validation.
    """
    url: str
    kind: str
    message: str
    kinds: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.kinds:
            self.kinds = [self.kind]


@dataclass
class GenerationManifest:
    """Summary of a generation run."""
    files: List[str]
    total_entries: int
    discarded_entries: int
    shard_count: int
    warnings: List[EntryWarning] = field(default_factory=list)
    index_path: Optional[str] = None
    truncated: bool = False
    generated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data form suitable for JSON export."""
        return {
            "files": list(self.files),
            "total_entries": self.total_entries,
            "discarded_entries": self.discarded_entries,
            "shard_count": self.shard_count,
            "index_path": self.index_path,
            "truncated": self.truncated,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
            "warnings": [
                {"url": w.url, "kind": w.kind, "kinds": list(w.kinds), "message": w.message}
                for w in self.warnings
            ],
        }


@dataclass
class GeneratorConfig:
    """Configuration for a generation run."""
    max_entries_per_sitemap: int = 50000
    max_bytes_per_sitemap: int = 52428800
    max_url_length: int = 2048
    entry_cap: int = 1_000_000
    cap_policy: CapPolicy = CapPolicy.FAIL
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.LAST_WRITE_WINS
    oversize_policy: OversizePolicy = OversizePolicy.FAIL
    collapse_slashes: bool = False
    base_url: Optional[str] = None
    sitemap_base_url: Optional[str] = None
    compress: bool = False
    lastmod_format: LastmodFormat = LastmodFormat.DATETIME
    priority_digits: int = 1
    clock_skew_seconds: float = 300.0
    filename_prefix: str = "sitemap"
    index_filename: str = "sitemap_index.xml"
    default_changefreq: Optional[ChangeFrequency] = None
    default_priority: Optional[float] = None
    default_lastmod: Optional[datetime] = None
    default_dir: Optional[str] = None
    default_extension: Optional[str] = None
    show_progress: bool = False


@dataclass
class CrawlConfig:
    """Configuration for the crawl source."""
    base_urls: List[str]
    max_depth: int = 5
    max_concurrent_requests: int = 10
    crawl_delay: float = 1.0
    request_timeout: int = 30
    max_attempts: int = 3
    max_backoff: float = 10.0
    database_path: str = ":memory:"
    user_agent: str = "Sitemap-Builder/1.0"
    respect_robots_txt: bool = True
    max_page_bytes: int = 1_000_000


@dataclass
class CrawlResult:
    """Result of crawling a single URL."""
    url: str
    status_code: int
    discovered_urls: List[str]
    error: Optional[str] = None
    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None
    response_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status_code < 400


@dataclass
class CrawlStatistics:
    """Statistics about the crawling process."""
    total_urls_discovered: int = 0
    total_urls_crawled: int = 0
    successful_crawls: int = 0
    failed_crawls: int = 0
    skipped_urls: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        """Calculate crawling duration in seconds."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0

    @property
    def success_rate(self) -> float:
        """Calculate success rate as percentage."""
        if self.total_urls_crawled == 0:
            return 0.0
        return (self.successful_crawls / self.total_urls_crawled) * 100
