"""Configuration and constants for the sitemap builder."""

import os
import re
from typing import List, Optional, Pattern
from .types import (
    CapPolicy,
    ChangeFrequency,
    CrawlConfig,
    DuplicatePolicy,
    GeneratorConfig,
    LastmodFormat,
    OversizePolicy,
)

SITEMAP_NAMESPACE = "http://www.sitemaps.org/schemas/sitemap/0.9"

# sitemaps.org protocol limits
MAX_URLS_PER_SITEMAP = 50000
MAX_BYTES_PER_SITEMAP = 52428800  # 50 MiB, uncompressed
MAX_URL_LENGTH = 2048
MAX_SITEMAPS_PER_INDEX = 50000

# Generation defaults
DEFAULT_ENTRY_CAP = 1_000_000
DEFAULT_CLOCK_SKEW_SECONDS = 300.0
DEFAULT_PRIORITY_DIGITS = 1
DEFAULT_FILENAME_PREFIX = "sitemap"
DEFAULT_INDEX_FILENAME = "sitemap_index.xml"
DEFAULT_SITEMAP_OUTPUT_DIR = "data/sitemap/"

# Crawling configuration
DEFAULT_MAX_DEPTH = 5
DEFAULT_MAX_CONCURRENT_REQUESTS = 10
DEFAULT_CRAWL_DELAY = 1.0  # seconds
DEFAULT_REQUEST_TIMEOUT = 30  # seconds
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_MAX_BACKOFF = 10.0  # seconds
DEFAULT_DATABASE_PATH = ":memory:"

# HTTP configuration
DEFAULT_USER_AGENT = "Sitemap-Builder/1.0"
DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
}

# URL patterns the crawler never follows
SKIP_URL_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\.(pdf|doc|docx|xls|xlsx|ppt|pptx|zip|rar|tar|gz)$", re.IGNORECASE),
    re.compile(r"\.(jpg|jpeg|png|gif|bmp|svg|ico|webp)$", re.IGNORECASE),
    re.compile(r"\.(css|js|json|xml|txt)$", re.IGNORECASE),
    re.compile(r"^(mailto|tel|javascript):", re.IGNORECASE),
]


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in ("1", "true", "yes")


def _env_optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


def get_config_from_env() -> GeneratorConfig:
    """Create generation configuration from environment variables with defaults."""
    default_changefreq = os.getenv("SITEMAP_DEFAULT_CHANGEFREQ")

    return GeneratorConfig(
        max_entries_per_sitemap=int(
            os.getenv("SITEMAP_MAX_URLS_PER_SITEMAP", MAX_URLS_PER_SITEMAP)
        ),
        max_bytes_per_sitemap=int(
            os.getenv("SITEMAP_MAX_BYTES_PER_SITEMAP", MAX_BYTES_PER_SITEMAP)
        ),
        entry_cap=int(os.getenv("SITEMAP_ENTRY_CAP", DEFAULT_ENTRY_CAP)),
        cap_policy=CapPolicy(os.getenv("SITEMAP_CAP_POLICY", CapPolicy.FAIL.value)),
        duplicate_policy=DuplicatePolicy(
            os.getenv("SITEMAP_DUPLICATE_POLICY", DuplicatePolicy.LAST_WRITE_WINS.value)
        ),
        oversize_policy=OversizePolicy(
            os.getenv("SITEMAP_OVERSIZE_POLICY", OversizePolicy.FAIL.value)
        ),
        collapse_slashes=_env_bool("SITEMAP_COLLAPSE_SLASHES", False),
        base_url=os.getenv("SITEMAP_BASE_URL") or None,
        sitemap_base_url=os.getenv("SITEMAP_PUBLIC_URL") or None,
        compress=_env_bool("SITEMAP_GZIP", False),
        lastmod_format=LastmodFormat(
            os.getenv("SITEMAP_LASTMOD_FORMAT", LastmodFormat.DATETIME.value)
        ),
        priority_digits=int(os.getenv("SITEMAP_PRIORITY_DIGITS", DEFAULT_PRIORITY_DIGITS)),
        clock_skew_seconds=float(
            os.getenv("SITEMAP_CLOCK_SKEW", DEFAULT_CLOCK_SKEW_SECONDS)
        ),
        filename_prefix=os.getenv("SITEMAP_FILENAME_PREFIX", DEFAULT_FILENAME_PREFIX),
        index_filename=os.getenv("SITEMAP_INDEX_FILENAME", DEFAULT_INDEX_FILENAME),
        default_changefreq=ChangeFrequency(default_changefreq) if default_changefreq else None,
        default_priority=_env_optional_float("SITEMAP_DEFAULT_PRIORITY"),
        default_dir=os.getenv("SITEMAP_DEFAULT_DIR") or None,
        default_extension=os.getenv("SITEMAP_DEFAULT_EXTENSION") or None,
    )


def get_crawl_config_from_env(base_urls: List[str]) -> CrawlConfig:
    """Create crawl configuration from environment variables with defaults."""
    return CrawlConfig(
        base_urls=base_urls,
        max_depth=int(os.getenv("SITEMAP_MAX_DEPTH", DEFAULT_MAX_DEPTH)),
        max_concurrent_requests=int(
            os.getenv("SITEMAP_MAX_CONCURRENT", DEFAULT_MAX_CONCURRENT_REQUESTS)
        ),
        crawl_delay=float(os.getenv("SITEMAP_CRAWL_DELAY", DEFAULT_CRAWL_DELAY)),
        request_timeout=int(os.getenv("SITEMAP_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)),
        database_path=os.getenv("SITEMAP_DATABASE_PATH", DEFAULT_DATABASE_PATH),
        user_agent=os.getenv("SITEMAP_USER_AGENT", DEFAULT_USER_AGENT),
        respect_robots_txt=_env_bool("SITEMAP_RESPECT_ROBOTS", True),
    )


def validate_config(config: GeneratorConfig) -> None:
    """Validate configuration parameters against the protocol limits."""
    if not 1 <= config.max_entries_per_sitemap <= MAX_URLS_PER_SITEMAP:
        raise ValueError(
            f"Max URLs per sitemap must be between 1 and {MAX_URLS_PER_SITEMAP}"
        )

    if not 1 <= config.max_bytes_per_sitemap <= MAX_BYTES_PER_SITEMAP:
        raise ValueError(
            f"Max bytes per sitemap must be between 1 and {MAX_BYTES_PER_SITEMAP}"
        )

    if not 1 <= config.max_url_length <= MAX_URL_LENGTH:
        raise ValueError(f"Max URL length must be between 1 and {MAX_URL_LENGTH}")

    if config.entry_cap < 1:
        raise ValueError("Entry cap must be at least 1")

    if not 1 <= config.priority_digits <= 4:
        raise ValueError("Priority digits must be between 1 and 4")

    if config.clock_skew_seconds < 0:
        raise ValueError("Clock skew tolerance cannot be negative")

    if config.default_priority is not None and not 0.0 <= config.default_priority <= 1.0:
        raise ValueError("Default priority must be between 0.0 and 1.0")

    if not config.filename_prefix or "/" in config.filename_prefix:
        raise ValueError(f"Invalid filename prefix: {config.filename_prefix!r}")

    if config.default_dir and "//" in config.default_dir:
        raise ValueError(f"Default directory must be a relative path: {config.default_dir!r}")

    if config.default_extension and any(c in config.default_extension for c in "/?#"):
        raise ValueError(f"Invalid default extension: {config.default_extension!r}")

    for url in (config.base_url, config.sitemap_base_url):
        if url and not url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid URL format: {url}")


def validate_crawl_config(config: CrawlConfig) -> None:
    """Validate crawl parameters."""
    if not config.base_urls:
        raise ValueError("At least one base URL is required for crawling")

    for url in config.base_urls:
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid URL format: {url}")

    if config.max_depth < 0:
        raise ValueError("Max depth cannot be negative")

    if config.max_concurrent_requests < 1:
        raise ValueError("Max concurrent requests must be at least 1")

    if config.crawl_delay < 0:
        raise ValueError("Crawl delay cannot be negative")

    if config.request_timeout < 1:
        raise ValueError("Request timeout must be at least 1 second")

    if config.max_attempts < 1:
        raise ValueError("Max attempts must be at least 1")


def should_skip_url(url: str) -> bool:
    """Check if URL should be skipped based on patterns."""
    return any(pattern.search(url) for pattern in SKIP_URL_PATTERNS)
