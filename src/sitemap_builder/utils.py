"""Utility functions for the sitemap builder."""

import asyncio
import logging
import os
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type
from urllib.parse import urljoin, urlsplit
from urllib.robotparser import RobotFileParser
import aiohttp

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Set up logging configuration."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


def format_number(number: int) -> str:
    """Format number with thousands separators."""
    return f"{number:,}"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """
    Coerce a lastmod value to an aware UTC datetime.

    Accepts datetimes, dates and ISO 8601 strings (date or date-time).
    Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty timestamp")
        return to_utc(datetime.fromisoformat(text))
    raise ValueError(f"unsupported timestamp type {type(value).__name__}")


def parse_http_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an HTTP Last-Modified header, returning None when absent or invalid."""
    if not value:
        return None
    try:
        return to_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unparseable Last-Modified header: {value!r}")
        return None


def parse_content_type(content_type: str) -> str:
    """Parse content type header to extract main type."""
    if not content_type:
        return "unknown"

    main_type = content_type.split(";")[0].strip().lower()
    return main_type


def is_html_content(content_type: str) -> bool:
    """Check if content type indicates HTML content."""
    main_type = parse_content_type(content_type)
    return main_type in ("text/html", "application/xhtml+xml")


def create_directory_if_not_exists(directory: str) -> None:
    """Create directory if it doesn't exist."""
    if directory:
        os.makedirs(directory, exist_ok=True)


class RateLimiter:
    """Simple rate limiter for controlling request frequency."""

    def __init__(self, delay: float):
        self.delay = delay
        self.last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        """Wait if necessary to respect rate limit."""
        async with self._lock:
            loop = asyncio.get_running_loop()
            time_since_last = loop.time() - self.last_request_time

            if time_since_last < self.delay:
                await asyncio.sleep(self.delay - time_since_last)

            self.last_request_time = loop.time()


class RobotsChecker:
    """
    robots.txt exclusion checks.

    Rules are fetched per origin with ``load``; afterwards ``is_allowed`` is a
    plain synchronous predicate suitable for the collector. Origins that were
    never loaded are allowed.
    """

    def __init__(self, user_agent: str = "*"):
        self.user_agent = user_agent
        self._robots_cache: Dict[str, RobotFileParser] = {}

    @staticmethod
    def _origin(url: str) -> str:
        parsed = urlsplit(url)
        return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"

    def add_rules(self, origin_url: str, robots_txt: str) -> None:
        """Register robots.txt content for the origin of ``origin_url``."""
        rp = RobotFileParser()
        rp.parse(robots_txt.splitlines())
        self._robots_cache[self._origin(origin_url)] = rp

    async def load(self, url: str, session: aiohttp.ClientSession) -> None:
        """Fetch and cache robots.txt for the origin of ``url``; non-HTTP URLs are ignored."""
        parsed = urlsplit(url)
        if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
            return

        origin = self._origin(url)
        if origin in self._robots_cache:
            return

        rp = RobotFileParser()
        robots_url = urljoin(origin, "/robots.txt")
        rp.set_url(robots_url)
        try:
            async with session.get(robots_url, allow_redirects=True) as response:
                if response.status in (401, 403):
                    rp.disallow_all = True
                elif 400 <= response.status < 500:
                    rp.allow_all = True
                elif response.status >= 500:
                    # Treat server errors as temporarily allowing everything
                    rp.allow_all = True
                else:
                    text = await response.text(errors="ignore")
                    rp.parse(text.splitlines())
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Could not read robots.txt for {origin}: {e}")
            rp.allow_all = True

        self._robots_cache[origin] = rp

    async def can_fetch(self, url: str, session: aiohttp.ClientSession) -> bool:
        """Check if URL can be fetched according to robots.txt, loading rules if needed."""
        await self.load(url, session)
        return self.is_allowed(url)

    def is_allowed(self, url: str) -> bool:
        rp = self._robots_cache.get(self._origin(url))
        if rp is None:
            return True
        return rp.can_fetch(self.user_agent, url)

    __call__ = is_allowed


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_delay: float = 10.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,)
) -> Any:
    """Retry an async function with capped exponential backoff."""
    last_exception: Optional[BaseException] = None

    for attempt in range(max_attempts):
        try:
            return await func()
        except exceptions as e:
            last_exception = e
            if attempt == max_attempts - 1:
                break

            wait_time = min(delay * (backoff_factor ** attempt), max_delay)
            logger.debug(f"Attempt {attempt + 1} failed, retrying in {wait_time:.1f}s: {e}")
            await asyncio.sleep(wait_time)

    raise last_exception
