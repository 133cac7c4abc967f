"""Crawl source: discovers entries by following links with a bounded worker pool."""

import asyncio
import logging
import time
from datetime import datetime
from typing import AsyncIterator, List, Optional, Set, Tuple
from urllib.parse import urljoin, urlsplit
import aiohttp
from bs4 import BeautifulSoup, SoupStrainer
from tqdm import tqdm
from .config import DEFAULT_HEADERS, should_skip_url, validate_crawl_config
from .errors import NormalizationError
from .normalizer import normalize_url
from .types import CrawlConfig, CrawlResult, CrawlStatistics, RawEntry
from .url_store import URLStore
from .utils import (
    RateLimiter,
    RobotsChecker,
    format_duration,
    format_number,
    is_html_content,
    parse_http_date,
    retry_async,
    utc_now,
)

logger = logging.getLogger(__name__)

_DONE = object()


class TransientHTTPError(Exception):
    """Server answered with a status worth retrying (429 or 5xx)."""

    def __init__(self, url: str, status: int):
        super().__init__(f"HTTP {status} for {url}")
        self.url = url
        self.status = status


async def create_crawler_session(
    timeout: int = 30,
    max_connections: int = 100,
    user_agent: str = ""
) -> aiohttp.ClientSession:
    """Create optimized aiohttp session for crawling."""
    timeout_config = aiohttp.ClientTimeout(
        total=timeout,
        connect=10,
        sock_read=timeout
    )

    connector = aiohttp.TCPConnector(
        limit=max_connections,
        limit_per_host=20,
        ttl_dns_cache=300,
        enable_cleanup_closed=True
    )

    headers = DEFAULT_HEADERS.copy()
    if user_agent:
        headers["User-Agent"] = user_agent

    return aiohttp.ClientSession(
        connector=connector,
        timeout=timeout_config,
        headers=headers,
        raise_for_status=False  # Handle status codes manually
    )


class CrawlSource:
    """
    Entry source that crawls one or more sites.

    Fetches run concurrently in a pool of ``max_concurrent_requests`` workers;
    every successfully fetched HTML page is handed to the consumer through a
    single results queue, so the consumer never sees concurrent calls.
    Setting ``cancel_event`` ends the iteration at once and cancels the
    workers, requests in flight included; closing the iterator early tears
    the workers down the same way.
    """

    def __init__(
        self,
        config: CrawlConfig,
        store: Optional[URLStore] = None,
        session: Optional[aiohttp.ClientSession] = None,
        robots_checker: Optional[RobotsChecker] = None,
        cancel_event: Optional[asyncio.Event] = None,
        show_progress: bool = False
    ):
        validate_crawl_config(config)
        self.config = config
        self.store = store or URLStore(config.database_path)
        self.session = session
        self._owns_session = session is None
        self.robots_checker = robots_checker or RobotsChecker(config.user_agent)
        self.cancel_event = cancel_event
        self.show_progress = show_progress
        self.rate_limiter = RateLimiter(config.crawl_delay)
        self.statistics = CrawlStatistics()
        self.parse_only = SoupStrainer(["a", "link", "area"])
        self.allowed_hosts: Set[str] = {
            urlsplit(normalize_url(url)).netloc for url in config.base_urls
        }

    def __aiter__(self) -> AsyncIterator[RawEntry]:
        return self.entries()

    def is_in_scope(self, url: str) -> bool:
        return urlsplit(url).netloc.lower() in self.allowed_hosts

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    async def _start(self) -> None:
        await self.store.initialize()
        if self.session is None:
            self.session = await create_crawler_session(
                timeout=self.config.request_timeout,
                max_connections=self.config.max_concurrent_requests * 2,
                user_agent=self.config.user_agent
            )

    async def _stop(self) -> None:
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None
        await self.store.close()

    async def entries(self) -> AsyncIterator[RawEntry]:
        """Crawl and yield one RawEntry per successfully fetched page."""
        await self._start()
        self.statistics.start_time = utc_now()

        frontier: asyncio.Queue = asyncio.Queue()
        results: asyncio.Queue = asyncio.Queue(maxsize=self.config.max_concurrent_requests * 10)
        tasks: List[asyncio.Task] = []
        progress = tqdm(desc="Crawling", unit="page", disable=not self.show_progress)

        try:
            for base_url in self.config.base_urls:
                try:
                    url = normalize_url(base_url)
                except NormalizationError as e:
                    logger.error(f"Skipping invalid base URL {base_url}: {e}")
                    continue
                if await self.store.add_url(url, depth=0):
                    frontier.put_nowait((url, 0))
                    self.statistics.total_urls_discovered += 1

            tasks = [
                asyncio.create_task(self._worker(frontier, results, progress))
                for _ in range(self.config.max_concurrent_requests)
            ]
            tasks.append(asyncio.create_task(self._signal_done(frontier, results)))

            while True:
                item = await self._next_result(results)
                if item is _DONE:
                    break
                yield item

        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            progress.close()
            self.statistics.end_time = utc_now()
            await self._log_statistics()
            await self._stop()

    async def _next_result(self, results: asyncio.Queue):
        """Next queued result, or ``_DONE`` as soon as the crawl is cancelled."""
        if self.cancel_event is None:
            return await results.get()

        getter = asyncio.ensure_future(results.get())
        cancelled = asyncio.ensure_future(self.cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {getter, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in (getter, cancelled):
                if not waiter.done():
                    waiter.cancel()

        if getter in done:
            return getter.result()
        logger.info("Crawl cancelled, abandoning in-flight requests")
        return _DONE

    async def _signal_done(self, frontier: asyncio.Queue, results: asyncio.Queue) -> None:
        await frontier.join()
        await results.put(_DONE)

    async def _worker(
        self,
        frontier: asyncio.Queue,
        results: asyncio.Queue,
        progress: tqdm
    ) -> None:
        while True:
            url, depth = await frontier.get()
            try:
                if self._cancelled():
                    await self.store.mark_skipped(url, "cancelled")
                    continue

                result = await self.crawl_url(url)
                await self._record(result)
                progress.update(1)

                if result.ok and result.status_code < 300:
                    await results.put(RawEntry(url=url, lastmod=result.last_modified))

                if depth < self.config.max_depth:
                    for link in result.discovered_urls:
                        if await self.store.add_url(link, depth=depth + 1, parent_url=url):
                            frontier.put_nowait((link, depth + 1))
                            self.statistics.total_urls_discovered += 1

            except Exception as e:
                logger.error(f"Error processing {url}: {e}")
                self.statistics.failed_crawls += 1
            finally:
                frontier.task_done()

    async def _record(self, result: CrawlResult) -> None:
        if result.error == "Disallowed by robots.txt":
            await self.store.mark_skipped(result.url, result.error)
            self.statistics.skipped_urls += 1
            return

        await self.store.mark_crawled(result)
        self.statistics.total_urls_crawled += 1
        if result.ok:
            self.statistics.successful_crawls += 1
        else:
            self.statistics.failed_crawls += 1

    async def crawl_url(self, url: str) -> CrawlResult:
        """
        Fetch a single URL and extract in-scope links.

        Transient failures are retried with capped exponential backoff; the
        returned result carries the error when every attempt failed.
        """
        start_time = time.monotonic()

        if self.config.respect_robots_txt:
            if not await self.robots_checker.can_fetch(url, self.session):
                logger.debug(f"Robots.txt disallows crawling: {url}")
                return CrawlResult(
                    url=url,
                    status_code=0,
                    discovered_urls=[],
                    error="Disallowed by robots.txt"
                )

        await self.rate_limiter.wait()

        try:
            status_code, content_type, html_content, last_modified, final_url = await retry_async(
                lambda: self._make_request(url),
                max_attempts=self.config.max_attempts,
                delay=min(1.0, self.config.max_backoff),
                max_delay=self.config.max_backoff,
                exceptions=(aiohttp.ClientError, asyncio.TimeoutError, TransientHTTPError)
            )
        except TransientHTTPError as e:
            return CrawlResult(
                url=url,
                status_code=e.status,
                discovered_urls=[],
                error=str(e),
                response_time=time.monotonic() - start_time
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to fetch {url} after {self.config.max_attempts} attempts: {e}")
            return CrawlResult(
                url=url,
                status_code=0,
                discovered_urls=[],
                error=str(e) or type(e).__name__,
                response_time=time.monotonic() - start_time
            )

        discovered_urls = []
        if is_html_content(content_type) and html_content:
            discovered_urls = self.extract_links(html_content, final_url)

        result = CrawlResult(
            url=url,
            status_code=status_code,
            discovered_urls=discovered_urls,
            content_type=content_type,
            last_modified=last_modified,
            response_time=time.monotonic() - start_time
        )

        if final_url != url:
            # Redirected pages are not listed themselves; their target is
            if self.is_in_scope(final_url) and final_url not in discovered_urls:
                discovered_urls.append(final_url)
            result.status_code = 301 if 200 <= status_code < 300 else status_code

        logger.debug(
            f"Crawled {url} -> {result.status_code} ({len(discovered_urls)} links, "
            f"{result.response_time:.2f}s)"
        )
        return result

    async def _make_request(self, url: str) -> Tuple[int, str, str, Optional[datetime], str]:
        async with self.session.get(url, allow_redirects=True, max_redirects=5) as response:
            if response.status == 429 or response.status >= 500:
                raise TransientHTTPError(url, response.status)

            content_type = response.headers.get("Content-Type", "")
            last_modified = parse_http_date(response.headers.get("Last-Modified"))

            try:
                final_url = normalize_url(str(response.url))
            except NormalizationError:
                final_url = url

            content = ""
            if is_html_content(content_type):
                content = await response.text(errors="ignore")
                if len(content) > self.config.max_page_bytes:
                    content = content[:self.config.max_page_bytes]
                    logger.warning(f"Truncated large page: {url}")

            return response.status, content_type, content, last_modified, final_url

    def extract_links(self, html_content: str, page_url: str) -> List[str]:
        """Extract, normalize and scope-filter links from an HTML page."""
        soup = BeautifulSoup(html_content, "lxml", parse_only=self.parse_only)
        hrefs: List[str] = []

        for tag in soup.find_all(["a", "area"], href=True):
            hrefs.append(tag["href"])

        for tag in soup.find_all("link", href=True):
            rel = tag.get("rel", [])
            if isinstance(rel, str):
                rel = [rel]
            if any(r in ("canonical", "alternate", "next", "prev") for r in rel):
                hrefs.append(tag["href"])

        links: List[str] = []
        seen: Set[str] = set()
        for href in hrefs:
            href = href.strip()
            if not href or href.startswith("#") or should_skip_url(href):
                continue
            try:
                link = normalize_url(urljoin(page_url, href))
            except NormalizationError:
                continue
            if link in seen or link == page_url or not self.is_in_scope(link):
                continue
            if should_skip_url(link):
                continue
            seen.add(link)
            links.append(link)

        return links

    async def _log_statistics(self) -> None:
        stored = await self.store.get_statistics()
        logger.info(
            f"Crawl finished: {format_number(stored.total_urls_discovered)} discovered, "
            f"{format_number(self.statistics.total_urls_crawled)} crawled, "
            f"{format_number(self.statistics.successful_crawls)} successful, "
            f"{format_number(stored.skipped_urls)} skipped, "
            f"success rate {self.statistics.success_rate:.1f}%, "
            f"took {format_duration(self.statistics.duration_seconds)}"
        )
