"""Crawl frontier store backed by SQLite."""

import asyncio
import logging
import os
from typing import Optional
import aiosqlite
from .types import CrawlResult, CrawlStatistics, CrawlStatus
from .utils import create_directory_if_not_exists, utc_now

logger = logging.getLogger(__name__)


class URLStore:
    """
    Records every URL the crawler has discovered and what happened to it.

    ``add_url`` is the crawl's deduplication point: it returns True only the
    first time a URL is offered.
    """

    def __init__(self, database_path: str = ":memory:"):
        self.database_path = database_path
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    def _ensure_database_directory(self) -> None:
        if self.database_path != ":memory:":
            create_directory_if_not_exists(os.path.dirname(self.database_path))

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("URLStore is not initialized")
        return self._db

    async def initialize(self) -> None:
        """Open the database and create tables."""
        if self._db is not None:
            return

        self._ensure_database_directory()
        self._db = await aiosqlite.connect(self.database_path)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS urls (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                url TEXT UNIQUE NOT NULL,
                depth INTEGER DEFAULT 0,
                parent_url TEXT,
                discovered_at TIMESTAMP NOT NULL,
                last_crawled TIMESTAMP,
                status_code INTEGER,
                content_type TEXT,
                last_modified TIMESTAMP,
                crawl_status TEXT DEFAULT 'pending',
                error_message TEXT,
                response_time REAL DEFAULT 0.0
            )
        """)
        await self._db.execute("CREATE INDEX IF NOT EXISTS idx_urls_status ON urls (crawl_status)")
        await self._db.execute("CREATE INDEX IF NOT EXISTS idx_urls_depth ON urls (depth)")
        await self._db.commit()

        logger.info(f"URL store initialized at {self.database_path}")

    async def add_url(
        self,
        url: str,
        depth: int = 0,
        parent_url: Optional[str] = None
    ) -> bool:
        """
        Record a discovered URL.
        Returns True if URL was added, False if it already exists.
        """
        async with self._lock:
            cursor = await self.db.execute("""
                INSERT OR IGNORE INTO urls (url, depth, parent_url, discovered_at, crawl_status)
                VALUES (?, ?, ?, ?, ?)
            """, (url, depth, parent_url, utc_now().isoformat(), CrawlStatus.PENDING.value))
            await self.db.commit()
            added = cursor.rowcount == 1

        if added:
            logger.debug(f"Discovered URL: {url} (depth: {depth})")
        return added

    async def mark_crawled(self, result: CrawlResult) -> None:
        """Mark URL as crawled with results."""
        crawl_status = CrawlStatus.SUCCESS if result.ok else CrawlStatus.ERROR
        last_modified = result.last_modified.isoformat() if result.last_modified else None

        async with self._lock:
            await self.db.execute("""
                UPDATE urls
                SET last_crawled = ?, status_code = ?, content_type = ?, last_modified = ?,
                    crawl_status = ?, error_message = ?, response_time = ?
                WHERE url = ?
            """, (
                utc_now().isoformat(), result.status_code, result.content_type, last_modified,
                crawl_status.value, result.error, result.response_time, result.url
            ))
            await self.db.commit()

    async def mark_skipped(self, url: str, reason: str) -> None:
        """Mark URL as skipped."""
        async with self._lock:
            await self.db.execute("""
                UPDATE urls SET crawl_status = ?, error_message = ? WHERE url = ?
            """, (CrawlStatus.SKIPPED.value, reason, url))
            await self.db.commit()

    async def get_statistics(self) -> CrawlStatistics:
        """Get crawling statistics."""
        cursor = await self.db.execute("SELECT COUNT(*) FROM urls")
        total_discovered = (await cursor.fetchone())[0]

        cursor = await self.db.execute("""
            SELECT crawl_status, COUNT(*) FROM urls GROUP BY crawl_status
        """)
        status_counts = dict(await cursor.fetchall())

        successful_crawls = status_counts.get(CrawlStatus.SUCCESS.value, 0)
        failed_crawls = status_counts.get(CrawlStatus.ERROR.value, 0)
        skipped_urls = status_counts.get(CrawlStatus.SKIPPED.value, 0)

        return CrawlStatistics(
            total_urls_discovered=total_discovered,
            total_urls_crawled=successful_crawls + failed_crawls,
            successful_crawls=successful_crawls,
            failed_crawls=failed_crawls,
            skipped_urls=skipped_urls,
        )

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.debug("URL store closed")
