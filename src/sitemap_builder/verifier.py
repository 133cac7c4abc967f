"""Read-back checks for written sitemap and sitemap index files."""

import gzip
import logging
import os
from typing import Any, Dict
from lxml import etree
from .config import MAX_BYTES_PER_SITEMAP, MAX_URL_LENGTH, MAX_URLS_PER_SITEMAP, SITEMAP_NAMESPACE

logger = logging.getLogger(__name__)

NS = f"{{{SITEMAP_NAMESPACE}}}"


def read_sitemap_bytes(filepath: str) -> bytes:
    """Read a sitemap file, transparently decompressing gzip."""
    with open(filepath, "rb") as f:
        data = f.read()
    if data[:2] == b"\x1f\x8b":
        data = gzip.decompress(data)
    return data


def _parse(data: bytes) -> etree._Element:
    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)
    return etree.fromstring(data, parser)


def validate_sitemap(filepath: str, max_urls: int = MAX_URLS_PER_SITEMAP) -> bool:
    """Validate a sitemap or sitemap index file against the protocol rules."""
    try:
        data = read_sitemap_bytes(filepath)
        if len(data) > MAX_BYTES_PER_SITEMAP:
            logger.error(f"Sitemap too large: {filepath} ({len(data)} bytes)")
            return False

        root = _parse(data)

        if root.tag == f"{NS}urlset":
            child_tag = f"{NS}url"
        elif root.tag == f"{NS}sitemapindex":
            child_tag = f"{NS}sitemap"
        else:
            logger.error(f"Invalid root element in {filepath}: {root.tag}")
            return False

        children = root.findall(child_tag)
        if len(children) > max_urls:
            logger.error(f"Too many entries in {filepath}: {len(children)}")
            return False

        for child in children:
            loc_elem = child.find(f"{NS}loc")
            if loc_elem is None or not loc_elem.text:
                logger.error(f"Entry missing location in {filepath}")
                return False

            loc = loc_elem.text.strip()
            if child_tag == f"{NS}url" and not loc.startswith(("http://", "https://")):
                logger.error(f"Invalid URL format: {loc}")
                return False

            if len(loc) > MAX_URL_LENGTH:
                logger.error(f"URL too long in {filepath}: {loc[:80]}...")
                return False

        logger.info(f"Sitemap validation passed: {filepath}")
        return True

    except (OSError, etree.XMLSyntaxError) as e:
        logger.error(f"Error validating sitemap {filepath}: {e}")
        return False


def get_sitemap_stats(filepath: str) -> Dict[str, Any]:
    """Get statistics about a sitemap file."""
    data = read_sitemap_bytes(filepath)
    root = _parse(data)
    urls = root.findall(f"{NS}url")

    stats: Dict[str, Any] = {
        "total_urls": len(urls),
        "file_size_mb": os.path.getsize(filepath) / (1024 * 1024),
        "uncompressed_bytes": len(data),
        "has_lastmod": 0,
        "has_changefreq": 0,
        "has_priority": 0,
        "changefreq_distribution": {},
    }

    for url_elem in urls:
        if url_elem.find(f"{NS}lastmod") is not None:
            stats["has_lastmod"] += 1

        changefreq_elem = url_elem.find(f"{NS}changefreq")
        if changefreq_elem is not None:
            stats["has_changefreq"] += 1
            freq = changefreq_elem.text
            stats["changefreq_distribution"][freq] = stats["changefreq_distribution"].get(freq, 0) + 1

        if url_elem.find(f"{NS}priority") is not None:
            stats["has_priority"] += 1

    return stats
