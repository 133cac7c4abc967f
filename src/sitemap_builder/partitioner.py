"""Splits the entry set into sitemap files that respect the protocol limits."""

import logging
from typing import Iterable, List
from .config import DEFAULT_FILENAME_PREFIX, MAX_BYTES_PER_SITEMAP, MAX_URLS_PER_SITEMAP
from .errors import EntryExceedsMaxSizeError
from .serializer import SitemapSerializer
from .types import OversizePolicy, Shard, URLEntry
from .utils import format_number

logger = logging.getLogger(__name__)


def shard_path(
    prefix: str,
    sequence: int,
    total: int,
    compress: bool = False
) -> str:
    """File name for a shard: ``sitemap.xml`` when alone, ``sitemap_001.xml`` otherwise."""
    name = f"{prefix}.xml" if total == 1 else f"{prefix}_{sequence:03d}.xml"
    return f"{name}.gz" if compress else name


class LimitAwarePartitioner:
    """
    Greedy, order-preserving packing of entries into shards.

    Each shard starts at the serializer's fixed document overhead; entries are
    appended in order while both the entry count and the exact rendered size
    stay within limits.
    """

    def __init__(
        self,
        serializer: SitemapSerializer,
        max_entries: int = MAX_URLS_PER_SITEMAP,
        max_bytes: int = MAX_BYTES_PER_SITEMAP,
        oversize_policy: OversizePolicy = OversizePolicy.FAIL,
        filename_prefix: str = DEFAULT_FILENAME_PREFIX
    ):
        self.serializer = serializer
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self.oversize_policy = oversize_policy
        self.filename_prefix = filename_prefix
        self.skipped: List[EntryExceedsMaxSizeError] = []

    def partition(self, entries: Iterable[URLEntry], compress: bool = False) -> List[Shard]:
        """
        Split entries into shards, numbered from 1 and named for output.

        Raises:
            EntryExceedsMaxSizeError: an entry cannot fit into an empty shard
                and the oversize policy is "fail".
        """
        overhead = self.serializer.overhead
        shards: List[Shard] = []
        current: List[URLEntry] = []
        current_size = overhead

        for entry in entries:
            fragment_size = self.serializer.entry_size(entry)

            if overhead + fragment_size > self.max_bytes:
                error = EntryExceedsMaxSizeError(
                    entry.loc, overhead + fragment_size, self.max_bytes
                )
                if self.oversize_policy == OversizePolicy.FAIL:
                    raise error
                logger.warning(f"Skipping entry: {error}")
                self.skipped.append(error)
                continue

            if current and (
                len(current) >= self.max_entries
                or current_size + fragment_size > self.max_bytes
            ):
                shards.append(Shard(len(shards) + 1, current, size=current_size))
                current = []
                current_size = overhead

            current.append(entry)
            current_size += fragment_size

        if current:
            shards.append(Shard(len(shards) + 1, current, size=current_size))

        for shard in shards:
            shard.path = shard_path(self.filename_prefix, shard.sequence, len(shards), compress)

        logger.info(
            f"Partitioned {format_number(sum(len(s.entries) for s in shards))} URLs "
            f"into {len(shards)} sitemap file(s)"
        )
        return shards
