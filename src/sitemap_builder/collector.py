"""Deduplicating collector that turns raw source output into the entry set."""

import asyncio
import logging
import re
from dataclasses import replace
from typing import (
    Any,
    AsyncIterable,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Union,
)
from .errors import (
    EntryCapExceededError,
    EntryValidationError,
    GenerationCancelledError,
    NormalizationError,
)
from .normalizer import is_relative, join_url_parts, normalize_url, resolve_url
from .sources import as_raw_entry
from .types import (
    CapPolicy,
    DuplicatePolicy,
    EntryWarning,
    GeneratorConfig,
    RawEntry,
    URLEntry,
)
from .utils import format_number, to_utc
from .validator import EntryValidator

logger = logging.getLogger(__name__)

EXCLUDED_KIND = "excluded"
INVALID_ENTRY_KIND = "invalid_entry"

Source = Union[AsyncIterable[Any], Iterable[Any]]

_PATH_AND_SUFFIX = re.compile(r"([^?#]*)(.*)", re.DOTALL)


class DeduplicatingCollector:
    """
    Accumulates one canonical entry per normalized URL.

    Entries keep the position of their first sighting; later duplicates only
    change metadata, according to the configured duplicate policy. This class
    is the single writer of the entry set and is not meant to be shared
    between tasks.

    ``is_allowed`` is consulted with the absolute URL of every raw entry
    before normalization. ``prepare``, when given, is awaited with the same
    URL first during ``ingest`` so the predicate can load whatever it needs
    (robots.txt for a new origin, for instance).
    """

    def __init__(
        self,
        config: GeneratorConfig,
        validator: EntryValidator,
        is_allowed: Optional[Callable[[str], bool]] = None,
        prepare: Optional[Callable[[str], Awaitable[None]]] = None
    ):
        self.config = config
        self.validator = validator
        self.is_allowed = is_allowed
        self.prepare = prepare
        self._entries: Dict[str, URLEntry] = {}
        self.warnings: List[EntryWarning] = []
        self.truncated = False
        self.seen_count = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def discarded_count(self) -> int:
        return len(self.warnings)

    def _discard(
        self,
        url: str,
        kind: str,
        message: str,
        kinds: Optional[List[str]] = None
    ) -> bool:
        logger.debug(f"Discarding {url!r} ({kind}): {message}")
        self.warnings.append(
            EntryWarning(url=url, kind=kind, message=message, kinds=kinds or [kind])
        )
        return False

    def _coerce(self, item: Any) -> Optional[RawEntry]:
        """RawEntry for ``item``, or None after recording why it is unusable."""
        self.seen_count += 1
        try:
            raw = as_raw_entry(item)
        except TypeError as e:
            self._discard(repr(item), INVALID_ENTRY_KIND, str(e))
            return None

        if not isinstance(raw.url, str):
            self._discard(
                repr(raw.url),
                INVALID_ENTRY_KIND,
                f"URL must be a string, not {type(raw.url).__name__}"
            )
            return None
        return raw

    def apply_page_defaults(self, url: str) -> str:
        """
        Put relative page names under ``default_dir`` and give them
        ``default_extension`` when their last segment has none.

        Absolute and protocol-relative URLs are returned stripped but
        otherwise untouched.
        """
        name = url.strip()
        if not name or not is_relative(name) or name.startswith("//"):
            return name

        if self.config.default_dir:
            name = join_url_parts(self.config.default_dir, name)

        extension = (self.config.default_extension or "").lstrip(".")
        if extension:
            path, suffix = _PATH_AND_SUFFIX.match(name).groups()
            last_segment = path.rsplit("/", 1)[-1]
            if last_segment and "." not in last_segment:
                name = f"{path}.{extension}{suffix}"

        return name

    def add(self, item: Any) -> bool:
        """
        Process one raw entry.

        Returns True when the entry is now part of the entry set (new or
        merged into an existing one), False when it was discarded or the
        collector is truncated. Items that cannot be read as an entry at all
        are discarded with an ``invalid_entry`` warning.

        Raises:
            EntryCapExceededError: a new unique URL arrives after the cap is
                reached and the cap policy is "fail".
        """
        if self.truncated:
            return False

        raw = self._coerce(item)
        if raw is None:
            return False
        return self._admit(raw, self.apply_page_defaults(raw.url))

    async def _offer(self, item: Any) -> None:
        if self.truncated:
            return

        raw = self._coerce(item)
        if raw is None:
            return

        name = self.apply_page_defaults(raw.url)
        if self.prepare is not None:
            await self.prepare(resolve_url(name, self.config.base_url))
        self._admit(raw, name)

    def _admit(self, raw: RawEntry, name: str) -> bool:
        if self.is_allowed is not None:
            if not self.is_allowed(resolve_url(name, self.config.base_url)):
                return self._discard(raw.url, EXCLUDED_KIND, "excluded by robots rules")

        try:
            loc = normalize_url(
                name,
                base_url=self.config.base_url,
                collapse_slashes=self.config.collapse_slashes
            )
        except NormalizationError as e:
            return self._discard(raw.url, e.kind, e.reason)

        try:
            entry = self.validator.validate(
                loc,
                lastmod=raw.lastmod,
                changefreq=raw.changefreq,
                priority=raw.priority
            )
        except EntryValidationError as e:
            kinds = [kind.value for kind in e.kinds]
            return self._discard(
                raw.url, kinds[0], "; ".join(i.message for i in e.issues), kinds=kinds
            )

        existing = self._entries.get(loc)
        if existing is not None:
            self._merge(existing, entry)
            return True

        if len(self._entries) >= self.config.entry_cap:
            if self.config.cap_policy == CapPolicy.FAIL:
                raise EntryCapExceededError(self.config.entry_cap, loc)
            self.truncated = True
            logger.warning(
                f"Entry cap of {format_number(self.config.entry_cap)} reached, "
                f"ignoring remaining entries"
            )
            return False

        self._entries[loc] = entry
        return True

    def _merge(self, existing: URLEntry, incoming: URLEntry) -> None:
        if self.config.duplicate_policy == DuplicatePolicy.FIRST_WRITE_WINS:
            return
        if incoming.lastmod is not None:
            existing.lastmod = incoming.lastmod
        if incoming.changefreq is not None:
            existing.changefreq = incoming.changefreq
        if incoming.priority is not None:
            existing.priority = incoming.priority

    async def ingest(
        self,
        source: Source,
        cancel_event: Optional[asyncio.Event] = None
    ) -> int:
        """
        Drain a source into the entry set.

        Accepts async or plain iterables. Stops early once the collector is
        truncated, closing the source so producers can release resources.
        Returns the number of items consumed.
        """
        consumed = 0

        def check_cancelled() -> None:
            if cancel_event is not None and cancel_event.is_set():
                raise GenerationCancelledError("collecting")

        if hasattr(source, "__aiter__"):
            iterator = source.__aiter__()
            try:
                async for item in iterator:
                    check_cancelled()
                    await self._offer(item)
                    consumed += 1
                    if self.truncated:
                        break
            finally:
                aclose = getattr(iterator, "aclose", None)
                if aclose is not None:
                    await aclose()
        else:
            for item in source:
                check_cancelled()
                await self._offer(item)
                consumed += 1
                if self.truncated:
                    break

        logger.debug(f"Consumed {format_number(consumed)} entries from {type(source).__name__}")
        return consumed

    def entry_set(self) -> List[URLEntry]:
        """Copy of the collected entries in first-seen order, with defaults applied."""
        default_lastmod = (
            to_utc(self.config.default_lastmod) if self.config.default_lastmod else None
        )
        entries = []
        for entry in self._entries.values():
            entry = replace(entry)
            if entry.lastmod is None and default_lastmod is not None:
                entry.lastmod = default_lastmod
            if entry.changefreq is None and self.config.default_changefreq is not None:
                entry.changefreq = self.config.default_changefreq
            if entry.priority is None and self.config.default_priority is not None:
                entry.priority = self.config.default_priority
            entries.append(entry)
        return entries
