"""Tests for the deduplicating collector."""

import asyncio
from datetime import datetime, timezone
import pytest
from sitemap_builder.collector import EXCLUDED_KIND, INVALID_ENTRY_KIND, DeduplicatingCollector
from sitemap_builder.errors import EntryCapExceededError, GenerationCancelledError
from sitemap_builder.sources import StaticSource
from sitemap_builder.types import (
    CapPolicy,
    ChangeFrequency,
    DuplicatePolicy,
    GeneratorConfig,
    RawEntry,
)
from sitemap_builder.validator import EntryValidator

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def make_collector(**overrides):
    config = GeneratorConfig(**overrides)
    return DeduplicatingCollector(config, EntryValidator(now=NOW))


def test_duplicates_collapse_to_one_entry():
    """URLs that normalize to the same location become one entry."""
    collector = make_collector()
    assert collector.add("http://Example.com:80/a#top")
    assert collector.add("http://example.com/a")
    assert collector.add(RawEntry("HTTP://EXAMPLE.COM/a", priority="0.4"))

    entries = collector.entry_set()
    assert len(entries) == 1
    assert entries[0].loc == "http://example.com/a"
    assert entries[0].priority == 0.4
    assert collector.seen_count == 3


def test_first_seen_order_kept():
    collector = make_collector()
    for url in ["https://e.com/c", "https://e.com/a", "https://e.com/b", "https://e.com/c"]:
        collector.add(url)
    assert [e.loc for e in collector.entry_set()] == [
        "https://e.com/c", "https://e.com/a", "https://e.com/b",
    ]


def test_last_write_wins_overlays_present_fields():
    """A later duplicate replaces the fields it carries and keeps the rest."""
    collector = make_collector()
    collector.add(RawEntry("https://e.com/", "2024-01-01", "daily", 0.2))
    collector.add(RawEntry("https://e.com/", None, None, 0.9))

    entry = collector.entry_set()[0]
    assert entry.priority == 0.9
    assert entry.changefreq is ChangeFrequency.DAILY
    assert entry.lastmod == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_first_write_wins():
    collector = make_collector(duplicate_policy=DuplicatePolicy.FIRST_WRITE_WINS)
    collector.add(RawEntry("https://e.com/", priority=0.2))
    collector.add(RawEntry("https://e.com/", priority=0.9, changefreq="daily"))

    entry = collector.entry_set()[0]
    assert entry.priority == 0.2
    assert entry.changefreq is None


def test_invalid_entries_become_warnings():
    """Discarded entries are reported with their kind and never abort the run."""
    collector = make_collector()
    assert not collector.add("ftp://e.com/file")
    assert not collector.add("not a url")
    assert not collector.add(RawEntry("https://e.com/x", priority=1.5))
    assert collector.add("https://e.com/ok")

    kinds = [w.kind for w in collector.warnings]
    assert kinds == ["unsupported_scheme", "malformed_url", "priority_out_of_range"]
    assert collector.discarded_count == 3
    assert len(collector) == 1


def test_multiple_validation_kinds_listed():
    """Every failed field is listed; the first one doubles as the kind."""
    collector = make_collector()
    collector.add(RawEntry("https://e.com/x", changefreq="sometimes", priority=7))

    warning = collector.warnings[0]
    assert warning.kind == "priority_out_of_range"
    assert warning.kinds == ["priority_out_of_range", "invalid_frequency"]


def test_invalid_duplicate_does_not_touch_existing():
    collector = make_collector()
    collector.add(RawEntry("https://e.com/", priority=0.3))
    collector.add(RawEntry("https://e.com/", priority=5))
    assert collector.entry_set()[0].priority == 0.3
    assert collector.discarded_count == 1


def test_relative_urls_resolved_against_base():
    collector = make_collector(base_url="https://e.com/")
    collector.add("/about")
    assert collector.entry_set()[0].loc == "https://e.com/about"


def test_excluded_by_predicate():
    config = GeneratorConfig()
    collector = DeduplicatingCollector(
        config, EntryValidator(now=NOW), is_allowed=lambda url: "/private/" not in url
    )
    collector.add("https://e.com/private/a")
    collector.add("https://e.com/public/a")

    assert [e.loc for e in collector.entry_set()] == ["https://e.com/public/a"]
    assert collector.warnings[0].kind == EXCLUDED_KIND


def test_cap_fail():
    collector = make_collector(entry_cap=2)
    collector.add("https://e.com/1")
    collector.add("https://e.com/2")
    # Duplicates of held entries do not count against the cap
    collector.add("https://e.com/2")
    with pytest.raises(EntryCapExceededError) as exc_info:
        collector.add("https://e.com/3")
    assert exc_info.value.cap == 2


def test_cap_truncate():
    collector = make_collector(entry_cap=2, cap_policy=CapPolicy.TRUNCATE)
    for n in range(5):
        collector.add(f"https://e.com/{n}")
    assert collector.truncated
    assert len(collector) == 2


def test_defaults_applied_to_absent_fields():
    default_lastmod = datetime(2023, 1, 1, tzinfo=timezone.utc)
    collector = make_collector(
        default_changefreq=ChangeFrequency.MONTHLY,
        default_priority=0.5,
        default_lastmod=default_lastmod,
    )
    collector.add(RawEntry("https://e.com/a", priority=0.9))
    collector.add("https://e.com/b")

    a, b = collector.entry_set()
    assert a.priority == 0.9
    assert a.changefreq is ChangeFrequency.MONTHLY
    assert b.priority == 0.5
    assert b.lastmod == default_lastmod


def test_entry_set_is_a_copy():
    collector = make_collector()
    collector.add("https://e.com/a")
    collector.entry_set()[0].priority = 0.1
    assert collector.entry_set()[0].priority is None


def test_item_shapes():
    collector = make_collector()
    collector.add({"loc": "https://e.com/dict", "priority": "0.3"})
    collector.add(("https://e.com/tuple", "2024-01-01"))
    assert [e.loc for e in collector.entry_set()] == ["https://e.com/dict", "https://e.com/tuple"]


@pytest.mark.parametrize("item", [
    42,
    {"href": "https://e.com/x"},
    RawEntry(url=42),
    ("https://e.com/1", None, None, None, "extra"),
])
def test_unreadable_items_become_warnings(item):
    """Items that are not entries at all are discarded, not raised."""
    collector = make_collector()
    assert not collector.add(item)
    assert collector.add("https://e.com/ok")

    assert [w.kind for w in collector.warnings] == [INVALID_ENTRY_KIND]
    assert collector.seen_count == 2
    assert len(collector) == 1


@pytest.mark.parametrize("overrides, raw, expected", [
    ({"default_dir": "blog"}, "post", "https://e.com/blog/post"),
    ({"default_dir": "/blog/"}, "/post", "https://e.com/blog/post"),
    ({"default_dir": "a/b"}, "c", "https://e.com/a/b/c"),
    ({"default_extension": "html"}, "about", "https://e.com/about.html"),
    ({"default_extension": ".html"}, "docs/intro?lang=en", "https://e.com/docs/intro.html?lang=en"),
    ({"default_extension": "html"}, "report.pdf", "https://e.com/report.pdf"),
    ({"default_extension": "html"}, "docs/", "https://e.com/docs/"),
    ({"default_dir": "blog", "default_extension": "html"}, "post", "https://e.com/blog/post.html"),
    ({"default_dir": "blog", "default_extension": "html"}, "https://e.com/x", "https://e.com/x"),
])
def test_page_defaults_for_relative_names(overrides, raw, expected):
    collector = make_collector(base_url="https://e.com/", **overrides)
    collector.add(raw)
    assert [e.loc for e in collector.entry_set()] == [expected]


def test_predicate_sees_absolute_url():
    seen = []

    def is_allowed(url):
        seen.append(url)
        return True

    collector = DeduplicatingCollector(
        GeneratorConfig(base_url="https://e.com/site", default_dir="docs"),
        EntryValidator(now=NOW),
        is_allowed=is_allowed
    )
    collector.add("intro")
    assert seen == ["https://e.com/site/docs/intro"]


@pytest.mark.asyncio
async def test_prepare_runs_before_predicate():
    """Rules loaded by prepare are already in place when the predicate runs."""
    blocked = set()

    async def prepare(url):
        if url.startswith("https://blocked.example/"):
            blocked.add(url)

    collector = DeduplicatingCollector(
        GeneratorConfig(),
        EntryValidator(now=NOW),
        is_allowed=lambda url: url not in blocked,
        prepare=prepare
    )
    await collector.ingest(StaticSource([
        "https://blocked.example/a",
        "https://e.com/b",
        {"href": "nope"},
    ]))

    assert [e.loc for e in collector.entry_set()] == ["https://e.com/b"]
    assert [w.kind for w in collector.warnings] == [EXCLUDED_KIND, INVALID_ENTRY_KIND]


@pytest.mark.asyncio
async def test_ingest_async_and_sync_sources():
    """Async sources and plain iterables both feed the same entry set."""
    collector = make_collector()
    consumed = await collector.ingest(StaticSource(["https://e.com/a", "https://e.com/b"]))
    consumed += await collector.ingest(["https://e.com/b", "https://e.com/c"])
    assert consumed == 4
    assert len(collector) == 3


@pytest.mark.asyncio
async def test_ingest_stops_and_closes_source_when_truncated():
    closed = asyncio.Event()

    async def endless():
        n = 0
        try:
            while True:
                yield f"https://e.com/{n}"
                n += 1
        finally:
            closed.set()

    collector = make_collector(entry_cap=3, cap_policy=CapPolicy.TRUNCATE)
    await collector.ingest(endless())

    assert collector.truncated
    assert closed.is_set()
    assert len(collector) == 3


@pytest.mark.asyncio
async def test_ingest_cancelled():
    cancel_event = asyncio.Event()
    cancel_event.set()
    collector = make_collector()
    with pytest.raises(GenerationCancelledError) as exc_info:
        await collector.ingest(StaticSource(["https://e.com/a"]), cancel_event)
    assert exc_info.value.stage == "collecting"
    assert len(collector) == 0
