"""Tests for the generation orchestrator."""

import asyncio
import gzip
import json
import os
import tempfile
from datetime import datetime, timezone
import pytest
from lxml import etree
from sitemap_builder.config import SITEMAP_NAMESPACE
from sitemap_builder.errors import (
    EntryCapExceededError,
    GenerationCancelledError,
    NoValidEntriesError,
    SinkWriteError,
)
from sitemap_builder.generator import SitemapGenerator, run_generation
from sitemap_builder.sink import MemorySink
from sitemap_builder.sources import StaticSource
from sitemap_builder.types import (
    CapPolicy,
    GenerationState,
    GeneratorConfig,
    OversizePolicy,
    RawEntry,
)
from sitemap_builder.verifier import validate_sitemap

NS = {"sm": SITEMAP_NAMESPACE}
RUN_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return RUN_TIME


def make_generator(sink=None, **overrides):
    return SitemapGenerator(GeneratorConfig(**overrides), sink or MemorySink(), clock=fixed_clock)


class FailingSink(MemorySink):
    """Accepts ``allowed`` writes and fails on the next one."""

    def __init__(self, allowed):
        super().__init__()
        self.allowed = allowed

    def write(self, path, data):
        if len(self.files) >= self.allowed:
            raise SinkWriteError(path, OSError("disk full"))
        return super().write(path, data)


@pytest.mark.asyncio
async def test_small_run_writes_single_sitemap():
    """Three URLs give one sitemap.xml and no index."""
    sink = MemorySink()
    generator = make_generator(sink)
    manifest = await generator.run([StaticSource([
        "https://example.com/",
        "https://example.com/about",
        "https://example.com/contact",
    ])])

    assert generator.state == GenerationState.DONE
    assert manifest.files == ["sitemap.xml"]
    assert manifest.total_entries == 3
    assert manifest.shard_count == 1
    assert manifest.index_path is None
    assert manifest.discarded_entries == 0
    assert manifest.generated_at == RUN_TIME

    root = etree.fromstring(sink.files["sitemap.xml"])
    assert root.xpath("//sm:loc/text()", namespaces=NS) == [
        "https://example.com/",
        "https://example.com/about",
        "https://example.com/contact",
    ]


@pytest.mark.asyncio
async def test_large_run_is_split_and_indexed():
    """120,000 URLs give three sitemaps plus an index referencing each once."""
    sink = MemorySink()
    urls = [f"https://example.com/page/{n}" for n in range(120_000)]
    manifest = await make_generator(sink, sitemap_base_url="https://example.com").run(
        [StaticSource(urls)]
    )

    assert manifest.shard_count == 3
    assert manifest.total_entries == 120_000
    assert manifest.files == [
        "sitemap_001.xml", "sitemap_002.xml", "sitemap_003.xml", "sitemap_index.xml",
    ]
    assert manifest.index_path == "sitemap_index.xml"

    counts = [
        len(etree.fromstring(sink.files[name]).findall(f"{{{SITEMAP_NAMESPACE}}}url"))
        for name in manifest.files[:3]
    ]
    assert counts == [50_000, 50_000, 20_000]

    index = etree.fromstring(sink.files["sitemap_index.xml"])
    assert index.xpath("//sm:loc/text()", namespaces=NS) == [
        "https://example.com/sitemap_001.xml",
        "https://example.com/sitemap_002.xml",
        "https://example.com/sitemap_003.xml",
    ]
    assert index.xpath("//sm:lastmod/text()", namespaces=NS) == ["2024-06-01T12:00:00+00:00"] * 3


@pytest.mark.asyncio
async def test_invalid_entry_reported_in_manifest():
    sink = MemorySink()
    manifest = await make_generator(sink).run([[
        RawEntry("https://example.com/a", priority=1.5),
        RawEntry("https://example.com/b", priority=0.5),
    ]])

    assert manifest.total_entries == 1
    assert manifest.discarded_entries == 1
    assert manifest.warnings[0].url == "https://example.com/a"
    assert manifest.warnings[0].kind == "priority_out_of_range"
    assert b"https://example.com/a<" not in sink.files["sitemap.xml"]


@pytest.mark.asyncio
async def test_all_invalid_fails():
    sink = MemorySink()
    generator = make_generator(sink)
    with pytest.raises(NoValidEntriesError) as exc_info:
        await generator.run([["ftp://example.com/", "nonsense"]])

    assert exc_info.value.discarded == 2
    assert generator.state == GenerationState.FAILED
    assert sink.files == {}


@pytest.mark.asyncio
async def test_badly_shaped_items_do_not_abort_run():
    """A mapping without a URL and a non-string URL are warnings, not failures."""
    sink = MemorySink()
    generator = make_generator(sink)
    manifest = await generator.run([StaticSource([
        "https://example.com/a",
        {"href": "https://example.com/x"},
        RawEntry(url=42),
        "https://example.com/b",
    ])])

    assert generator.state == GenerationState.DONE
    assert manifest.total_entries == 2
    assert [w.kind for w in manifest.warnings] == ["invalid_entry", "invalid_entry"]
    assert manifest.to_dict()["warnings"][1]["kinds"] == ["invalid_entry"]
    assert "sitemap.xml" in sink.files


@pytest.mark.asyncio
async def test_duplicates_across_sources():
    sink = MemorySink()
    manifest = await make_generator(sink).run([
        StaticSource(["https://example.com/a", "https://example.com/b"]),
        ["HTTPS://EXAMPLE.COM:443/a#x", "https://example.com/c"],
    ])
    assert manifest.total_entries == 3


@pytest.mark.asyncio
async def test_cancelled_before_run_writes_nothing():
    cancel_event = asyncio.Event()
    cancel_event.set()
    sink = MemorySink()
    generator = make_generator(sink)

    with pytest.raises(GenerationCancelledError):
        await generator.run([["https://example.com/"]], cancel_event=cancel_event)

    assert generator.state == GenerationState.FAILED
    assert sink.files == {}


@pytest.mark.asyncio
async def test_cancel_during_collection():
    """A source that sets the cancel event stops the run while collecting."""
    cancel_event = asyncio.Event()

    async def source():
        yield "https://example.com/a"
        cancel_event.set()
        yield "https://example.com/b"

    generator = make_generator()
    with pytest.raises(GenerationCancelledError) as exc_info:
        await generator.run([source()], cancel_event=cancel_event)
    assert exc_info.value.stage == "collecting"


@pytest.mark.asyncio
async def test_gzip_output_matches_plain_output():
    urls = [f"https://example.com/{n}" for n in range(10)]
    plain_sink = MemorySink()
    packed_sink = MemorySink()

    await make_generator(plain_sink).run([urls])
    manifest = await make_generator(packed_sink, compress=True).run([urls])

    assert manifest.files == ["sitemap.xml.gz"]
    assert gzip.decompress(packed_sink.files["sitemap.xml.gz"]) == plain_sink.files["sitemap.xml"]


@pytest.mark.asyncio
async def test_runs_are_idempotent():
    """Equal input, configuration and clock give byte-identical output."""
    entries = [RawEntry(f"https://example.com/{n}", "2024-01-01", "daily", 0.5) for n in range(30)]
    first = MemorySink()
    second = MemorySink()

    await make_generator(first, max_entries_per_sitemap=7, compress=True).run([entries])
    await make_generator(second, max_entries_per_sitemap=7, compress=True).run([entries])

    assert first.files == second.files
    assert len(first.files) == 6


@pytest.mark.asyncio
async def test_sink_failure_keeps_earlier_files():
    sink = FailingSink(allowed=1)
    generator = make_generator(sink, max_entries_per_sitemap=2)

    with pytest.raises(SinkWriteError):
        await generator.run([[f"https://example.com/{n}" for n in range(5)]])

    assert list(sink.files) == ["sitemap_001.xml"]
    assert generator.state == GenerationState.FAILED


@pytest.mark.asyncio
async def test_oversize_entry_skipped_with_warning():
    long_url = "https://example.com/" + "x" * 1500
    generator = make_generator(
        max_bytes_per_sitemap=1000, oversize_policy=OversizePolicy.SKIP
    )
    manifest = await generator.run([["https://example.com/short", long_url]])

    assert manifest.total_entries == 1
    assert [w.kind for w in manifest.warnings] == ["entry_exceeds_max_size"]


@pytest.mark.asyncio
async def test_entry_cap_policies():
    urls = [f"https://example.com/{n}" for n in range(10)]

    with pytest.raises(EntryCapExceededError):
        await make_generator(entry_cap=5).run([urls])

    manifest = await make_generator(entry_cap=5, cap_policy=CapPolicy.TRUNCATE).run([urls])
    assert manifest.truncated
    assert manifest.total_entries == 5


@pytest.mark.asyncio
async def test_generator_cannot_be_reused():
    generator = make_generator()
    await generator.run([["https://example.com/"]])
    with pytest.raises(RuntimeError):
        await generator.run([["https://example.com/"]])


def test_invalid_config_rejected():
    with pytest.raises(ValueError):
        make_generator(max_entries_per_sitemap=60_000)
    with pytest.raises(ValueError):
        make_generator(max_bytes_per_sitemap=0)


@pytest.mark.asyncio
async def test_run_generation_to_directory():
    """Files land in the output directory and pass read-back validation."""
    with tempfile.TemporaryDirectory() as temp_dir:
        config = GeneratorConfig(max_entries_per_sitemap=2, compress=True)
        manifest = await run_generation(
            config,
            [[f"https://example.com/{n}" for n in range(3)]],
            output_dir=temp_dir
        )

        assert manifest.index_path == os.path.join(temp_dir, "sitemap_index.xml")
        assert len(manifest.files) == 3
        for path in manifest.files:
            assert os.path.exists(path)
            assert validate_sitemap(path)

        assert json.loads(json.dumps(manifest.to_dict()))["shard_count"] == 2


@pytest.mark.asyncio
async def test_run_generation_requires_destination():
    with pytest.raises(ValueError):
        await run_generation(GeneratorConfig(), [["https://example.com/"]])
