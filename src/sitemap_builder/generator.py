"""Generation orchestrator that runs the collect → partition → write pipeline."""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Sequence
from tqdm import tqdm
from .collector import DeduplicatingCollector, Source
from .config import validate_config
from .errors import GenerationCancelledError, NoValidEntriesError
from .index_builder import build_index, render_index
from .partitioner import LimitAwarePartitioner
from .serializer import SitemapSerializer
from .sink import FileSystemSink, OutputSink
from .types import (
    EntryWarning,
    GenerationManifest,
    GenerationState,
    GeneratorConfig,
    SitemapDocument,
)
from .utils import format_number, to_utc, utc_now
from .validator import EntryValidator

logger = logging.getLogger(__name__)


class SitemapGenerator:
    """
    Runs one sitemap generation.

    Stages run strictly one after another: every source is drained before
    partitioning starts, and every shard is written before the index is
    built. Files already written when a later stage fails are left in place.
    """

    def __init__(
        self,
        config: GeneratorConfig,
        sink: OutputSink,
        is_allowed: Optional[Callable[[str], bool]] = None,
        prepare: Optional[Callable[[str], Awaitable[None]]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        validate_config(config)
        self.config = config
        self.sink = sink
        self.is_allowed = is_allowed
        self.prepare = prepare
        self.clock = clock or utc_now
        self.state = GenerationState.IDLE
        self.serializer = SitemapSerializer(
            lastmod_format=config.lastmod_format,
            priority_digits=config.priority_digits,
            compress=config.compress
        )

    def _set_state(self, state: GenerationState) -> None:
        logger.debug(f"Generation state: {self.state.value} -> {state.value}")
        self.state = state

    def _check_cancelled(self, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCancelledError(self.state.value)

    async def run(
        self,
        sources: Sequence[Source],
        cancel_event: Optional[asyncio.Event] = None
    ) -> GenerationManifest:
        """
        Generate sitemaps from ``sources`` and write them to the sink.

        Returns:
            GenerationManifest describing written files and discarded entries.

        Raises:
            NoValidEntriesError: nothing survived normalization and validation.
            GenerationCancelledError: ``cancel_event`` was set during the run.
            EntryCapExceededError, EntryExceedsMaxSizeError, SinkWriteError:
                depending on configured policies and the sink.
        """
        if self.state != GenerationState.IDLE:
            raise RuntimeError(f"Generator already used (state: {self.state.value})")

        generated_at = to_utc(self.clock())

        try:
            # Collecting
            self._set_state(GenerationState.COLLECTING)
            validator = EntryValidator(
                now=generated_at,
                clock_skew=timedelta(seconds=self.config.clock_skew_seconds),
                max_url_length=self.config.max_url_length
            )
            collector = DeduplicatingCollector(
                self.config, validator, is_allowed=self.is_allowed, prepare=self.prepare
            )

            for source in sources:
                self._check_cancelled(cancel_event)
                await collector.ingest(source, cancel_event)
                if collector.truncated:
                    break

            self._check_cancelled(cancel_event)
            entries = collector.entry_set()
            warnings: List[EntryWarning] = list(collector.warnings)

            logger.info(
                f"Collected {format_number(len(entries))} unique URLs from "
                f"{format_number(collector.seen_count)} entries, "
                f"{format_number(collector.discarded_count)} discarded"
            )

            if not entries:
                raise NoValidEntriesError(collector.discarded_count)

            # Partitioning
            self._set_state(GenerationState.PARTITIONING)
            partitioner = LimitAwarePartitioner(
                self.serializer,
                max_entries=self.config.max_entries_per_sitemap,
                max_bytes=self.config.max_bytes_per_sitemap,
                oversize_policy=self.config.oversize_policy,
                filename_prefix=self.config.filename_prefix
            )
            shards = partitioner.partition(entries, compress=self.config.compress)
            del entries

            for skipped in partitioner.skipped:
                warnings.append(EntryWarning(url=skipped.loc, kind=skipped.kind, message=str(skipped)))

            if not shards:
                raise NoValidEntriesError(len(warnings))

            self._check_cancelled(cancel_event)

            # Serializing
            self._set_state(GenerationState.SERIALIZING)
            files: List[str] = []
            documents: List[SitemapDocument] = []
            total_entries = 0

            for shard in tqdm(
                shards,
                desc="Writing sitemaps",
                unit="file",
                disable=not self.config.show_progress
            ):
                self._check_cancelled(cancel_event)
                document = self.serializer.serialize(shard)
                files.append(self.sink.write(document.path, document.content))
                documents.append(replace(document, content=b""))
                total_entries += document.entry_count
                shard.entries = []

            logger.info(f"Wrote {len(files)} sitemap file(s)")

            # Index building
            index_path = None
            if len(documents) > 1:
                self._check_cancelled(cancel_event)
                self._set_state(GenerationState.INDEX_BUILDING)
                index = build_index(documents, generated_at)
                payload = render_index(
                    index,
                    base_url=self.config.sitemap_base_url,
                    lastmod_format=self.config.lastmod_format
                )
                index_path = self.sink.write(self.config.index_filename, payload)
                files.append(index_path)
                logger.info(f"Wrote sitemap index: {self.config.index_filename}")

            self._set_state(GenerationState.DONE)

            return GenerationManifest(
                files=files,
                total_entries=total_entries,
                discarded_entries=len(warnings),
                shard_count=len(documents),
                warnings=warnings,
                index_path=index_path,
                truncated=collector.truncated,
                generated_at=generated_at,
            )

        except BaseException as e:
            logger.error(f"Generation failed during {self.state.value}: {e}")
            self._set_state(GenerationState.FAILED)
            raise


async def run_generation(
    config: GeneratorConfig,
    sources: Sequence[Source],
    output_dir: Optional[str] = None,
    sink: Optional[OutputSink] = None,
    is_allowed: Optional[Callable[[str], bool]] = None,
    prepare: Optional[Callable[[str], Awaitable[None]]] = None,
    cancel_event: Optional[asyncio.Event] = None
) -> GenerationManifest:
    """
    Run the complete generation process.

    Args:
        config: Generation configuration
        sources: Entry sources, drained in order
        output_dir: Directory for a FileSystemSink when ``sink`` is not given
        sink: Explicit output sink
        is_allowed: Optional exclusion predicate consulted per raw URL
        prepare: Optional coroutine awaited with each raw URL before the
            predicate, e.g. to load robots.txt for a new origin
        cancel_event: Set it to abort the run

    Returns:
        GenerationManifest with results
    """
    if sink is None:
        if output_dir is None:
            raise ValueError("Either output_dir or sink is required")
        sink = FileSystemSink(output_dir)

    generator = SitemapGenerator(config, sink, is_allowed=is_allowed, prepare=prepare)
    return await generator.run(sources, cancel_event=cancel_event)
