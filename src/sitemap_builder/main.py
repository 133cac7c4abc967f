"""Main CLI entry point for the sitemap builder."""

import asyncio
import functools
import json
import logging
import os
import signal
import sys
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple
import click
from .config import (
    DEFAULT_CRAWL_DELAY,
    DEFAULT_DATABASE_PATH,
    DEFAULT_ENTRY_CAP,
    DEFAULT_MAX_CONCURRENT_REQUESTS,
    DEFAULT_MAX_DEPTH,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SITEMAP_OUTPUT_DIR,
    MAX_BYTES_PER_SITEMAP,
    MAX_URLS_PER_SITEMAP,
    get_config_from_env,
    get_crawl_config_from_env,
    validate_config,
    validate_crawl_config,
)
from .crawler import CrawlSource, create_crawler_session
from .errors import GenerationCancelledError, SitemapError
from .generator import SitemapGenerator
from .index_builder import public_location, render_robots_txt
from .sink import FileSystemSink
from .sources import SitemapFileSource, TextFileSource
from .types import (
    CapPolicy,
    ChangeFrequency,
    CrawlConfig,
    DuplicatePolicy,
    GenerationManifest,
    GeneratorConfig,
    LastmodFormat,
    OversizePolicy,
)
from .utils import format_duration, format_number, setup_logging
from .verifier import get_sitemap_stats, validate_sitemap

logger = logging.getLogger(__name__)


def _choices(enum_cls) -> click.Choice:
    return click.Choice([member.value for member in enum_cls])


def _given(**options: Any) -> Dict[str, Any]:
    """Options the user actually passed; None means fall back to the environment."""
    return {name: value for name, value in options.items() if value is not None}


@click.command()
@click.option(
    '--input', 'inputs',
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help='Entry file; .xml/.gz files are read as sitemaps, anything else as '
         'tab-separated text (url, lastmod, changefreq, priority). Repeatable.'
)
@click.option(
    '--crawl', 'crawl_urls',
    default='',
    help='Comma-separated list of base URLs to crawl'
)
@click.option(
    '--output-dir',
    default=DEFAULT_SITEMAP_OUTPUT_DIR,
    help='Output directory for sitemaps',
    show_default=True
)
@click.option('--base-url', help='Base URL relative entries are appended to [env: SITEMAP_BASE_URL]')
@click.option(
    '--public-url',
    help='URL the output directory is served from; used for index and robots.txt '
         'locations [env: SITEMAP_PUBLIC_URL]'
)
@click.option(
    '--gzip/--no-gzip', 'compress',
    default=None,
    help='Write .xml.gz sitemap files [env: SITEMAP_GZIP]'
)
@click.option(
    '--max-urls',
    type=click.IntRange(1, MAX_URLS_PER_SITEMAP),
    help=f'Maximum URLs per sitemap file [env: SITEMAP_MAX_URLS_PER_SITEMAP; default: {MAX_URLS_PER_SITEMAP}]'
)
@click.option(
    '--max-bytes',
    type=click.IntRange(1, MAX_BYTES_PER_SITEMAP),
    help=f'Maximum uncompressed bytes per sitemap file '
         f'[env: SITEMAP_MAX_BYTES_PER_SITEMAP; default: {MAX_BYTES_PER_SITEMAP}]'
)
@click.option(
    '--entry-cap',
    type=click.IntRange(1),
    help=f'Maximum number of unique URLs collected [env: SITEMAP_ENTRY_CAP; default: {DEFAULT_ENTRY_CAP}]'
)
@click.option(
    '--cap-policy',
    type=_choices(CapPolicy),
    help=f'[env: SITEMAP_CAP_POLICY; default: {CapPolicy.FAIL.value}]'
)
@click.option(
    '--duplicate-policy',
    type=_choices(DuplicatePolicy),
    help=f'[env: SITEMAP_DUPLICATE_POLICY; default: {DuplicatePolicy.LAST_WRITE_WINS.value}]'
)
@click.option(
    '--oversize-policy',
    type=_choices(OversizePolicy),
    help=f'[env: SITEMAP_OVERSIZE_POLICY; default: {OversizePolicy.FAIL.value}]'
)
@click.option(
    '--collapse-slashes/--keep-slashes',
    default=None,
    help='Collapse repeated "/" in URL paths [env: SITEMAP_COLLAPSE_SLASHES]'
)
@click.option(
    '--lastmod-format',
    type=_choices(LastmodFormat),
    help=f'[env: SITEMAP_LASTMOD_FORMAT; default: {LastmodFormat.DATETIME.value}]'
)
@click.option(
    '--default-changefreq',
    type=_choices(ChangeFrequency),
    help='Change frequency for entries without one [env: SITEMAP_DEFAULT_CHANGEFREQ]'
)
@click.option(
    '--default-priority',
    type=click.FloatRange(0.0, 1.0),
    help='Priority for entries without one [env: SITEMAP_DEFAULT_PRIORITY]'
)
@click.option(
    '--default-dir',
    help='Directory relative entries are placed under, e.g. "blog" [env: SITEMAP_DEFAULT_DIR]'
)
@click.option(
    '--default-extension',
    help='Extension added to relative entries that have none, e.g. "html" '
         '[env: SITEMAP_DEFAULT_EXTENSION]'
)
@click.option(
    '--max-depth',
    type=int,
    help=f'Maximum crawl depth [env: SITEMAP_MAX_DEPTH; default: {DEFAULT_MAX_DEPTH}]'
)
@click.option(
    '--max-concurrent',
    type=int,
    help=f'Maximum concurrent requests [env: SITEMAP_MAX_CONCURRENT; default: {DEFAULT_MAX_CONCURRENT_REQUESTS}]'
)
@click.option(
    '--crawl-delay',
    type=float,
    help=f'Delay between requests in seconds [env: SITEMAP_CRAWL_DELAY; default: {DEFAULT_CRAWL_DELAY}]'
)
@click.option(
    '--timeout',
    type=int,
    help=f'Request timeout in seconds [env: SITEMAP_TIMEOUT; default: {DEFAULT_REQUEST_TIMEOUT}]'
)
@click.option(
    '--database-path',
    help=f'SQLite crawl store path [env: SITEMAP_DATABASE_PATH; default: {DEFAULT_DATABASE_PATH}]'
)
@click.option('--disable-robots', is_flag=True, help='Disable robots.txt checking [env: SITEMAP_RESPECT_ROBOTS]')
@click.option('--robots-txt', 'write_robots', is_flag=True, help='Also write robots.txt pointing at the sitemap')
@click.option('--manifest', 'manifest_path', type=click.Path(dir_okay=False), help='Write the run manifest as JSON')
@click.option(
    '--log-level',
    default='INFO',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
    help='Logging level',
    show_default=True
)
@click.option('--log-file', help='Log file path (optional)', type=click.Path())
@click.option('--quiet', is_flag=True, help='Hide banner, progress bars and summary')
@click.option('--validate-only', is_flag=True, help='Only validate existing sitemaps')
def main(
    inputs: Tuple[str, ...],
    crawl_urls: str,
    output_dir: str,
    base_url: Optional[str],
    public_url: Optional[str],
    compress: Optional[bool],
    max_urls: Optional[int],
    max_bytes: Optional[int],
    entry_cap: Optional[int],
    cap_policy: Optional[str],
    duplicate_policy: Optional[str],
    oversize_policy: Optional[str],
    collapse_slashes: Optional[bool],
    lastmod_format: Optional[str],
    default_changefreq: Optional[str],
    default_priority: Optional[float],
    default_dir: Optional[str],
    default_extension: Optional[str],
    max_depth: Optional[int],
    max_concurrent: Optional[int],
    crawl_delay: Optional[float],
    timeout: Optional[int],
    database_path: Optional[str],
    disable_robots: bool,
    write_robots: bool,
    manifest_path: Optional[str],
    log_level: str,
    log_file: Optional[str],
    quiet: bool,
    validate_only: bool
) -> None:
    """
    Sitemap Builder - generate sitemaps.org compliant XML sitemaps.

    Entries come from input files and/or a crawl of the given base URLs. URLs
    are normalized, validated and deduplicated, split into files that respect
    the 50,000 URL / 50 MiB limits, and a sitemap index is written when more
    than one file is needed.

    Options left unset fall back to the SITEMAP_* environment variables and
    then to the protocol defaults.
    """
    setup_logging(log_level, log_file)

    if validate_only:
        validate_existing_sitemaps(output_dir)
        return

    if not quiet:
        print_banner()

    base_url_list = [url.strip() for url in crawl_urls.split(',') if url.strip()]

    try:
        config = replace(get_config_from_env(), **_given(
            max_entries_per_sitemap=max_urls,
            max_bytes_per_sitemap=max_bytes,
            entry_cap=entry_cap,
            cap_policy=CapPolicy(cap_policy) if cap_policy else None,
            duplicate_policy=DuplicatePolicy(duplicate_policy) if duplicate_policy else None,
            oversize_policy=OversizePolicy(oversize_policy) if oversize_policy else None,
            collapse_slashes=collapse_slashes,
            base_url=base_url,
            sitemap_base_url=public_url,
            compress=compress,
            lastmod_format=LastmodFormat(lastmod_format) if lastmod_format else None,
            default_changefreq=ChangeFrequency(default_changefreq) if default_changefreq else None,
            default_priority=default_priority,
            default_dir=default_dir,
            default_extension=default_extension,
            show_progress=not quiet,
        ))

        crawl_config = None
        if base_url_list:
            crawl_config = replace(get_crawl_config_from_env(base_url_list), **_given(
                max_depth=max_depth,
                max_concurrent_requests=max_concurrent,
                crawl_delay=crawl_delay,
                request_timeout=timeout,
                database_path=database_path,
            ))
            if disable_robots:
                crawl_config.respect_robots_txt = False

        validate_config(config)
        if crawl_config is not None:
            validate_crawl_config(crawl_config)
    except ValueError as e:
        raise click.UsageError(str(e))

    if not inputs and crawl_config is None:
        raise click.UsageError("Provide at least one --input file or --crawl URL")

    if write_robots and not config.sitemap_base_url:
        raise click.UsageError("--robots-txt requires --public-url")

    start = time.monotonic()
    try:
        manifest = asyncio.run(
            generate(config, list(inputs), crawl_config, output_dir, show_progress=not quiet)
        )
    except GenerationCancelledError as e:
        logger.info(f"Process interrupted: {e}")
        sys.exit(130)  # Standard exit code for SIGINT
    except KeyboardInterrupt:
        logger.info("Process interrupted by user")
        sys.exit(130)
    except SitemapError as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)

    if write_robots:
        target = manifest.index_path or manifest.files[0]
        sitemap_url = public_location(os.path.basename(target), config.sitemap_base_url)
        FileSystemSink(output_dir).write("robots.txt", render_robots_txt(sitemap_url))

    if manifest_path:
        with open(manifest_path, 'w', encoding='utf-8') as f:
            json.dump(manifest.to_dict(), f, indent=2)

    if not quiet:
        print_final_summary(manifest, time.monotonic() - start)


def build_sources(inputs: List[str]) -> list:
    """Pick a source type for every input file."""
    sources = []
    for path in inputs:
        lower = path.lower()
        if lower.endswith(('.xml', '.xml.gz', '.gz')):
            sources.append(SitemapFileSource(path))
        else:
            sources.append(TextFileSource(path))
    return sources


async def generate(
    config: GeneratorConfig,
    inputs: List[str],
    crawl_config: Optional[CrawlConfig],
    output_dir: str,
    show_progress: bool = False
) -> GenerationManifest:
    """Run a generation, cancelling it cleanly on SIGINT/SIGTERM."""
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, cancel_event.set)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Signal handler for {signum} not supported on this platform")

    sources = build_sources(inputs)
    sink = FileSystemSink(output_dir)
    if crawl_config is None:
        generator = SitemapGenerator(config, sink)
        return await generator.run(sources, cancel_event=cancel_event)

    session = await create_crawler_session(
        timeout=crawl_config.request_timeout,
        max_connections=crawl_config.max_concurrent_requests * 2,
        user_agent=crawl_config.user_agent
    )
    async with session:
        crawl_source = CrawlSource(
            crawl_config, session=session, cancel_event=cancel_event, show_progress=show_progress
        )
        sources.append(crawl_source)

        is_allowed = prepare = None
        if crawl_config.respect_robots_txt:
            # Input files are read before the crawl, so rules for each origin
            # are fetched the first time an entry from it shows up
            is_allowed = crawl_source.robots_checker.is_allowed
            prepare = functools.partial(crawl_source.robots_checker.load, session=session)

        generator = SitemapGenerator(config, sink, is_allowed=is_allowed, prepare=prepare)
        return await generator.run(sources, cancel_event=cancel_event)


def print_banner() -> None:
    """Print application banner."""
    banner = """
╔══════════════════════════════════════════════════════════════╗
║                       SITEMAP BUILDER                        ║
║                                                              ║
║  Normalize, deduplicate and split URLs into XML sitemaps     ║
╚══════════════════════════════════════════════════════════════╝
    """
    click.echo(banner)


def validate_existing_sitemaps(output_dir: str) -> None:
    """Validate existing sitemap files."""
    if not os.path.exists(output_dir):
        click.echo(f"Output directory does not exist: {output_dir}")
        return

    sitemap_files = sorted(
        os.path.join(output_dir, filename)
        for filename in os.listdir(output_dir)
        if filename.endswith(('.xml', '.xml.gz')) and 'sitemap' in filename.lower()
    )

    if not sitemap_files:
        click.echo("No sitemap files found to validate")
        return

    click.echo(f"Validating {len(sitemap_files)} sitemap files...")

    valid_count = 0
    for filepath in sitemap_files:
        if validate_sitemap(filepath):
            stats = get_sitemap_stats(filepath)
            click.echo(f"✓ {os.path.basename(filepath)}: {format_number(stats['total_urls'])} URLs")
            valid_count += 1
        else:
            click.echo(f"✗ {os.path.basename(filepath)}: INVALID")

    click.echo(f"\nValidation complete: {valid_count}/{len(sitemap_files)} files valid")


def print_final_summary(manifest: GenerationManifest, elapsed: float) -> None:
    """Print final summary of the generation run."""
    click.echo("\n" + "=" * 70)
    click.echo("SITEMAP GENERATION SUMMARY")
    click.echo("=" * 70)

    click.echo(f"URLs written: {format_number(manifest.total_entries)}")
    click.echo(f"Entries discarded: {format_number(manifest.discarded_entries)}")
    click.echo(f"Sitemap files: {manifest.shard_count}")
    click.echo(f"Total duration: {format_duration(elapsed)}")
    if manifest.truncated:
        click.echo("Warning: entry cap reached, input was truncated")

    click.echo("\nGenerated files:")
    for filepath in manifest.files:
        size_mb = os.path.getsize(filepath) / (1024 * 1024)
        click.echo(f"  • {os.path.basename(filepath)} ({size_mb:.2f} MB)")

    if manifest.warnings:
        click.echo("\nDiscarded entries (first 10):")
        for warning in manifest.warnings[:10]:
            click.echo(f"  • {warning.url} [{', '.join(warning.kinds)}] {warning.message}")

    click.echo("\n" + "=" * 70)


if __name__ == '__main__':
    main()
