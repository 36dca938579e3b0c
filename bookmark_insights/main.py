"""Main entry point for bookmark-insights.

Syncs bookmark exports into the record store, enriches queued bookmarks and
prints the derived insights.

Usage:
    python -m bookmark_insights.main --import bookmarks.json  # Sync an export
    python -m bookmark_insights.main --once                   # Enrich the queue and exit
    python -m bookmark_insights.main --once --concurrency 3   # With a smaller worker pool
    python -m bookmark_insights.main --recheck-dead --once    # Re-probe dead links
    python -m bookmark_insights.main --backfill-platforms     # Classify stored URLs offline
    python -m bookmark_insights.main --stats                  # Print the insights summary
    python -m bookmark_insights.main --verbose                # Enable debug logging
"""

import argparse
import asyncio
import json
import signal
import sys
from dataclasses import dataclass

from bookmark_insights.core.config import Config, SettingsStore, get_config
from bookmark_insights.core.events import BookmarkEventHandler
from bookmark_insights.core.exceptions import ParseError
from bookmark_insights.core.http_client import Fetcher, HttpFetcher
from bookmark_insights.core.invalidator import CacheInvalidator
from bookmark_insights.core.logger import get_logger, setup_logging
from bookmark_insights.core.metric_cache import MetricCache
from bookmark_insights.core.metrics import MetricsService
from bookmark_insights.core.queue import EnrichmentQueue
from bookmark_insights.core.record_store import RecordStore
from bookmark_insights.core.scheduler import (
    BatchSummary,
    EnrichmentScheduler,
    ProgressEvent,
    ProgressStatus,
)
from bookmark_insights.enrichment.backfill import backfill_platform_data
from bookmark_insights.enrichment.worker import EnrichmentWorker
from bookmark_insights.sources.export_reader import parse_bookmark_export

logger = get_logger(__name__)


@dataclass
class App:
    """The wired-up components one CLI run works with."""

    config: Config
    store: RecordStore
    settings: SettingsStore
    cache: MetricCache
    invalidator: CacheInvalidator
    queue: EnrichmentQueue
    events: BookmarkEventHandler
    metrics: MetricsService


def build_app(config: Config) -> App:
    """Create the stores and handlers backed by ``config.data_dir``."""
    store = RecordStore(config.store_file)
    settings = SettingsStore(config.settings_file)
    cache = MetricCache(config.cache_file)
    invalidator = CacheInvalidator(cache)
    queue = EnrichmentQueue()
    events = BookmarkEventHandler(store, queue, invalidator, settings)
    return App(
        config=config,
        store=store,
        settings=settings,
        cache=cache,
        invalidator=invalidator,
        queue=queue,
        events=events,
        metrics=MetricsService(store, cache),
    )


def print_progress(event: ProgressEvent) -> None:
    """Print one line per finished bookmark."""
    if event.status is ProgressStatus.PROCESSING:
        return
    label = event.title or event.url or event.bookmark_id
    line = f"  [{event.current}/{event.total}] {event.status.value}: {label[:70]}"
    if event.error:
        line += f" ({event.error})"
    print(line)


def print_stats(summary: BatchSummary) -> None:
    """Print enrichment statistics to stdout."""
    print("\n=== Enrichment Complete ===")
    print(f"Processed: {summary.processed}")
    print(f"Enriched:  {summary.success}")
    print(f"Skipped:   {summary.skipped}")
    print(f"Failed:    {summary.failed}")

    if summary.errors:
        print(f"\nErrors ({len(summary.errors)}):")
        for error in summary.errors[:10]:
            print(f"  - {error}")
        if len(summary.errors) > 10:
            print(f"  ... and {len(summary.errors) - 10} more")


async def run_enrichment(
    app: App,
    batch_size: int | None = None,
    concurrency: int | None = None,
    recheck_dead: bool = False,
    fetcher: Fetcher | None = None,
) -> BatchSummary:
    """Drain the enrichment queue once.

    Args:
        app: Wired-up components.
        batch_size: Entries per batch (default: from settings).
        concurrency: Worker pool size (default: from settings).
        recheck_dead: Queue every dead link for a forced re-check first.
        fetcher: Network primitive (default: an HttpFetcher built from config).

    Returns:
        Aggregated BatchSummary over all batches.
    """
    config = app.config
    owns_fetcher = fetcher is None
    if fetcher is None:
        fetcher = HttpFetcher(user_agent=config.user_agent, timeout_ms=config.timeout_ms)

    worker = EnrichmentWorker(fetcher, timeout_ms=config.timeout_ms)
    scheduler = EnrichmentScheduler(
        app.store, worker, app.settings, queue=app.queue, invalidator=app.invalidator
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except (NotImplementedError, RuntimeError):
            # Not available on Windows or outside the main thread
            pass

    try:
        if recheck_dead:
            scheduler.enqueue_dead_links()
        logger.info("Enriching %d queued bookmarks", len(app.queue))
        return await scheduler.drain(
            progress=print_progress, batch_size=batch_size, concurrency=concurrency
        )
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass
        if owns_fetcher:
            await fetcher.aclose()


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="bookmark-insights",
        description="Enrich bookmarks with page metadata and compute collection insights.",
    )

    parser.add_argument(
        "--import",
        dest="import_file",
        metavar="FILE",
        help="Sync the store with a JSON bookmark export",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Enrich every queued bookmark and exit",
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        metavar="N",
        help="Bookmarks per batch (5-100, default: from settings)",
    )

    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        metavar="N",
        help="Enrichments in flight at once (1-10, default: from settings)",
    )

    parser.add_argument(
        "--recheck-dead",
        action="store_true",
        help="Queue dead links for a forced re-check (requires --once)",
    )

    parser.add_argument(
        "--backfill-platforms",
        action="store_true",
        help="Fill in platform data for every stored bookmark from its URL (no network)",
    )

    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print the insights summary as JSON",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    return parser


def main(args: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        args: Command line arguments (defaults to sys.argv[1:]).

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    parser = create_argument_parser()
    parsed_args = parser.parse_args(args)

    actions = (
        parsed_args.import_file,
        parsed_args.backfill_platforms,
        parsed_args.once,
        parsed_args.stats,
    )
    if not any(actions):
        parser.print_help()
        return 0

    try:
        config = get_config()
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    log_level = "DEBUG" if parsed_args.verbose else config.log_level
    setup_logging(log_level)

    app = build_app(config)

    if parsed_args.import_file:
        try:
            records = parse_bookmark_export(parsed_args.import_file)
        except (OSError, ParseError) as e:
            logger.error("Import of %s failed: %s", parsed_args.import_file, e)
            print(f"Import failed: {e}", file=sys.stderr)
            return 1
        result = app.events.sync(records)
        print(
            f"Imported {len(records)} bookmarks: {len(result.added)} added, "
            f"{len(result.updated)} updated, {len(result.removed)} removed"
        )
    else:
        # The queue lives in memory; rebuild it from the store on each run
        app.events.queue_unenriched()
        app.events.queue_retryable()

    if parsed_args.backfill_platforms:
        backfill = backfill_platform_data(app.store, app.invalidator)
        print(
            f"Backfilled platform data: {backfill.updated} of {backfill.processed} "
            f"bookmarks updated, {backfill.errors} errors"
        )
        for platform, count in sorted(backfill.platforms.items()):
            print(f"  {platform}: {count}")

    exit_code = 0
    if parsed_args.once:
        try:
            summary = asyncio.run(
                run_enrichment(
                    app,
                    batch_size=parsed_args.batch_size,
                    concurrency=parsed_args.concurrency,
                    recheck_dead=parsed_args.recheck_dead,
                )
            )
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print_stats(summary)
        exit_code = 0 if summary.failed == 0 else 1

    if parsed_args.stats:
        summary = asyncio.run(app.metrics.insights_summary())
        print(json.dumps(summary, indent=2))

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
