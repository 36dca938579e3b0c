"""Enrichment scheduler: drains the queue through the worker.

A batch pops up to ``batch_size`` entries and runs them through a fixed pool
of ``concurrency`` worker coroutines. Each coroutine pulls the next entry as
soon as its current one finishes, so one slow page never holds back a whole
wave. Results are persisted onto the latest stored version of each record and
the affected metrics are invalidated.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterator, Optional

from bookmark_insights.core.bookmark import BookmarkRecord, Liveness
from bookmark_insights.core.config import CONCURRENCY_RANGE, SettingsProvider
from bookmark_insights.core.exceptions import SchedulerBusyError
from bookmark_insights.core.invalidator import CacheInvalidator, ChangeType
from bookmark_insights.core.queue import PRIORITY_SYNC, EnrichmentQueue, QueueEntry
from bookmark_insights.core.record_store import RecordStore
from bookmark_insights.enrichment.worker import (
    EnrichmentOutcome,
    EnrichmentWorker,
    OutcomeStatus,
    SkipReason,
)

logger = logging.getLogger(__name__)


class ProgressStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    ERROR = "error"


@dataclass
class ProgressEvent:
    """Progress notification for one batch item.

    Attributes:
        current: Items completed so far in the batch (never decreases)
        total: Items in the batch
        index: Position of this item in the batch
        bookmark_id: Record being enriched
        title: Record title ("" if the record is gone)
        url: Record URL ("" if the record is gone)
        status: processing, completed, failed or error
        outcome: Worker outcome (terminal events only)
        error: Failure message, if any
    """

    current: int
    total: int
    index: int
    bookmark_id: str
    title: str
    url: str
    status: ProgressStatus
    outcome: Optional[EnrichmentOutcome] = None
    error: Optional[str] = None


ProgressListener = Callable[[ProgressEvent], None]


@dataclass
class BatchSummary:
    """Result of one batch (or several, for ``drain``).

    Attributes:
        processed: Items that ran to a terminal status
        success: Items enriched
        failed: Items that failed (worker failure or unexpected error)
        skipped: Items skipped (fresh, privacy, scheme, missing record)
        errors: One message per failed item
        stopped: A stop request cut the batch short
    """

    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    stopped: bool = False

    def add(self, other: "BatchSummary") -> None:
        self.processed += other.processed
        self.success += other.success
        self.failed += other.failed
        self.skipped += other.skipped
        self.errors.extend(other.errors)
        self.stopped = self.stopped or other.stopped


def _validate_concurrency(concurrency: int) -> None:
    low, high = CONCURRENCY_RANGE
    if not low <= concurrency <= high:
        raise ValueError(f"concurrency must be between {low} and {high}, got {concurrency}")


def _validate_batch_size(batch_size: int) -> None:
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")


class _BatchRun:
    """Mutable state shared by the worker coroutines of one batch."""

    def __init__(self, entries: list[QueueEntry], progress: Optional[ProgressListener]):
        self.entries = entries
        self.total = len(entries)
        self.progress = progress
        self.items: Iterator[tuple[int, QueueEntry]] = iter(enumerate(entries))
        self.completed = 0
        self.unstarted: list[QueueEntry] = []
        self.summary = BatchSummary()


class EnrichmentScheduler:
    """Runs enrichment batches against a record store.

    Only one batch runs at a time; a second concurrent ``run_batch`` raises
    SchedulerBusyError instead of interleaving with the first.
    """

    def __init__(
        self,
        store: RecordStore,
        worker: EnrichmentWorker,
        settings_provider: SettingsProvider,
        queue: Optional[EnrichmentQueue] = None,
        invalidator: Optional[CacheInvalidator] = None,
        concurrency: Optional[int] = None,
    ):
        """Initialize the scheduler.

        Args:
            store: Record store read before and written after each enrichment.
            worker: Enrichment worker.
            settings_provider: Source of the current Settings.
            queue: Enrichment queue (a new empty one if not given).
            invalidator: Metric invalidator notified after each enrichment.
            concurrency: Default pool size, overriding the settings value.

        Raises:
            ValueError: If ``concurrency`` is outside 1-10.
        """
        if concurrency is not None:
            _validate_concurrency(concurrency)
        self.store = store
        self.worker = worker
        self.settings_provider = settings_provider
        self.queue = queue if queue is not None else EnrichmentQueue()
        self.invalidator = invalidator
        self._concurrency = concurrency
        self._running = False
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Stop pulling new items; in-flight items finish normally."""
        if self._running:
            logger.info("Stop requested")
            self._stop_requested = True

    async def run_batch(
        self,
        batch_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        progress: Optional[ProgressListener] = None,
    ) -> BatchSummary:
        """Enrich up to ``batch_size`` queued records.

        Args:
            batch_size: Entries to pop (defaults to settings.batch_size).
            concurrency: Pool size (defaults to the constructor value, then
                settings.concurrency).
            progress: Synchronous listener for per-item progress events.

        Returns:
            BatchSummary with per-status counts.

        Raises:
            ValueError: For an invalid batch size or concurrency.
            SchedulerBusyError: If a batch is already running.
        """
        if batch_size is not None:
            _validate_batch_size(batch_size)
        if concurrency is not None:
            _validate_concurrency(concurrency)
        if self._running:
            raise SchedulerBusyError("An enrichment batch is already running")

        settings = self.settings_provider.get_settings()
        if not settings.enrichment_enabled:
            logger.info("Enrichment is disabled")
            return BatchSummary()
        if settings.privacy_mode:
            logger.info("Privacy mode is on, enrichment paused")
            return BatchSummary()

        size = batch_size or settings.batch_size
        pool_size = concurrency or self._concurrency or settings.concurrency

        self._running = True
        self._stop_requested = False
        try:
            entries = self._dedupe(self.queue.pop_batch(size))
            if not entries:
                logger.debug("Enrichment queue is empty")
                return BatchSummary()

            logger.info(
                "Processing %d bookmarks with %d workers",
                len(entries),
                min(pool_size, len(entries)),
                extra={"batch_size": len(entries), "concurrency": pool_size},
            )
            run = _BatchRun(entries, progress)
            await asyncio.gather(
                *(self._run_worker(run) for _ in range(min(pool_size, len(entries))))
            )

            if run.unstarted:
                self.queue.requeue(run.unstarted)
                run.summary.stopped = True
                logger.info("Batch stopped, %d entries returned to queue", len(run.unstarted))

            summary = run.summary
            logger.info(
                "Batch complete: processed=%d, success=%d, failed=%d, skipped=%d",
                summary.processed,
                summary.success,
                summary.failed,
                summary.skipped,
            )
            return summary
        finally:
            self._running = False
            self._stop_requested = False

    async def drain(
        self,
        progress: Optional[ProgressListener] = None,
        batch_size: Optional[int] = None,
        concurrency: Optional[int] = None,
    ) -> BatchSummary:
        """Run batches until the queue is empty, stopped, or enrichment is off."""
        total = BatchSummary()
        while len(self.queue):
            summary = await self.run_batch(batch_size, concurrency, progress)
            total.add(summary)
            if summary.stopped or summary.processed == 0:
                break
        return total

    def enqueue_dead_links(self) -> int:
        """Queue every dead record for a forced re-check. Returns how many."""
        dead = self.store.query(lambda record: record.is_alive is Liveness.DEAD)
        for record in dead:
            self.queue.enqueue(record.id, priority=PRIORITY_SYNC, force=True)
        logger.info("Queued %d dead links for re-check", len(dead))
        return len(dead)

    @staticmethod
    def _dedupe(entries: list[QueueEntry]) -> list[QueueEntry]:
        seen: set[str] = set()
        unique = []
        for entry in entries:
            if entry.bookmark_id not in seen:
                seen.add(entry.bookmark_id)
                unique.append(entry)
        return unique

    async def _run_worker(self, run: _BatchRun) -> None:
        # The iterator is shared; next() never awaits, so no two coroutines
        # can take the same entry
        for index, entry in run.items:
            if self._stop_requested:
                run.unstarted.append(entry)
                continue
            await self._process(run, index, entry)

    async def _process(self, run: _BatchRun, index: int, entry: QueueEntry) -> None:
        record = self.store.get(entry.bookmark_id)
        title = record.title if record else ""
        url = record.url if record else ""

        def emit(status: ProgressStatus, outcome=None, error=None) -> None:
            self._emit(
                run,
                ProgressEvent(
                    current=run.completed,
                    total=run.total,
                    index=index,
                    bookmark_id=entry.bookmark_id,
                    title=title,
                    url=url,
                    status=status,
                    outcome=outcome,
                    error=error,
                ),
            )

        emit(ProgressStatus.PROCESSING)

        try:
            if record is None:
                outcome = EnrichmentOutcome.skipped(SkipReason.NOT_FOUND)
            else:
                settings = self.settings_provider.get_settings()
                updated, outcome = await self.worker.enrich(record, settings, force=entry.force)
                if outcome.persisted:
                    self._persist(updated)
        except Exception as e:
            logger.exception("Error processing bookmark %s", entry.bookmark_id)
            message = f"{entry.bookmark_id}: {type(e).__name__}: {e}"
            run.summary.processed += 1
            run.summary.failed += 1
            run.summary.errors.append(message)
            run.completed += 1
            emit(ProgressStatus.ERROR, error=message)
            return

        run.summary.processed += 1
        if outcome.status is OutcomeStatus.SUCCESS:
            run.summary.success += 1
            status = ProgressStatus.COMPLETED
        elif outcome.status is OutcomeStatus.SKIPPED:
            run.summary.skipped += 1
            status = ProgressStatus.COMPLETED
        else:
            run.summary.failed += 1
            run.summary.errors.append(f"{entry.bookmark_id}: {outcome.error}")
            status = ProgressStatus.FAILED

        run.completed += 1
        emit(status, outcome=outcome, error=outcome.error)

    def _persist(self, enriched: BookmarkRecord) -> None:
        """Graft enrichment fields onto the latest stored core fields."""
        latest = self.store.get(enriched.id)
        if latest is None:
            logger.info("Bookmark %s was deleted during enrichment, dropping result", enriched.id)
            return
        self.store.put(latest.with_enrichment_from(enriched))
        if self.invalidator is not None:
            self.invalidator.invalidate(ChangeType.ENRICHED)

    @staticmethod
    def _emit(run: _BatchRun, event: ProgressEvent) -> None:
        if run.progress is None:
            return
        try:
            run.progress(event)
        except Exception:
            logger.exception("Progress listener raised, ignoring")
