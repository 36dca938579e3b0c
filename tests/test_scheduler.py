"""Tests for the enrichment scheduler."""

import asyncio
from dataclasses import replace

import pytest

from bookmark_insights.core.bookmark import Liveness
from bookmark_insights.core.config import Settings
from bookmark_insights.core.exceptions import (
    NetworkError,
    NetworkErrorKind,
    SchedulerBusyError,
)
from bookmark_insights.core.http_client import FetchResponse
from bookmark_insights.core.events import BookmarkEventHandler
from bookmark_insights.core.invalidator import CacheInvalidator
from bookmark_insights.core.metric_cache import MetricCache
from bookmark_insights.core.metrics import MetricsService, compute_domain_stats
from bookmark_insights.core.queue import (
    PRIORITY_CREATED,
    PRIORITY_SYNC,
    EnrichmentQueue,
)
from bookmark_insights.core.record_store import RecordStore
from bookmark_insights.core.scheduler import (
    BatchSummary,
    EnrichmentScheduler,
    ProgressStatus,
)
from bookmark_insights.enrichment.worker import EnrichmentWorker, SkipReason

from conftest import NOW

PAGE = '<html><head><meta name="description" content="Hi"></head></html>'


def url_for(record_id):
    return f"https://a.test/{record_id}"


@pytest.fixture
def store():
    """In-memory record store."""
    return RecordStore()


@pytest.fixture
def queue(clock):
    """Queue on the fixed clock."""
    return EnrichmentQueue(clock=clock)


@pytest.fixture
def cache():
    """In-memory metric cache."""
    return MetricCache()


@pytest.fixture
def scheduler(store, queue, cache, fetcher, clock, settings_provider):
    """Scheduler wired to fakes."""
    worker = EnrichmentWorker(fetcher, clock=clock, timeout_ms=1000)
    return EnrichmentScheduler(
        store, worker, settings_provider, queue=queue, invalidator=CacheInvalidator(cache)
    )


@pytest.fixture
def add_records(store, queue, fetcher, make_record):
    """Store, script and queue live pages with the given IDs."""

    def _add(*record_ids, priority=PRIORITY_SYNC):
        for record_id in record_ids:
            store.put(make_record(record_id, url=url_for(record_id)))
            fetcher.page(url_for(record_id), PAGE)
            queue.enqueue(record_id, priority=priority)

    return _add


class TestBatch:
    """A single batch."""

    @pytest.mark.asyncio
    async def test_single_record_end_to_end(self, scheduler, store, add_records):
        """One live page: stored, and the last event reports completion."""
        add_records("1")
        events = []

        summary = await scheduler.run_batch(progress=events.append)

        assert (summary.processed, summary.success) == (1, 1)
        last = events[-1]
        assert (last.current, last.total, last.status) == (1, 1, ProgressStatus.COMPLETED)
        assert events[0].status is ProgressStatus.PROCESSING
        record = store.get("1")
        assert record.description == "Hi"
        assert record.is_alive is Liveness.ALIVE

    @pytest.mark.asyncio
    async def test_empty_queue(self, scheduler):
        """Nothing queued gives an empty summary."""
        assert await scheduler.run_batch() == BatchSummary()

    @pytest.mark.asyncio
    async def test_batch_size_limits_items(self, scheduler, queue, add_records):
        """Only batch_size entries are popped."""
        add_records("1", "2", "3")

        summary = await scheduler.run_batch(batch_size=2)

        assert summary.processed == 2
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_priority_order(self, scheduler, add_records):
        """With one worker, items run in queue order."""
        add_records("old")
        add_records("new", priority=PRIORITY_CREATED)
        started = []

        def listener(event):
            if event.status is ProgressStatus.PROCESSING:
                started.append(event.bookmark_id)

        await scheduler.run_batch(concurrency=1, progress=listener)

        assert started == ["new", "old"]

    @pytest.mark.asyncio
    async def test_concurrency_is_capped(self, scheduler, fetcher, add_records):
        """Never more than ``concurrency`` requests in flight."""
        fetcher.delay = 0.01
        add_records(*[str(i) for i in range(10)])

        summary = await scheduler.run_batch(concurrency=3)

        assert summary.success == 10
        assert fetcher.max_in_flight == 3

    @pytest.mark.asyncio
    async def test_progress_current_never_decreases(self, scheduler, fetcher, add_records):
        """``current`` counts completed items and only goes up."""
        fetcher.delay = 0.005
        add_records(*[str(i) for i in range(6)])
        events = []

        await scheduler.run_batch(concurrency=3, progress=events.append)

        currents = [event.current for event in events]
        assert currents == sorted(currents)
        assert currents[-1] == 6
        assert all(event.total == 6 for event in events)
        finished = [e.index for e in events if e.status is not ProgressStatus.PROCESSING]
        assert sorted(finished) == list(range(6))

    @pytest.mark.asyncio
    async def test_failure_does_not_abort_batch(
        self, scheduler, fetcher, add_records, settings_provider
    ):
        """A failed item is counted and the rest still run."""
        settings_provider.settings = Settings(dead_link_check_enabled=False)
        add_records("bad", "good")
        fetcher.add("GET", url_for("bad"), NetworkError("timed out", kind=NetworkErrorKind.TIMEOUT))
        events = []

        summary = await scheduler.run_batch(concurrency=1, progress=events.append)

        assert (summary.success, summary.failed) == (1, 1)
        assert summary.errors == ["bad: timed out"]
        terminal = {
            e.bookmark_id: e.status for e in events if e.status is not ProgressStatus.PROCESSING
        }
        assert terminal == {"bad": ProgressStatus.FAILED, "good": ProgressStatus.COMPLETED}

    @pytest.mark.asyncio
    async def test_unexpected_scheduler_error_is_reported(
        self, scheduler, store, add_records, monkeypatch
    ):
        """An exception outside the worker becomes an ERROR event."""
        add_records("1")

        def broken_put(record):
            raise OSError("disk full")

        monkeypatch.setattr(store, "put", broken_put)
        events = []

        summary = await scheduler.run_batch(progress=events.append)

        assert summary.failed == 1
        assert events[-1].status is ProgressStatus.ERROR
        assert "disk full" in events[-1].error

    @pytest.mark.asyncio
    async def test_missing_record_is_skipped(self, scheduler, queue):
        """A queued ID with no stored record is skipped."""
        queue.enqueue("ghost")
        events = []

        summary = await scheduler.run_batch(progress=events.append)

        assert summary.skipped == 1
        assert events[-1].outcome.reason is SkipReason.NOT_FOUND
        assert events[-1].title == ""

    @pytest.mark.asyncio
    async def test_listener_errors_are_ignored(self, scheduler, add_records):
        """A raising listener does not break the batch."""
        add_records("1", "2")

        def listener(event):
            raise RuntimeError("listener bug")

        summary = await scheduler.run_batch(progress=listener)

        assert summary.success == 2

    @pytest.mark.asyncio
    async def test_settings_read_per_item(self, scheduler, add_records, settings_provider):
        """Settings are read at batch start and for every item."""
        add_records("1", "2", "3")

        await scheduler.run_batch()

        assert settings_provider.reads == 4

    @pytest.mark.asyncio
    async def test_enrichment_invalidates_metrics(self, scheduler, cache, add_records):
        """Persisting a result drops the enrichment-dependent metrics."""
        await cache.get_or_compute("category_distribution", lambda: {"stale": True}, None)
        await cache.get_or_compute("word_frequency", lambda: [], None)
        add_records("1")

        await scheduler.run_batch()

        assert cache.get("category_distribution") is None
        assert cache.get("word_frequency") == []

    @pytest.mark.asyncio
    async def test_cached_domain_stats_stay_accurate_after_enrichment(
        self, scheduler, store, cache, clock, add_records
    ):
        """Domain stats hold nothing that enrichment changes, so the cache stays valid."""
        service = MetricsService(store, cache, clock=clock)
        add_records("1", "2")
        before = await service.domain_stats()

        await scheduler.run_batch()

        assert store.get("1").is_enriched
        assert await service.domain_stats() == before == compute_domain_stats(store.all())
        assert (await service.quick_stats())["enriched"] == 2


class TestConcurrentEdits:
    """Store changes while a record is being enriched."""

    @pytest.mark.asyncio
    async def test_deleted_record_is_not_resurrected(
        self, scheduler, store, fetcher, add_records
    ):
        """A record deleted mid-enrichment stays deleted."""
        add_records("1")

        def delete_then_answer(method, url):
            store.delete("1")
            return FetchResponse(status=200, url=url, body=PAGE)

        fetcher.add("GET", url_for("1"), delete_then_answer)

        await scheduler.run_batch()

        assert store.get("1") is None

    @pytest.mark.asyncio
    async def test_core_edit_during_enrichment_is_kept(
        self, scheduler, store, fetcher, add_records
    ):
        """A title edited mid-enrichment survives the write-back."""
        add_records("1")

        def rename_then_answer(method, url):
            store.put(replace(store.get("1"), title="Renamed"))
            return FetchResponse(status=200, url=url, body=PAGE)

        fetcher.add("GET", url_for("1"), rename_then_answer)

        await scheduler.run_batch()

        record = store.get("1")
        assert record.title == "Renamed"
        assert record.description == "Hi"


class TestControl:
    """Validation, gating, stop and overlap."""

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, scheduler):
        """Out-of-range values are rejected before any work."""
        with pytest.raises(ValueError):
            await scheduler.run_batch(concurrency=0)
        with pytest.raises(ValueError):
            await scheduler.run_batch(concurrency=11)
        with pytest.raises(ValueError):
            await scheduler.run_batch(batch_size=0)

    def test_invalid_default_concurrency(self, store, fetcher, settings_provider):
        """The constructor validates its concurrency too."""
        with pytest.raises(ValueError):
            EnrichmentScheduler(
                store, EnrichmentWorker(fetcher), settings_provider, concurrency=20
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "settings",
        [Settings(enrichment_enabled=False), Settings(privacy_mode=True)],
    )
    async def test_disabled_enrichment_leaves_queue_alone(
        self, scheduler, queue, fetcher, add_records, settings_provider, settings
    ):
        """Disabled or private: no requests, queue untouched."""
        settings_provider.settings = settings
        add_records("1")

        summary = await scheduler.run_batch()

        assert summary == BatchSummary()
        assert len(queue) == 1
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_overlapping_batch_is_rejected(self, scheduler, fetcher, add_records):
        """A second run_batch while one is running raises."""
        fetcher.delay = 0.01
        add_records("1")
        first = asyncio.create_task(scheduler.run_batch())
        await asyncio.sleep(0)

        assert scheduler.is_running
        with pytest.raises(SchedulerBusyError):
            await scheduler.run_batch()

        summary = await first
        assert summary.success == 1
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_stop_requeues_unstarted_entries(self, scheduler, queue, add_records):
        """In-flight items finish; the rest go back to the queue."""
        add_records("1", "2", "3", "4")

        def listener(event):
            if event.status is ProgressStatus.COMPLETED:
                scheduler.stop()

        summary = await scheduler.run_batch(concurrency=1, progress=listener)

        assert summary.stopped
        assert summary.processed == 1
        assert [e.bookmark_id for e in queue.peek()] == ["2", "3", "4"]

    def test_stop_when_idle_is_a_no_op(self, scheduler):
        """stop() outside a batch does not affect the next one."""
        scheduler.stop()
        assert not scheduler.is_running


class TestDrainAndDeadLinks:
    """Multi-batch runs and dead-link re-checks."""

    @pytest.mark.asyncio
    async def test_drain_empties_queue(self, scheduler, queue, add_records):
        """drain runs batches until nothing is left."""
        add_records(*[str(i) for i in range(5)])

        summary = await scheduler.drain(batch_size=2)

        assert summary.processed == 5
        assert summary.success == 5
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_drain_stops_when_disabled(
        self, scheduler, queue, add_records, settings_provider
    ):
        """A disabled scheduler does not loop forever."""
        settings_provider.settings = Settings(enrichment_enabled=False)
        add_records("1")

        summary = await scheduler.drain()

        assert summary.processed == 0
        assert len(queue) == 1

    def test_enqueue_dead_links(self, scheduler, store, queue, make_record):
        """Dead records are queued with force at sync priority."""
        store.put_many(
            [
                make_record("dead", is_alive=Liveness.DEAD),
                make_record("alive", is_alive=Liveness.ALIVE),
                make_record("unchecked"),
            ]
        )

        assert scheduler.enqueue_dead_links() == 1

        (entry,) = queue.peek()
        assert entry.bookmark_id == "dead"
        assert entry.priority == PRIORITY_SYNC
        assert entry.force is True

    @pytest.mark.asyncio
    async def test_dead_link_recheck_bypasses_freshness(
        self, scheduler, store, fetcher, make_record
    ):
        """A recently checked dead link is probed again and revived."""
        url = url_for("1")
        store.put(make_record("1", url=url, is_alive=Liveness.DEAD, last_checked=NOW))
        fetcher.page(url, PAGE)
        scheduler.enqueue_dead_links()

        summary = await scheduler.run_batch()

        assert summary.success == 1
        assert store.get("1").is_alive is Liveness.ALIVE


class TestRetries:
    """Records whose last run failed with a retryable error."""

    @pytest.mark.asyncio
    async def test_network_failure_is_retried_on_next_run(
        self, scheduler, store, queue, cache, fetcher, add_records, settings_provider
    ):
        """A timed-out record is queued again and enriched once the site answers."""
        add_records("1")
        fetcher.add("GET", url_for("1"), NetworkError("timed out", kind=NetworkErrorKind.TIMEOUT))
        handler = BookmarkEventHandler(store, queue, CacheInvalidator(cache), settings_provider)

        first = await scheduler.run_batch()

        assert first.failed == 1
        assert store.get("1").retry_pending
        assert handler.queue_unenriched() == []

        assert handler.queue_retryable() == ["1"]
        fetcher.page(url_for("1"), PAGE)
        second = await scheduler.run_batch()

        assert second.success == 1
        record = store.get("1")
        assert record.description == "Hi"
        assert not record.retry_pending
        assert handler.queue_retryable() == []
