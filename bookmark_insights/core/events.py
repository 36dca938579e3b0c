"""Handlers for bookmark source events.

The external bookmark source reports creations, removals, edits and moves,
and can hand over a full snapshot for a sync. Each handler updates the record
store, invalidates the metrics the change affects, and queues records that
need enrichment. Core-field changes never touch enrichment fields.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Optional

from bookmark_insights.core.bookmark import CORE_FIELDS, BookmarkRecord, domain_for_url
from bookmark_insights.core.config import SettingsProvider
from bookmark_insights.core.invalidator import CacheInvalidator, ChangeType
from bookmark_insights.core.queue import (
    PRIORITY_CREATED,
    PRIORITY_SYNC,
    PRIORITY_URL_CHANGED,
    EnrichmentQueue,
)
from bookmark_insights.core.record_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of a full sync.

    Attributes:
        added: IDs new to the store
        updated: IDs already stored (core fields refreshed)
        removed: IDs dropped because the source no longer has them
        queued: IDs queued for enrichment
    """

    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    queued: list[str] = field(default_factory=list)


class BookmarkEventHandler:
    """Applies bookmark source events to the store, queue and metric cache."""

    def __init__(
        self,
        store: RecordStore,
        queue: EnrichmentQueue,
        invalidator: CacheInvalidator,
        settings_provider: SettingsProvider,
    ):
        self.store = store
        self.queue = queue
        self.invalidator = invalidator
        self.settings_provider = settings_provider

    def _enrichment_enabled(self) -> bool:
        return self.settings_provider.get_settings().allows_enrichment

    def on_record_created(self, record: BookmarkRecord) -> None:
        """Store a new record and queue it ahead of routine work."""
        existing = self.store.get(record.id)
        if existing is not None:
            record = existing.merge_core_fields(record)
        self.store.put(record)
        self.invalidator.invalidate(ChangeType.ADDED)

        if self._enrichment_enabled() and record.is_fetchable:
            self.queue.enqueue(record.id, priority=PRIORITY_CREATED)
        logger.debug("Created bookmark %s", record.id)

    def on_record_removed(self, record_id: str) -> bool:
        """Delete a record and forget any pending enrichment for it.

        Returns:
            True if the record existed.
        """
        existed = self.store.delete(record_id)
        self.queue.dequeue(record_id)
        if existed:
            self.invalidator.invalidate(ChangeType.REMOVED)
        return existed

    def on_record_updated(
        self, record_id: str, changed_fields: dict[str, Any]
    ) -> Optional[BookmarkRecord]:
        """Apply core-field edits (title, URL, ...) to a stored record.

        A URL change queues a forced re-enrichment, since everything derived
        from the old page is now suspect.

        Args:
            record_id: Record to update.
            changed_fields: New core-field values; other keys are ignored.

        Returns:
            The updated record, or None if it is not stored.
        """
        record = self.store.get(record_id)
        if record is None:
            logger.warning("Update for unknown bookmark %s", record_id)
            return None

        core = {k: v for k, v in changed_fields.items() if k in CORE_FIELDS}
        ignored = set(changed_fields) - set(core)
        if ignored:
            logger.debug("Ignoring non-core fields for %s: %s", record_id, sorted(ignored))

        if "url" in core and "domain" not in core:
            core["domain"] = domain_for_url(core["url"])
        updated = replace(record, **core)
        self.store.put(updated)
        self.invalidator.invalidate(ChangeType.UPDATED)

        if updated.url != record.url and self._enrichment_enabled() and updated.is_fetchable:
            self.queue.enqueue(record_id, priority=PRIORITY_URL_CHANGED, force=True)
        return updated

    def on_record_moved(
        self, record_id: str, parent_id: Optional[str], folder_path: str
    ) -> Optional[BookmarkRecord]:
        """Record a move to another folder."""
        return self.on_record_updated(
            record_id, {"parent_id": parent_id, "folder_path": folder_path}
        )

    def sync(self, records: Iterable[BookmarkRecord]) -> SyncResult:
        """Reconcile the store with a full snapshot from the source.

        Stored records keep their enrichment; records missing from the
        snapshot are removed; never-enriched http(s) records are queued.
        """
        result = SyncResult()
        incoming: dict[str, BookmarkRecord] = {}
        for record in records:
            incoming[record.id] = record

        merged = []
        for record_id, record in incoming.items():
            existing = self.store.get(record_id)
            if existing is None:
                merged.append(record)
                result.added.append(record_id)
            else:
                merged.append(existing.merge_core_fields(record))
                result.updated.append(record_id)
        self.store.put_many(merged)

        stale = [r.id for r in self.store.all() if r.id not in incoming]
        self.store.delete_many(stale)
        for record_id in stale:
            self.queue.dequeue(record_id)
        result.removed = stale

        if self._enrichment_enabled():
            result.queued = self.queue_unenriched() + self.queue_retryable()

        if result.added:
            self.invalidator.invalidate(ChangeType.ADDED)
        if result.removed:
            self.invalidator.invalidate(ChangeType.REMOVED)
        if result.updated:
            self.invalidator.invalidate(ChangeType.UPDATED)

        logger.info(
            "Sync complete: added=%d, updated=%d, removed=%d, queued=%d",
            len(result.added),
            len(result.updated),
            len(result.removed),
            len(result.queued),
        )
        return result

    def queue_unenriched(self) -> list[str]:
        """Queue every http(s) record that has never been enriched."""
        pending = self.store.query(lambda r: r.is_fetchable and not r.is_enriched)
        for record in pending:
            self.queue.enqueue(record.id, priority=PRIORITY_SYNC)
        return [record.id for record in pending]

    def queue_retryable(self) -> list[str]:
        """Queue records whose last attempt failed in a retryable way.

        Forced, since the failed attempt already stamped ``last_checked``.
        """
        pending = self.store.query(lambda r: r.is_fetchable and r.retry_pending)
        for record in pending:
            self.queue.enqueue(record.id, priority=PRIORITY_SYNC, force=True)
        if pending:
            logger.info("Queued %d records for retry", len(pending))
        return [record.id for record in pending]
