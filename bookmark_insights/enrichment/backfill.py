"""Offline platform backfill.

Classifies the URL of every stored bookmark and fills in platform, creator,
content type and platform data without touching the network. Useful after
the platform rules change, or for records stored before they existed.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from bookmark_insights.core.bookmark import BookmarkRecord
from bookmark_insights.core.invalidator import CacheInvalidator, ChangeType
from bookmark_insights.core.record_store import RecordStore
from bookmark_insights.enrichment.platform_classifier import classify
from bookmark_insights.enrichment.worker import changed_fields

logger = logging.getLogger(__name__)

BACKFILL_BATCH_SIZE = 100


@dataclass
class BackfillResult:
    """Totals for one backfill run.

    Attributes:
        processed: Records looked at
        updated: Records whose platform fields changed
        errors: Records that could not be classified
        platforms: Updated records per platform id
    """

    processed: int = 0
    updated: int = 0
    errors: int = 0
    platforms: dict[str, int] = field(default_factory=dict)


def backfill_record(record: BookmarkRecord) -> BookmarkRecord:
    """Return ``record`` with platform fields derived from its URL.

    Records on no known platform are returned unchanged. A stored creator
    wins over the URL handle, and stored platform data for the same platform
    is kept since it may carry page refinements.
    """
    info = classify(record.url)
    if info is None:
        return record

    platform_data = record.platform_data
    if platform_data is None or platform_data.platform != info.platform:
        platform_data = info

    return replace(
        record,
        platform=info.platform,
        creator=record.creator or info.creator,
        content_type=info.content_type or record.content_type,
        platform_data=platform_data,
    )


def backfill_platform_data(
    store: RecordStore,
    invalidator: Optional[CacheInvalidator] = None,
    progress: Optional[Callable[[int, int], None]] = None,
    batch_size: int = BACKFILL_BATCH_SIZE,
) -> BackfillResult:
    """Classify every stored bookmark and persist changed platform fields.

    Args:
        store: Record store to update in place.
        invalidator: Told about the change once, if anything was updated.
        progress: Called with ``(processed, total)`` after each batch.
        batch_size: Records per store write.

    Returns:
        BackfillResult with the run's totals.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    records = store.all()
    total = len(records)
    result = BackfillResult()
    logger.info("Starting platform backfill over %d bookmarks", total)

    for start in range(0, total, batch_size):
        updates = []
        for record in records[start:start + batch_size]:
            result.processed += 1
            try:
                updated = backfill_record(record)
            except Exception as e:
                result.errors += 1
                logger.warning("Could not classify bookmark %s: %s", record.id, e)
                continue
            if changed_fields(record, updated):
                updates.append(updated)
                result.platforms[updated.platform] = result.platforms.get(updated.platform, 0) + 1

        if updates:
            store.put_many(updates)
            result.updated += len(updates)
        if progress is not None:
            progress(result.processed, total)

    if result.updated and invalidator is not None:
        invalidator.invalidate(ChangeType.ENRICHED)

    logger.info(
        "Platform backfill complete: processed=%d, updated=%d, errors=%d",
        result.processed,
        result.updated,
        result.errors,
    )
    return result
