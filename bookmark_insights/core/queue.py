"""Priority queue of bookmark IDs awaiting enrichment.

Higher priority runs first; within a priority band entries run in enqueue
order. Each bookmark ID appears at most once: enqueuing an ID that is already
waiting raises its priority to the maximum of the two, keeps the original
enqueue time, and ORs the ``force`` flag.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from itertools import count
from typing import Callable, Iterable

from bookmark_insights.core.bookmark import utc_now

logger = logging.getLogger(__name__)

# Priorities used by the bookmark event handlers
PRIORITY_CREATED = 10
PRIORITY_URL_CHANGED = 5
PRIORITY_SYNC = 0


@dataclass(frozen=True)
class QueueEntry:
    """A bookmark waiting for enrichment.

    Attributes:
        bookmark_id: Record to enrich
        enqueued_at: When the ID first entered the queue
        priority: Higher runs first
        force: Bypass the freshness gate when enriching
        seq: Insertion counter, breaks ties between equal timestamps
    """

    bookmark_id: str
    enqueued_at: datetime
    priority: int = 0
    force: bool = False
    seq: int = field(default=0, compare=False, repr=False)

    @property
    def sort_key(self) -> tuple:
        return (-self.priority, self.enqueued_at, self.seq)


class EnrichmentQueue:
    """In-memory enrichment queue with per-ID coalescing."""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or utc_now
        self._entries: dict[str, QueueEntry] = {}
        self._seq = count()

    def enqueue(self, bookmark_id: str, priority: int = 0, force: bool = False) -> QueueEntry:
        """Add ``bookmark_id`` or coalesce with its waiting entry.

        Returns:
            The entry now in the queue for this ID.
        """
        current = self._entries.get(bookmark_id)
        if current is None:
            entry = QueueEntry(
                bookmark_id, self._clock(), priority, force, seq=next(self._seq)
            )
        else:
            entry = replace(
                current,
                priority=max(current.priority, priority),
                force=current.force or force,
            )
        self._entries[bookmark_id] = entry
        logger.debug("Queued %s (priority=%d)", bookmark_id, entry.priority)
        return entry

    def dequeue(self, bookmark_id: str) -> bool:
        """Remove ``bookmark_id`` if waiting. Returns True if it was."""
        return self._entries.pop(bookmark_id, None) is not None

    def pop_batch(self, size: int) -> list[QueueEntry]:
        """Remove and return up to ``size`` entries in run order."""
        batch = self.peek(size)
        for entry in batch:
            del self._entries[entry.bookmark_id]
        return batch

    def peek(self, size: int | None = None) -> list[QueueEntry]:
        """Entries in run order without removing them."""
        entries = sorted(self._entries.values(), key=lambda entry: entry.sort_key)
        return entries if size is None else entries[:size]

    def requeue(self, entries: Iterable[QueueEntry]) -> None:
        """Put popped-but-unstarted entries back in their original place.

        An ID enqueued again in the meantime is coalesced with the returned
        entry.
        """
        for entry in entries:
            current = self._entries.get(entry.bookmark_id)
            if current is not None:
                earliest = min(current, entry, key=lambda e: (e.enqueued_at, e.seq))
                entry = replace(
                    earliest,
                    priority=max(current.priority, entry.priority),
                    force=current.force or entry.force,
                )
            self._entries[entry.bookmark_id] = entry

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, bookmark_id: object) -> bool:
        return bookmark_id in self._entries
