"""Persistent store for bookmark records.

Records are kept in insertion order in memory and, when a file is given,
mirrored to a JSON file with atomic writes after every mutation.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

from bookmark_insights.core.bookmark import BookmarkRecord
from bookmark_insights.core.storage import atomic_write_json, load_json

logger = logging.getLogger(__name__)


class RecordStore:
    """Keyed store of BookmarkRecords.

    Attributes:
        store_file: JSON file for persistence, or None for memory only.
    """

    def __init__(self, store_file: str | Path | None = None):
        """Initialize the store.

        Args:
            store_file: Path to the JSON file for persistence. Loaded lazily
                on first access.
        """
        self.store_file = Path(store_file) if store_file else None
        self._records: dict[str, BookmarkRecord] = {}
        self._loaded = store_file is None

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._load()

    def _load(self) -> None:
        data = load_json(self.store_file, default={"records": []})
        self._records = {}
        for item in data.get("records", []):
            record = BookmarkRecord.from_dict(item)
            self._records[record.id] = record
        self._loaded = True
        logger.debug("Loaded %d records from %s", len(self._records), self.store_file)

    def _save(self) -> None:
        if self.store_file is None:
            return
        atomic_write_json(
            self.store_file,
            {
                "records": [record.to_dict() for record in self._records.values()],
                "last_updated": datetime.now(timezone.utc).isoformat(),
            },
            prefix=".bookmarks_",
        )

    def get(self, record_id: str) -> Optional[BookmarkRecord]:
        self._ensure_loaded()
        return self._records.get(record_id)

    def put(self, record: BookmarkRecord) -> None:
        """Insert or replace a record (replacing keeps its position)."""
        self._ensure_loaded()
        self._records[record.id] = record
        self._save()

    def put_many(self, records: Iterable[BookmarkRecord]) -> None:
        """Insert or replace several records with a single write."""
        self._ensure_loaded()
        for record in records:
            self._records[record.id] = record
        self._save()

    def delete(self, record_id: str) -> bool:
        """Delete a record.

        Returns:
            True if the record existed.
        """
        self._ensure_loaded()
        if self._records.pop(record_id, None) is None:
            return False
        self._save()
        return True

    def delete_many(self, record_ids: Iterable[str]) -> int:
        """Delete several records with a single write; returns how many existed."""
        self._ensure_loaded()
        removed = sum(
            1 for rid in list(record_ids) if self._records.pop(rid, None) is not None
        )
        if removed:
            self._save()
        return removed

    def query(self, predicate: Callable[[BookmarkRecord], bool]) -> list[BookmarkRecord]:
        """All records matching ``predicate``, in insertion order."""
        self._ensure_loaded()
        return [record for record in self._records.values() if predicate(record)]

    def all(self) -> list[BookmarkRecord]:
        self._ensure_loaded()
        return list(self._records.values())

    def __len__(self) -> int:
        self._ensure_loaded()
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        self._ensure_loaded()
        return record_id in self._records
