"""TTL cache for derived metrics.

Each metric is computed on demand through ``get_or_compute`` and kept until
its TTL runs out or it is invalidated. Concurrent requests for the same
missing or stale key share one computation; requests for different keys never
wait on each other. Entries persist to a JSON file with atomic writes so a
restart does not recompute everything.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from bookmark_insights.core.storage import atomic_write_json, load_json

logger = logging.getLogger(__name__)

ComputeFn = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass
class CacheEntry:
    """A cached metric value.

    Attributes:
        key: Metric name
        value: JSON-serializable value
        computed_at: Epoch seconds when the computation started
        ttl: Lifetime in milliseconds, or None to keep until invalidated
    """

    key: str
    value: Any
    computed_at: float
    ttl: Optional[int]

    def is_fresh(self, now: float) -> bool:
        if self.ttl is None:
            return True
        return (now - self.computed_at) * 1000 < self.ttl


def _validate_ttl(ttl_ms: Optional[int]) -> None:
    if ttl_ms is not None and ttl_ms <= 0:
        raise ValueError(f"ttl_ms must be positive or None, got {ttl_ms}")


class MetricCache:
    """Keyed TTL cache with single-flight computation.

    Attributes:
        cache_file: JSON file for persistence, or None for memory only.
    """

    def __init__(
        self,
        cache_file: str | Path | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_file = Path(cache_file) if cache_file else None
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        # Bumped on every invalidation so an in-flight result can tell it
        # is outdated before storing
        self._generations: dict[str, int] = {}
        self._loaded = cache_file is None

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        rows = load_json(self.cache_file, default=[])
        self._entries = {row["key"]: CacheEntry(**row) for row in rows}
        self._loaded = True

    def _save(self) -> None:
        if self.cache_file is None:
            return
        atomic_write_json(
            self.cache_file,
            [asdict(entry) for entry in self._entries.values()],
            prefix=".metric_cache_",
        )

    def get(self, key: str) -> Optional[Any]:
        """Return a fresh cached value, or None."""
        self._ensure_loaded()
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            return None
        return entry.value

    def entry(self, key: str) -> Optional[CacheEntry]:
        """Stored entry for ``key`` regardless of freshness."""
        self._ensure_loaded()
        return self._entries.get(key)

    async def get_or_compute(
        self, key: str, compute_fn: ComputeFn, ttl_ms: Optional[int]
    ) -> Any:
        """Return the cached value for ``key``, computing it if needed.

        Args:
            key: Metric name.
            compute_fn: Sync or async callable producing the value.
            ttl_ms: Lifetime in milliseconds, or None for "until invalidated".

        Returns:
            The fresh cached value, or the newly computed one.

        Raises:
            ValueError: If ``ttl_ms`` is zero or negative.
            Exception: Whatever ``compute_fn`` raised; nothing is cached.
        """
        _validate_ttl(ttl_ms)
        self._ensure_loaded()

        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self._clock()):
            return entry.value

        task = self._inflight.get(key)
        if task is None:
            generation = self._generations.get(key, 0)
            task = asyncio.ensure_future(self._compute(key, compute_fn, ttl_ms, generation))
            self._inflight[key] = task
            task.add_done_callback(lambda t, key=key: self._forget(key, t))
        else:
            logger.debug("Joining in-flight computation of %s", key)

        # One cancelled waiter must not cancel the shared computation
        return await asyncio.shield(task)

    async def _compute(
        self, key: str, compute_fn: ComputeFn, ttl_ms: Optional[int], generation: int
    ) -> Any:
        started = self._clock()
        value = compute_fn()
        if inspect.isawaitable(value):
            value = await value

        if self._generations.get(key, 0) != generation:
            logger.debug("Discarding %s: invalidated during computation", key)
            return value

        self._entries[key] = CacheEntry(key=key, value=value, computed_at=started, ttl=ttl_ms)
        self._save()
        return value

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Mark the exception retrieved; waiters re-raise it themselves
            task.exception()

    def invalidate(self, keys: Iterable[str]) -> list[str]:
        """Drop ``keys`` and detach their in-flight computations.

        Returns:
            Keys that had a stored entry or a computation in flight.
        """
        self._ensure_loaded()
        dropped = []
        for key in keys:
            self._generations[key] = self._generations.get(key, 0) + 1
            had_entry = self._entries.pop(key, None) is not None
            had_task = self._inflight.pop(key, None) is not None
            if had_entry or had_task:
                dropped.append(key)
        if dropped:
            self._save()
        return dropped

    def clear(self) -> list[str]:
        """Drop every entry; returns the keys that were dropped."""
        self._ensure_loaded()
        return self.invalidate(list(set(self._entries) | set(self._inflight)))

    def keys(self) -> list[str]:
        self._ensure_loaded()
        return list(self._entries)
