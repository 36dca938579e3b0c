"""Derived metrics over the bookmark collection.

Every metric is a pure function of the records (and the current time) plus a
cached async getter on MetricsService. Values are plain JSON types so they can
be persisted by the metric cache.
"""

import re
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from bookmark_insights.core.bookmark import BookmarkRecord, Liveness, as_utc, utc_now
from bookmark_insights.core.invalidator import (
    ACTIVITY_TIMELINE,
    AGE_DISTRIBUTION,
    CATEGORY_DISTRIBUTION,
    DOMAIN_STATS,
    DUPLICATES,
    INSIGHTS_SUMMARY,
    PLATFORM_DISTRIBUTION,
    QUICK_STATS,
    WORD_FREQUENCY,
)
from bookmark_insights.core.metric_cache import MetricCache
from bookmark_insights.core.record_store import RecordStore
from bookmark_insights.enrichment.platform_classifier import display_name

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

CACHE_DURATIONS = {
    QUICK_STATS: 5 * MINUTE_MS,
    DOMAIN_STATS: HOUR_MS,
    ACTIVITY_TIMELINE: 6 * HOUR_MS,
    AGE_DISTRIBUTION: 6 * HOUR_MS,
    CATEGORY_DISTRIBUTION: DAY_MS,
    PLATFORM_DISTRIBUTION: DAY_MS,
    DUPLICATES: DAY_MS,
    WORD_FREQUENCY: DAY_MS,
    INSIGHTS_SUMMARY: 5 * MINUTE_MS,
}

AGE_BUCKETS = (
    ("Last 24 hours", timedelta(days=1)),
    ("Last week", timedelta(days=7)),
    ("Last month", timedelta(days=30)),
    ("Last 3 months", timedelta(days=90)),
    ("Last 6 months", timedelta(days=180)),
    ("Last year", timedelta(days=365)),
)
OLDEST_BUCKET = "Over 1 year"

STOP_WORDS = frozenset(
    """
    the a an and or but in on at to for of with by is are was were be been have
    has had do does did will would could should may might can about from up out
    """.split()
)

_NON_WORD_RE = re.compile(r"[^\w\s]")

# Domains recorded for URLs that have no real host
_PLACEHOLDER_DOMAINS = frozenset({"unknown", "invalid-url"})


def _percentage(part: int, total: int) -> int:
    return round(part * 100 / total) if total else 0


def _added_within(record: BookmarkRecord, now: datetime, window: timedelta) -> bool:
    return record.date_added is not None and now - as_utc(record.date_added) < window


def _real_domains(records: Iterable[BookmarkRecord]) -> list[str]:
    return [r.domain for r in records if r.domain and r.domain not in _PLACEHOLDER_DOMAINS]


def normalize_url(url: str) -> str:
    """Lowercase and strip one trailing slash; used for duplicate detection."""
    url = url.lower()
    return url[:-1] if url.endswith("/") else url


def compute_duplicates(records: Iterable[BookmarkRecord]) -> list[list[str]]:
    """Groups of record IDs sharing a normalized URL (groups of two or more)."""
    groups: dict[str, list[str]] = {}
    for record in records:
        groups.setdefault(normalize_url(record.url), []).append(record.id)
    return [ids for ids in groups.values() if len(ids) > 1]


def compute_domain_stats(records: list[BookmarkRecord]) -> dict[str, Any]:
    domains: dict[str, dict[str, Any]] = {}
    for record in records:
        if not record.domain or record.domain in _PLACEHOLDER_DOMAINS:
            continue
        data = domains.setdefault(
            record.domain,
            {"domain": record.domain, "count": 0, "latest_added": None},
        )
        data["count"] += 1
        if record.date_added is not None:
            added = as_utc(record.date_added).isoformat()
            if data["latest_added"] is None or added > data["latest_added"]:
                data["latest_added"] = added

    total = len(records)
    for data in domains.values():
        data["percentage"] = _percentage(data["count"], total)

    by_count = sorted(domains.values(), key=lambda d: (-d["count"], d["domain"]))
    return {
        "by_count": by_count,
        "top10": by_count[:10],
        "total_domains": len(domains),
        "total_bookmarks": total,
    }


def compute_activity_timeline(records: Iterable[BookmarkRecord]) -> list[list[Any]]:
    """Bookmarks added per month as sorted ``[YYYY-MM, count]`` pairs."""
    months = Counter(
        as_utc(r.date_added).strftime("%Y-%m") for r in records if r.date_added is not None
    )
    return [[month, count] for month, count in sorted(months.items())]


def compute_age_distribution(
    records: Iterable[BookmarkRecord], now: datetime
) -> list[list[Any]]:
    counts = {label: 0 for label, _ in AGE_BUCKETS}
    counts[OLDEST_BUCKET] = 0
    for record in records:
        if record.date_added is None:
            continue
        age = now - as_utc(record.date_added)
        label = next((name for name, limit in AGE_BUCKETS if age <= limit), OLDEST_BUCKET)
        counts[label] += 1
    return [[label, count] for label, count in counts.items()]


def compute_category_distribution(records: list[BookmarkRecord]) -> dict[str, Any]:
    counts = Counter(r.category for r in records if r.category)
    return {
        "categories": [
            [category, count]
            for category, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        ],
        "uncategorized": sum(1 for r in records if not r.category),
    }


def compute_platform_distribution(records: list[BookmarkRecord]) -> dict[str, Any]:
    counts = Counter(r.platform for r in records if r.platform)
    return {
        "platforms": [
            {"platform": platform, "name": display_name(platform), "count": count}
            for platform, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        ],
        "other": sum(1 for r in records if not r.platform),
    }


def compute_word_frequency(
    records: Iterable[BookmarkRecord], limit: int = 20
) -> list[list[Any]]:
    """Most common title words (stop words and words of two letters or fewer dropped)."""
    counts: Counter = Counter()
    for record in records:
        if not record.title:
            continue
        words = _NON_WORD_RE.sub(" ", record.title.lower()).split()
        counts.update(w for w in words if len(w) > 2 and w not in STOP_WORDS)
    return [[word, count] for word, count in counts.most_common(limit)]


def compute_quick_stats(records: list[BookmarkRecord], now: datetime) -> dict[str, Any]:
    total = len(records)
    enriched = sum(1 for r in records if r.is_enriched)
    dates = [as_utc(r.date_added) for r in records if r.date_added is not None]
    return {
        "total": total,
        "enriched": enriched,
        "pending": total - enriched,
        "enriched_percentage": _percentage(enriched, total),
        "duplicate_groups": len(compute_duplicates(records)),
        "dead_links": sum(1 for r in records if r.is_alive is Liveness.DEAD),
        "unique_domains": len(set(_real_domains(records))),
        "added_this_week": sum(1 for r in records if _added_within(r, now, timedelta(days=7))),
        "added_this_month": sum(
            1 for r in records if _added_within(r, now, timedelta(days=30))
        ),
        "oldest_bookmark": min(dates).isoformat() if dates else None,
        "newest_bookmark": max(dates).isoformat() if dates else None,
    }


def compute_insights_summary(records: list[BookmarkRecord], now: datetime) -> dict[str, Any]:
    total = len(records)
    categorized = sum(1 for r in records if r.category)
    # "Enriched" here means the page actually yielded content
    enriched = sum(1 for r in records if r.description or r.keywords)
    categories = Counter(r.category for r in records if r.category)
    platforms = Counter(r.platform for r in records if r.platform)
    return {
        "total_bookmarks": total,
        "categorized": categorized,
        "categorized_percentage": _percentage(categorized, total),
        "enriched": enriched,
        "enriched_percentage": _percentage(enriched, total),
        "alive_checked": sum(1 for r in records if r.is_alive is not None),
        "dead_links": sum(1 for r in records if r.is_alive is Liveness.DEAD),
        "added_this_week": sum(1 for r in records if _added_within(r, now, timedelta(days=7))),
        "added_this_month": sum(
            1 for r in records if _added_within(r, now, timedelta(days=30))
        ),
        "top_categories": [[c, n] for c, n in categories.most_common(5)],
        "top_platforms": [[display_name(p), n] for p, n in platforms.most_common(5)],
        "unique_domains": len(set(_real_domains(records))),
    }


class MetricsService:
    """Cached access to the derived metrics.

    Each getter computes from the record store on a cache miss and keeps the
    result for the metric's entry in CACHE_DURATIONS.
    """

    def __init__(
        self,
        store: RecordStore,
        cache: MetricCache,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.cache = cache
        self._clock = clock

    async def _cached(self, key: str, compute: Callable[[], Any]) -> Any:
        return await self.cache.get_or_compute(key, compute, CACHE_DURATIONS[key])

    def _now(self) -> datetime:
        return as_utc(self._clock())

    async def quick_stats(self) -> dict[str, Any]:
        return await self._cached(
            QUICK_STATS, lambda: compute_quick_stats(self.store.all(), self._now())
        )

    async def domain_stats(self) -> dict[str, Any]:
        return await self._cached(DOMAIN_STATS, lambda: compute_domain_stats(self.store.all()))

    async def activity_timeline(self) -> list[list[Any]]:
        return await self._cached(
            ACTIVITY_TIMELINE, lambda: compute_activity_timeline(self.store.all())
        )

    async def age_distribution(self) -> list[list[Any]]:
        return await self._cached(
            AGE_DISTRIBUTION, lambda: compute_age_distribution(self.store.all(), self._now())
        )

    async def category_distribution(self) -> dict[str, Any]:
        return await self._cached(
            CATEGORY_DISTRIBUTION, lambda: compute_category_distribution(self.store.all())
        )

    async def platform_distribution(self) -> dict[str, Any]:
        return await self._cached(
            PLATFORM_DISTRIBUTION, lambda: compute_platform_distribution(self.store.all())
        )

    async def duplicates(self) -> list[list[str]]:
        return await self._cached(DUPLICATES, lambda: compute_duplicates(self.store.all()))

    async def word_frequency(self) -> list[list[Any]]:
        return await self._cached(
            WORD_FREQUENCY, lambda: compute_word_frequency(self.store.all())
        )

    async def insights_summary(self) -> dict[str, Any]:
        return await self._cached(
            INSIGHTS_SUMMARY, lambda: compute_insights_summary(self.store.all(), self._now())
        )
