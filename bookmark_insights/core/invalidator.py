"""Maps bookmark changes to the derived metrics they make stale.

Keys not listed for a change type are left alone and expire through their TTL
only (``word_frequency`` is never invalidated by a change).
"""

import logging
from enum import Enum

from bookmark_insights.core.metric_cache import MetricCache

logger = logging.getLogger(__name__)

# Metric keys
DOMAIN_STATS = "domain_stats"
QUICK_STATS = "quick_stats"
ACTIVITY_TIMELINE = "activity_timeline"
AGE_DISTRIBUTION = "age_distribution"
CATEGORY_DISTRIBUTION = "category_distribution"
PLATFORM_DISTRIBUTION = "platform_distribution"
DUPLICATES = "duplicates"
WORD_FREQUENCY = "word_frequency"
INSIGHTS_SUMMARY = "insights_summary"


class ChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    UPDATED = "updated"
    ENRICHED = "enriched"


INVALIDATION_MAP: dict[ChangeType, tuple[str, ...]] = {
    ChangeType.ADDED: (
        DOMAIN_STATS,
        QUICK_STATS,
        ACTIVITY_TIMELINE,
        AGE_DISTRIBUTION,
        INSIGHTS_SUMMARY,
    ),
    ChangeType.REMOVED: (
        DOMAIN_STATS,
        QUICK_STATS,
        DUPLICATES,
        INSIGHTS_SUMMARY,
    ),
    ChangeType.UPDATED: (
        QUICK_STATS,
        INSIGHTS_SUMMARY,
    ),
    ChangeType.ENRICHED: (
        CATEGORY_DISTRIBUTION,
        PLATFORM_DISTRIBUTION,
        INSIGHTS_SUMMARY,
        QUICK_STATS,
    ),
}


class CacheInvalidator:
    """Drops the metric keys affected by a change."""

    def __init__(self, cache: MetricCache):
        self.cache = cache

    def invalidate(self, change_type: ChangeType | str) -> list[str]:
        """Invalidate every key mapped to ``change_type``.

        Returns:
            The mapped keys, whether or not they were cached.

        Raises:
            ValueError: For an unknown change type.
        """
        change_type = ChangeType(change_type)
        keys = list(INVALIDATION_MAP[change_type])
        dropped = self.cache.invalidate(keys)
        if dropped:
            logger.debug("Change %s invalidated %s", change_type.value, dropped)
        return keys

    def invalidate_all(self) -> list[str]:
        """Drop every cached metric."""
        dropped = self.cache.clear()
        logger.info("Invalidated all metrics (%d cached)", len(dropped))
        return dropped
