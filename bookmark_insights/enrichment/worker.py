"""Enrichment worker: enriches one bookmark record.

Pipeline for a single record:
1. Gate on privacy mode, URL scheme and freshness
2. Probe liveness (dead links stop here)
3. Fetch the page and extract metadata
4. Classify platform and category
5. Merge into a new record; values the page did not provide keep their
   previously stored value

Per-record failures are returned as EnrichmentOutcome values and never raised,
so one broken page cannot abort a batch.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional
from urllib.parse import urljoin

from bookmark_insights.core.bookmark import (
    ENRICHMENT_FIELDS,
    BookmarkRecord,
    Liveness,
    RawMetadata,
    as_utc,
    utc_now,
)
from bookmark_insights.core.config import DEFAULT_TIMEOUT_MS, Settings
from bookmark_insights.core.exceptions import NetworkError, ParseError
from bookmark_insights.core.http_client import Fetcher
from bookmark_insights.core.logger import get_bookmark_logger
from bookmark_insights.enrichment.category_classifier import categorize
from bookmark_insights.enrichment.liveness import LivenessProber
from bookmark_insights.enrichment.metadata_extractor import (
    extract,
    pick_author,
    pick_description,
    pick_keywords,
)
from bookmark_insights.enrichment.platform_classifier import (
    classify,
    refine_with_json_ld,
    schema_content_type,
)

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class SkipReason(str, Enum):
    ALREADY_FRESH = "already-fresh"
    NON_FETCHABLE_SCHEME = "non-fetchable-scheme"
    PRIVACY_MODE = "privacy-mode"
    NOT_FOUND = "not-found"


class ErrorCategory(str, Enum):
    NETWORK = "network"
    PARSE = "parse"
    UNEXPECTED = "unexpected"


@dataclass
class EnrichmentOutcome:
    """Result of enriching one record.

    Attributes:
        status: success, skipped or failed
        reason: Why the record was skipped (skipped only)
        error_category: Kind of failure (failed only)
        error: Failure message (failed only)
        fields: Enrichment fields written, by name
        duration_ms: Wall time spent on the record
    """

    status: OutcomeStatus
    reason: Optional[SkipReason] = None
    error_category: Optional[ErrorCategory] = None
    error: Optional[str] = None
    fields: dict[str, Any] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def persisted(self) -> bool:
        """True when the record carries new enrichment data to store."""
        return bool(self.fields)

    @classmethod
    def success(cls, fields: dict[str, Any], duration_ms: int = 0) -> "EnrichmentOutcome":
        return cls(status=OutcomeStatus.SUCCESS, fields=fields, duration_ms=duration_ms)

    @classmethod
    def skipped(cls, reason: SkipReason, duration_ms: int = 0) -> "EnrichmentOutcome":
        return cls(status=OutcomeStatus.SKIPPED, reason=reason, duration_ms=duration_ms)

    @classmethod
    def failed(
        cls,
        category: ErrorCategory,
        error: str,
        fields: Optional[dict[str, Any]] = None,
        duration_ms: int = 0,
    ) -> "EnrichmentOutcome":
        return cls(
            status=OutcomeStatus.FAILED,
            error_category=category,
            error=error,
            fields=fields or {},
            duration_ms=duration_ms,
        )


def changed_fields(before: BookmarkRecord, after: BookmarkRecord) -> dict[str, Any]:
    """Enrichment fields whose value differs between two versions of a record."""
    return {
        name: getattr(after, name)
        for name in ENRICHMENT_FIELDS
        if getattr(after, name) != getattr(before, name)
    }


class EnrichmentWorker:
    """Enriches one record at a time.

    Stateless apart from its collaborators, so one worker can serve many
    concurrent enrichments.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        prober: Optional[LivenessProber] = None,
        clock: Callable[[], datetime] = utc_now,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ):
        """Initialize the worker.

        Args:
            fetcher: Network primitive used for page fetches.
            prober: Liveness prober (defaults to one on the same fetcher).
            clock: Returns the current time; injectable for tests.
            timeout_ms: Deadline for every network call.
        """
        self._fetcher = fetcher
        self._prober = prober or LivenessProber(fetcher)
        self._clock = clock
        self.timeout_ms = timeout_ms

    def is_fresh(self, record: BookmarkRecord, settings: Settings) -> bool:
        """True when the record was checked within the freshness window."""
        if record.last_checked is None or settings.freshness_days == 0:
            return False
        age = as_utc(self._clock()) - as_utc(record.last_checked)
        return age < timedelta(days=settings.freshness_days)

    async def enrich(
        self, record: BookmarkRecord, settings: Settings, force: bool = False
    ) -> tuple[BookmarkRecord, EnrichmentOutcome]:
        """Enrich ``record`` according to ``settings``.

        Args:
            record: Record to enrich. Not modified.
            settings: Current settings snapshot.
            force: Ignore the freshness gate.

        Returns:
            (record, outcome). The record is a new instance whenever enrichment
            fields changed, otherwise the input record.
        """
        log = get_bookmark_logger(__name__, record.id)
        started = time.perf_counter()

        def elapsed() -> int:
            return int((time.perf_counter() - started) * 1000)

        if settings.privacy_mode:
            return record, EnrichmentOutcome.skipped(SkipReason.PRIVACY_MODE)
        if not record.is_fetchable:
            log.debug("Skipping non-http(s) URL %s", record.url)
            return record, EnrichmentOutcome.skipped(SkipReason.NON_FETCHABLE_SCHEME)
        if not force and self.is_fresh(record, settings):
            log.debug("Skipping fresh record (last checked %s)", record.last_checked)
            return record, EnrichmentOutcome.skipped(SkipReason.ALREADY_FRESH)

        now = self._clock()
        try:
            liveness = record.is_alive
            if settings.dead_link_check_enabled:
                liveness = await self._prober.probe(record.url, timeout_ms=self.timeout_ms)
                if liveness is Liveness.DEAD:
                    updated = replace(
                        record, is_alive=Liveness.DEAD, last_checked=now, retry_pending=False
                    )
                    log.info("Dead link: %s", record.url)
                    return updated, EnrichmentOutcome.success(
                        changed_fields(record, updated), elapsed()
                    )

            try:
                response = await self._fetcher.fetch(
                    record.url, method="GET", timeout_ms=self.timeout_ms
                )
            except NetworkError as e:
                updated = replace(record, last_checked=now, retry_pending=e.retryable)
                log.warning("Fetch failed (%s): %s", e.kind.value, e)
                return updated, EnrichmentOutcome.failed(
                    ErrorCategory.NETWORK,
                    str(e),
                    changed_fields(record, updated),
                    elapsed(),
                )

            if response.ok:
                metadata = extract(response.body)
            else:
                log.info("Page returned %d, enriching from URL only", response.status)
                metadata = RawMetadata()

            updated = self._merge(record, metadata, response.url, liveness, settings, now)
        except ParseError as e:
            # Liveness is already known and the attempt counts for freshness
            updated = replace(
                record, is_alive=liveness, last_checked=now, retry_pending=e.retryable
            )
            log.warning("Could not parse page: %s", e)
            return updated, EnrichmentOutcome.failed(
                ErrorCategory.PARSE,
                str(e),
                changed_fields(record, updated),
                elapsed(),
            )
        except Exception as e:
            log.exception("Unexpected enrichment failure")
            return record, EnrichmentOutcome.failed(
                ErrorCategory.UNEXPECTED, f"{type(e).__name__}: {e}", duration_ms=elapsed()
            )

        outcome = EnrichmentOutcome.success(changed_fields(record, updated), elapsed())
        log.info(
            "Enriched: category=%s platform=%s",
            updated.category,
            updated.platform,
            extra={"duration_ms": outcome.duration_ms},
        )
        return updated, outcome

    def _merge(
        self,
        record: BookmarkRecord,
        metadata: RawMetadata,
        final_url: str,
        liveness: Optional[Liveness],
        settings: Settings,
        now: datetime,
    ) -> BookmarkRecord:
        info = refine_with_json_ld(classify(record.url), metadata.json_ld)

        content_type = info.content_type if info else None
        if content_type is None:
            mapped = schema_content_type(metadata.json_ld)
            content_type = mapped[0] if mapped else None

        # A display name from the page beats a handle parsed from the URL
        creator = pick_author(metadata) or (info.creator if info else None)

        description = pick_description(metadata)
        keywords = pick_keywords(metadata)

        favicon_url = None
        if metadata.favicon_href:
            favicon_url = urljoin(final_url or record.url, metadata.favicon_href)

        category = record.category
        if settings.auto_categorization_enabled:
            category = (
                categorize(record.url, record.title, description or "", keywords)
                or record.category
            )

        return replace(
            record,
            description=description or record.description,
            keywords=keywords or record.keywords,
            category=category,
            is_alive=liveness,
            last_checked=now,
            favicon_url=favicon_url or record.favicon_url,
            content_snippet=metadata.snippet or record.content_snippet,
            raw_metadata=record.raw_metadata if metadata.is_empty else metadata,
            platform=info.platform if info else record.platform,
            creator=creator or record.creator,
            content_type=content_type or record.content_type,
            platform_data=info or record.platform_data,
            retry_pending=False,
        )
