"""Bookmark data model for bookmark-insights.

This module defines the core data structures used throughout the pipeline:
- Liveness: tri-state result of a dead-link probe
- RawMetadata: sparse bag of page metadata (meta, Open Graph, Twitter Card,
  JSON-LD, other) with a catch-all for unknown keys
- PlatformInfo: structured facts inferred from a known platform's URL
- BookmarkRecord: one bookmarked URL, split into core fields (owned by the
  external bookmark source) and enrichment fields (owned by this pipeline)
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse

FETCHABLE_SCHEMES = frozenset({"http", "https"})

MAX_KEYWORDS = 10
MAX_SNIPPET_LENGTH = 200

# Fields the external bookmark source is authoritative for.
CORE_FIELDS = ("url", "title", "domain", "date_added", "folder_path", "parent_id")

# Fields only an enrichment pass may write.
ENRICHMENT_FIELDS = (
    "description",
    "keywords",
    "category",
    "is_alive",
    "last_checked",
    "favicon_url",
    "content_snippet",
    "raw_metadata",
    "platform",
    "creator",
    "content_type",
    "platform_data",
    "retry_pending",
)


class Liveness(str, Enum):
    """Result of probing a bookmark URL.

    - ALIVE: the server answered with a 2xx/3xx status
    - DEAD: timeout, connection failure, or a definitive 4xx/5xx
    - UNKNOWN: reachable, but the response could not be inspected
    """

    ALIVE = "alive"
    DEAD = "dead"
    UNKNOWN = "unknown"


def domain_for_url(url: str) -> str:
    """Hostname of an http(s) URL, ``"unknown"`` for other schemes."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "invalid-url"
    if parsed.scheme not in FETCHABLE_SCHEMES:
        return "unknown"
    return (parsed.hostname or "").lower() or "invalid-url"


def is_fetchable_url(url: str) -> bool:
    """True for http and https URLs."""
    try:
        return urlparse(url).scheme.lower() in FETCHABLE_SCHEMES
    except ValueError:
        return False


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Convert to UTC, treating naive datetimes as already UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class RawMetadata:
    """Metadata extracted from a page's HTML.

    Every bucket is sparse: a tag missing from the page is missing from the
    bucket. ``extra`` keeps any stored keys this version does not know about,
    so round-tripping older or newer data loses nothing.

    ``snippet`` and ``favicon_href`` are extraction by-products used to derive
    record fields; they are not part of the stored bag.
    """

    meta: dict[str, str] = field(default_factory=dict)
    open_graph: dict[str, str] = field(default_factory=dict)
    twitter_card: dict[str, str] = field(default_factory=dict)
    json_ld: list[Any] = field(default_factory=list)
    other: dict[str, str] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)
    snippet: Optional[str] = None
    favicon_href: Optional[str] = None

    _BUCKETS = ("meta", "open_graph", "twitter_card", "json_ld", "other")

    @property
    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in self._BUCKETS)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            name: getattr(self, name) for name in self._BUCKETS if getattr(self, name)
        }
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["RawMetadata"]:
        if data is None:
            return None
        known = {k: data[k] for k in cls._BUCKETS if k in data}
        extra = {k: v for k, v in data.items() if k not in cls._BUCKETS}
        return cls(**known, extra=extra)


@dataclass
class PlatformInfo:
    """Structured facts about a URL on a known content platform.

    Attributes:
        platform: Platform id (``github``, ``youtube``, ...)
        content_type: Kind of page (``video``, ``issue``, ``pull-request``,
            ``article``, ...) or None when the path was not recognized
        creator: Owner/author derived from the URL or page metadata
        identifier: Primary id (video id, repo name, article slug, ...)
        subtype: Optional refinement (``short``, ``live``, ``blob``, ...)
        extra: Platform-specific fields (playlist id, branch, path, ...)
    """

    platform: str
    content_type: Optional[str] = None
    creator: Optional[str] = None
    identifier: Optional[str] = None
    subtype: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "content_type": self.content_type,
            "creator": self.creator,
            "identifier": self.identifier,
            "subtype": self.subtype,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["PlatformInfo"]:
        if data is None:
            return None
        return cls(
            platform=data["platform"],
            content_type=data.get("content_type"),
            creator=data.get("creator"),
            identifier=data.get("identifier"),
            subtype=data.get("subtype"),
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class BookmarkRecord:
    """One bookmarked URL.

    Core fields come from the external bookmark source and are authoritative
    when present. Enrichment fields are written only by the enrichment worker;
    a core-field sync must never reset them (see ``merge_core_fields``).
    """

    # Identity
    id: str

    # Core fields (external source)
    url: str
    title: str = ""
    domain: Optional[str] = None
    date_added: Optional[datetime] = None
    folder_path: str = ""
    parent_id: Optional[str] = None

    # Enrichment fields
    description: Optional[str] = None
    keywords: list[str] = field(default_factory=list)
    category: Optional[str] = None
    is_alive: Optional[Liveness] = None
    last_checked: Optional[datetime] = None
    favicon_url: Optional[str] = None
    content_snippet: Optional[str] = None
    raw_metadata: Optional[RawMetadata] = None
    platform: Optional[str] = None
    creator: Optional[str] = None
    content_type: Optional[str] = None
    platform_data: Optional[PlatformInfo] = None
    # Last attempt failed in a way a later run may fix
    retry_pending: bool = False

    def __post_init__(self) -> None:
        if self.domain is None:
            self.domain = domain_for_url(self.url)
        if isinstance(self.is_alive, str):
            self.is_alive = Liveness(self.is_alive)

    @property
    def is_fetchable(self) -> bool:
        return is_fetchable_url(self.url)

    @property
    def is_enriched(self) -> bool:
        return self.last_checked is not None

    def enrichment_fields(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in ENRICHMENT_FIELDS}

    def merge_core_fields(self, source: "BookmarkRecord") -> "BookmarkRecord":
        """Take core fields from ``source``, keep this record's enrichment.

        A ``None`` core value in ``source`` means "not reported" and keeps the
        existing value.

        Args:
            source: Fresh record from the external bookmark source.

        Returns:
            New record; ``self`` is not modified.
        """
        if source.id != self.id:
            raise ValueError(f"Cannot merge record {source.id} into {self.id}")
        changes = {
            name: getattr(source, name)
            for name in CORE_FIELDS
            if getattr(source, name) is not None
        }
        if "url" in changes and "domain" not in changes:
            changes["domain"] = domain_for_url(changes["url"])
        return replace(self, **changes)

    def with_enrichment_from(self, enriched: "BookmarkRecord") -> "BookmarkRecord":
        """Copy every enrichment field from ``enriched`` onto this record."""
        return replace(self, **enriched.enrichment_fields())

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dict."""
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = _format_datetime(value)
            elif isinstance(value, Liveness):
                value = value.value
            elif isinstance(value, (RawMetadata, PlatformInfo)):
                value = value.to_dict()
            elif isinstance(value, list):
                value = list(value)
            data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BookmarkRecord":
        """Build a record from ``to_dict()`` output, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["id"] = str(values["id"])
        values["date_added"] = _parse_datetime(values.get("date_added"))
        values["last_checked"] = _parse_datetime(values.get("last_checked"))
        if values.get("is_alive") is not None:
            values["is_alive"] = Liveness(values["is_alive"])
        values["raw_metadata"] = RawMetadata.from_dict(values.get("raw_metadata"))
        values["platform_data"] = PlatformInfo.from_dict(values.get("platform_data"))
        values["keywords"] = list(values.get("keywords") or [])
        return cls(**values)
