"""Configuration for bookmark-insights.

Two layers:

- ``Config``: process configuration from environment variables (paths, log
  level, network timeout). Loaded once at startup and validated to fail fast.
- ``Settings``: user-facing enrichment settings persisted in a JSON file by
  ``SettingsStore``. Read at the start of every batch and every single
  enrichment, mutated only by explicit user action.
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Protocol

from bookmark_insights.core.exceptions import ConfigurationError
from bookmark_insights.core.storage import atomic_write_json, load_json

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 5000
DEFAULT_USER_AGENT = "BookmarkInsights/1.0 (bookmark enrichment)"

BATCH_SIZE_RANGE = (5, 100)
CONCURRENCY_RANGE = (1, 10)


@dataclass
class Config:
    """Process configuration loaded from environment variables.

    Optional (with defaults):
        data_dir: Directory holding all persisted JSON state.
        log_level: Logging verbosity (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        timeout_ms: Hard deadline for every network operation.
        user_agent: User-Agent header sent with probes and page fetches.
    """

    data_dir: Path = field(default_factory=lambda: Path("data"))
    log_level: str = "INFO"
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self) -> None:
        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir)

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level.upper() not in valid_log_levels:
            raise ConfigurationError(
                f"Invalid LOG_LEVEL '{self.log_level}'. "
                f"Must be one of: {', '.join(sorted(valid_log_levels))}"
            )
        self.log_level = self.log_level.upper()

        if self.timeout_ms <= 0:
            raise ConfigurationError("BOOKMARK_INSIGHTS_TIMEOUT_MS must be positive")

    @property
    def store_file(self) -> Path:
        return self.data_dir / "bookmarks.json"

    @property
    def cache_file(self) -> Path:
        return self.data_dir / "metric_cache.json"

    @property
    def settings_file(self) -> Path:
        return self.data_dir / "settings.json"


def load_config() -> Config:
    """Load configuration from environment variables.

    Raises:
        ConfigurationError: If a value is present but invalid.
    """

    def get_int(key: str, default: int) -> int:
        value = os.environ.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"{key} must be a valid integer, got '{value}'")

    return Config(
        data_dir=Path(os.environ.get("BOOKMARK_INSIGHTS_DATA_DIR", "data")),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        timeout_ms=get_int("BOOKMARK_INSIGHTS_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
        user_agent=os.environ.get("BOOKMARK_INSIGHTS_USER_AGENT", DEFAULT_USER_AGENT),
    )


_config: Config | None = None


def get_config() -> Config:
    """Get the process-wide Config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Force the next get_config() call to reload from the environment."""
    global _config
    _config = None


@dataclass(frozen=True)
class Settings:
    """Enrichment settings.

    Attributes:
        enrichment_enabled: Master switch for the enrichment scheduler.
        batch_size: Bookmarks pulled from the queue per batch (5-100).
        concurrency: Enrichments in flight at once (1-10).
        freshness_days: Skip bookmarks checked within this many days
            (0 = always re-enrich).
        auto_categorization_enabled: Assign categories during enrichment.
        dead_link_check_enabled: Probe liveness before fetching.
        privacy_mode: Disable every network request for enrichment.
        track_browsing_behavior: Stored for the UI; unused by the pipeline.
    """

    enrichment_enabled: bool = True
    batch_size: int = 50
    concurrency: int = 5
    freshness_days: int = 30
    auto_categorization_enabled: bool = True
    dead_link_check_enabled: bool = True
    privacy_mode: bool = False
    track_browsing_behavior: bool = False

    def __post_init__(self) -> None:
        low, high = BATCH_SIZE_RANGE
        if not low <= self.batch_size <= high:
            raise ConfigurationError(
                f"batch_size must be between {low} and {high}, got {self.batch_size}"
            )
        low, high = CONCURRENCY_RANGE
        if not low <= self.concurrency <= high:
            raise ConfigurationError(
                f"concurrency must be between {low} and {high}, got {self.concurrency}"
            )
        if self.freshness_days < 0:
            raise ConfigurationError("freshness_days must be non-negative")

    @property
    def allows_enrichment(self) -> bool:
        return self.enrichment_enabled and not self.privacy_mode

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """Build Settings from stored data, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class SettingsProvider(Protocol):
    """Anything that hands out the current Settings."""

    def get_settings(self) -> Settings:
        ...


class SettingsStore:
    """Persists Settings to a JSON file.

    When no file is given, settings live in memory only (useful for tests and
    one-shot runs).
    """

    def __init__(self, settings_file: str | Path | None = None):
        self.settings_file = Path(settings_file) if settings_file else None
        self._settings: Settings | None = None

    def get_settings(self) -> Settings:
        """Return current settings, loading them on first call."""
        if self._settings is None:
            self._settings = self._load()
        return self._settings

    def update(self, **changes: Any) -> Settings:
        """Apply ``changes`` to the current settings and persist them.

        Raises:
            ConfigurationError: If a key is unknown or a value is out of range.
        """
        known = {f.name for f in fields(Settings)}
        unknown = set(changes) - known
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(sorted(unknown))}")

        self._settings = replace(self.get_settings(), **changes)
        self._save()
        logger.info("Settings updated: %s", sorted(changes))
        return self._settings

    def _load(self) -> Settings:
        if self.settings_file is None:
            return Settings()
        data = load_json(self.settings_file, default={})
        return Settings.from_dict(data)

    def _save(self) -> None:
        if self.settings_file is None or self._settings is None:
            return
        atomic_write_json(self.settings_file, self._settings.to_dict(), prefix=".settings_")
