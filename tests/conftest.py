"""Shared test fixtures for bookmark-insights.

Provides a scripted fake fetcher, fixed clocks, and temporary paths so tests
never touch the network or the real data directory.
"""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Union

import pytest

from bookmark_insights.core.bookmark import BookmarkRecord
from bookmark_insights.core.config import DEFAULT_TIMEOUT_MS, Settings
from bookmark_insights.core.http_client import FetchResponse

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)

Script = Union[FetchResponse, Exception, Callable[[str, str], FetchResponse]]


class FakeFetcher:
    """Fetcher that answers from a script keyed by (method, url).

    A script value is a FetchResponse, an exception to raise, or a callable
    taking (method, url). Unscripted requests get a 404. Every call is
    recorded in ``calls``; ``delay`` makes each request sleep first.
    """

    def __init__(self, responses: dict | None = None, delay: float = 0.0):
        self.responses: dict[tuple[str, str], Script] = dict(responses or {})
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def add(self, method: str, url: str, response: Script) -> None:
        self.responses[(method, url)] = response

    def page(self, url: str, html: str, status: int = 200) -> None:
        """Script a live page: HEAD and GET both succeed."""
        self.add("HEAD", url, FetchResponse(status=status, url=url))
        self.add("GET", url, FetchResponse(status=status, url=url, body=html))

    async def fetch(
        self, url: str, method: str = "GET", timeout_ms: int = DEFAULT_TIMEOUT_MS
    ) -> FetchResponse:
        self.calls.append((method, url))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            script = self.responses.get((method, url))
            if script is None:
                return FetchResponse(status=404, url=url)
            if isinstance(script, Exception):
                raise script
            if callable(script):
                return script(method, url)
            return script
        finally:
            self.in_flight -= 1


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, delta) -> None:
        self.now = self.now + delta


class StaticSettings:
    """SettingsProvider returning a mutable Settings value."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or Settings()
        self.reads = 0

    def get_settings(self) -> Settings:
        self.reads += 1
        return self.settings


@pytest.fixture
def fetcher() -> FakeFetcher:
    """An empty FakeFetcher (every request 404s until scripted)."""
    return FakeFetcher()


@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to NOW."""
    return FixedClock(NOW)


@pytest.fixture
def settings() -> Settings:
    """Default settings."""
    return Settings()


@pytest.fixture
def settings_provider() -> StaticSettings:
    """Settings provider with default settings."""
    return StaticSettings()


@pytest.fixture
def make_record() -> Callable[..., BookmarkRecord]:
    """Factory for BookmarkRecords with sensible defaults."""

    def _make(record_id: str = "1", url: str = "https://example.com/page", **kwargs):
        kwargs.setdefault("title", f"Bookmark {record_id}")
        return BookmarkRecord(id=record_id, url=url, **kwargs)

    return _make


@pytest.fixture
def temp_data_dir(tmp_path: Path) -> Path:
    """Temporary data directory (created but empty)."""
    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir
