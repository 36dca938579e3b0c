"""HTTP client for liveness probes and page fetches.

Configures the httpx client with default headers and redirect handling, and
wraps it in ``HttpFetcher``, the network primitive the enrichment worker and
liveness prober depend on. Every request runs under a hard deadline and
transport failures surface as ``NetworkError``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from bookmark_insights.core.config import DEFAULT_TIMEOUT_MS, DEFAULT_USER_AGENT
from bookmark_insights.core.exceptions import NetworkError, NetworkErrorKind, ParseError

logger = logging.getLogger(__name__)

DEFAULT_MAX_REDIRECTS = 10


@dataclass
class FetchResponse:
    """Outcome of a completed request.

    Attributes:
        status: HTTP status code (0 when ``opaque``)
        url: Final URL after redirects
        body: Decoded body text (empty for HEAD)
        opaque: True when the transport completed but hid the status
    """

    status: int
    url: str
    body: str = ""
    opaque: bool = False

    @property
    def ok(self) -> bool:
        return not self.opaque and 200 <= self.status < 300


class Fetcher(Protocol):
    """Anything that can perform a bounded HTTP request."""

    async def fetch(
        self, url: str, method: str = "GET", timeout_ms: int = DEFAULT_TIMEOUT_MS
    ) -> FetchResponse:
        ...


def get_timeout(timeout_ms: int = DEFAULT_TIMEOUT_MS) -> httpx.Timeout:
    """httpx timeout where every phase shares the request deadline."""
    return httpx.Timeout(timeout_ms / 1000)


def get_headers(user_agent: str = DEFAULT_USER_AGENT) -> dict[str, str]:
    """Get default headers for requests.

    Returns:
        Dict with User-Agent and other standard headers.
    """
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
    }


def create_client(
    *,
    timeout: httpx.Timeout | None = None,
    user_agent: str = DEFAULT_USER_AGENT,
    follow_redirects: bool = True,
    max_redirects: int = DEFAULT_MAX_REDIRECTS,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an async HTTP client with configured defaults.

    Args:
        timeout: Custom timeout configuration. Uses defaults if not provided.
        user_agent: User-Agent header value.
        follow_redirects: Whether to follow redirects (default: True).
        max_redirects: Maximum number of redirects to follow (default: 10).
        transport: Optional transport override (tests use httpx.MockTransport).

    Returns:
        Configured httpx.AsyncClient ready for use.

    Example:
        async with create_client() as client:
            response = await client.get("https://example.com")
    """
    return httpx.AsyncClient(
        timeout=timeout or get_timeout(),
        headers=get_headers(user_agent),
        follow_redirects=follow_redirects,
        max_redirects=max_redirects,
        transport=transport,
    )


class HttpFetcher:
    """``Fetcher`` backed by a shared httpx.AsyncClient.

    Usage:
        async with HttpFetcher() as fetcher:
            response = await fetcher.fetch("https://example.com", method="HEAD")

    A client passed in is borrowed and left open on ``aclose()``; a client
    created here is owned and closed.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ):
        self._owns_client = client is None
        self._client = client or create_client(
            timeout=get_timeout(timeout_ms), user_agent=user_agent
        )

    async def __aenter__(self) -> "HttpFetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch(
        self, url: str, method: str = "GET", timeout_ms: int = DEFAULT_TIMEOUT_MS
    ) -> FetchResponse:
        """Perform one request under a hard deadline.

        Args:
            url: Absolute http(s) URL.
            method: HTTP method, usually HEAD or GET.
            timeout_ms: Deadline for the whole request including the body.

        Returns:
            FetchResponse for any status code; 4xx/5xx are not errors here.

        Raises:
            NetworkError: On timeout, DNS or connection failure, or a broken
                protocol exchange.
            ParseError: If the body cannot be decoded as text.
        """
        seconds = timeout_ms / 1000
        try:
            response = await asyncio.wait_for(
                self._client.request(method, url, timeout=get_timeout(timeout_ms)),
                timeout=seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise NetworkError(
                f"{method} {url} timed out after {timeout_ms}ms",
                kind=NetworkErrorKind.TIMEOUT,
            ) from e
        except (httpx.ConnectError, httpx.NetworkError) as e:
            raise NetworkError(
                f"{method} {url} failed: {e}", kind=NetworkErrorKind.CONNECTION
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NetworkError(
                f"{method} {url} failed: {e}", kind=NetworkErrorKind.PROTOCOL
            ) from e

        body = ""
        if method.upper() != "HEAD":
            try:
                body = response.text
            except (LookupError, UnicodeDecodeError) as e:
                raise ParseError(f"Cannot decode body of {url}: {e}") from e

        logger.debug("%s %s -> %d", method, url, response.status_code)
        return FetchResponse(
            status=response.status_code,
            url=str(response.url),
            body=body,
        )
