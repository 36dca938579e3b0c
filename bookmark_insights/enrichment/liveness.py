"""Dead-link detection.

A HEAD request decides liveness when the server gives a definitive answer.
Servers that reject HEAD (405/501) get a GET instead. When the transport hides
the status (opaque response), a best-effort GET can only show that the host is
reachable, which is reported as UNKNOWN.
"""

import logging

from bookmark_insights.core.bookmark import Liveness
from bookmark_insights.core.config import DEFAULT_TIMEOUT_MS
from bookmark_insights.core.exceptions import NetworkError
from bookmark_insights.core.http_client import FetchResponse, Fetcher

logger = logging.getLogger(__name__)

# HEAD answered with these means "ask again with GET"
HEAD_UNSUPPORTED_STATUSES = frozenset({405, 501})


def liveness_for_status(status: int) -> Liveness:
    """2xx/3xx -> ALIVE, anything else -> DEAD."""
    return Liveness.ALIVE if 200 <= status < 400 else Liveness.DEAD


class LivenessProber:
    """Probes URLs for liveness with a hard per-request deadline."""

    def __init__(self, fetcher: Fetcher):
        self._fetcher = fetcher

    async def probe(self, url: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> Liveness:
        """Probe ``url`` and classify the result.

        Never raises for network failures; they count as DEAD.

        Args:
            url: http(s) URL to probe.
            timeout_ms: Deadline for each request made.

        Returns:
            ALIVE, DEAD or UNKNOWN.
        """
        try:
            response = await self._fetcher.fetch(url, method="HEAD", timeout_ms=timeout_ms)
        except NetworkError as e:
            logger.debug("HEAD %s failed (%s): %s", url, e.kind.value, e)
            return Liveness.DEAD

        if response.opaque:
            return await self._probe_opaque(url, timeout_ms)

        if response.status in HEAD_UNSUPPORTED_STATUSES:
            logger.debug("HEAD not supported by %s (%d), retrying with GET", url, response.status)
            return await self._probe_with_get(url, timeout_ms)

        return liveness_for_status(response.status)

    async def _probe_with_get(self, url: str, timeout_ms: int) -> Liveness:
        try:
            response = await self._fetcher.fetch(url, method="GET", timeout_ms=timeout_ms)
        except NetworkError as e:
            logger.debug("GET %s failed (%s): %s", url, e.kind.value, e)
            return Liveness.DEAD
        return self._classify(response)

    async def _probe_opaque(self, url: str, timeout_ms: int) -> Liveness:
        try:
            await self._fetcher.fetch(url, method="GET", timeout_ms=timeout_ms)
        except NetworkError as e:
            logger.debug("GET %s failed after opaque HEAD: %s", url, e)
            return Liveness.DEAD
        return Liveness.UNKNOWN

    @staticmethod
    def _classify(response: FetchResponse) -> Liveness:
        if response.opaque:
            return Liveness.UNKNOWN
        return liveness_for_status(response.status)
