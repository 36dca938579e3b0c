"""Custom exceptions for the bookmark enrichment pipeline.

All per-bookmark failures inherit from EnrichmentError. The worker converts
them into EnrichmentOutcome values, so they never escape a batch. Errors that
indicate a programming or setup mistake (ConfigurationError,
SchedulerBusyError) are raised to the caller before any work begins.
"""

from enum import Enum


class EnrichmentError(Exception):
    """Base class for enrichment errors.

    Recoverable failures while enriching a single bookmark inherit from this
    class. ``retryable`` tells the caller whether a future batch run may
    succeed where this one failed.
    """

    retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class NetworkErrorKind(str, Enum):
    """What went wrong at the network layer."""

    TIMEOUT = "timeout"
    CONNECTION = "connection"
    PROTOCOL = "protocol"


class NetworkError(EnrichmentError):
    """Timeout, DNS failure or connection reset.

    Retryable on a later batch run. Never retried inside the same batch.
    """

    retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        kind: NetworkErrorKind = NetworkErrorKind.CONNECTION,
        retryable: bool | None = None,
    ):
        super().__init__(message, retryable=retryable)
        self.kind = kind


class ParseError(EnrichmentError):
    """Failed to parse fetched content.

    Usually not retryable unless the remote page changes.
    """

    retryable: bool = False


class SchedulerBusyError(Exception):
    """A batch is already running on this scheduler.

    Overlapping batches against one queue are rejected rather than
    interleaved.
    """


class ConfigurationError(Exception):
    """Invalid configuration or settings.

    This is NOT an EnrichmentError - configuration issues should be fixed
    before the pipeline runs, not retried automatically.
    """

    pass
