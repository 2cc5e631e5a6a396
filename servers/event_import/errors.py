"""Exception types raised by the import pipeline."""

from typing import Optional


class EventImportError(Exception):
    """Base class for all import pipeline errors."""


class InvalidImportRequest(EventImportError, ValueError):
    """Raised when an import request is rejected before any work starts."""


class UpstreamError(EventImportError):
    """Raised when the search API fails (transport error or non-2xx status).

    Upstream errors abort the current partition and are retried by the
    execution queue.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(UpstreamError):
    """Raised when the search API rejects a call with HTTP 429."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class StoreError(EventImportError):
    """Raised when the event store rejects an existence check or bulk write."""


class LedgerError(EventImportError):
    """Raised when the run ledger cannot record a run or partition."""


class IllegalTransitionError(EventImportError):
    """Raised on a partition status change the state machine does not allow."""

    def __init__(self, partition_id: str, current: str, target: str):
        super().__init__(
            f"Partition '{partition_id}' cannot move from {current} to {target}"
        )
        self.partition_id = partition_id
        self.current = current
        self.target = target
