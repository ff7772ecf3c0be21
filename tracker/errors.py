"""
Exception taxonomy for the tracker.

UpstreamError and RateLimited are recovered inside a cycle; StorageError on
a write and RetryExhausted abort the cycle and reach the supervisor.
"""


class TrackerError(Exception):
    """Base class for tracker failures."""


class UpstreamError(TrackerError):
    """A daylight or traffic feed was unreachable or returned non-2xx."""


class RateLimited(TrackerError):
    """The traffic feed asked us to back off for a given number of seconds."""

    def __init__(self, retry_after_seconds: int, provider: str = ""):
        self.retry_after_seconds = retry_after_seconds
        self.provider = provider
        super().__init__(f"{provider or 'upstream'} rate limited, retry after {retry_after_seconds}s")


class StorageError(TrackerError):
    """Database connection or query failure."""


class RetryExhausted(TrackerError):
    """The traffic fetch failed on every allowed attempt."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"aircraft fetch failed after {attempts} attempts")


class PipelineFailed(TrackerError):
    """The supervisor used up its restart budget."""

    def __init__(self, restarts: int):
        self.restarts = restarts
        super().__init__(f"pipeline failed after {restarts} restarts")
