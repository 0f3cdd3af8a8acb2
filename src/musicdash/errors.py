"""Error taxonomy shared by the cache, the request queue and the routes."""

from __future__ import annotations


class MusicDashError(Exception):
    """Base class for musicdash errors."""


class FetchError(MusicDashError):
    """An upstream call failed for a reason other than rate limiting.

    Args:
        message: Human readable description.
        status_code: Upstream HTTP status, or None for transport/decoding errors.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(MusicDashError):
    """The upstream API (or the local tracker) signalled a rate limit.

    Args:
        message: Human readable description.
        retry_after: Seconds the upstream asked us to wait, if it said.
        attempts: Attempts made before the error was surfaced.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.retry_after = retry_after
        self.attempts = attempts


class StorageError(MusicDashError):
    """The cache could not persist a value."""


class AuthenticationError(MusicDashError):
    """The request carried no usable bearer token."""
