"""External API client modules."""

from .spotify import SpotifyClient, parse_retry_after

__all__ = [
    "SpotifyClient",
    "parse_retry_after",
]
