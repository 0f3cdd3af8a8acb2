"""Caching and throttling layer between route handlers and the upstream API."""

from .cache import CacheEntry, CacheStats, TTLCache
from .claims import ClaimsDecoder, TokenClaims, UnverifiedClaimsDecoder
from .invalidation import CredentialTracker
from .keys import CacheDuration, build_key, invalidate_user
from .queue import QueuedTask, QueueStats, RequestQueue
from .ratelimit import RateLimitCounter, RateLimitTracker

__all__ = [
    "CacheDuration",
    "CacheEntry",
    "CacheStats",
    "ClaimsDecoder",
    "CredentialTracker",
    "QueueStats",
    "QueuedTask",
    "RateLimitCounter",
    "RateLimitTracker",
    "RequestQueue",
    "TTLCache",
    "TokenClaims",
    "UnverifiedClaimsDecoder",
    "build_key",
    "invalidate_user",
]
