"""Shared constants for musicdash runtime defaults and thresholds.

This module is the single source of truth for default values that are consumed
across configuration loading, the request queue, and cache management.
"""

from __future__ import annotations

# Networking defaults
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5001
DEFAULT_LOG_LEVEL = "info"
SPOTIFY_API_BASE = "https://api.spotify.com/v1"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0

# Request queue
DEFAULT_QUEUE_CONCURRENCY = 3
DEFAULT_QUEUE_MAX_RETRIES = 3
DEFAULT_RETRY_AFTER_SECONDS = 3.0
MAX_RETRY_AFTER_SECONDS = 60.0
DEFAULT_PACING_DELAY_SECONDS = 0.1

# Cache store
DEFAULT_CACHE_MAX_ENTRIES = 5_000
DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS = 60.0

# Per-user pre-emptive throttling
DEFAULT_USER_RATE_LIMIT = 100
DEFAULT_USER_RATE_WINDOW_SECONDS = 60

# Token fingerprints remembered per user for rotation detection
RECENT_TOKENS_PER_USER = 4

# Upstream listing limits
PLAYLIST_PAGE_SIZE = 50
TOP_ITEMS_LIMIT = 50
DEFAULT_TRACKS_PAGE_LIMIT = 100
MAX_TRACKS_PAGE_LIMIT = 100

TIME_RANGES = ("short_term", "medium_term", "long_term")
DEFAULT_TIME_RANGE = "short_term"
PLAYBACK_ACTIONS = ("play", "pause", "next", "previous")
REPEAT_STATES = ("track", "context", "off")
MAX_VOLUME_PERCENT = 100

# Pause after moving playback to another device before sending commands to it
DEFAULT_TRANSFER_SETTLE_SECONDS = 1.0
