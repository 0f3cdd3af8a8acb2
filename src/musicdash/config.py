"""Configuration for the musicdash server, loaded from environment variables."""

import os
from dataclasses import dataclass

from .constants import (
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS,
    DEFAULT_HOST,
    DEFAULT_LOG_LEVEL,
    DEFAULT_PACING_DELAY_SECONDS,
    DEFAULT_PORT,
    DEFAULT_QUEUE_CONCURRENCY,
    DEFAULT_QUEUE_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRY_AFTER_SECONDS,
    DEFAULT_TRANSFER_SETTLE_SECONDS,
    DEFAULT_USER_RATE_LIMIT,
    DEFAULT_USER_RATE_WINDOW_SECONDS,
    MAX_RETRY_AFTER_SECONDS,
    SPOTIFY_API_BASE,
)

VALID_LOG_LEVELS = ("critical", "error", "warning", "info", "debug")


@dataclass
class MusicDashConfig:
    """Server configuration loaded from environment variables."""

    # Transport settings
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = DEFAULT_LOG_LEVEL

    # Upstream API
    api_base_url: str = SPOTIFY_API_BASE
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    transfer_settle_delay: float = DEFAULT_TRANSFER_SETTLE_SECONDS

    # Request queue settings
    queue_concurrency: int = DEFAULT_QUEUE_CONCURRENCY
    queue_max_retries: int = DEFAULT_QUEUE_MAX_RETRIES
    queue_default_retry_after: float = DEFAULT_RETRY_AFTER_SECONDS
    queue_max_retry_after: float = MAX_RETRY_AFTER_SECONDS
    queue_pacing_delay: float = DEFAULT_PACING_DELAY_SECONDS

    # Cache settings
    cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES
    cache_sweep_interval: float = DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS

    # Per-user throttling
    user_rate_limit: int = DEFAULT_USER_RATE_LIMIT
    user_rate_window: int = DEFAULT_USER_RATE_WINDOW_SECONDS

    def __post_init__(self) -> None:
        """Validate config values."""
        if not 1 <= self.port <= 65535:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")

        self.log_level = self.log_level.lower()
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}, got '{self.log_level}'")

        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be positive, got {self.request_timeout}")

        if self.transfer_settle_delay < 0:
            raise ValueError(
                f"transfer_settle_delay must be non-negative, got {self.transfer_settle_delay}"
            )

        # Validate queue settings
        if self.queue_concurrency < 1:
            raise ValueError(
                f"queue_concurrency must be at least 1, got {self.queue_concurrency}"
            )

        if self.queue_max_retries < 0:
            raise ValueError(
                f"queue_max_retries must be non-negative, got {self.queue_max_retries}"
            )

        if self.queue_default_retry_after < 0:
            raise ValueError(
                "queue_default_retry_after must be non-negative, "
                f"got {self.queue_default_retry_after}"
            )

        if self.queue_max_retry_after < self.queue_default_retry_after:
            raise ValueError(
                "queue_max_retry_after must be >= queue_default_retry_after, "
                f"got {self.queue_max_retry_after}"
            )

        if self.queue_pacing_delay < 0:
            raise ValueError(
                f"queue_pacing_delay must be non-negative, got {self.queue_pacing_delay}"
            )

        # Validate cache settings
        if self.cache_max_entries < 1:
            raise ValueError(
                f"cache_max_entries must be at least 1, got {self.cache_max_entries}"
            )

        if self.cache_sweep_interval <= 0:
            raise ValueError(
                f"cache_sweep_interval must be positive, got {self.cache_sweep_interval}"
            )

        # Validate throttling settings
        if self.user_rate_limit < 1:
            raise ValueError(f"user_rate_limit must be at least 1, got {self.user_rate_limit}")

        if self.user_rate_window < 1:
            raise ValueError(
                f"user_rate_window must be at least 1 second, got {self.user_rate_window}"
            )

    @classmethod
    def from_env(cls) -> "MusicDashConfig":
        """Create config from environment variables."""
        env = os.environ

        return cls(
            host=env.get("MUSICDASH_HOST", DEFAULT_HOST),
            port=int(env.get("MUSICDASH_PORT", str(DEFAULT_PORT))),
            log_level=env.get("MUSICDASH_LOG_LEVEL", DEFAULT_LOG_LEVEL),
            api_base_url=env.get("MUSICDASH_API_BASE_URL", SPOTIFY_API_BASE),
            request_timeout=float(
                env.get("MUSICDASH_REQUEST_TIMEOUT", str(DEFAULT_REQUEST_TIMEOUT_SECONDS))
            ),
            transfer_settle_delay=float(
                env.get(
                    "MUSICDASH_TRANSFER_SETTLE_DELAY", str(DEFAULT_TRANSFER_SETTLE_SECONDS)
                )
            ),
            queue_concurrency=int(
                env.get("MUSICDASH_QUEUE_CONCURRENCY", str(DEFAULT_QUEUE_CONCURRENCY))
            ),
            queue_max_retries=int(
                env.get("MUSICDASH_QUEUE_MAX_RETRIES", str(DEFAULT_QUEUE_MAX_RETRIES))
            ),
            queue_default_retry_after=float(
                env.get("MUSICDASH_QUEUE_DEFAULT_RETRY_AFTER", str(DEFAULT_RETRY_AFTER_SECONDS))
            ),
            queue_max_retry_after=float(
                env.get("MUSICDASH_QUEUE_MAX_RETRY_AFTER", str(MAX_RETRY_AFTER_SECONDS))
            ),
            queue_pacing_delay=float(
                env.get("MUSICDASH_QUEUE_PACING_DELAY", str(DEFAULT_PACING_DELAY_SECONDS))
            ),
            cache_max_entries=int(
                env.get("MUSICDASH_CACHE_MAX_ENTRIES", str(DEFAULT_CACHE_MAX_ENTRIES))
            ),
            cache_sweep_interval=float(
                env.get(
                    "MUSICDASH_CACHE_SWEEP_INTERVAL", str(DEFAULT_CACHE_SWEEP_INTERVAL_SECONDS)
                )
            ),
            user_rate_limit=int(env.get("MUSICDASH_USER_RATE_LIMIT", str(DEFAULT_USER_RATE_LIMIT))),
            user_rate_window=int(
                env.get("MUSICDASH_USER_RATE_WINDOW", str(DEFAULT_USER_RATE_WINDOW_SECONDS))
            ),
        )
