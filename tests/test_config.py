"""Unit tests for musicdash.config module."""

import os

import pytest

from musicdash.config import MusicDashConfig
from musicdash.constants import (
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_HOST,
    DEFAULT_PACING_DELAY_SECONDS,
    DEFAULT_PORT,
    DEFAULT_QUEUE_CONCURRENCY,
    DEFAULT_QUEUE_MAX_RETRIES,
    DEFAULT_RETRY_AFTER_SECONDS,
    DEFAULT_USER_RATE_LIMIT,
    DEFAULT_USER_RATE_WINDOW_SECONDS,
    SPOTIFY_API_BASE,
)


def _clear_env(monkeypatch):
    for key in list(os.environ.keys()):
        if key.startswith("MUSICDASH_"):
            monkeypatch.delenv(key, raising=False)


class TestMusicDashConfig:
    """Tests for MusicDashConfig dataclass."""

    @pytest.mark.unit
    def test_default_values(self):
        """Config defaults should match documented values."""
        config = MusicDashConfig()
        assert config.host == DEFAULT_HOST
        assert config.port == DEFAULT_PORT
        assert config.api_base_url == SPOTIFY_API_BASE
        assert config.queue_concurrency == DEFAULT_QUEUE_CONCURRENCY == 3
        assert config.queue_max_retries == DEFAULT_QUEUE_MAX_RETRIES == 3
        assert config.queue_default_retry_after == DEFAULT_RETRY_AFTER_SECONDS == 3.0
        assert config.queue_pacing_delay == DEFAULT_PACING_DELAY_SECONDS == 0.1
        assert config.cache_max_entries == DEFAULT_CACHE_MAX_ENTRIES
        assert config.user_rate_limit == DEFAULT_USER_RATE_LIMIT
        assert config.user_rate_window == DEFAULT_USER_RATE_WINDOW_SECONDS

    @pytest.mark.unit
    def test_log_level_normalized(self):
        assert MusicDashConfig(log_level="DEBUG").log_level == "debug"

    @pytest.mark.unit
    def test_from_env_defaults(self, monkeypatch):
        """from_env with no env vars should return defaults."""
        _clear_env(monkeypatch)
        assert MusicDashConfig.from_env() == MusicDashConfig()

    @pytest.mark.unit
    def test_from_env_custom(self, monkeypatch):
        """from_env should read environment variables."""
        _clear_env(monkeypatch)
        monkeypatch.setenv("MUSICDASH_HOST", "0.0.0.0")
        monkeypatch.setenv("MUSICDASH_PORT", "8080")
        monkeypatch.setenv("MUSICDASH_LOG_LEVEL", "warning")
        monkeypatch.setenv("MUSICDASH_API_BASE_URL", "http://localhost:9999/v1")
        monkeypatch.setenv("MUSICDASH_REQUEST_TIMEOUT", "2.5")
        monkeypatch.setenv("MUSICDASH_TRANSFER_SETTLE_DELAY", "0.25")
        monkeypatch.setenv("MUSICDASH_QUEUE_CONCURRENCY", "5")
        monkeypatch.setenv("MUSICDASH_QUEUE_MAX_RETRIES", "1")
        monkeypatch.setenv("MUSICDASH_QUEUE_DEFAULT_RETRY_AFTER", "1.5")
        monkeypatch.setenv("MUSICDASH_QUEUE_MAX_RETRY_AFTER", "30")
        monkeypatch.setenv("MUSICDASH_QUEUE_PACING_DELAY", "0")
        monkeypatch.setenv("MUSICDASH_CACHE_MAX_ENTRIES", "100")
        monkeypatch.setenv("MUSICDASH_CACHE_SWEEP_INTERVAL", "5")
        monkeypatch.setenv("MUSICDASH_USER_RATE_LIMIT", "10")
        monkeypatch.setenv("MUSICDASH_USER_RATE_WINDOW", "30")

        config = MusicDashConfig.from_env()
        assert config.host == "0.0.0.0"
        assert config.port == 8080
        assert config.log_level == "warning"
        assert config.api_base_url == "http://localhost:9999/v1"
        assert config.request_timeout == 2.5
        assert config.transfer_settle_delay == 0.25
        assert config.queue_concurrency == 5
        assert config.queue_max_retries == 1
        assert config.queue_default_retry_after == 1.5
        assert config.queue_max_retry_after == 30.0
        assert config.queue_pacing_delay == 0.0
        assert config.cache_max_entries == 100
        assert config.cache_sweep_interval == 5.0
        assert config.user_rate_limit == 10
        assert config.user_rate_window == 30

    @pytest.mark.unit
    def test_from_env_partial(self, monkeypatch):
        """from_env should handle partial env var overrides."""
        _clear_env(monkeypatch)
        monkeypatch.setenv("MUSICDASH_QUEUE_CONCURRENCY", "1")

        config = MusicDashConfig.from_env()
        assert config.queue_concurrency == 1
        assert config.queue_max_retries == DEFAULT_QUEUE_MAX_RETRIES

    @pytest.mark.unit
    def test_from_env_invalid_number(self, monkeypatch):
        _clear_env(monkeypatch)
        monkeypatch.setenv("MUSICDASH_PORT", "not-a-port")
        with pytest.raises(ValueError):
            MusicDashConfig.from_env()


class TestConfigValidation:
    """Tests for __post_init__ validation."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("kwargs", "match"),
        [
            ({"port": 0}, "port"),
            ({"port": 70000}, "port"),
            ({"log_level": "verbose"}, "log_level"),
            ({"request_timeout": 0}, "request_timeout"),
            ({"transfer_settle_delay": -1}, "transfer_settle_delay"),
            ({"queue_concurrency": 0}, "queue_concurrency"),
            ({"queue_max_retries": -1}, "queue_max_retries"),
            ({"queue_default_retry_after": -1}, "queue_default_retry_after"),
            ({"queue_max_retry_after": 1.0}, "queue_max_retry_after"),
            ({"queue_pacing_delay": -0.1}, "queue_pacing_delay"),
            ({"cache_max_entries": 0}, "cache_max_entries"),
            ({"cache_sweep_interval": 0}, "cache_sweep_interval"),
            ({"user_rate_limit": 0}, "user_rate_limit"),
            ({"user_rate_window": 0}, "user_rate_window"),
        ],
    )
    def test_rejects_invalid_values(self, kwargs, match):
        with pytest.raises(ValueError, match=match):
            MusicDashConfig(**kwargs)

    @pytest.mark.unit
    def test_zero_retries_allowed(self):
        assert MusicDashConfig(queue_max_retries=0).queue_max_retries == 0
