"""Shared test fixtures for musicdash tests."""

import base64
import json

import pytest
import pytest_asyncio

from musicdash.clients.spotify import SpotifyClient
from musicdash.config import MusicDashConfig
from musicdash.core.cache import TTLCache
from musicdash.core.queue import RequestQueue
from musicdash.core.ratelimit import RateLimitTracker
from musicdash.dashboard import AuthenticatedUser, Dashboard

API_BASE = "https://api.test/v1"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_jwt(payload: dict) -> str:
    """Unsigned JWT-shaped token carrying ``payload``."""

    def segment(data: dict) -> str:
        raw = json.dumps(data).encode()
        return base64.urlsafe_b64encode(raw).decode().rstrip("=")

    return f"{segment({'alg': 'none', 'typ': 'JWT'})}.{segment(payload)}.sig"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_config():
    """Config with no pacing and short backoff so queue tests stay quick."""
    return MusicDashConfig(
        api_base_url=API_BASE,
        queue_pacing_delay=0.0,
        transfer_settle_delay=0.0,
        queue_default_retry_after=0.01,
        queue_max_retry_after=0.1,
        user_rate_limit=3,
        user_rate_window=60,
    )


@pytest.fixture
def user():
    return AuthenticatedUser(user_id="alice", access_token="token-alice")


@pytest_asyncio.fixture
async def dashboard(fast_config, clock):
    """Dashboard over a fake clock; upstream HTTP is mocked with httpx_mock."""
    dash = Dashboard(
        client=SpotifyClient(base_url=API_BASE),
        cache=TTLCache(clock=clock),
        queue=RequestQueue(
            concurrency=fast_config.queue_concurrency,
            max_retries=fast_config.queue_max_retries,
            default_retry_after=fast_config.queue_default_retry_after,
            max_retry_after=fast_config.queue_max_retry_after,
            pacing_delay=fast_config.queue_pacing_delay,
        ),
        tracker=RateLimitTracker(clock=clock),
        config=fast_config,
    )
    yield dash
    await dash.close()


@pytest.fixture
def jwt_token():
    """Factory for unsigned JWT-shaped tokens."""
    return make_jwt
