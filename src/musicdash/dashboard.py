"""Dashboard operations used by the HTTP routes.

Every read goes through the shared cache; on a miss the upstream call is
scheduled on the request queue and the result stored with the lifetime from
:class:`~musicdash.core.keys.CacheDuration`. Playback commands bypass the
cache and are gated by the per-user rate tracker instead.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from .clients.spotify import SpotifyClient
from .config import MusicDashConfig
from .constants import (
    DEFAULT_TRACKS_PAGE_LIMIT,
    MAX_TRACKS_PAGE_LIMIT,
    MAX_VOLUME_PERCENT,
    PLAYBACK_ACTIONS,
    PLAYLIST_PAGE_SIZE,
    REPEAT_STATES,
    TIME_RANGES,
    TOP_ITEMS_LIMIT,
)
from .core import keys
from .core.cache import TTLCache
from .core.claims import ClaimsDecoder, UnverifiedClaimsDecoder
from .core.invalidation import CredentialTracker
from .core.keys import CacheDuration
from .core.queue import RequestQueue
from .core.ratelimit import RateLimitTracker
from .errors import AuthenticationError, FetchError, RateLimitError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AuthenticatedUser:
    """The upstream account behind a request."""

    user_id: str
    access_token: str


class Dashboard:
    """Cached, throttled access to a user's listening data.

    Built once by the application bootstrap and shared by every request.
    """

    def __init__(
        self,
        client: SpotifyClient,
        cache: TTLCache,
        queue: RequestQueue,
        tracker: RateLimitTracker,
        config: MusicDashConfig | None = None,
        credentials: CredentialTracker | None = None,
        claims_decoder: ClaimsDecoder | None = None,
    ):
        self.client = client
        self.cache = cache
        self.queue = queue
        self.tracker = tracker
        self.config = config or MusicDashConfig()
        self.credentials = credentials or CredentialTracker(cache)
        self.claims_decoder = claims_decoder or UnverifiedClaimsDecoder()
        self._sweeper: asyncio.Task | None = None

    @classmethod
    def from_config(
        cls, config: MusicDashConfig, client: SpotifyClient | None = None
    ) -> "Dashboard":
        """Wire up the cache, queue and tracker described by ``config``."""
        return cls(
            client=client
            or SpotifyClient(base_url=config.api_base_url, timeout=config.request_timeout),
            cache=TTLCache(max_entries=config.cache_max_entries),
            queue=RequestQueue(
                concurrency=config.queue_concurrency,
                max_retries=config.queue_max_retries,
                default_retry_after=config.queue_default_retry_after,
                max_retry_after=config.queue_max_retry_after,
                pacing_delay=config.queue_pacing_delay,
            ),
            tracker=RateLimitTracker(),
            config=config,
        )

    # -- Lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        self.queue.start()
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(
                self.cache.run_sweeper(self.config.cache_sweep_interval),
                name="cache-sweeper",
            )

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None
        await self.queue.close()
        await self.client.close()

    # -- Authentication ------------------------------------------------------

    async def resolve_user(self, token: str) -> AuthenticatedUser:
        """Map a bearer token to its upstream user.

        The answer is cached per token. A token the upstream rejects drops all
        data cached for the user it claims to belong to.

        Raises:
            AuthenticationError: The token is missing or rejected upstream.
        """
        if not token:
            raise AuthenticationError("No token provided")

        token_key = keys.access_token(token)
        user_id = self.cache.get(token_key)
        if user_id is not None:
            return AuthenticatedUser(user_id, token)

        try:
            profile = await self.queue.enqueue(lambda: self.client.get_me(token))
        except FetchError as exc:
            if exc.status_code == 401:
                claims = self.claims_decoder.decode(token)
                if claims is not None and claims.subject:
                    self.credentials.revoke(claims.subject, token)
                raise AuthenticationError("Invalid or expired token") from exc
            raise

        if not isinstance(profile, dict) or not profile.get("id"):
            raise FetchError("Profile response has no user id")

        user_id = str(profile["id"])
        # Rotation check first: it may drop the profile we are about to store.
        self.credentials.observe(user_id, token)
        self._store(token_key, user_id, CacheDuration.ACCESS_TOKEN)
        self._store(keys.user_profile(user_id), profile, CacheDuration.USER_PROFILE)
        return AuthenticatedUser(user_id, token)

    def credentials_refreshed(self, user_id: str, token: str) -> int:
        """Drop everything cached for ``user_id`` after a token refresh."""
        return self.credentials.credentials_refreshed(user_id, token)

    # -- Cached reads --------------------------------------------------------

    async def profile(self, user: AuthenticatedUser) -> dict:
        return await self._cached(
            user,
            keys.user_profile(user.user_id),
            CacheDuration.USER_PROFILE,
            lambda: self.client.get_me(user.access_token),
        )

    async def playlists_minimal(self, user: AuthenticatedUser) -> list[dict]:
        """Every playlist of the user, trimmed to the fields the sidebar needs."""

        async def load() -> list[dict]:
            playlists: list[dict] = []
            offset = 0
            while True:
                page = await self._upstream(
                    user,
                    lambda offset=offset: self.client.get_playlists(
                        user.access_token, PLAYLIST_PAGE_SIZE, offset
                    ),
                )
                page = page or {}
                playlists.extend(_minimal_playlist(item) for item in page.get("items") or [])
                if not page.get("next"):
                    return playlists
                offset += PLAYLIST_PAGE_SIZE

        return await self.cache.get_or_set(
            keys.user_playlists_minimal(user.user_id), CacheDuration.PLAYLISTS_MINIMAL, load
        )

    async def playlists_details(self, user: AuthenticatedUser) -> list[dict]:
        """Full playlist objects, fetched one per playlist through the queue."""

        async def load() -> list[dict]:
            minimal = await self.playlists_minimal(user)
            return list(
                await asyncio.gather(
                    *(
                        self._upstream(
                            user,
                            lambda playlist_id=playlist["id"]: self.client.get_playlist(
                                user.access_token, playlist_id
                            ),
                        )
                        for playlist in minimal
                    )
                )
            )

        return await self.cache.get_or_set(
            keys.user_playlists_details(user.user_id), CacheDuration.PLAYLISTS_DETAILS, load
        )

    async def playlist_tracks(
        self,
        user: AuthenticatedUser,
        playlist_id: str,
        offset: int = 0,
        limit: int = DEFAULT_TRACKS_PAGE_LIMIT,
        snapshot_id: str | None = None,
    ) -> dict:
        """One page of a playlist, keyed by the playlist's current snapshot."""
        if offset < 0:
            raise ValueError(f"offset must be non-negative, got {offset}")
        if not 1 <= limit <= MAX_TRACKS_PAGE_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_TRACKS_PAGE_LIMIT}, got {limit}")

        if not snapshot_id:
            snapshot_id = await self._snapshot_id(user, playlist_id)

        return await self._cached(
            user,
            keys.playlist_tracks(playlist_id, offset, limit, snapshot_id),
            CacheDuration.PLAYLIST_TRACKS,
            lambda: self.client.get_playlist_tracks(
                user.access_token, playlist_id, offset, limit
            ),
        )

    async def top_tracks(self, user: AuthenticatedUser, time_range: str) -> list[dict]:
        _check_time_range(time_range)
        return await self._cached(
            user,
            keys.user_top_tracks(user.user_id, time_range),
            CacheDuration.TOP_ITEMS,
            lambda: self._top_items(user, "tracks", time_range),
        )

    async def top_artists(self, user: AuthenticatedUser, time_range: str) -> list[dict]:
        _check_time_range(time_range)
        return await self._cached(
            user,
            keys.user_top_artists(user.user_id, time_range),
            CacheDuration.TOP_ITEMS,
            lambda: self._top_items(user, "artists", time_range),
        )

    async def track_metadata(self, user: AuthenticatedUser, track_id: str) -> dict:
        return await self._cached(
            user,
            keys.track_metadata(track_id),
            CacheDuration.TRACK_METADATA,
            lambda: self.client.get_track(user.access_token, track_id),
        )

    # -- Uncached ------------------------------------------------------------

    async def current_track(self, user: AuthenticatedUser) -> dict | None:
        return await self._upstream(
            user, lambda: self.client.get_currently_playing(user.access_token)
        )

    async def playback_state(self, user: AuthenticatedUser) -> dict | None:
        return await self._upstream(
            user, lambda: self.client.get_playback_state(user.access_token)
        )

    async def devices(self, user: AuthenticatedUser) -> list[dict]:
        data = await self._upstream(user, lambda: self.client.get_devices(user.access_token))
        return (data or {}).get("devices") or []

    async def control_playback(
        self,
        user: AuthenticatedUser,
        action: str,
        uris: list[str] | None = None,
        device_id: str | None = None,
    ) -> None:
        """Send a playback command.

        Playing on a ``device_id`` that is not the active device first moves
        playback there and waits ``transfer_settle_delay`` seconds.

        Raises:
            ValueError: Unknown action or no playable track URIs.
            RateLimitError: The user is over their request budget; nothing was sent.
        """
        if action not in PLAYBACK_ACTIONS:
            raise ValueError(f"action must be one of {PLAYBACK_ACTIONS}, got '{action}'")

        if uris is not None:
            uris = _playable_uris(uris)
            if not uris:
                raise ValueError("No valid track URIs provided")

        self._spend_budget(user)

        token = user.access_token
        if action == "play":
            if device_id:
                await self._activate_device(user, device_id)
            await self._upstream(
                user, lambda: self.client.play(token, uris=uris, device_id=device_id)
            )
            return

        commands: dict[str, Callable[[], Awaitable[Any]]] = {
            "pause": lambda: self.client.pause(token),
            "next": lambda: self.client.next_track(token),
            "previous": lambda: self.client.previous_track(token),
        }
        await self._upstream(user, commands[action])

    async def transfer_playback(
        self, user: AuthenticatedUser, device_id: str, play: bool = False
    ) -> None:
        if not isinstance(device_id, str) or not device_id:
            raise ValueError("device_id is required")
        self._spend_budget(user)
        await self._upstream(
            user, lambda: self.client.transfer_playback(user.access_token, device_id, play)
        )
        if self.config.transfer_settle_delay > 0:
            await asyncio.sleep(self.config.transfer_settle_delay)

    async def seek(self, user: AuthenticatedUser, position_ms: int) -> None:
        if not _is_int(position_ms) or position_ms < 0:
            raise ValueError(f"position_ms must be a non-negative integer, got {position_ms!r}")
        self._spend_budget(user)
        await self._upstream(user, lambda: self.client.seek(user.access_token, position_ms))

    async def set_volume(self, user: AuthenticatedUser, volume_percent: int) -> None:
        if not _is_int(volume_percent) or not 0 <= volume_percent <= MAX_VOLUME_PERCENT:
            raise ValueError(
                f"volume_percent must be an integer between 0 and {MAX_VOLUME_PERCENT}, "
                f"got {volume_percent!r}"
            )
        self._spend_budget(user)
        await self._upstream(
            user, lambda: self.client.set_volume(user.access_token, volume_percent)
        )

    async def set_repeat(self, user: AuthenticatedUser, state: str) -> None:
        if state not in REPEAT_STATES:
            raise ValueError(f"state must be one of {REPEAT_STATES}, got {state!r}")
        self._spend_budget(user)
        await self._upstream(user, lambda: self.client.set_repeat(user.access_token, state))

    async def set_shuffle(self, user: AuthenticatedUser, state: bool) -> None:
        if not isinstance(state, bool):
            raise ValueError(f"state must be true or false, got {state!r}")
        self._spend_budget(user)
        await self._upstream(user, lambda: self.client.set_shuffle(user.access_token, state))

    # -- Observability -------------------------------------------------------

    def stats(self) -> dict:
        return {
            "cache": self.cache.stats().as_dict(),
            "queue": self.queue.stats().as_dict(),
        }

    # -- Helpers -------------------------------------------------------------

    async def _cached(
        self,
        user: AuthenticatedUser,
        key: str,
        ttl: float,
        fetch: Callable[[], Awaitable[T]],
    ) -> T:
        return await self.cache.get_or_set(key, ttl, lambda: self._upstream(user, fetch))

    async def _upstream(self, user: AuthenticatedUser, fetch: Callable[[], Awaitable[T]]) -> T:
        try:
            return await self.queue.enqueue(fetch)
        except (FetchError, RateLimitError) as exc:
            self.tracker.record_upstream_error(user.user_id, exc)
            raise

    async def _top_items(self, user: AuthenticatedUser, kind: str, time_range: str) -> list:
        data = await self.client.get_top_items(
            user.access_token, kind, time_range, TOP_ITEMS_LIMIT
        )
        return (data or {}).get("items") or []

    async def _snapshot_id(self, user: AuthenticatedUser, playlist_id: str) -> str | None:
        known = self.cache.peek(keys.user_playlists_minimal(user.user_id)) or []
        for playlist in known:
            if playlist.get("id") == playlist_id and playlist.get("snapshot_id"):
                return playlist["snapshot_id"]

        data = await self._upstream(
            user,
            lambda: self.client.get_playlist(user.access_token, playlist_id, fields="snapshot_id"),
        )
        return (data or {}).get("snapshot_id")

    def _spend_budget(self, user: AuthenticatedUser) -> None:
        window = self.config.user_rate_window
        if not self.tracker.check_and_increment(user.user_id, self.config.user_rate_limit, window):
            raise RateLimitError(
                "Too many requests", retry_after=self.tracker.retry_after(user.user_id, window)
            )

    async def _activate_device(self, user: AuthenticatedUser, device_id: str) -> None:
        state = await self.playback_state(user)
        active = ((state or {}).get("device") or {}).get("id")
        if active == device_id:
            return
        logger.info("Moving playback for user %s to device %s", user.user_id, device_id)
        await self._upstream(
            user, lambda: self.client.transfer_playback(user.access_token, device_id)
        )
        if self.config.transfer_settle_delay > 0:
            await asyncio.sleep(self.config.transfer_settle_delay)

    def _store(self, key: str, value: Any, ttl: float) -> None:
        try:
            self.cache.set(key, value, ttl)
        except StorageError:
            logger.warning("Cache write failed for %s", key, exc_info=True)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_time_range(time_range: str) -> None:
    if time_range not in TIME_RANGES:
        raise ValueError(f"time_range must be one of {TIME_RANGES}, got '{time_range}'")


def _playable_uris(uris: list[str]) -> list[str]:
    """Keep Spotify track URIs; local files can't be played remotely."""
    return [
        uri
        for uri in uris
        if isinstance(uri, str) and uri.startswith("spotify:track:") and "spotify:local" not in uri
    ]


def _minimal_playlist(item: dict) -> dict:
    images = item.get("images") or []
    return {
        "id": item.get("id"),
        "name": item.get("name"),
        "snapshot_id": item.get("snapshot_id"),
        "owner": (item.get("owner") or {}).get("id"),
        "tracks_total": (item.get("tracks") or {}).get("total", 0),
        "image": images[0].get("url") if images else None,
    }
