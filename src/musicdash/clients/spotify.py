"""Spotify Web API client.

Translates upstream failures into the musicdash error taxonomy: HTTP 429
becomes :class:`RateLimitError` carrying the ``Retry-After`` hint, everything
else becomes :class:`FetchError`.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..constants import DEFAULT_REQUEST_TIMEOUT_SECONDS, SPOTIFY_API_BASE
from ..errors import FetchError, RateLimitError

logger = logging.getLogger(__name__)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header given in seconds.

    Missing, non-numeric and non-positive values yield None so the caller's
    default backoff applies.
    """
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds > 0 else None


class SpotifyClient:
    """Async client for the Spotify Web API.

    One connection pool is shared by every user; the bearer token is passed
    per call.
    """

    def __init__(
        self,
        base_url: str = SPOTIFY_API_BASE,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ):
        """Initialize the client.

        Args:
            base_url: API root, without trailing slash.
            timeout: HTTP request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        token: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (None when empty).

        Raises:
            RateLimitError: The API answered 429.
            FetchError: Any other HTTP error, transport failure or bad JSON.
        """
        headers = {"Authorization": f"Bearer {token}"}
        try:
            resp = await self._client.request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.HTTPError as exc:
            raise FetchError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code == 429:
            retry_after = parse_retry_after(resp.headers.get("retry-after"))
            logger.debug("%s %s rate limited (retry-after=%s)", method, path, retry_after)
            raise RateLimitError(f"{method} {path} was rate limited", retry_after=retry_after)

        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FetchError(
                f"{method} {path} returned {resp.status_code}: {_error_message(resp)}",
                status_code=resp.status_code,
            ) from exc

        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise FetchError(
                f"{method} {path} returned malformed JSON", status_code=resp.status_code
            ) from exc

    # -- Profile and library -------------------------------------------------

    async def get_me(self, token: str) -> dict:
        return await self.request("GET", "/me", token)

    async def get_playlists(self, token: str, limit: int, offset: int = 0) -> dict:
        return await self.request(
            "GET", "/me/playlists", token, params={"limit": limit, "offset": offset}
        )

    async def get_playlist(self, token: str, playlist_id: str, fields: str | None = None) -> dict:
        params = {"fields": fields} if fields else None
        return await self.request("GET", f"/playlists/{playlist_id}", token, params=params)

    async def get_playlist_tracks(
        self, token: str, playlist_id: str, offset: int, limit: int
    ) -> dict:
        return await self.request(
            "GET",
            f"/playlists/{playlist_id}/tracks",
            token,
            params={"offset": offset, "limit": limit},
        )

    async def get_top_items(self, token: str, kind: str, time_range: str, limit: int) -> dict:
        """Fetch the user's top ``tracks`` or ``artists``."""
        return await self.request(
            "GET",
            f"/me/top/{kind}",
            token,
            params={"time_range": time_range, "limit": limit, "offset": 0},
        )

    async def get_track(self, token: str, track_id: str) -> dict:
        return await self.request("GET", f"/tracks/{track_id}", token)

    # -- Player --------------------------------------------------------------

    async def get_currently_playing(self, token: str) -> dict | None:
        return await self.request("GET", "/me/player/currently-playing", token)

    async def get_playback_state(self, token: str) -> dict | None:
        """Full player state, or None when no device is active."""
        return await self.request("GET", "/me/player", token)

    async def get_devices(self, token: str) -> dict:
        return await self.request("GET", "/me/player/devices", token)

    async def transfer_playback(self, token: str, device_id: str, play: bool = False) -> None:
        await self.request(
            "PUT", "/me/player", token, json={"device_ids": [device_id], "play": play}
        )

    async def seek(self, token: str, position_ms: int) -> None:
        await self.request("PUT", "/me/player/seek", token, params={"position_ms": position_ms})

    async def set_volume(self, token: str, volume_percent: int) -> None:
        await self.request(
            "PUT", "/me/player/volume", token, params={"volume_percent": volume_percent}
        )

    async def set_repeat(self, token: str, state: str) -> None:
        await self.request("PUT", "/me/player/repeat", token, params={"state": state})

    async def set_shuffle(self, token: str, state: bool) -> None:
        await self.request(
            "PUT", "/me/player/shuffle", token, params={"state": "true" if state else "false"}
        )

    async def play(
        self, token: str, uris: list[str] | None = None, device_id: str | None = None
    ) -> None:
        params = {"device_id": device_id} if device_id else None
        body = {"uris": uris} if uris else None
        await self.request("PUT", "/me/player/play", token, params=params, json=body)

    async def pause(self, token: str) -> None:
        await self.request("PUT", "/me/player/pause", token)

    async def next_track(self, token: str) -> None:
        await self.request("POST", "/me/player/next", token)

    async def previous_track(self, token: str) -> None:
        await self.request("POST", "/me/player/previous", token)


def _error_message(resp: httpx.Response) -> str:
    """Best-effort extraction of the API's error message."""
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message", resp.reason_phrase))
        if isinstance(error, str):
            return error
    return resp.reason_phrase
