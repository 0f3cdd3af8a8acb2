"""Starlette application exposing the dashboard API."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .clients.spotify import SpotifyClient
from .config import MusicDashConfig
from .constants import DEFAULT_TIME_RANGE, DEFAULT_TRACKS_PAGE_LIMIT
from .dashboard import Dashboard
from .errors import AuthenticationError, FetchError, RateLimitError
from .middleware.auth import BearerAuthMiddleware
from .responses import (
    authentication_error_response,
    bad_request_response,
    fetch_error_response,
    rate_limited_response,
)


def _int_param(request: Request, name: str, default: int) -> int:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from None


async def _json_body(request: Request) -> dict:
    body = await request.json() if await request.body() else {}
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


def create_app(
    config: MusicDashConfig | None = None,
    client: SpotifyClient | None = None,
    dashboard: Dashboard | None = None,
) -> Starlette:
    """Create and configure the musicdash ASGI application."""
    if config is None:
        config = MusicDashConfig.from_env()
    if dashboard is None:
        dashboard = Dashboard.from_config(config, client=client)

    # -- Routes --------------------------------------------------------------
    # Thin wrappers: parse the request, delegate to the dashboard.

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok"})

    async def me(request: Request) -> JSONResponse:
        return JSONResponse(await dashboard.profile(request.state.user))

    async def playlists(request: Request) -> JSONResponse:
        detail = request.query_params.get("detail", "minimal")
        user = request.state.user
        if detail == "minimal":
            return JSONResponse(await dashboard.playlists_minimal(user))
        if detail == "details":
            return JSONResponse(await dashboard.playlists_details(user))
        raise ValueError(f"detail must be 'minimal' or 'details', got '{detail}'")

    async def playlist_tracks(request: Request) -> JSONResponse:
        page = await dashboard.playlist_tracks(
            request.state.user,
            request.path_params["playlist_id"],
            offset=_int_param(request, "offset", 0),
            limit=_int_param(request, "limit", DEFAULT_TRACKS_PAGE_LIMIT),
            snapshot_id=request.query_params.get("snapshot_id") or None,
        )
        return JSONResponse(page)

    async def top_tracks(request: Request) -> JSONResponse:
        time_range = request.query_params.get("time_range", DEFAULT_TIME_RANGE)
        return JSONResponse(await dashboard.top_tracks(request.state.user, time_range))

    async def top_artists(request: Request) -> JSONResponse:
        time_range = request.query_params.get("time_range", DEFAULT_TIME_RANGE)
        return JSONResponse(await dashboard.top_artists(request.state.user, time_range))

    async def track(request: Request) -> JSONResponse:
        track_id = request.path_params["track_id"]
        return JSONResponse(await dashboard.track_metadata(request.state.user, track_id))

    async def current(request: Request) -> Response:
        playing = await dashboard.current_track(request.state.user)
        if playing is None:
            return Response(status_code=204)
        return JSONResponse(playing)

    async def player(request: Request) -> JSONResponse:
        body = await _json_body(request)
        uris = body.get("uris")
        if uris is not None and not isinstance(uris, list):
            raise ValueError("uris must be a list")
        await dashboard.control_playback(
            request.state.user,
            request.path_params["action"],
            uris=uris,
            device_id=body.get("device_id"),
        )
        return JSONResponse({"success": True})

    async def playback_state(request: Request) -> Response:
        state = await dashboard.playback_state(request.state.user)
        if state is None:
            return Response(status_code=204)
        return JSONResponse(state)

    async def devices(request: Request) -> JSONResponse:
        return JSONResponse({"devices": await dashboard.devices(request.state.user)})

    async def transfer(request: Request) -> JSONResponse:
        body = await _json_body(request)
        await dashboard.transfer_playback(
            request.state.user, body.get("device_id"), play=bool(body.get("play", False))
        )
        return JSONResponse({"success": True})

    async def seek(request: Request) -> JSONResponse:
        body = await _json_body(request)
        await dashboard.seek(request.state.user, body.get("position_ms"))
        return JSONResponse({"success": True})

    async def volume(request: Request) -> JSONResponse:
        body = await _json_body(request)
        await dashboard.set_volume(request.state.user, body.get("volume_percent"))
        return JSONResponse({"success": True})

    async def repeat(request: Request) -> JSONResponse:
        body = await _json_body(request)
        await dashboard.set_repeat(request.state.user, body.get("state"))
        return JSONResponse({"success": True})

    async def shuffle(request: Request) -> JSONResponse:
        body = await _json_body(request)
        await dashboard.set_shuffle(request.state.user, body.get("state"))
        return JSONResponse({"success": True})

    async def cache_stats(request: Request) -> JSONResponse:
        return JSONResponse(dashboard.stats())

    routes = [
        Route("/health", health),
        Route("/api/me", me),
        Route("/api/playlists", playlists),
        Route("/api/playlists/{playlist_id}/tracks", playlist_tracks),
        Route("/api/top/tracks", top_tracks),
        Route("/api/top/artists", top_artists),
        Route("/api/tracks/{track_id}", track),
        Route("/api/player/current", current),
        Route("/api/player/state", playback_state),
        Route("/api/player/devices", devices),
        Route("/api/player", transfer, methods=["PUT"]),
        Route("/api/player/seek", seek, methods=["PUT"]),
        Route("/api/player/volume", volume, methods=["PUT"]),
        Route("/api/player/repeat", repeat, methods=["PUT"]),
        Route("/api/player/shuffle", shuffle, methods=["PUT"]),
        Route("/api/player/{action}", player, methods=["PUT", "POST"]),
        Route("/api/cache/stats", cache_stats),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await dashboard.start()
        try:
            yield
        finally:
            await dashboard.close()

    app = Starlette(
        routes=routes,
        middleware=[Middleware(BearerAuthMiddleware, dashboard=dashboard)],
        exception_handlers={
            RateLimitError: lambda request, exc: rate_limited_response(exc),
            FetchError: lambda request, exc: fetch_error_response(exc),
            AuthenticationError: lambda request, exc: authentication_error_response(exc),
            ValueError: lambda request, exc: bad_request_response(exc),
        },
        lifespan=lifespan,
    )
    app.state.dashboard = dashboard
    return app
