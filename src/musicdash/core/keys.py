"""Cache key construction and lifetimes.

Keys are ``:``-separated and always start with the entity type, then the
owning id, so ``user:<id>:`` prefixes every artifact scoped to a user.
"""

from __future__ import annotations

import hashlib
from urllib.parse import quote

from .cache import TTLCache

SEPARATOR = ":"


class CacheDuration:
    """Cache lifetimes in seconds."""

    USER_PROFILE = 3_600  # 1 hour
    USER_PREFERENCES = 3_600
    PLAYLISTS_MINIMAL = 900  # 15 minutes
    PLAYLISTS_DETAILS = 900
    PLAYLIST_TRACKS = 300  # 5 minutes
    TOP_ITEMS = 900
    TRACK_METADATA = 3_600
    ACCESS_TOKEN = 3_300  # upstream tokens live for an hour


def _component(value: object) -> str:
    # Percent-encode so a ':' inside an id can't shift the other components.
    return quote(str(value), safe="")


def build_key(entity_type: str, owner_id: object, *params: object) -> str:
    """Build a deterministic cache key.

    >>> build_key("playlist", "37i9", "tracks", 0, 100)
    'playlist:37i9:tracks:0:100'
    """
    parts = [entity_type, owner_id, *params]
    return SEPARATOR.join(_component(part) for part in parts)


def user_prefix(user_id: str) -> str:
    """Prefix shared by every key scoped to ``user_id``."""
    return build_key("user", user_id) + SEPARATOR


def user_profile(user_id: str) -> str:
    return build_key("user", user_id, "profile")


def user_preferences(user_id: str) -> str:
    return build_key("user", user_id, "preferences")


def user_playlists_minimal(user_id: str) -> str:
    return build_key("user", user_id, "playlists", "minimal")


def user_playlists_details(user_id: str) -> str:
    return build_key("user", user_id, "playlists", "details")


def playlist_tracks(
    playlist_id: str, offset: int, limit: int, snapshot_id: str | None = None
) -> str:
    """Key for one page of a playlist.

    The snapshot id changes whenever the playlist does, so pages cached for an
    older version are never served for a newer one.
    """
    params: list[object] = ["tracks", offset, limit]
    if snapshot_id:
        params.append(snapshot_id)
    return build_key("playlist", playlist_id, *params)


def user_top_tracks(user_id: str, time_range: str) -> str:
    return build_key("user", user_id, "top-tracks", time_range)


def user_top_artists(user_id: str, time_range: str) -> str:
    return build_key("user", user_id, "top-artists", time_range)


def track_metadata(track_id: str) -> str:
    return build_key("track", track_id, "metadata")


def token_fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()[:32]


def access_token(token: str) -> str:
    """Key for the token -> user resolution; the raw token never appears."""
    return build_key("auth", token_fingerprint(token))


def invalidate_user(cache: TTLCache, user_id: str) -> int:
    """Drop everything cached for ``user_id``.

    Returns:
        Number of entries removed.
    """
    return cache.invalidate_by_prefix(user_prefix(user_id))
