"""Drop a user's cached data when their credentials change."""

from __future__ import annotations

import logging
import threading
from collections import deque

from ..constants import RECENT_TOKENS_PER_USER
from . import keys
from .cache import TTLCache

logger = logging.getLogger(__name__)


class CredentialTracker:
    """Detects token rotation per user and invalidates their cache entries.

    A rotated token often means a different upstream account state, so nothing
    cached under the old token may be served under the new one. The last few
    fingerprints per user are remembered: a user switching between tokens that
    are all still valid (two open tabs, say) only pays for the first sighting
    of each.

    Args:
        cache: The shared store holding the users' data.
        remembered: Fingerprints kept per user.
    """

    def __init__(self, cache: TTLCache, remembered: int = RECENT_TOKENS_PER_USER):
        self._cache = cache
        self._remembered = remembered
        self._fingerprints: dict[str, deque[str]] = {}
        self._lock = threading.Lock()

    def known_tokens(self, user_id: str) -> int:
        with self._lock:
            return len(self._fingerprints.get(user_id, ()))

    def observe(self, user_id: str, token: str) -> bool:
        """Record that ``user_id`` authenticated with ``token``.

        Call once per token resolved upstream, not on every request.

        Returns:
            True if the token was new for a user already known (and data was
            invalidated).
        """
        fingerprint = keys.token_fingerprint(token)
        with self._lock:
            previous = self._remember(user_id, fingerprint)
        if previous is None:
            return False

        self._drop_token_keys(previous)
        removed = keys.invalidate_user(self._cache, user_id)
        logger.info("Credentials rotated for user %s; dropped %d cache entries", user_id, removed)
        return True

    def credentials_refreshed(self, user_id: str, token: str) -> int:
        """Explicit hook for the auth collaborator after a token refresh.

        Returns:
            Number of cache entries removed.
        """
        fingerprint = keys.token_fingerprint(token)
        with self._lock:
            known = self._fingerprints.get(user_id)
            previous = [fp for fp in known if fp != fingerprint] if known else []
            self._remember(user_id, fingerprint)
        self._drop_token_keys(previous)
        removed = keys.invalidate_user(self._cache, user_id)
        logger.info("Credentials refreshed for user %s; dropped %d cache entries", user_id, removed)
        return removed

    def revoke(self, user_id: str, token: str | None = None) -> int:
        """Forget a user whose token was rejected upstream."""
        with self._lock:
            self._fingerprints.pop(user_id, None)
        if token is not None:
            self._cache.invalidate(keys.access_token(token))
        removed = keys.invalidate_user(self._cache, user_id)
        logger.info("Token rejected for user %s; dropped %d cache entries", user_id, removed)
        return removed

    def _remember(self, user_id: str, fingerprint: str) -> list[str] | None:
        """Add ``fingerprint`` for ``user_id`` (lock held).

        Returns:
            The fingerprints seen before if this one is new for a known user,
            otherwise None.
        """
        known = self._fingerprints.get(user_id)
        if known is None:
            self._fingerprints[user_id] = deque([fingerprint], maxlen=self._remembered)
            return None
        if fingerprint in known:
            known.remove(fingerprint)
            known.append(fingerprint)
            return None
        previous = list(known)
        known.append(fingerprint)
        return previous

    def _drop_token_keys(self, fingerprints: list[str]) -> None:
        for fingerprint in fingerprints:
            self._cache.invalidate(keys.build_key("auth", fingerprint))
