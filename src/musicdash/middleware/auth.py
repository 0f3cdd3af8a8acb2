"""Bearer-token authentication middleware for Starlette/ASGI."""

from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..dashboard import Dashboard
from ..errors import AuthenticationError, FetchError, RateLimitError
from ..responses import error_response

logger = logging.getLogger(__name__)


def extract_bearer_token(header: str | None) -> str:
    """Return the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        AuthenticationError: The header is missing or not a bearer credential.
    """
    if not header:
        raise AuthenticationError("No token provided")
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("Invalid token format")
    return token


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Resolve the bearer token to an upstream user before the route runs.

    The resolved :class:`~musicdash.dashboard.AuthenticatedUser` is stored on
    ``request.state.user``.

    Args:
        app: The ASGI application.
        dashboard: Shared dashboard used to validate tokens.
        public_paths: Paths that skip authentication.
    """

    def __init__(self, app, dashboard: Dashboard, public_paths: tuple[str, ...] = ("/health",)):  # noqa: ANN001
        super().__init__(app)
        self.dashboard = dashboard
        self.public_paths = public_paths

    async def dispatch(self, request: Request, call_next):  # noqa: ANN001, ANN201
        if request.url.path in self.public_paths:
            return await call_next(request)

        try:
            token = extract_bearer_token(request.headers.get("authorization"))
            request.state.user = await self.dashboard.resolve_user(token)
        except (AuthenticationError, RateLimitError, FetchError) as exc:
            logger.info("Rejected request to %s: %s", request.url.path, exc)
            return error_response(exc)

        return await call_next(request)
