"""HTTP transport middleware modules."""

from .auth import BearerAuthMiddleware, extract_bearer_token

__all__ = [
    "BearerAuthMiddleware",
    "extract_bearer_token",
]
