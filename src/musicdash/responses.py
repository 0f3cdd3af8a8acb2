"""Map musicdash errors onto JSON HTTP responses."""

from __future__ import annotations

import math

from starlette.responses import JSONResponse

from .errors import AuthenticationError, FetchError, RateLimitError


def rate_limited_response(exc: RateLimitError) -> JSONResponse:
    """429 carrying the retry-after hint when one is known."""
    body: dict = {"error": "Rate limited, retry later"}
    headers: dict[str, str] = {}
    if exc.retry_after is not None:
        retry_after = max(math.ceil(exc.retry_after), 1)
        body["retry_after"] = retry_after
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(body, status_code=429, headers=headers)


def fetch_error_response(exc: FetchError) -> JSONResponse:
    status = exc.status_code if exc.status_code and 400 <= exc.status_code < 600 else 502
    return JSONResponse({"error": "Upstream request failed", "details": str(exc)}, status_code=status)


def authentication_error_response(exc: AuthenticationError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=401)


def bad_request_response(exc: ValueError) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=400)


def error_response(exc: Exception) -> JSONResponse:
    """Response for any error the dashboard is expected to raise."""
    if isinstance(exc, RateLimitError):
        return rate_limited_response(exc)
    if isinstance(exc, FetchError):
        return fetch_error_response(exc)
    if isinstance(exc, AuthenticationError):
        return authentication_error_response(exc)
    if isinstance(exc, ValueError):
        return bad_request_response(exc)
    raise exc
