"""
Centralized error handling for query stream and API failures.
Constants and reusable helpers so the controller and routes stay thin and new error types are easy to add.
"""
from __future__ import annotations

from typing import Callable

import httpx
from fastapi import HTTPException

# ---------------------------------------------------------------------------
# Constants: status codes and user-facing messages
# ---------------------------------------------------------------------------

MSG_QUERY_FAILED = "Error processing your query: {detail}"
MSG_SESSION_EXPIRED = "Your login has expired. Please log in again."
MSG_SERVICE_UNREACHABLE = "Could not reach the query service. Check that it is running."
MSG_SERVICE_TIMEOUT = "The query service took too long to respond."
MSG_STREAM_UNREADABLE = "The response stream could not be read."

STATUS_UNAUTHORIZED = 401
STATUS_NOT_FOUND = 404
STATUS_BAD_GATEWAY = 502


class QueryStreamError(Exception):
    """The query stream could not be opened or read (non-2xx status, missing body)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SessionNotFoundError(LookupError):
    """No chat session with the given id."""


# ---------------------------------------------------------------------------
# Error rules: (predicate, detail_message)
# Add new rules here instead of scattering checks in the controller.
# ---------------------------------------------------------------------------

def _is_unauthorized(exc: Exception) -> bool:
    return isinstance(exc, QueryStreamError) and exc.status_code == STATUS_UNAUTHORIZED


def _is_unreachable(exc: Exception) -> bool:
    return isinstance(exc, httpx.ConnectError)


def _is_timeout(exc: Exception) -> bool:
    return isinstance(exc, httpx.TimeoutException)


def _is_unreadable(exc: Exception) -> bool:
    return isinstance(exc, (httpx.DecodingError, httpx.StreamError, httpx.RemoteProtocolError, httpx.ReadError))


# List of (predicate, detail). First match wins.
STREAM_ERROR_RULES: list[tuple[Callable[[Exception], bool], str]] = [
    (_is_unauthorized, MSG_SESSION_EXPIRED),
    (_is_unreachable, MSG_SERVICE_UNREACHABLE),
    (_is_timeout, MSG_SERVICE_TIMEOUT),
    (_is_unreadable, MSG_STREAM_UNREADABLE),
]


def stream_error_detail(exc: Exception) -> str:
    """Human-readable description of a failed turn. Falls back to the exception message."""
    for predicate, detail in STREAM_ERROR_RULES:
        if predicate(exc):
            return detail
    return str(exc) or type(exc).__name__


def stream_error_message(exc: Exception) -> str:
    """Text for the error-tagged assistant message that ends a failed turn."""
    return MSG_QUERY_FAILED.format(detail=stream_error_detail(exc))


def api_error_to_http(result: dict) -> HTTPException:
    """
    Map an {"error": ...} dict from QueryApiClient into an HTTPException.
    Upstream status codes pass through; anything else becomes 502.
    """
    status_code = result.get("status_code") or STATUS_BAD_GATEWAY
    return HTTPException(status_code=status_code, detail=result.get("error") or "Query service error")
