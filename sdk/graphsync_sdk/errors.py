"""
Error types for the GraphSync SDK.

This module defines all exception types raised by the SDK:
- GraphSyncClientError: Base exception
- NetworkError: Transport failure or timeout
- UnauthorizedError: No session token was sent
- ForbiddenError: The session token is unknown or targets another project
- NotFoundError: The project, node or edge does not exist
- ValidationError: The server rejected the payload
- ServerError: The server failed (persistence or internal error)

Invariants:
    - All errors inherit from GraphSyncClientError
    - HTTP statuses map one-to-one onto error types
    - Error messages are the server's human-readable reason where one exists
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx


class GraphSyncClientError(Exception):
    """Base exception for all GraphSync SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "GRAPHSYNC_CLIENT_ERROR"
        self.details = details or {}


class NetworkError(GraphSyncClientError):
    """The request never got an HTTP response.

    Raised when:
    - Server is unreachable
    - Connection or read times out
    - The realtime channel is not connected
    """

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message, code="NETWORK_ERROR", details={"url": url})
        self.url = url


class HttpError(GraphSyncClientError):
    """The server answered with an error status.

    Attributes:
        status_code: HTTP status of the response
    """

    def __init__(self, message: str, status_code: int, code: Optional[str] = None) -> None:
        super().__init__(message, code=code, details={"status_code": status_code})
        self.status_code = status_code


class UnauthorizedError(HttpError):
    def __init__(self, message: str = "Session token is required", code: Optional[str] = None) -> None:
        super().__init__(message, 401, code or "UNAUTHORIZED")


class ForbiddenError(HttpError):
    def __init__(self, message: str = "Invalid session token", code: Optional[str] = None) -> None:
        super().__init__(message, 403, code or "FORBIDDEN")


class NotFoundError(HttpError):
    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message, 404, code or "NOT_FOUND")


class ValidationError(HttpError):
    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message, 400, code or "VALIDATION_ERROR")


class ServerError(HttpError):
    def __init__(self, message: str, status_code: int = 500, code: Optional[str] = None) -> None:
        super().__init__(message, status_code, code or "SERVER_ERROR")


def error_from_response(response: httpx.Response) -> HttpError:
    """Build the error matching an HTTP error response.

    Args:
        response: A response with status >= 400

    Returns:
        The typed error, carrying the server's message and error_code
    """
    message = f"HTTP {response.status_code}"
    code = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("error") or message
        code = body.get("error_code")

    status = response.status_code
    if status == 401:
        return UnauthorizedError(message, code)
    if status == 403:
        return ForbiddenError(message, code)
    if status == 404:
        return NotFoundError(message, code)
    if status in (400, 422):
        return ValidationError(message, code)
    return ServerError(message, status, code)
