"""
Standardized error model for calls to external services.

Backends convert SDK and transport failures into these errors so that log lines
and persisted error messages carry a stable code regardless of which service
failed. The classification into retryable and terminal errors is informational:
the retry executor treats every failure the same way.
"""

from __future__ import annotations

import uuid
from typing import Any


class ServiceError(Exception):
    """Standardized service error with retry classification.

    Attributes:
        code: Machine-readable error code (e.g., "RATE_LIMITED").
        message_safe: Human-readable message safe for logs and result records.
        message_debug: Optional detailed message (never persisted).
        retryable: Whether the failure looks transient.
        cause: Optional underlying exception.
        debug_id: Short identifier for correlating log lines.
    """

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        retryable: bool = False,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(message_safe)
        self.code = code
        self.message_safe = message_safe
        self.message_debug = message_debug
        self.retryable = retryable
        self.cause = cause
        self.debug_id = debug_id or str(uuid.uuid4())[:8]

    def __str__(self) -> str:
        return f"[{self.code}] {self.message_safe}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"message_safe={self.message_safe!r}, "
            f"retryable={self.retryable}, "
            f"debug_id={self.debug_id!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary (excludes debug info)."""
        return {
            "code": self.code,
            "message": self.message_safe,
            "debug_id": self.debug_id,
        }


class RetryableError(ServiceError):
    """Transient failure of a completion or embedding backend.

    Use this for:
    - Network errors and timeouts
    - Rate limiting (429)
    - Temporary service unavailability (5xx, model still loading)
    """

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=True,
            cause=cause,
            debug_id=debug_id,
        )


class TerminalError(ServiceError):
    """Failure that will not go away on its own.

    Use this for:
    - Invalid request (400, unknown model)
    - Authentication failures (401, 403)
    - Exhausted quota
    """

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=False,
            cause=cause,
            debug_id=debug_id,
        )


class ErrorCode:
    """Standard error codes for backend failures."""

    # Network/connectivity
    TIMEOUT = "TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    # Authentication/Authorization
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Request
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    INVALID_RESPONSE = "INVALID_RESPONSE"

    # Rate limiting
    RATE_LIMITED = "RATE_LIMITED"

    # Internal
    INTERNAL_ERROR = "INTERNAL_ERROR"


def error_for_status(status_code: int, message: str, body: str | None = None) -> ServiceError:
    """Map an HTTP status code to a RetryableError or TerminalError.

    Args:
        status_code: HTTP status returned by the backend.
        message: Safe message describing the failed call.
        body: Optional response body, kept as debug info.

    Returns:
        The classified error (not raised).
    """
    if status_code == 429:
        return RetryableError(ErrorCode.RATE_LIMITED, message, message_debug=body)
    if status_code >= 500:
        return RetryableError(ErrorCode.SERVICE_UNAVAILABLE, message, message_debug=body)
    if status_code == 401:
        return TerminalError(ErrorCode.UNAUTHORIZED, message, message_debug=body)
    if status_code == 403:
        return TerminalError(ErrorCode.FORBIDDEN, message, message_debug=body)
    if status_code == 404:
        return TerminalError(ErrorCode.NOT_FOUND, message, message_debug=body)
    return TerminalError(ErrorCode.INVALID_INPUT, message, message_debug=body)
