"""Structured error taxonomy for the remote access server."""
#
# PURPOSE:
# Gives every failure the server can report an error code, a human-readable
# message and a suggested HTTP status, so routes, the lifecycle controller and
# the push channel all report problems the same way.
#
# ERROR CODE FORMAT:
# - IDENTITY_XXX: keystore / certificate / secret errors
# - BIND_XXX: listener errors
# - AUTH_XXX: session and login errors
# - FILE_XXX: upload / download errors
# - SERVER_XXX: lifecycle errors
#
# USAGE:
#   from remoteaccess.errors import RemoteAccessError, ErrorCode
#
#   raise RemoteAccessError(
#       ErrorCode.AUTH_SESSION_MISSING,
#       "Authentication required",
#       details={"endpoint": "/api/now-playing"}
#   )
#
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    # Identity Errors
    IDENTITY_PASSWORD_UNRECOVERABLE = "IDENTITY_001"
    IDENTITY_KEYGEN_FAILED = "IDENTITY_002"
    IDENTITY_KEYSTORE_WRITE_FAILED = "IDENTITY_003"

    # Bind Errors
    BIND_NO_FREE_PORT = "BIND_001"

    # Auth Errors
    AUTH_SESSION_MISSING = "AUTH_001"
    AUTH_SESSION_INVALID = "AUTH_002"
    AUTH_CODE_INVALID = "AUTH_003"
    AUTH_CODE_LOCKED = "AUTH_004"

    # File Errors
    FILE_NOT_FOUND = "FILE_001"
    FILE_UPLOAD_FAILED = "FILE_002"
    FILE_INVALID_NAME = "FILE_003"
    LOGS_GATHERING_FAILED = "FILE_004"

    # Server Errors
    SERVER_NOT_STARTED = "SERVER_001"
    SERVER_START_TIMEOUT = "SERVER_002"
    SERVER_INTERNAL_ERROR = "SERVER_003"
    SERVER_NOTHING_PLAYING = "SERVER_004"


class RemoteAccessError(Exception):
    """
    Base exception with structured error information.

    Attributes:
        code: ErrorCode enum value (e.g. "AUTH_001")
        message: Human-readable error message
        details: Optional dictionary with additional context
        http_status: Suggested HTTP status code for API responses
    """

    HTTP_STATUS_MAP: Dict[ErrorCode, int] = {
        ErrorCode.IDENTITY_PASSWORD_UNRECOVERABLE: 500,
        ErrorCode.IDENTITY_KEYGEN_FAILED: 500,
        ErrorCode.IDENTITY_KEYSTORE_WRITE_FAILED: 500,

        ErrorCode.BIND_NO_FREE_PORT: 503,

        ErrorCode.AUTH_SESSION_MISSING: 401,   # Unauthorized
        ErrorCode.AUTH_SESSION_INVALID: 401,
        ErrorCode.AUTH_CODE_INVALID: 401,
        ErrorCode.AUTH_CODE_LOCKED: 429,       # Too Many Requests

        ErrorCode.FILE_NOT_FOUND: 404,
        ErrorCode.FILE_UPLOAD_FAILED: 500,
        ErrorCode.FILE_INVALID_NAME: 400,      # Bad Request
        ErrorCode.LOGS_GATHERING_FAILED: 500,

        ErrorCode.SERVER_NOT_STARTED: 503,     # Service Unavailable
        ErrorCode.SERVER_START_TIMEOUT: 503,
        ErrorCode.SERVER_INTERNAL_ERROR: 500,
        ErrorCode.SERVER_NOTHING_PLAYING: 404,
    }

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        http_status: Optional[int] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.http_status = http_status or self.HTTP_STATUS_MAP.get(code, 500)

        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for JSON serialization.

        Returns:
            Dictionary with code, message, details, and http_status
        """
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "http_status": self.http_status
        }


class IdentityError(RemoteAccessError):
    """Raised when the TLS identity cannot be loaded or generated. Fatal to start()."""


class BindError(RemoteAccessError):
    """Raised when neither the preferred nor an ephemeral port can be bound. Fatal to start()."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.BIND_NO_FREE_PORT, message, details)


__all__ = ["ErrorCode", "RemoteAccessError", "IdentityError", "BindError"]
