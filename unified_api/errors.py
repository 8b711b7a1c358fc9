"""
Error taxonomy for the Unified Action API.

Every failure a caller can observe maps to exactly one ``ErrorKind``,
and every kind maps to a fixed HTTP status and a stable error code.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar


class ErrorKind(str, Enum):
    """Closed set of failure categories."""
    VALIDATION = "VALIDATION"
    AUTHENTICATION = "AUTHENTICATION"
    AUTHORIZATION = "AUTHORIZATION"
    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    RATE_LIMIT = "RATE_LIMIT"
    INTERNAL = "INTERNAL"


class ErrorCode(str, Enum):
    """Stable strings placed in ``error_code``."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    FORBIDDEN = "FORBIDDEN"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    ACTION_NOT_FOUND = "ACTION_NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.METHOD_NOT_ALLOWED: 405,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.INTERNAL: 500,
}


class ApiError(Exception):
    """Base class for every caller-visible failure."""
    kind: ErrorKind = ErrorKind.INTERNAL
    default_code: ErrorCode = ErrorCode.INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[ErrorCode] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        self.error_code = error_code or self.default_code
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]


class ValidationError(ApiError):
    """Request shape or parameter schema failure; ``details`` maps field -> messages."""
    kind = ErrorKind.VALIDATION
    default_code = ErrorCode.VALIDATION_ERROR
    default_message = "Request parameter validation failed"

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(details={field: [message]})

    @property
    def errors(self) -> Dict[str, List[str]]:
        return self.details


class AuthenticationError(ApiError):
    kind = ErrorKind.AUTHENTICATION
    default_code = ErrorCode.UNAUTHORIZED
    # One message for missing, unknown, revoked and expired credentials.
    default_message = "Invalid or expired bearer token"


class AuthorizationError(ApiError):
    kind = ErrorKind.AUTHORIZATION
    default_code = ErrorCode.FORBIDDEN
    default_message = "Insufficient permissions to execute this action"


class NotFoundError(ApiError):
    kind = ErrorKind.NOT_FOUND
    default_code = ErrorCode.NOT_FOUND
    default_message = "The requested resource does not exist"


class ActionNotFoundError(NotFoundError):
    default_code = ErrorCode.ACTION_NOT_FOUND
    default_message = "Action not found"

    def __init__(self, action_type: str, message: Optional[str] = None):
        self.action_type = action_type
        super().__init__(
            message or f"Action not found: {action_type}",
            details={"action_type": action_type},
        )


class MethodNotAllowedError(ApiError):
    kind = ErrorKind.METHOD_NOT_ALLOWED
    default_code = ErrorCode.METHOD_NOT_ALLOWED
    default_message = "Method not allowed, only POST requests are accepted"


class RateLimitError(ApiError):
    kind = ErrorKind.RATE_LIMIT
    default_code = ErrorCode.RATE_LIMIT_EXCEEDED
    default_message = "Too many requests"


class InternalError(ApiError):
    kind = ErrorKind.INTERNAL
    default_code = ErrorCode.INTERNAL_SERVER_ERROR


class DuplicateActionError(ValueError):
    """Raised at registration time when an identifier is already taken."""

    def __init__(self, action_type: str):
        self.action_type = action_type
        super().__init__(f"Action already registered: {action_type}")


T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    Result passed across component seams instead of a raised exception.

    Exactly one of ``value`` and ``error`` is set.
    """
    value: Optional[T] = None
    error: Optional[ApiError] = None

    @classmethod
    def ok(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: ApiError) -> "Outcome[T]":
        return cls(error=error)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None
