"""
Unified Action API

Every operation is a POST to one endpoint naming an ``action_type``.
Bearer tokens resolve to capabilities, a registry maps action types to
handlers, and every response uses one of three envelope shapes.
"""

__version__ = "1.0.0"

from .errors import (
    ActionNotFoundError,
    ApiError,
    AuthenticationError,
    AuthorizationError,
    DuplicateActionError,
    ErrorCode,
    ErrorKind,
    InternalError,
    MethodNotAllowedError,
    NotFoundError,
    Outcome,
    RateLimitError,
    ValidationError,
)
from .registry import ActionDescriptor, ActionHandler, ActionRegistry, RegistryState
from .responses import ActionResult, PaginatedResult, PaginationInfo, ResponseFormatter

__all__ = [
    "__version__",
    "ActionDescriptor",
    "ActionHandler",
    "ActionNotFoundError",
    "ActionRegistry",
    "ActionResult",
    "ApiError",
    "AuthenticationError",
    "AuthorizationError",
    "DuplicateActionError",
    "ErrorCode",
    "ErrorKind",
    "InternalError",
    "MethodNotAllowedError",
    "NotFoundError",
    "Outcome",
    "PaginatedResult",
    "PaginationInfo",
    "RateLimitError",
    "RegistryState",
    "ResponseFormatter",
    "ValidationError",
]
