"""
Security module for the Unified Action API.

Provides request-shape validation, bearer extraction, request IDs and
the central redaction applied before anything is logged or returned.
"""

import re
import traceback
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import ValidationError


# ============================================================
# Input Validation
# ============================================================

# Letters, digits, underscore, hyphen and dot
ACTION_TYPE_PATTERN = re.compile(r'^[a-zA-Z0-9_\-.]+$')


def validate_action_type(value: Any, max_length: int = 100) -> str:
    """
    Validate the ``action_type`` field of a request body.

    Returns:
        The validated action type

    Raises:
        ValidationError: detail key ``action_type``
    """
    if value is None:
        raise ValidationError.for_field("action_type", "action_type is required")

    if not isinstance(value, str):
        raise ValidationError.for_field("action_type", "action_type must be a string")

    if not value:
        raise ValidationError.for_field("action_type", "action_type is required")

    if len(value) > max_length:
        raise ValidationError.for_field(
            "action_type", f"action_type must not exceed {max_length} characters"
        )

    if not ACTION_TYPE_PATTERN.match(value):
        raise ValidationError.for_field(
            "action_type",
            "action_type may only contain letters, digits, underscores, hyphens and dots",
        )

    return value


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the credential from an ``Authorization: Bearer ...`` header, if any."""
    if not authorization:
        return None
    if not authorization.startswith("Bearer "):
        return None
    token = authorization[7:].strip()
    return token or None


# ============================================================
# Request ID Generation
# ============================================================

def generate_request_id() -> str:
    """Generate a unique request ID for audit trail correlation."""
    return str(uuid.uuid4())


# ============================================================
# Rate Limiting Helpers
# ============================================================

def extract_client_id(
    headers: Mapping[str, str],
    client_host: Optional[str] = None,
    trust_forwarded_for: bool = False,
) -> str:
    """
    Extract a client identifier from request headers for rate limiting.

    The bearer value is never used: it is unverified at admission time.
    ``X-Forwarded-For`` counts only when the app sits behind a trusted proxy.
    """
    if trust_forwarded_for:
        forwarded = headers.get("x-forwarded-for", "").split(",")[0].strip()
        if forwarded:
            return f"ip:{forwarded}"

    if client_host:
        return f"ip:{client_host}"

    return "anonymous"


# ============================================================
# Redaction
# ============================================================

SENSITIVE_KEYS = (
    "password",
    "password_confirmation",
    "token",
    "secret",
    "authorization",
    "api_key",
    "credential",
    "credentials",
    "private_key",
)

REDACTED = "[REDACTED]"


def redact(data: Any, sensitive_keys: Iterable[str] = None) -> Any:
    """
    Return a copy of ``data`` with every sensitive field replaced.

    A key is sensitive when, lowercased with ``-`` read as ``_``, it equals a
    marker or ends in ``_<marker>``: ``new_password`` and ``X-Api-Key`` are
    caught, ``credential_id`` and ``token_name`` are not. Recurses into
    dicts, lists and tuples.
    """
    markers = tuple(sensitive_keys) if sensitive_keys is not None else SENSITIVE_KEYS

    def _sensitive(key: Any) -> bool:
        normalized = str(key).lower().replace("-", "_")
        return any(normalized == marker or normalized.endswith("_" + marker) for marker in markers)

    if isinstance(data, Mapping):
        return {
            key: REDACTED if _sensitive(key) else redact(value, markers)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact(item, markers) for item in data]
    return data


def sanitize_trace(exc: BaseException, limit: int = 10, max_repr: int = 100) -> List[Dict[str, Any]]:
    """
    Summarize a traceback for non-production error details.

    Keeps the innermost ``limit`` frames; local variables are never included
    and long source lines are truncated.
    """
    frames = traceback.extract_tb(exc.__traceback__)[-limit:]
    result = []
    for frame in frames:
        line = frame.line or ""
        if len(line) > max_repr:
            line = line[:max_repr] + "..."
        result.append({
            "file": frame.filename,
            "line": frame.lineno,
            "function": frame.name,
            "code": line,
        })
    return result
