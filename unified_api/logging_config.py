"""
Logging configuration for the Unified Action API.

Provides structured JSON logging for audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Iterable, Optional

from .security import redact

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs one JSON object per line; extra fields are redacted
    before they are serialized.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(redact(record.extra_fields))

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Specialized logger for audit events.

    Provides methods for logging dispatch outcomes, authentication and
    authorization failures, and other security-relevant events.
    """

    def __init__(self, name: str = "unified_api.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        extra = {
            "event_type": event_type,
            "request_id": kwargs.pop("request_id", None) or request_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def dispatch_complete(
        self,
        request_id: str,
        action_type: Optional[str],
        outcome: str,
        status_code: int,
        duration_ms: float,
        user_id: Optional[int] = None,
    ) -> None:
        """Log the end of one dispatch, success or failure."""
        level = logging.INFO if status_code < 400 else logging.WARNING
        if status_code >= 500:
            level = logging.ERROR
        self._log(
            level,
            "DISPATCH_COMPLETE",
            request_id=request_id,
            action_type=action_type,
            outcome=outcome,
            status_code=status_code,
            duration_ms=duration_ms,
            user_id=user_id,
            message=f"{action_type or '-'} -> {outcome}"
        )

    def authentication_failed(self, client_id: str, reason: str) -> None:
        """Internal reason is logged; callers only ever see one message."""
        self._log(
            logging.WARNING,
            "AUTHENTICATION_FAILED",
            client_id=client_id,
            reason=reason,
            message=f"Authentication failed: {reason}"
        )

    def permission_denied(
        self,
        user_id: Optional[int],
        action_type: str,
        required: Iterable[str],
        missing: Iterable[str],
    ) -> None:
        """Log an authorization denial."""
        self._log(
            logging.WARNING,
            "PERMISSION_DENIED",
            user_id=user_id,
            action_type=action_type,
            required_capabilities=sorted(required),
            missing_capabilities=sorted(missing),
            message=f"Permission denied for {action_type}"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )

    def rate_limit_exceeded(
        self,
        client_id: str,
        endpoint: str
    ) -> None:
        """Log rate limit exceeded."""
        self._log(
            logging.WARNING,
            "RATE_LIMIT_EXCEEDED",
            client_id=client_id,
            endpoint=endpoint,
            message=f"Rate limit exceeded for {client_id} on {endpoint}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def log_extra(**fields: Any) -> Dict[str, Any]:
    """``extra=`` payload understood by ``StructuredFormatter``."""
    return {"extra_fields": fields}


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


# Global audit logger instance
audit_log = AuditLogger()
