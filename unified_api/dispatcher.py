"""
Unified dispatcher.

Runs one request through a fixed sequence of stages:

    Admit -> MethodCheck -> Authenticate -> ShapeCheck -> Resolve
          -> Authorize -> HandlerValidate -> Execute -> Format

Each stage may halt the request with an error envelope. ``dispatch``
always returns a ``DispatchResult``; no exception reaches the transport.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from fastapi.encoders import jsonable_encoder

from .audit import AuditRecord, AuditSink
from .config import Settings
from .context import ActionServices, RequestContext
from .credentials import Authenticator
from .errors import (
    ApiError,
    InternalError,
    MethodNotAllowedError,
    RateLimitError,
    ValidationError,
)
from .logging_config import audit_log, log_extra, set_request_id
from .permissions import PermissionResolver
from .rate_limit import RateLimiter
from .registry import ActionRegistry
from .responses import ResponseFormatter
from .security import (
    extract_bearer_token,
    generate_request_id,
    sanitize_trace,
    validate_action_type,
)

logger = logging.getLogger(__name__)

SUCCESS_OUTCOME = "success"


@dataclass
class DispatchResult:
    status_code: int
    body: Dict[str, Any]
    request_id: str
    outcome: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.outcome == SUCCESS_OUTCOME


class _Halt(Exception):
    """Carries a formatted error out of the stage sequence."""

    def __init__(self, error: ApiError, headers: Optional[Dict[str, str]] = None):
        self.error = error
        self.headers = headers or {}
        super().__init__(error.message)


class Dispatcher:
    """Stateless across calls; every collaborator is injected."""

    def __init__(
        self,
        registry: ActionRegistry,
        authenticator: Authenticator,
        permissions: PermissionResolver,
        audit_sink: AuditSink,
        settings: Settings,
        services: Optional[ActionServices] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.registry = registry
        self.authenticator = authenticator
        self.permissions = permissions
        self.audit_sink = audit_sink
        self.settings = settings
        self.services = services
        self.rate_limiter = rate_limiter

    def dispatch(
        self,
        method: str,
        body: Any,
        authorization: Optional[str] = None,
        client_id: str = "anonymous",
        request_id: Optional[str] = None,
    ) -> DispatchResult:
        request_id = set_request_id(request_id or generate_request_id())
        context = RequestContext(
            request_id=request_id,
            started_at=time.perf_counter(),
            raw_params={},
            services=self.services,
        )
        formatter = ResponseFormatter(request_id)
        headers: Dict[str, str] = {}

        try:
            status_code, envelope = self._run(method, body, authorization, client_id, context, formatter)
            outcome = SUCCESS_OUTCOME
        except _Halt as halt:
            status_code, envelope, outcome = self._error(halt.error, formatter)
            headers.update(halt.headers)
        except ApiError as exc:
            status_code, envelope, outcome = self._error(exc, formatter)
        except Exception as exc:
            status_code, envelope, outcome = self._error(self._internal(exc, context), formatter)

        headers["X-Request-ID"] = request_id
        self._audit(context, outcome, status_code)
        return DispatchResult(status_code, envelope, request_id, outcome, headers)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _run(
        self,
        method: str,
        body: Any,
        authorization: Optional[str],
        client_id: str,
        context: RequestContext,
        formatter: ResponseFormatter,
    ) -> Tuple[int, Dict[str, Any]]:
        self._admit(client_id)

        if (method or "").upper() != "POST":
            raise _Halt(MethodNotAllowedError(), {"Allow": "POST"})

        context.identity = self.authenticator.authenticate(
            extract_bearer_token(authorization), client_id=client_id
        )

        if not isinstance(body, Mapping):
            raise _Halt(ValidationError.for_field(
                "action_type", "Request body must be a JSON object containing action_type"
            ))
        action_type = validate_action_type(body.get("action_type"), self.settings.action_type_max_length)
        context.requested_action = action_type

        resolved = self.registry.resolve(action_type)
        if not resolved.succeeded:
            raise _Halt(resolved.error)
        context.descriptor = resolved.value

        decision = self.permissions.authorize(context.identity, context.descriptor)
        if not decision.allowed:
            raise _Halt(decision.to_error())

        handler = self.registry.create_handler(context.descriptor)
        context.raw_params = {k: v for k, v in body.items() if k != "action_type"}
        context.params = handler.validate(context.raw_params)

        result = handler.execute(context)
        return 200, self._format(result, formatter)

    def _admit(self, client_id: str) -> None:
        if self.rate_limiter is None:
            return
        verdict = self.rate_limiter.check(client_id)
        if not verdict.allowed:
            audit_log.rate_limit_exceeded(client_id=client_id, endpoint="dispatch")
            raise _Halt(
                RateLimitError(details={"retry_after": round(verdict.retry_after or 0, 2)}),
                verdict.headers(),
            )

    def _format(self, result: Any, formatter: ResponseFormatter) -> Dict[str, Any]:
        return jsonable_encoder(formatter.from_result(result))

    # ------------------------------------------------------------------
    # Errors and audit
    # ------------------------------------------------------------------

    def _error(self, error: ApiError, formatter: ResponseFormatter) -> Tuple[int, Dict[str, Any], str]:
        try:
            envelope = jsonable_encoder(formatter.from_error(error))
        except Exception:
            logger.error(
                "Error envelope could not be encoded",
                exc_info=True,
                extra=log_extra(error_code=error.error_code.value),
            )
            error = InternalError()
            envelope = jsonable_encoder(formatter.from_error(error))
        return error.status_code, envelope, error.error_code.value

    def _internal(self, exc: Exception, context: RequestContext) -> InternalError:
        identity = context.identity
        logger.error(
            "Unhandled exception during dispatch",
            exc_info=exc,
            extra=log_extra(
                action_type=context.action_type,
                user_id=identity.user_id if identity else None,
                exception_class=type(exc).__name__,
            ),
        )
        if self.settings.production:
            return InternalError()

        frames = sanitize_trace(exc)
        origin = frames[-1] if frames else {}
        return InternalError(
            str(exc) or InternalError.default_message,
            details={
                "exception": type(exc).__name__,
                "file": origin.get("file"),
                "line": origin.get("line"),
                "trace": frames,
            },
        )

    def _audit(self, context: RequestContext, outcome: str, status_code: int) -> None:
        identity = context.identity
        record = AuditRecord.now(
            request_id=context.request_id,
            user_id=identity.user_id if identity else None,
            action_type=context.action_type,
            outcome=outcome,
            status_code=status_code,
            duration_ms=context.elapsed_ms(),
        )
        try:
            self.audit_sink.write(record)
        except Exception:
            logger.warning(
                "Audit sink write failed",
                exc_info=True,
                extra=log_extra(request_id=context.request_id),
            )
