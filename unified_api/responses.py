"""
Response envelopes.

Every body the unified endpoint returns is one of three shapes: success,
error, or paginated success. The formatter holds only the request id of
the call in progress.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .errors import ApiError, ErrorCode, ValidationError
from .security import redact
from .util import isoformat_utc, utc_now

DEFAULT_SUCCESS_MESSAGE = "Operation successful"


@dataclass(frozen=True)
class PaginationInfo:
    current_page: int
    last_page: int
    per_page: int
    total: int
    from_item: Optional[int]
    to_item: Optional[int]
    has_more_pages: bool

    @classmethod
    def from_counts(cls, total: int, page: int, per_page: int) -> "PaginationInfo":
        per_page = max(1, per_page)
        page = max(1, page)
        last_page = max(1, math.ceil(total / per_page))
        first = (page - 1) * per_page + 1
        if first > total:
            from_item, to_item = None, None
        else:
            from_item, to_item = first, min(page * per_page, total)
        return cls(
            current_page=page,
            last_page=last_page,
            per_page=per_page,
            total=total,
            from_item=from_item,
            to_item=to_item,
            has_more_pages=page < last_page,
        )

    @property
    def offset(self) -> int:
        return (self.current_page - 1) * self.per_page

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_page": self.current_page,
            "last_page": self.last_page,
            "per_page": self.per_page,
            "total": self.total,
            "from": self.from_item,
            "to": self.to_item,
            "has_more_pages": self.has_more_pages,
        }


@dataclass
class ActionResult:
    """Handler return value when the success message should not be the default."""
    data: Any = None
    message: str = DEFAULT_SUCCESS_MESSAGE


@dataclass
class PaginatedResult:
    """Handler return value rendered as a paginated envelope."""
    items: List[Any]
    pagination: PaginationInfo
    message: str = "Data retrieved successfully"


class ResponseFormatter:
    """Builds envelopes for one request."""

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id

    @staticmethod
    def timestamp() -> str:
        return isoformat_utc(utc_now())

    def success(self, data: Any = None, message: str = DEFAULT_SUCCESS_MESSAGE) -> Dict[str, Any]:
        return {
            "status": "success",
            "message": message,
            "data": data,
            "timestamp": self.timestamp(),
        }

    def error(
        self,
        message: str,
        error_code: str,
        details: Optional[Mapping[str, Any]] = None,
        redact_details: bool = True,
    ) -> Dict[str, Any]:
        details = dict(details or {})
        return {
            "status": "error",
            "message": message,
            "error_code": str(error_code.value if isinstance(error_code, ErrorCode) else error_code),
            "details": redact(details) if redact_details else details,
            "timestamp": self.timestamp(),
            "request_id": self.request_id,
        }

    def paginated(
        self,
        data: List[Any],
        pagination: PaginationInfo,
        message: str = "Data retrieved successfully",
    ) -> Dict[str, Any]:
        envelope = self.success(data, message)
        envelope["pagination"] = pagination.to_dict()
        return envelope

    def validation_error(
        self,
        errors: Mapping[str, List[str]],
        message: str = "Request parameter validation failed",
    ) -> Dict[str, Any]:
        # Field names key messages here, never submitted values
        return self.error(message, ErrorCode.VALIDATION_ERROR, errors, redact_details=False)

    def from_error(self, exc: ApiError) -> Dict[str, Any]:
        if isinstance(exc, ValidationError):
            return self.validation_error(exc.details, exc.message)
        return self.error(exc.message, exc.error_code, exc.details)

    def from_result(self, result: Any) -> Dict[str, Any]:
        """Render whatever a handler returned."""
        if isinstance(result, PaginatedResult):
            return self.paginated(result.items, result.pagination, result.message)
        if isinstance(result, ActionResult):
            return self.success(result.data, result.message)
        return self.success(result)
