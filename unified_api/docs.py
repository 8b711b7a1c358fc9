"""
Documentation generator.

Walks the action registry, collects each handler's self-description and
renders it as a structured document or as an OpenAPI 3.0 export of the
single dispatch endpoint. The generated document is cached until the
registry changes or ``invalidate``/``regenerate`` is called.
"""

import json
import logging
import threading
from typing import Any, Dict, List, Optional

from .config import Settings
from .errors import ActionNotFoundError, ErrorCode
from .logging_config import log_extra
from .registry import ActionDescriptor, ActionRegistry
from .util import isoformat_utc, utc_now

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "No description available"
DISPATCH_PATH = "/api"

ERROR_STATUSES = {
    "401": (ErrorCode.UNAUTHORIZED, "Missing, unknown, revoked or expired bearer token"),
    "403": (ErrorCode.FORBIDDEN, "Caller lacks a required capability"),
    "404": (ErrorCode.ACTION_NOT_FOUND, "Unknown or disabled action"),
    "405": (ErrorCode.METHOD_NOT_ALLOWED, "Only POST is accepted"),
    "422": (ErrorCode.VALIDATION_ERROR, "Invalid action_type or parameters"),
    "429": (ErrorCode.RATE_LIMIT_EXCEEDED, "Too many requests"),
    "500": (ErrorCode.INTERNAL_SERVER_ERROR, "Unexpected server error"),
}


class DocumentationGenerator:
    def __init__(self, registry: ActionRegistry, settings: Settings):
        self.registry = registry
        self.settings = settings
        self._cache: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()
        registry.subscribe(self._on_registry_change)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    @property
    def cached(self) -> bool:
        return self._cache is not None

    def invalidate(self) -> None:
        self._cache = None

    def regenerate(self) -> Dict[str, Any]:
        self.invalidate()
        return self.generate()

    def _on_registry_change(self, event: str, action_types: List[str]) -> None:
        logger.debug("Documentation cache cleared", extra=log_extra(registry_event=event))
        self.invalidate()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(self) -> Dict[str, Any]:
        document = self._cache
        if document is not None:
            return document
        with self._lock:
            if self._cache is None:
                self._cache = self._build()
            return self._cache

    def _build(self) -> Dict[str, Any]:
        actions: Dict[str, Dict[str, Any]] = {}
        errors: Dict[str, str] = {}
        for descriptor in self.registry.list_all():
            try:
                raw = self.registry.describe(descriptor.action_type)
                actions[descriptor.action_type] = self._normalize(descriptor, raw)
            except Exception as exc:
                errors[descriptor.action_type] = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "Failed to extract action documentation",
                    exc_info=True,
                    extra=log_extra(action_type=descriptor.action_type),
                )

        logger.info(
            "API documentation generated",
            extra=log_extra(documented=len(actions), failed=len(errors)),
        )
        return {
            "info": self.info(),
            "actions": actions,
            "statistics": self._statistics(actions, errors),
            "errors": errors,
            "generated_at": isoformat_utc(utc_now()),
        }

    def info(self) -> Dict[str, Any]:
        s = self.settings
        return {
            "title": s.api_title,
            "description": s.api_description,
            "version": s.api_version,
            "base_url": s.api_base_url,
            "endpoint": DISPATCH_PATH,
            "method": "POST",
            "contact": {"email": s.api_contact_email},
            "authentication": {
                "type": "bearer",
                "header": "Authorization",
                "format": "Bearer <token>",
            },
        }

    def _normalize(self, descriptor: ActionDescriptor, raw: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "action_type": descriptor.action_type,
            "name": raw.get("name") or descriptor.action_type,
            "description": raw.get("description") or DEFAULT_DESCRIPTION,
            "version": descriptor.version,
            "enabled": descriptor.enabled,
            "required_capabilities": list(descriptor.required_capabilities),
            "parameters": dict(raw.get("parameters") or {}),
            "responses": dict(raw.get("responses") or {}),
            "examples": list(raw.get("examples") or []),
            "notes": list(raw.get("notes") or []),
        }

    def _statistics(self, actions: Dict[str, Dict[str, Any]], errors: Dict[str, str]) -> Dict[str, Any]:
        docs = list(actions.values())
        return {
            "total_actions": len(docs) + len(errors),
            "documented_actions": len(docs),
            "enabled_actions": sum(1 for d in docs if d["enabled"]),
            "actions_with_parameters": sum(1 for d in docs if d["parameters"]),
            "actions_with_examples": sum(1 for d in docs if d["examples"]),
            "total_parameters": sum(len(d["parameters"]) for d in docs),
            "total_examples": sum(len(d["examples"]) for d in docs),
            "public_actions": sum(1 for d in docs if not d["required_capabilities"]),
            "generation_errors": len(errors),
        }

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def action_documentation(self, action_type: str) -> Dict[str, Any]:
        doc = self.generate()["actions"].get(action_type)
        if doc is None:
            raise ActionNotFoundError(action_type)
        return doc

    def actions_summary(self) -> List[Dict[str, Any]]:
        return [
            {
                "action_type": doc["action_type"],
                "name": doc["name"],
                "description": doc["description"],
                "version": doc["version"],
                "enabled": doc["enabled"],
                "required_capabilities": doc["required_capabilities"],
            }
            for doc in self.generate()["actions"].values()
        ]

    def statistics(self) -> Dict[str, Any]:
        stats = dict(self.generate()["statistics"])
        stats["cached"] = self.cached
        return stats

    def validate(self, action_type: str) -> Dict[str, Any]:
        """
        Completeness check for one action's documentation.

        Never raises for a registered action; problems are reported in
        ``errors`` (make the docs wrong or unusable) and ``warnings``.

        Raises:
            ActionNotFoundError: the action is not registered
        """
        descriptor = self.registry.get(action_type)
        if descriptor is None:
            raise ActionNotFoundError(action_type)

        errors: List[str] = []
        warnings: List[str] = []
        try:
            doc = self._normalize(descriptor, self.registry.describe(action_type))
        except Exception as exc:
            return {
                "action_type": action_type,
                "valid": False,
                "errors": [f"Failed to extract documentation: {type(exc).__name__}: {exc}"],
                "warnings": [],
            }

        if doc["name"] == action_type:
            errors.append("Missing action name")
        if doc["description"] == DEFAULT_DESCRIPTION:
            errors.append("Missing action description")
        for name, param in doc["parameters"].items():
            if not param.get("description"):
                errors.append(f"Parameter '{name}' is missing a description")
            if not param.get("type"):
                errors.append(f"Parameter '{name}' is missing a type")
        if not doc["examples"]:
            warnings.append("No usage examples provided")
        if not doc["responses"]:
            warnings.append("No response documentation provided")

        return {
            "action_type": action_type,
            "valid": not errors,
            "errors": errors,
            "warnings": warnings,
        }

    # ------------------------------------------------------------------
    # OpenAPI
    # ------------------------------------------------------------------

    def openapi_document(self) -> Dict[str, Any]:
        document = self.generate()
        info = document["info"]
        action_ids = self.registry.action_types()
        return {
            "openapi": "3.0.0",
            "info": {
                "title": info["title"],
                "description": info["description"],
                "version": info["version"],
                "contact": info["contact"],
            },
            "servers": [{"url": info["base_url"], "description": "API server"}],
            "paths": {DISPATCH_PATH: {"post": self._operation(document["actions"])}},
            "components": {
                "securitySchemes": {
                    "bearerAuth": {
                        "type": "http",
                        "scheme": "bearer",
                        "description": "Bearer token issued by the token manager",
                    }
                },
                "schemas": self._schemas(action_ids),
            },
        }

    def export_openapi(self) -> str:
        return json.dumps(self.openapi_document(), indent=2, sort_keys=False)

    def _operation(self, actions: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
        examples = {}
        for action_type, doc in actions.items():
            if doc["examples"]:
                examples[action_type] = {
                    "summary": doc["name"],
                    "value": doc["examples"][0].get("request", {"action_type": action_type}),
                }

        responses = {
            "200": {
                "description": "Action executed",
                "content": {"application/json": {"schema": {"$ref": "#/components/schemas/SuccessResponse"}}},
            }
        }
        for status, (code, description) in ERROR_STATUSES.items():
            responses[status] = {
                "description": f"{description} ({code.value})",
                "content": {"application/json": {"schema": {"$ref": "#/components/schemas/ErrorResponse"}}},
            }

        return {
            "summary": "Dispatch an action",
            "description": "Every operation is a POST to this path naming an action_type.",
            "operationId": "dispatchAction",
            "security": [{"bearerAuth": []}],
            "requestBody": {
                "required": True,
                "content": {
                    "application/json": {
                        "schema": {"$ref": "#/components/schemas/ActionRequest"},
                        "examples": examples,
                    }
                },
            },
            "responses": responses,
        }

    def _schemas(self, action_ids: List[str]) -> Dict[str, Any]:
        return {
            "ActionRequest": {
                "type": "object",
                "required": ["action_type"],
                "properties": {
                    "action_type": {
                        "type": "string",
                        "description": "Action to execute",
                        "enum": list(action_ids),
                    }
                },
                "additionalProperties": True,
            },
            "SuccessResponse": {
                "type": "object",
                "properties": {
                    "status": {"type": "string", "enum": ["success"]},
                    "message": {"type": "string"},
                    "data": {"type": "object"},
                    "timestamp": {"type": "string", "format": "date-time"},
                    "pagination": {"$ref": "#/components/schemas/PaginationInfo"},
                },
                "required": ["status", "message", "data", "timestamp"],
            },
            "ErrorResponse": {
                "type": "object",
                "properties": {
                    "status": {"type": "string", "enum": ["error"]},
                    "message": {"type": "string"},
                    "error_code": {"type": "string", "enum": [c.value for c in ErrorCode]},
                    "details": {"type": "object"},
                    "timestamp": {"type": "string", "format": "date-time"},
                    "request_id": {"type": "string"},
                },
                "required": ["status", "message", "error_code", "details", "timestamp", "request_id"],
            },
            "PaginationInfo": {
                "type": "object",
                "properties": {
                    "current_page": {"type": "integer"},
                    "last_page": {"type": "integer"},
                    "per_page": {"type": "integer"},
                    "total": {"type": "integer"},
                    "from": {"type": "integer", "nullable": True},
                    "to": {"type": "integer", "nullable": True},
                    "has_more_pages": {"type": "boolean"},
                },
            },
        }
