"""
Shared behaviour for action handlers.

Handlers call these functions instead of inheriting defaults: parameter
validation against a pydantic model, documentation assembly, and logging
tagged with the action identifier.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type

import pydantic
from pydantic import BaseModel

from ..errors import ValidationError
from ..logging_config import log_extra

logger = logging.getLogger("unified_api.actions")

# Keys copied from a JSON-schema property into parameter docs
_SCHEMA_KEYS = ("default", "enum", "minimum", "maximum", "minLength", "maxLength", "format", "examples")


class EmptyParams(BaseModel):
    """Parameters of an action that takes none."""


def field_errors(exc: pydantic.ValidationError) -> Dict[str, List[str]]:
    """Collapse pydantic errors into ``{field: [messages]}``."""
    errors: Dict[str, List[str]] = {}
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())) or "params"
        message = err.get("msg", "Invalid value")
        # Errors raised from model validators carry their own text after the prefix
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.setdefault(field, []).append(message)
    return errors


def validate_with_model(model: Optional[Type[BaseModel]], params: Mapping[str, Any]) -> BaseModel:
    """
    Validate raw request parameters.

    Raises:
        ValidationError: details map each failing field to its messages
    """
    model = model or EmptyParams
    try:
        return model.model_validate(dict(params))
    except pydantic.ValidationError as exc:
        raise ValidationError(details=field_errors(exc)) from None


def _flatten(prop: Dict[str, Any]) -> Dict[str, Any]:
    # Optional[X] renders as anyOf [X, null]; document X.
    if "anyOf" in prop:
        variants = [v for v in prop["anyOf"] if v.get("type") != "null"]
        if variants:
            merged = dict(variants[0])
            merged.update({k: v for k, v in prop.items() if k != "anyOf"})
            return merged
    return prop


def parameter_docs(model: Optional[Type[BaseModel]]) -> Dict[str, Dict[str, Any]]:
    """Per-parameter documentation derived from the model's JSON schema."""
    if model is None:
        return {}
    schema = model.model_json_schema()
    required = set(schema.get("required", ()))
    docs = {}
    for name, raw in schema.get("properties", {}).items():
        prop = _flatten(raw)
        entry = {
            "type": prop.get("type", "string"),
            "required": name in required,
            "description": prop.get("description", ""),
        }
        for key in _SCHEMA_KEYS:
            if key in prop:
                entry[key] = prop[key]
        docs[name] = entry
    return docs


def default_responses() -> Dict[str, Any]:
    return {
        "success": {
            "status": "success",
            "message": "Operation successful",
            "data": {},
            "timestamp": "2024-01-01T00:00:00Z",
        },
        "error": {
            "status": "error",
            "message": "Error message",
            "error_code": "ERROR_CODE",
            "details": {},
            "timestamp": "2024-01-01T00:00:00Z",
            "request_id": "00000000-0000-0000-0000-000000000000",
        },
    }


def example(action_type: str, title: str, params: Optional[Mapping[str, Any]] = None, data: Any = None) -> Dict[str, Any]:
    request = {"action_type": action_type}
    request.update(params or {})
    return {
        "title": title,
        "request": request,
        "response": {"status": "success", "data": data if data is not None else {}},
    }


def build_documentation(
    handler,
    name: str,
    description: str,
    responses: Optional[Mapping[str, Any]] = None,
    examples: Iterable[Mapping[str, Any]] = (),
    notes: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Assemble the self-description every handler returns from ``describe()``."""
    doc = {
        "action_type": handler.action_type,
        "name": name,
        "description": description,
        "version": handler.version,
        "enabled": handler.enabled,
        "required_capabilities": list(handler.required_capabilities()),
        "parameters": parameter_docs(handler.parameter_model),
        "responses": dict(responses) if responses else default_responses(),
        "examples": [dict(e) for e in examples],
    }
    if notes:
        doc["notes"] = list(notes)
    return doc


def log_action(handler, message: str, level: int = logging.INFO, **fields: Any) -> None:
    logger.log(
        level,
        message,
        extra=log_extra(action_type=handler.action_type, action_version=handler.version, **fields),
    )
