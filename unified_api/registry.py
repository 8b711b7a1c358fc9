"""
Action registry.

Maps an ``action_type`` string to an immutable ``ActionDescriptor``.
Descriptors come from an explicit manifest of handler factories
(``discover``) or from ``register`` calls. The registry is a service
object created once at bootstrap and passed to whoever needs it.

Lifecycle: EMPTY -> READY on first discovery; ``invalidate`` returns to
EMPTY and the next read rediscovers. Reads never take a lock: the
descriptor map is replaced wholesale under the single writer lock.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
)

from pydantic import BaseModel

from .context import ActionServices, RequestContext
from .errors import ActionNotFoundError, DuplicateActionError, Outcome
from .logging_config import log_extra
from .security import ACTION_TYPE_PATTERN

logger = logging.getLogger(__name__)


class ActionHandler(ABC):
    """
    Contract every action implements.

    Handlers are constructed per request, so instances may keep references
    to services but must not be shared between calls. Shared behaviour
    (schema validation, documentation, logging) lives in
    ``unified_api.actions.helpers`` and is called, not inherited.
    """

    action_type: str = ""
    version: str = "1.0.0"
    enabled: bool = True
    parameter_model: Optional[Type[BaseModel]] = None

    def __init__(self, services: ActionServices):
        self.services = services

    @abstractmethod
    def required_capabilities(self) -> Sequence[str]:
        """Capabilities a caller must hold; empty means public."""

    @abstractmethod
    def validate(self, params: Mapping[str, Any]) -> Any:
        """Return validated parameters or raise ``ValidationError``."""

    @abstractmethod
    def execute(self, context: RequestContext) -> Any:
        """Run the action; ``context.params`` holds the validated parameters."""

    @abstractmethod
    def describe(self) -> Dict[str, Any]:
        """Self-description used by the documentation generator."""


HandlerFactory = Callable[[ActionServices], ActionHandler]


class RegistryState(str, Enum):
    EMPTY = "EMPTY"
    READY = "READY"


@dataclass(frozen=True)
class ActionDescriptor:
    """Registry record for one action. Immutable for the process lifetime."""
    action_type: str
    version: str
    enabled: bool
    required_capabilities: Tuple[str, ...]
    parameter_model: Optional[Type[BaseModel]]
    factory: HandlerFactory
    source: str = "manifest"

    @property
    def handler_name(self) -> str:
        return getattr(self.factory, "__qualname__", repr(self.factory))

    def parameter_schema(self) -> Dict[str, Any]:
        if self.parameter_model is None:
            return {"type": "object", "properties": {}}
        return self.parameter_model.model_json_schema()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type,
            "version": self.version,
            "enabled": self.enabled,
            "required_capabilities": list(self.required_capabilities),
            "handler": self.handler_name,
            "source": self.source,
        }


RegistryListener = Callable[[str, List[str]], None]


class ActionRegistry:
    """
    Thread-safe action registry.

    ``resolve`` and ``list_all`` read an immutable snapshot; only
    discovery, registration and invalidation take the writer lock.
    """

    def __init__(self, manifest: Iterable[HandlerFactory] = (), services: Optional[ActionServices] = None):
        self._manifest: Tuple[HandlerFactory, ...] = tuple(manifest)
        self._services = services
        self._explicit: Dict[str, ActionDescriptor] = {}
        self._descriptors: Mapping[str, ActionDescriptor] = MappingProxyType({})
        self._state = RegistryState.EMPTY
        self._lock = threading.RLock()
        self._listeners: List[RegistryListener] = []
        self._discovery_count = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def discovery_count(self) -> int:
        return self._discovery_count

    def discover(self, force: bool = False) -> List[ActionDescriptor]:
        """
        Build descriptors from the manifest plus explicit registrations.

        Memoized: a READY registry returns its current snapshot unless
        ``force`` is set. Concurrent cold callers run one scan between them.

        Raises:
            DuplicateActionError: two factories report the same identifier
        """
        if self._state is RegistryState.READY and not force:
            return self.list_all()

        with self._lock:
            if self._state is RegistryState.READY and not force:
                return self.list_all()

            built: Dict[str, ActionDescriptor] = {}
            for factory in self._manifest:
                descriptor = self._describe_factory(factory, source="manifest")
                if descriptor.action_type in built:
                    raise DuplicateActionError(descriptor.action_type)
                built[descriptor.action_type] = descriptor

            for action_type, descriptor in self._explicit.items():
                if action_type in built:
                    raise DuplicateActionError(action_type)
                built[action_type] = descriptor

            self._descriptors = MappingProxyType(built)
            self._state = RegistryState.READY
            self._discovery_count += 1

        logger.info(
            "Action discovery complete",
            extra=log_extra(total_actions=len(built), discovery_count=self._discovery_count),
        )
        self._notify("discover", sorted(built))
        return self.list_all()

    def ensure_ready(self) -> None:
        if self._state is not RegistryState.READY:
            self.discover()

    def invalidate(self) -> None:
        """Drop the memoized discovery; the next read rescans the manifest."""
        with self._lock:
            self._state = RegistryState.EMPTY
        logger.info("Action registry invalidated")
        self._notify("invalidate", [])

    def refresh(self) -> List[ActionDescriptor]:
        self.invalidate()
        return self.discover()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def register(self, factory: HandlerFactory) -> ActionDescriptor:
        """
        Register one handler factory outside the manifest.

        Raises:
            DuplicateActionError: the identifier is already registered
        """
        self.ensure_ready()
        with self._lock:
            descriptor = self._describe_factory(factory, source="explicit")
            if descriptor.action_type in self._descriptors:
                raise DuplicateActionError(descriptor.action_type)
            self._explicit[descriptor.action_type] = descriptor
            updated = dict(self._descriptors)
            updated[descriptor.action_type] = descriptor
            self._descriptors = MappingProxyType(updated)

        logger.info(
            "Action registered",
            extra=log_extra(action_type=descriptor.action_type, handler=descriptor.handler_name),
        )
        self._notify("register", [descriptor.action_type])
        return descriptor

    def unregister(self, action_type: str) -> bool:
        """
        Remove an action from the current snapshot.

        Manifest actions come back on the next discovery; explicit ones do not.
        """
        self.ensure_ready()
        with self._lock:
            if action_type not in self._descriptors:
                return False
            self._explicit.pop(action_type, None)
            updated = dict(self._descriptors)
            del updated[action_type]
            self._descriptors = MappingProxyType(updated)

        logger.info("Action unregistered", extra=log_extra(action_type=action_type))
        self._notify("unregister", [action_type])
        return True

    def subscribe(self, listener: RegistryListener) -> None:
        """``listener(event, action_types)`` is called after every change."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def resolve(self, action_type: str) -> Outcome[ActionDescriptor]:
        """Look up an enabled action; unknown and disabled both fail with not-found."""
        self.ensure_ready()
        descriptor = self._descriptors.get(action_type)
        if descriptor is None:
            return Outcome.fail(ActionNotFoundError(action_type))
        if not descriptor.enabled:
            return Outcome.fail(ActionNotFoundError(action_type, f"Action is disabled: {action_type}"))
        return Outcome.ok(descriptor)

    def get(self, action_type: str) -> Optional[ActionDescriptor]:
        """Descriptor regardless of enabled flag, or None."""
        self.ensure_ready()
        return self._descriptors.get(action_type)

    def has(self, action_type: str) -> bool:
        return self.get(action_type) is not None

    def list_all(self) -> List[ActionDescriptor]:
        self.ensure_ready()
        snapshot = self._descriptors
        return [snapshot[key] for key in sorted(snapshot)]

    def action_types(self) -> List[str]:
        return [descriptor.action_type for descriptor in self.list_all()]

    def create_handler(self, descriptor: ActionDescriptor) -> ActionHandler:
        """Fresh handler instance for one request."""
        return descriptor.factory(self._services)

    def describe(self, action_type: str) -> Dict[str, Any]:
        descriptor = self.get(action_type)
        if descriptor is None:
            raise ActionNotFoundError(action_type)
        return self.create_handler(descriptor).describe()

    def statistics(self) -> Dict[str, Any]:
        descriptors = self.list_all()
        enabled = sum(1 for d in descriptors if d.enabled)
        return {
            "total_actions": len(descriptors),
            "enabled_actions": enabled,
            "disabled_actions": len(descriptors) - enabled,
            "version_distribution": dict(Counter(d.version for d in descriptors)),
            "explicit_registrations": len(self._explicit),
            "discovery_count": self._discovery_count,
            "state": self._state.value,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _describe_factory(self, factory: HandlerFactory, source: str) -> ActionDescriptor:
        handler = factory(self._services)
        if not isinstance(handler, ActionHandler):
            raise TypeError(f"Action factory must build an ActionHandler: {factory!r}")

        action_type = handler.action_type
        if not action_type or not ACTION_TYPE_PATTERN.match(action_type):
            raise ValueError(f"Invalid action identifier {action_type!r} from {factory!r}")

        return ActionDescriptor(
            action_type=action_type,
            version=handler.version,
            enabled=bool(handler.enabled),
            required_capabilities=tuple(handler.required_capabilities()),
            parameter_model=handler.parameter_model,
            factory=factory,
            source=source,
        )

    def _notify(self, event: str, action_types: List[str]) -> None:
        for listener in list(self._listeners):
            listener(event, action_types)
