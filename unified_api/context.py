"""
Per-process services and per-request context handed to action handlers.
"""

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Optional

from .config import Settings
from .credentials import CredentialStore, Identity, UserStore
from .db import Database

if TYPE_CHECKING:
    from .registry import ActionDescriptor, ActionRegistry


@dataclass
class ActionServices:
    """Collaborators a handler may use. Built once during bootstrap."""
    settings: Settings
    db: Database
    users: UserStore
    credentials: CredentialStore
    registry: Optional["ActionRegistry"] = None
    started_at: float = field(default_factory=time.time)


@dataclass
class RequestContext:
    """
    Everything known about one call while it is being dispatched.

    Owned by the dispatcher and discarded after the response is formatted;
    never persisted.
    """
    request_id: str
    started_at: float
    raw_params: Mapping[str, Any]
    requested_action: Optional[str] = None
    identity: Optional[Identity] = None
    descriptor: Optional["ActionDescriptor"] = None
    params: Any = None
    services: Optional[ActionServices] = None

    @property
    def action_type(self) -> Optional[str]:
        return self.descriptor.action_type if self.descriptor else self.requested_action

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.started_at) * 1000, 2)
