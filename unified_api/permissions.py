"""
Permission resolution.

An action's required capabilities are its descriptor's declared defaults
unless an active override row exists in ``action_permissions``. Overrides
are administrative data; they never touch the descriptors themselves.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from .credentials import WILDCARD_CAPABILITY, Identity
from .db import Database
from .errors import ActionNotFoundError, AuthorizationError
from .logging_config import audit_log, log_extra
from .registry import ActionDescriptor, ActionRegistry
from .util import isoformat_utc, parse_isoformat, utc_now

logger = logging.getLogger(__name__)


@dataclass
class PermissionOverride:
    action_type: str
    required_permissions: List[str] = field(default_factory=list)
    is_active: bool = True
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PermissionOverride":
        return cls(
            action_type=row["action_type"],
            required_permissions=json.loads(row["required_permissions"]),
            is_active=bool(row["is_active"]),
            description=row["description"],
            created_at=parse_isoformat(row["created_at"]),
            updated_at=parse_isoformat(row["updated_at"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type,
            "required_permissions": list(self.required_permissions),
            "is_active": self.is_active,
            "description": self.description,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }


class PermissionOverrideStore:
    """Rows of ``action_permissions``, keyed by action identifier."""

    def __init__(self, db: Database):
        self.db = db

    def get(self, action_type: str) -> Optional[PermissionOverride]:
        row = self.db.connection().execute(
            "SELECT * FROM action_permissions WHERE action_type=?", (action_type,)
        ).fetchone()
        return PermissionOverride.from_row(row) if row else None

    def list(self, active_only: bool = False) -> List[PermissionOverride]:
        sql = "SELECT * FROM action_permissions"
        if active_only:
            sql += " WHERE is_active=1"
        rows = self.db.connection().execute(sql + " ORDER BY action_type").fetchall()
        return [PermissionOverride.from_row(row) for row in rows]

    def upsert(
        self,
        action_type: str,
        required_permissions: Sequence[str],
        is_active: bool = True,
        description: Optional[str] = None,
    ) -> PermissionOverride:
        now = isoformat_utc(utc_now())
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO action_permissions(action_type, required_permissions, is_active, "
                "description, created_at, updated_at) VALUES(?,?,?,?,?,?) "
                "ON CONFLICT(action_type) DO UPDATE SET "
                "required_permissions=excluded.required_permissions, "
                "is_active=excluded.is_active, description=excluded.description, "
                "updated_at=excluded.updated_at",
                (
                    action_type,
                    json.dumps(list(required_permissions)),
                    int(is_active),
                    description,
                    now,
                    now,
                ),
            )
        return self.get(action_type)

    def delete(self, action_type: str) -> bool:
        with self.db.transaction() as conn:
            cur = conn.execute("DELETE FROM action_permissions WHERE action_type=?", (action_type,))
        return cur.rowcount == 1


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    required: Tuple[str, ...]
    missing: Tuple[str, ...] = ()

    def to_error(self) -> AuthorizationError:
        return AuthorizationError(
            details={
                "required_capabilities": list(self.required),
                "missing_capabilities": list(self.missing),
            }
        )


def missing_capabilities(granted: FrozenSet[str], required: Iterable[str]) -> Tuple[str, ...]:
    """Capabilities from ``required`` not covered by ``granted``; ``*`` covers all."""
    if WILDCARD_CAPABILITY in granted:
        return ()
    return tuple(sorted(set(required) - set(granted)))


class PermissionResolver:
    """Merges descriptor defaults with persisted overrides and decides access."""

    def __init__(self, registry: ActionRegistry, overrides: PermissionOverrideStore):
        self.registry = registry
        self.overrides = overrides

    def required_capabilities(self, action: Any) -> Tuple[str, ...]:
        """``action`` is a descriptor or an identifier."""
        descriptor = self._descriptor(action)
        override = self.overrides.get(descriptor.action_type)
        if override is not None and override.is_active:
            return tuple(override.required_permissions)
        return descriptor.required_capabilities

    def authorize(self, identity: Identity, action: Any) -> AuthorizationDecision:
        descriptor = self._descriptor(action)
        required = self.required_capabilities(descriptor)
        if not required:
            return AuthorizationDecision(allowed=True, required=())

        missing = missing_capabilities(identity.capabilities, required)
        if missing:
            audit_log.permission_denied(
                user_id=identity.user_id,
                action_type=descriptor.action_type,
                required=required,
                missing=missing,
            )
            return AuthorizationDecision(allowed=False, required=required, missing=missing)
        return AuthorizationDecision(allowed=True, required=required)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def get_override(self, action_type: str) -> Optional[PermissionOverride]:
        return self.overrides.get(action_type)

    def list_overrides(self) -> List[PermissionOverride]:
        return self.overrides.list()

    def set_override(
        self,
        action_type: str,
        required_permissions: Sequence[str],
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> PermissionOverride:
        """
        Create or replace the override for an action.

        Raises:
            ActionNotFoundError: no such action is registered
        """
        self._descriptor(action_type)
        override = self.overrides.upsert(action_type, required_permissions, is_active, description)
        logger.info(
            "Permission override set",
            extra=log_extra(action_type=action_type, required_permissions=list(required_permissions),
                            is_active=is_active),
        )
        return override

    def remove_override(self, action_type: str) -> bool:
        removed = self.overrides.delete(action_type)
        if removed:
            logger.info("Permission override removed", extra=log_extra(action_type=action_type))
        return removed

    def sync_overrides(self) -> Dict[str, List[str]]:
        """
        Reconcile stored overrides with the registry.

        Rows for unknown actions are deleted; every registered action without
        a row gets one carrying its declared defaults.
        """
        registered = {d.action_type: d for d in self.registry.list_all()}
        stored = {o.action_type for o in self.overrides.list()}
        created, removed = [], []

        for action_type in sorted(stored - set(registered)):
            self.overrides.delete(action_type)
            removed.append(action_type)

        for action_type in sorted(set(registered) - stored):
            descriptor = registered[action_type]
            self.overrides.upsert(
                action_type,
                descriptor.required_capabilities,
                description=f"Defaults for {action_type}",
            )
            created.append(action_type)

        logger.info("Permission overrides synced", extra=log_extra(created=created, removed=removed))
        return {"created": created, "removed": removed}

    def _descriptor(self, action: Any) -> ActionDescriptor:
        if isinstance(action, ActionDescriptor):
            return action
        descriptor = self.registry.get(action)
        if descriptor is None:
            raise ActionNotFoundError(action)
        return descriptor
