"""
Bearer credentials: storage, issuance and authentication.

Secrets are never stored. A credential row holds the SHA-256 hash of the
secret; the plaintext is returned exactly once, when the token is issued.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, List, Optional, Sequence, Tuple

from .config import Settings
from .db import Database
from .errors import AuthenticationError
from .logging_config import audit_log, log_extra
from .util import (
    generate_token,
    hash_password,
    isoformat_utc,
    parse_isoformat,
    sha256_hex,
    utc_now,
)

logger = logging.getLogger(__name__)

WILDCARD_CAPABILITY = "*"


def hash_token(token: str) -> str:
    """One-way function applied at issuance and at lookup."""
    return sha256_hex(token)


@dataclass
class User:
    id: int
    name: str
    email: str
    password_hash: str
    is_admin: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "User":
        return cls(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            password_hash=row["password_hash"],
            is_admin=bool(row["is_admin"]),
            created_at=parse_isoformat(row["created_at"]),
            updated_at=parse_isoformat(row["updated_at"]),
        )

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "is_admin": self.is_admin,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }


@dataclass
class Credential:
    id: int
    user_id: int
    token_hash: str
    name: str
    permissions: List[str] = field(default_factory=list)
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Credential":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            token_hash=row["token_hash"],
            name=row["name"],
            permissions=json.loads(row["permissions"]) if row["permissions"] else [],
            expires_at=parse_isoformat(row["expires_at"]),
            last_used_at=parse_isoformat(row["last_used_at"]),
            is_active=bool(row["is_active"]),
            created_at=parse_isoformat(row["created_at"]),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utc_now())

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        return self.is_active and not self.is_expired(now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "permissions": list(self.permissions),
            "expires_at": isoformat_utc(self.expires_at),
            "last_used_at": isoformat_utc(self.last_used_at),
            "is_active": self.is_active,
            "created_at": isoformat_utc(self.created_at),
        }


@dataclass(frozen=True)
class Identity:
    """The authenticated caller for one request."""
    user_id: int
    name: str
    email: str
    credential_id: int
    capabilities: FrozenSet[str]
    is_admin: bool = False

    def has_capability(self, capability: str) -> bool:
        return WILDCARD_CAPABILITY in self.capabilities or capability in self.capabilities


class UserStore:
    def __init__(self, db: Database):
        self.db = db

    def create(self, name: str, email: str, password: str, is_admin: bool = False) -> User:
        now = isoformat_utc(utc_now())
        with self.db.transaction() as conn:
            cur = conn.execute(
                "INSERT INTO users(name, email, password_hash, is_admin, created_at, updated_at) "
                "VALUES(?,?,?,?,?,?)",
                (name, email, hash_password(password), int(is_admin), now, now),
            )
            user_id = cur.lastrowid
        logger.info("User created", extra=log_extra(user_id=user_id, email=email))
        return self.get(user_id)

    def get(self, user_id: int) -> Optional[User]:
        row = self.db.connection().execute(
            "SELECT * FROM users WHERE id=?", (user_id,)
        ).fetchone()
        return User.from_row(row) if row else None

    def get_by_email(self, email: str) -> Optional[User]:
        row = self.db.connection().execute(
            "SELECT * FROM users WHERE email=?", (email,)
        ).fetchone()
        return User.from_row(row) if row else None

    def update(self, user_id: int, **fields) -> User:
        allowed = {"name", "email", "password_hash", "is_admin"}
        changes = {k: v for k, v in fields.items() if k in allowed}
        if changes:
            changes["updated_at"] = isoformat_utc(utc_now())
            assignments = ", ".join(f"{column}=?" for column in changes)
            with self.db.transaction() as conn:
                conn.execute(
                    f"UPDATE users SET {assignments} WHERE id=?",
                    (*changes.values(), user_id),
                )
        return self.get(user_id)

    def email_taken(self, email: str, exclude_user_id: Optional[int] = None) -> bool:
        row = self.db.connection().execute(
            "SELECT id FROM users WHERE email=? AND id IS NOT ?", (email, exclude_user_id)
        ).fetchone()
        return row is not None

    def search(
        self,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        limit: int = 15,
        offset: int = 0,
    ) -> Tuple[List[User], int]:
        """Page of users and the total match count; ``sort_by`` must already be whitelisted."""
        where, params = "", []
        if search:
            where = "WHERE name LIKE ? OR email LIKE ?"
            params = [f"%{search}%", f"%{search}%"]
        conn = self.db.connection()
        total = conn.execute(f"SELECT COUNT(*) AS cnt FROM users {where}", params).fetchone()["cnt"]
        direction = "ASC" if sort_order.lower() == "asc" else "DESC"
        rows = conn.execute(
            f"SELECT * FROM users {where} ORDER BY {sort_by} {direction}, id {direction} LIMIT ? OFFSET ?",
            (*params, limit, offset),
        ).fetchall()
        return [User.from_row(row) for row in rows], total

    def count(self) -> int:
        return self.db.connection().execute("SELECT COUNT(*) AS cnt FROM users").fetchone()["cnt"]


class CredentialStore:
    """Persisted bearer credentials, addressed by secret hash."""

    def __init__(self, db: Database):
        self.db = db

    def issue(
        self,
        user_id: int,
        name: str,
        permissions: Sequence[str] = (),
        expires_at: Optional[datetime] = None,
    ) -> Tuple[str, Credential]:
        """
        Create a credential for ``user_id``.

        Returns:
            (plaintext token, stored credential). The plaintext is not
            recoverable afterwards.
        """
        token = generate_token()
        with self.db.transaction() as conn:
            cur = conn.execute(
                "INSERT INTO api_tokens(user_id, token_hash, name, permissions, expires_at, "
                "is_active, created_at) VALUES(?,?,?,?,?,1,?)",
                (
                    user_id,
                    hash_token(token),
                    name,
                    json.dumps(list(permissions)),
                    isoformat_utc(expires_at),
                    isoformat_utc(utc_now()),
                ),
            )
            credential_id = cur.lastrowid
        logger.info(
            "API token created",
            extra=log_extra(
                user_id=user_id,
                label=name,
                permissions=list(permissions),
                expires_at=isoformat_utc(expires_at),
                credential_id=credential_id,
            ),
        )
        return token, self.get(credential_id)

    def get(self, credential_id: int) -> Optional[Credential]:
        row = self.db.connection().execute(
            "SELECT * FROM api_tokens WHERE id=?", (credential_id,)
        ).fetchone()
        return Credential.from_row(row) if row else None

    def find_by_hash(self, token_hash: str) -> Optional[Credential]:
        row = self.db.connection().execute(
            "SELECT * FROM api_tokens WHERE token_hash=?", (token_hash,)
        ).fetchone()
        return Credential.from_row(row) if row else None

    def find_by_token(self, token: str) -> Optional[Credential]:
        return self.find_by_hash(hash_token(token))

    def touch(self, credential_id: int) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE api_tokens SET last_used_at=? WHERE id=?",
                (isoformat_utc(utc_now()), credential_id),
            )

    def revoke(self, token: str) -> bool:
        with self.db.transaction() as conn:
            cur = conn.execute(
                "UPDATE api_tokens SET is_active=0 WHERE token_hash=? AND is_active=1",
                (hash_token(token),),
            )
        revoked = cur.rowcount == 1
        if revoked:
            logger.info("API token revoked")
        return revoked

    def revoke_all_for_user(self, user_id: int) -> int:
        with self.db.transaction() as conn:
            cur = conn.execute(
                "UPDATE api_tokens SET is_active=0 WHERE user_id=? AND is_active=1", (user_id,)
            )
        logger.info("All user tokens revoked", extra=log_extra(user_id=user_id, revoked_count=cur.rowcount))
        return cur.rowcount

    def revoke_by_name(self, user_id: int, name: str) -> int:
        with self.db.transaction() as conn:
            cur = conn.execute(
                "UPDATE api_tokens SET is_active=0 WHERE user_id=? AND name=? AND is_active=1",
                (user_id, name),
            )
        return cur.rowcount

    def list_for_user(self, user_id: int, active_only: bool = True) -> List[Credential]:
        sql = "SELECT * FROM api_tokens WHERE user_id=?"
        if active_only:
            sql += " AND is_active=1"
        rows = self.db.connection().execute(sql + " ORDER BY created_at DESC, id DESC", (user_id,)).fetchall()
        return [Credential.from_row(row) for row in rows]

    def cleanup_expired(self) -> int:
        """Deactivate every active credential whose expiry has passed."""
        with self.db.transaction() as conn:
            cur = conn.execute(
                "UPDATE api_tokens SET is_active=0 "
                "WHERE is_active=1 AND expires_at IS NOT NULL AND expires_at <= ?",
                (isoformat_utc(utc_now()),),
            )
        return cur.rowcount


class Authenticator:
    """
    Resolves a raw bearer value to an ``Identity``.

    Every failure raises the same ``AuthenticationError``; the specific
    cause goes to the audit log only.
    """

    def __init__(self, credentials: CredentialStore, users: UserStore, settings: Settings):
        self.credentials = credentials
        self.users = users
        self.settings = settings

    def authenticate(self, token: Optional[str], client_id: str = "unknown") -> Identity:
        if not token:
            return self._reject(client_id, "missing")

        credential = self.credentials.find_by_hash(hash_token(token))
        if credential is None:
            return self._reject(client_id, "unknown")
        if not credential.is_active:
            return self._reject(client_id, "inactive")
        if credential.is_expired():
            return self._reject(client_id, "expired")

        user = self.users.get(credential.user_id)
        if user is None:
            return self._reject(client_id, "orphaned")

        self._touch(credential.id)
        return Identity(
            user_id=user.id,
            name=user.name,
            email=user.email,
            credential_id=credential.id,
            capabilities=self.capabilities_for(credential, user),
            is_admin=user.is_admin,
        )

    def capabilities_for(self, credential: Credential, user: User) -> FrozenSet[str]:
        if credential.permissions:
            return frozenset(credential.permissions)
        capabilities = set(self.settings.default_capabilities)
        if user.is_admin:
            capabilities.update(self.settings.admin_capabilities)
        return frozenset(capabilities)

    def _touch(self, credential_id: int) -> None:
        try:
            self.credentials.touch(credential_id)
        except sqlite3.Error:
            logger.warning(
                "Failed to update token last_used_at",
                exc_info=True,
                extra=log_extra(credential_id=credential_id),
            )

    def _reject(self, client_id: str, reason: str) -> Identity:
        audit_log.authentication_failed(client_id=client_id, reason=reason)
        raise AuthenticationError()
