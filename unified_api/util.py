"""
Utility functions for the Unified Action API.

Provides hashing, password hashing, token generation and time utilities.
"""

import hashlib
import secrets
import string
from datetime import datetime, timezone
from typing import Optional, Union

import bcrypt

_TOKEN_ALPHABET = string.ascii_letters + string.digits


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def generate_token(length: int = 80) -> str:
    """Generate a random alphanumeric bearer secret."""
    return ''.join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
    """Render an aware or naive-UTC datetime as ISO-8601 with a ``Z`` suffix."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_isoformat(value: Optional[str]) -> Optional[datetime]:
    """Parse a timestamp written by ``isoformat_utc``."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# bcrypt only reads the first 72 bytes of a password.
BCRYPT_MAX_BYTES = 72


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with bcrypt; the result carries its own salt and cost."""
    encoded = password.encode('utf-8')
    if len(encoded) > BCRYPT_MAX_BYTES:
        raise ValueError(f"Password longer than {BCRYPT_MAX_BYTES} bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds)).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    encoded = password.encode('utf-8')
    if len(encoded) > BCRYPT_MAX_BYTES or not password_hash:
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash.encode('utf-8'))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False
