"""
Configuration module for the Unified Action API.

Centralizes all configuration with environment variable support
and validation. Services receive a ``Settings`` snapshot so tests can
override values without touching the process environment.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Tuple


def _csv(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("UNIFIED_API_ENV", "dev")  # dev|stage|prod

# Storage
DB_PATH = os.getenv("UNIFIED_API_DB_PATH", "data/unified_api.db")

# Rate limits (requests per minute, per client)
DISPATCH_RPM = int(os.getenv("DISPATCH_RPM", "120"))

# Request shape
ACTION_TYPE_MAX_LENGTH = int(os.getenv("ACTION_TYPE_MAX_LENGTH", "100"))

# Capabilities granted when a credential carries none of its own
DEFAULT_CAPABILITIES = _csv(os.getenv(
    "DEFAULT_CAPABILITIES", "user.read,user.update,user.change_password"
))
ADMIN_CAPABILITIES = _csv(os.getenv(
    "ADMIN_CAPABILITIES",
    "user.list,system.read,system.server_status,admin.read,admin.write",
))

# Documentation
API_TITLE = os.getenv("API_TITLE", "Unified Action API")
API_DESCRIPTION = os.getenv(
    "API_DESCRIPTION",
    "Single-endpoint API: every request is a POST naming an action_type.",
)
API_VERSION = os.getenv("API_VERSION", "1.0.0")
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
API_CONTACT_EMAIL = os.getenv("API_CONTACT_EMAIL", "support@example.com")

# Key rate limits on X-Forwarded-For; enable only behind a trusted proxy
TRUST_FORWARDED_FOR = os.getenv("TRUST_FORWARDED_FOR", "0").lower() in ("1", "true", "yes")

# Audit sink: sqlite|logging
AUDIT_SINK = os.getenv("AUDIT_SINK", "sqlite")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "1").lower() in ("1", "true", "yes")


# ============================================================
# Feature Flags
# ============================================================

def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("UNIFIED_API_DEBUG", "").lower() in ("1", "true", "yes")


# ============================================================
# Settings snapshot
# ============================================================

@dataclass(frozen=True)
class Settings:
    env: str = ENV
    db_path: str = DB_PATH
    dispatch_rpm: int = DISPATCH_RPM
    trust_forwarded_for: bool = TRUST_FORWARDED_FOR
    action_type_max_length: int = ACTION_TYPE_MAX_LENGTH
    default_capabilities: Tuple[str, ...] = DEFAULT_CAPABILITIES
    admin_capabilities: Tuple[str, ...] = ADMIN_CAPABILITIES
    api_title: str = API_TITLE
    api_description: str = API_DESCRIPTION
    api_version: str = API_VERSION
    api_base_url: str = API_BASE_URL
    api_contact_email: str = API_CONTACT_EMAIL
    audit_sink: str = AUDIT_SINK

    @property
    def production(self) -> bool:
        return self.env == "prod"

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)


def load_settings() -> Settings:
    """Build a settings snapshot from the current module configuration."""
    return Settings()


# ============================================================
# Validation
# ============================================================

def _dir_writable(path: Path) -> bool:
    # Missing directories are created on first connect.
    return os.access(path, os.W_OK) if path.exists() else True


def validate_config(settings: Settings = None) -> Dict[str, bool]:
    """
    Validate configuration values that can be checked up front.
    Returns dict of check name -> passed.
    """
    settings = settings or load_settings()
    return {
        "env": settings.env in ("dev", "stage", "prod"),
        "db_dir_writable": _dir_writable(Path(settings.db_path).parent),
        "dispatch_rpm": settings.dispatch_rpm > 0,
        "action_type_max_length": settings.action_type_max_length > 0,
        "audit_sink": settings.audit_sink in ("sqlite", "logging"),
    }
