"""
Bundled actions.

``MANIFEST`` is the complete, ordered list of handler factories the
registry discovers. Adding an action means adding its class here.
"""

from .system import PingAction, ServerStatusAction, SystemInfoAction
from .user import (
    ChangePasswordAction,
    UpdateProfileAction,
    UserInfoAction,
    UserListAction,
)

MANIFEST = (
    PingAction,
    SystemInfoAction,
    ServerStatusAction,
    UserInfoAction,
    UpdateProfileAction,
    ChangePasswordAction,
    UserListAction,
)

__all__ = [
    "MANIFEST",
    "PingAction",
    "SystemInfoAction",
    "ServerStatusAction",
    "UserInfoAction",
    "UpdateProfileAction",
    "ChangePasswordAction",
    "UserListAction",
]
