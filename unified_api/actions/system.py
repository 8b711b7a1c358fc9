"""
System actions: liveness, application info and host status.
"""

import os
import platform
import shutil
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from ..registry import ActionHandler
from ..util import isoformat_utc, utc_now
from .helpers import build_documentation, example, log_action, validate_with_model


def format_bytes(size: float) -> str:
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024 or unit == "TB":
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} TB"


class PingAction(ActionHandler):
    action_type = "system.ping"

    def required_capabilities(self):
        return []

    def validate(self, params):
        return validate_with_model(self.parameter_model, params)

    def execute(self, context):
        now = utc_now()
        return {
            "message": "pong",
            "timestamp": isoformat_utc(now),
            "server_time": now.strftime("%Y-%m-%d %H:%M:%S"),
            "user_id": context.identity.user_id if context.identity else None,
            "system_status": "healthy",
        }

    def describe(self):
        return build_documentation(
            self,
            name="Ping",
            description="Checks that the API is up and the bearer token is accepted.",
            examples=[
                example(self.action_type, "Basic ping", data={"message": "pong", "system_status": "healthy"}),
            ],
        )


class SystemInfoParams(BaseModel):
    type: Literal["basic", "stats", "health"] = Field(
        "basic", description="Information type: basic, stats or health"
    )


class SystemInfoAction(ActionHandler):
    action_type = "system.info"
    parameter_model = SystemInfoParams

    def required_capabilities(self):
        return ["system.read"]

    def validate(self, params):
        return validate_with_model(self.parameter_model, params)

    def execute(self, context):
        builders = {
            "basic": self._basic,
            "stats": self._stats,
            "health": self._health,
        }
        return {
            "system_info": builders[context.params.type](),
            "timestamp": isoformat_utc(utc_now()),
        }

    def _basic(self) -> Dict[str, Any]:
        settings = self.services.settings
        return {
            "app_name": settings.api_title,
            "app_version": settings.api_version,
            "python_version": platform.python_version(),
            "environment": settings.env,
            "platform": platform.system(),
        }

    def _stats(self) -> Dict[str, Any]:
        db = self.services.db
        stats = {
            "total_users": self.services.users.count(),
            "database_size": format_bytes(db.path.stat().st_size) if db.path.exists() else "N/A",
        }
        if self.services.registry is not None:
            stats["actions"] = self.services.registry.statistics()
        return stats

    def _health(self) -> Dict[str, Any]:
        checks = {
            "database": "healthy" if self.services.db.ping() else "unhealthy",
            "storage": _storage_health(str(self.services.db.path.parent)),
        }
        overall = "healthy" if all(v == "healthy" for v in checks.values()) else "unhealthy"
        return {"overall_status": overall, "checks": checks}

    def describe(self):
        return build_documentation(
            self,
            name="System information",
            description="Returns application info, usage statistics or health checks.",
            examples=[
                example(self.action_type, "Basic info", {"type": "basic"}, {"system_info": {"app_name": "Unified Action API"}}),
                example(self.action_type, "Health checks", {"type": "health"}, {"system_info": {"overall_status": "healthy"}}),
            ],
        )


def _storage_health(path: str) -> str:
    try:
        usage = shutil.disk_usage(path if os.path.isdir(path) else ".")
    except OSError:
        return "unhealthy"
    return "healthy" if usage.used / usage.total < 0.9 else "warning"


class ServerStatusParams(BaseModel):
    include_details: bool = Field(False, description="Include runtime and dependency details")


class ServerStatusAction(ActionHandler):
    action_type = "system.server_status"
    parameter_model = ServerStatusParams

    def required_capabilities(self):
        return ["system.server_status"]

    def validate(self, params):
        return validate_with_model(self.parameter_model, params)

    def execute(self, context):
        status = {
            "uptime": self._uptime(),
            "memory_usage": _memory_usage(),
            "disk_usage": _disk_usage(str(self.services.db.path.parent)),
            "load_average": _load_average(),
            "timestamp": isoformat_utc(utc_now()),
        }
        if context.params.include_details:
            status["details"] = {
                "python_version": platform.python_version(),
                "implementation": platform.python_implementation(),
                "platform": platform.platform(),
                "pid": os.getpid(),
                "database_status": "connected" if self.services.db.ping() else "disconnected",
            }
        log_action(
            self,
            "Server status queried",
            user_id=context.identity.user_id if context.identity else None,
            include_details=context.params.include_details,
        )
        return {"server_status": status}

    def _uptime(self) -> Dict[str, Any]:
        seconds = int(time.time() - self.services.started_at)
        return {
            "seconds": seconds,
            "started_at": isoformat_utc(_from_epoch(self.services.started_at)),
        }

    def describe(self):
        return build_documentation(
            self,
            name="Server status",
            description="Reports process uptime, memory, disk and load.",
            examples=[
                example(self.action_type, "Summary", data={"server_status": {"uptime": {"seconds": 3600}}}),
                example(self.action_type, "With details", {"include_details": True}),
            ],
        )


def _from_epoch(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _memory_usage() -> Dict[str, Any]:
    try:
        import resource
    except ImportError:
        return {"status": "unavailable"}
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is kilobytes on Linux, bytes on macOS
    peak_bytes = peak if sys.platform == "darwin" else peak * 1024
    return {"peak": format_bytes(peak_bytes), "peak_bytes": peak_bytes}


def _disk_usage(path: str) -> Dict[str, Any]:
    try:
        usage = shutil.disk_usage(path if os.path.isdir(path) else ".")
    except OSError:
        return {"total": "N/A", "used": "N/A", "free": "N/A", "usage_percent": None, "status": "unknown"}
    percent = round(usage.used / usage.total * 100, 2)
    return {
        "total": format_bytes(usage.total),
        "used": format_bytes(usage.used),
        "free": format_bytes(usage.free),
        "usage_percent": percent,
        "status": "warning" if percent > 90 else "normal",
    }


def _load_average() -> Optional[Dict[str, float]]:
    if not hasattr(os, "getloadavg"):
        return None
    one, five, fifteen = os.getloadavg()
    return {"1min": round(one, 2), "5min": round(five, 2), "15min": round(fifteen, 2)}
