"""
Audit sinks for dispatch outcomes.

One record is written per dispatch, success or failure. The dispatcher
treats a failing sink as non-fatal.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from .db import Database
from .logging_config import audit_log
from .util import isoformat_utc, utc_now


@dataclass(frozen=True)
class AuditRecord:
    request_id: str
    user_id: Optional[int]
    action_type: Optional[str]
    outcome: str
    status_code: int
    duration_ms: float
    timestamp: str

    @classmethod
    def now(cls, **fields: Any) -> "AuditRecord":
        return cls(timestamp=isoformat_utc(utc_now()), **fields)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AuditSink:
    def write(self, record: AuditRecord) -> None:
        raise NotImplementedError


class LoggingAuditSink(AuditSink):
    """Emits each record as a ``DISPATCH_COMPLETE`` audit log line."""

    def write(self, record: AuditRecord) -> None:
        audit_log.dispatch_complete(
            request_id=record.request_id,
            action_type=record.action_type,
            outcome=record.outcome,
            status_code=record.status_code,
            duration_ms=record.duration_ms,
            user_id=record.user_id,
        )


class SqliteAuditSink(LoggingAuditSink):
    """Persists records to ``api_logs`` and also logs them."""

    def __init__(self, db: Database):
        self.db = db

    def write(self, record: AuditRecord) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO api_logs(request_id, user_id, action_type, outcome, status_code, "
                "duration_ms, created_at) VALUES(?,?,?,?,?,?,?)",
                (
                    record.request_id,
                    record.user_id,
                    record.action_type,
                    record.outcome,
                    record.status_code,
                    record.duration_ms,
                    record.timestamp,
                ),
            )
        super().write(record)


class AuditLogStore:
    """Read side of ``api_logs``."""

    def __init__(self, db: Database):
        self.db = db

    def recent(self, limit: int = 50, action_type: Optional[str] = None) -> List[Dict[str, Any]]:
        sql, params = "SELECT * FROM api_logs", []
        if action_type:
            sql += " WHERE action_type=?"
            params.append(action_type)
        sql += " ORDER BY seq DESC LIMIT ?"
        params.append(limit)
        return [dict(row) for row in self.db.connection().execute(sql, params).fetchall()]

    def for_request(self, request_id: str) -> List[Dict[str, Any]]:
        rows = self.db.connection().execute(
            "SELECT * FROM api_logs WHERE request_id=? ORDER BY seq", (request_id,)
        ).fetchall()
        return [dict(row) for row in rows]

    def usage_stats(self, top: int = 10) -> Dict[str, Any]:
        conn = self.db.connection()
        totals = conn.execute(
            "SELECT COUNT(*) AS total, "
            "SUM(CASE WHEN status_code < 400 THEN 1 ELSE 0 END) AS successes, "
            "AVG(duration_ms) AS avg_ms FROM api_logs"
        ).fetchone()
        top_rows = conn.execute(
            "SELECT action_type, COUNT(*) AS cnt FROM api_logs WHERE action_type IS NOT NULL "
            "GROUP BY action_type ORDER BY cnt DESC, action_type LIMIT ?",
            (top,),
        ).fetchall()
        total = totals["total"] or 0
        successes = totals["successes"] or 0
        return {
            "total_requests": total,
            "successful_requests": successes,
            "failed_requests": total - successes,
            "average_duration_ms": round(totals["avg_ms"] or 0.0, 2),
            "top_actions": {row["action_type"]: row["cnt"] for row in top_rows},
        }


def get_audit_sink(kind: str, db: Optional[Database] = None) -> AuditSink:
    if kind == "sqlite":
        if db is None:
            raise ValueError("sqlite audit sink requires a database")
        return SqliteAuditSink(db)
    if kind != "logging":
        logging.getLogger(__name__).warning("Unknown audit sink %r, using logging", kind)
    return LoggingAuditSink()
