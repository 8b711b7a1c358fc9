"""
Audit sinks and the api_logs read side.
"""

import os
import tempfile
import unittest

from unified_api.audit import (
    AuditLogStore,
    AuditRecord,
    LoggingAuditSink,
    SqliteAuditSink,
    get_audit_sink,
)
from unified_api.config import validate_config, Settings
from unified_api.db import Database


def record(request_id, action_type="system.ping", status_code=200, outcome="success", duration_ms=5.0):
    return AuditRecord.now(
        request_id=request_id,
        user_id=1,
        action_type=action_type,
        outcome=outcome,
        status_code=status_code,
        duration_ms=duration_ms,
    )


class TestAuditLog(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.db = Database(os.path.join(self._tmp.name, "audit.db"))
        self.db.init_schema()
        self.sink = SqliteAuditSink(self.db)
        self.store = AuditLogStore(self.db)

    def tearDown(self):
        self.db.close()
        self._tmp.cleanup()

    def test_sqlite_sink_persists_and_logs(self):
        with self.assertLogs("unified_api.audit", level="INFO") as logs:
            self.sink.write(record("r1"))
        self.assertIn("DISPATCH_COMPLETE", logs.output[0])
        rows = self.store.for_request("r1")
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["outcome"], "success")

    def test_failure_logged_at_warning(self):
        with self.assertLogs("unified_api.audit", level="WARNING") as logs:
            LoggingAuditSink().write(record("r2", status_code=403, outcome="FORBIDDEN"))
        self.assertIn("FORBIDDEN", logs.output[0])

    def test_recent_newest_first_and_filtered(self):
        self.sink.write(record("a", action_type="system.ping"))
        self.sink.write(record("b", action_type="user.info"))
        self.sink.write(record("c", action_type="system.ping"))

        self.assertEqual([r["request_id"] for r in self.store.recent()], ["c", "b", "a"])
        self.assertEqual([r["request_id"] for r in self.store.recent(limit=1)], ["c"])
        self.assertEqual(
            [r["request_id"] for r in self.store.recent(action_type="system.ping")], ["c", "a"]
        )

    def test_usage_stats(self):
        self.sink.write(record("a", duration_ms=10.0))
        self.sink.write(record("b", duration_ms=20.0))
        self.sink.write(record("c", action_type=None, status_code=401, outcome="UNAUTHORIZED",
                               duration_ms=3.0))

        stats = self.store.usage_stats()
        self.assertEqual(stats["total_requests"], 3)
        self.assertEqual(stats["successful_requests"], 2)
        self.assertEqual(stats["failed_requests"], 1)
        self.assertEqual(stats["average_duration_ms"], 11.0)
        self.assertEqual(stats["top_actions"], {"system.ping": 2})

    def test_empty_stats(self):
        stats = self.store.usage_stats()
        self.assertEqual(stats["total_requests"], 0)
        self.assertEqual(stats["average_duration_ms"], 0.0)

    def test_reset_clears_rows_but_keeps_schema(self):
        self.sink.write(record("a"))
        self.db.reset()
        self.assertEqual(self.db.stats()["api_logs_count"], 0)
        self.sink.write(record("b"))
        self.assertEqual(self.db.stats()["api_logs_count"], 1)

    def test_sink_selection(self):
        self.assertIsInstance(get_audit_sink("sqlite", self.db), SqliteAuditSink)
        self.assertIsInstance(get_audit_sink("logging"), LoggingAuditSink)
        self.assertNotIsInstance(get_audit_sink("logging"), SqliteAuditSink)
        with self.assertRaises(ValueError):
            get_audit_sink("sqlite")


class TestValidateConfig(unittest.TestCase):

    def test_checks(self):
        with tempfile.TemporaryDirectory() as tmp:
            good = Settings(env="prod", db_path=os.path.join(tmp, "x.db"), audit_sink="logging")
            self.assertTrue(all(validate_config(good).values()))
            self.assertTrue(good.production)

            bad = good.with_overrides(env="qa", dispatch_rpm=0, audit_sink="s3")
            checks = validate_config(bad)
            self.assertFalse(checks["env"])
            self.assertFalse(checks["dispatch_rpm"])
            self.assertFalse(checks["audit_sink"])


if __name__ == "__main__":
    unittest.main()
