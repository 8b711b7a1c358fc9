"""
Database module for the Unified Action API.

Provides SQLite-based storage for users, bearer credentials, permission
overrides and the request audit log. Each thread reuses its own connection.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        is_admin INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );""",
    """
    CREATE TABLE IF NOT EXISTS api_tokens (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        token_hash TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        permissions TEXT,
        expires_at TEXT,
        last_used_at TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    );""",
    """
    CREATE INDEX IF NOT EXISTS idx_api_tokens_user
    ON api_tokens(user_id, is_active);""",
    """
    CREATE TABLE IF NOT EXISTS action_permissions (
        action_type TEXT PRIMARY KEY,
        required_permissions TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        description TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );""",
    """
    CREATE TABLE IF NOT EXISTS api_logs (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        request_id TEXT NOT NULL,
        user_id INTEGER,
        action_type TEXT,
        outcome TEXT NOT NULL,
        status_code INTEGER NOT NULL,
        duration_ms REAL NOT NULL,
        created_at TEXT NOT NULL
    );""",
    """
    CREATE INDEX IF NOT EXISTS idx_api_logs_action
    ON api_logs(action_type);""",
    """
    CREATE INDEX IF NOT EXISTS idx_api_logs_request
    ON api_logs(request_id);""",
)

TABLES = ("api_logs", "action_permissions", "api_tokens", "users")


class Database:
    """
    Thin wrapper around a SQLite file.

    Connections are thread-local and opened lazily; use ``transaction()``
    for writes so they commit on success and roll back on failure.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._local = threading.local()
        self._connections = []
        self._connections_lock = threading.Lock()

    def connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.
        Automatically commits on success, rolls back on failure.
        """
        conn = self.connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def init_schema(self) -> None:
        """
        Initialize database schema with indexes.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    def stats(self) -> Dict[str, int]:
        """Row counts per table, for health reporting."""
        conn = self.connection()
        result = {}
        for table in TABLES:
            cur = conn.execute(f"SELECT COUNT(*) AS cnt FROM {table}")
            result[f"{table}_count"] = cur.fetchone()["cnt"]
        return result

    def ping(self) -> bool:
        try:
            self.connection().execute("SELECT 1").fetchone()
        except sqlite3.Error:
            return False
        return True

    def reset(self) -> None:
        """
        Clear all tables but preserve schema.
        Used for test isolation.
        """
        with self.transaction() as conn:
            for table in TABLES:
                conn.execute(f"DELETE FROM {table}")

    def close(self) -> None:
        """Close every connection this database opened."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()
