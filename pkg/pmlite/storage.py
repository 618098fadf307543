"""
Local key/value persistence (SQLite).

Every payload is a JSON document stored under a fixed key. Reads never raise:
an absent, empty or unparsable value yields the caller's fallback. Writes are
best effort: failures are logged and dropped.
"""
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

# ── Keys ─────────────────────────────────────────────────────────────────────
TASKS_KEY = "pm_tasks_v1"
PROJECTS_KEY = "pm_projects_v1"
NOTIFY_KEY = "pm_notify_v1"
SCHEMA_KEY = "pm_schema_v"
SESSION_KEY = "pm_session_v1"

DEFAULT_DB = Path.home() / ".local" / "share" / "pmlite" / "pmlite.db"


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection in WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class LocalStorage:
    """SQLite-backed key/value store holding JSON payloads."""

    def __init__(self, db_path: Optional[str] = None):
        if db_path is None:
            db_path = str(DEFAULT_DB)
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()

    def get_raw(self, key: str) -> Optional[str]:
        """Raw stored text for key, or None if absent or unreadable."""
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
            return row["value"] if row else None
        except sqlite3.Error as e:
            logger.debug(f"Read of {key} failed: {e}")
            return None

    def set_raw(self, key: str, value: str) -> bool:
        """Store raw text under key. Returns False (and logs) on failure."""
        now = datetime.now(timezone.utc).isoformat()
        try:
            with _connect(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO kv_store (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
                """, (key, value, now))
                conn.commit()
            return True
        except sqlite3.Error as e:
            logger.debug(f"Write of {key} failed: {e}")
            return False

    def load(self, key: str, fallback: Any = None) -> Any:
        """Parsed JSON value for key, or fallback if absent, empty, null or corrupt."""
        raw = self.get_raw(key)
        if not raw:
            return fallback
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.debug(f"Stored value for {key} is not valid JSON, using fallback")
            return fallback
        return fallback if parsed is None else parsed

    def save(self, key: str, value: Any) -> None:
        """Serialize value to JSON and store it. Failures are discarded."""
        try:
            text = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.debug(f"Value for {key} is not JSON serializable: {e}")
            return
        self.set_raw(key, text)

    def delete(self, key: str) -> None:
        try:
            with _connect(self.db_path) as conn:
                conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                conn.commit()
        except sqlite3.Error as e:
            logger.debug(f"Delete of {key} failed: {e}")
