"""
Key-value mirror backend.

The store mirrors its whole state into one fixed key of a SyncSlot. The
slot is opaque to the store: values go in and come out as JSON-compatible
Python objects. SqliteSyncSlot keeps them in a small key/value table, so the
database file can live in a synchronized folder and follow the user across
machines.
"""
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import StorageReadError, StorageWriteError

logger = logging.getLogger(__name__)


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection in WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class SyncSlot:
    """Interface for key-value mirror backends."""

    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if the key is absent."""
        raise NotImplementedError

    def update(self, key: str, value: Any) -> None:
        """Store a value under key, replacing any previous value."""
        raise NotImplementedError


class MemorySyncSlot(SyncSlot):
    """Process-local slot. Values are JSON round-tripped so callers never alias them."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.update(key, value)

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def update(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageWriteError(f"Value for {key} is not serializable: {e}") from e


class SqliteSyncSlot(SyncSlot):
    """
    SQLite-backed slot: one row per key, JSON text values.

    A database that cannot be opened is not fatal here: the schema is
    retried on every access and failures surface as StorageReadError /
    StorageWriteError, which the store logs.
    """

    def __init__(self, db_path: str):
        self.db_path = str(db_path)
        self._schema_ready = False
        try:
            self._ensure_schema()
        except (sqlite3.Error, OSError) as e:
            logger.warning(f"Sync slot {self.db_path} unavailable: {e}")

    def _ensure_schema(self):
        if self._schema_ready:
            return
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()
        self._schema_ready = True

    def get(self, key: str) -> Optional[Any]:
        try:
            self._ensure_schema()
            with _connect(self.db_path) as conn:
                row = conn.execute(
                    "SELECT value FROM sync_state WHERE key = ?", (key,)
                ).fetchone()
        except (sqlite3.Error, OSError) as e:
            raise StorageReadError(f"Failed to read sync slot {key}: {e}") from e
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except (ValueError, RecursionError) as e:
            raise StorageReadError(f"Sync slot {key} holds invalid JSON: {e}") from e

    def update(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value)
            self._ensure_schema()
            with _connect(self.db_path) as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO sync_state (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, payload, datetime.now(timezone.utc).isoformat()),
                )
                conn.commit()
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            raise StorageWriteError(f"Failed to write sync slot {key}: {e}") from e
