"""SQLite-backed key-value storage for diagram state and provider credentials."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Protocol

CREDENTIAL_PREFIX = "credentials:"


class KeyValueStore(Protocol):
    """Protocol for durable string stores."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


def credential_key(provider: str) -> str:
    """Namespaced key under which a provider's API key is stored."""
    return f"{CREDENTIAL_PREFIX}{provider.strip().lower()}"


class SqliteStore:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        # Shared across FastAPI worker threads; writes are serialized below
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._lock = threading.Lock()

    def init_db(self) -> None:
        """Create tables."""
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
                );
                """
            )
            self._conn.commit()

    # ── Key-value ──

    def set(self, key: str, value: str) -> None:
        """Set a key-value pair (INSERT OR REPLACE)."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, datetime('now'))",
                (key, value),
            )
            self._conn.commit()

    def get(self, key: str) -> str | None:
        """Get a value by key, or None if not found."""
        with self._lock:
            cur = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = cur.fetchone()
        return row[0] if row else None

    def remove(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            self._conn.commit()

    def keys(self, prefix: str = "") -> list[str]:
        """List keys, optionally restricted to a prefix."""
        with self._lock:
            cur = self._conn.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            )
            return [row[0] for row in cur.fetchall()]

    # ── Credentials ──

    def set_credential(self, provider: str, api_key: str) -> None:
        self.set(credential_key(provider), api_key)

    def get_credential(self, provider: str) -> str | None:
        return self.get(credential_key(provider))

    def remove_credential(self, provider: str) -> None:
        self.remove(credential_key(provider))

    def list_credential_providers(self) -> list[str]:
        """Providers that have a stored credential (values are never listed)."""
        return [k[len(CREDENTIAL_PREFIX):] for k in self.keys(CREDENTIAL_PREFIX)]

    def close(self) -> None:
        self._conn.close()
