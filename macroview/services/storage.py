# macroview/services/storage.py — durable key/value tier (string keys, string values)
from __future__ import annotations

from typing import Dict, List, Optional, Protocol
import os
import sqlite3

DB_PATH = os.getenv("MACROVIEW_DB_PATH", "macroview_cache.sqlite")


class KeyValueStorage(Protocol):
    """Minimal localStorage-style contract used by CacheStore and QuotaGuard."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> List[str]: ...


class MemoryStorage:
    """Dict-backed storage; used in tests and when durability is switched off."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]


class SQLiteStorage:
    """One row per key in a single `kv` table. Survives process restarts."""

    def __init__(self, path: str = DB_PATH) -> None:
        self.path = path
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )

    def get_item(self, key: str) -> Optional[str]:
        row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        self._conn.execute(
            "INSERT INTO kv (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, str(value)),
        )

    def remove_item(self, key: str) -> None:
        self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def keys(self, prefix: str = "") -> List[str]:
        # escape LIKE wildcards; cache keys contain ":" and "@" but may contain "_"
        esc = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        rows = self._conn.execute("SELECT key FROM kv WHERE key LIKE ? ESCAPE '\\'", (esc + "%",)).fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        self._conn.close()


def open_storage(durable: Optional[bool] = None, path: Optional[str] = None) -> KeyValueStorage:
    if durable is None:
        durable = os.getenv("MACROVIEW_DURABLE", "1") == "1"
    if not durable:
        return MemoryStorage()
    return SQLiteStorage(path or DB_PATH)


__all__ = ["KeyValueStorage", "MemoryStorage", "SQLiteStorage", "open_storage", "DB_PATH"]
