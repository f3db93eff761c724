import asyncio
import json
import sqlite3
import time
from pathlib import Path
from threading import Lock
from typing import Any, List, Optional

CACHE_PREFIX = "cache_"
DEFAULT_CACHE_MINUTES = 60


class StorageError(RuntimeError):
    """Raised when the on-device key-value store cannot be read or written."""


class KeyValueStore:
    """Durable JSON key-value store on top of SQLite.

    Every public method is a coroutine; the blocking SQLite work runs in a
    worker thread so callers on the event loop only suspend at the I/O
    boundary. Any sqlite or encoding failure surfaces as ``StorageError``.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv_entries (
                        key TEXT PRIMARY KEY,
                        value_json TEXT NOT NULL,
                        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                    )
                    """
                )
                conn.commit()

    async def get(self, key: str) -> Any:
        raw = await self._run(self._read_raw, key)
        return self._safe_json(raw)

    async def set(self, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value for {key!r} is not JSON serializable") from exc
        await self._run(self._write_raw, key, encoded)

    async def remove(self, key: str) -> None:
        await self._run(self._delete_keys, [key])

    async def set_cache_item(self, key: str, value: Any, expiration_minutes: float = DEFAULT_CACHE_MINUTES) -> None:
        expiration = int(time.time() * 1000 + expiration_minutes * 60 * 1000)
        await self.set(f"{CACHE_PREFIX}{key}", {"data": value, "expiration": expiration})

    async def get_cache_item(self, key: str) -> Any:
        cache_key = f"{CACHE_PREFIX}{key}"
        entry = await self.get(cache_key)
        if not isinstance(entry, dict) or "expiration" not in entry:
            return None
        expiration = entry["expiration"]
        if isinstance(expiration, (int, float)) and not isinstance(expiration, bool) and time.time() * 1000 < expiration:
            return entry.get("data")
        await self.remove(cache_key)
        return None

    async def remove_cache_item(self, key: str) -> None:
        await self.remove(f"{CACHE_PREFIX}{key}")

    async def clear_cache(self) -> None:
        keys = await self._run(self._keys_with_prefix, CACHE_PREFIX)
        if keys:
            await self._run(self._delete_keys, keys)

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

    def _read_raw(self, key: str) -> Optional[str]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT value_json FROM kv_entries WHERE key = ?", (key,)).fetchone()
        return row["value_json"] if row else None

    def _write_raw(self, key: str, encoded: str) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO kv_entries (key, value_json, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                        value_json = excluded.value_json,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, encoded),
                )
                conn.commit()

    def _delete_keys(self, keys: List[str]) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.executemany("DELETE FROM kv_entries WHERE key = ?", [(key,) for key in keys])
                conn.commit()

    def _keys_with_prefix(self, prefix: str) -> List[str]:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT key FROM kv_entries WHERE key LIKE ? ESCAPE '\\'",
                    (f"{escaped}%",),
                ).fetchall()
        return [row["key"] for row in rows]

    @staticmethod
    def _safe_json(raw_value: Optional[str]) -> Any:
        if raw_value in (None, ""):
            return None
        try:
            return json.loads(raw_value)
        except json.JSONDecodeError:
            return None
