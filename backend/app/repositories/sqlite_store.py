from __future__ import annotations

import logging
import sqlite3

from backend.app.repositories.common import utc_now_iso
from backend.app.repositories.database import Database
from backend.app.repositories.storage import StorageError

LOGGER = logging.getLogger("inkwell.storage")


class SqliteKeyValueStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, key: str) -> str | None:
        try:
            with self._db.connection() as conn:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?",
                    (key,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise _storage_error("get", key, exc) from exc
        if row is None:
            return None
        return str(row["value"])

    def put(self, key: str, value: str) -> None:
        try:
            with self._db.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value, utc_now_iso()),
                )
        except sqlite3.Error as exc:
            raise _storage_error("put", key, exc) from exc

    def delete(self, key: str) -> None:
        try:
            with self._db.connection() as conn:
                conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise _storage_error("delete", key, exc) from exc

    def list_keys(self, prefix: str) -> list[str]:
        try:
            with self._db.connection() as conn:
                rows = conn.execute(
                    """
                    SELECT key
                    FROM kv_store
                    WHERE substr(key, 1, length(?)) = ?
                    ORDER BY key
                    """,
                    (prefix, prefix),
                ).fetchall()
        except sqlite3.Error as exc:
            raise _storage_error("list_keys", prefix, exc) from exc
        return [str(row["key"]) for row in rows]


def _storage_error(operation: str, key: str, exc: sqlite3.Error) -> StorageError:
    LOGGER.error(
        "sqlite key-value operation failed operation=%s key=%s error_type=%s",
        operation,
        key,
        type(exc).__name__,
    )
    return StorageError(f"sqlite {operation} failed for key {key!r}: {exc}", key=key)
