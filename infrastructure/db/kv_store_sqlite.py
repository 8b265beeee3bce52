from __future__ import annotations

import re
import sqlite3
from typing import List, Mapping, Optional

from domain.exceptions import StorageUnavailable
from domain.repositories import KeyValueStore

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SqliteKeyValueStore(KeyValueStore):
    """
    SQLite-backed implementation of `KeyValueStore`.

    Owns a two-column table (key, value) and is self-initialising: the
    table is created if needed. `rowid` preserves first-write order for
    `keys()`.
    """

    def __init__(self, db_path: str, table: str = "currency") -> None:
        if not _TABLE_NAME.match(table):
            raise ValueError(f"Invalid table name: {table!r}")
        self._db_path = db_path
        self._table = table
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(self._db_path, timeout=30)
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot open {self._db_path}: {exc}") from exc

    def _ensure_table(self) -> None:
        try:
            with self._get_connection() as conn:
                cur = conn.cursor()
                cur.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self._table} (
                        key TEXT PRIMARY KEY,
                        value INTEGER NOT NULL DEFAULT 0
                    )
                    """
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot initialise {self._table}: {exc}") from exc

    def get(self, key: str) -> Optional[int]:
        try:
            with self._get_connection() as conn:
                cur = conn.cursor()
                cur.execute(f"SELECT value FROM {self._table} WHERE key = ?", (key,))
                row = cur.fetchone()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot read {key!r}: {exc}") from exc
        if not row:
            return None
        return int(row[0])

    def set(self, key: str, value: int) -> None:
        self.set_many({key: value})

    def set_many(self, values: Mapping[str, int]) -> None:
        # The connection context manager commits on success and rolls
        # back every row on error.
        try:
            with self._get_connection() as conn:
                cur = conn.cursor()
                cur.executemany(
                    f"""
                    INSERT INTO {self._table} (key, value)
                    VALUES (?, ?)
                    ON CONFLICT (key) DO UPDATE SET value = excluded.value
                    """,
                    [(key, int(value)) for key, value in values.items()],
                )
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot write {sorted(values)}: {exc}") from exc

    def keys(self) -> List[str]:
        try:
            with self._get_connection() as conn:
                cur = conn.cursor()
                cur.execute(f"SELECT key FROM {self._table} ORDER BY rowid")
                rows = cur.fetchall()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot list {self._table}: {exc}") from exc
        return [str(row[0]) for row in rows]
