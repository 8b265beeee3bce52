from __future__ import annotations

import re
from contextlib import closing
from typing import List, Mapping, Optional

import psycopg2

from domain.exceptions import StorageUnavailable
from domain.repositories import KeyValueStore

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class PostgresKeyValueStore(KeyValueStore):
    """
    Postgres-backed implementation of `KeyValueStore`.

    Uses a `(key, value, created)` table; the serial `created` column
    gives `keys()` a stable first-write order.
    """

    def __init__(self, db_params: dict, table: str = "currency") -> None:
        if not _TABLE_NAME.match(table):
            raise ValueError(f"Invalid table name: {table!r}")
        self._db_params = db_params
        self._table = table
        self._ensure_table()

    def _get_connection(self):
        try:
            return psycopg2.connect(**self._db_params)
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"Cannot connect to Postgres: {exc}") from exc

    def _ensure_table(self) -> None:
        try:
            with closing(self._get_connection()) as conn, conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"""
                        CREATE TABLE IF NOT EXISTS {self._table} (
                            key TEXT PRIMARY KEY,
                            value BIGINT NOT NULL DEFAULT 0,
                            created BIGSERIAL
                        )
                        """
                    )
                    conn.commit()
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"Cannot initialise {self._table}: {exc}") from exc

    def get(self, key: str) -> Optional[int]:
        try:
            with closing(self._get_connection()) as conn, conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"SELECT value FROM {self._table} WHERE key = %s",
                        (key,),
                    )
                    row = cur.fetchone()
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"Cannot read {key!r}: {exc}") from exc
        if not row:
            return None
        return int(row[0])

    def set(self, key: str, value: int) -> None:
        self.set_many({key: value})

    def set_many(self, values: Mapping[str, int]) -> None:
        try:
            with closing(self._get_connection()) as conn, conn:
                with conn.cursor() as cur:
                    cur.executemany(
                        f"""
                        INSERT INTO {self._table} (key, value)
                        VALUES (%s, %s)
                        ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
                        """,
                        [(key, int(value)) for key, value in values.items()],
                    )
                    conn.commit()
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"Cannot write {sorted(values)}: {exc}") from exc

    def keys(self) -> List[str]:
        try:
            with closing(self._get_connection()) as conn, conn:
                with conn.cursor() as cur:
                    cur.execute(f"SELECT key FROM {self._table} ORDER BY created")
                    rows = cur.fetchall()
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"Cannot list {self._table}: {exc}") from exc
        return [str(row[0]) for row in rows]
