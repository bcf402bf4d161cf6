from __future__ import annotations

import os

import duckdb

from pulse.core.types import Clock, epoch_ms

from .schema import COOKIE_TABLE_NAME, DURABLE_TABLE_NAME, create_schema


class DuckDBProfileAdapter:
    """
    Persists a browser profile's two stores in one DuckDB file so identity and
    session survive across process runs. Owns the connection and schema.
    """

    def __init__(self, path: str, *, clean_slate: bool = False) -> None:
        self.path = path
        self.clean_slate = clean_slate
        self._conn: duckdb.DuckDBPyConnection | None = None

    def open(self) -> None:
        if self.clean_slate and os.path.exists(self.path):
            os.remove(self.path)

        # Ensure parent dir exists
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        self._conn = duckdb.connect(self.path)
        create_schema(self._conn)

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise RuntimeError("DuckDBProfileAdapter not opened. Call open() first.")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def durable_store(self) -> DuckDBDurableStore:
        return DuckDBDurableStore(self)

    def cookie_jar(self, clock: Clock) -> DuckDBCookieJar:
        return DuckDBCookieJar(self, clock)

    def count_keys(self) -> int:
        """
        Convenience method for sanity checks/tests.
        """
        res = self.conn.execute(
            f"SELECT (SELECT COUNT(*) FROM {DURABLE_TABLE_NAME}) + (SELECT COUNT(*) FROM {COOKIE_TABLE_NAME})"
        ).fetchone()
        return int(res[0]) if res else 0


class DuckDBDurableStore:
    def __init__(self, adapter: DuckDBProfileAdapter) -> None:
        self._adapter = adapter

    def get(self, key: str) -> str | None:
        row = self._adapter.conn.execute(
            f"SELECT value FROM {DURABLE_TABLE_NAME} WHERE key = ?", [key]
        ).fetchone()
        return str(row[0]) if row else None

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        self._adapter.conn.execute(
            f"INSERT OR REPLACE INTO {DURABLE_TABLE_NAME} (key, value) VALUES (?, ?)", [key, value]
        )

    def delete(self, key: str) -> None:
        self._adapter.conn.execute(f"DELETE FROM {DURABLE_TABLE_NAME} WHERE key = ?", [key])


class DuckDBCookieJar:
    """
    Same expiry rules as storage.types.CookieJar, evaluated against `clock`.
    """

    def __init__(self, adapter: DuckDBProfileAdapter, clock: Clock) -> None:
        self._adapter = adapter
        self._clock = clock

    def get(self, key: str) -> str | None:
        row = self._adapter.conn.execute(
            f"SELECT value, expires_ms FROM {COOKIE_TABLE_NAME} WHERE key = ?", [key]
        ).fetchone()
        if row is None:
            return None
        value, expires_ms = row
        if expires_ms is not None and int(expires_ms) <= epoch_ms(self._clock.now()):
            self.delete(key)
            return None
        return str(value)

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        if ttl_seconds is not None and ttl_seconds <= 0:
            self.delete(key)
            return
        expires_ms = None if ttl_seconds is None else epoch_ms(self._clock.now()) + ttl_seconds * 1000
        self._adapter.conn.execute(
            f"INSERT OR REPLACE INTO {COOKIE_TABLE_NAME} (key, value, expires_ms) VALUES (?, ?, ?)",
            [key, value, expires_ms],
        )

    def delete(self, key: str) -> None:
        self._adapter.conn.execute(f"DELETE FROM {COOKIE_TABLE_NAME} WHERE key = ?", [key])
