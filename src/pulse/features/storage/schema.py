from __future__ import annotations

DURABLE_TABLE_NAME = "durable_store"
COOKIE_TABLE_NAME = "cookie_jar"

DURABLE_DDL = f"""
CREATE TABLE IF NOT EXISTS {DURABLE_TABLE_NAME} (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

# expires_ms NULL means no expiry
COOKIE_DDL = f"""
CREATE TABLE IF NOT EXISTS {COOKIE_TABLE_NAME} (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_ms BIGINT
);
"""


def create_schema(conn) -> None:
    """
    Create profile tables. No migrations. Safe to call on every open.
    """
    conn.execute(DURABLE_DDL)
    conn.execute(COOKIE_DDL)
