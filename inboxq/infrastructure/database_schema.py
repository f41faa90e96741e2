"""
Database schema initialization for InboxQ's customer record store.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from inboxq.observability.logging import get_logger

logger = get_logger(__name__)

EXPECTED_TABLES = {"user_credentials"}


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Safe to run multiple times - uses CREATE TABLE IF NOT EXISTS.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS user_credentials (
                user_id TEXT PRIMARY KEY,
                encrypted_token_json TEXT NOT NULL,
                scopes TEXT NOT NULL DEFAULT '[]',
                token_expiry TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                last_refresh_at TIMESTAMP
            );
        """)
        conn.commit()
    finally:
        conn.close()

    logger.info("Database initialized at %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate database has expected schema

    Raises:
        ValueError: If tables are missing
    """
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    existing = {row[0] for row in rows}
    missing = EXPECTED_TABLES - existing
    if missing:
        raise ValueError(f"Missing tables: {', '.join(sorted(missing))}")
    return True
