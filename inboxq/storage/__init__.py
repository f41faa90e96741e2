"""Storage - email cache tiers, credential records, repositories"""

from __future__ import annotations

import sqlite3
from typing import Any

from inboxq.infrastructure.database import db_transaction, get_db_connection


def _is_identifier(name: str) -> bool:
    return isinstance(name, str) and name.replace("_", "").isalnum()


class BaseRepository:
    """Row access for one table keyed by a single column.

    Table and key names are interpolated into SQL, so both must be plain
    identifiers; values always travel as parameters.
    """

    def __init__(self, table_name: str, key_column: str) -> None:
        for name in (table_name, key_column):
            if not _is_identifier(name):
                raise ValueError(f"Invalid SQL identifier: {name!r}")
        self.table_name = table_name
        self.key_column = key_column

    def find(self, key: str, columns: str = "*") -> sqlite3.Row | None:
        """Fetch the row for ``key``, or None."""
        sql = f"SELECT {columns} FROM {self.table_name} WHERE {self.key_column} = ?"
        with get_db_connection() as conn:
            return conn.execute(sql, (key,)).fetchone()

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """
        Run a write statement inside a transaction

        Returns:
            Number of rows affected
        """
        with db_transaction() as conn:
            return conn.execute(sql, params).rowcount


__all__ = ["BaseRepository"]
