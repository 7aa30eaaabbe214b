# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SQLite async adapter using aiosqlite."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import aiosqlite

from .base import DbAdapter, Transaction

if TYPE_CHECKING:
    from collections.abc import Sequence


class SqliteTransaction(Transaction):
    """Statements bound to one aiosqlite connection inside ``BEGIN IMMEDIATE``."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        cursor = await self._db.execute(query, params or {})
        return cursor.rowcount

    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        async with self._db.execute(query, params or {}) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            cols = [c[0] for c in cursor.description]
            return dict(zip(cols, row, strict=True))

    async def insert_returning_id(self, query: str, params: dict[str, Any] | None = None) -> int | None:
        cursor = await self._db.execute(query, params or {})
        return cursor.lastrowid


class SqliteAdapter(DbAdapter):
    """SQLite async adapter. Opens connection per-operation for thread safety.

    Transactions take the database write lock up front (``BEGIN IMMEDIATE``)
    so a read-then-write sequence cannot interleave with another writer.
    """

    errors = (aiosqlite.Error,)
    autoincrement_pk = "INTEGER PRIMARY KEY AUTOINCREMENT"
    lock_clause = ""

    def __init__(self, db_path: str, timeout: float = 30.0):
        """Initialize SQLite adapter.

        Args:
            db_path: Path to SQLite file, or ":memory:" for in-memory DB.
            timeout: Seconds to wait for the write lock held by another connection.
        """
        self.db_path = db_path or ":memory:"
        self.timeout = timeout

    def _connect(self, **kwargs: Any) -> aiosqlite.Connection:
        return aiosqlite.connect(self.db_path, timeout=self.timeout, **kwargs)

    async def connect(self) -> None:
        """SQLite connections are opened per-operation, this is a no-op."""
        pass

    async def close(self) -> None:
        """SQLite connections are closed per-operation, this is a no-op."""
        pass

    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        """Execute query, return affected row count."""
        async with self._connect() as db:
            cursor = await db.execute(query, params or {})
            await db.commit()
            return cursor.rowcount

    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute query, return single row as dict or None."""
        async with self._connect() as db:
            async with db.execute(query, params or {}) as cursor:
                row = await cursor.fetchone()
                if row is None:
                    return None
                cols = [c[0] for c in cursor.description]
                return dict(zip(cols, row, strict=True))

    async def fetch_all(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute query, return all rows as list of dicts."""
        async with self._connect() as db:
            async with db.execute(query, params or {}) as cursor:
                rows = await cursor.fetchall()
                cols = [c[0] for c in cursor.description]
                return [dict(zip(cols, row, strict=True)) for row in rows]

    async def execute_script(self, script: str) -> None:
        """Execute multiple statements (for schema creation)."""
        async with self._connect() as db:
            await db.executescript(script)
            await db.commit()

    async def upsert(
        self,
        table: str,
        data: dict[str, Any],
        conflict_columns: Sequence[str],
    ) -> int:
        """Insert or update using SQLite ON CONFLICT DO UPDATE."""
        columns = list(data.keys())
        placeholders = ", ".join(f":{c}" for c in columns)
        col_list = ", ".join(columns)
        conflict_cols = ", ".join(conflict_columns)
        update_cols = ", ".join(f"{c} = excluded.{c}" for c in columns if c not in conflict_columns)

        query = f"""
            INSERT INTO {table} ({col_list}) VALUES ({placeholders})
            ON CONFLICT ({conflict_cols}) DO UPDATE SET {update_cols}
        """
        return await self.execute(query, data)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqliteTransaction]:
        """Run statements in one ``BEGIN IMMEDIATE`` ... ``COMMIT`` block."""
        async with self._connect(isolation_level=None) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield SqliteTransaction(db)
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            await db.execute("COMMIT")
