# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Base adapter classes for async database backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from collections.abc import Sequence


class Transaction(ABC):
    """Connection-bound handle used inside :meth:`DbAdapter.transaction`.

    Statements run on the same connection and commit together when the
    ``async with`` block exits cleanly; any exception rolls them back.
    """

    @abstractmethod
    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        """Execute query, return affected row count."""
        ...

    @abstractmethod
    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute query, return single row as dict or None."""
        ...

    @abstractmethod
    async def insert_returning_id(self, query: str, params: dict[str, Any] | None = None) -> int | None:
        """Execute an INSERT into a table with an ``id`` autoincrement key, return the new id."""
        ...


class DbAdapter(ABC):
    """Abstract base class for async database adapters.

    All queries use :name placeholders (supported by both SQLite and PostgreSQL).

    Attributes:
        errors: Driver exception types that callers translate into
            ``Err(StoreError)`` values.
        autoincrement_pk: Column definition for an integer autoincrement key.
        lock_clause: Suffix that row-locks a SELECT inside a transaction.
    """

    errors: ClassVar[tuple[type[BaseException], ...]] = ()
    autoincrement_pk: ClassVar[str] = "INTEGER PRIMARY KEY"
    lock_clause: ClassVar[str] = ""

    @abstractmethod
    async def connect(self) -> None:
        """Establish database connection."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close database connection."""
        ...

    @abstractmethod
    async def execute(self, query: str, params: dict[str, Any] | None = None) -> int:
        """Execute query, return affected row count."""
        ...

    @abstractmethod
    async def fetch_one(
        self, query: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Execute query, return single row as dict or None."""
        ...

    @abstractmethod
    async def fetch_all(
        self, query: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute query, return all rows as list of dicts."""
        ...

    @abstractmethod
    async def execute_script(self, script: str) -> None:
        """Execute multiple statements (for schema creation)."""
        ...

    @abstractmethod
    async def upsert(
        self,
        table: str,
        data: dict[str, Any],
        conflict_columns: Sequence[str],
    ) -> int:
        """Insert or update row on conflict.

        Args:
            table: Table name.
            data: Column-value pairs to insert/update.
            conflict_columns: Columns that define uniqueness (typically PK).

        Returns:
            Affected row count.
        """
        ...

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[Transaction]:
        """Open a transaction on a dedicated connection.

        Usage::

            async with adapter.transaction() as tx:
                await tx.execute("UPDATE ...", {...})
        """
        ...
