# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for the SQL adapter layer."""

import pytest

from relay_worker.sql import SqliteAdapter, create_adapter
from relay_worker.sql.postgresql import _convert_placeholders


class TestCreateAdapter:
    """Tests for connection string parsing."""

    def test_absolute_path_is_sqlite(self):
        adapter = create_adapter("/tmp/relay.db")
        assert isinstance(adapter, SqliteAdapter)
        assert adapter.db_path == "/tmp/relay.db"

    def test_sqlite_prefix(self):
        adapter = create_adapter("sqlite:relay.db")
        assert isinstance(adapter, SqliteAdapter)
        assert adapter.db_path == "relay.db"

    def test_memory(self):
        assert create_adapter(":memory:").db_path == ":memory:"
        assert create_adapter("sqlite::memory:").db_path == ":memory:"

    def test_invalid_strings(self):
        with pytest.raises(ValueError, match="Invalid connection string"):
            create_adapter("relay.db")
        with pytest.raises(ValueError, match="Unknown database type"):
            create_adapter("mysql://localhost/relay")


class TestPlaceholders:
    """Tests for :name to %(name)s conversion."""

    def test_named_parameters(self):
        query = "SELECT * FROM messages WHERE id = :id AND status = :status"
        assert _convert_placeholders(query) == (
            "SELECT * FROM messages WHERE id = %(id)s AND status = %(status)s"
        )

    def test_casts_are_left_alone(self):
        assert _convert_placeholders("SELECT :value::text") == "SELECT %(value)s::text"


class TestSqliteTransaction:
    """Tests for SqliteAdapter.transaction."""

    @pytest.fixture
    def adapter(self, tmp_path):
        return SqliteAdapter(str(tmp_path / "tx.db"))

    async def _setup(self, adapter):
        await adapter.execute_script(
            "CREATE TABLE items (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL);"
        )

    @pytest.mark.asyncio
    async def test_commit_on_success(self, adapter):
        await self._setup(adapter)
        async with adapter.transaction() as tx:
            first = await tx.insert_returning_id("INSERT INTO items (name) VALUES (:name)", {"name": "a"})
            second = await tx.insert_returning_id("INSERT INTO items (name) VALUES (:name)", {"name": "b"})
            row = await tx.fetch_one("SELECT name FROM items WHERE id = :id", {"id": first})
        assert (first, second) == (1, 2)
        assert row == {"name": "a"}
        rows = await adapter.fetch_all("SELECT name FROM items ORDER BY id")
        assert [r["name"] for r in rows] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_rollback_on_exception(self, adapter):
        await self._setup(adapter)
        with pytest.raises(RuntimeError):
            async with adapter.transaction() as tx:
                await tx.execute("INSERT INTO items (name) VALUES (:name)", {"name": "lost"})
                raise RuntimeError("abort")
        assert await adapter.fetch_all("SELECT * FROM items") == []

    @pytest.mark.asyncio
    async def test_execute_returns_rowcount(self, adapter):
        await self._setup(adapter)
        await adapter.execute("INSERT INTO items (name) VALUES ('x')")
        async with adapter.transaction() as tx:
            assert await tx.execute("UPDATE items SET name = 'y'") == 1
            assert await tx.execute("UPDATE items SET name = 'z' WHERE id = 99") == 0

    @pytest.mark.asyncio
    async def test_upsert_updates_existing_row(self, adapter):
        await adapter.execute_script("CREATE TABLE kv (id TEXT PRIMARY KEY, value TEXT);")
        await adapter.upsert("kv", {"id": "k", "value": "1"}, ["id"])
        await adapter.upsert("kv", {"id": "k", "value": "2"}, ["id"])
        assert await adapter.fetch_all("SELECT * FROM kv") == [{"id": "k", "value": "2"}]
