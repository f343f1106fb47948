"""Integration tests for database connection, schema and transactions.

Verifies SQLite setup (WAL mode, foreign keys, table creation from the
configured names) and the transaction contract the closure engine relies on:
commit, rollback, savepoints and serialization of concurrent writers.
"""

import asyncio
import os
import sqlite3
import tempfile

import pytest

from closuretree.config import ClosureColumns, Settings
from closuretree.db.connection import Database, StorageError

_INSERT = "INSERT INTO entities (id, position, data, created_at) VALUES (?, 0, '{}', '2026-01-01')"


async def _ids(db: Database) -> set[str]:
    return {row["id"] for row in await db.fetchall("SELECT id FROM entities")}


class TestDatabaseConnection:
    async def test_connect_creates_tables(self, db):
        """Database.connect creates the entity table and its closure table."""
        rows = await db.fetchall("SELECT name FROM sqlite_master WHERE type='table'")
        table_names = {row["name"] for row in rows}
        assert "entities" in table_names
        assert "entities_closure" in table_names

    async def test_configured_names_are_used(self):
        """Table and column names come from Settings."""
        settings = Settings(
            entity_table="folders",
            closure_table="folder_paths",
            position_column="sort_order",
            columns=ClosureColumns(ancestor="up", descendant="down", depth="hops"),
        )
        db = await Database.connect(":memory:", settings)
        try:
            tables = {
                row["name"]
                for row in await db.fetchall("SELECT name FROM sqlite_master WHERE type='table'")
            }
            assert {"folders", "folder_paths"} <= tables

            columns = {row["name"] for row in await db.fetchall("PRAGMA table_info(folder_paths)")}
            assert columns == {"up", "down", "hops"}
            entity_columns = {row["name"] for row in await db.fetchall("PRAGMA table_info(folders)")}
            assert "sort_order" in entity_columns
        finally:
            await db.close()

    async def test_wal_mode_on_file_database(self):
        """File-based database uses WAL journal mode."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "test.db")
            db = await Database.connect(path)
            try:
                row = await db.fetchone("PRAGMA journal_mode")
                assert row is not None
                assert row["journal_mode"] == "wal"
            finally:
                await db.close()

    async def test_foreign_keys_enabled(self, db):
        row = await db.fetchone("PRAGMA foreign_keys")
        assert row is not None
        assert row["foreign_keys"] == 1

    async def test_schema_idempotent(self, db):
        """Calling _ensure_schema twice does not error."""
        await db._ensure_schema()
        rows = await db.fetchall("SELECT name FROM sqlite_master WHERE type='table'")
        assert len(rows) == 2

    async def test_closure_depth_cannot_be_negative(self, db):
        await db.execute(_INSERT, ("A",))
        with pytest.raises(StorageError):
            await db.execute("INSERT INTO entities_closure VALUES ('A', 'A', -1)")

    async def test_closure_rows_need_existing_records(self, db):
        with pytest.raises(StorageError):
            await db.execute("INSERT INTO entities_closure VALUES ('ghost', 'ghost', 0)")

    async def test_failed_statement_leaves_no_open_transaction(self, db):
        with pytest.raises(StorageError):
            await db.execute("INSERT INTO entities_closure VALUES ('ghost', 'ghost', 0)")
        async with db.transaction():
            await db.execute(_INSERT, ("A",))
        assert await _ids(db) == {"A"}


class TestTransactions:
    async def test_commit_on_success(self, db):
        async with db.transaction():
            await db.execute(_INSERT, ("A",))
            assert db.in_transaction
        assert not db.in_transaction
        assert await _ids(db) == {"A"}

    async def test_rollback_on_error(self, db):
        """Everything written inside a failing block disappears."""
        with pytest.raises(RuntimeError):
            async with db.transaction():
                await db.execute(_INSERT, ("A",))
                raise RuntimeError("boom")
        assert await _ids(db) == set()

    async def test_constraint_violation_rolls_back_whole_block(self, db):
        with pytest.raises(StorageError):
            async with db.transaction():
                await db.execute(_INSERT, ("A",))
                await db.execute(_INSERT, ("A",))
        assert await _ids(db) == set()

    async def test_nested_transaction_is_savepoint(self, db):
        """A failing inner block rolls back alone; the outer block still commits."""
        async with db.transaction():
            await db.execute(_INSERT, ("outer",))
            with pytest.raises(RuntimeError):
                async with db.transaction():
                    await db.execute(_INSERT, ("inner",))
                    raise RuntimeError("inner failure")
            await db.execute(_INSERT, ("after",))
        assert await _ids(db) == {"outer", "after"}

    async def test_nested_success_commits_with_outer(self, db):
        async with db.transaction():
            async with db.transaction():
                await db.execute(_INSERT, ("inner",))
        assert await _ids(db) == {"inner"}

    async def test_other_tasks_wait_for_commit(self, db):
        """A reader in another task never sees half of an open transaction."""
        started = asyncio.Event()

        async def writer():
            async with db.transaction():
                await db.execute(_INSERT, ("X",))
                started.set()
                await asyncio.sleep(0.05)
                await db.execute(_INSERT, ("Y",))

        async def reader():
            await started.wait()
            return await _ids(db)

        _, seen = await asyncio.gather(writer(), reader())
        assert seen == {"X", "Y"}

    async def test_concurrent_transactions_serialize(self, db):
        order: list[str] = []

        async def work(name: str):
            async with db.transaction():
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                await db.execute(_INSERT, (name,))
                order.append(f"{name}-end")

        await asyncio.gather(work("a"), work("b"))
        assert order in (
            ["a-start", "a-end", "b-start", "b-end"],
            ["b-start", "b-end", "a-start", "a-end"],
        )
        assert await _ids(db) == {"a", "b"}

    async def test_spawned_task_statement_raises(self, db):
        """A task created inside the transaction cannot wait on its parent's lock."""
        with pytest.raises(StorageError):
            async with db.transaction():
                await db.execute(_INSERT, ("parent",))
                await asyncio.wait_for(
                    asyncio.gather(db.execute(_INSERT, ("child",))), timeout=2
                )
        assert await _ids(db) == set()

    async def test_task_outliving_transaction_runs_normally(self, db):
        gate = asyncio.Event()

        async def later():
            await gate.wait()
            await db.execute(_INSERT, ("late",))

        async with db.transaction():
            await db.execute(_INSERT, ("early",))
            task = asyncio.create_task(later())
        gate.set()
        await task
        assert await _ids(db) == {"early", "late"}

    async def test_failed_savepoint_rollback_is_storage_error(self, db, monkeypatch):
        real_execute = db._conn.execute

        async def failing_rollback(sql, *args):
            if sql.startswith("ROLLBACK TO"):
                raise sqlite3.OperationalError("disk I/O error")
            return await real_execute(sql, *args)

        monkeypatch.setattr(db._conn, "execute", failing_rollback)
        with pytest.raises(StorageError):
            async with db.transaction():
                await db.execute(_INSERT, ("A",))
                async with db.transaction():
                    raise RuntimeError("inner failure")
        assert not db.in_transaction
        monkeypatch.undo()
        assert await _ids(db) == set()
