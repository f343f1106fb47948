"""Async SQLite connection wrapper with WAL mode, schema initialization and transactions."""

import asyncio
import contextvars
import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from typing import Any

import aiosqlite

from closuretree.config import Settings
from closuretree.db.schema import schema_sql

logger = logging.getLogger(__name__)

# Transactions open in the current context. Tasks spawned inside a transaction
# inherit a copy, which is how they are told apart from unrelated tasks.
_open_transactions: contextvars.ContextVar[tuple[object, ...]] = contextvars.ContextVar(
    "closuretree_open_transactions", default=()
)


class Database:
    """Thin async wrapper around aiosqlite with WAL mode, auto-schema and transactions.

    A single connection is shared by every caller. While a task holds a
    transaction it owns the connection: statements from other tasks wait on
    the lock until it commits or rolls back, so they never observe (or commit)
    half of someone else's work. Transactions opened again by the owning task
    nest as savepoints.
    """

    def __init__(self, connection: aiosqlite.Connection, settings: Settings | None = None) -> None:
        self._conn = connection
        self.settings = settings or Settings()
        self._lock = asyncio.Lock()
        self._owner: asyncio.Task | None = None
        self._token: object | None = None
        self._savepoints = 0

    @classmethod
    async def connect(
        cls, path: str | None = None, settings: Settings | None = None
    ) -> "Database":
        """Create a connection with WAL mode, foreign keys, and schema init."""
        settings = settings or Settings()
        try:
            conn = await aiosqlite.connect(path or settings.database_path)
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            await conn.execute("PRAGMA busy_timeout=5000")
        except aiosqlite.Error as e:
            raise StorageError(f"Cannot open database: {e}") from e
        db = cls(conn, settings)
        await db._ensure_schema()
        return db

    async def _ensure_schema(self) -> None:
        """Create tables if they don't exist. Idempotent."""
        try:
            await self._conn.executescript(schema_sql(self.settings))
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Cannot create schema: {e}") from e

    @property
    def in_transaction(self) -> bool:
        """True when the calling task currently owns an open transaction."""
        return self._owner is not None and self._owner is asyncio.current_task()

    def _check_not_spawned(self) -> None:
        """Refuse statements from tasks spawned inside the open transaction.

        Such a task would wait on the lock its parent holds while the parent
        waits on it.
        """
        token = self._token
        if token is not None and token in _open_transactions.get() and not self.in_transaction:
            raise StorageError(
                "Statement issued from a task spawned inside an open transaction; "
                "await it from the task that opened the transaction instead"
            )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Database"]:
        """Run the enclosed block atomically.

        Commits when the block exits normally and rolls back on any exception,
        cancellation included. Re-entering from the owning task opens a
        savepoint that is rolled back on its own if its block fails.
        """
        if self.in_transaction:
            async with self._savepoint():
                yield self
            return
        self._check_not_spawned()

        async with self._lock:
            self._owner = asyncio.current_task()
            self._token = object()
            context_token = _open_transactions.set(_open_transactions.get() + (self._token,))
            try:
                await self._run(self._conn.execute, "BEGIN IMMEDIATE")
                try:
                    yield self
                except BaseException:
                    await self._conn.rollback()
                    raise
                try:
                    await self._conn.commit()
                except aiosqlite.Error as e:
                    await self._conn.rollback()
                    raise StorageError(f"Commit failed: {e}") from e
            finally:
                _open_transactions.reset(context_token)
                self._owner = None
                self._token = None

    @asynccontextmanager
    async def _savepoint(self) -> AsyncIterator[None]:
        self._savepoints += 1
        name = f"sp_{self._savepoints}"
        try:
            await self._run(self._conn.execute, f"SAVEPOINT {name}")
            try:
                yield
            except BaseException:
                await self._run(self._conn.execute, f"ROLLBACK TO SAVEPOINT {name}")
                await self._run(self._conn.execute, f"RELEASE SAVEPOINT {name}")
                raise
            await self._run(self._conn.execute, f"RELEASE SAVEPOINT {name}")
        finally:
            self._savepoints -= 1

    async def execute(self, sql: str, params: Sequence[Any] | None = None) -> aiosqlite.Cursor:
        """Execute a single SQL statement.

        Outside a transaction the statement is committed immediately.
        """
        self._check_not_spawned()
        if self.in_transaction:
            return await self._run(self._conn.execute, sql, params or ())
        async with self._lock:
            return await self._autocommit(self._conn.execute, sql, params or ())

    async def executemany(
        self, sql: str, params: Iterable[Sequence[Any]]
    ) -> aiosqlite.Cursor:
        """Execute a statement once per parameter tuple."""
        self._check_not_spawned()
        if self.in_transaction:
            return await self._run(self._conn.executemany, sql, params)
        async with self._lock:
            return await self._autocommit(self._conn.executemany, sql, params)

    async def fetchone(self, sql: str, params: Sequence[Any] | None = None) -> aiosqlite.Row | None:
        """Execute and return a single row."""
        self._check_not_spawned()
        if self.in_transaction:
            cursor = await self._run(self._conn.execute, sql, params or ())
            return await cursor.fetchone()
        async with self._lock:
            cursor = await self._run(self._conn.execute, sql, params or ())
            return await cursor.fetchone()

    async def fetchall(self, sql: str, params: Sequence[Any] | None = None) -> list[aiosqlite.Row]:
        """Execute and return all rows."""
        self._check_not_spawned()
        if self.in_transaction:
            cursor = await self._run(self._conn.execute, sql, params or ())
            return list(await cursor.fetchall())
        async with self._lock:
            cursor = await self._run(self._conn.execute, sql, params or ())
            return list(await cursor.fetchall())

    async def close(self) -> None:
        """Close the database connection."""
        await self._conn.close()

    async def _autocommit(self, method, *args) -> aiosqlite.Cursor:
        """Run one statement in its own transaction; a failed statement leaves none open."""
        try:
            cursor = await self._run(method, *args)
            await self._run(self._conn.commit)
        except StorageError:
            await self._conn.rollback()
            raise
        return cursor

    @staticmethod
    async def _run(method, *args):
        try:
            return await method(*args)
        except aiosqlite.Error as e:
            logger.debug("SQLite error: %s", e)
            raise StorageError(str(e)) from e


class StorageError(Exception):
    """Constraint violation or connectivity failure in the backing store."""
