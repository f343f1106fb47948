"""Node records: the entity layer the closure engine collaborates with.

The engine never touches entity rows directly. It reads positions through
closure-aware queries and writes them, and removes records, through a
NodeRepository. SqliteNodeRepository keeps the records in the entity table
that sits next to the closure table in the same database.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from closuretree.config import Settings
from closuretree.db.connection import Database
from closuretree.models import Node


class NodeRepository(ABC):
    """Persistence contract for node records (identity, position, lifecycle)."""

    @abstractmethod
    async def create(self, node_id: str, data: dict[str, Any] | None = None) -> Node:
        """Persist a new record at position 0. Closure rows are the engine's job."""
        ...

    @abstractmethod
    async def get(self, node_id: str) -> Node | None:
        """Fetch a live (not soft-deleted) record."""
        ...

    @abstractmethod
    async def exists(self, node_id: str) -> bool:
        ...

    @abstractmethod
    async def set_position(self, node_id: str, position: int) -> None:
        ...

    @abstractmethod
    async def shift_positions(self, node_ids: Sequence[str], delta: int) -> int:
        """Add `delta` to the position of every listed record. Returns the count."""
        ...

    @abstractmethod
    async def delete(self, node_ids: Sequence[str], hard: bool = True) -> int:
        """Remove records: hard delete drops rows, soft delete stamps deleted_at."""
        ...


class SqliteNodeRepository(NodeRepository):
    def __init__(self, db: Database, settings: Settings | None = None) -> None:
        self._db = db
        settings = settings or db.settings
        self._table = settings.entity_table
        self._position = settings.position_column

    async def create(self, node_id: str, data: dict[str, Any] | None = None) -> Node:
        now = datetime.now(UTC).isoformat()
        await self._db.execute(
            f"INSERT INTO {self._table} (id, {self._position}, data, created_at) "
            "VALUES (?, 0, ?, ?)",
            (node_id, json.dumps(data or {}), now),
        )
        return Node(id=node_id, position=0, data=data or {}, created_at=now)

    async def get(self, node_id: str) -> Node | None:
        row = await self._db.fetchone(
            f"SELECT id, {self._position} AS position, data, created_at, deleted_at "
            f"FROM {self._table} WHERE id = ? AND deleted_at IS NULL",
            (node_id,),
        )
        if row is None:
            return None
        return self._row_to_node(row)

    async def exists(self, node_id: str) -> bool:
        return await self.get(node_id) is not None

    async def set_position(self, node_id: str, position: int) -> None:
        await self._db.execute(
            f"UPDATE {self._table} SET {self._position} = ? WHERE id = ?",
            (position, node_id),
        )

    async def shift_positions(self, node_ids: Sequence[str], delta: int) -> int:
        if not node_ids or delta == 0:
            return 0
        placeholders = ", ".join("?" for _ in node_ids)
        cursor = await self._db.execute(
            f"UPDATE {self._table} SET {self._position} = {self._position} + ? "
            f"WHERE id IN ({placeholders})",
            (delta, *node_ids),
        )
        return cursor.rowcount

    async def delete(self, node_ids: Sequence[str], hard: bool = True) -> int:
        if not node_ids:
            return 0
        placeholders = ", ".join("?" for _ in node_ids)
        if hard:
            cursor = await self._db.execute(
                f"DELETE FROM {self._table} WHERE id IN ({placeholders})",
                tuple(node_ids),
            )
        else:
            cursor = await self._db.execute(
                f"UPDATE {self._table} SET deleted_at = ? "
                f"WHERE id IN ({placeholders}) AND deleted_at IS NULL",
                (datetime.now(UTC).isoformat(), *node_ids),
            )
        return cursor.rowcount

    @staticmethod
    def _row_to_node(row) -> Node:
        return Node(
            id=row["id"],
            position=row["position"],
            data=json.loads(row["data"]) if row["data"] else {},
            created_at=row["created_at"],
            deleted_at=row["deleted_at"],
        )
