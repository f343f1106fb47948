"""Closure store: transactional CRUD over the closure relation.

Translates QueryPlanner descriptors into SQL for the configured table and
column names. Knows nothing about tree semantics; the engine decides which
rows to write.
"""

import json
from collections.abc import Awaitable, Callable, Iterable, Sequence
from contextlib import AbstractAsyncContextManager
from typing import Any, TypeVar

from closuretree.config import Settings
from closuretree.db.connection import Database
from closuretree.models import CLOSURE_FIELDS, ClosureMetadata, ClosureRow, Node
from closuretree.closure.planner import Condition, NodeQuery, Predicate, Subquery

T = TypeVar("T")

# Entity columns the store selects explicitly; other node filters must be valid identifiers.
_NODE_COLUMNS = ("id", "data", "created_at", "deleted_at")


class ClosureStore:
    """CRUD and descriptor execution over one closure table."""

    def __init__(self, db: Database, settings: Settings | None = None) -> None:
        self._db = db
        self._settings = settings or db.settings
        self.table = self._settings.closure_table_name
        self.entity_table = self._settings.entity_table
        cols = self._settings.columns
        self._columns = {"ancestor": cols.ancestor, "descendant": cols.descendant, "depth": cols.depth}

    # -- transactions --

    def transaction(self) -> AbstractAsyncContextManager[Database]:
        return self._db.transaction()

    async def with_transaction(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run `fn` inside one transaction; commit on success, roll back on any error."""
        async with self._db.transaction():
            return await fn()

    # -- closure rows --

    async def insert(self, rows: Sequence[ClosureRow]) -> int:
        """Bulk-insert closure rows. Returns the number of rows written."""
        if not rows:
            return 0
        c = self._columns
        await self._db.executemany(
            f"INSERT INTO {self.table} ({c['ancestor']}, {c['descendant']}, {c['depth']}) "
            "VALUES (?, ?, ?)",
            [(row.ancestor, row.descendant, row.depth) for row in rows],
        )
        return len(rows)

    async def delete(self, predicate: Predicate) -> int:
        """Delete every closure row matching the predicate. Returns the row count."""
        if not predicate.conditions:
            raise ValueError("Refusing to delete closure rows without a predicate")
        where, params = self._compile_all(predicate.conditions, closure_alias=None, node_alias=None)
        cursor = await self._db.execute(f"DELETE FROM {self.table} WHERE {where}", params)
        return cursor.rowcount

    async def select(
        self, predicate: Predicate, columns: Sequence[str] = CLOSURE_FIELDS
    ) -> list[dict[str, Any]]:
        """Select closure rows; keys of the returned dicts are the logical column names."""
        select_list = ", ".join(f"{self._closure_column(col)} AS {col}" for col in columns)
        sql = f"SELECT {select_list} FROM {self.table}"
        params: list[Any] = []
        if predicate.conditions:
            where, params = self._compile_all(predicate.conditions, closure_alias=None, node_alias=None)
            sql += f" WHERE {where}"
        sql += f" ORDER BY {self._columns['depth']}"
        rows = await self._db.fetchall(sql, tuple(params))
        return [dict(row) for row in rows]

    async def select_rows(self, predicate: Predicate) -> list[ClosureRow]:
        return [ClosureRow(**row) for row in await self.select(predicate)]

    async def select_column(self, predicate: Predicate, column: str) -> list[Any]:
        return [row[column] for row in await self.select(predicate, (column,))]

    # -- node queries --

    async def fetch_nodes(self, query: NodeQuery) -> list[Node]:
        sql, params = self._compile_node_query(query)
        rows = await self._db.fetchall(sql, params)
        return [self._row_to_node(row) for row in rows]

    async def fetch_node(self, query: NodeQuery) -> Node | None:
        nodes = await self.fetch_nodes(query)
        return nodes[0] if nodes else None

    async def count_nodes(self, query: NodeQuery) -> int:
        sql, params = self._compile_node_query(query)
        row = await self._db.fetchone(f"SELECT COUNT(*) AS cnt FROM ({sql})", params)
        return row["cnt"] if row else 0

    async def max_position(self, query: NodeQuery) -> int | None:
        sql, params = self._compile_node_query(query)
        row = await self._db.fetchone(f"SELECT MAX(position) AS max_pos FROM ({sql})", params)
        return row["max_pos"] if row else None

    # -- compilation --

    def _compile_node_query(self, query: NodeQuery) -> tuple[str, tuple[Any, ...]]:
        anc, desc, depth = (self._columns[f] for f in CLOSURE_FIELDS)
        pos = self._settings.position_column

        joins = {
            "ancestor": f"JOIN {self.table} AS c ON c.{anc} = n.id",
            "descendant": f"JOIN {self.table} AS c ON c.{desc} = n.id",
            "self": f"JOIN {self.table} AS c ON c.{anc} = n.id AND c.{desc} = n.id",
            "chain": (
                f"JOIN {self.table} AS s ON s.{anc} = n.id AND s.{desc} = n.id "
                f"JOIN {self.table} AS c ON c.{desc} = n.id"
            ),
        }

        sql = (
            f"SELECT n.id, n.{pos} AS position, n.data, n.created_at, n.deleted_at, "
            f"c.{anc} AS _ancestor, c.{desc} AS _descendant, c.{depth} AS _depth, "
            f"(SELECT MAX(l.{depth}) FROM {self.table} AS l WHERE l.{desc} = n.id) AS _level "
            f"FROM {self.entity_table} AS n {joins[query.join]}"
        )
        params: list[Any] = []

        if query.conditions:
            where, params = self._compile_all(query.conditions, closure_alias="c", node_alias="n")
            sql += f" WHERE {where}"

        if query.roots_only:
            sql += (
                f" GROUP BY n.id HAVING (SELECT COUNT(*) FROM {self.table} AS a "
                f"WHERE a.{desc} = n.id AND a.{depth} > 0) = 0"
            )

        order = [
            f"{self._qualified(o.source, o.column, 'c', 'n')}{' DESC' if o.descending else ''}"
            for o in query.order_by
        ]
        order.append("n.id")
        sql += " ORDER BY " + ", ".join(order)

        if query.limit is not None:
            sql += " LIMIT ?"
            params.append(query.limit)

        return sql, tuple(params)

    def _compile_all(
        self,
        conditions: Sequence[Condition],
        closure_alias: str | None,
        node_alias: str | None,
    ) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for condition in conditions:
            clause, cond_params = self._compile(condition, closure_alias, node_alias)
            clauses.append(clause)
            params.extend(cond_params)
        return " AND ".join(clauses), params

    def _compile(
        self, condition: Condition, closure_alias: str | None, node_alias: str | None
    ) -> tuple[str, list[Any]]:
        column = self._qualified(condition.source, condition.column, closure_alias, node_alias)
        op = condition.op.lower()
        value = condition.value

        if op in ("is null", "is not null"):
            return f"{column} {op.upper()}", []

        if op in ("in", "not in"):
            if isinstance(value, Subquery):
                inner_where, inner_params = self._compile_all(
                    value.predicate.conditions, closure_alias=None, node_alias=None
                )
                sub = f"SELECT {self._closure_column(value.column)} FROM {self.table}"
                if inner_where:
                    sub += f" WHERE {inner_where}"
                return f"{column} {op.upper()} ({sub})", inner_params
            # a single id (str is iterable) is one value, not a set of characters
            if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
                value = (value,)
            values = list(value)
            if not values:
                # IN () matches nothing, NOT IN () matches everything
                return ("0" if op == "in" else "1"), []
            placeholders = ", ".join("?" for _ in values)
            return f"{column} {op.upper()} ({placeholders})", values

        return f"{column} {op.upper()} ?", [value]

    def _qualified(
        self, source: str, column: str, closure_alias: str | None, node_alias: str | None
    ) -> str:
        if source == "closure":
            physical = self._closure_column(column)
            return f"{closure_alias}.{physical}" if closure_alias else physical
        if node_alias is None:
            raise ValueError(f"Node column {column!r} is not available in a closure-only query")
        return f"{node_alias}.{self._node_column(column)}"

    def _closure_column(self, column: str) -> str:
        try:
            return self._columns[column]
        except KeyError:
            raise ValueError(f"Unknown closure column: {column!r}")

    def _node_column(self, column: str) -> str:
        if column == "position":
            return self._settings.position_column
        if column in _NODE_COLUMNS or column.isidentifier():
            return column
        raise ValueError(f"Invalid node column: {column!r}")

    @staticmethod
    def _row_to_node(row) -> Node:
        """Convert a joined entity/closure row to a Node with closure metadata."""
        return Node(
            id=row["id"],
            position=row["position"],
            depth=row["_level"] or 0,
            data=json.loads(row["data"]) if row["data"] else {},
            created_at=row["created_at"],
            deleted_at=row["deleted_at"],
            closure=ClosureMetadata(
                ancestor=row["_ancestor"],
                descendant=row["_descendant"],
                depth=row["_depth"],
            ),
        )
