"""Tree service: coordinates the node repository, closure engine and queries.

This is the entity-style surface callers use. Mutations go through the
TreeEngine, which owns the closure invariants; reads go straight from
QueryPlanner descriptors through the ClosureStore, and nested results are
assembled by the TreeBuilder.
"""

from typing import Any
from uuid import uuid4

from closuretree.closure.builder import Forest
from closuretree.closure.engine import NodeNotFoundError, TreeEngine
from closuretree.closure.planner import QueryPlanner, check_sibling_args, node_filter
from closuretree.closure.store import ClosureStore
from closuretree.config import Settings
from closuretree.db.connection import Database
from closuretree.models import ClosureMetadata, Node, SiblingDirection, SiblingFind
from closuretree.nodes.repository import NodeRepository, SqliteNodeRepository


class TreeService:
    """Hierarchy operations over one entity table and its closure table."""

    def __init__(
        self,
        db: Database,
        settings: Settings | None = None,
        nodes: NodeRepository | None = None,
    ) -> None:
        self._db = db
        self._settings = settings or db.settings
        self._planner = QueryPlanner()
        self._store = ClosureStore(db, self._settings)
        self._nodes = nodes or SqliteNodeRepository(db, self._settings)
        self._engine = TreeEngine(self._store, self._nodes, self._planner)

    @property
    def engine(self) -> TreeEngine:
        return self._engine

    @property
    def store(self) -> ClosureStore:
        return self._store

    # -- creation and mutation --

    async def create_node(
        self,
        data: dict[str, Any] | None = None,
        parent_id: str | None = None,
        position: int | None = None,
        node_id: str | None = None,
    ) -> Node:
        """Create a record and its closure rows in one transaction."""
        node_id = node_id or str(uuid4())
        async with self._store.transaction():
            await self._nodes.create(node_id, data)
            await self._engine.insert_node(node_id, parent_id, position)
        node = await self.get_node(node_id)
        assert node is not None
        return node

    async def move_to(
        self, node_id: str, parent_id: str | None = None, position: int | None = None
    ) -> Node:
        """Make a node a root (parent_id=None) or a child of another node."""
        await self._engine.move_subtree(node_id, parent_id, position)
        return await self._require(node_id)

    async def append_child(
        self, parent_id: str, child_id: str, position: int | None = None
    ) -> Node:
        """Move `child_id` under `parent_id`. Returns the parent."""
        await self.move_to(child_id, parent_id, position)
        return await self._require(parent_id)

    async def make_root(self, node_id: str) -> Node:
        if not await self.is_root(node_id):
            await self.move_to(node_id, None)
        return await self._require(node_id)

    async def reorder(self, node_id: str, position: int) -> Node:
        await self._engine.reorder(node_id, position)
        return await self._require(node_id)

    async def remove_child(
        self, parent_id: str, position: int = 0, hard: bool | None = None
    ) -> list[str]:
        """Delete the subtree of the child at `position`. Returns removed ids."""
        child = await self.child_at(parent_id, position)
        if child is None:
            return []
        return await self.delete_subtree(child.id, hard=hard)

    async def delete_subtree(self, node_id: str, hard: bool | None = None) -> list[str]:
        """Delete a node and all its descendants.

        `hard=None` follows the configured delete mode (soft by default).
        """
        if hard is None:
            hard = not self._settings.soft_delete
        return await self._engine.delete_subtree(node_id, hard=hard)

    # -- single node --

    async def get_node(self, node_id: str) -> Node | None:
        """Fetch a node with its depth and the closure row linking it to its root."""
        node = await self._nodes.get(node_id)
        if node is None:
            return None
        chain = await self._store.select_rows(self._planner.ancestor_chain(node_id))
        if not chain:
            return node
        top = max(chain, key=lambda row: row.depth)
        return node.model_copy(
            update={
                "depth": top.depth,
                "closure": ClosureMetadata(
                    ancestor=top.ancestor, descendant=top.descendant, depth=top.depth
                ),
            }
        )

    async def depth(self, node_id: str) -> int:
        return (await self._require(node_id)).depth

    # -- ancestors --

    async def parent(self, node_id: str) -> Node | None:
        return await self._store.fetch_node(self._planner.parent(node_id))

    async def ancestors(self, node_id: str) -> list[Node]:
        """Strict ancestors, nearest first."""
        return await self._store.fetch_nodes(self._planner.ancestors(node_id))

    async def count_ancestors(self, node_id: str) -> int:
        return await self._store.count_nodes(self._planner.ancestors(node_id))

    async def has_ancestors(self, node_id: str) -> bool:
        return await self.count_ancestors(node_id) > 0

    async def is_root(self, node_id: str) -> bool:
        return not await self.has_ancestors(node_id)

    async def roots(self) -> list[Node]:
        return await self._store.fetch_nodes(self._planner.roots())

    # -- children and descendants --

    async def children(self, node_id: str) -> list[Node]:
        return await self._store.fetch_nodes(self._planner.children(node_id))

    async def count_children(self, node_id: str) -> int:
        return await self._store.count_nodes(self._planner.children(node_id))

    async def has_children(self, node_id: str) -> bool:
        return await self.count_children(node_id) > 0

    async def child_at(self, node_id: str, position: int) -> Node | None:
        return await self._store.fetch_node(self._planner.children(node_id, position))

    async def first_child(self, node_id: str) -> Node | None:
        return await self.child_at(node_id, 0)

    async def last_child(self, node_id: str) -> Node | None:
        last = await self._store.max_position(self._planner.children(node_id))
        if last is None:
            return None
        return await self.child_at(node_id, last)

    async def descendants(
        self, node_id: str, depth: int | None = None, flat: bool = False
    ) -> Forest | list[Node]:
        """Descendants of a node, nested as a Forest unless `flat`.

        `depth` restricts the result to nodes exactly that many levels below.
        """
        if flat:
            return await self._store.fetch_nodes(self._planner.descendants(node_id, depth))
        rows = await self._store.fetch_nodes(self._planner.descendants_tree(node_id, depth))
        return Forest(rows)

    async def count_descendants(self, node_id: str) -> int:
        return await self._store.count_nodes(self._planner.descendants(node_id))

    async def has_descendants(self, node_id: str) -> bool:
        return await self.count_descendants(node_id) > 0

    # -- siblings --

    async def siblings(
        self,
        node_id: str,
        find: SiblingFind = "all",
        direction: SiblingDirection = "both",
        position: int | None = None,
    ) -> list[Node] | Node | None:
        """Siblings of a node relative to `position` (default: its own).

        find="all" returns a list; find="one" returns the neighbouring node
        for prev/next and a list of both neighbours for direction="both".
        """
        check_sibling_args(direction, find)
        node = await self._require(node_id)
        parent_id = await self._engine.parent_id(node_id)
        pos = node.position if position is None else position
        query = self._planner.siblings(node_id, parent_id, pos, direction, find)
        if find == "one" and direction != "both":
            return await self._store.fetch_node(query)
        return await self._store.fetch_nodes(query)

    async def count_siblings(self, node_id: str, direction: SiblingDirection = "both") -> int:
        check_sibling_args(direction)
        node = await self._require(node_id)
        parent_id = await self._engine.parent_id(node_id)
        return await self._store.count_nodes(
            self._planner.siblings(node_id, parent_id, node.position, direction)
        )

    async def has_siblings(self, node_id: str) -> bool:
        return await self.count_siblings(node_id) > 0

    async def prev_sibling(self, node_id: str) -> Node | None:
        return await self.siblings(node_id, "one", "prev")

    async def prev_siblings(self, node_id: str, position: int | None = None) -> list[Node]:
        return await self.siblings(node_id, "all", "prev", position)

    async def count_prev_siblings(self, node_id: str) -> int:
        return await self.count_siblings(node_id, "prev")

    async def has_prev_siblings(self, node_id: str) -> bool:
        return await self.count_prev_siblings(node_id) > 0

    async def next_sibling(self, node_id: str) -> Node | None:
        return await self.siblings(node_id, "one", "next")

    async def next_siblings(self, node_id: str, position: int | None = None) -> list[Node]:
        return await self.siblings(node_id, "all", "next", position)

    async def count_next_siblings(self, node_id: str) -> int:
        return await self.count_siblings(node_id, "next")

    async def has_next_siblings(self, node_id: str) -> bool:
        return await self.count_next_siblings(node_id) > 0

    async def sibling_at(self, node_id: str, position: int) -> Node | None:
        return await self.siblings(node_id, "one", "next", position - 1)

    async def first_sibling(self, node_id: str) -> Node | None:
        return await self.sibling_at(node_id, 0)

    async def last_sibling(self, node_id: str) -> Node | None:
        node = await self._require(node_id)
        parent_id = await self._engine.parent_id(node_id)
        last = await self._store.max_position(
            self._planner.siblings(node_id, parent_id, node.position)
        )
        if last is None:
            return None
        return await self.sibling_at(node_id, last)

    # -- whole tree --

    async def tree(self) -> Forest:
        return Forest(await self._store.fetch_nodes(self._planner.tree()))

    async def filtered_tree(self, column: str, operator: str, value: Any = None) -> Forest:
        """Forest of the nodes matching one condition on an entity column."""
        query = self._planner.tree((node_filter(column, operator, value),))
        return Forest(await self._store.fetch_nodes(query))

    async def _require(self, node_id: str) -> Node:
        node = await self.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node
