"""Tree engine: closure-consistent insert, move, reorder and delete.

Every mutation is a read-then-write sequence executed inside exactly one
ClosureStore transaction. The engine keeps no state of its own between
calls; concurrent writers are serialized by the store's transaction lock.

Closure invariants maintained after every committed mutation:
  - each live node has exactly one self row (depth 0);
  - a node with parent p has the row (p, node, 1);
  - the table holds the full transitive closure;
  - sibling positions within a parent (and among roots) are 0..count-1.
"""

import logging

from closuretree.closure.planner import QueryPlanner
from closuretree.closure.positions import (
    PositionShift,
    close_gap,
    guess_position,
    open_gap,
    reorder_shift,
)
from closuretree.closure.store import ClosureStore
from closuretree.models import ClosureRow, Node
from closuretree.nodes.repository import NodeRepository

logger = logging.getLogger(__name__)


class TreeEngine:
    """Composes ClosureStore, QueryPlanner and position arithmetic under transactions."""

    def __init__(
        self,
        store: ClosureStore,
        nodes: NodeRepository,
        planner: QueryPlanner | None = None,
    ) -> None:
        self._store = store
        self._nodes = nodes
        self._planner = planner or QueryPlanner()

    # -- reads used by the mutations --

    async def parent_id(self, node_id: str) -> str | None:
        """Immediate parent of a node, or None for a root."""
        parents = await self._store.select_column(self._planner.parent_link(node_id), "ancestor")
        return parents[0] if parents else None

    async def is_attached(self, node_id: str) -> bool:
        """True when the node has its self row, i.e. it takes part in the tree."""
        return bool(await self._store.select(self._planner.self_row(node_id), ("depth",)))

    async def sibling_positions(
        self, parent_id: str | None, exclude: str | None = None
    ) -> dict[str, int]:
        """{node_id: position} for the children of `parent_id` (or the roots)."""
        query = self._planner.roots() if parent_id is None else self._planner.children(parent_id)
        if exclude is not None:
            query = query.where("node", "id", "<>", exclude)
        return {node.id: node.position for node in await self._store.fetch_nodes(query)}

    # -- mutations --

    async def insert_node(
        self, node_id: str, parent_id: str | None = None, position: int | None = None
    ) -> int:
        """Write the closure rows for a freshly created record and place it among its siblings.

        Returns the position the node was given.
        """
        async with self._store.transaction():
            if not await self._nodes.exists(node_id):
                raise NodeNotFoundError(node_id)
            if parent_id is not None and not await self.is_attached(parent_id):
                raise NodeNotFoundError(parent_id)

            siblings = await self.sibling_positions(parent_id, exclude=node_id)
            final_position = guess_position(siblings.values(), position)

            rows = [ClosureRow(ancestor=node_id, descendant=node_id, depth=0)]
            if parent_id is not None:
                chain = await self._store.select_rows(self._planner.ancestor_chain(parent_id))
                rows += [
                    ClosureRow(ancestor=row.ancestor, descendant=node_id, depth=row.depth + 1)
                    for row in chain
                ]
            written = await self._store.insert(rows)

            await self._apply_shift(siblings, open_gap(final_position))
            await self._nodes.set_position(node_id, final_position)

        logger.debug(
            "Inserted %s under %s at %d (%d closure rows)",
            node_id, parent_id, final_position, written,
        )
        return final_position

    async def move_subtree(
        self, node_id: str, new_parent_id: str | None = None, position: int | None = None
    ) -> Node:
        """Re-parent a node together with its whole subtree, and/or change its position."""
        async with self._store.transaction():
            node = await self._nodes.get(node_id)
            if node is None or not await self.is_attached(node_id):
                raise NodeNotFoundError(node_id)

            old_parent_id = await self.parent_id(node_id)
            if new_parent_id == old_parent_id and position == node.position:
                return node

            subtree_ids = await self._store.select_column(
                self._planner.subtree(node_id), "descendant"
            )
            if new_parent_id is not None:
                if new_parent_id in subtree_ids:
                    raise CycleError(node_id, new_parent_id)
                if not await self.is_attached(new_parent_id):
                    raise NodeNotFoundError(new_parent_id)

            old_siblings = await self.sibling_positions(old_parent_id, exclude=node_id)

            if new_parent_id == old_parent_id:
                final_position = guess_position(old_siblings.values(), position)
                await self._apply_shift(old_siblings, reorder_shift(node.position, final_position))
            else:
                new_siblings = await self.sibling_positions(new_parent_id, exclude=node_id)
                final_position = guess_position(new_siblings.values(), position)
                await self._relink(node_id, new_parent_id, subtree_ids)
                await self._apply_shift(old_siblings, close_gap(node.position))
                await self._apply_shift(new_siblings, open_gap(final_position))

            await self._nodes.set_position(node_id, final_position)

        logger.debug(
            "Moved %s (%d nodes) from %s@%d to %s@%d",
            node_id, len(subtree_ids), old_parent_id, node.position, new_parent_id, final_position,
        )
        return node.model_copy(update={"position": final_position})

    async def reorder(self, node_id: str, position: int) -> Node:
        """Change a node's position among its current siblings."""
        async with self._store.transaction():
            return await self.move_subtree(node_id, await self.parent_id(node_id), position)

    async def delete_subtree(self, node_id: str, hard: bool = True) -> list[str]:
        """Remove a node, its descendants and all of their closure rows.

        Returns the ids removed; an already removed node yields [].
        """
        async with self._store.transaction():
            node = await self._nodes.get(node_id)
            if node is None or not await self.is_attached(node_id):
                logger.warning("delete_subtree: %s is not in the tree, nothing to do", node_id)
                return []

            parent_id = await self.parent_id(node_id)
            siblings = await self.sibling_positions(parent_id, exclude=node_id)
            subtree_ids = await self._store.select_column(
                self._planner.subtree(node_id), "descendant"
            )

            removed_rows = await self._store.delete(self._planner.subtree_rows(subtree_ids))
            await self._nodes.delete(subtree_ids, hard=hard)
            await self._apply_shift(siblings, close_gap(node.position))

        logger.debug(
            "Deleted subtree %s (%d nodes, %d closure rows, hard=%s)",
            node_id, len(subtree_ids), removed_rows, hard,
        )
        return subtree_ids

    # -- internals --

    async def _relink(
        self, node_id: str, new_parent_id: str | None, subtree_ids: list[str]
    ) -> None:
        """Swap the subtree's links to its old ancestors for links to the new ones."""
        ancestor_ids = await self._store.select_column(
            self._planner.strict_ancestors(node_id), "ancestor"
        )
        if ancestor_ids:
            await self._store.delete(self._planner.severed_links(subtree_ids, ancestor_ids))

        # Becoming a root needs nothing more: the self row was never touched.
        if new_parent_id is None:
            return

        chain = await self._store.select_rows(self._planner.ancestor_chain(new_parent_id))
        subtree = await self._store.select_rows(self._planner.subtree(node_id))
        await self._store.insert(
            [
                ClosureRow(ancestor=up.ancestor, descendant=down.descendant, depth=up.depth + down.depth + 1)
                for up in chain
                for down in subtree
            ]
        )

    async def _apply_shift(self, siblings: dict[str, int], shift: PositionShift | None) -> None:
        if shift is None:
            return
        await self._nodes.shift_positions(shift.affected(siblings), shift.delta)


class NodeNotFoundError(Exception):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class CycleError(Exception):
    def __init__(self, node_id: str, target_id: str) -> None:
        self.node_id = node_id
        self.target_id = target_id
        super().__init__(
            f"Cannot move {node_id} under {target_id}: the target is inside its subtree"
        )
