"""Shared test helpers: tree builders and a closure invariant checker."""

from collections import defaultdict

from closuretree.closure.planner import Predicate
from closuretree.closure.store import ClosureStore
from closuretree.db.connection import Database
from closuretree.trees.service import TreeService


async def build_abc(service: TreeService) -> None:
    """Root A with children B (position 0) and C (position 1)."""
    await service.create_node({"name": "A"}, node_id="A")
    await service.create_node({"name": "B"}, parent_id="A", node_id="B")
    await service.create_node({"name": "C"}, parent_id="A", node_id="C")


async def build_sample_forest(service: TreeService) -> None:
    """Two roots:

        A            R
        ├── B
        │   ├── D
        │   └── E
        └── C
            └── F
    """
    await build_abc(service)
    await service.create_node({"name": "D"}, parent_id="B", node_id="D")
    await service.create_node({"name": "E"}, parent_id="B", node_id="E")
    await service.create_node({"name": "F"}, parent_id="C", node_id="F")
    await service.create_node({"name": "R"}, node_id="R")


async def closure_set(store: ClosureStore) -> set[tuple[str, str, int]]:
    rows = await store.select_rows(Predicate())
    return {(row.ancestor, row.descendant, row.depth) for row in rows}


async def live_positions(db: Database) -> dict[str, int]:
    """{id: position} for every record that is not soft-deleted."""
    rows = await db.fetchall("SELECT id, position FROM entities WHERE deleted_at IS NULL")
    return {row["id"]: row["position"] for row in rows}


def expected_closure(parents: dict[str, str | None]) -> set[tuple[str, str, int]]:
    """Full transitive closure implied by a child -> parent map."""
    rows = set()
    for node_id in parents:
        current, depth = node_id, 0
        while current is not None:
            rows.add((current, node_id, depth))
            current, depth = parents[current], depth + 1
    return rows


async def assert_tree_invariants(db: Database, store: ClosureStore) -> dict[str, str | None]:
    """Check every closure invariant and dense positions. Returns the parent map."""
    rows = await closure_set(store)
    positions = await live_positions(db)

    referenced = {a for a, _, _ in rows} | {d for _, d, _ in rows}
    assert referenced == set(positions), "closure rows and live records disagree"

    for node_id in positions:
        assert (node_id, node_id, 0) in rows, f"missing self row for {node_id}"
    assert all((a == d) == (depth == 0) for a, d, depth in rows)

    parents: dict[str, str | None] = {node_id: None for node_id in positions}
    for ancestor, descendant, depth in rows:
        if depth == 1:
            assert parents[descendant] is None, f"{descendant} has two parents"
            parents[descendant] = ancestor

    assert rows == expected_closure(parents)

    groups: dict[str | None, list[int]] = defaultdict(list)
    for node_id, parent_id in parents.items():
        groups[parent_id].append(positions[node_id])
    for parent_id, group in groups.items():
        assert sorted(group) == list(range(len(group))), (
            f"positions under {parent_id} are not dense: {sorted(group)}"
        )
    return parents
