"""Nest a flat closure-annotated result set into a forest.

Input rows are Nodes carrying ClosureMetadata, as returned by the planner's
`tree` and `descendants_tree` queries: one row per (node, ancestor) pair.
A node's parent is the ancestor it is linked to at depth 1. Nodes whose
parent is absent from the input become top-level entries, which is what
makes filtered trees and detached subtrees come out right.
"""

from collections.abc import Iterable, Iterator

from closuretree.models import Node, TreeNode


class Forest:
    """Ordered, restartable sequence of root TreeNodes.

    Built lazily on first access from a single pass over the input rows.
    """

    def __init__(self, rows: Iterable[Node]) -> None:
        self._rows = rows
        self._roots: list[TreeNode] | None = None

    @property
    def roots(self) -> list[TreeNode]:
        if self._roots is None:
            self._roots = build_tree(self._rows)
            self._rows = ()
        return self._roots

    def __iter__(self) -> Iterator[TreeNode]:
        return iter(self.roots)

    def __len__(self) -> int:
        return len(self.roots)

    def __getitem__(self, index: int) -> TreeNode:
        return self.roots[index]

    def __bool__(self) -> bool:
        return bool(self.roots)

    def walk(self) -> Iterator[TreeNode]:
        """Pre-order traversal of every tree, roots in position order."""
        for root in self.roots:
            yield from root.walk()

    def find(self, node_id: str) -> TreeNode | None:
        for tree_node in self.walk():
            if tree_node.id == node_id:
                return tree_node
        return None

    def flatten(self) -> list[Node]:
        return [tree_node.node for tree_node in self.walk()]

    def __repr__(self) -> str:
        return f"Forest({[root.id for root in self.roots]!r})"


def build_tree(rows: Iterable[Node]) -> list[TreeNode]:
    """Group rows by descendant, find each parent, nest children by position."""
    nodes: dict[str, Node] = {}
    parents: dict[str, str | None] = {}
    order: list[str] = []

    for row in rows:
        meta = row.closure
        node_id = row.id if meta is None else meta.descendant
        if node_id not in nodes:
            nodes[node_id] = row
            parents[node_id] = None
            order.append(node_id)
        if meta is None:
            continue
        if meta.depth == 1:
            parents[node_id] = meta.ancestor
        # keep the row that reaches farthest up: its closure metadata names the root
        if nodes[node_id].closure is None or meta.depth > nodes[node_id].closure.depth:
            nodes[node_id] = row

    tree_nodes = {node_id: TreeNode(node=nodes[node_id]) for node_id in order}
    roots: list[TreeNode] = []
    for node_id in order:
        parent_id = parents[node_id]
        if parent_id is not None and parent_id in tree_nodes:
            tree_nodes[parent_id].children.append(tree_nodes[node_id])
        else:
            roots.append(tree_nodes[node_id])

    for tree_node in tree_nodes.values():
        tree_node.children.sort(key=_sort_key)
    roots.sort(key=_sort_key)
    return roots


def _sort_key(tree_node: TreeNode) -> tuple[int, str]:
    return (tree_node.node.position, tree_node.id)
