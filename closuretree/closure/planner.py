"""Query planning: join/filter descriptors for closure-table queries.

The planner never produces SQL. It describes which closure column a node is
joined through, which conditions apply and how results are ordered; the
ClosureStore turns those descriptors into statements for the configured
table and column names.

Join shapes (n = entity table, c = closure table):
  ancestor    c.ancestor = n.id              (walk upward from a descendant)
  descendant  c.descendant = n.id            (walk downward from an ancestor)
  self        c.ancestor = c.descendant = n.id
  chain       self row of n, plus every row c with c.descendant = n.id
"""

from dataclasses import dataclass
from typing import Any, Literal

from closuretree.models import SiblingDirection, SiblingFind

JoinShape = Literal["ancestor", "descendant", "self", "chain"]
Source = Literal["closure", "node"]

OPERATORS = frozenset(
    {"=", "<>", "!=", "<", ">", "<=", ">=", "in", "not in", "like", "is null", "is not null"}
)

DIRECTIONS = ("prev", "next", "both")
FINDS = ("all", "one")


@dataclass(frozen=True)
class Subquery:
    """SELECT <column> FROM closure WHERE <predicate>; usable as an `in` value."""

    column: str
    predicate: "Predicate"


@dataclass(frozen=True)
class Condition:
    source: Source
    column: str
    op: str
    value: Any = None

    def __post_init__(self) -> None:
        if self.op.lower() not in OPERATORS:
            raise ValueError(f"Unsupported operator: {self.op!r}")


@dataclass(frozen=True)
class Predicate:
    """Conjunction of conditions on the closure table alone."""

    conditions: tuple[Condition, ...] = ()

    def where(self, column: str, op: str, value: Any = None) -> "Predicate":
        return Predicate(self.conditions + (Condition("closure", column, op, value),))


@dataclass(frozen=True)
class OrderBy:
    source: Source
    column: str
    descending: bool = False


@dataclass(frozen=True)
class NodeQuery:
    """Entity rows joined with the closure table."""

    join: JoinShape
    conditions: tuple[Condition, ...] = ()
    order_by: tuple[OrderBy, ...] = ()
    roots_only: bool = False
    limit: int | None = None

    def where(self, source: Source, column: str, op: str, value: Any = None) -> "NodeQuery":
        return NodeQuery(
            join=self.join,
            conditions=self.conditions + (Condition(source, column, op, value),),
            order_by=self.order_by,
            roots_only=self.roots_only,
            limit=self.limit,
        )


_BY_POSITION = (OrderBy("node", "position"),)


def _closure(column: str, op: str, value: Any = None) -> Condition:
    return Condition("closure", column, op, value)


def _node(column: str, op: str, value: Any = None) -> Condition:
    return Condition("node", column, op, value)


class QueryPlanner:
    """Builds descriptors for every hierarchy query the engine and service need.

    `position` is the logical name of the entity's position column; the store
    maps it to the configured physical name.
    """

    # -- node queries --

    def parent(self, node_id: str) -> NodeQuery:
        return NodeQuery(
            join="ancestor",
            conditions=(_closure("descendant", "=", node_id), _closure("depth", "=", 1)),
            limit=1,
        )

    def ancestors(self, node_id: str) -> NodeQuery:
        """Strict ancestors, nearest first."""
        return NodeQuery(
            join="ancestor",
            conditions=(_closure("descendant", "=", node_id), _closure("depth", ">", 0)),
            order_by=(OrderBy("closure", "depth"),),
        )

    def children(self, node_id: str, position: int | None = None) -> NodeQuery:
        conditions = (_closure("ancestor", "=", node_id), _closure("depth", "=", 1))
        if position is not None:
            conditions += (_node("position", "=", position),)
        return NodeQuery(join="descendant", conditions=conditions, order_by=_BY_POSITION)

    def descendants(self, node_id: str, depth: int | None = None) -> NodeQuery:
        """Strict descendants (or those exactly `depth` levels below), shallowest first."""
        conditions = (_closure("ancestor", "=", node_id),)
        if depth is None:
            conditions += (_closure("depth", ">", 0),)
        else:
            conditions += (_closure("depth", "=", depth),)
        return NodeQuery(
            join="descendant",
            conditions=conditions,
            order_by=(OrderBy("closure", "depth"),) + _BY_POSITION,
        )

    def descendants_tree(self, node_id: str, depth: int | None = None) -> NodeQuery:
        """Every ancestor row of every strict descendant, ready for TreeBuilder."""
        inner = Predicate().where("ancestor", "=", node_id)
        if depth is None:
            inner = inner.where("depth", ">", 0)
        else:
            inner = inner.where("depth", "=", depth)
        return NodeQuery(
            join="descendant",
            conditions=(_closure("descendant", "in", Subquery("descendant", inner)),),
            order_by=_BY_POSITION,
        )

    def siblings(
        self,
        node_id: str,
        parent_id: str | None,
        position: int,
        direction: SiblingDirection = "both",
        find: SiblingFind = "all",
    ) -> NodeQuery:
        """Nodes sharing `node_id`'s parent (or the other roots), filtered by position.

        find="all": prev -> position < p, next -> position > p, both -> position <> p.
        find="one": prev -> p - 1, next -> p + 1, both -> either neighbour.
        """
        check_sibling_args(direction, find)

        if find == "all":
            op, value = {"prev": ("<", position), "next": (">", position), "both": ("<>", position)}[direction]
        elif direction == "both":
            op, value = "in", (position - 1, position + 1)
        else:
            op, value = "=", position - 1 if direction == "prev" else position + 1

        base = self.roots() if parent_id is None else self.children(parent_id)
        return base.where("node", "id", "<>", node_id).where("node", "position", op, value)

    def roots(self) -> NodeQuery:
        """Nodes with no ancestor row at depth > 0 (having-count-zero aggregation)."""
        return NodeQuery(join="self", roots_only=True, order_by=_BY_POSITION)

    def tree(self, filters: tuple[Condition, ...] = ()) -> NodeQuery:
        """Whole forest: each live node with all of its ancestor rows.

        `filters` are external conditions on entity columns; nodes whose
        parent is filtered out surface as top-level nodes.
        """
        for condition in filters:
            if condition.source != "node":
                raise ValueError("Tree filters apply to node columns only")
        return NodeQuery(join="chain", conditions=filters, order_by=_BY_POSITION)

    # -- closure predicates --

    def self_row(self, node_id: str) -> Predicate:
        return Predicate().where("ancestor", "=", node_id).where("descendant", "=", node_id)

    def ancestor_chain(self, node_id: str) -> Predicate:
        """Rows ending at `node_id`, including its self row."""
        return Predicate().where("descendant", "=", node_id)

    def strict_ancestors(self, node_id: str) -> Predicate:
        return self.ancestor_chain(node_id).where("ancestor", "<>", node_id)

    def parent_link(self, node_id: str) -> Predicate:
        return self.ancestor_chain(node_id).where("depth", "=", 1)

    def subtree(self, node_id: str) -> Predicate:
        """Rows starting at `node_id`, including its self row."""
        return Predicate().where("ancestor", "=", node_id)

    def subtree_rows(self, subtree_ids: list[str]) -> Predicate:
        return Predicate().where("descendant", "in", tuple(subtree_ids))

    def severed_links(self, subtree_ids: list[str], ancestor_ids: list[str]) -> Predicate:
        """Rows linking the old ancestor chain to a subtree being moved away."""
        return (
            Predicate()
            .where("descendant", "in", tuple(subtree_ids))
            .where("ancestor", "in", tuple(ancestor_ids))
        )


def check_sibling_args(direction: object, find: object = "all") -> None:
    """Reject unknown direction or find values before any query is built."""
    if direction not in DIRECTIONS:
        raise InvalidDirectionError(direction)
    if find not in FINDS:
        raise InvalidFindError(find)


def node_filter(column: str, operator: str, value: Any = None) -> Condition:
    """External predicate on an entity column, for filtered tree retrieval."""
    return _node(column, operator, value)


class InvalidDirectionError(ValueError):
    def __init__(self, direction: object) -> None:
        self.direction = direction
        super().__init__(
            f"Invalid sibling direction {direction!r}; expected one of {', '.join(DIRECTIONS)}"
        )


class InvalidFindError(ValueError):
    def __init__(self, find: object) -> None:
        self.find = find
        super().__init__(f"Invalid sibling find mode {find!r}; expected 'all' or 'one'")
