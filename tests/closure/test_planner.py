"""Unit tests for QueryPlanner descriptors and argument validation."""

import dataclasses

import pytest

from closuretree.closure.planner import (
    Condition,
    InvalidDirectionError,
    InvalidFindError,
    NodeQuery,
    Predicate,
    QueryPlanner,
    Subquery,
    check_sibling_args,
    node_filter,
)


@pytest.fixture
def planner():
    return QueryPlanner()


def _node_conditions(query) -> list[tuple[str, str, object]]:
    return [(c.column, c.op, c.value) for c in query.conditions if c.source == "node"]


class TestNodeQueries:
    def test_parent_is_depth_one_ancestor(self, planner):
        query = planner.parent("D")
        assert query.join == "ancestor"
        assert query.limit == 1
        assert Condition("closure", "descendant", "=", "D") in query.conditions
        assert Condition("closure", "depth", "=", 1) in query.conditions

    def test_ancestors_exclude_self_and_order_by_depth(self, planner):
        query = planner.ancestors("D")
        assert Condition("closure", "depth", ">", 0) in query.conditions
        assert query.order_by[0].column == "depth"

    def test_children_at_position(self, planner):
        query = planner.children("A", 2)
        assert query.join == "descendant"
        assert _node_conditions(query) == [("position", "=", 2)]

    def test_descendants_at_exact_depth(self, planner):
        query = planner.descendants("A", 2)
        assert Condition("closure", "depth", "=", 2) in query.conditions
        assert Condition("closure", "depth", ">", 0) not in query.conditions

    def test_descendants_tree_uses_subquery(self, planner):
        (condition,) = planner.descendants_tree("A").conditions
        assert condition.op == "in"
        assert isinstance(condition.value, Subquery)
        assert condition.value.predicate == Predicate().where("ancestor", "=", "A").where(
            "depth", ">", 0
        )

    def test_roots(self, planner):
        query = planner.roots()
        assert query.join == "self"
        assert query.roots_only

    def test_where_keeps_every_other_field(self, planner):
        base = planner.parent("D")
        narrowed = base.where("node", "id", "<>", "X")
        assert dataclasses.replace(narrowed, conditions=base.conditions) == base
        assert {f.name for f in dataclasses.fields(NodeQuery)} == {
            "join", "conditions", "order_by", "roots_only", "limit",
        }

    def test_tree_filters_must_target_nodes(self, planner):
        planner.tree((node_filter("id", "in", ("A",)),))
        with pytest.raises(ValueError):
            planner.tree((Condition("closure", "depth", "=", 1),))


class TestSiblings:
    @pytest.mark.parametrize(
        ("direction", "expected"),
        [("prev", ("position", "<", 2)), ("next", ("position", ">", 2)), ("both", ("position", "<>", 2))],
    )
    def test_find_all(self, planner, direction, expected):
        query = planner.siblings("X", "P", 2, direction, "all")
        assert _node_conditions(query) == [("id", "<>", "X"), expected]

    @pytest.mark.parametrize(
        ("direction", "expected"),
        [("prev", ("position", "=", 1)), ("next", ("position", "=", 3)), ("both", ("position", "in", (1, 3)))],
    )
    def test_find_one(self, planner, direction, expected):
        query = planner.siblings("X", "P", 2, direction, "one")
        assert _node_conditions(query) == [("id", "<>", "X"), expected]

    def test_parent_scope(self, planner):
        query = planner.siblings("X", "P", 0)
        assert Condition("closure", "ancestor", "=", "P") in query.conditions
        assert Condition("closure", "depth", "=", 1) in query.conditions

    def test_root_siblings_are_other_roots(self, planner):
        query = planner.siblings("X", None, 0)
        assert query.roots_only

    def test_invalid_direction(self, planner):
        with pytest.raises(InvalidDirectionError):
            planner.siblings("X", "P", 0, "up")

    def test_invalid_find(self, planner):
        with pytest.raises(InvalidFindError):
            planner.siblings("X", "P", 0, "next", "some")

    def test_check_sibling_args_accepts_known_values(self):
        check_sibling_args("both", "one")
        with pytest.raises(InvalidDirectionError):
            check_sibling_args(None)


class TestClosurePredicates:
    def test_self_row(self, planner):
        assert planner.self_row("A").conditions == (
            Condition("closure", "ancestor", "=", "A"),
            Condition("closure", "descendant", "=", "A"),
        )

    def test_severed_links(self, planner):
        predicate = planner.severed_links(["B", "D"], ["A"])
        assert predicate.conditions == (
            Condition("closure", "descendant", "in", ("B", "D")),
            Condition("closure", "ancestor", "in", ("A",)),
        )

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValueError):
            Condition("node", "id", "regexp", ".*")
