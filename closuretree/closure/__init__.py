"""Closure-table core: store, planner, positions, builder and engine."""

from closuretree.closure.builder import Forest, build_tree
from closuretree.closure.engine import TreeEngine
from closuretree.closure.planner import QueryPlanner
from closuretree.closure.store import ClosureStore

__all__ = ["ClosureStore", "Forest", "QueryPlanner", "TreeEngine", "build_tree"]
