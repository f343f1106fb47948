"""Closure-table trees over SQLite: ancestor/descendant queries without recursion."""

from closuretree.closure.builder import Forest
from closuretree.closure.engine import CycleError, NodeNotFoundError, TreeEngine
from closuretree.closure.planner import InvalidDirectionError, InvalidFindError, QueryPlanner
from closuretree.closure.positions import InvalidPositionError
from closuretree.closure.store import ClosureStore
from closuretree.config import Settings, SettingsError, load_settings
from closuretree.db.connection import Database, StorageError
from closuretree.models import ClosureMetadata, ClosureRow, Node, TreeNode
from closuretree.trees.service import TreeService

__version__ = "0.1.0"

__all__ = [
    "ClosureMetadata",
    "ClosureRow",
    "ClosureStore",
    "CycleError",
    "Database",
    "Forest",
    "InvalidDirectionError",
    "InvalidFindError",
    "InvalidPositionError",
    "Node",
    "NodeNotFoundError",
    "QueryPlanner",
    "Settings",
    "SettingsError",
    "StorageError",
    "TreeEngine",
    "TreeNode",
    "TreeService",
    "load_settings",
]
