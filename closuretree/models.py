"""Canonical data structures for closuretree.

Defined once here, referenced everywhere else. A ClosureRow is one row of
the closure relation; a Node is one record of the entity table, optionally
annotated with the closure row it was reached through; a TreeNode is a Node
nested with its ordered children.
"""

from collections.abc import Iterator
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

SiblingDirection = Literal["prev", "next", "both"]
SiblingFind = Literal["all", "one"]

CLOSURE_FIELDS = ("ancestor", "descendant", "depth")


class ClosureRow(BaseModel):
    """descendant is reachable from ancestor in exactly `depth` steps."""

    model_config = ConfigDict(frozen=True)

    ancestor: str
    descendant: str
    depth: int = Field(ge=0)

    @model_validator(mode="after")
    def _self_row_iff_depth_zero(self) -> "ClosureRow":
        if (self.depth == 0) != (self.ancestor == self.descendant):
            raise ValueError(
                f"depth 0 requires ancestor == descendant, got {self.ancestor!r}"
                f" -> {self.descendant!r} at depth {self.depth}"
            )
        return self

    @property
    def is_self(self) -> bool:
        return self.depth == 0


class ClosureMetadata(BaseModel):
    """Closure columns attached to a node returned by a closure-aware query."""

    model_config = ConfigDict(frozen=True)

    ancestor: str
    descendant: str
    depth: int


class Node(BaseModel):
    id: str
    position: int = Field(default=0, ge=0)
    depth: int = 0  # distance from the root; derived from the closure table
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None
    deleted_at: str | None = None
    closure: ClosureMetadata | None = None


class TreeNode(BaseModel):
    node: Node
    children: list["TreeNode"] = Field(default_factory=list)

    @property
    def id(self) -> str:
        return self.node.id

    def walk(self) -> Iterator["TreeNode"]:
        """Pre-order traversal of this subtree, children in position order."""
        stack = [self]
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(current.children))
