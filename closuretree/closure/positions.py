"""Sibling position arithmetic. Pure functions, no I/O.

Positions are zero-based and dense within one sibling group (the children of
one parent, or the set of roots). Every mutation that adds a node to a group,
removes one from it, or moves one inside it is expressed as a PositionShift:
"add `delta` to every sibling whose position lies in [low, high]". The engine
picks the affected ids with `PositionShift.affected` and lets the node
repository apply the increment.
"""

from collections.abc import Collection, Mapping
from dataclasses import dataclass


@dataclass(frozen=True)
class PositionShift:
    low: int
    high: int | None  # None = unbounded
    delta: int

    def covers(self, position: int) -> bool:
        return position >= self.low and (self.high is None or position <= self.high)

    def affected(self, positions: Mapping[str, int]) -> list[str]:
        """Ids (in position order) whose position falls inside the shifted range."""
        hits = [(pos, node_id) for node_id, pos in positions.items() if self.covers(pos)]
        return [node_id for _, node_id in sorted(hits)]


def append_position(sibling_positions: Collection[int]) -> int:
    """Position right after the last sibling, or 0 for an empty group."""
    if not sibling_positions:
        return 0
    return max(sibling_positions) + 1


def guess_position(sibling_positions: Collection[int], requested: int | None) -> int:
    """Resolve the position a node will take in a sibling group.

    `sibling_positions` must not include the node being placed. No request
    means append. Requests past the end are clamped to the end, which also
    turns any request on an empty group into 0.
    """
    if requested is None:
        return append_position(sibling_positions)
    if requested < 0:
        raise InvalidPositionError(requested)
    return min(requested, len(sibling_positions))


def reorder_shift(old: int, new: int) -> PositionShift | None:
    """Shift for the other siblings when a node moves from `old` to `new` in its group.

    Moving to a higher position pulls the siblings in (old, new] down by one;
    moving lower pushes the siblings in [new, old) up by one.
    """
    if new > old:
        return PositionShift(low=old + 1, high=new, delta=-1)
    if new < old:
        return PositionShift(low=new, high=old - 1, delta=1)
    return None


def close_gap(old: int) -> PositionShift:
    """Shift for the siblings left behind when the node at `old` leaves the group."""
    return PositionShift(low=old + 1, high=None, delta=-1)


def open_gap(new: int) -> PositionShift:
    """Shift making room for a node entering the group at `new`."""
    return PositionShift(low=new, high=None, delta=1)


def apply_shift(positions: Mapping[str, int], shift: PositionShift | None) -> dict[str, int]:
    """Return a copy of `positions` with the shift applied."""
    if shift is None:
        return dict(positions)
    return {
        node_id: pos + shift.delta if shift.covers(pos) else pos
        for node_id, pos in positions.items()
    }


def is_dense(positions: Collection[int]) -> bool:
    """True when positions are exactly 0..len-1 with no gaps or duplicates."""
    return sorted(positions) == list(range(len(positions)))


class InvalidPositionError(ValueError):
    def __init__(self, position: int) -> None:
        self.position = position
        super().__init__(f"Position must be non-negative, got {position}")
