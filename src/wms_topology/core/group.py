"""
LocationGroup dataclass and its state enums.

A LocationGroup is a named node in the warehouse topology: an area, an aisle,
a rack or any other set of Locations that shares flow permissions and a
capacity bound. Links to the parent, children and locations are stored as ids;
the LocationGroupTree owns the nodes and resolves the ids.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Set

from wms_topology.core.errors import InvalidFillLevelError


class GroupState(Enum):
    """Manual flow permission for one direction."""

    AVAILABLE = "available"
    NOT_AVAILABLE = "not_available"


class Direction(Enum):
    """Flow direction of transport units relative to a group."""

    IN = "in"
    OUT = "out"


def validate_fill_level(value: float) -> float:
    """Return value as float, raising InvalidFillLevelError outside [0.0, 1.0]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidFillLevelError(value)
    if not 0.0 <= value <= 1.0:
        raise InvalidFillLevelError(value)
    return float(value)


@dataclass(eq=False)
class LocationGroup:
    """
    A group of Locations and/or other LocationGroups.

    Stored fields are set by callers through the tree; location_count is
    derived and only written by the CapacityAggregator.

    Attributes:
        name: Unique human-readable identifier
        id: Assigned when the group is committed to a tree (None while new)
        description: Free text
        group_type: Free-form classification (e.g. "AISLE", "RACK")
        counting_active: Whether this group's Locations take part in
            occupancy accounting
        state_in: Manual inbound permission
        state_out: Manual outbound permission
        max_fill_level: Upper bound on the occupied share of Locations
        system_code: Control system (e.g. a PLC) coupled with this group
        parent_id: Id of the parent group (None for a root or a new group)
        child_ids: Ids of direct child groups
        location_ids: Ids of directly owned Locations
        location_count: Locations owned directly and through descendants
        version: Optimistic concurrency counter
        last_updated: Timestamp of the last committed mutation
    """

    name: str
    id: Optional[int] = None
    description: Optional[str] = None
    group_type: Optional[str] = None
    counting_active: bool = True
    state_in: GroupState = GroupState.AVAILABLE
    state_out: GroupState = GroupState.AVAILABLE
    max_fill_level: float = 1.0
    system_code: Optional[str] = None
    parent_id: Optional[int] = None
    child_ids: Set[int] = field(default_factory=set)
    location_ids: Set[str] = field(default_factory=set)
    location_count: int = 0
    version: int = 0
    last_updated: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Reject out-of-range fill levels at construction."""
        if not self.name:
            raise ValueError("Location group name is required")
        self.max_fill_level = validate_fill_level(self.max_fill_level)

    @property
    def is_new(self) -> bool:
        """True until the group has been committed and given an id."""
        return self.id is None

    def state(self, direction: Direction) -> GroupState:
        """Get the manual state for a direction."""
        if direction is Direction.IN:
            return self.state_in
        return self.state_out

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "group_type": self.group_type,
            "counting_active": self.counting_active,
            "state_in": self.state_in.value,
            "state_out": self.state_out.value,
            "max_fill_level": self.max_fill_level,
            "system_code": self.system_code,
            "parent_id": self.parent_id,
            "child_ids": sorted(self.child_ids),
            "location_ids": sorted(self.location_ids),
            "location_count": self.location_count,
            "version": self.version,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    def __str__(self) -> str:
        return self.name
