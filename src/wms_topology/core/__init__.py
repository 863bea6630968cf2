"""
Core components of the wms-topology kernel.

This package contains:
- errors: Exception taxonomy
- location: Location dataclass (storage slot)
- group: LocationGroup dataclass and state enums
- tree: LocationGroupTree for structure, membership and versioning
- bus: Event Bus implementation
"""

from wms_topology.core.errors import (
    LocationGroupError,
    GroupNotFoundError,
    LocationNotFoundError,
    CycleError,
    DuplicateNameError,
    NotEmptyError,
    StaleVersionError,
    InvalidFillLevelError,
)
from wms_topology.core.location import Location
from wms_topology.core.group import Direction, GroupState, LocationGroup
from wms_topology.core.tree import LocationGroupTree
from wms_topology.core.bus import Event, EventBus, EventFilter

__all__ = [
    "LocationGroupError",
    "GroupNotFoundError",
    "LocationNotFoundError",
    "CycleError",
    "DuplicateNameError",
    "NotEmptyError",
    "StaleVersionError",
    "InvalidFillLevelError",
    "Location",
    "Direction",
    "GroupState",
    "LocationGroup",
    "LocationGroupTree",
    "Event",
    "EventBus",
    "EventFilter",
]
