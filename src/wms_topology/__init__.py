"""
wms-topology: LocationGroup trees for warehouse automation.

This library decides where transport units may be placed:
- LocationGroup forest with cycle-checked attach/detach
- Location membership and bottom-up location counts
- Fill-level capacity and effective in/out availability
- Versioned mutations with state-change notifications
"""

from wms_topology.core.location import Location
from wms_topology.core.group import Direction, GroupState, LocationGroup
from wms_topology.core.tree import LocationGroupTree
from wms_topology.core.bus import Event, EventBus, EventFilter
from wms_topology.core.errors import (
    LocationGroupError,
    CycleError,
    DuplicateNameError,
    NotEmptyError,
    StaleVersionError,
    InvalidFillLevelError,
)
from wms_topology.config import TopologyConfig
from wms_topology.capacity import CapacityAggregator, CapacitySnapshot
from wms_topology.state import StatePropagationEngine, EngineResult

__version__ = "0.1.0"

__all__ = [
    "Location",
    "Direction",
    "GroupState",
    "LocationGroup",
    "LocationGroupTree",
    "Event",
    "EventBus",
    "EventFilter",
    "LocationGroupError",
    "CycleError",
    "DuplicateNameError",
    "NotEmptyError",
    "StaleVersionError",
    "InvalidFillLevelError",
    "TopologyConfig",
    "CapacityAggregator",
    "CapacitySnapshot",
    "StatePropagationEngine",
    "EngineResult",
]
