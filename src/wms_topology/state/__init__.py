"""
State propagation for location groups.

Applies manual state changes and capacity-relevant mutations, works out which
groups changed effective availability and notifies the coupled control systems.
"""

from .engine import (
    StatePropagationEngine,
    GROUP_STATE_CHANGED,
    GROUP_AVAILABILITY_CHANGED,
    LOCATION_OCCUPANCY_CHANGED,
)
from .models import AvailabilityTransition, EngineResult, StateChange

__all__ = [
    "StatePropagationEngine",
    "GROUP_STATE_CHANGED",
    "GROUP_AVAILABILITY_CHANGED",
    "LOCATION_OCCUPANCY_CHANGED",
    "AvailabilityTransition",
    "EngineResult",
    "StateChange",
]
