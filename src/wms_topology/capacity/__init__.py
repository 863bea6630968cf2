"""
Capacity accounting for location groups.

Computes location counts bottom-up, occupancy and fill levels, and the
effective in/out availability derived from them.
"""

from .aggregator import CapacityAggregator
from .models import CapacitySnapshot

__all__ = [
    "CapacityAggregator",
    "CapacitySnapshot",
]
