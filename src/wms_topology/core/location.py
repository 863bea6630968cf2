"""
Location dataclass.

A Location is a physical storage slot (a rack bin, a floor spot, a conveyor
buffer). The storage-location service owns its fields; the group tree only
reads the occupancy flag and tracks which group a location belongs to.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(eq=False)
class Location:
    """
    A storage slot that can hold one transport unit.

    Attributes:
        id: Unique identifier for this location (e.g. "AISLE1-RACK02-L3")
        occupied: True while a transport unit is stored here
        description: Optional free text
    """

    id: str
    occupied: bool = False
    description: Optional[str] = None

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return {
            "id": self.id,
            "occupied": self.occupied,
            "description": self.description,
        }
