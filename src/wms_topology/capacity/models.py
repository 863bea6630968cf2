"""Data models for capacity accounting."""

from dataclasses import dataclass


@dataclass(frozen=True)
class CapacitySnapshot:
    """Derived capacity figures for one group at one point in time.

    Attributes:
        group_id: The group the figures belong to.
        location_count: Locations owned directly and through descendants.
        occupied_count: Occupied Locations that take part in counting.
        fill_level: occupied_count / max(location_count, 1).
        max_fill_level: The group's configured bound.
        at_capacity: Whether inbound flow is blocked by the fill level.
        available_in: Effective inbound availability.
        available_out: Effective outbound availability.
    """

    group_id: int
    location_count: int
    occupied_count: int
    fill_level: float
    max_fill_level: float
    at_capacity: bool
    available_in: bool
    available_out: bool

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return {
            "group_id": self.group_id,
            "location_count": self.location_count,
            "occupied_count": self.occupied_count,
            "fill_level": self.fill_level,
            "max_fill_level": self.max_fill_level,
            "at_capacity": self.at_capacity,
            "available_in": self.available_in,
            "available_out": self.available_out,
        }
