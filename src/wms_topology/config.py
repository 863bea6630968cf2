"""
Configuration for the location group kernel.

Hosts load this from their own settings store and hand it to the tree and
the engine.
"""

from dataclasses import dataclass

from wms_topology.core.group import validate_fill_level


@dataclass
class TopologyConfig:
    """Kernel-wide defaults."""

    version: int = 1
    default_max_fill_level: float = 1.0      # Applied by create_group when none is given
    default_counting_active: bool = True     # Applied by create_group when none is given
    publish_availability_events: bool = True  # Emit location_group.availability_changed

    def __post_init__(self) -> None:
        self.default_max_fill_level = validate_fill_level(self.default_max_fill_level)

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return {
            "version": self.version,
            "default_max_fill_level": self.default_max_fill_level,
            "default_counting_active": self.default_counting_active,
            "publish_availability_events": self.publish_availability_events,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TopologyConfig":
        """Deserialize from dict."""
        return cls(
            version=data.get("version", 1),
            default_max_fill_level=data.get("default_max_fill_level", 1.0),
            default_counting_active=data.get("default_counting_active", True),
            publish_availability_events=data.get("publish_availability_events", True),
        )
