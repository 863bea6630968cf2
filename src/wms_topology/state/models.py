"""Data models for the state propagation engine.

All records are frozen: the engine hands them to the host and never
touches them again.
"""

from dataclasses import dataclass, field
from typing import Optional

from wms_topology.core.group import Direction, GroupState


@dataclass(frozen=True)
class StateChange:
    """A committed change of a group's manual state.

    Attributes:
        group_id: The group whose state was set.
        group_name: Name of the group at the time of the change.
        system_code: Control system coupled with the group (routing key).
        direction: Inbound or outbound.
        old_state: Manual state before the change.
        new_state: Manual state after the change.
        version: Group version after the change.
    """

    group_id: int
    group_name: str
    system_code: Optional[str]
    direction: Direction
    old_state: GroupState
    new_state: GroupState
    version: int


@dataclass(frozen=True)
class AvailabilityTransition:
    """A flip of a group's effective availability for one direction."""

    group_id: int
    direction: Direction
    previous: bool
    current: bool
    reason: str


@dataclass(frozen=True)
class EngineResult:
    """What a mutation did, for the host and for notification delivery."""

    state_changes: list[StateChange] = field(default_factory=list)
    transitions: list[AvailabilityTransition] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """True if anything observable changed."""
        return bool(self.state_changes or self.transitions)
