"""The State Propagation Engine for location groups.

Manual states are local facts: setting a group's state never rewrites the
state of its ancestors or descendants. What does propagate is capacity. After
every mutation the engine re-evaluates the effective availability of each
group in the affected lineage and reports the ones that flipped.

Notifications are published after the tree lock is released, so a slow
control-system adapter never holds up other writers.
"""

import logging
from typing import Callable, Iterable, Optional, TypeVar

from wms_topology.config import TopologyConfig
from wms_topology.capacity import CapacityAggregator, CapacitySnapshot
from wms_topology.core.bus import Event, EventBus, EventFilter
from wms_topology.core.errors import LocationNotFoundError
from wms_topology.core.group import Direction, GroupState, LocationGroup
from wms_topology.core.location import Location
from wms_topology.core.tree import LocationGroupTree

from .models import AvailabilityTransition, EngineResult, StateChange

logger = logging.getLogger(__name__)

GROUP_STATE_CHANGED = "location_group.state_changed"
GROUP_AVAILABILITY_CHANGED = "location_group.availability_changed"
LOCATION_OCCUPANCY_CHANGED = "location.occupancy_changed"

_DIRECTIONS = (Direction.IN, Direction.OUT)

T = TypeVar("T")


class StatePropagationEngine:
    """Applies mutations to a LocationGroupTree and reports their effect.

    The engine remembers the last effective availability it saw for each
    group so that occupancy changes reported after the fact can still be
    turned into transitions.
    """

    def __init__(
        self,
        tree: LocationGroupTree,
        bus: Optional[EventBus] = None,
        config: Optional[TopologyConfig] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            tree: The tree to operate on.
            bus: Optional EventBus for notifications and occupancy reports.
            config: Kernel configuration (defaults to the tree's).
        """
        self._tree = tree
        self._bus = bus
        self.config = config or tree.config
        self._availability: dict[int, tuple[bool, bool]] = {}

        with tree.lock:
            for group in tree.all_groups():
                self._availability[group.id] = self._evaluate(group.id)

        if bus is not None:
            bus.set_tree(tree)
            bus.subscribe(
                self._on_location_occupancy_changed,
                EventFilter(event_type=LOCATION_OCCUPANCY_CHANGED),
            )

        logger.info(f"State engine initialized with {len(self._availability)} groups")

    @property
    def capacity(self) -> CapacityAggregator:
        return self._tree.capacity

    # --- Read accessors ---

    def effective_availability(self, group_id: int, direction: Direction) -> bool:
        """Get the effective availability of a group for one direction."""
        return self.capacity.effective_availability(group_id, direction)

    def is_at_capacity(self, group_id: int) -> bool:
        return self.capacity.is_at_capacity(group_id)

    def snapshot(self, group_id: int) -> CapacitySnapshot:
        return self.capacity.snapshot(group_id)

    # --- Mutations ---

    def set_state(
        self,
        group_id: int,
        direction: Direction,
        state: GroupState,
        expected_version: int,
    ) -> EngineResult:
        """Record a manual state override and notify the coupled control system.

        Args:
            group_id: The group to update.
            direction: Inbound or outbound.
            state: The new manual state.
            expected_version: Version of the group observed by the caller.

        Returns:
            EngineResult with the state change and any availability transitions.

        Raises:
            StaleVersionError: If another writer committed first.
        """
        with self._tree.lock:
            old_state, transitions = self._apply(
                [group_id],
                lambda: self._tree.set_state(group_id, direction, state, expected_version),
                reason=f"{direction.value}bound state set to {state.value}",
            )
            group = self._tree.require_group(group_id)
            change = StateChange(
                group_id=group.id,
                group_name=group.name,
                system_code=group.system_code,
                direction=direction,
                old_state=old_state,
                new_state=state,
                version=group.version,
            )

        return self._finish(EngineResult(state_changes=[change], transitions=transitions))

    def attach(self, child_id: int, parent_id: int, expected_version: int) -> EngineResult:
        """Move a group under a new parent."""
        with self._tree.lock:
            old_parent_id = self._tree.require_group(child_id).parent_id
            _, transitions = self._apply(
                [child_id, old_parent_id, parent_id],
                lambda: self._tree.attach(child_id, parent_id, expected_version),
                reason=f"group {child_id} attached under {parent_id}",
            )

        return self._finish(EngineResult(transitions=transitions))

    def detach(self, group_id: int, expected_version: int) -> EngineResult:
        """Detach an empty group from its parent."""
        with self._tree.lock:
            old_parent_id = self._tree.require_group(group_id).parent_id
            _, transitions = self._apply(
                [group_id, old_parent_id],
                lambda: self._tree.detach(group_id, expected_version),
                reason=f"group {group_id} detached",
            )

        return self._finish(EngineResult(transitions=transitions))

    def delete_group(self, group_id: int, expected_version: int) -> EngineResult:
        """Delete an empty group."""
        with self._tree.lock:
            old_parent_id = self._tree.require_group(group_id).parent_id
            _, transitions = self._apply(
                [old_parent_id],
                lambda: self._tree.delete_group(group_id, expected_version),
                reason=f"group {group_id} deleted",
            )
            self._availability.pop(group_id, None)

        return self._finish(EngineResult(transitions=transitions))

    def add_location(self, group_id: int, location: Location, expected_version: int) -> EngineResult:
        """Assign a Location to a group (moving it away from its previous group)."""
        with self._tree.lock:
            previous = self._tree.group_of_location(location.id)
            _, transitions = self._apply(
                [group_id, previous.id if previous else None],
                lambda: self._tree.add_location(group_id, location, expected_version),
                reason=f"location {location.id} added to group {group_id}",
            )

        return self._finish(EngineResult(transitions=transitions))

    def remove_location(self, group_id: int, location_id: str, expected_version: int) -> EngineResult:
        """Remove a Location from its group."""
        with self._tree.lock:
            _, transitions = self._apply(
                [group_id],
                lambda: self._tree.remove_location(group_id, location_id, expected_version),
                reason=f"location {location_id} removed from group {group_id}",
            )

        return self._finish(EngineResult(transitions=transitions))

    def update_group(self, group_id: int, expected_version: int, **changes) -> EngineResult:
        """Update stored group properties (see LocationGroupTree.update_group)."""
        with self._tree.lock:
            _, transitions = self._apply(
                [group_id],
                lambda: self._tree.update_group(group_id, expected_version, **changes),
                reason=f"group {group_id} settings updated",
            )

        return self._finish(EngineResult(transitions=transitions))

    def refresh_location(self, location_id: str) -> EngineResult:
        """Re-evaluate the lineage of a Location whose occupancy has changed.

        Raises:
            LocationNotFoundError: If the Location isn't assigned to any group.
        """
        with self._tree.lock:
            group = self._tree.group_of_location(location_id)
            if group is None:
                raise LocationNotFoundError(f"Location '{location_id}' is not assigned to a group")
            transitions = self._settle([group.id], reason=f"occupancy of {location_id} changed")

        return self._finish(EngineResult(transitions=transitions))

    def _on_location_occupancy_changed(self, event: Event) -> None:
        """Handle an occupancy report from the storage-location service."""
        location_id = event.location_id or event.payload.get("location_id")
        if not location_id:
            return

        if self._tree.group_of_location(location_id) is None:
            logger.debug(f"Location {location_id} not assigned to any group")
            return

        self.refresh_location(location_id)

    # --- Internals ---

    def _evaluate(self, group_id: int) -> tuple[bool, bool]:
        return (
            self.capacity.effective_availability(group_id, Direction.IN),
            self.capacity.effective_availability(group_id, Direction.OUT),
        )

    def _lineage_ids(self, group_ids: Iterable[Optional[int]]) -> list[int]:
        ids: list[int] = []
        for group_id in group_ids:
            if group_id is None or self._tree.get_group(group_id) is None:
                continue
            for group in self._tree.lineage_of(group_id):
                if group.id not in ids:
                    ids.append(group.id)
        return ids

    def _apply(
        self,
        group_ids: list[Optional[int]],
        mutation: Callable[[], T],
        reason: str,
    ) -> tuple[T, list[AvailabilityTransition]]:
        """Run a tree mutation and diff the availability of the touched lineages.

        Must be called with the tree lock held.
        """
        for group_id in self._lineage_ids(group_ids):
            if group_id not in self._availability:
                self._availability[group_id] = self._evaluate(group_id)

        value = mutation()
        return value, self._settle(group_ids, reason)

    def _settle(
        self, group_ids: list[Optional[int]], reason: str
    ) -> list[AvailabilityTransition]:
        transitions: list[AvailabilityTransition] = []

        for group_id in self._lineage_ids(group_ids):
            current = self._evaluate(group_id)
            previous = self._availability.get(group_id)
            self._availability[group_id] = current
            if previous is None:
                continue

            for direction, was, now in zip(_DIRECTIONS, previous, current):
                if was != now:
                    transitions.append(
                        AvailabilityTransition(
                            group_id=group_id,
                            direction=direction,
                            previous=was,
                            current=now,
                            reason=reason,
                        )
                    )

        for transition in transitions:
            logger.info(
                f"  {transition.group_id}: {transition.direction.value}bound "
                f"{'AVAILABLE' if transition.previous else 'NOT_AVAILABLE'} -> "
                f"{'AVAILABLE' if transition.current else 'NOT_AVAILABLE'} ({reason})"
            )
        return transitions

    def _finish(self, result: EngineResult) -> EngineResult:
        """Publish the result's notifications and hand it back."""
        if self._bus is None:
            return result

        for change in result.state_changes:
            self._bus.publish(
                Event(
                    type=GROUP_STATE_CHANGED,
                    source="state",
                    group_id=change.group_id,
                    system_code=change.system_code,
                    payload={
                        "group_name": change.group_name,
                        "direction": change.direction.value,
                        "old_state": change.old_state.value,
                        "new_state": change.new_state.value,
                        "version": change.version,
                    },
                )
            )

        if self.config.publish_availability_events:
            for transition in result.transitions:
                group: Optional[LocationGroup] = self._tree.get_group(transition.group_id)
                self._bus.publish(
                    Event(
                        type=GROUP_AVAILABILITY_CHANGED,
                        source="state",
                        group_id=transition.group_id,
                        system_code=group.system_code if group else None,
                        payload={
                            "direction": transition.direction.value,
                            "available": transition.current,
                            "previous_available": transition.previous,
                            "reason": transition.reason,
                        },
                    )
                )

        return result
