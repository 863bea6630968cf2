"""Capacity accounting for the location group tree.

Location counts are structural and unconditional: every Location under a
group counts towards it. Occupancy is conditional: a group with counting
switched off keeps its directly owned Locations out of its own occupancy and
out of every ancestor's occupancy sum.

Inbound flow is gated by the fill level, outbound flow never is, so a full
group can always be emptied.
"""

import logging
from typing import TYPE_CHECKING

from wms_topology.core.group import Direction, GroupState, LocationGroup

from .models import CapacitySnapshot

if TYPE_CHECKING:
    from wms_topology.core.tree import LocationGroupTree

logger = logging.getLogger(__name__)


class CapacityAggregator:
    """Computes location counts, fill levels and effective availability."""

    def __init__(self, tree: "LocationGroupTree") -> None:
        self._tree = tree

    # Location counts

    def recompute_count(self, group_id: int) -> int:
        """Recount a group's whole subtree from scratch and memoize every node.

        Args:
            group_id: The subtree root.

        Returns:
            The group's new location count.
        """
        with self._tree.lock:
            return self._recount(self._tree.require_group(group_id))

    def _recount(self, group: LocationGroup) -> int:
        count = len(group.location_ids)
        for child in self._tree.children_of(group.id):
            count += self._recount(child)
        group.location_count = count
        return count

    def _pull(self, group: LocationGroup) -> int:
        """Recount a group from its own Locations and its children's memoized counts."""
        count = len(group.location_ids) + sum(
            child.location_count for child in self._tree.children_of(group.id)
        )
        group.location_count = count
        return count

    def refresh_lineage(self, group_id: int, recount: bool = True) -> None:
        """Bring the counts of a group and all of its ancestors up to date.

        Args:
            group_id: The group whose membership or children changed.
            recount: Recount the group's subtree; when False only its direct
                members and its children's memoized counts are used.
        """
        with self._tree.lock:
            group = self._tree.require_group(group_id)
            if recount:
                self._recount(group)
            else:
                self._pull(group)

            for ancestor in self._tree.ancestors_of(group_id):
                self._pull(ancestor)

            logger.debug(
                f"Refreshed counts from {group.id} ({group.name}): "
                f"location_count={group.location_count}"
            )

    def location_count(self, group_id: int) -> int:
        """Get the memoized location count of a group."""
        return self._tree.require_group(group_id).location_count

    # Occupancy

    def occupied_count(self, group_id: int) -> int:
        """Count occupied Locations under a group that take part in counting."""
        with self._tree.lock:
            groups = [self._tree.require_group(group_id)] + self._tree.descendants_of(group_id)
            occupied = 0
            for group in groups:
                if not group.counting_active:
                    continue
                occupied += sum(1 for loc in self._tree.locations_of(group.id) if loc.occupied)
            return occupied

    def fill_level(self, group_id: int) -> float:
        """Get the occupied share of a group's Locations (0.0 for an empty group)."""
        with self._tree.lock:
            group = self._tree.require_group(group_id)
            return self.occupied_count(group_id) / max(group.location_count, 1)

    def is_at_capacity(self, group_id: int) -> bool:
        """Check whether a group's fill level has reached its max fill level.

        Groups without counting and groups without Locations are never at capacity.
        """
        with self._tree.lock:
            group = self._tree.require_group(group_id)
            if not group.counting_active or group.location_count == 0:
                return False
            return self.fill_level(group_id) >= group.max_fill_level

    def effective_availability(self, group_id: int, direction: Direction) -> bool:
        """Combine a group's manual state with its capacity for one direction."""
        with self._tree.lock:
            group = self._tree.require_group(group_id)
            if group.state(direction) is not GroupState.AVAILABLE:
                return False
            if direction is Direction.IN and self.is_at_capacity(group_id):
                return False
            return True

    def snapshot(self, group_id: int) -> CapacitySnapshot:
        """Collect all derived capacity figures of a group consistently."""
        with self._tree.lock:
            group = self._tree.require_group(group_id)
            return CapacitySnapshot(
                group_id=group.id,
                location_count=group.location_count,
                occupied_count=self.occupied_count(group_id),
                fill_level=self.fill_level(group_id),
                max_fill_level=group.max_fill_level,
                at_capacity=self.is_at_capacity(group_id),
                available_in=self.effective_availability(group_id, Direction.IN),
                available_out=self.effective_availability(group_id, Direction.OUT),
            )
