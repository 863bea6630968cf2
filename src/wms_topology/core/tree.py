"""
LocationGroupTree for warehouse topology management.

The tree owns the group nodes, the name index and the location membership
index. It enforces the forest invariants and keeps derived location counts in
step with every structural or membership change.
"""

import itertools
import logging
import threading
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional

from wms_topology.capacity.aggregator import CapacityAggregator
from wms_topology.config import TopologyConfig
from wms_topology.core.errors import (
    CycleError,
    DuplicateNameError,
    GroupNotFoundError,
    LocationGroupError,
    LocationNotFoundError,
    NotEmptyError,
    StaleVersionError,
)
from wms_topology.core.group import Direction, GroupState, LocationGroup, validate_fill_level
from wms_topology.core.location import Location

logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


def _utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


class LocationGroupTree:
    """
    Manages the LocationGroup forest and the Locations assigned to it.

    Responsibilities:
    - Store groups in an arena keyed by id, with links held as ids
    - Keep group names unique through a single name index
    - Map each Location to the one group that owns it
    - Provide graph queries (parent, children, ancestors, descendants)
    - Apply versioned mutations under optimistic concurrency

    Every public method runs under one re-entrant lock, so readers never see
    a mutation whose counts have not been refreshed yet.

    Does NOT send notifications; see StatePropagationEngine.
    """

    def __init__(self, config: Optional[TopologyConfig] = None) -> None:
        """Initialize an empty tree."""
        self.config = config or TopologyConfig()
        self._groups: Dict[int, LocationGroup] = {}
        self._names: Dict[str, int] = {}
        self._locations: Dict[str, Location] = {}
        self._location_to_group: Dict[str, int] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self.capacity = CapacityAggregator(self)

    @property
    def lock(self) -> threading.RLock:
        """The lock guarding the tree; hold it to group several calls atomically."""
        return self._lock

    # Commit and creation

    def commit(self, group: LocationGroup, parent_id: Optional[int] = None) -> LocationGroup:
        """
        Commit a new group to the tree, assigning its id.

        Args:
            group: A new (uncommitted, unlinked) LocationGroup
            parent_id: Optional parent to attach the group to

        Returns:
            The committed group

        Raises:
            LocationGroupError: If the group was already committed or carries links
            DuplicateNameError: If the name is already taken
            InvalidFillLevelError: If max_fill_level is out of range
            GroupNotFoundError: If the parent doesn't exist
        """
        with self._lock:
            if not group.is_new:
                raise LocationGroupError(f"Location group '{group.name}' is already committed")
            if group.parent_id is not None or group.child_ids or group.location_ids:
                raise LocationGroupError(
                    f"Location group '{group.name}' must be committed without links"
                )
            if group.name in self._names:
                raise DuplicateNameError(f"Location group '{group.name}' already exists")
            group.max_fill_level = validate_fill_level(group.max_fill_level)

            parent = self.require_group(parent_id) if parent_id is not None else None

            group.id = next(self._ids)
            group.location_count = 0
            group.last_updated = _utc_now()
            self._groups[group.id] = group
            self._names[group.name] = group.id

            if parent is not None:
                parent.child_ids.add(group.id)
                group.parent_id = parent.id

            logger.info(f"Committed location group: {group.id} ({group.name})")
            return group

    def create_group(
        self,
        name: str,
        parent_id: Optional[int] = None,
        description: Optional[str] = None,
        group_type: Optional[str] = None,
        system_code: Optional[str] = None,
        max_fill_level: Optional[float] = None,
        counting_active: Optional[bool] = None,
    ) -> LocationGroup:
        """
        Create and commit a new group.

        Args:
            name: Unique name
            parent_id: Parent group ID (None for a root)
            description: Free text
            group_type: Free-form classification
            system_code: Coupled control system
            max_fill_level: Fill level bound (defaults to the configured value)
            counting_active: Counting flag (defaults to the configured value)

        Returns:
            The committed LocationGroup
        """
        if max_fill_level is None:
            max_fill_level = self.config.default_max_fill_level
        if counting_active is None:
            counting_active = self.config.default_counting_active

        group = LocationGroup(
            name=name,
            description=description,
            group_type=group_type,
            system_code=system_code,
            max_fill_level=max_fill_level,
            counting_active=counting_active,
        )
        return self.commit(group, parent_id=parent_id)

    # Queries

    def get_group(self, group_id: int) -> Optional[LocationGroup]:
        """
        Get a group by ID.

        Returns:
            The LocationGroup or None if not found
        """
        with self._lock:
            return self._groups.get(group_id)

    def require_group(self, group_id: int) -> LocationGroup:
        """
        Get a group by ID.

        Raises:
            GroupNotFoundError: If the group doesn't exist
        """
        with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                raise GroupNotFoundError(f"Location group '{group_id}' does not exist")
            return group

    def get_group_by_name(self, name: str) -> Optional[LocationGroup]:
        """Find a group by its unique name (exact match, case-sensitive)."""
        with self._lock:
            group_id = self._names.get(name)
            return self._groups[group_id] if group_id is not None else None

    def all_groups(self) -> List[LocationGroup]:
        """Get all committed groups, ordered by id."""
        with self._lock:
            return [self._groups[gid] for gid in sorted(self._groups)]

    def root_groups(self) -> List[LocationGroup]:
        """Get all groups without a parent."""
        with self._lock:
            return [g for g in self.all_groups() if g.parent_id is None]

    def parent_of(self, group_id: int) -> Optional[LocationGroup]:
        """
        Get the parent of a group.

        Returns:
            Parent LocationGroup or None for a root
        """
        with self._lock:
            group = self.require_group(group_id)
            if group.parent_id is None:
                return None
            return self._groups[group.parent_id]

    def children_of(self, group_id: int) -> List[LocationGroup]:
        """Get the direct children of a group, ordered by id."""
        with self._lock:
            group = self.require_group(group_id)
            return [self._groups[cid] for cid in sorted(group.child_ids)]

    def ancestors_of(self, group_id: int) -> List[LocationGroup]:
        """
        Get all ancestors of a group (parent, grandparent, etc.).

        Returns:
            List of ancestor groups, ordered from parent to root
        """
        with self._lock:
            ancestors = []
            current = self.parent_of(group_id)

            while current:
                ancestors.append(current)
                current = self.parent_of(current.id)

            return ancestors

    def lineage_of(self, group_id: int) -> List[LocationGroup]:
        """Get the group followed by its ancestors up to the root."""
        with self._lock:
            return [self.require_group(group_id)] + self.ancestors_of(group_id)

    def descendants_of(self, group_id: int) -> List[LocationGroup]:
        """
        Get all descendants of a group (children, grandchildren, etc.).

        Returns:
            List of descendant groups in breadth-first order
        """
        with self._lock:
            descendants = []
            to_visit = self.children_of(group_id)

            while to_visit:
                current = to_visit.pop(0)
                descendants.append(current)
                to_visit.extend(self.children_of(current.id))

            return descendants

    def get_location(self, location_id: str) -> Optional[Location]:
        """Get a registered Location by ID."""
        with self._lock:
            return self._locations.get(location_id)

    def locations_of(self, group_id: int) -> List[Location]:
        """Get the Locations owned directly by a group, ordered by id."""
        with self._lock:
            group = self.require_group(group_id)
            return [self._locations[lid] for lid in sorted(group.location_ids)]

    def group_of_location(self, location_id: str) -> Optional[LocationGroup]:
        """
        Get the group that owns a Location.

        Returns:
            The owning LocationGroup or None if the location is not assigned
        """
        with self._lock:
            group_id = self._location_to_group.get(location_id)
            return self._groups[group_id] if group_id is not None else None

    # Versioned mutations

    def _check_version(self, group: LocationGroup, expected_version: int) -> None:
        if group.version != expected_version:
            logger.warning(
                f"Rejected stale write to {group.id} ({group.name}): "
                f"expected version {expected_version}, current {group.version}"
            )
            raise StaleVersionError(group.id, expected_version, group.version)

    def _drop_name(self, group_id: int) -> None:
        """Remove the index entry of a group, whatever name it was filed under."""
        for name in [n for n, gid in self._names.items() if gid == group_id]:
            del self._names[name]

    def _reindex_name(self, group: LocationGroup) -> None:
        """File a group under its current name (the name must be free or its own)."""
        self._drop_name(group.id)
        self._names[group.name] = group.id

    def _touch(self, group: LocationGroup) -> None:
        group.version += 1
        group.last_updated = _utc_now()

    def attach(self, child_id: int, parent_id: int, expected_version: int) -> LocationGroup:
        """
        Attach a group under a new parent, moving it away from any previous one.

        Args:
            child_id: The group to move
            parent_id: The new parent
            expected_version: Version of the child observed by the caller

        Returns:
            The child group

        Raises:
            GroupNotFoundError: If either group doesn't exist
            StaleVersionError: If the child changed since the caller read it
            CycleError: If the parent is the child or one of its descendants
            DuplicateNameError: If the child's name is held by another group
        """
        with self._lock:
            child = self.require_group(child_id)
            parent = self.require_group(parent_id)
            self._check_version(child, expected_version)

            if parent is child or any(a is child for a in self.ancestors_of(parent.id)):
                logger.warning(f"Rejected attach of {child.id} under {parent.id}: cycle")
                raise CycleError(
                    f"Cannot attach '{child.name}' under '{parent.name}': "
                    f"'{parent.name}' is '{child.name}' or one of its descendants"
                )

            owner_id = self._names.get(child.name)
            if owner_id is not None and owner_id != child.id:
                raise DuplicateNameError(
                    f"Location group name '{child.name}' is held by group {owner_id}"
                )
            if owner_id is None:
                self._reindex_name(child)

            old_parent_id = child.parent_id
            if old_parent_id != parent.id:
                if old_parent_id is not None:
                    self._groups[old_parent_id].child_ids.discard(child.id)
                parent.child_ids.add(child.id)
                child.parent_id = parent.id

            self._touch(child)

            if old_parent_id is not None and old_parent_id != parent.id:
                self.capacity.refresh_lineage(old_parent_id, recount=False)
            self.capacity.refresh_lineage(parent.id, recount=False)

            logger.info(
                f"Attached {child.id} ({child.name}) under {parent.id} ({parent.name}), "
                f"previous parent: {old_parent_id}"
            )
            return child

    def detach(self, group_id: int, expected_version: int) -> LocationGroup:
        """
        Detach an empty group from its parent, making it a root.

        Raises:
            GroupNotFoundError: If the group doesn't exist
            StaleVersionError: If the group changed since the caller read it
            NotEmptyError: If the group has children or owns Locations
        """
        with self._lock:
            group = self.require_group(group_id)
            self._check_version(group, expected_version)
            self._check_empty(group, "detach")

            old_parent_id = group.parent_id
            if old_parent_id is not None:
                self._groups[old_parent_id].child_ids.discard(group.id)
                group.parent_id = None

            self._touch(group)

            if old_parent_id is not None:
                self.capacity.refresh_lineage(old_parent_id, recount=False)

            logger.info(f"Detached {group.id} ({group.name}) from {old_parent_id}")
            return group

    def delete_group(self, group_id: int, expected_version: int) -> LocationGroup:
        """
        Delete an empty group from the tree.

        Returns:
            The deleted group (no longer reachable through the tree)

        Raises:
            GroupNotFoundError: If the group doesn't exist
            StaleVersionError: If the group changed since the caller read it
            NotEmptyError: If the group has children or owns Locations
        """
        with self._lock:
            group = self.require_group(group_id)
            self._check_version(group, expected_version)
            self._check_empty(group, "delete")

            old_parent_id = group.parent_id
            if old_parent_id is not None:
                self._groups[old_parent_id].child_ids.discard(group.id)
                group.parent_id = None

            del self._groups[group.id]
            self._drop_name(group.id)

            if old_parent_id is not None:
                self.capacity.refresh_lineage(old_parent_id, recount=False)

            logger.info(f"Deleted location group: {group.id} ({group.name})")
            return group

    def _check_empty(self, group: LocationGroup, action: str) -> None:
        if group.child_ids or group.location_ids:
            logger.warning(f"Rejected {action} of {group.id} ({group.name}): not empty")
            raise NotEmptyError(
                f"Cannot {action} location group '{group.name}': has "
                f"{len(group.child_ids)} child groups and {len(group.location_ids)} locations"
            )

    def rename_group(self, group_id: int, name: str, expected_version: int) -> LocationGroup:
        """
        Rename a group, keeping the name index consistent.

        Raises:
            StaleVersionError: If the group changed since the caller read it
            DuplicateNameError: If another group already uses the name
        """
        with self._lock:
            group = self.require_group(group_id)
            self._check_version(group, expected_version)
            if not name:
                raise LocationGroupError("Location group name is required")

            owner_id = self._names.get(name)
            if owner_id is not None and owner_id != group.id:
                raise DuplicateNameError(f"Location group '{name}' already exists")

            old_name = group.name
            group.name = name
            self._reindex_name(group)
            self._touch(group)

            logger.info(f"Renamed location group {group.id}: {old_name} -> {name}")
            return group

    def update_group(
        self,
        group_id: int,
        expected_version: int,
        description: Optional[str] = None,
        group_type: Optional[str] = None,
        system_code: Optional[str] = None,
        max_fill_level: Optional[float] = None,
        counting_active: Optional[bool] = None,
    ) -> LocationGroup:
        """
        Update a group's stored properties.

        Args:
            group_id: Group ID to update
            expected_version: Version observed by the caller
            description: New description (None to keep current, empty string to clear)
            group_type: New type (None to keep current, empty string to clear)
            system_code: New system code (None to keep current, empty string to clear)
            max_fill_level: New fill level bound (None to keep current)
            counting_active: New counting flag (None to keep current)

        Returns:
            The updated group

        Raises:
            StaleVersionError: If the group changed since the caller read it
            InvalidFillLevelError: If max_fill_level is out of range
        """
        with self._lock:
            group = self.require_group(group_id)
            self._check_version(group, expected_version)
            if max_fill_level is not None:
                max_fill_level = validate_fill_level(max_fill_level)

            if description is not None:
                group.description = description or None
            if group_type is not None:
                group.group_type = group_type or None
            if system_code is not None:
                group.system_code = system_code or None
            if max_fill_level is not None:
                group.max_fill_level = max_fill_level
            if counting_active is not None:
                group.counting_active = counting_active

            self._touch(group)
            logger.info(f"Updated location group: {group.id} ({group.name})")
            return group

    def set_state(
        self,
        group_id: int,
        direction: Direction,
        state: GroupState,
        expected_version: int,
    ) -> GroupState:
        """
        Record the manual state of a group for one direction.

        Returns:
            The previous manual state

        Raises:
            StaleVersionError: If the group changed since the caller read it
        """
        with self._lock:
            group = self.require_group(group_id)
            self._check_version(group, expected_version)

            old_state = group.state(direction)
            if direction is Direction.IN:
                group.state_in = state
            else:
                group.state_out = state
            self._touch(group)

            logger.info(
                f"Set {direction.value}bound state of {group.id} ({group.name}): "
                f"{old_state.value} -> {state.value}"
            )
            return old_state

    def add_location(self, group_id: int, location: Location, expected_version: int) -> LocationGroup:
        """
        Assign a Location to a group.

        A Location owned by another group is moved; that group's version is
        bumped as well. Adding a Location the group already owns is a no-op.

        Raises:
            StaleVersionError: If the group changed since the caller read it
        """
        with self._lock:
            group = self.require_group(group_id)
            self._check_version(group, expected_version)

            old_group_id = self._location_to_group.get(location.id)
            if old_group_id == group.id:
                logger.debug(f"Location {location.id} already in group {group.id}")
                return group

            self._locations[location.id] = location
            if old_group_id is not None:
                old_group = self._groups[old_group_id]
                old_group.location_ids.discard(location.id)
                self._touch(old_group)

            group.location_ids.add(location.id)
            self._location_to_group[location.id] = group.id
            self._touch(group)

            if old_group_id is not None:
                self.capacity.refresh_lineage(old_group_id)
            self.capacity.refresh_lineage(group.id)

            logger.debug(f"Mapped location {location.id} to group {group.id} (from {old_group_id})")
            return group

    def remove_location(self, group_id: int, location_id: str, expected_version: int) -> Location:
        """
        Remove a Location from the group that owns it.

        Returns:
            The removed Location

        Raises:
            StaleVersionError: If the group changed since the caller read it
            LocationNotFoundError: If the group doesn't own the Location
        """
        with self._lock:
            group = self.require_group(group_id)
            self._check_version(group, expected_version)
            if location_id not in group.location_ids:
                raise LocationNotFoundError(
                    f"Location '{location_id}' is not owned by group '{group.name}'"
                )

            group.location_ids.discard(location_id)
            del self._location_to_group[location_id]
            location = self._locations.pop(location_id)
            self._touch(group)
            self.capacity.refresh_lineage(group.id)

            logger.debug(f"Removed location {location_id} from group {group.id}")
            return location

    # Persistence

    def export_state(self) -> Dict[str, Any]:
        """
        Create a JSON-serializable dump of the tree.

        Derived counts are not stored; restore_state recomputes them.
        """
        with self._lock:
            return {
                "version": STATE_FORMAT_VERSION,
                "groups": [
                    {
                        "id": g.id,
                        "name": g.name,
                        "description": g.description,
                        "group_type": g.group_type,
                        "counting_active": g.counting_active,
                        "state_in": g.state_in.value,
                        "state_out": g.state_out.value,
                        "max_fill_level": g.max_fill_level,
                        "system_code": g.system_code,
                        "parent_id": g.parent_id,
                        "version": g.version,
                        "last_updated": g.last_updated.isoformat() if g.last_updated else None,
                    }
                    for g in self.all_groups()
                ],
                "locations": [
                    dict(loc.to_dict(), group_id=self._location_to_group[loc.id])
                    for loc in sorted(self._locations.values(), key=lambda loc: loc.id)
                ],
            }

    def restore_state(self, state: Dict[str, Any]) -> None:
        """
        Rebuild an empty tree from a previous export_state() dump.

        The dump is validated as a whole before anything is stored.

        Raises:
            LocationGroupError: If the tree isn't empty or a group link is dangling
            DuplicateNameError: If two groups share a name
            InvalidFillLevelError: If a fill level is out of range
            CycleError: If the parent links contain a cycle
        """
        with self._lock:
            if self._groups:
                raise LocationGroupError("Cannot restore into a non-empty tree")

            groups: Dict[int, LocationGroup] = {}
            names: Dict[str, int] = {}
            for data in state.get("groups", []):
                last_updated = data.get("last_updated")
                group = LocationGroup(
                    name=data["name"],
                    id=data["id"],
                    description=data.get("description"),
                    group_type=data.get("group_type"),
                    counting_active=data.get("counting_active", True),
                    state_in=GroupState(data.get("state_in", GroupState.AVAILABLE.value)),
                    state_out=GroupState(data.get("state_out", GroupState.AVAILABLE.value)),
                    max_fill_level=data.get("max_fill_level", 1.0),
                    system_code=data.get("system_code"),
                    parent_id=data.get("parent_id"),
                    version=data.get("version", 0),
                    last_updated=datetime.fromisoformat(last_updated) if last_updated else None,
                )
                if group.name in names:
                    raise DuplicateNameError(f"Location group '{group.name}' appears twice")
                if group.id in groups:
                    raise LocationGroupError(f"Location group id {group.id} appears twice")
                groups[group.id] = group
                names[group.name] = group.id

            for group in groups.values():
                if group.parent_id is None:
                    continue
                if group.parent_id not in groups:
                    raise LocationGroupError(
                        f"Location group '{group.name}' refers to missing parent {group.parent_id}"
                    )
                groups[group.parent_id].child_ids.add(group.id)

            for group in groups.values():
                seen = {group.id}
                current = group.parent_id
                while current is not None:
                    if current in seen:
                        raise CycleError(f"Parent links of '{group.name}' form a cycle")
                    seen.add(current)
                    current = groups[current].parent_id

            locations: Dict[str, Location] = {}
            location_to_group: Dict[str, int] = {}
            for data in state.get("locations", []):
                group_id = data["group_id"]
                if group_id not in groups:
                    raise LocationGroupError(
                        f"Location '{data['id']}' refers to missing group {group_id}"
                    )
                if data["id"] in locations:
                    raise LocationGroupError(f"Location '{data['id']}' appears twice")
                locations[data["id"]] = Location(
                    id=data["id"],
                    occupied=data.get("occupied", False),
                    description=data.get("description"),
                )
                location_to_group[data["id"]] = group_id
                groups[group_id].location_ids.add(data["id"])

            self._groups = groups
            self._names = names
            self._locations = locations
            self._location_to_group = location_to_group
            self._ids = itertools.count(max(groups, default=0) + 1)

            for root in self.root_groups():
                self.capacity.recompute_count(root.id)

            logger.info(
                f"Restored {len(groups)} location groups and {len(locations)} locations"
            )
