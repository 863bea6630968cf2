"""
Comprehensive tests for LocationGroupTree with extensive logging.

These tests verify:
- Group commit and name uniqueness
- Graph queries (parent, children, ancestors, descendants)
- attach / detach / delete with cycle and emptiness checks
- Versioned mutations (optimistic concurrency)
- Location membership and derived location counts
"""

import logging
import pytest

from wms_topology import Location, LocationGroup, LocationGroupTree
from wms_topology.core.errors import (
    CycleError,
    DuplicateNameError,
    GroupNotFoundError,
    InvalidFillLevelError,
    LocationGroupError,
    LocationNotFoundError,
    NotEmptyError,
    StaleVersionError,
)

# Configure logging for verbose test output
logging.basicConfig(
    level=logging.DEBUG, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def assert_counts_consistent(tree: LocationGroupTree) -> None:
    """Every memoized count equals the Locations reachable through the group."""
    for group in tree.all_groups():
        children = tree.children_of(group.id)
        assert group.location_count == len(group.location_ids) + sum(
            c.location_count for c in children
        )
        reachable = len(group.location_ids) + sum(
            len(d.location_ids) for d in tree.descendants_of(group.id)
        )
        assert group.location_count == reachable


@pytest.fixture
def tree():
    """Create a tree with a realistic hierarchy.

    WAREHOUSE -> AREA-A -> AISLE-1
                        -> AISLE-2
    """
    logger.info("=" * 80)
    logger.info("FIXTURE: Setting up LocationGroupTree")
    logger.info("=" * 80)

    t = LocationGroupTree()
    warehouse = t.create_group("WAREHOUSE", group_type="SITE")
    area = t.create_group("AREA-A", parent_id=warehouse.id, group_type="AREA")
    t.create_group("AISLE-1", parent_id=area.id, group_type="AISLE")
    t.create_group("AISLE-2", parent_id=area.id, group_type="AISLE")
    logger.debug(f"  groups: {[g.name for g in t.all_groups()]}")
    return t


def by_name(tree: LocationGroupTree, name: str) -> LocationGroup:
    group = tree.get_group_by_name(name)
    assert group is not None
    return group


class TestCommit:
    """Test suite for committing groups."""

    def test_commit_assigns_id(self):
        """A detached group gets an id on commit."""
        logger.info("TEST: Commit assigns id")
        t = LocationGroupTree()
        group = LocationGroup(name="DOCK", description="Inbound dock", system_code="PLC-1")
        assert group.is_new

        t.commit(group)
        logger.info(f"✓ Committed {group.name} as {group.id}")

        assert not group.is_new
        assert group.version == 0
        assert group.last_updated is not None
        assert t.get_group(group.id) is group

    def test_commit_twice_rejected(self):
        t = LocationGroupTree()
        group = t.create_group("DOCK")

        with pytest.raises(LocationGroupError, match="already committed"):
            t.commit(group)

    def test_duplicate_name_rejected(self, tree):
        """Names are unique across the whole tree."""
        before = len(tree.all_groups())

        with pytest.raises(DuplicateNameError):
            tree.create_group("AISLE-1")

        assert len(tree.all_groups()) == before
        logger.info("✓ Duplicate name rejected, tree unchanged")

    def test_missing_parent_rejected(self):
        t = LocationGroupTree()
        group = LocationGroup(name="DOCK")

        with pytest.raises(GroupNotFoundError, match="does not exist"):
            t.commit(group, parent_id=42)

        assert group.is_new
        assert t.get_group_by_name("DOCK") is None

    def test_commit_with_links_rejected(self):
        t = LocationGroupTree()
        group = LocationGroup(name="DOCK", child_ids={7})

        with pytest.raises(LocationGroupError, match="without links"):
            t.commit(group)

    def test_invalid_fill_level_rejected(self):
        t = LocationGroupTree()

        with pytest.raises(InvalidFillLevelError):
            t.create_group("DOCK", max_fill_level=1.01)

        assert t.all_groups() == []


class TestHierarchyQueries:
    """Test suite for hierarchy graph queries."""

    def test_ancestors_ordered_parent_to_root(self, tree):
        aisle = by_name(tree, "AISLE-1")

        ancestors = tree.ancestors_of(aisle.id)
        logger.info(f"Ancestors of AISLE-1: {[a.name for a in ancestors]}")

        assert [a.name for a in ancestors] == ["AREA-A", "WAREHOUSE"]
        # Restartable: a second walk yields the same sequence
        assert tree.ancestors_of(aisle.id) == ancestors

    def test_ancestors_of_root_is_empty(self, tree):
        assert tree.ancestors_of(by_name(tree, "WAREHOUSE").id) == []

    def test_lineage_includes_group(self, tree):
        aisle = by_name(tree, "AISLE-1")
        assert [g.name for g in tree.lineage_of(aisle.id)] == ["AISLE-1", "AREA-A", "WAREHOUSE"]

    def test_descendants(self, tree):
        warehouse = by_name(tree, "WAREHOUSE")

        descendants = tree.descendants_of(warehouse.id)

        assert {d.name for d in descendants} == {"AREA-A", "AISLE-1", "AISLE-2"}
        assert descendants[0].name == "AREA-A"  # breadth-first

    def test_descendants_of_leaf_is_empty(self, tree):
        assert tree.descendants_of(by_name(tree, "AISLE-2").id) == []

    def test_unknown_group(self, tree):
        with pytest.raises(GroupNotFoundError):
            tree.children_of(999)


class TestAttach:
    """Test suite for attach."""

    def test_attach_root_under_parent(self, tree):
        aisle = by_name(tree, "AISLE-1")
        rack = tree.create_group("RACK-1")

        tree.attach(rack.id, aisle.id, expected_version=0)

        assert rack.parent_id == aisle.id
        assert rack.id in aisle.child_ids
        assert rack.version == 1
        assert tree.root_groups() == [by_name(tree, "WAREHOUSE")]

    def test_attach_moves_from_previous_parent(self, tree):
        area = by_name(tree, "AREA-A")
        aisle1 = by_name(tree, "AISLE-1")
        aisle2 = by_name(tree, "AISLE-2")
        tree.add_location(aisle2.id, Location(id="A2-01"), expected_version=0)

        tree.attach(aisle2.id, aisle1.id, expected_version=1)

        assert aisle2.id not in area.child_ids
        assert aisle2.id in aisle1.child_ids
        assert aisle1.location_count == 1
        assert area.location_count == 1
        assert_counts_consistent(tree)

    def test_attach_under_own_descendant_fails(self, tree):
        """Attaching a node below itself is a cycle; nothing changes."""
        logger.info("TEST: Cycle detection")
        warehouse = by_name(tree, "WAREHOUSE")
        aisle = by_name(tree, "AISLE-1")

        with pytest.raises(CycleError):
            tree.attach(warehouse.id, aisle.id, expected_version=0)

        assert warehouse.parent_id is None
        assert aisle.child_ids == set()
        assert warehouse.version == 0
        logger.info("✓ CycleError raised, tree unchanged")

    def test_attach_to_itself_fails(self, tree):
        aisle = by_name(tree, "AISLE-1")

        with pytest.raises(CycleError):
            tree.attach(aisle.id, aisle.id, expected_version=0)

        assert aisle.parent_id == by_name(tree, "AREA-A").id

    def test_attach_with_colliding_name_fails(self, tree):
        rack = tree.create_group("RACK-1")
        rack.name = "AISLE-1"  # bypasses the name index

        with pytest.raises(DuplicateNameError):
            tree.attach(rack.id, by_name(tree, "AREA-A").id, expected_version=0)

        assert rack.parent_id is None

    def test_attach_with_stale_version_fails(self, tree):
        rack = tree.create_group("RACK-1")

        with pytest.raises(StaleVersionError) as exc_info:
            tree.attach(rack.id, by_name(tree, "AISLE-1").id, expected_version=5)

        assert exc_info.value.expected == 5
        assert exc_info.value.actual == 0
        assert rack.parent_id is None

    def test_attach_reindexes_directly_assigned_name(self, tree):
        """A name set on the entity itself is filed in the index on attach."""
        rack = tree.create_group("RACK-1")
        rack.name = "RACK-9"

        tree.attach(rack.id, by_name(tree, "AISLE-1").id, expected_version=0)

        assert tree.get_group_by_name("RACK-9") is rack
        assert tree.get_group_by_name("RACK-1") is None

        tree.detach(rack.id, expected_version=1)
        tree.delete_group(rack.id, expected_version=2)

        assert tree.get_group_by_name("RACK-9") is None
        assert tree.get_group_by_name("RACK-1") is None
        replacement = tree.create_group("RACK-1")
        assert tree.get_group_by_name("RACK-1") is replacement


class TestDetach:
    """Test suite for detach and delete."""

    def test_detach_group_with_children_fails(self, tree):
        area = by_name(tree, "AREA-A")

        with pytest.raises(NotEmptyError):
            tree.detach(area.id, expected_version=0)

        assert area.parent_id == by_name(tree, "WAREHOUSE").id

    def test_detach_group_with_locations_fails(self, tree):
        aisle = by_name(tree, "AISLE-1")
        tree.add_location(aisle.id, Location(id="A1-01"), expected_version=0)

        with pytest.raises(NotEmptyError):
            tree.detach(aisle.id, expected_version=1)

        assert aisle.parent_id is not None

    def test_detach_empty_group(self, tree):
        area = by_name(tree, "AREA-A")
        aisle = by_name(tree, "AISLE-2")

        tree.detach(aisle.id, expected_version=0)

        assert aisle.parent_id is None
        assert aisle.id not in area.child_ids
        assert aisle.version == 1
        assert aisle in tree.root_groups()

    def test_attach_detach_round_trip(self, tree):
        """detach(attach(child, parent)) restores the parent and all counts."""
        aisle = by_name(tree, "AISLE-1")
        tree.add_location(aisle.id, Location(id="A1-01"), expected_version=0)
        rack = tree.create_group("RACK-1")
        counts_before = {g.name: g.location_count for g in tree.all_groups()}

        tree.attach(rack.id, aisle.id, expected_version=0)
        tree.detach(rack.id, expected_version=1)

        assert rack.parent_id is None
        assert {g.name: g.location_count for g in tree.all_groups()} == counts_before

    def test_delete_group(self, tree):
        area = by_name(tree, "AREA-A")
        aisle = by_name(tree, "AISLE-2")

        tree.delete_group(aisle.id, expected_version=0)

        assert tree.get_group(aisle.id) is None
        assert tree.get_group_by_name("AISLE-2") is None
        assert aisle.id not in area.child_ids

        # The name becomes available again
        replacement = tree.create_group("AISLE-2", parent_id=area.id)
        assert replacement.id != aisle.id

    def test_delete_non_empty_group_fails(self, tree):
        warehouse = by_name(tree, "WAREHOUSE")

        with pytest.raises(NotEmptyError):
            tree.delete_group(warehouse.id, expected_version=0)

        assert tree.get_group(warehouse.id) is warehouse


class TestRenameAndUpdate:
    """Test suite for rename_group and update_group."""

    def test_rename(self, tree):
        aisle = by_name(tree, "AISLE-1")

        tree.rename_group(aisle.id, "AISLE-1A", expected_version=0)

        assert aisle.name == "AISLE-1A"
        assert tree.get_group_by_name("AISLE-1A") is aisle
        assert tree.get_group_by_name("AISLE-1") is None
        assert aisle.version == 1

    def test_rename_to_taken_name_fails(self, tree):
        aisle = by_name(tree, "AISLE-1")

        with pytest.raises(DuplicateNameError):
            tree.rename_group(aisle.id, "AISLE-2", expected_version=0)

        assert aisle.name == "AISLE-1"
        assert aisle.version == 0

    def test_rename_to_same_name_is_allowed(self, tree):
        aisle = by_name(tree, "AISLE-1")
        tree.rename_group(aisle.id, "AISLE-1", expected_version=0)
        assert tree.get_group_by_name("AISLE-1") is aisle

    def test_rename_after_direct_assignment_drops_old_entry(self, tree):
        aisle = by_name(tree, "AISLE-1")
        aisle.name = "AISLE-X"

        tree.rename_group(aisle.id, "AISLE-1A", expected_version=0)

        assert tree.get_group_by_name("AISLE-1A") is aisle
        assert tree.get_group_by_name("AISLE-1") is None
        assert tree.get_group_by_name("AISLE-X") is None
        assert tree.create_group("AISLE-1").id != aisle.id

    def test_delete_after_direct_assignment_frees_name(self, tree):
        aisle = by_name(tree, "AISLE-2")
        aisle.name = "AISLE-2B"

        tree.delete_group(aisle.id, expected_version=0)

        assert tree.get_group_by_name("AISLE-2") is None
        tree.create_group("AISLE-2")

    def test_update_fields(self, tree):
        aisle = by_name(tree, "AISLE-1")

        tree.update_group(
            aisle.id,
            expected_version=0,
            description="Narrow aisle",
            system_code="PLC-7",
            max_fill_level=0.85,
            counting_active=False,
        )

        assert aisle.description == "Narrow aisle"
        assert aisle.system_code == "PLC-7"
        assert aisle.max_fill_level == 0.85
        assert aisle.counting_active is False
        assert aisle.group_type == "AISLE"
        assert aisle.version == 1

    def test_update_empty_string_clears(self, tree):
        aisle = by_name(tree, "AISLE-1")
        tree.update_group(aisle.id, expected_version=0, system_code="PLC-7")

        tree.update_group(aisle.id, expected_version=1, system_code="")

        assert aisle.system_code is None

    def test_update_with_invalid_fill_level_changes_nothing(self, tree):
        aisle = by_name(tree, "AISLE-1")

        with pytest.raises(InvalidFillLevelError):
            tree.update_group(
                aisle.id, expected_version=0, description="changed", max_fill_level=2.0
            )

        assert aisle.description is None
        assert aisle.max_fill_level == 1.0
        assert aisle.version == 0

    def test_update_with_stale_version_fails(self, tree):
        aisle = by_name(tree, "AISLE-1")
        tree.update_group(aisle.id, expected_version=0, description="first")

        with pytest.raises(StaleVersionError):
            tree.update_group(aisle.id, expected_version=0, description="second")

        assert aisle.description == "first"


class TestMembership:
    """Test suite for Location membership and counts."""

    def test_counts_propagate_to_ancestors(self, tree):
        logger.info("TEST: Count propagation")
        aisle1 = by_name(tree, "AISLE-1")
        aisle2 = by_name(tree, "AISLE-2")

        for i in range(3):
            tree.add_location(aisle1.id, Location(id=f"A1-{i:02d}"), expected_version=i)
        tree.add_location(aisle2.id, Location(id="A2-00"), expected_version=0)

        for group in tree.all_groups():
            logger.debug(f"  {group.name}: location_count={group.location_count}")

        assert aisle1.location_count == 3
        assert aisle2.location_count == 1
        assert by_name(tree, "AREA-A").location_count == 4
        assert by_name(tree, "WAREHOUSE").location_count == 4
        assert_counts_consistent(tree)

    def test_add_location_moves_between_groups(self, tree):
        aisle1 = by_name(tree, "AISLE-1")
        aisle2 = by_name(tree, "AISLE-2")
        loc = Location(id="A1-01")
        tree.add_location(aisle1.id, loc, expected_version=0)

        tree.add_location(aisle2.id, loc, expected_version=0)

        assert tree.group_of_location("A1-01") is aisle2
        assert "A1-01" not in aisle1.location_ids
        assert aisle1.version == 2
        assert aisle2.version == 1
        assert aisle1.location_count == 0
        assert aisle2.location_count == 1
        assert by_name(tree, "AREA-A").location_count == 1
        assert_counts_consistent(tree)

    def test_re_adding_owned_location_keeps_registered_object(self, tree):
        aisle = by_name(tree, "AISLE-1")
        original = Location(id="A1-01")
        tree.add_location(aisle.id, original, expected_version=0)

        tree.add_location(aisle.id, Location(id="A1-01", occupied=True), expected_version=1)

        assert tree.get_location("A1-01") is original
        assert tree.capacity.occupied_count(aisle.id) == 0
        assert aisle.version == 1

    def test_add_location_twice_is_noop(self, tree):
        aisle = by_name(tree, "AISLE-1")
        loc = Location(id="A1-01")
        tree.add_location(aisle.id, loc, expected_version=0)

        tree.add_location(aisle.id, loc, expected_version=1)

        assert aisle.version == 1
        assert aisle.location_count == 1

    def test_remove_location(self, tree):
        aisle = by_name(tree, "AISLE-1")
        tree.add_location(aisle.id, Location(id="A1-01"), expected_version=0)

        removed = tree.remove_location(aisle.id, "A1-01", expected_version=1)

        assert removed.id == "A1-01"
        assert tree.group_of_location("A1-01") is None
        assert tree.get_location("A1-01") is None
        assert aisle.location_count == 0
        assert by_name(tree, "WAREHOUSE").location_count == 0

    def test_remove_unknown_location_fails(self, tree):
        aisle = by_name(tree, "AISLE-1")

        with pytest.raises(LocationNotFoundError):
            tree.remove_location(aisle.id, "NOPE", expected_version=0)

        assert aisle.version == 0

    def test_membership_with_stale_version_fails(self, tree):
        aisle = by_name(tree, "AISLE-1")
        tree.add_location(aisle.id, Location(id="A1-01"), expected_version=0)

        with pytest.raises(StaleVersionError):
            tree.add_location(aisle.id, Location(id="A1-02"), expected_version=0)

        assert aisle.location_ids == {"A1-01"}
        assert by_name(tree, "WAREHOUSE").location_count == 1

    def test_structure_changes_keep_counts(self, tree):
        """Counts settle correctly across a sequence of mixed mutations."""
        aisle1 = by_name(tree, "AISLE-1")
        aisle2 = by_name(tree, "AISLE-2")
        rack = tree.create_group("RACK-1")
        tree.add_location(rack.id, Location(id="R1-01"), expected_version=0)
        tree.add_location(rack.id, Location(id="R1-02"), expected_version=1)
        tree.add_location(aisle2.id, Location(id="A2-01"), expected_version=0)

        tree.attach(rack.id, aisle1.id, expected_version=2)
        assert_counts_consistent(tree)
        assert by_name(tree, "WAREHOUSE").location_count == 3

        tree.attach(rack.id, aisle2.id, expected_version=3)
        assert_counts_consistent(tree)
        assert aisle1.location_count == 0
        assert aisle2.location_count == 3

        tree.remove_location(rack.id, "R1-01", expected_version=4)
        assert_counts_consistent(tree)
        assert by_name(tree, "WAREHOUSE").location_count == 2
