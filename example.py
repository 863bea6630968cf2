#!/usr/bin/env python3
"""
Quick example demonstrating wms-topology basic usage.

Run with: PYTHONPATH=src python3 example.py
"""

import logging

from wms_topology import (
    Direction,
    Event,
    EventBus,
    GroupState,
    Location,
    LocationGroupTree,
    StatePropagationEngine,
)
from wms_topology.core.bus import EventFilter
from wms_topology.state import GROUP_AVAILABILITY_CHANGED, GROUP_STATE_CHANGED

logging.basicConfig(level=logging.INFO, format="%(name)s - %(levelname)s - %(message)s")

print("=" * 60)
print("wms-topology Example")
print("=" * 60)

# 1. Kernel components
print("\n1. Creating kernel components...")
tree = LocationGroupTree()
bus = EventBus()
engine = StatePropagationEngine(tree, bus)
print("   ✓ LocationGroupTree, EventBus and StatePropagationEngine created")

# 2. Build a small topology
print("\n2. Building topology...")
site = tree.create_group("SITE")
hbw = tree.create_group(
    "HIGH-BAY",
    parent_id=site.id,
    group_type="AREA",
    system_code="PLC-1",
    max_fill_level=0.5,
)
print(f"   ✓ Created: {hbw} (id={hbw.id}, parent={site})")

locations = [Location(id=f"HB-{i:02d}") for i in range(4)]
for loc in locations:
    engine.add_location(hbw.id, loc, expected_version=hbw.version)
print(f"   ✓ {hbw} owns {hbw.location_count} locations, {site} counts {site.location_count}")


# Listen like a PLC adapter would
def plc_adapter(event: Event) -> None:
    print(f"   → PLC-1 notified: {event.type} {event.payload}")


bus.subscribe(plc_adapter, EventFilter(system_code="PLC-1", event_type=GROUP_STATE_CHANGED))
bus.subscribe(plc_adapter, EventFilter(system_code="PLC-1", event_type=GROUP_AVAILABILITY_CHANGED))

# 3. Store transport units until the fill level is reached
print("\n3. Storing transport units...")
for loc in locations[:2]:
    loc.occupied = True
    engine.refresh_location(loc.id)
    snapshot = engine.snapshot(hbw.id)
    print(
        f"   {loc.id} occupied: fill={snapshot.fill_level:.2f} "
        f"in={snapshot.available_in} out={snapshot.available_out}"
    )

# 4. Operator blocks outbound flow
print("\n4. Blocking outbound flow...")
result = engine.set_state(hbw.id, Direction.OUT, GroupState.NOT_AVAILABLE, hbw.version)
print(f"   ✓ {len(result.state_changes)} state change, {len(result.transitions)} transitions")

print("\n" + "=" * 60)
