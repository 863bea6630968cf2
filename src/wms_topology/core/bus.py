"""
Event Bus implementation for group-aware notifications.

The Event Bus is a simple, synchronous dispatcher. It carries state-change
notifications out to control-system adapters and occupancy reports in from
the storage-location service.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Optional, Dict, Any, Callable, List

from wms_topology.core.tree import LocationGroupTree
import logging

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    """Get current UTC time (for default factory)."""
    return datetime.now(UTC)


@dataclass
class Event:
    """
    A domain event in the warehouse topology.

    Attributes:
        type: Event type (e.g., "location_group.state_changed")
        source: Event source (e.g., "state", "storage")
        group_id: Optional location group ID this event relates to
        location_id: Optional Location ID this event relates to
        system_code: Control system the event is routed to, if any
        payload: Event-specific data
        timestamp: When the event occurred
    """

    type: str
    source: str
    group_id: Optional[int] = None
    location_id: Optional[str] = None
    system_code: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utc_now)


class EventFilter:
    """
    Filter for event subscriptions.

    Allows subscribers to filter events by type, system code, group,
    ancestors, or descendants.
    """

    def __init__(
        self,
        event_type: Optional[str] = None,
        group_id: Optional[int] = None,
        system_code: Optional[str] = None,
        include_ancestors: bool = False,
        include_descendants: bool = False,
    ):
        """
        Initialize an event filter.

        Args:
            event_type: Filter by event type (None = all types)
            group_id: Filter by group ID (None = all groups)
            system_code: Filter by control system (None = all systems)
            include_ancestors: Include events from ancestor groups
            include_descendants: Include events from descendant groups
        """
        self.event_type = event_type
        self.group_id = group_id
        self.system_code = system_code
        self.include_ancestors = include_ancestors
        self.include_descendants = include_descendants

    def matches(self, event: Event, tree: Optional[LocationGroupTree] = None) -> bool:
        """
        Check if an event matches this filter.

        Args:
            event: The event to check
            tree: Optional LocationGroupTree for ancestor/descendant queries

        Returns:
            True if the event matches the filter
        """
        # Check event type
        if self.event_type and event.type != self.event_type:
            return False

        # Check control system
        if self.system_code and event.system_code != self.system_code:
            return False

        if self.group_id is None or event.group_id is None:
            return True
        if event.group_id == self.group_id:
            return True

        # Lineage matching needs both groups to still be in the tree
        if tree is None or tree.get_group(event.group_id) is None:
            return False
        if tree.get_group(self.group_id) is None:
            return False

        if self.include_ancestors:
            if event.group_id in {g.id for g in tree.ancestors_of(self.group_id)}:
                return True
        if self.include_descendants:
            if event.group_id in {g.id for g in tree.descendants_of(self.group_id)}:
                return True
        return False

    def __repr__(self) -> str:
        return (
            f"EventFilter(event_type={self.event_type!r}, group_id={self.group_id!r}, "
            f"system_code={self.system_code!r})"
        )


EventHandler = Callable[[Event], None]


class EventBus:
    """
    Simple, synchronous event bus for topology events.

    Handlers are wrapped in try/except so a failing notification sink cannot
    undo or block a committed mutation.
    """

    def __init__(self) -> None:
        """Initialize the event bus."""
        self._handlers: List[tuple[EventFilter, EventHandler]] = []
        self._tree: Optional[LocationGroupTree] = None

    def set_tree(self, tree: LocationGroupTree) -> None:
        """
        Set the LocationGroupTree for ancestor/descendant filtering.

        Args:
            tree: The LocationGroupTree instance
        """
        self._tree = tree

    def subscribe(
        self,
        handler: EventHandler,
        event_filter: Optional[EventFilter] = None,
    ) -> None:
        """
        Subscribe to events.

        Args:
            handler: Callable that receives Event objects
            event_filter: Optional filter for events (None = receive all events)
        """
        if event_filter is None:
            event_filter = EventFilter()

        self._handlers.append((event_filter, handler))
        logger.debug(f"Subscribed handler {handler.__name__} with filter {event_filter}")

    def publish(self, event: Event) -> None:
        """
        Publish an event to all matching subscribers.

        Handlers are called synchronously and wrapped in try/except.

        Args:
            event: The event to publish
        """
        logger.debug(f"Publishing event: {event.type} from {event.source}")

        for event_filter, handler in list(self._handlers):
            if event_filter.matches(event, self._tree):
                try:
                    handler(event)
                except Exception as e:
                    logger.error(
                        f"Error in event handler {handler.__name__} "
                        f"for event {event.type}: {e}",
                        exc_info=True,
                    )

    def unsubscribe(self, handler: EventHandler) -> None:
        """
        Unsubscribe a handler from all events.

        Args:
            handler: The handler to unsubscribe
        """
        self._handlers = [(f, h) for f, h in self._handlers if h != handler]
        logger.debug(f"Unsubscribed handler {handler.__name__}")
