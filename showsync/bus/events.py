"""
Event Bus - Decoupled Module Communication
Logistics CRUD emits events; the schedule sync engine listens.
No direct imports between the two.
"""

from typing import Callable, Dict, List, Any
import logging

logger = logging.getLogger(__name__)


class EventBus:
    """
    Simple event bus for decoupled module communication.
    Modules emit events, other modules register handlers to listen.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}

    def on(self, event_name: str, handler: Callable):
        """
        Register a handler for an event.

        Args:
            event_name: Name of the event to listen for
            handler: Callable that receives event_data dict
        """
        if event_name not in self._handlers:
            self._handlers[event_name] = []
        if handler in self._handlers[event_name]:
            return
        self._handlers[event_name].append(handler)
        logger.debug(f"Registered handler for event '{event_name}': {handler.__name__}")

    def emit(self, event_name: str, event_data: Dict[str, Any] = None):
        """
        Emit an event to all registered handlers.

        A failing handler is logged and does not stop the others.

        Args:
            event_name: Name of the event
            event_data: Optional dict of data to pass to handlers
        """
        if event_data is None:
            event_data = {}

        logger.debug(f"Emitting event '{event_name}' with data: {event_data}")

        if event_name in self._handlers:
            for handler in self._handlers[event_name]:
                try:
                    handler(event_data)
                except Exception as e:
                    logger.error(f"Error in handler {handler.__name__} for event '{event_name}': {e}")

    def clear(self):
        """Clear all handlers (useful for testing)."""
        self._handlers.clear()


# Singleton instance
bus = EventBus()


# =============================================================================
# STANDARD EVENTS
# =============================================================================

# Logistics CRUD events
EVENT_FLIGHT_SAVED = 'flight_saved'
EVENT_FLIGHT_DELETED = 'flight_deleted'
EVENT_LODGING_SAVED = 'lodging_saved'
EVENT_LODGING_DELETED = 'lodging_deleted'
EVENT_CATERING_SAVED = 'catering_saved'
EVENT_CATERING_DELETED = 'catering_deleted'

# Advancing / grid events
EVENT_ADVANCING_FIELDS_SAVED = 'advancing_fields_saved'
EVENT_GRID_SAVED = 'grid_saved'

# Schedule sync events
EVENT_SCHEDULE_SYNCED = 'schedule_synced'
EVENT_SCHEDULE_SYNC_FAILED = 'schedule_sync_failed'
