"""
Event bus for revenue domain events.

Synchronous in-process pub/sub. Handlers execute immediately in the same
thread as the publisher. Handler errors are logged but never propagate:
by the time events are published the invoice and ledger changes have
already committed.
"""

import logging
from typing import Callable, Dict, List

from core.events import RevenueEvent

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus for revenue domain events.

    Subscribe by event class name (string), publish by event instance.
    Handlers are called synchronously in subscription order. Subscribing to
    "*" receives every event.
    """

    WILDCARD = "*"

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable):
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Name of event class to subscribe to (e.g. 'InvoicePaid'),
                or '*' for all events
            callback: Function to call when event is published
        """
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(callback)

    def publish(self, event: RevenueEvent):
        """
        Publish an event to all subscribers of that type.

        Args:
            event: RevenueEvent instance to publish
        """
        event_type = event.__class__.__name__
        callbacks = self._subscribers.get(event_type, []) + self._subscribers.get(self.WILDCARD, [])

        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )

    def publish_all(self, events: List[RevenueEvent]):
        """Publish events in order."""
        for event in events:
            self.publish(event)
