"""
Event bus for invoice history change notifications.

Synchronous in-process pub/sub. Handlers execute immediately in the same
thread as the publisher. Handler errors are logged but never propagate:
the history write has already happened and a broken view must not abort
the caller's workflow.
"""

import logging
from typing import Callable, Dict, List

from core.events import HistoryEvent

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus for history events.

    Subscribe by event class name (string), publish by event instance.
    Handlers are called synchronously in subscription order.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable) -> Callable[[], None]:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Name of event class to subscribe to (e.g. 'InvoiceHistoryUpdated')
            callback: Function to call when event is published

        Returns:
            Function that removes this subscription when called
        """
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []
        self._subscribers[event_type].append(callback)

        def unsubscribe():
            self.unsubscribe(event_type, callback)

        return unsubscribe

    def unsubscribe(self, event_type: str, callback: Callable) -> bool:
        """
        Remove a subscription.

        Returns True if the callback was subscribed, False otherwise.
        """
        callbacks = self._subscribers.get(event_type)
        if not callbacks or callback not in callbacks:
            return False
        callbacks.remove(callback)
        if not callbacks:
            del self._subscribers[event_type]
        return True

    def subscriber_count(self, event_type: str) -> int:
        """Number of callbacks subscribed to event_type."""
        return len(self._subscribers.get(event_type, []))

    def publish(self, event: HistoryEvent):
        """
        Publish an event to all subscribers of that type.

        Handlers are called synchronously in subscription order.
        Handler errors are logged but do not propagate.

        Args:
            event: HistoryEvent instance to publish
        """
        event_type = event.__class__.__name__

        # Copy so handlers may unsubscribe while being notified. A single
        # lookup, since storage listener threads publish concurrently with
        # unsubscribe on the caller's thread.
        for callback in list(self._subscribers.get(event_type, ())):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )
