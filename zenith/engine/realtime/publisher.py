"""
Event Publisher — Broadcast of Real-Time Lifecycle Events.

Fans each event out to every matching subscriber, synchronously, inside the
publishing call. Every subscriber invocation runs in its own failure
boundary: a subscriber that raises is logged and skipped, and delivery to
the remaining subscribers continues. Subscribers must not block; long work
should be handed to their own task or queue.
"""

import threading
from typing import Any, Callable, Iterable, Optional

import structlog

from zenith.models.enums import RealtimeEventName

logger = structlog.get_logger(__name__)

Subscriber = Callable[[RealtimeEventName, Any], None]


class EventPublisher:
    """
    Fan-out publisher for aggregator, rule and alert events.

    Example:
        >>> publisher = EventPublisher()
        >>> unsubscribe = publisher.subscribe(
        ...     lambda name, payload: print(name, payload),
        ...     events=[RealtimeEventName.ALERT_GENERATED],
        ... )
        >>> publisher.publish(RealtimeEventName.ALERT_GENERATED, alert)
        >>> unsubscribe()
    """

    def __init__(self):
        self._subscribers: list[tuple[Subscriber, Optional[frozenset]]] = []
        self._lock = threading.Lock()

    def subscribe(
        self,
        callback: Subscriber,
        events: Optional[Iterable[RealtimeEventName]] = None,
    ) -> Callable[[], None]:
        """
        Register a subscriber.

        Args:
            callback: Called as ``callback(event_name, payload)``
            events: Event names to receive; all events when omitted

        Returns:
            A function that removes this subscription
        """
        entry = (callback, frozenset(RealtimeEventName(e) for e in events) if events else None)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: RealtimeEventName, payload: Any = None) -> int:
        """
        Deliver an event to every matching subscriber.

        Args:
            event: Event name
            payload: Snapshot, alert, rule or error

        Returns:
            Number of subscribers that received the event without raising
        """
        with self._lock:
            targets = [
                callback
                for callback, names in self._subscribers
                if names is None or event in names
            ]

        delivered = 0
        for callback in targets:
            try:
                callback(event, payload)
                delivered += 1
            except Exception as e:
                logger.error(
                    "subscriber_failed",
                    event_name=event.value,
                    subscriber=getattr(callback, "__qualname__", repr(callback)),
                    error=str(e),
                )

        logger.debug("event_published", event_name=event.value, delivered=delivered)
        return delivered
