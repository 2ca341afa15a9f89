"""
Domain event bus

Synchronous observer used by the engine to hand events to persistence and
alerting collaborators. Subscribers run inline; a failing subscriber is
logged and never interrupts the engine or other subscribers.

Usage:
    bus = EventBus()

    def on_closed(event: DomainEvent):
        print(f"Closed: {event.data['position_id']}")

    bus.subscribe(POSITION_CLOSED, on_closed)
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List

from loguru import logger

from ..utils.helpers import utc_now

TRADE_EXECUTED = "trade-executed"
TRADE_FAILED = "trade-failed"
POSITION_UPDATED = "position-updated"
POSITION_CLOSED = "position-closed"
PORTFOLIO_UPDATED = "portfolio-updated"
RISK_ALERT = "risk-alert"

# Subscribing to this name receives every event
ALL_EVENTS = "*"


@dataclass
class DomainEvent:
    """An event emitted by the engine"""
    name: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=utc_now)


Handler = Callable[[DomainEvent], None]


class EventBus:
    """
    In-process publish/subscribe

    Keeps a bounded log of published events so callers can read back what a
    method call emitted via ``drain()``.
    """

    def __init__(self, log_limit: int = 1000) -> None:
        self._subscribers: Dict[str, List[Handler]] = {}
        self._log: Deque[DomainEvent] = deque(maxlen=log_limit)

    def subscribe(self, event_name: str, handler: Handler) -> None:
        """
        Subscribe to an event

        Args:
            event_name: Name of the event, or ALL_EVENTS
            handler: Callable receiving the DomainEvent
        """
        self._subscribers.setdefault(event_name, []).append(handler)
        logger.debug(f"Subscribed {getattr(handler, '__name__', handler)} to {event_name}")

    def unsubscribe(self, event_name: str, handler: Handler) -> None:
        handlers = self._subscribers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_name: str, data: Dict[str, Any]) -> DomainEvent:
        """Record the event and deliver it to subscribers"""
        event = DomainEvent(name=event_name, data=data)
        self._log.append(event)

        handlers = self._subscribers.get(event_name, []) + self._subscribers.get(ALL_EVENTS, [])
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler for {event_name} failed: {e}")

        return event

    def drain(self) -> List[DomainEvent]:
        """Return and clear the recorded events"""
        events = list(self._log)
        self._log.clear()
        return events

    def clear(self) -> None:
        self._log.clear()

    @property
    def subscriber_count(self) -> int:
        return sum(len(h) for h in self._subscribers.values())
