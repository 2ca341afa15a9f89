"""Tests for the domain event bus."""
import pytest

from gamma_paper.paper_trading.events import (
    ALL_EVENTS,
    POSITION_CLOSED,
    TRADE_EXECUTED,
    DomainEvent,
    EventBus,
)


@pytest.fixture
def event_bus():
    """Create a fresh event bus for each test."""
    return EventBus()


def test_subscribe_and_publish(event_bus):
    received = []
    event_bus.subscribe(TRADE_EXECUTED, received.append)

    event = event_bus.publish(TRADE_EXECUTED, {"position_id": "p1"})

    assert received == [event]
    assert isinstance(event, DomainEvent)
    assert event.data == {"position_id": "p1"}
    assert event.timestamp.tzinfo is not None


def test_handlers_only_receive_their_event(event_bus):
    received = []
    event_bus.subscribe(POSITION_CLOSED, received.append)

    event_bus.publish(TRADE_EXECUTED, {})

    assert received == []


def test_wildcard_receives_everything(event_bus):
    received = []
    event_bus.subscribe(ALL_EVENTS, lambda e: received.append(e.name))

    event_bus.publish(TRADE_EXECUTED, {})
    event_bus.publish(POSITION_CLOSED, {})

    assert received == [TRADE_EXECUTED, POSITION_CLOSED]


def test_failing_handler_does_not_stop_others(event_bus):
    received = []

    def broken(event):
        raise ValueError("boom")

    event_bus.subscribe(TRADE_EXECUTED, broken)
    event_bus.subscribe(TRADE_EXECUTED, received.append)

    event_bus.publish(TRADE_EXECUTED, {"n": 1})

    assert len(received) == 1


def test_unsubscribe(event_bus):
    received = []
    event_bus.subscribe(TRADE_EXECUTED, received.append)
    assert event_bus.subscriber_count == 1

    event_bus.unsubscribe(TRADE_EXECUTED, received.append)
    event_bus.unsubscribe(TRADE_EXECUTED, received.append)  # Unknown handler is ignored
    event_bus.publish(TRADE_EXECUTED, {})

    assert received == []
    assert event_bus.subscriber_count == 0


def test_drain_returns_in_order_and_clears(event_bus):
    event_bus.publish(TRADE_EXECUTED, {"n": 1})
    event_bus.publish(POSITION_CLOSED, {"n": 2})

    drained = event_bus.drain()

    assert [e.data["n"] for e in drained] == [1, 2]
    assert event_bus.drain() == []


def test_log_is_bounded():
    bus = EventBus(log_limit=3)
    for n in range(5):
        bus.publish(TRADE_EXECUTED, {"n": n})

    assert [e.data["n"] for e in bus.drain()] == [2, 3, 4]
