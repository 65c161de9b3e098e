"""
Tests for the subscription hub: routing, ordering and backpressure.
"""

import threading
import time
from decimal import Decimal

import pytest

from tradingo.core.fill import Fill
from tradingo.core.instrument import Instrument, InstrumentRegistry
from tradingo.core.market_data import EventKind, PriceTick
from tradingo.core.order import OrderSide, OrderStatus, OrderType, Order, OrderUpdate
from tradingo.services.subscription_hub import SubscriptionHub
from tradingo.utils.exceptions import (
    InvalidInstrumentException,
    SubscriptionNotFoundException,
    ValidationException,
)


def tick(symbol="BTCUSDT", sequence=1, price="50000"):
    return PriceTick(symbol=symbol, price=Decimal(price), sequence=sequence)


def fill(symbol="BTCUSDT"):
    return Fill(
        symbol=symbol,
        price=Decimal("50000"),
        quantity=Decimal("1"),
        aggressor_side=OrderSide.BUY,
        maker_order_id=1,
        taker_order_id=2,
    )


@pytest.fixture
def registry():
    registry = InstrumentRegistry()
    registry.register(Instrument("BTCUSDT", Decimal("0.01"), Decimal("0.0001")))
    registry.register(Instrument("ETHUSDT", Decimal("0.01"), Decimal("0.001")))
    return registry


@pytest.fixture
def hub(registry):
    return SubscriptionHub(registry, default_backlog=10)


class TestSubscriptions:
    """Subscribe/unsubscribe lifecycle."""

    def test_subscribe_and_drain(self, hub):
        hub.subscribe("alice", ["BTCUSDT"])
        hub.publish(tick())

        events = hub.drain("alice")

        assert len(events) == 1
        assert events[0].kind == EventKind.TICK
        assert events[0].payload.price == Decimal("50000")
        assert hub.drain("alice") == []

    def test_unknown_instrument_rejected(self, hub):
        with pytest.raises(InvalidInstrumentException):
            hub.subscribe("alice", ["DOGEUSDT"])
        assert "alice" not in hub

    def test_unknown_kind_rejected(self, hub):
        with pytest.raises(ValidationException):
            hub.subscribe("alice", ["BTCUSDT"], kinds=["quotes"])

    def test_subscribe_is_idempotent(self, hub):
        hub.subscribe("alice", ["BTCUSDT"])
        hub.subscribe("alice", ["btcusdt"])
        hub.publish(tick())

        assert len(hub.drain("alice")) == 1
        assert hub.stats()["subscribers"] == 1

    def test_subscribe_extends_interest(self, hub):
        hub.subscribe("alice", ["BTCUSDT"])
        hub.subscribe("alice", ["ETHUSDT"])
        hub.publish(tick("BTCUSDT"))
        hub.publish(tick("ETHUSDT"))

        assert [e.symbol for e in hub.drain("alice")] == ["BTCUSDT", "ETHUSDT"]

    def test_only_subscribed_instruments_delivered(self, hub):
        hub.subscribe("alice", ["ETHUSDT"])
        hub.publish(tick("BTCUSDT"))
        assert hub.drain("alice") == []

    def test_wildcard_receives_everything(self, hub):
        hub.subscribe("alice", ["*"])
        hub.publish(tick("BTCUSDT"))
        hub.publish(fill("ETHUSDT"))
        assert [e.kind for e in hub.drain("alice")] == [EventKind.TICK, EventKind.FILL]

    def test_kind_filter(self, hub):
        hub.subscribe("alice", ["BTCUSDT"], kinds=["fill"])
        hub.publish(tick())
        hub.publish(fill())
        assert [e.kind for e in hub.drain("alice")] == [EventKind.FILL]

    def test_unsubscribe_instrument(self, hub):
        hub.subscribe("alice", ["BTCUSDT", "ETHUSDT"])
        assert hub.unsubscribe("alice", ["BTCUSDT"])
        hub.publish(tick("BTCUSDT"))
        hub.publish(tick("ETHUSDT"))
        assert [e.symbol for e in hub.drain("alice")] == ["ETHUSDT"]

    def test_unsubscribe_all_destroys_subscription(self, hub):
        hub.subscribe("alice", ["BTCUSDT"])
        assert hub.unsubscribe("alice")
        with pytest.raises(SubscriptionNotFoundException):
            hub.drain("alice")

    def test_unsubscribe_is_idempotent(self, hub):
        assert not hub.unsubscribe("nobody")
        hub.subscribe("alice", ["BTCUSDT"])
        hub.unsubscribe("alice")
        assert not hub.unsubscribe("alice")

    def test_drain_unknown_subscriber(self, hub):
        with pytest.raises(SubscriptionNotFoundException):
            hub.drain("ghost")

    def test_order_updates_are_not_published(self, hub):
        hub.subscribe("alice", ["*"])
        order = Order(
            symbol="BTCUSDT",
            order_type=OrderType.LIMIT,
            side=OrderSide.BUY,
            quantity=Decimal("1"),
            price=Decimal("100"),
        )
        hub.on_record(OrderUpdate.from_order(order, "accepted"))
        hub.on_record(fill())

        events = hub.drain("alice")
        assert [e.kind for e in events] == [EventKind.FILL]
        assert order.status == OrderStatus.OPEN


class TestOrderingAndCursor:
    """Sequence stamping and the delivery cursor."""

    def test_events_drained_in_publish_order(self, hub):
        hub.subscribe("alice", ["BTCUSDT"])
        for i in range(1, 6):
            hub.publish(tick(sequence=i))

        events = hub.drain("alice")

        assert [e.payload.sequence for e in events] == [1, 2, 3, 4, 5]
        sequences = [e.sequence for e in events]
        assert sequences == sorted(sequences)
        assert len(set(sequences)) == 5

    def test_max_events_and_cursor(self, hub):
        hub.subscribe("alice", ["BTCUSDT"])
        published = [hub.publish(tick(sequence=i)) for i in range(1, 6)]

        first = hub.drain("alice", max_events=2)
        subscription = hub.get_subscription("alice")

        assert [e.sequence for e in first] == [p.sequence for p in published[:2]]
        assert subscription.cursor == published[1].sequence
        assert subscription.pending == 3

        rest = hub.drain("alice")
        assert subscription.cursor == published[-1].sequence
        assert len(rest) == 3


class TestBackpressure:
    """Overflow and drop accounting."""

    def test_overflow_drops_oldest_and_counts(self, hub):
        hub.subscribe("slow", ["BTCUSDT"], backlog=3)
        published = [hub.publish(tick(sequence=i)) for i in range(1, 11)]

        events = hub.drain("slow")
        subscription = hub.get_subscription("slow")

        assert [e.sequence for e in events] == [p.sequence for p in published[-3:]]
        assert subscription.dropped_events == 7

    def test_slow_subscriber_does_not_affect_others(self, hub):
        hub.subscribe("slow", ["BTCUSDT"], backlog=2)
        hub.subscribe("fast", ["BTCUSDT"], backlog=100)

        for i in range(1, 51):
            hub.publish(tick(sequence=i))
            if i % 5 == 0:
                assert len(hub.drain("fast")) == 5

        assert hub.get_subscription("fast").dropped_events == 0
        assert hub.get_subscription("slow").dropped_events == 48
        assert hub.stats()["dropped_events"] == 48

    def test_gap_in_sequences_reveals_drops(self, hub):
        hub.subscribe("slow", ["BTCUSDT"], backlog=2)
        hub.publish(tick(sequence=1))
        first = hub.drain("slow")
        for i in range(2, 7):
            hub.publish(tick(sequence=i))

        events = hub.drain("slow")
        gap = events[0].sequence - first[-1].sequence - 1

        assert gap == hub.get_subscription("slow").dropped_events == 3

    def test_concurrent_publishers_account_for_every_event(self, hub):
        subscribers = [f"sub-{i}" for i in range(5)]
        for i, subscriber_id in enumerate(subscribers):
            hub.subscribe(subscriber_id, ["*"], backlog=1 if i == 0 else 10000)

        def publisher(symbol):
            for i in range(500):
                hub.publish(tick(symbol, sequence=i + 1))

        threads = [threading.Thread(target=publisher, args=(s,)) for s in ("BTCUSDT", "ETHUSDT")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        for subscriber_id in subscribers:
            subscription = hub.get_subscription(subscriber_id)
            delivered = len(hub.drain(subscriber_id))
            assert delivered + subscription.dropped_events == 1000
        assert hub.get_subscription("sub-0").dropped_events == 999

    def test_publish_blocked_only_by_queue_critical_section(self, hub):
        """A subscriber holding its queue lock only delays publish by that critical section."""
        hub.subscribe("slow", ["BTCUSDT"], backlog=5)
        subscription = hub.get_subscription("slow")

        held = threading.Event()
        release = threading.Event()

        def hold_queue():
            with subscription.lock:
                held.set()
                release.wait(timeout=0.2)

        holder = threading.Thread(target=hold_queue)
        holder.start()
        held.wait()

        start = time.perf_counter()
        hub.publish(tick())
        elapsed = time.perf_counter() - start
        release.set()
        holder.join()

        assert elapsed < 1.0
        assert subscription.pending == 1
