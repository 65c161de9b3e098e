"""
Tests for the synthetic price feed.
"""

import asyncio
import threading
from decimal import Decimal

import pytest

from tradingo.core.instrument import Instrument, InstrumentRegistry
from tradingo.core.matching_engine import MatchingEngine
from tradingo.core.price_feed import PriceFeedSimulator
from tradingo.utils.exceptions import (
    DuplicateInstrumentException,
    InvalidInstrumentException,
    ValidationException,
)


@pytest.fixture
def registry():
    registry = InstrumentRegistry()
    registry.register(Instrument("BTCUSDT", Decimal("0.01"), Decimal("0.0001")))
    registry.register(Instrument("ADAUSDT", Decimal("0.0001"), Decimal("1")))
    return registry


@pytest.fixture
def feed(registry):
    feed = PriceFeedSimulator(registry, max_delta=Decimal("0.05"), seed=42)
    feed.register("BTCUSDT", Decimal("50000"))
    feed.register("ADAUSDT", Decimal("0.5"))
    return feed


class TestRegistration:
    """Registering instruments with the feed."""

    def test_unregistered_symbol_rejected(self, feed):
        with pytest.raises(InvalidInstrumentException):
            feed.register("DOGEUSDT", Decimal("1"))

    def test_duplicate_registration_rejected(self, feed):
        with pytest.raises(DuplicateInstrumentException):
            feed.register("BTCUSDT", Decimal("1"))

    def test_non_positive_initial_price_rejected(self, registry):
        feed = PriceFeedSimulator(registry)
        with pytest.raises(ValidationException):
            feed.register("BTCUSDT", Decimal("0"))

    @pytest.mark.parametrize("max_delta", ["0", "1", "-0.1", "1.5"])
    def test_max_delta_must_be_a_fraction(self, registry, max_delta):
        with pytest.raises(ValidationException):
            PriceFeedSimulator(registry, max_delta=Decimal(max_delta))

    def test_tick_unknown_symbol(self, feed):
        with pytest.raises(InvalidInstrumentException):
            feed.tick("ETHUSDT")


class TestTicks:
    """Random walk properties."""

    def test_sequences_strictly_increasing_without_gaps(self, feed):
        ticks = [feed.tick("BTCUSDT") for _ in range(100)]
        assert [t.sequence for t in ticks] == list(range(1, 101))

    def test_sequences_independent_per_instrument(self, feed):
        feed.tick("BTCUSDT")
        feed.tick("BTCUSDT")
        assert feed.tick("ADAUSDT").sequence == 1

    def test_moves_are_bounded(self, feed):
        previous = feed.stats("BTCUSDT")["price"]
        for _ in range(200):
            tick = feed.tick("BTCUSDT")
            change = abs(tick.price - previous) / previous
            # one tick of rounding on top of the maximum move
            assert change <= Decimal("0.05") + Decimal("0.01") / previous
            previous = tick.price

    def test_price_stays_positive_and_on_tick(self, feed):
        for _ in range(2000):
            tick = feed.tick("ADAUSDT")
            assert tick.price >= Decimal("0.0001")
            assert tick.price % Decimal("0.0001") == 0

    def test_low_price_keeps_moving(self):
        registry = InstrumentRegistry()
        registry.register(Instrument("SHIBUSDT", Decimal("0.0001"), Decimal("1")))
        feed = PriceFeedSimulator(registry, max_delta=Decimal("0.05"), seed=3)
        feed.register("SHIBUSDT", Decimal("0.0001"))

        floor = Decimal("0.0001")
        previous = floor
        prices = set()
        for _ in range(200):
            price = feed.tick("SHIBUSDT").price
            # every step moves one tick or more unless pinned at the floor
            assert price != previous or price == floor
            assert price >= floor
            prices.add(price)
            previous = price

        assert len(prices) > 1
        assert feed.stats("SHIBUSDT")["high"] > floor

    def test_seed_makes_walk_reproducible(self, registry):
        def walk():
            feed = PriceFeedSimulator(registry, seed=7)
            feed.register("BTCUSDT", Decimal("50000"))
            return [feed.tick("BTCUSDT").price for _ in range(20)]

        assert walk() == walk()

    def test_session_stats(self, feed):
        prices = [feed.tick("BTCUSDT").price for _ in range(50)]
        stats = feed.stats("BTCUSDT")

        assert stats["open"] == Decimal("50000")
        assert stats["price"] == prices[-1]
        assert stats["high"] == max(prices + [Decimal("50000")])
        assert stats["low"] == min(prices + [Decimal("50000")])
        assert stats["sequence"] == 50
        assert stats["change_pct"] == (prices[-1] - Decimal("50000")) / Decimal("50000") * 100

    def test_concurrent_ticks_have_unique_sequences(self, feed):
        sequences = []
        lock = threading.Lock()

        def worker():
            for _ in range(100):
                tick = feed.tick("BTCUSDT")
                with lock:
                    sequences.append(tick.sequence)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(sequences) == list(range(1, 401))


class TestListeners:
    """Delivery of ticks to listeners."""

    def test_listeners_see_ticks_in_order(self, feed):
        seen = []
        feed.add_listener(seen.append)
        for _ in range(10):
            feed.tick("BTCUSDT")
        assert [t.sequence for t in seen] == list(range(1, 11))

    def test_failing_listener_does_not_stop_feed(self, feed):
        seen = []

        def broken(tick):
            raise RuntimeError("boom")

        feed.add_listener(broken)
        feed.add_listener(seen.append)

        tick = feed.tick("BTCUSDT")

        assert seen == [tick]

    def test_ticks_update_engine_reference_price(self, registry):
        engine = MatchingEngine(registry=registry)
        feed = PriceFeedSimulator(registry, seed=1)
        feed.register("BTCUSDT", Decimal("50000"))
        feed.add_listener(engine.apply_tick)

        tick = feed.tick("BTCUSDT")

        assert engine.get_order_book("BTCUSDT").reference_price == tick.price


class TestBackgroundTasks:
    """start/stop of the ticking tasks."""

    def test_start_and_stop(self, feed):
        seen = []
        feed.add_listener(seen.append)

        async def run():
            await feed.start(period_ms=10)
            assert feed.running
            await asyncio.sleep(0.2)
            await feed.stop()
            assert not feed.running

        asyncio.run(run())

        btc = [t.sequence for t in seen if t.symbol == "BTCUSDT"]
        assert len(btc) >= 2
        assert btc == list(range(1, len(btc) + 1))

    def test_non_positive_period_rejected(self, feed):
        with pytest.raises(ValidationException):
            asyncio.run(feed.start(period_ms=0))
