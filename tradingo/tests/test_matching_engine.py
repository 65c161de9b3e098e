"""
Tests for the matching engine.

Covers all order types, maker price priority, market order rejection and
collars, cancellation states, listeners and concurrent use.
"""

import random
import threading
from decimal import Decimal

import pytest

from tradingo.core.instrument import Instrument
from tradingo.core.fill import Fill
from tradingo.core.market_data import PriceTick
from tradingo.core.matching_engine import MatchingEngine, EngineState
from tradingo.core.order import Order, OrderType, OrderSide, OrderStatus, OrderUpdate
from tradingo.utils.exceptions import (
    DuplicateInstrumentException,
    InvalidInstrumentException,
    InvalidOrderException,
    InvalidStateException,
    OrderNotFoundException,
    UnfillableException,
)


def limit(side, quantity, price, symbol="BTCUSD", order_type=OrderType.LIMIT):
    return Order(
        symbol=symbol,
        order_type=order_type,
        side=side,
        quantity=Decimal(str(quantity)),
        price=Decimal(str(price)),
    )


def market(side, quantity, symbol="BTCUSD"):
    return Order(
        symbol=symbol,
        order_type=OrderType.MARKET,
        side=side,
        quantity=Decimal(str(quantity)),
    )


@pytest.fixture
def engine():
    engine = MatchingEngine(market_collar_pct=Decimal("0.10"))
    engine.register_instrument(Instrument("BTCUSD", Decimal("1"), Decimal("1")))
    engine.register_instrument(Instrument("ETHUSD", Decimal("0.01"), Decimal("0.001")))
    return engine


class TestLimitOrders:
    """Limit order matching and resting."""

    def test_resting_ask_example(self, engine):
        """Ask 100x5, buy limit 101x3: one fill 100x3, ask keeps 2, buyer does not rest."""
        ask = limit(OrderSide.SELL, 5, 100)
        engine.submit(ask)

        result = engine.submit(limit(OrderSide.BUY, 3, 101))

        assert len(result.fills) == 1
        fill = result.fills[0]
        assert fill.price == Decimal("100")
        assert fill.quantity == Decimal("3")
        assert fill.maker_order_id == ask.order_id
        assert fill.aggressor_side == OrderSide.BUY

        assert engine.get_order(ask.order_id).remaining_quantity == Decimal("2")
        assert result.status == OrderStatus.FILLED
        assert not result.resting
        book = engine.get_order_book("BTCUSD")
        assert book.best_bid() is None
        assert book.best_ask() == Decimal("100")

    def test_fill_at_maker_price_never_limit(self, engine):
        engine.submit(limit(OrderSide.BUY, 2, 95))
        result = engine.submit(limit(OrderSide.SELL, 2, 90))

        assert [f.price for f in result.fills] == [Decimal("95")]

    def test_non_crossing_order_rests(self, engine):
        engine.submit(limit(OrderSide.SELL, 1, 101))
        result = engine.submit(limit(OrderSide.BUY, 1, 100))

        assert result.fills == []
        assert result.status == OrderStatus.OPEN
        assert engine.get_order_book("BTCUSD").get_bbo() == (Decimal("100"), Decimal("101"))

    def test_partial_fill_rests_remainder(self, engine):
        engine.submit(limit(OrderSide.SELL, 2, 100))
        result = engine.submit(limit(OrderSide.BUY, 5, 100))

        assert result.status == OrderStatus.PARTIAL
        assert result.order.remaining_quantity == Decimal("3")
        assert engine.get_order_book("BTCUSD").best_bid() == Decimal("100")
        assert engine.get_order_book("BTCUSD").best_ask() is None

    def test_price_time_priority(self, engine):
        first = limit(OrderSide.SELL, 1, 100)
        second = limit(OrderSide.SELL, 1, 100)
        better = limit(OrderSide.SELL, 1, 99)
        for order in (first, second, better):
            engine.submit(order)

        result = engine.submit(limit(OrderSide.BUY, 2, 100))

        assert [f.maker_order_id for f in result.fills] == [better.order_id, first.order_id]
        assert engine.get_order(second.order_id).status == OrderStatus.OPEN

    def test_walks_multiple_levels(self, engine):
        for price in (100, 101, 102):
            engine.submit(limit(OrderSide.SELL, 1, price))

        result = engine.submit(limit(OrderSide.BUY, 3, 101))

        assert [f.price for f in result.fills] == [Decimal("100"), Decimal("101")]
        assert result.order.remaining_quantity == Decimal("1")
        assert engine.get_order_book("BTCUSD").get_bbo() == (Decimal("101"), Decimal("102"))

    def test_maker_fully_filled_leaves_book(self, engine):
        ask = limit(OrderSide.SELL, 2, 100)
        engine.submit(ask)
        engine.submit(limit(OrderSide.BUY, 2, 100))

        maker = engine.get_order(ask.order_id)
        assert maker.status == OrderStatus.FILLED
        assert not engine.get_order_book("BTCUSD").is_resting(ask.order_id)

    def test_last_trade_price_updated(self, engine):
        engine.submit(limit(OrderSide.SELL, 1, 100))
        engine.submit(limit(OrderSide.BUY, 1, 105))
        assert engine.get_order_book("BTCUSD").last_trade_price == Decimal("100")


class TestMarketOrders:
    """Market order execution, rejection and collar."""

    def test_market_sell_against_empty_bids_is_unfillable(self, engine):
        engine.submit(limit(OrderSide.SELL, 1, 100))
        before = engine.depth("BTCUSD")
        order = market(OrderSide.SELL, 10)

        with pytest.raises(UnfillableException):
            engine.submit(order)

        assert engine.depth("BTCUSD") == before
        assert engine.get_order(order.order_id) is None
        assert engine.get_statistics()["orders_processed"] == 1

    def test_market_buy_fills_across_levels(self, engine):
        engine.submit(limit(OrderSide.SELL, 1, 100))
        engine.submit(limit(OrderSide.SELL, 2, 101))

        result = engine.submit(market(OrderSide.BUY, 3))

        assert result.status == OrderStatus.FILLED
        assert [(f.price, f.quantity) for f in result.fills] == [
            (Decimal("100"), Decimal("1")),
            (Decimal("101"), Decimal("2")),
        ]

    def test_market_partial_remainder_discarded(self, engine):
        engine.submit(limit(OrderSide.BUY, 2, 100))

        result = engine.submit(market(OrderSide.SELL, 5))

        assert result.status == OrderStatus.CANCELLED
        assert result.order.filled_quantity == Decimal("2")
        book = engine.get_order_book("BTCUSD")
        assert book.best_bid() is None
        assert book.best_ask() is None

    def test_collar_stops_market_order(self, engine):
        engine.apply_tick(PriceTick("BTCUSD", Decimal("100"), 1))
        engine.submit(limit(OrderSide.SELL, 1, 105))
        engine.submit(limit(OrderSide.SELL, 1, 120))

        result = engine.submit(market(OrderSide.BUY, 2))

        assert [f.price for f in result.fills] == [Decimal("105")]
        assert result.status == OrderStatus.CANCELLED
        assert engine.get_order_book("BTCUSD").best_ask() == Decimal("120")

    def test_liquidity_only_beyond_collar_is_unfillable(self, engine):
        engine.apply_tick(PriceTick("BTCUSD", Decimal("100"), 1))
        engine.submit(limit(OrderSide.BUY, 1, 80))

        with pytest.raises(UnfillableException):
            engine.submit(market(OrderSide.SELL, 1))

        assert engine.get_order_book("BTCUSD").best_bid() == Decimal("80")

    def test_no_collar_without_reference_price(self, engine):
        engine.submit(limit(OrderSide.SELL, 1, 1000))
        result = engine.submit(market(OrderSide.BUY, 1))
        assert result.status == OrderStatus.FILLED


class TestIOCAndFOK:
    """Immediate-Or-Cancel and Fill-Or-Kill."""

    def test_ioc_remainder_cancelled(self, engine):
        engine.submit(limit(OrderSide.SELL, 1, 100))

        result = engine.submit(limit(OrderSide.BUY, 3, 100, order_type=OrderType.IOC))

        assert result.status == OrderStatus.CANCELLED
        assert result.order.filled_quantity == Decimal("1")
        assert engine.get_order_book("BTCUSD").best_bid() is None

    def test_ioc_without_cross_fills_nothing(self, engine):
        engine.submit(limit(OrderSide.SELL, 1, 110))
        result = engine.submit(limit(OrderSide.BUY, 1, 100, order_type=OrderType.IOC))
        assert result.fills == []
        assert result.status == OrderStatus.CANCELLED

    def test_fok_killed_when_liquidity_short(self, engine):
        engine.submit(limit(OrderSide.SELL, 1, 100))
        engine.submit(limit(OrderSide.SELL, 5, 102))
        before = engine.depth("BTCUSD")

        result = engine.submit(limit(OrderSide.BUY, 3, 101, order_type=OrderType.FOK))

        assert result.fills == []
        assert result.status == OrderStatus.CANCELLED
        assert engine.depth("BTCUSD") == before

    def test_fok_fills_completely(self, engine):
        engine.submit(limit(OrderSide.SELL, 1, 100))
        engine.submit(limit(OrderSide.SELL, 5, 101))

        result = engine.submit(limit(OrderSide.BUY, 3, 101, order_type=OrderType.FOK))

        assert result.status == OrderStatus.FILLED
        assert sum(f.quantity for f in result.fills) == Decimal("3")


class TestCancellation:
    """Cancel semantics."""

    def test_cancel_resting_order(self, engine):
        order = limit(OrderSide.BUY, 1, 100)
        engine.submit(order)

        cancelled = engine.cancel(order.order_id)

        assert cancelled.status == OrderStatus.CANCELLED
        assert engine.get_order_book("BTCUSD").best_bid() is None
        assert engine.get_order(order.order_id).status == OrderStatus.CANCELLED

    def test_cancel_twice_is_invalid_state(self, engine):
        order = limit(OrderSide.BUY, 1, 100)
        engine.submit(order)
        engine.cancel(order.order_id)

        with pytest.raises(InvalidStateException):
            engine.cancel(order.order_id)

    def test_cancel_filled_order_is_invalid_state(self, engine):
        ask = limit(OrderSide.SELL, 1, 100)
        engine.submit(ask)
        engine.submit(limit(OrderSide.SELL, 1, 105))
        engine.submit(limit(OrderSide.BUY, 1, 100))
        before = engine.depth("BTCUSD")

        with pytest.raises(InvalidStateException):
            engine.cancel(ask.order_id)

        assert engine.depth("BTCUSD") == before

    def test_cancel_unknown_order(self, engine):
        with pytest.raises(OrderNotFoundException):
            engine.cancel(999999)

    def test_cancel_with_wrong_symbol(self, engine):
        order = limit(OrderSide.BUY, 1, 100)
        engine.submit(order)
        with pytest.raises(OrderNotFoundException):
            engine.cancel(order.order_id, symbol="ETHUSD")

    def test_cancelled_partial_keeps_fills(self, engine):
        bid = limit(OrderSide.BUY, 5, 100)
        engine.submit(bid)
        engine.submit(limit(OrderSide.SELL, 2, 100))

        cancelled = engine.cancel(bid.order_id)

        assert cancelled.filled_quantity == Decimal("2")
        assert cancelled.remaining_quantity == Decimal("3")
        assert cancelled.status == OrderStatus.CANCELLED


class TestValidation:
    """Instrument, tick and lot validation."""

    def test_unknown_instrument(self, engine):
        with pytest.raises(InvalidInstrumentException):
            engine.submit(limit(OrderSide.BUY, 1, 100, symbol="DOGEUSD"))

    def test_off_tick_price_rejected(self, engine):
        with pytest.raises(InvalidOrderException):
            engine.submit(limit(OrderSide.BUY, "0.001", "100.005", symbol="ETHUSD"))
        assert engine.get_order_book("ETHUSD").resting_count == 0

    def test_off_lot_quantity_rejected(self, engine):
        with pytest.raises(InvalidOrderException):
            engine.submit(limit(OrderSide.BUY, "1.5", 100))

    def test_resubmission_rejected(self, engine):
        order = limit(OrderSide.BUY, 1, 100)
        engine.submit(order)
        with pytest.raises(InvalidOrderException):
            engine.submit(order)

    def test_duplicate_instrument(self, engine):
        with pytest.raises(DuplicateInstrumentException):
            engine.register_instrument(Instrument("BTCUSD", Decimal("1"), Decimal("1")))

    def test_lowercase_symbol_accepted(self, engine):
        result = engine.submit(limit(OrderSide.BUY, 1, 100, symbol="btcusd"))
        assert result.order.symbol == "BTCUSD"
        assert engine.get_order_book("BTCUSD").best_bid() == Decimal("100")

    def test_lowercase_instrument_registration(self, engine):
        instrument = engine.register_instrument(Instrument(" ltcusd ", Decimal("0.01"), Decimal("0.01")))

        assert instrument.symbol == "LTCUSD"
        assert "ltcusd" in engine.registry
        assert "LTCUSD" in engine.registry
        assert engine.registry.symbols()[-1] == "LTCUSD"

        order = limit(OrderSide.BUY, "1.5", "80.25", symbol="ltcusd")
        result = engine.submit(order)
        assert result.order.symbol == "LTCUSD"
        assert engine.top_of_book("LTCUSD") == (Decimal("80.25"), None)
        assert engine.cancel(order.order_id).status == OrderStatus.CANCELLED

        with pytest.raises(DuplicateInstrumentException):
            engine.register_instrument(Instrument("LTCUSD", Decimal("0.01"), Decimal("0.01")))

    def test_registry_membership_of_non_symbols(self, engine):
        assert "" not in engine.registry
        assert "   " not in engine.registry
        assert None not in engine.registry

    def test_invalid_collar(self):
        with pytest.raises(ValueError):
            MatchingEngine(market_collar_pct=Decimal("1.5"))


class TestListenersAndSnapshots:
    """Records handed to listeners and isolation of returned orders."""

    def test_listener_receives_fills_and_updates(self, engine):
        records = []
        engine.add_listener(records.append)

        ask = limit(OrderSide.SELL, 2, 100)
        engine.submit(ask)
        engine.submit(limit(OrderSide.BUY, 2, 100))

        fills = [r for r in records if isinstance(r, Fill)]
        updates = [r for r in records if isinstance(r, OrderUpdate)]
        assert len(fills) == 1
        assert [u.reason for u in updates if u.order_id == ask.order_id] == [
            "accepted", "resting", "filled"
        ]

    def test_fills_carry_trader_ids(self, engine):
        ask = limit(OrderSide.SELL, 2, 100)
        ask.trader_id = "alice"
        bid = limit(OrderSide.BUY, 2, 100)
        bid.trader_id = "bob"
        engine.submit(ask)

        fill = engine.submit(bid).fills[0]

        assert fill.maker_trader_id == "alice"
        assert fill.taker_trader_id == "bob"
        assert fill.involves_trader("alice") and fill.involves_trader("bob")
        assert not fill.involves_trader("carol")
        assert fill.to_dict()["maker_trader_id"] == "alice"

    def test_failing_listener_does_not_affect_book(self, engine):
        def broken(record):
            raise RuntimeError("listener failure")

        engine.add_listener(broken)
        engine.submit(limit(OrderSide.SELL, 1, 100))
        result = engine.submit(limit(OrderSide.BUY, 1, 100))

        assert result.status == OrderStatus.FILLED

    def test_result_order_is_a_snapshot(self, engine):
        order = limit(OrderSide.BUY, 1, 100)
        result = engine.submit(order)

        result.order.status = OrderStatus.CANCELLED

        assert engine.get_order(order.order_id).status == OrderStatus.OPEN

    def test_state_is_idle_between_passes(self, engine):
        engine.submit(limit(OrderSide.BUY, 1, 100))
        assert engine.state("BTCUSD") == EngineState.IDLE

    def test_instrument_statistics(self, engine):
        engine.submit(limit(OrderSide.SELL, 3, 100))
        engine.submit(limit(OrderSide.BUY, 2, 100))

        stats = engine.instrument_statistics("BTCUSD")

        assert stats["orders_processed"] == 2
        assert stats["fills_executed"] == 1
        assert stats["volume"] == Decimal("2")
        assert stats["resting_orders"] == 1


class TestOrderRetention:
    """Filled and cancelled orders are kept queryable only within a window."""

    @pytest.fixture
    def small_engine(self):
        engine = MatchingEngine(max_terminal_orders=100)
        engine.register_instrument(Instrument("BTCUSD", Decimal("1"), Decimal("1")))
        return engine

    def test_tracked_orders_stay_bounded(self, small_engine):
        resting_bid = limit(OrderSide.BUY, 1, 50)
        small_engine.submit(resting_bid)

        makers = []
        for _ in range(2000):
            maker = limit(OrderSide.SELL, 1, 100)
            small_engine.submit(maker)
            small_engine.submit(market(OrderSide.BUY, 1))
            makers.append(maker)

        assert small_engine.instrument_statistics("BTCUSD")["tracked_orders"] <= 101
        assert small_engine.get_statistics()["tracked_orders"] <= 101
        assert small_engine.instrument_statistics("BTCUSD")["orders_processed"] == 4001

        # Within the window: still known, so cancelling is an invalid state
        assert small_engine.get_order(makers[-1].order_id).status == OrderStatus.FILLED
        with pytest.raises(InvalidStateException):
            small_engine.cancel(makers[-1].order_id)

        # Aged out: indistinguishable from an unknown order
        assert small_engine.get_order(makers[0].order_id) is None
        with pytest.raises(OrderNotFoundException):
            small_engine.cancel(makers[0].order_id)

        # Resting orders are never evicted
        assert small_engine.cancel(resting_bid.order_id).status == OrderStatus.CANCELLED

    def test_cancelled_orders_count_against_window(self, small_engine):
        orders = [limit(OrderSide.BUY, 1, 10 + i) for i in range(150)]
        for order in orders:
            small_engine.submit(order)
            small_engine.cancel(order.order_id)

        assert small_engine.instrument_statistics("BTCUSD")["tracked_orders"] == 100
        assert small_engine.get_order(orders[49].order_id) is None
        assert small_engine.get_order(orders[50].order_id).status == OrderStatus.CANCELLED

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            MatchingEngine(max_terminal_orders=0)


class TestInvariants:
    """Book and quantity invariants under many operations."""

    def test_random_flow_never_leaves_book_crossed(self, engine):
        rng = random.Random(7)
        submitted = []
        filled_by_order = {}

        def track(record):
            if isinstance(record, Fill):
                for order_id in (record.maker_order_id, record.taker_order_id):
                    filled_by_order[order_id] = filled_by_order.get(order_id, Decimal("0")) + record.quantity

        engine.add_listener(track)

        for _ in range(500):
            action = rng.random()
            if action < 0.15 and submitted:
                try:
                    engine.cancel(rng.choice(submitted).order_id)
                except InvalidStateException:
                    pass
            else:
                side = rng.choice([OrderSide.BUY, OrderSide.SELL])
                order = limit(side, rng.randint(1, 5), rng.randint(95, 105))
                engine.submit(order)
                submitted.append(order)

            assert not engine.get_order_book("BTCUSD").is_crossed()

        for order in submitted:
            current = engine.get_order(order.order_id)
            filled = filled_by_order.get(order.order_id, Decimal("0"))
            assert filled == current.filled_quantity
            assert filled <= current.quantity
            assert current.remaining_quantity == current.quantity - filled
            assert current.remaining_quantity >= 0

    def test_concurrent_submissions(self, engine):
        """Equal buy and sell flow at one price leaves an empty book."""
        errors = []

        def trade(side, symbol):
            try:
                for _ in range(50):
                    price = 100 if symbol == "BTCUSD" else "100.00"
                    engine.submit(limit(side, 1, price, symbol=symbol))
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=trade, args=(side, symbol))
            for symbol in ("BTCUSD", "ETHUSD")
            for side in (OrderSide.BUY, OrderSide.SELL, OrderSide.BUY, OrderSide.SELL)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        for symbol in ("BTCUSD", "ETHUSD"):
            stats = engine.instrument_statistics(symbol)
            assert stats["orders_processed"] == 200
            assert stats["fills_executed"] == 100
            assert stats["resting_orders"] == 0

    def test_concurrent_cancel_and_fill_linearized(self, engine):
        """Each resting order ends up either filled or cancelled, never both."""
        asks = [limit(OrderSide.SELL, 1, 100) for _ in range(100)]
        for ask in asks:
            engine.submit(ask)

        cancelled, rejected = [], []

        def cancel_all():
            for ask in asks:
                try:
                    cancelled.append(engine.cancel(ask.order_id))
                except InvalidStateException:
                    rejected.append(ask.order_id)

        def buy_all():
            for _ in range(100):
                try:
                    engine.submit(market(OrderSide.BUY, 1))
                except UnfillableException:
                    pass

        threads = [threading.Thread(target=cancel_all), threading.Thread(target=buy_all)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        filled = [a for a in asks if engine.get_order(a.order_id).status == OrderStatus.FILLED]
        assert len(cancelled) + len(filled) == 100
        assert len(rejected) == len(filled)
        assert engine.get_order_book("BTCUSD").resting_count == 0
