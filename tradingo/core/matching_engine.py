"""
Core matching engine with price-time priority.

Each instrument has its own book and its own lock, so all mutations of one
book are serialized (single writer per instrument) while different
instruments match fully in parallel. There is no global lock on the order
path.
"""

import threading
import time
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from .instrument import Instrument, InstrumentRegistry
from .order import Order, OrderType, OrderSide, OrderStatus, OrderResult, OrderUpdate
from .fill import Fill
from .order_book import OrderBook
from .market_data import PriceTick
from ..utils.exceptions import (
    InvalidOrderException,
    InvalidStateException,
    OrderNotFoundException,
    UnfillableException,
)
from ..utils.logger import get_logger
from ..utils.validators import validate_price, validate_quantity


JournalRecord = Union[Fill, OrderUpdate]
RecordListener = Callable[[JournalRecord], None]


class EngineState(Enum):
    """Matching state of one instrument."""
    IDLE = "IDLE"
    MATCHING = "MATCHING"

    def __str__(self) -> str:
        return self.value


class InstrumentEngine:
    """
    Per-instrument matching context: the book, its lock and its counters.

    Only the MatchingEngine touches these objects, and only while holding
    ``lock``.
    """

    def __init__(self, instrument: Instrument, max_terminal_orders: int = 10000):
        self.instrument = instrument
        self.book = OrderBook(instrument.symbol, max_terminal_orders)
        self.lock = threading.Lock()
        self.state = EngineState.IDLE
        self.orders_processed = 0
        self.fills_executed = 0
        self.volume = Decimal("0")


class MatchingEngine:
    """
    Matching engine for the exchange.

    Implements:
    - Price-time priority matching
    - Maker price priority (fills always execute at the resting price)
    - Market, Limit, IOC and FOK orders
    - Market-order collar around the feed's reference price

    Every state change produces an immutable record (Fill or OrderUpdate)
    which is handed to the registered listeners while the instrument lock is
    held, so listeners observe each instrument's records in execution order.
    """

    MAX_LATENCY_SAMPLES = 10000

    def __init__(
        self,
        registry: Optional[InstrumentRegistry] = None,
        market_collar_pct: Optional[Decimal] = None,
        max_terminal_orders: int = 10000,
        log_level: str = "INFO",
    ):
        """
        Initialize the matching engine.

        Args:
            registry: Instrument registry shared with the feed and the hub
            market_collar_pct: Max relative distance from the reference price
                at which market orders may fill (None disables the collar)
            max_terminal_orders: Filled or cancelled orders kept queryable per
                instrument; older ones are forgotten
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        """
        if market_collar_pct is not None and not (0 < market_collar_pct < 1):
            raise ValueError(f"Market collar must be in (0, 1), got {market_collar_pct}")
        if max_terminal_orders <= 0:
            raise ValueError(f"max_terminal_orders must be positive, got {max_terminal_orders}")

        self.registry = registry if registry is not None else InstrumentRegistry()
        self.market_collar_pct = market_collar_pct
        self.max_terminal_orders = max_terminal_orders
        self.logger = get_logger(log_level=log_level)

        self._engines: Dict[str, InstrumentEngine] = {}
        self._order_locations: Dict[int, str] = {}
        self._listeners: List[RecordListener] = []
        self._register_lock = threading.Lock()

        self._stats_lock = threading.Lock()
        self._order_latencies: List[float] = []
        self._orders_since_metrics = 0

        for instrument in self.registry.all():
            self._engines[instrument.symbol] = InstrumentEngine(instrument, self.max_terminal_orders)

    # Instrument management

    def register_instrument(self, instrument: Instrument) -> Instrument:
        """
        Register an instrument and create its book.

        Raises:
            DuplicateInstrumentException: If the symbol is already registered
        """
        with self._register_lock:
            self.registry.register(instrument)
            self._engines[instrument.symbol] = InstrumentEngine(instrument, self.max_terminal_orders)
        self.logger.info(f"Registered instrument {instrument.symbol}", symbol=instrument.symbol)
        return instrument

    def _engine(self, symbol: str) -> InstrumentEngine:
        instrument = self.registry.get(symbol)
        engine = self._engines.get(instrument.symbol)
        if engine is None:
            # Registered directly on the shared registry after construction
            with self._register_lock:
                engine = self._engines.setdefault(
                    instrument.symbol, InstrumentEngine(instrument, self.max_terminal_orders)
                )
        return engine

    # Listeners

    def add_listener(self, listener: RecordListener) -> None:
        """Register a callable receiving every Fill and OrderUpdate."""
        self._listeners.append(listener)

    # Order operations

    def submit(self, order: Order) -> OrderResult:
        """
        Submit an order and run one matching pass on its instrument.

        Blocks only until the pass for that instrument completes.

        Args:
            order: New order (status OPEN, nothing filled)

        Returns:
            OrderResult with the fills in execution order and the final status

        Raises:
            InvalidInstrumentException: If the symbol is not registered
            InvalidOrderException: If price/quantity violate tick/lot sizes or
                the order was already submitted
            UnfillableException: If a market order finds no reachable liquidity
        """
        start_time = time.perf_counter()
        engine = self._engine(order.symbol)
        order.symbol = engine.instrument.symbol
        self._validate(order, engine.instrument)

        self.logger.log_order_submission(
            order.order_id,
            order.symbol,
            order.order_type.value,
            order.side.value,
            order.quantity,
            order.price,
            correlation_id=order.trader_id,
        )

        with engine.lock:
            if order.order_id in self._order_locations:
                raise InvalidOrderException(
                    f"Order {order.order_id} was already submitted",
                    details={"order_id": order.order_id}
                )

            records: List[JournalRecord] = []
            engine.state = EngineState.MATCHING
            try:
                if order.order_type == OrderType.MARKET:
                    fills = self._process_market_order(order, engine, records)
                elif order.order_type == OrderType.LIMIT:
                    fills = self._process_limit_order(order, engine, records)
                elif order.order_type == OrderType.IOC:
                    fills = self._process_ioc_order(order, engine, records)
                elif order.order_type == OrderType.FOK:
                    fills = self._process_fok_order(order, engine, records)
                else:
                    raise InvalidOrderException(f"Unsupported order type: {order.order_type}")
            finally:
                engine.state = EngineState.IDLE

            if order.status.is_terminal:
                self._retire(engine, order)
            engine.orders_processed += 1
            self._emit(records)

            result = OrderResult(
                order=order.snapshot(),
                fills=fills,
                status=order.status,
                message=self._generate_result_message(order),
                timestamp=datetime.now(timezone.utc),
            )

        self._track_latency((time.perf_counter() - start_time) * 1000)
        return result

    def cancel(self, order_id: int, symbol: Optional[str] = None) -> Order:
        """
        Cancel a resting order.

        Runs under the instrument lock, so it is linearized with any
        matching pass on the same book.

        Args:
            order_id: ID of the order to cancel
            symbol: Optional symbol; looked up from the order id when omitted

        Returns:
            Snapshot of the cancelled order

        Raises:
            OrderNotFoundException: If the order doesn't exist or has aged out
                of the terminal-order window
            InvalidStateException: If the order is already filled or cancelled
        """
        if symbol is None:
            symbol = self._order_locations.get(order_id)
            if symbol is None:
                raise OrderNotFoundException(
                    f"Order {order_id} not found",
                    details={"order_id": order_id}
                )

        engine = self._engine(symbol)
        with engine.lock:
            book = engine.book
            order = book.get_order(order_id)
            if order is None:
                raise OrderNotFoundException(
                    f"Order {order_id} not found for {engine.instrument.symbol}",
                    details={"order_id": order_id, "symbol": engine.instrument.symbol}
                )

            if order.status.is_terminal:
                raise InvalidStateException(
                    f"Order {order_id} is already {order.status.value}",
                    details={"order_id": order_id, "status": order.status.value}
                )

            book.remove(order_id)
            order.status = OrderStatus.CANCELLED
            self._retire(engine, order)
            self._emit([OrderUpdate.from_order(order, "cancelled")])

        self.logger.log_order_cancellation(order_id, engine.instrument.symbol)
        return order.snapshot()

    def apply_tick(self, tick: PriceTick) -> bool:
        """Forward a feed tick to the instrument's book (reference price only)."""
        engine = self._engine(tick.symbol)
        with engine.lock:
            return engine.book.apply_tick(tick)

    # Queries

    def get_order(self, order_id: int, symbol: Optional[str] = None) -> Optional[Order]:
        """Snapshot of a resting or recently terminal order, or None."""
        symbol = symbol or self._order_locations.get(order_id)
        if symbol is None:
            return None
        engine = self._engine(symbol)
        with engine.lock:
            order = engine.book.get_order(order_id)
            return order.snapshot() if order is not None else None

    def get_order_book(self, symbol: str) -> OrderBook:
        """The live book. Readers outside the engine should prefer ``depth``."""
        return self._engine(symbol).book

    def depth(self, symbol: str, levels: int = 10) -> Dict:
        engine = self._engine(symbol)
        with engine.lock:
            return engine.book.depth(levels)

    def top_of_book(self, symbol: str):
        engine = self._engine(symbol)
        with engine.lock:
            return engine.book.get_bbo()

    def state(self, symbol: str) -> EngineState:
        return self._engine(symbol).state

    def instrument_statistics(self, symbol: str) -> Dict[str, object]:
        engine = self._engine(symbol)
        with engine.lock:
            book = engine.book
            return {
                "symbol": engine.instrument.symbol,
                "orders_processed": engine.orders_processed,
                "fills_executed": engine.fills_executed,
                "volume": engine.volume,
                "resting_orders": book.resting_count,
                "tracked_orders": book.tracked_count,
                "last_trade_price": book.last_trade_price,
                "reference_price": book.reference_price,
            }

    def get_statistics(self) -> Dict[str, object]:
        """
        Get current engine statistics.

        Returns:
            Dictionary of statistics aggregated over all instruments
        """
        stats: Dict[str, object] = {
            "instruments": len(self._engines),
            "orders_processed": 0,
            "fills_executed": 0,
            "resting_orders": 0,
            "tracked_orders": len(self._order_locations),
        }
        for engine in list(self._engines.values()):
            with engine.lock:
                stats["orders_processed"] += engine.orders_processed
                stats["fills_executed"] += engine.fills_executed
                stats["resting_orders"] += engine.book.resting_count

        with self._stats_lock:
            if self._order_latencies:
                stats["avg_latency_ms"] = sum(self._order_latencies) / len(self._order_latencies)
                stats["max_latency_ms"] = max(self._order_latencies)
                stats["min_latency_ms"] = min(self._order_latencies)

        return stats

    # Private matching methods

    def _process_market_order(
        self, order: Order, engine: InstrumentEngine, records: List[JournalRecord]
    ) -> List[Fill]:
        """
        Market orders take whatever liquidity is reachable; the remainder is
        discarded. With no reachable liquidity the order is rejected before
        anything is mutated.
        """
        book = engine.book
        bound = self._collar_bound(order.side, book)
        best = book.best_level(order.side.opposite)

        if best is None or (bound is not None and not self._within(order.side, best.price, bound)):
            raise UnfillableException(
                f"No {order.side.opposite.value.lower()} liquidity for market order on {order.symbol}",
                details={"symbol": order.symbol, "side": order.side.value}
            )

        self._accept(order, engine, records)
        fills = self._fill_against_book(order, engine, records, limit_price=bound)

        if not order.is_fully_filled:
            order.status = OrderStatus.CANCELLED
            records.append(OrderUpdate.from_order(order, "remainder discarded"))
            self.logger.info(
                f"Market order {order.order_id} remainder discarded: "
                f"{order.filled_quantity}/{order.quantity} filled",
                order_id=order.order_id,
            )
        else:
            records.append(OrderUpdate.from_order(order, "filled"))

        return fills

    def _process_limit_order(
        self, order: Order, engine: InstrumentEngine, records: List[JournalRecord]
    ) -> List[Fill]:
        """Limit orders fill at their price or better; the remainder rests."""
        self._accept(order, engine, records)
        fills = self._fill_against_book(order, engine, records, limit_price=order.price)

        if order.is_fully_filled:
            records.append(OrderUpdate.from_order(order, "filled"))
        else:
            engine.book.insert(order)
            records.append(OrderUpdate.from_order(order, "resting"))

        return fills

    def _process_ioc_order(
        self, order: Order, engine: InstrumentEngine, records: List[JournalRecord]
    ) -> List[Fill]:
        """Immediate-Or-Cancel: fill what crosses now, cancel the rest."""
        self._accept(order, engine, records)
        fills = self._fill_against_book(order, engine, records, limit_price=order.price)

        if not order.is_fully_filled:
            order.status = OrderStatus.CANCELLED
            records.append(OrderUpdate.from_order(order, "expired"))
        else:
            records.append(OrderUpdate.from_order(order, "filled"))

        return fills

    def _process_fok_order(
        self, order: Order, engine: InstrumentEngine, records: List[JournalRecord]
    ) -> List[Fill]:
        """Fill-Or-Kill: fill completely or not at all."""
        self._accept(order, engine, records)

        if self._available_quantity(order, engine.book, order.price) < order.quantity:
            order.status = OrderStatus.CANCELLED
            records.append(OrderUpdate.from_order(order, "killed"))
            self.logger.info(
                f"FOK order {order.order_id} killed - insufficient liquidity",
                order_id=order.order_id,
            )
            return []

        fills = self._fill_against_book(order, engine, records, limit_price=order.price)
        records.append(OrderUpdate.from_order(order, "filled"))
        return fills

    def _accept(self, order: Order, engine: InstrumentEngine, records: List[JournalRecord]) -> None:
        engine.book.register(order)
        self._order_locations[order.order_id] = order.symbol
        records.append(OrderUpdate.from_order(order, "accepted"))

    def _fill_against_book(
        self,
        order: Order,
        engine: InstrumentEngine,
        records: List[JournalRecord],
        limit_price: Optional[Decimal] = None,
    ) -> List[Fill]:
        """
        Take the best opposing order while prices cross.

        Each fill is for min(remaining) at the resting order's price; fully
        filled makers leave the book. Stops when the incoming order is filled
        or nothing crosses any more, so the book is never left crossed.
        """
        book = engine.book
        opposite = order.side.opposite
        fills: List[Fill] = []

        while not order.is_fully_filled:
            level = book.best_level(opposite)
            if level is None:
                break
            if limit_price is not None and not self._within(order.side, level.price, limit_price):
                break

            maker = level.get_next_order()
            quantity = min(order.remaining_quantity, maker.remaining_quantity)
            fills.append(self._execute_match(order, maker, quantity, level.price, engine, records))

        return fills

    def _execute_match(
        self,
        taker: Order,
        maker: Order,
        quantity: Decimal,
        price: Decimal,
        engine: InstrumentEngine,
        records: List[JournalRecord],
    ) -> Fill:
        taker.update_fill(quantity)
        maker.update_fill(quantity)

        if maker.is_fully_filled:
            engine.book.remove(maker.order_id)
            self._retire(engine, maker)

        fill = Fill(
            symbol=taker.symbol,
            price=price,
            quantity=quantity,
            aggressor_side=taker.side,
            maker_order_id=maker.order_id,
            taker_order_id=taker.order_id,
            maker_trader_id=maker.trader_id,
            taker_trader_id=taker.trader_id,
        )

        engine.book.last_trade_price = price
        engine.fills_executed += 1
        engine.volume += quantity

        records.append(fill)
        records.append(OrderUpdate.from_order(maker, "filled" if maker.is_fully_filled else "fill"))

        self.logger.log_fill(
            fill.fill_id,
            fill.symbol,
            fill.price,
            fill.quantity,
            fill.aggressor_side.value,
            fill.maker_order_id,
            fill.taker_order_id,
        )
        return fill

    def _retire(self, engine: InstrumentEngine, order: Order) -> None:
        for order_id in engine.book.retire(order.order_id):
            self._order_locations.pop(order_id, None)

    def _available_quantity(self, order: Order, book: OrderBook, limit_price: Optional[Decimal]) -> Decimal:
        """Opposing quantity reachable within the limit, scanning only as far as needed."""
        available = Decimal("0")
        for level in book.levels(order.side.opposite):
            if limit_price is not None and not self._within(order.side, level.price, limit_price):
                break
            available += level.total_volume
            if available >= order.quantity:
                break
        return available

    def _collar_bound(self, side: OrderSide, book: OrderBook) -> Optional[Decimal]:
        if self.market_collar_pct is None or book.reference_price is None:
            return None
        if side == OrderSide.BUY:
            return book.reference_price * (1 + self.market_collar_pct)
        return book.reference_price * (1 - self.market_collar_pct)

    @staticmethod
    def _within(side: OrderSide, resting_price: Decimal, limit_price: Decimal) -> bool:
        """Whether a resting price is acceptable to an order limited at limit_price."""
        if side == OrderSide.BUY:
            return resting_price <= limit_price
        return resting_price >= limit_price

    @staticmethod
    def _validate(order: Order, instrument: Instrument) -> None:
        if order.status != OrderStatus.OPEN or order.filled_quantity != 0:
            raise InvalidOrderException(
                f"Order {order.order_id} is not a new order",
                details={"order_id": order.order_id, "status": order.status.value}
            )
        validate_quantity(order.quantity, instrument)
        validate_price(order.price, instrument, required=order.order_type != OrderType.MARKET)

    def _emit(self, records: List[JournalRecord]) -> None:
        for listener in list(self._listeners):
            for record in records:
                try:
                    listener(record)
                except Exception as e:
                    self.logger.log_error("Error in record listener", e)

    def _track_latency(self, latency_ms: float) -> None:
        with self._stats_lock:
            self._order_latencies.append(latency_ms)
            if len(self._order_latencies) > self.MAX_LATENCY_SAMPLES:
                del self._order_latencies[: len(self._order_latencies) - self.MAX_LATENCY_SAMPLES]
            self._orders_since_metrics += 1
            if self._orders_since_metrics >= 1000:
                self._orders_since_metrics = 0
                recent = self._order_latencies[-1000:]
                self.logger.log_performance_metrics(
                    sum(e.orders_processed for e in self._engines.values()),
                    sum(e.fills_executed for e in self._engines.values()),
                    sum(recent) / len(recent),
                    max(recent),
                )

    @staticmethod
    def _generate_result_message(order: Order) -> str:
        if order.is_fully_filled:
            return f"Order fully filled: {order.filled_quantity}"
        if order.status == OrderStatus.PARTIAL:
            return f"Order partially filled: {order.filled_quantity}/{order.quantity}, remainder resting"
        if order.status == OrderStatus.CANCELLED and order.filled_quantity > 0:
            return f"Order partially filled: {order.filled_quantity}/{order.quantity}, remainder cancelled"
        if order.status == OrderStatus.CANCELLED:
            return "Order cancelled - no fill"
        return "Order added to book"
