"""
Order book data structure with price-time priority

This module implements a per-instrument order book using sorted dictionaries
for price-level management and O(1) order lookups. The book only stores
orders; matching decisions are made by the MatchingEngine.
"""

from collections import deque
from decimal import Decimal
from typing import Deque, Dict, List, NamedTuple, Optional, Tuple
from sortedcontainers import SortedDict

from .order import Order, OrderSide
from .price_level import PriceLevel
from .market_data import PriceTick
from ..utils.exceptions import (
    OrderNotFoundException,
    OrderBookException,
)


class BookPosition(NamedTuple):
    """Where a resting order sits in its side of the book."""
    price: Decimal
    level_rank: int       # 0 is top-of-book
    queue_position: int   # 0 is first in line at that price


class OrderBook:
    """
    Manages the resting orders for one instrument with price-time priority.

    Bids are sorted descending and asks ascending, so the first level of
    either side is always top-of-book. Within a level orders are FIFO.

    Attributes:
        symbol: Instrument symbol
        bids: Sorted dictionary of bid price levels (descending)
        asks: Sorted dictionary of ask price levels (ascending)
        order_registry: Resting orders plus the most recent terminal ones
        max_terminal_orders: How many filled or cancelled orders stay queryable
        reference_price: Last feed price, used to bound market orders
        last_trade_price: Price of the most recent fill
    """

    def __init__(self, symbol: str, max_terminal_orders: int = 10000):
        if max_terminal_orders <= 0:
            raise ValueError(f"max_terminal_orders must be positive, got {max_terminal_orders}")

        self.symbol: str = symbol
        self.max_terminal_orders = max_terminal_orders

        # Bids sorted in descending order (highest price first)
        self.bids: SortedDict = SortedDict(lambda price: -price)

        # Asks sorted in ascending order (lowest price first)
        self.asks: SortedDict = SortedDict()

        self.order_registry: Dict[int, Order] = {}
        self._resting: Dict[int, Order] = {}
        self._terminal: Deque[int] = deque()

        self.reference_price: Optional[Decimal] = None
        self.last_tick: Optional[PriceTick] = None
        self.last_trade_price: Optional[Decimal] = None

    def insert(self, order: Order) -> BookPosition:
        """
        Rest an order in the book at its price-time priority position.

        Args:
            order: Order to rest

        Returns:
            The order's resting position

        Raises:
            OrderBookException: If the order is already resting, has no price,
                has nothing left to fill or belongs to another instrument
        """
        if order.order_id in self._resting:
            raise OrderBookException(
                f"Order {order.order_id} already rests in book",
                details={"order_id": order.order_id}
            )

        if order.symbol != self.symbol:
            raise OrderBookException(
                f"Order for {order.symbol} cannot rest in {self.symbol} book",
                details={"order_id": order.order_id, "symbol": order.symbol}
            )

        if order.remaining_quantity <= 0:
            raise OrderBookException(
                "Cannot rest an order with no remaining quantity",
                details={"order_id": order.order_id}
            )

        if order.price is None:
            raise OrderBookException(
                "Cannot rest an order without a price",
                details={"order_id": order.order_id, "order_type": order.order_type.value}
            )

        book = self._side(order.side)
        level = book.get(order.price)
        if level is None:
            level = PriceLevel(order.price, order.side)
            book[order.price] = level

        queue_position = level.add_order(order)
        self._resting[order.order_id] = order
        self.order_registry[order.order_id] = order

        return BookPosition(order.price, book.index(order.price), queue_position)

    def remove(self, order_id: int) -> Order:
        """
        Remove a resting order from the book.

        The order stays in the registry so it remains queryable.

        Raises:
            OrderNotFoundException: If no resting order has this id
        """
        order = self._resting.pop(order_id, None)
        if order is None:
            raise OrderNotFoundException(
                f"Order {order_id} is not resting in {self.symbol} book",
                details={"order_id": order_id, "symbol": self.symbol}
            )

        book = self._side(order.side)
        level = book.get(order.price)
        if level is not None:
            level.remove_order(order_id)
            if level.is_empty():
                del book[order.price]

        return order

    def register(self, order: Order) -> None:
        """Record an order that was processed but never rested (market, IOC, FOK, filled)."""
        self.order_registry[order.order_id] = order

    def retire(self, order_id: int) -> List[int]:
        """
        Mark an order as terminal (filled or cancelled).

        Only the newest ``max_terminal_orders`` terminal orders are kept;
        older ones are dropped from the registry.

        Returns:
            Ids dropped from the registry
        """
        self._terminal.append(order_id)
        evicted = []
        while len(self._terminal) > self.max_terminal_orders:
            old_id = self._terminal.popleft()
            self.order_registry.pop(old_id, None)
            evicted.append(old_id)
        return evicted

    def get_order(self, order_id: int) -> Optional[Order]:
        return self.order_registry.get(order_id)

    def is_resting(self, order_id: int) -> bool:
        return order_id in self._resting

    def position_of(self, order_id: int) -> Optional[BookPosition]:
        order = self._resting.get(order_id)
        if order is None:
            return None
        book = self._side(order.side)
        return BookPosition(
            order.price,
            book.index(order.price),
            book[order.price].queue_position(order_id),
        )

    def best_bid(self) -> Optional[Decimal]:
        """Highest resting bid price, or None if there are no bids."""
        if not self.bids:
            return None
        return self.bids.keys()[0]

    def best_ask(self) -> Optional[Decimal]:
        """Lowest resting ask price, or None if there are no asks."""
        if not self.asks:
            return None
        return self.asks.keys()[0]

    def get_bbo(self) -> Tuple[Optional[Decimal], Optional[Decimal]]:
        return self.best_bid(), self.best_ask()

    def is_crossed(self) -> bool:
        bid, ask = self.get_bbo()
        return bid is not None and ask is not None and bid >= ask

    def best_level(self, side: OrderSide) -> Optional[PriceLevel]:
        """Top-of-book level for one side."""
        book = self._side(side)
        if not book:
            return None
        return book.values()[0]

    def levels(self, side: OrderSide) -> List[PriceLevel]:
        """Snapshot of one side's levels in priority order."""
        return list(self._side(side).values())

    def apply_tick(self, tick: PriceTick) -> bool:
        """
        Update the reference price from a feed tick. Never matches.

        Returns:
            False when the tick is older than the last one applied

        Raises:
            OrderBookException: If the tick belongs to another instrument
        """
        if tick.symbol != self.symbol:
            raise OrderBookException(
                f"Tick for {tick.symbol} applied to {self.symbol} book",
                details={"symbol": tick.symbol}
            )

        if self.last_tick is not None and tick.sequence <= self.last_tick.sequence:
            return False

        self.last_tick = tick
        self.reference_price = tick.price
        return True

    @property
    def spread(self) -> Optional[Decimal]:
        bid, ask = self.get_bbo()
        if bid is None or ask is None:
            return None
        return ask - bid

    @property
    def mid_price(self) -> Optional[Decimal]:
        bid, ask = self.get_bbo()
        if bid is None or ask is None:
            return None
        return (bid + ask) / Decimal("2")

    @property
    def resting_count(self) -> int:
        return len(self._resting)

    @property
    def tracked_count(self) -> int:
        return len(self.order_registry)

    def get_price_levels(self, side: OrderSide, levels: int = 10) -> List[Tuple[Decimal, Decimal]]:
        """
        Get aggregated price levels for one side.

        Returns:
            List of (price, volume) tuples, best first
        """
        result = []
        for i, (price, level) in enumerate(self._side(side).items()):
            if i >= levels:
                break
            result.append((price, level.total_volume))
        return result

    def depth(self, levels: int = 10) -> Dict:
        """
        Get order book depth (L2 market data).

        Returns:
            Dictionary with bids and asks as lists of [price, quantity]
        """
        bid, ask = self.get_bbo()
        spread = self.spread
        return {
            "symbol": self.symbol,
            "bids": [[str(p), str(v)] for p, v in self.get_price_levels(OrderSide.BUY, levels)],
            "asks": [[str(p), str(v)] for p, v in self.get_price_levels(OrderSide.SELL, levels)],
            "bbo": {
                "best_bid": str(bid) if bid is not None else None,
                "best_ask": str(ask) if ask is not None else None,
                "spread": str(spread) if spread is not None else None,
            },
            "reference_price": str(self.reference_price) if self.reference_price is not None else None,
            "last_trade_price": str(self.last_trade_price) if self.last_trade_price is not None else None,
        }

    def _side(self, side: OrderSide) -> SortedDict:
        return self.bids if side == OrderSide.BUY else self.asks

    def __repr__(self) -> str:
        return (
            f"OrderBook({self.symbol}: "
            f"{len(self.bids)} bid levels, {len(self.asks)} ask levels, "
            f"BBO={self.best_bid()}/{self.best_ask()}, "
            f"{self.resting_count} resting)"
        )
