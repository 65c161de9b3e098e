"""
Price level queue management with FIFO ordering

This module defines the PriceLevel class which holds the resting orders at
a single price with strict time priority (First-In-First-Out).
"""

from decimal import Decimal
from typing import Dict, Iterator, Optional

from .order import Order, OrderSide


class PriceLevel:
    """
    Manages orders at a single price level with FIFO ordering.

    Orders are kept in an insertion-ordered dict keyed by order id, which
    gives O(1) append, O(1) removal by id and O(1) access to the head.

    Attributes:
        price: The price level
        side: Buy or sell side
    """

    def __init__(self, price: Decimal, side: OrderSide):
        self.price: Decimal = price
        self.side: OrderSide = side
        self._orders: Dict[int, Order] = {}

    def add_order(self, order: Order) -> int:
        """
        Append an order to the back of the queue.

        Returns:
            Zero-based queue position of the order at this level

        Raises:
            ValueError: If order price/side doesn't match the level or the order is already queued
        """
        if order.price != self.price:
            raise ValueError(
                f"Order price {order.price} doesn't match level price {self.price}"
            )

        if order.side != self.side:
            raise ValueError(
                f"Order side {order.side} doesn't match level side {self.side}"
            )

        if order.order_id in self._orders:
            raise ValueError(f"Order {order.order_id} already exists at this level")

        self._orders[order.order_id] = order
        return len(self._orders) - 1

    def remove_order(self, order_id: int) -> Optional[Order]:
        """Remove an order from the queue, returning it or None if absent."""
        return self._orders.pop(order_id, None)

    def get_next_order(self) -> Optional[Order]:
        """The order with time priority at this level, without removing it."""
        return next(iter(self._orders.values()), None)

    def queue_position(self, order_id: int) -> int:
        """Zero-based position of an order in the queue, -1 if absent."""
        for position, queued_id in enumerate(self._orders):
            if queued_id == order_id:
                return position
        return -1

    def is_empty(self) -> bool:
        return not self._orders

    @property
    def total_volume(self) -> Decimal:
        """Sum of remaining quantities at this level."""
        return sum((order.remaining_quantity for order in self._orders.values()), Decimal("0"))

    @property
    def order_count(self) -> int:
        return len(self._orders)

    def __iter__(self) -> Iterator[Order]:
        return iter(list(self._orders.values()))

    def __len__(self) -> int:
        return len(self._orders)

    def __repr__(self) -> str:
        return (
            f"PriceLevel(price={self.price}, side={self.side.value}, "
            f"orders={self.order_count}, volume={self.total_volume})"
        )
