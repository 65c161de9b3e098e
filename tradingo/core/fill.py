"""
Fill domain model

This module defines the Fill class representing a completed match
between a resting (maker) order and an incoming (taker) order.
"""

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .order import OrderSide


_fill_ids = itertools.count(1)


def next_fill_id() -> int:
    return next(_fill_ids)


@dataclass(frozen=True, slots=True)
class Fill:
    """
    Represents a completed match.

    Immutable once created; fills are appended to the trade journal and
    never modified.

    Attributes:
        symbol: Instrument symbol
        price: Execution price (always the maker's price)
        quantity: Executed quantity
        aggressor_side: Side of the taker order
        maker_order_id: ID of the resting order
        taker_order_id: ID of the incoming order
        maker_trader_id: Trader behind the resting order, if known
        taker_trader_id: Trader behind the incoming order, if known
        fill_id: Unique, monotonic fill identifier
        timestamp: Execution time
    """

    symbol: str
    price: Decimal
    quantity: Decimal
    aggressor_side: OrderSide
    maker_order_id: int
    taker_order_id: int
    maker_trader_id: Optional[str] = None
    taker_trader_id: Optional[str] = None
    fill_id: int = field(default_factory=next_fill_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.price <= 0:
            raise ValueError(f"Price must be positive, got {self.price}")

        if self.quantity <= 0:
            raise ValueError(f"Quantity must be positive, got {self.quantity}")

        if not self.symbol or not self.symbol.strip():
            raise ValueError("Symbol cannot be empty")

    @property
    def total_value(self) -> Decimal:
        """Total fill value (price * quantity)."""
        return self.price * self.quantity

    def involves(self, order_id: int) -> bool:
        return order_id in (self.maker_order_id, self.taker_order_id)

    def involves_trader(self, trader_id: str) -> bool:
        return trader_id is not None and trader_id in (self.maker_trader_id, self.taker_trader_id)

    def to_dict(self) -> dict:
        """Convert fill to dictionary for API serialization."""
        return {
            "fill_id": self.fill_id,
            "symbol": self.symbol,
            "price": str(self.price),
            "quantity": str(self.quantity),
            "timestamp": self.timestamp.isoformat(),
            "aggressor_side": self.aggressor_side.value,
            "maker_order_id": self.maker_order_id,
            "taker_order_id": self.taker_order_id,
            "maker_trader_id": self.maker_trader_id,
            "taker_trader_id": self.taker_trader_id,
            "total_value": str(self.total_value),
        }

    def __repr__(self) -> str:
        return (
            f"Fill(id={self.fill_id}, {self.symbol}, {self.quantity} @ {self.price}, "
            f"maker={self.maker_order_id}, taker={self.taker_order_id})"
        )
