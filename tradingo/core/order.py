"""
Order domain model with enums and validation

This module defines the Order class and related enums representing
orders in the matching engine, plus the immutable records produced
whenever an order changes state.
"""

import copy
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any, List, TYPE_CHECKING

if TYPE_CHECKING:
    from .fill import Fill


# Order ids are unique and monotonic for the lifetime of the process
_order_ids = itertools.count(1)


def next_order_id() -> int:
    return next(_order_ids)


class OrderType(Enum):
    """Order type enumeration."""
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    IOC = "IOC"  # Immediate-Or-Cancel
    FOK = "FOK"  # Fill-Or-Kill

    def __str__(self) -> str:
        return self.value


class OrderSide(Enum):
    """Order side enumeration."""
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY

    def __str__(self) -> str:
        return self.value


class OrderStatus(Enum):
    """Order status enumeration."""
    OPEN = "OPEN"            # Accepted, nothing filled yet
    PARTIAL = "PARTIAL"      # Partially filled, remainder resting
    FILLED = "FILLED"        # Completely filled
    CANCELLED = "CANCELLED"  # Cancelled or remainder discarded

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FILLED, OrderStatus.CANCELLED)

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class Order:
    """
    Represents a trading order in the matching engine.

    Remaining quantity is derived from the original and filled quantities,
    so ``remaining = quantity - filled`` holds at all times.

    Attributes:
        symbol: Instrument symbol (e.g., "BTCUSDT")
        order_type: Type of order (MARKET, LIMIT, IOC, FOK)
        side: Buy or sell
        quantity: Original quantity of the order
        price: Limit price (None for market orders)
        trader_id: Already-authenticated identity of the submitter
        order_id: Unique, monotonic order identifier
        timestamp: Submission time
        status: Current status of the order
        filled_quantity: Amount already filled
    """

    symbol: str
    order_type: OrderType
    side: OrderSide
    quantity: Decimal
    price: Optional[Decimal] = None
    trader_id: Optional[str] = None
    order_id: int = field(default_factory=next_order_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: OrderStatus = OrderStatus.OPEN
    filled_quantity: Decimal = field(default=Decimal("0"))

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Validate order parameters.

        Raises:
            ValueError: If validation fails
        """
        if self.quantity <= 0:
            raise ValueError(f"Quantity must be positive, got {self.quantity}")

        if self.filled_quantity < 0:
            raise ValueError(f"Filled quantity cannot be negative, got {self.filled_quantity}")

        if self.filled_quantity > self.quantity:
            raise ValueError(
                f"Filled quantity {self.filled_quantity} exceeds total quantity {self.quantity}"
            )

        if self.order_type == OrderType.MARKET:
            if self.price is not None:
                raise ValueError("Market orders cannot carry a price")
        else:
            if self.price is None:
                raise ValueError(f"{self.order_type} orders require a price")
            if self.price <= 0:
                raise ValueError(f"Price must be positive, got {self.price}")

        if not self.symbol or not self.symbol.strip():
            raise ValueError("Symbol cannot be empty")

    @property
    def remaining_quantity(self) -> Decimal:
        return self.quantity - self.filled_quantity

    def update_fill(self, filled_qty: Decimal) -> None:
        """
        Update the order with a fill.

        Raises:
            ValueError: If filled quantity is invalid
        """
        if filled_qty <= 0:
            raise ValueError(f"Fill quantity must be positive, got {filled_qty}")

        if filled_qty > self.remaining_quantity:
            raise ValueError(
                f"Fill quantity {filled_qty} exceeds remaining {self.remaining_quantity}"
            )

        self.filled_quantity += filled_qty
        self.status = OrderStatus.FILLED if self.remaining_quantity == 0 else OrderStatus.PARTIAL

    @property
    def is_fully_filled(self) -> bool:
        return self.remaining_quantity == 0

    def snapshot(self) -> "Order":
        """Detached copy handed to callers outside the engine."""
        return copy.copy(self)

    def __repr__(self) -> str:
        price_str = str(self.price) if self.price is not None else "MARKET"
        return (
            f"Order(id={self.order_id}, "
            f"{self.side.value} {self.quantity} {self.symbol} @ {price_str}, "
            f"type={self.order_type.value}, status={self.status.value}, "
            f"filled={self.filled_quantity}/{self.quantity})"
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Order):
            return False
        return self.order_id == other.order_id

    def __hash__(self) -> int:
        return hash(self.order_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert order to dictionary for API serialization."""
        return {
            "order_id": self.order_id,
            "symbol": self.symbol,
            "order_type": self.order_type.value,
            "side": self.side.value,
            "quantity": str(self.quantity),
            "price": str(self.price) if self.price is not None else None,
            "trader_id": self.trader_id,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "filled_quantity": str(self.filled_quantity),
            "remaining_quantity": str(self.remaining_quantity),
        }


@dataclass(frozen=True, slots=True)
class OrderUpdate:
    """
    Immutable record of an order state change, suitable for append-only logging.

    Attributes:
        order_id: Order the update refers to
        symbol: Instrument symbol
        status: Status after the change
        filled_quantity: Cumulative filled quantity after the change
        remaining_quantity: Remaining quantity after the change
        reason: Short reason ("accepted", "cancelled", "expired", ...)
        timestamp: Time of the change
    """

    order_id: int
    symbol: str
    side: OrderSide
    order_type: OrderType
    price: Optional[Decimal]
    quantity: Decimal
    status: OrderStatus
    filled_quantity: Decimal
    remaining_quantity: Decimal
    reason: str
    trader_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_order(cls, order: Order, reason: str) -> "OrderUpdate":
        return cls(
            order_id=order.order_id,
            symbol=order.symbol,
            side=order.side,
            order_type=order.order_type,
            price=order.price,
            quantity=order.quantity,
            status=order.status,
            filled_quantity=order.filled_quantity,
            remaining_quantity=order.remaining_quantity,
            reason=reason,
            trader_id=order.trader_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "order_update",
            "order_id": self.order_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "order_type": self.order_type.value,
            "price": str(self.price) if self.price is not None else None,
            "quantity": str(self.quantity),
            "status": self.status.value,
            "filled_quantity": str(self.filled_quantity),
            "remaining_quantity": str(self.remaining_quantity),
            "reason": self.reason,
            "trader_id": self.trader_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class OrderResult:
    """
    Result of an order submission to the matching engine.

    Attributes:
        order: Snapshot of the order after the matching pass
        fills: Fills generated, in execution order
        status: Final status of the order
        message: Human-readable message about the order result
        timestamp: Time when the result was generated
    """
    order: Order
    fills: List["Fill"]
    status: OrderStatus
    message: str
    timestamp: datetime

    @property
    def resting(self) -> bool:
        """True when the remainder rests in the book."""
        return self.status in (OrderStatus.OPEN, OrderStatus.PARTIAL)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order.order_id,
            "status": self.status.value,
            "filled_quantity": str(self.order.filled_quantity),
            "remaining_quantity": str(self.order.remaining_quantity),
            "fills": [fill.to_dict() for fill in self.fills],
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
