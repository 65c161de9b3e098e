"""
Pydantic models for API request/response validation.

This module defines all data models used in the REST API and WebSocket
communications.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator, ConfigDict

from tradingo.core.fill import Fill
from tradingo.core.order import Order, OrderResult


# ============================================================================
# Request Models
# ============================================================================

class OrderRequest(BaseModel):
    """Request model for submitting a new order."""

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "symbol": "BTCUSDT",
            "order_type": "limit",
            "side": "buy",
            "quantity": "0.5",
            "price": "50000.00",
            "trader_id": "alice"
        }
    })

    symbol: str = Field(
        ...,
        description="Instrument symbol (e.g., BTCUSDT)",
        min_length=2,
        max_length=20,
        pattern=r'^[A-Za-z0-9]+$'
    )
    order_type: str = Field(
        ...,
        description="Order type: market, limit, ioc, fok",
        pattern=r'^(market|limit|ioc|fok)$'
    )
    side: str = Field(
        ...,
        description="Order side: buy or sell",
        pattern=r'^(buy|sell)$'
    )
    quantity: str = Field(
        ...,
        description="Order quantity as decimal string",
        pattern=r'^\d+(\.\d+)?$'
    )
    price: Optional[str] = Field(
        None,
        description="Limit price (required for limit/ioc/fok orders)",
        pattern=r'^\d+(\.\d+)?$'
    )
    trader_id: Optional[str] = Field(
        None,
        description="Identity of the submitting trader, accepted as given",
        max_length=64
    )

    @field_validator('quantity')
    @classmethod
    def validate_quantity(cls, v: str) -> str:
        """Validate quantity is positive."""
        if Decimal(v) <= 0:
            raise ValueError("Quantity must be positive")
        return v

    @field_validator('price')
    @classmethod
    def validate_price(cls, v: Optional[str]) -> Optional[str]:
        """Validate price is positive if provided."""
        if v is not None and Decimal(v) <= 0:
            raise ValueError("Price must be positive")
        return v

    def to_order_params(self) -> Dict[str, Any]:
        """Convert to parameters for OrderService.submit_order."""
        return {
            "symbol": self.symbol,
            "order_type": self.order_type,
            "side": self.side,
            "quantity": Decimal(self.quantity),
            "price": Decimal(self.price) if self.price is not None else None,
            "trader_id": self.trader_id,
        }


# ============================================================================
# Response Models
# ============================================================================

class FillResponse(BaseModel):
    """Response model for a fill."""

    fill_id: int = Field(..., description="Unique fill identifier")
    symbol: str = Field(..., description="Instrument symbol")
    price: str = Field(..., description="Execution price (the resting order's price)")
    quantity: str = Field(..., description="Executed quantity")
    timestamp: datetime = Field(..., description="Execution timestamp")
    aggressor_side: str = Field(..., description="Aggressor side (buy/sell)")
    maker_order_id: int = Field(..., description="Resting order ID")
    taker_order_id: int = Field(..., description="Incoming order ID")

    @classmethod
    def from_fill(cls, fill: Fill) -> 'FillResponse':
        return cls(
            fill_id=fill.fill_id,
            symbol=fill.symbol,
            price=str(fill.price),
            quantity=str(fill.quantity),
            timestamp=fill.timestamp,
            aggressor_side=fill.aggressor_side.value.lower(),
            maker_order_id=fill.maker_order_id,
            taker_order_id=fill.taker_order_id,
        )


class OrderResponse(BaseModel):
    """Response model for order submission."""

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "order_id": 42,
            "symbol": "BTCUSDT",
            "status": "filled",
            "filled_quantity": "0.5",
            "remaining_quantity": "0",
            "fills": [
                {
                    "fill_id": 7,
                    "symbol": "BTCUSDT",
                    "price": "50000.00",
                    "quantity": "0.5",
                    "timestamp": "2025-10-25T10:30:45.123456",
                    "aggressor_side": "buy",
                    "maker_order_id": 40,
                    "taker_order_id": 42
                }
            ],
            "message": "Order fully filled: 0.5",
            "timestamp": "2025-10-25T10:30:45.123456"
        }
    })

    order_id: int = Field(..., description="Unique order identifier")
    symbol: str = Field(..., description="Instrument symbol")
    status: str = Field(..., description="Order status: open/partial/filled/cancelled")
    filled_quantity: str = Field(..., description="Quantity filled")
    remaining_quantity: str = Field(..., description="Quantity remaining")
    fills: List[FillResponse] = Field(default_factory=list, description="Fills in execution order")
    message: str = Field(..., description="Human-readable result")
    timestamp: datetime = Field(..., description="Order submission timestamp")

    @classmethod
    def from_order_result(cls, result: OrderResult) -> 'OrderResponse':
        """Create from OrderResult object."""
        return cls(
            order_id=result.order.order_id,
            symbol=result.order.symbol,
            status=result.status.value.lower(),
            filled_quantity=str(result.order.filled_quantity),
            remaining_quantity=str(result.order.remaining_quantity),
            fills=[FillResponse.from_fill(f) for f in result.fills],
            message=result.message,
            timestamp=result.order.timestamp
        )


class OrderStatusResponse(BaseModel):
    """Response model for order status query."""

    order_id: int
    symbol: str
    order_type: str
    side: str
    status: str
    quantity: str
    filled_quantity: str
    remaining_quantity: str
    price: Optional[str] = None
    trader_id: Optional[str] = None
    timestamp: datetime

    @classmethod
    def from_order(cls, order: Order) -> 'OrderStatusResponse':
        """Create from Order object."""
        return cls(
            order_id=order.order_id,
            symbol=order.symbol,
            order_type=order.order_type.value.lower(),
            side=order.side.value.lower(),
            status=order.status.value.lower(),
            quantity=str(order.quantity),
            filled_quantity=str(order.filled_quantity),
            remaining_quantity=str(order.remaining_quantity),
            price=str(order.price) if order.price is not None else None,
            trader_id=order.trader_id,
            timestamp=order.timestamp
        )


class CancelOrderResponse(BaseModel):
    """Response model for order cancellation."""

    order_id: int = Field(..., description="Cancelled order ID")
    cancelled: bool = Field(..., description="Cancellation success status")
    status: str = Field(..., description="Order status after cancellation")
    remaining_quantity: str = Field(..., description="Quantity that was resting")
    message: str = Field(..., description="Cancellation message")


class BBOResponse(BaseModel):
    """Response model for Best Bid/Offer."""

    best_bid: Optional[str] = Field(None, description="Best bid price")
    best_ask: Optional[str] = Field(None, description="Best ask price")
    spread: Optional[str] = Field(None, description="Bid-ask spread")


class OrderBookResponse(BaseModel):
    """Response model for order book snapshot."""

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "symbol": "BTCUSDT",
            "timestamp": "2025-10-25T10:30:45.123456",
            "bids": [["50000.00", "1.5"], ["49999.00", "2.3"]],
            "asks": [["50001.00", "0.8"], ["50002.00", "1.2"]],
            "bbo": {"best_bid": "50000.00", "best_ask": "50001.00", "spread": "1.00"},
            "reference_price": "50000.37",
            "last_trade_price": "50000.00"
        }
    })

    symbol: str = Field(..., description="Instrument symbol")
    timestamp: datetime = Field(..., description="Snapshot timestamp")
    bids: List[List[str]] = Field(..., description="Bid levels [[price, quantity], ...]")
    asks: List[List[str]] = Field(..., description="Ask levels [[price, quantity], ...]")
    bbo: BBOResponse = Field(..., description="Best bid/offer")
    reference_price: Optional[str] = Field(None, description="Last feed price")
    last_trade_price: Optional[str] = Field(None, description="Price of the most recent fill")


class TickerResponse(BaseModel):
    """Response model for an instrument's session ticker."""

    symbol: str
    price: str = Field(..., description="Current feed price")
    change_pct: str = Field(..., description="Change since session open, in percent")
    open: str
    high: str
    low: str
    volume: str = Field(..., description="Quantity traded this session")
    last_trade_price: Optional[str] = None
    best_bid: Optional[str] = None
    best_ask: Optional[str] = None
    sequence: int = Field(..., description="Sequence of the last tick")
    timestamp: datetime

    @classmethod
    def from_ticker(cls, ticker: Dict[str, Any]) -> 'TickerResponse':
        def text(value):
            return str(value) if value is not None else None

        return cls(
            symbol=ticker["symbol"],
            price=str(ticker["price"]),
            change_pct=str(ticker["change_pct"]),
            open=str(ticker["open"]),
            high=str(ticker["high"]),
            low=str(ticker["low"]),
            volume=str(ticker["volume"]),
            last_trade_price=text(ticker["last_trade_price"]),
            best_bid=text(ticker["best_bid"]),
            best_ask=text(ticker["best_ask"]),
            sequence=ticker["sequence"],
            timestamp=ticker["timestamp"],
        )


class TradeResponse(BaseModel):
    """Response model for a historical trade."""

    trade_id: int
    symbol: str
    price: str
    quantity: str
    timestamp: datetime
    aggressor_side: str
    maker_order_id: int
    taker_order_id: int
    value: str


class TradeHistoryResponse(BaseModel):
    """Response model for recent trades of an instrument."""

    symbol: str
    trades: List[TradeResponse] = Field(default_factory=list, description="Newest first")


class TraderTradeResponse(TradeResponse):
    """A trade seen from one trader's side."""

    side: str = Field(..., description="Side the trader traded (buy or sell)")
    order_id: int = Field(..., description="The trader's order involved in the trade")
    liquidity: str = Field(..., description="maker or taker")


class TraderTradeHistoryResponse(BaseModel):
    """Response model for a trader's recent trades."""

    trader_id: str
    trades: List[TraderTradeResponse] = Field(default_factory=list, description="Newest first")


class OrderHistoryResponse(BaseModel):
    """Response model for an order's state changes and fills."""

    order_id: int
    updates: List[Dict[str, Any]] = Field(default_factory=list, description="Oldest first")
    fills: List[TradeResponse] = Field(default_factory=list, description="In execution order")


class InstrumentResponse(BaseModel):
    """Response model for a registered instrument."""

    symbol: str
    tick_size: str
    lot_size: str


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Check timestamp")
    version: str = Field(..., description="API version")
    uptime_seconds: float = Field(..., description="Seconds since startup")
    matching_engine: Dict[str, Any] = Field(..., description="Matching engine statistics")
    subscriptions: Dict[str, Any] = Field(default_factory=dict, description="Subscription hub statistics")


class ErrorResponse(BaseModel):
    """Response model for errors."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    timestamp: datetime = Field(..., description="Error timestamp")
