"""
Order Service - Business logic layer for order operations.

This service builds orders from API parameters, checks them against the
instrument registry and hands them to the matching engine.
"""

import logging
from decimal import Decimal
from typing import Optional, Dict, Any, List, Union

from tradingo.core.matching_engine import MatchingEngine
from tradingo.core.journal import TradeJournal
from tradingo.core.order import Order, OrderType, OrderSide, OrderResult, OrderUpdate
from tradingo.utils.exceptions import (
    BaseMatchingEngineException,
    InvalidOrderException,
    OrderNotFoundException,
    ValidationException,
)
from tradingo.utils.validators import (
    normalize_symbol,
    sanitize_decimal,
    validate_price,
    validate_quantity,
)

logger = logging.getLogger(__name__)


class OrderService:
    """
    Service class for handling order operations.

    Domain errors from the engine are propagated unchanged so the API can
    map each of them to its own status code.
    """

    def __init__(self, matching_engine: MatchingEngine, journal: Optional[TradeJournal] = None):
        """
        Initialize order service.

        Args:
            matching_engine: Reference to the matching engine instance
            journal: Journal used for order history queries
        """
        self.matching_engine = matching_engine
        self.journal = journal
        self.logger = logging.getLogger(f"{__name__}.OrderService")
        self.logger.info("OrderService initialized")

    def submit_order(
        self,
        symbol: str,
        order_type: Union[OrderType, str],
        side: Union[OrderSide, str],
        quantity: Union[Decimal, str],
        price: Optional[Union[Decimal, str]] = None,
        trader_id: Optional[str] = None,
    ) -> OrderResult:
        """
        Submit a new order to the matching engine.

        Args:
            symbol: Instrument symbol (e.g., "BTCUSDT")
            order_type: Type of order (MARKET, LIMIT, IOC, FOK)
            side: Order side (BUY or SELL)
            quantity: Order quantity
            price: Limit price (required for non-market orders)
            trader_id: Identity of the submitter, accepted as given

        Returns:
            OrderResult containing order details and fills

        Raises:
            InvalidInstrumentException: If the symbol is not registered
            InvalidOrderException: If order parameters are invalid
            UnfillableException: If a market order finds no liquidity
        """
        order = self.build_order(symbol, order_type, side, quantity, price, trader_id)

        self.logger.info(
            f"Submitting order {order.order_id}: {order.order_type.value} {order.side.value} "
            f"{order.quantity} {order.symbol} @ {order.price or 'MARKET'}"
        )

        result = self.matching_engine.submit(order)

        self.logger.info(
            f"Order {order.order_id} processed. "
            f"Status: {result.status.value}, "
            f"Filled: {result.order.filled_quantity}/{result.order.quantity}, "
            f"Fills: {len(result.fills)}"
        )
        return result

    def build_order(
        self,
        symbol: str,
        order_type: Union[OrderType, str],
        side: Union[OrderSide, str],
        quantity: Union[Decimal, str],
        price: Optional[Union[Decimal, str]] = None,
        trader_id: Optional[str] = None,
    ) -> Order:
        """Validate raw parameters and construct an Order."""
        symbol = normalize_symbol(symbol)
        instrument = self.matching_engine.registry.get(symbol)
        order_type = self._parse_enum(OrderType, order_type, "order type")
        side = self._parse_enum(OrderSide, side, "side")
        quantity = sanitize_decimal(quantity)
        price = sanitize_decimal(price) if price is not None else None

        if order_type == OrderType.MARKET and price is not None:
            raise InvalidOrderException(
                "Market orders cannot carry a price",
                details={"symbol": symbol, "price": str(price)}
            )

        validate_quantity(quantity, instrument)
        validate_price(price, instrument, required=order_type != OrderType.MARKET)

        try:
            return Order(
                symbol=instrument.symbol,
                order_type=order_type,
                side=side,
                quantity=quantity,
                price=price,
                trader_id=trader_id,
            )
        except ValueError as e:
            raise InvalidOrderException(str(e), details={"symbol": symbol})

    def cancel_order(self, order_id: int, symbol: Optional[str] = None) -> Order:
        """
        Cancel a resting order.

        Raises:
            OrderNotFoundException: If order doesn't exist
            InvalidStateException: If order is already filled or cancelled
        """
        self.logger.info(f"Cancelling order {order_id}")
        try:
            order = self.matching_engine.cancel(order_id, normalize_symbol(symbol) if symbol else None)
        except BaseMatchingEngineException as e:
            self.logger.warning(f"Cancel of order {order_id} rejected: {e.message}")
            raise

        self.logger.info(f"Order {order_id} cancelled successfully")
        return order

    def get_order_status(self, order_id: int) -> Order:
        """
        Get the current state of an order.

        Raises:
            OrderNotFoundException: If the order was never accepted
        """
        order = self.matching_engine.get_order(order_id)
        if order is None:
            raise OrderNotFoundException(
                f"Order {order_id} not found",
                details={"order_id": order_id}
            )
        self.logger.debug(
            f"Order {order_id} status: {order.status.value}, "
            f"filled {order.filled_quantity}/{order.quantity}"
        )
        return order

    def get_order_history(self, order_id: int) -> List[OrderUpdate]:
        if self.journal is None:
            return []
        return self.journal.order_history(order_id)

    def get_order_book_snapshot(self, symbol: str, levels: int = 10) -> Dict[str, Any]:
        """
        Get current order book depth.

        Raises:
            InvalidInstrumentException: If the symbol is not registered
            ValidationException: If levels is not positive
        """
        if levels <= 0:
            raise ValidationException(f"Levels must be positive, got {levels}")
        return self.matching_engine.depth(normalize_symbol(symbol), levels)

    def get_statistics(self) -> Dict[str, Any]:
        return self.matching_engine.get_statistics()

    @staticmethod
    def _parse_enum(enum_cls, value, name: str):
        if isinstance(value, enum_cls):
            return value
        try:
            return enum_cls(str(value).strip().upper())
        except ValueError:
            raise InvalidOrderException(
                f"Invalid {name}: {value}. "
                f"Must be one of: {', '.join(e.value.lower() for e in enum_cls)}",
                details={name.replace(' ', '_'): str(value)}
            )
