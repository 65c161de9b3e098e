"""
Input validation utilities

This module provides validation functions for order prices and quantities
against an instrument's tick and lot sizes.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional, Union, TYPE_CHECKING

from .exceptions import InvalidOrderException

if TYPE_CHECKING:
    from ..core.instrument import Instrument


def sanitize_decimal(value: Union[str, int, float, Decimal]) -> Decimal:
    """
    Convert a value to Decimal with proper error handling.

    Args:
        value: Value to convert to Decimal

    Returns:
        Decimal representation of the value

    Raises:
        InvalidOrderException: If value cannot be converted to Decimal
    """
    try:
        if isinstance(value, Decimal):
            result = value
        else:
            result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise InvalidOrderException(
            f"Invalid decimal value: {value}",
            details={"value": str(value), "error": str(e)}
        )

    if not result.is_finite():
        raise InvalidOrderException(
            f"Invalid decimal value: {value}",
            details={"value": str(value)}
        )
    return result


def is_multiple_of(value: Decimal, increment: Decimal) -> bool:
    """Check that value is an exact multiple of increment."""
    return value % increment == 0


def validate_price(
    price: Optional[Decimal],
    instrument: "Instrument",
    required: bool = False,
) -> bool:
    """
    Validate a price against the instrument's tick size.

    Args:
        price: Price to validate
        instrument: Instrument the order trades
        required: Whether price is required (False for market orders)

    Returns:
        True if price is valid

    Raises:
        InvalidOrderException: If the price is missing, non-positive or off-tick
    """
    if price is None:
        if required:
            raise InvalidOrderException(
                "Price is required for this order type",
                details={"symbol": instrument.symbol}
            )
        return True

    if price <= 0:
        raise InvalidOrderException(
            f"Price must be positive, got {price}",
            details={"symbol": instrument.symbol, "price": str(price)}
        )

    if not is_multiple_of(price, instrument.tick_size):
        raise InvalidOrderException(
            f"Price {price} is not a multiple of tick size {instrument.tick_size}",
            details={
                "symbol": instrument.symbol,
                "price": str(price),
                "tick_size": str(instrument.tick_size),
            }
        )

    return True


def validate_quantity(quantity: Decimal, instrument: "Instrument") -> bool:
    """
    Validate an order quantity against the instrument's lot size.

    Raises:
        InvalidOrderException: If quantity is non-positive or off-lot
    """
    if quantity <= 0:
        raise InvalidOrderException(
            f"Quantity must be positive, got {quantity}",
            details={"symbol": instrument.symbol, "quantity": str(quantity)}
        )

    if not is_multiple_of(quantity, instrument.lot_size):
        raise InvalidOrderException(
            f"Quantity {quantity} is not a multiple of lot size {instrument.lot_size}",
            details={
                "symbol": instrument.symbol,
                "quantity": str(quantity),
                "lot_size": str(instrument.lot_size),
            }
        )

    return True


def normalize_symbol(symbol: str) -> str:
    """Strip and upper-case a symbol; empty symbols are rejected."""
    if not symbol or not isinstance(symbol, str) or not symbol.strip():
        raise InvalidOrderException(
            f"Invalid symbol: {symbol!r}",
            details={"symbol": symbol}
        )
    return symbol.strip().upper()
