"""
REST API endpoints for order operations.

Provides endpoints for order submission, cancellation, and status queries.
Domain errors propagate to the application's exception handlers, which map
each of them to a status code.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query, status

from tradingo.api.models import (
    OrderRequest,
    OrderResponse,
    OrderStatusResponse,
    CancelOrderResponse,
    ErrorResponse,
    OrderHistoryResponse,
    TradeResponse,
)
from tradingo.services.order_service import OrderService
from tradingo.services.trade_service import TradeService

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


# Dependency injection for OrderService
# This will be overridden in main.py with actual instance
_order_service: OrderService = None
_trade_service: TradeService = None


def get_order_service() -> OrderService:
    """Dependency to get OrderService instance."""
    if _order_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Order service not initialized"
        )
    return _order_service


def set_order_service(service: OrderService, trade_service: Optional[TradeService] = None) -> None:
    """Set the global OrderService (and TradeService used for order fills)."""
    global _order_service, _trade_service
    _order_service = service
    _trade_service = trade_service


def get_trade_service() -> Optional[TradeService]:
    """Dependency to get the TradeService instance, if configured."""
    return _trade_service


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a new order",
    description="Submit a new order to the matching engine. "
                "Supports market, limit, IOC, and FOK orders.",
    responses={
        201: {"description": "Order processed", "model": OrderResponse},
        400: {"description": "Invalid order parameters", "model": ErrorResponse},
        404: {"description": "Instrument not registered", "model": ErrorResponse},
        409: {"description": "Market order found no liquidity", "model": ErrorResponse},
        422: {"description": "Validation error", "model": ErrorResponse},
        503: {"description": "Service unavailable"}
    }
)
async def submit_order(
    order_request: OrderRequest,
    order_service: OrderService = Depends(get_order_service)
) -> OrderResponse:
    """
    Submit a new order.

    **Request Body:**
    - `symbol`: Instrument (e.g., BTCUSDT)
    - `order_type`: market, limit, ioc, or fok
    - `side`: buy or sell
    - `quantity`: Order quantity, a multiple of the lot size
    - `price`: Limit price, a multiple of the tick size (not allowed for market orders)
    - `trader_id`: Optional trader identity

    **Response:**
    - Fills in execution order and the resulting order state
    """
    logger.info(
        f"Received order request: {order_request.order_type} {order_request.side} "
        f"{order_request.quantity} {order_request.symbol}"
    )

    result = order_service.submit_order(**order_request.to_order_params())

    logger.info(
        f"Order processed: {result.order.order_id}, status={result.status.value}"
    )
    return OrderResponse.from_order_result(result)


@router.delete(
    "/{order_id}",
    response_model=CancelOrderResponse,
    summary="Cancel an order",
    description="Cancel a resting order by ID",
    responses={
        200: {"description": "Order cancelled successfully", "model": CancelOrderResponse},
        404: {"description": "Order not found", "model": ErrorResponse},
        409: {"description": "Order already filled or cancelled", "model": ErrorResponse}
    }
)
async def cancel_order(
    order_id: int,
    symbol: Optional[str] = Query(default=None, description="Instrument symbol, if known"),
    order_service: OrderService = Depends(get_order_service)
) -> CancelOrderResponse:
    """
    Cancel a resting order.

    **Example:**
    ```
    DELETE /api/v1/orders/42
    ```
    """
    order = order_service.cancel_order(order_id, symbol)

    return CancelOrderResponse(
        order_id=order.order_id,
        cancelled=True,
        status=order.status.value.lower(),
        remaining_quantity=str(order.remaining_quantity),
        message="Order cancelled successfully"
    )


@router.get(
    "/{order_id}",
    response_model=OrderStatusResponse,
    summary="Get order status",
    description="Retrieve current status and details of an order",
    responses={
        200: {"description": "Order details retrieved successfully", "model": OrderStatusResponse},
        404: {"description": "Order not found", "model": ErrorResponse}
    }
)
async def get_order_status(
    order_id: int,
    order_service: OrderService = Depends(get_order_service)
) -> OrderStatusResponse:
    """Get order status and details."""
    logger.debug(f"Getting status for order {order_id}")
    return OrderStatusResponse.from_order(order_service.get_order_status(order_id))


@router.get(
    "/{order_id}/history",
    response_model=OrderHistoryResponse,
    summary="Get order history",
    description="State changes of an order, oldest first, and the fills it took part in",
    responses={404: {"description": "Order not found", "model": ErrorResponse}}
)
async def get_order_history(
    order_id: int,
    order_service: OrderService = Depends(get_order_service),
    trade_service: Optional[TradeService] = Depends(get_trade_service)
) -> OrderHistoryResponse:
    """
    Get the lifecycle of an order.

    Served from the trade journal, so orders that have aged out of the
    engine's terminal-order window are still answered while the journal
    holds their records.
    """
    updates = order_service.get_order_history(order_id)
    if not updates:
        # Raises OrderNotFoundException for unknown orders
        order_service.get_order_status(order_id)

    fills = trade_service.get_fills_for_order(order_id) if trade_service else []
    return OrderHistoryResponse(
        order_id=order_id,
        updates=[update.to_dict() for update in updates],
        fills=[TradeResponse(**f) for f in fills],
    )
