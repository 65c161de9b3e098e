"""
REST API endpoints for market data.

Provides endpoints for order book snapshots, tickers, trade history and the
instrument list.
"""

import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, HTTPException, Depends, Query, status

from tradingo.api.models import (
    BBOResponse,
    ErrorResponse,
    InstrumentResponse,
    OrderBookResponse,
    TickerResponse,
    TradeHistoryResponse,
    TradeResponse,
    TraderTradeHistoryResponse,
    TraderTradeResponse,
)
from tradingo.services.market_data_service import MarketDataService
from tradingo.services.order_service import OrderService
from tradingo.services.trade_service import TradeService

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["market-data"])


# Dependency injection, overridden in main.py
_order_service: OrderService = None
_market_data_service: MarketDataService = None
_trade_service: TradeService = None


def _unavailable(name: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"{name} not initialized"
    )


def get_order_service() -> OrderService:
    """Dependency to get OrderService instance."""
    if _order_service is None:
        raise _unavailable("Order service")
    return _order_service


def get_market_data_service() -> MarketDataService:
    """Dependency to get MarketDataService instance."""
    if _market_data_service is None:
        raise _unavailable("Market data service")
    return _market_data_service


def get_trade_service() -> TradeService:
    """Dependency to get TradeService instance."""
    if _trade_service is None:
        raise _unavailable("Trade service")
    return _trade_service


def set_services(
    order_service: OrderService,
    market_data_service: MarketDataService,
    trade_service: TradeService,
) -> None:
    """Set the global service instances."""
    global _order_service, _market_data_service, _trade_service
    _order_service = order_service
    _market_data_service = market_data_service
    _trade_service = trade_service


@router.get(
    "/orderbook/{symbol}",
    response_model=OrderBookResponse,
    summary="Get order book snapshot",
    description="Retrieve current order book depth for an instrument",
    responses={
        200: {"description": "Order book snapshot retrieved successfully", "model": OrderBookResponse},
        404: {"description": "Instrument not registered", "model": ErrorResponse}
    }
)
async def get_orderbook(
    symbol: str,
    levels: int = Query(default=10, ge=1, le=100, description="Number of price levels to return"),
    order_service: OrderService = Depends(get_order_service)
) -> OrderBookResponse:
    """
    Get current order book snapshot.

    **Example:**
    ```
    GET /api/v1/orderbook/BTCUSDT?levels=10
    ```
    """
    logger.debug(f"Getting order book snapshot for {symbol}, levels={levels}")

    snapshot = order_service.get_order_book_snapshot(symbol, levels)

    return OrderBookResponse(
        symbol=snapshot['symbol'],
        timestamp=datetime.now(timezone.utc),
        bids=snapshot['bids'],
        asks=snapshot['asks'],
        bbo=BBOResponse(**snapshot['bbo']),
        reference_price=snapshot['reference_price'],
        last_trade_price=snapshot['last_trade_price']
    )


@router.get(
    "/market/{symbol}",
    response_model=TickerResponse,
    summary="Get ticker",
    description="Session price statistics for an instrument",
    responses={404: {"description": "Instrument not registered", "model": ErrorResponse}}
)
async def get_ticker(
    symbol: str,
    market_data_service: MarketDataService = Depends(get_market_data_service)
) -> TickerResponse:
    """Current feed price, change since open, high, low and traded volume."""
    return TickerResponse.from_ticker(market_data_service.get_ticker(symbol))


@router.get(
    "/trades/{symbol}",
    response_model=TradeHistoryResponse,
    summary="Get recent trades",
    description="Most recent fills for an instrument, newest first",
    responses={404: {"description": "Instrument not registered", "model": ErrorResponse}}
)
async def get_trades(
    symbol: str,
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum number of trades"),
    trade_service: TradeService = Depends(get_trade_service)
) -> TradeHistoryResponse:
    trades = trade_service.get_recent_trades(symbol, limit)
    return TradeHistoryResponse(
        symbol=symbol.strip().upper(),
        trades=[TradeResponse(**t) for t in trades]
    )


@router.get(
    "/trades/trader/{trader_id}",
    response_model=TraderTradeHistoryResponse,
    summary="Get a trader's trades",
    description="Most recent fills involving a trader's orders, newest first",
    responses={422: {"description": "Invalid trader id", "model": ErrorResponse}}
)
async def get_trader_trades(
    trader_id: str,
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum number of trades"),
    trade_service: TradeService = Depends(get_trade_service)
) -> TraderTradeHistoryResponse:
    """
    Trade history of one trader across all instruments.

    **Example:**
    ```
    GET /api/v1/trades/trader/alice?limit=20
    ```
    """
    trades = trade_service.get_trader_trades(trader_id, limit)
    return TraderTradeHistoryResponse(
        trader_id=trader_id,
        trades=[TraderTradeResponse(**t) for t in trades]
    )


@router.get(
    "/instruments",
    response_model=List[InstrumentResponse],
    summary="List instruments",
    description="All instruments registered with the exchange"
)
async def get_instruments(
    market_data_service: MarketDataService = Depends(get_market_data_service)
) -> List[InstrumentResponse]:
    return [InstrumentResponse(**i) for i in market_data_service.get_instruments()]
