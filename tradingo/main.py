"""
FastAPI Application - Main Entry Point

REST and WebSocket API for the Tradingo exchange core: synthetic price feed,
order matching and real-time market data.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from tradingo.config import Settings, get_settings
from tradingo.core.instrument import Instrument, InstrumentRegistry
from tradingo.core.journal import TradeJournal
from tradingo.core.matching_engine import MatchingEngine
from tradingo.core.price_feed import PriceFeedSimulator
from tradingo.services.market_data_service import MarketDataService
from tradingo.services.order_service import OrderService
from tradingo.services.subscription_hub import SubscriptionHub
from tradingo.services.trade_service import TradeService
from tradingo.utils.exceptions import (
    BaseMatchingEngineException,
    DuplicateInstrumentException,
    InvalidInstrumentException,
    InvalidOrderException,
    InvalidStateException,
    NotFoundException,
    UnfillableException,
    ValidationException,
)
from tradingo.utils.logger import get_logger

# Import routers
from tradingo.api.routes import orders, market_data
from tradingo.api.websocket import feed_ws
from tradingo.api.models import HealthResponse, ErrorResponse

VERSION = "1.0.0"

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@dataclass
class Exchange:
    """The wired-up core components and services."""
    registry: InstrumentRegistry
    matching_engine: MatchingEngine
    price_feed: PriceFeedSimulator
    hub: SubscriptionHub
    journal: TradeJournal
    order_service: OrderService
    market_data_service: MarketDataService
    trade_service: TradeService


def build_exchange(config: Settings) -> Exchange:
    """
    Create and connect the core components.

    Feed ticks go to the engine (reference prices) and to the hub; engine
    records go to the journal and, for fills, to the hub.
    """
    get_logger(log_level=config.log_level, log_dir=config.log_dir, use_json=config.log_json)

    registry = InstrumentRegistry()
    matching_engine = MatchingEngine(
        registry=registry,
        market_collar_pct=config.market_collar_pct,
        max_terminal_orders=config.order_retention,
        log_level=config.log_level,
    )
    price_feed = PriceFeedSimulator(
        registry,
        max_delta=config.feed_max_delta,
        seed=config.feed_seed,
        log_level=config.log_level,
    )

    for instrument_config in config.instruments:
        matching_engine.register_instrument(Instrument(
            symbol=instrument_config.symbol.strip().upper(),
            tick_size=instrument_config.tick_size,
            lot_size=instrument_config.lot_size,
        ))
        price_feed.register(instrument_config.symbol, instrument_config.initial_price)

    journal = TradeJournal(max_records=config.journal_max_records, path=config.journal_path)
    hub = SubscriptionHub(registry, default_backlog=config.subscriber_backlog, log_level=config.log_level)

    price_feed.add_listener(matching_engine.apply_tick)
    price_feed.add_listener(hub.publish)
    matching_engine.add_listener(journal.append)
    matching_engine.add_listener(hub.on_record)

    return Exchange(
        registry=registry,
        matching_engine=matching_engine,
        price_feed=price_feed,
        hub=hub,
        journal=journal,
        order_service=OrderService(matching_engine, journal),
        market_data_service=MarketDataService(
            matching_engine, price_feed, hub, feed_interval_ms=config.feed_interval_ms
        ),
        trade_service=TradeService(journal, registry),
    )


# Global instances
exchange: Exchange = None
started_at: float = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    Builds the exchange on startup, starts the price feed and stops it on
    shutdown.
    """
    global exchange, started_at

    logger.info("=" * 80)
    logger.info("Starting Tradingo Exchange API")
    logger.info("=" * 80)

    exchange = build_exchange(settings)
    started_at = time.monotonic()

    # Set service instances in routers
    orders.set_order_service(exchange.order_service, exchange.trade_service)
    market_data.set_services(
        exchange.order_service, exchange.market_data_service, exchange.trade_service
    )
    feed_ws.set_services(
        exchange.market_data_service,
        exchange.trade_service,
        poll_interval_ms=settings.ws_poll_interval_ms,
        heartbeat_interval=settings.ws_heartbeat_interval,
    )

    logger.info(f"Registered instruments: {', '.join(exchange.registry.symbols())}")
    await exchange.market_data_service.start_feed()

    logger.info("API startup complete!")
    logger.info("=" * 80)

    yield

    logger.info("Shutting down API...")
    await exchange.market_data_service.stop_feed()
    exchange.journal.close()
    logger.info("API shutdown complete!")


# Create FastAPI application
app = FastAPI(
    title="Tradingo Exchange API",
    description="""
    Simulated crypto exchange core.

    ## Features
    * **Price Feed**: Bounded random walk per instrument
    * **Order Types**: Market, Limit, IOC (Immediate-Or-Cancel), FOK (Fill-Or-Kill)
    * **Matching**: Price-time priority, fills at the resting order's price
    * **Real-time Streams**: WebSocket ticks and fills with per-client backpressure

    ## Endpoints
    * **POST /api/v1/orders**: Submit new order
    * **DELETE /api/v1/orders/{order_id}**: Cancel order
    * **GET /api/v1/orders/{order_id}**: Get order status
    * **GET /api/v1/orderbook/{symbol}**: Get order book snapshot
    * **GET /api/v1/market/{symbol}**: Get ticker
    * **GET /api/v1/trades/{symbol}**: Get recent trades
    * **GET /api/v1/trades/trader/{trader_id}**: Get a trader's trades
    * **WS /ws/feed**: Ticks and fills
    * **WS /ws/trades/{symbol}**: Trade feed
    """,
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request ID middleware
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add unique request ID to each request for tracking."""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    return response


# Logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests and responses."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.info(
        f"Request [{request_id}]: {request.method} {request.url.path} "
        f"from {request.client.host if request.client else 'unknown'}"
    )

    response = await call_next(request)

    logger.info(f"Response [{request_id}]: {response.status_code}")

    return response


# Status codes for domain errors; the most specific class wins
_STATUS_BY_EXCEPTION = {
    ValidationException: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidOrderException: status.HTTP_400_BAD_REQUEST,
    InvalidInstrumentException: status.HTTP_404_NOT_FOUND,
    NotFoundException: status.HTTP_404_NOT_FOUND,
    InvalidStateException: status.HTTP_409_CONFLICT,
    UnfillableException: status.HTTP_409_CONFLICT,
    DuplicateInstrumentException: status.HTTP_409_CONFLICT,
}


def _status_for(exc: BaseMatchingEngineException) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_BY_EXCEPTION:
            return _STATUS_BY_EXCEPTION[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# Exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.warning(f"Validation error [{request_id}]: {exc.errors()}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(
            error="ValidationError",
            message="Request validation failed",
            detail=str(exc.errors()),
            timestamp=datetime.now(timezone.utc)
        ).model_dump(mode='json')
    )


@app.exception_handler(BaseMatchingEngineException)
async def domain_exception_handler(request: Request, exc: BaseMatchingEngineException):
    """Map exchange errors to HTTP status codes."""
    request_id = getattr(request.state, "request_id", "unknown")
    status_code = _status_for(exc)

    if status_code >= 500:
        logger.error(f"{type(exc).__name__} [{request_id}]: {exc.message}", exc_info=exc)
        detail = "Contact support with request ID: " + request_id
    else:
        logger.warning(f"{type(exc).__name__} [{request_id}]: {exc.message}")
        detail = str(exc.details) if exc.details else None

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=type(exc).__name__,
            message=exc.message,
            detail=detail,
            timestamp=datetime.now(timezone.utc)
        ).model_dump(mode='json')
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(f"Unhandled exception [{request_id}]: {str(exc)}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="InternalServerError",
            message="An internal error occurred",
            detail="Contact support with request ID: " + request_id,
            timestamp=datetime.now(timezone.utc)
        ).model_dump(mode='json')
    )


# Health check endpoint
@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Check API, matching engine and subscription hub status"
)
async def health_check() -> HealthResponse:
    """Returns service status, uptime and component statistics."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=VERSION,
        uptime_seconds=round(time.monotonic() - started_at, 3) if started_at else 0.0,
        matching_engine=exchange.matching_engine.get_statistics() if exchange else {},
        subscriptions=exchange.hub.stats() if exchange else {}
    )


# Include routers
app.include_router(orders.router)
app.include_router(market_data.router)
app.include_router(feed_ws.router)


# Root endpoint
@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Tradingo Exchange API",
        "version": VERSION,
        "status": "operational",
        "uptime_seconds": round(time.monotonic() - started_at, 3) if started_at else 0.0,
        "feed_running": exchange.price_feed.running if exchange else False,
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "tradingo.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower()
    )
