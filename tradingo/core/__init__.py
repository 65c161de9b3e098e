"""
Core domain models: instruments, orders, the order book, the matching engine
and the synthetic price feed
"""

from .instrument import Instrument, InstrumentRegistry
from .order import Order, OrderType, OrderSide, OrderStatus, OrderResult, OrderUpdate
from .fill import Fill
from .market_data import PriceTick, FeedEvent, EventKind
from .price_level import PriceLevel
from .order_book import OrderBook, BookPosition
from .matching_engine import MatchingEngine, EngineState
from .price_feed import PriceFeedSimulator
from .journal import TradeJournal

__all__ = [
    "Instrument",
    "InstrumentRegistry",
    "Order",
    "OrderType",
    "OrderSide",
    "OrderStatus",
    "OrderResult",
    "OrderUpdate",
    "Fill",
    "PriceTick",
    "FeedEvent",
    "EventKind",
    "PriceLevel",
    "OrderBook",
    "BookPosition",
    "MatchingEngine",
    "EngineState",
    "PriceFeedSimulator",
    "TradeJournal",
]
