"""
Market Data Service - price feed lifecycle, tickers and feed streams.

Owns the running price feed and turns hub subscriptions into messages for
WebSocket connections.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Any, Iterable, List, Optional

from tradingo.core.matching_engine import MatchingEngine
from tradingo.core.price_feed import PriceFeedSimulator
from tradingo.services.subscription_hub import SubscriptionHub
from tradingo.utils.validators import normalize_symbol


class MarketDataService:
    """
    Service class for market data.

    Handles the price feed background tasks, ticker statistics and the
    per-connection subscriptions used by the feed WebSockets.
    """

    def __init__(
        self,
        matching_engine: MatchingEngine,
        price_feed: PriceFeedSimulator,
        hub: SubscriptionHub,
        feed_interval_ms: int = 3000,
    ):
        """
        Initialize market data service.

        Args:
            matching_engine: Reference to the matching engine instance
            price_feed: Feed producing reference prices
            hub: Hub distributing ticks and fills
            feed_interval_ms: Tick period per instrument
        """
        self.matching_engine = matching_engine
        self.price_feed = price_feed
        self.hub = hub
        self.feed_interval_ms = feed_interval_ms
        self.logger = logging.getLogger(f"{__name__}.MarketDataService")
        self.logger.info("MarketDataService initialized")

    async def start_feed(self) -> None:
        """Start the background price feed tasks."""
        await self.price_feed.start(self.feed_interval_ms)

    async def stop_feed(self) -> None:
        """Stop the background price feed tasks."""
        await self.price_feed.stop()

    def get_ticker(self, symbol: str) -> Dict[str, Any]:
        """
        Session ticker for an instrument.

        Raises:
            InvalidInstrumentException: If the symbol is not registered
        """
        symbol = normalize_symbol(symbol)
        feed_stats = self.price_feed.stats(symbol)
        engine_stats = self.matching_engine.instrument_statistics(symbol)
        best_bid, best_ask = self.matching_engine.top_of_book(symbol)

        return {
            "symbol": feed_stats["symbol"],
            "price": feed_stats["price"],
            "change_pct": feed_stats["change_pct"].quantize(Decimal("0.01")),
            "open": feed_stats["open"],
            "high": feed_stats["high"],
            "low": feed_stats["low"],
            "volume": engine_stats["volume"],
            "last_trade_price": engine_stats["last_trade_price"],
            "best_bid": best_bid,
            "best_ask": best_ask,
            "sequence": feed_stats["sequence"],
            "timestamp": datetime.now(timezone.utc),
        }

    def get_instruments(self) -> List[Dict[str, Any]]:
        return [instrument.to_dict() for instrument in self.matching_engine.registry.all()]

    def open_stream(
        self,
        instruments: Iterable[str],
        kinds: Optional[Iterable[str]] = None,
        client_id: Optional[str] = None,
    ) -> str:
        """
        Create a subscription for one connection.

        Returns:
            The generated subscriber id
        """
        subscriber_id = f"{client_id or 'ws'}-{uuid.uuid4().hex[:12]}"
        self.hub.subscribe(subscriber_id, list(instruments), kinds)
        return subscriber_id

    def extend_stream(
        self,
        subscriber_id: str,
        instruments: Iterable[str],
        kinds: Optional[Iterable[str]] = None,
    ) -> None:
        self.hub.subscribe(subscriber_id, list(instruments), kinds)

    def reduce_stream(self, subscriber_id: str, instruments: Iterable[str]) -> bool:
        return self.hub.unsubscribe(subscriber_id, list(instruments))

    def close_stream(self, subscriber_id: str) -> None:
        self.hub.unsubscribe(subscriber_id)

    def next_messages(self, subscriber_id: str, max_events: Optional[int] = None) -> List[Dict[str, Any]]:
        """Drain a connection's subscription into JSON-ready messages."""
        return [event.to_dict() for event in self.hub.drain(subscriber_id, max_events)]

    def subscription_status(self, subscriber_id: str) -> Dict[str, Any]:
        return self.hub.get_subscription(subscriber_id).to_dict()
