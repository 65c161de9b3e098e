"""
Trade Service - trade history over the journal.
"""

import logging
from typing import List, Dict, Any

from tradingo.core.fill import Fill
from tradingo.core.instrument import InstrumentRegistry
from tradingo.core.journal import TradeJournal
from tradingo.utils.exceptions import ValidationException
from tradingo.utils.validators import normalize_symbol


class TradeService:
    """
    Service class for trade history queries.

    Fills reach the journal through the matching engine's listeners; this
    service only reads.
    """

    def __init__(self, journal: TradeJournal, registry: InstrumentRegistry):
        self.journal = journal
        self.registry = registry
        self.logger = logging.getLogger(f"{__name__}.TradeService")
        self.logger.info("TradeService initialized")

    def get_recent_trades(self, symbol: str, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Get recent trades for a symbol, newest first.

        Raises:
            InvalidInstrumentException: If the symbol is not registered
        """
        instrument = self.registry.get(normalize_symbol(symbol))
        fills = self.journal.recent_fills(instrument.symbol, limit)
        self.logger.debug(f"Returning {len(fills)} trades for {instrument.symbol}")
        return [self._trade_to_dict(f) for f in fills]

    def get_fills_for_order(self, order_id: int) -> List[Dict[str, Any]]:
        return [self._trade_to_dict(f) for f in self.journal.fills_for_order(order_id)]

    def get_trader_trades(self, trader_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Get a trader's recent trades, newest first.

        Each entry is seen from the trader's side: the side they traded,
        the order of theirs that was involved and whether it provided
        (maker) or took (taker) liquidity. A trade against the trader's own
        order appears once per role.

        Raises:
            ValidationException: If the trader id is empty
        """
        if not trader_id or not trader_id.strip():
            raise ValidationException("Trader id cannot be empty")

        trades = []
        for fill in self.journal.fills_for_trader(trader_id, limit):
            if fill.taker_trader_id == trader_id:
                trades.append(self._trader_view(fill, "taker"))
            if fill.maker_trader_id == trader_id:
                trades.append(self._trader_view(fill, "maker"))

        self.logger.debug(f"Returning {len(trades)} trades for trader {trader_id}")
        return trades[:limit]

    @classmethod
    def _trader_view(cls, fill: Fill, liquidity: str) -> Dict[str, Any]:
        trade = cls._trade_to_dict(fill)
        if liquidity == "taker":
            side = fill.aggressor_side
            order_id = fill.taker_order_id
        else:
            side = fill.aggressor_side.opposite
            order_id = fill.maker_order_id
        trade.update({
            "side": side.value.lower(),
            "order_id": order_id,
            "liquidity": liquidity,
        })
        return trade

    @staticmethod
    def _trade_to_dict(fill: Fill) -> Dict[str, Any]:
        return {
            "trade_id": fill.fill_id,
            "symbol": fill.symbol,
            "price": str(fill.price),
            "quantity": str(fill.quantity),
            "timestamp": fill.timestamp.isoformat(),
            "aggressor_side": fill.aggressor_side.value.lower(),
            "maker_order_id": fill.maker_order_id,
            "taker_order_id": fill.taker_order_id,
            "value": str(fill.total_value),
        }
