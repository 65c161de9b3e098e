"""
Instrument definitions and the instrument registry

An instrument is immutable once registered; the registry is the single
source of truth for which symbols the exchange accepts.
"""

import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List

from ..utils.exceptions import (
    DuplicateInstrumentException,
    InvalidInstrumentException,
)
from ..utils.validators import normalize_symbol


@dataclass(frozen=True, slots=True)
class Instrument:
    """
    A tradable instrument.

    Attributes:
        symbol: Identifier such as "BTCUSDT"
        tick_size: Minimum price increment
        lot_size: Minimum quantity increment
    """

    symbol: str
    tick_size: Decimal
    lot_size: Decimal

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Symbol cannot be empty")
        # Registry lookups are by normalized symbol
        object.__setattr__(self, "symbol", self.symbol.strip().upper())
        if self.tick_size <= 0:
            raise ValueError(f"Tick size must be positive, got {self.tick_size}")
        if self.lot_size <= 0:
            raise ValueError(f"Lot size must be positive, got {self.lot_size}")

    def round_price(self, price: Decimal) -> Decimal:
        """Round a price to the nearest tick."""
        ticks = (price / self.tick_size).to_integral_value()
        return ticks * self.tick_size

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "tick_size": str(self.tick_size),
            "lot_size": str(self.lot_size),
        }


class InstrumentRegistry:
    """Thread-safe registry of instruments keyed by symbol."""

    def __init__(self):
        self._instruments: Dict[str, Instrument] = {}
        self._lock = threading.Lock()

    def register(self, instrument: Instrument) -> Instrument:
        """
        Register an instrument.

        Raises:
            DuplicateInstrumentException: If the symbol is already registered
        """
        with self._lock:
            if instrument.symbol in self._instruments:
                raise DuplicateInstrumentException(
                    f"Instrument {instrument.symbol} already registered",
                    details={"symbol": instrument.symbol}
                )
            self._instruments[instrument.symbol] = instrument
        return instrument

    def get(self, symbol: str) -> Instrument:
        """
        Look up a registered instrument.

        Raises:
            InvalidInstrumentException: If the symbol is not registered
        """
        instrument = self._instruments.get(normalize_symbol(symbol)) if symbol else None
        if instrument is None:
            raise InvalidInstrumentException(
                f"Instrument {symbol} is not registered",
                details={"symbol": symbol}
            )
        return instrument

    def __contains__(self, symbol: str) -> bool:
        if not isinstance(symbol, str) or not symbol.strip():
            return False
        return normalize_symbol(symbol) in self._instruments

    def symbols(self) -> List[str]:
        return list(self._instruments)

    def all(self) -> List[Instrument]:
        return list(self._instruments.values())

    def __len__(self) -> int:
        return len(self._instruments)
