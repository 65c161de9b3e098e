"""
Synthetic price feed.

Each registered instrument performs a bounded random walk; every tick gets the
next per-instrument sequence number and is handed to the feed's listeners
(the matching engine's reference price and the subscription hub).
"""

import asyncio
import random
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from .instrument import Instrument, InstrumentRegistry
from .market_data import PriceTick
from ..utils.exceptions import (
    DuplicateInstrumentException,
    InvalidInstrumentException,
    ValidationException,
)
from ..utils.logger import get_logger


TickListener = Callable[[PriceTick], None]


class InstrumentWalk:
    """Random walk state and session statistics for one instrument."""

    def __init__(self, instrument: Instrument, initial_price: Decimal):
        self.instrument = instrument
        self.lock = threading.Lock()
        self.price = initial_price
        self.sequence = 0
        self.open = initial_price
        self.high = initial_price
        self.low = initial_price
        self.last_tick: Optional[PriceTick] = None

    def record(self, price: Decimal) -> None:
        self.price = price
        if price > self.high:
            self.high = price
        if price < self.low:
            self.low = price

    @property
    def change_pct(self) -> Decimal:
        return (self.price - self.open) / self.open * 100


class PriceFeedSimulator:
    """
    Produces synthetic price ticks for registered instruments.

    ``tick`` is safe to call from any thread. Sequence numbers are assigned
    and listeners are notified under the instrument's lock, so listeners see
    ticks of one instrument strictly in sequence order.
    """

    def __init__(
        self,
        registry: InstrumentRegistry,
        max_delta: Decimal = Decimal("0.05"),
        seed: Optional[int] = None,
        log_level: str = "INFO",
    ):
        """
        Args:
            registry: Instruments the feed may walk
            max_delta: Largest relative move per tick, in (0, 1)
            seed: Seed for reproducible walks
            log_level: Logging level
        """
        max_delta = Decimal(str(max_delta))
        if not (0 < max_delta < 1):
            raise ValidationException(
                f"max_delta must be in (0, 1), got {max_delta}",
                details={"max_delta": str(max_delta)}
            )

        self.registry = registry
        self.max_delta = max_delta
        self.logger = get_logger(log_level=log_level)

        self._random = random.Random(seed)
        self._walks: Dict[str, InstrumentWalk] = {}
        self._walks_lock = threading.Lock()
        self._listeners: List[TickListener] = []
        self._tasks: Dict[str, asyncio.Task] = {}

    def register(self, symbol: str, initial_price: Decimal) -> None:
        """
        Start a random walk for a registered instrument.

        Raises:
            InvalidInstrumentException: If the symbol is not registered
            DuplicateInstrumentException: If the symbol already has a walk
            ValidationException: If the initial price is not positive
        """
        instrument = self.registry.get(symbol)
        initial_price = Decimal(str(initial_price))
        if initial_price <= 0:
            raise ValidationException(
                f"Initial price must be positive, got {initial_price}",
                details={"symbol": instrument.symbol, "initial_price": str(initial_price)}
            )

        with self._walks_lock:
            if instrument.symbol in self._walks:
                raise DuplicateInstrumentException(
                    f"Price feed for {instrument.symbol} already registered",
                    details={"symbol": instrument.symbol}
                )
            self._walks[instrument.symbol] = InstrumentWalk(
                instrument, max(instrument.round_price(initial_price), instrument.tick_size)
            )

        self.logger.info(
            f"Price feed registered for {instrument.symbol} at {initial_price}",
            symbol=instrument.symbol,
        )

    def add_listener(self, listener: TickListener) -> None:
        self._listeners.append(listener)

    def tick(self, symbol: str) -> PriceTick:
        """
        Advance the walk by one step and publish the resulting tick.

        Raises:
            InvalidInstrumentException: If the symbol has no walk
        """
        walk = self._walk(symbol)
        instrument = walk.instrument

        with walk.lock:
            delta = Decimal(str(self._random.uniform(-float(self.max_delta), float(self.max_delta))))
            price = self._next_price(instrument, walk.price, delta)

            walk.sequence += 1
            walk.record(price)
            tick = PriceTick(
                symbol=instrument.symbol,
                price=price,
                sequence=walk.sequence,
                timestamp=datetime.now(timezone.utc),
            )
            walk.last_tick = tick

            for listener in list(self._listeners):
                try:
                    listener(tick)
                except Exception as e:
                    self.logger.log_error(
                        f"Error in tick listener for {instrument.symbol}", e, symbol=instrument.symbol
                    )

        return tick

    def symbols(self) -> List[str]:
        return list(self._walks)

    def last_tick(self, symbol: str) -> Optional[PriceTick]:
        walk = self._walk(symbol)
        with walk.lock:
            return walk.last_tick

    def stats(self, symbol: str) -> Dict[str, object]:
        """Session statistics for an instrument's walk."""
        walk = self._walk(symbol)
        with walk.lock:
            return {
                "symbol": walk.instrument.symbol,
                "price": walk.price,
                "open": walk.open,
                "high": walk.high,
                "low": walk.low,
                "change_pct": walk.change_pct,
                "sequence": walk.sequence,
                "timestamp": walk.last_tick.timestamp if walk.last_tick else None,
            }

    async def start(self, period_ms: int = 3000) -> None:
        """Start one ticking task per registered instrument."""
        if period_ms <= 0:
            raise ValidationException(
                f"Feed period must be positive, got {period_ms}",
                details={"period_ms": period_ms}
            )

        for symbol in self.symbols():
            task = self._tasks.get(symbol)
            if task is None or task.done():
                self._tasks[symbol] = asyncio.create_task(self._run(symbol, period_ms / 1000))
        self.logger.info(f"Price feed started for {len(self._tasks)} instruments every {period_ms}ms")

    async def stop(self) -> None:
        """Cancel all ticking tasks and wait for them to finish."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        self.logger.info("Price feed stopped")

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    async def _run(self, symbol: str, period: float) -> None:
        while True:
            try:
                await asyncio.sleep(period)
                self.tick(symbol)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.log_error(f"Error in price feed loop for {symbol}", e, symbol=symbol)

    @staticmethod
    def _next_price(instrument: Instrument, price: Decimal, delta: Decimal) -> Decimal:
        """
        Apply a relative move and round to the tick grid.

        A non-zero move shifts the price by at least one tick in its
        direction, so low-priced instruments keep moving. Never below one
        tick.
        """
        tick = instrument.tick_size
        moved = instrument.round_price(price * (1 + delta))
        if delta > 0 and moved <= price:
            moved = price + tick
        elif delta < 0 and moved >= price:
            moved = price - tick
        return max(moved, tick)

    def _walk(self, symbol: str) -> InstrumentWalk:
        instrument = self.registry.get(symbol)
        walk = self._walks.get(instrument.symbol)
        if walk is None:
            raise InvalidInstrumentException(
                f"No price feed registered for {instrument.symbol}",
                details={"symbol": instrument.symbol}
            )
        return walk
