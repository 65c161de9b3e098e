"""
Market data records: price ticks and the envelopes the subscription hub delivers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Union

from .fill import Fill


@dataclass(frozen=True, slots=True)
class PriceTick:
    """
    A synthetic price observation.

    Attributes:
        symbol: Instrument symbol
        price: Observed price
        sequence: Strictly increasing, gap-free per instrument
        timestamp: Production time
    """

    symbol: str
    price: Decimal
    sequence: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "price": str(self.price),
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
        }


class EventKind(Enum):
    """Kinds of events distributed by the subscription hub."""
    TICK = "tick"
    FILL = "fill"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class FeedEvent:
    """
    A tick or fill stamped by the hub.

    ``sequence`` is assigned by the hub at publish time and is strictly
    increasing across all events; a subscriber seeing a gap between two
    drained events knows that the events in between were dropped.
    """

    sequence: int
    kind: EventKind
    symbol: str
    payload: Union[PriceTick, Fill]
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def kind_of(cls, payload: Union[PriceTick, Fill]) -> EventKind:
        if isinstance(payload, PriceTick):
            return EventKind.TICK
        if isinstance(payload, Fill):
            return EventKind.FILL
        raise TypeError(f"Unsupported feed payload: {type(payload).__name__}")

    def to_dict(self) -> dict:
        return {
            "type": self.kind.value,
            "sequence": self.sequence,
            "symbol": self.symbol,
            "published_at": self.published_at.isoformat(),
            "data": self.payload.to_dict(),
        }
