"""
Subscription Hub - fan-out of ticks and fills to subscribers.

Every subscriber gets its own bounded queue. Publishing never waits on a
subscriber: when a queue is full the oldest event is evicted and counted as
dropped. Subscribers pull events with ``drain`` at their own pace.
"""

import threading
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, Iterable, List, Optional, Set, Union

from tradingo.core.fill import Fill
from tradingo.core.instrument import InstrumentRegistry
from tradingo.core.market_data import EventKind, FeedEvent, PriceTick
from tradingo.utils.exceptions import SubscriptionNotFoundException, ValidationException
from tradingo.utils.logger import get_logger
from tradingo.utils.validators import normalize_symbol


ALL_INSTRUMENTS = "*"


class Subscription:
    """
    One subscriber's interest set and pending events.

    The queue is guarded by its own lock; the hub only takes it while
    holding the hub lock (hub -> queue), and ``drain`` takes it alone.
    """

    def __init__(self, subscriber_id: str, backlog: int):
        self.subscriber_id = subscriber_id
        self.backlog = backlog
        self.instruments: Set[str] = set()
        self.kinds: Set[EventKind] = set()
        self.lock = threading.Lock()
        self.created_at = datetime.now(timezone.utc)

        self._queue: Deque[FeedEvent] = deque()
        self.dropped_events = 0
        self.delivered_events = 0
        self.cursor = 0  # sequence of the last drained event

    def matches(self, event: FeedEvent) -> bool:
        if event.kind not in self.kinds:
            return False
        return ALL_INSTRUMENTS in self.instruments or event.symbol in self.instruments

    def offer(self, event: FeedEvent) -> bool:
        """Enqueue an event, evicting the oldest when full. Returns True on eviction."""
        with self.lock:
            evicted = False
            if len(self._queue) >= self.backlog:
                self._queue.popleft()
                self.dropped_events += 1
                evicted = True
            self._queue.append(event)
            return evicted

    def take(self, max_events: Optional[int] = None) -> List[FeedEvent]:
        with self.lock:
            if max_events is None or max_events >= len(self._queue):
                events = list(self._queue)
                self._queue.clear()
            else:
                events = [self._queue.popleft() for _ in range(max_events)]
            if events:
                self.cursor = events[-1].sequence
                self.delivered_events += len(events)
            return events

    @property
    def pending(self) -> int:
        return len(self._queue)

    def to_dict(self) -> dict:
        with self.lock:
            return {
                "subscriber_id": self.subscriber_id,
                "instruments": sorted(self.instruments),
                "kinds": sorted(kind.value for kind in self.kinds),
                "backlog": self.backlog,
                "pending": len(self._queue),
                "dropped_events": self.dropped_events,
                "delivered_events": self.delivered_events,
                "cursor": self.cursor,
                "created_at": self.created_at.isoformat(),
            }


class SubscriptionHub:
    """
    Distributes ticks and fills to subscribers by instrument and kind.

    Events are stamped with a hub-wide, strictly increasing sequence at
    publish time. A subscriber that sees a gap between consecutive drained
    sequences (for events it is subscribed to) has lost events to overflow.
    """

    DROP_LOG_EVERY = 100

    def __init__(
        self,
        registry: Optional[InstrumentRegistry] = None,
        default_backlog: int = 1000,
        log_level: str = "INFO",
    ):
        if default_backlog <= 0:
            raise ValidationException(
                f"Backlog must be positive, got {default_backlog}",
                details={"backlog": default_backlog}
            )

        self.registry = registry
        self.default_backlog = default_backlog
        self.logger = get_logger(log_level=log_level)

        self._lock = threading.Lock()
        self._subscriptions: Dict[str, Subscription] = {}
        self._sequence = 0
        self._published = 0

    def subscribe(
        self,
        subscriber_id: str,
        instruments: Iterable[str],
        kinds: Optional[Iterable[Union[str, EventKind]]] = None,
        backlog: Optional[int] = None,
    ) -> Subscription:
        """
        Create a subscription or extend an existing one.

        Subscribing again to an instrument already covered is a no-op.

        Args:
            subscriber_id: Caller-supplied identity
            instruments: Symbols, or "*" for every instrument
            kinds: Event kinds to receive (default: ticks and fills)
            backlog: Queue bound for a new subscription

        Raises:
            InvalidInstrumentException: If a symbol is not registered
            ValidationException: If a kind is unknown or the backlog invalid
        """
        if not subscriber_id:
            raise ValidationException("Subscriber id cannot be empty")

        symbols = self._resolve_instruments(instruments)
        event_kinds = self._resolve_kinds(kinds)
        if backlog is not None and backlog <= 0:
            raise ValidationException(
                f"Backlog must be positive, got {backlog}",
                details={"backlog": backlog}
            )

        with self._lock:
            subscription = self._subscriptions.get(subscriber_id)
            if subscription is None:
                subscription = Subscription(subscriber_id, backlog or self.default_backlog)
                self._subscriptions[subscriber_id] = subscription
            with subscription.lock:
                subscription.instruments.update(symbols)
                subscription.kinds.update(event_kinds)

        self.logger.info(
            f"Subscriber {subscriber_id} subscribed to {sorted(symbols)} "
            f"({', '.join(sorted(k.value for k in event_kinds))})",
            subscriber_id=subscriber_id,
        )
        return subscription

    def unsubscribe(self, subscriber_id: str, instruments: Optional[Iterable[str]] = None) -> bool:
        """
        Remove instruments from a subscription, or the whole subscription.

        Idempotent: returns False when there was nothing to remove.
        """
        with self._lock:
            subscription = self._subscriptions.get(subscriber_id)
            if subscription is None:
                return False

            if instruments is None:
                del self._subscriptions[subscriber_id]
                removed = True
            else:
                symbols = {
                    ALL_INSTRUMENTS if s == ALL_INSTRUMENTS else normalize_symbol(s)
                    for s in instruments
                }
                with subscription.lock:
                    removed = bool(subscription.instruments & symbols)
                    subscription.instruments -= symbols

        if removed:
            self.logger.info(f"Subscriber {subscriber_id} unsubscribed", subscriber_id=subscriber_id)
        return removed

    def publish(self, payload: Union[PriceTick, Fill]) -> FeedEvent:
        """
        Stamp a tick or fill and enqueue it for every interested subscriber.

        Raises:
            TypeError: If the payload is neither a PriceTick nor a Fill
        """
        kind = FeedEvent.kind_of(payload)
        overflowed = []

        with self._lock:
            self._sequence += 1
            self._published += 1
            event = FeedEvent(sequence=self._sequence, kind=kind, symbol=payload.symbol, payload=payload)

            for subscription in self._subscriptions.values():
                if subscription.matches(event) and subscription.offer(event):
                    overflowed.append((subscription.subscriber_id, subscription.dropped_events))

        for subscriber_id, dropped in overflowed:
            if dropped == 1 or dropped % self.DROP_LOG_EVERY == 0:
                self.logger.log_dropped_events(subscriber_id, dropped)

        return event

    def on_record(self, record: object) -> None:
        """Engine listener: forward fills, ignore order updates."""
        if isinstance(record, Fill):
            self.publish(record)

    def drain(self, subscriber_id: str, max_events: Optional[int] = None) -> List[FeedEvent]:
        """
        Return and clear queued events in arrival order.

        Raises:
            SubscriptionNotFoundException: If the subscriber has no subscription
        """
        return self.get_subscription(subscriber_id).take(max_events)

    def get_subscription(self, subscriber_id: str) -> Subscription:
        with self._lock:
            subscription = self._subscriptions.get(subscriber_id)
        if subscription is None:
            raise SubscriptionNotFoundException(
                f"Subscriber {subscriber_id} has no subscription",
                details={"subscriber_id": subscriber_id}
            )
        return subscription

    def stats(self) -> Dict[str, int]:
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            published = self._published
            sequence = self._sequence
        return {
            "subscribers": len(subscriptions),
            "published_events": published,
            "last_sequence": sequence,
            "dropped_events": sum(s.dropped_events for s in subscriptions),
            "pending_events": sum(s.pending for s in subscriptions),
        }

    def __contains__(self, subscriber_id: str) -> bool:
        return subscriber_id in self._subscriptions

    def _resolve_instruments(self, instruments: Iterable[str]) -> Set[str]:
        if isinstance(instruments, str):
            instruments = [instruments]

        symbols = set()
        for symbol in instruments:
            if symbol == ALL_INSTRUMENTS:
                symbols.add(ALL_INSTRUMENTS)
            elif self.registry is not None:
                symbols.add(self.registry.get(symbol).symbol)
            else:
                symbols.add(normalize_symbol(symbol))

        if not symbols:
            raise ValidationException("At least one instrument is required")
        return symbols

    @staticmethod
    def _resolve_kinds(kinds: Optional[Iterable[Union[str, EventKind]]]) -> Set[EventKind]:
        if kinds is None:
            return set(EventKind)

        resolved = set()
        for kind in kinds:
            if isinstance(kind, EventKind):
                resolved.add(kind)
                continue
            try:
                resolved.add(EventKind(str(kind).strip().lower()))
            except ValueError:
                raise ValidationException(
                    f"Unknown event kind: {kind}",
                    details={"kind": str(kind), "allowed": [k.value for k in EventKind]}
                )

        if not resolved:
            raise ValidationException("At least one event kind is required")
        return resolved
