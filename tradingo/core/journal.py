"""
Append-only journal of fills and order updates.

The engine hands every record it produces to the journal. A bounded window
is kept in memory for history queries; when a path is configured every
record is also appended to a JSON-lines file through a dedicated logging
file handler, which keeps the file open for the journal's lifetime.
"""

import json
import logging
import threading
from collections import deque
from pathlib import Path
from typing import Deque, Dict, List, Optional, Union

from .fill import Fill
from .order import OrderUpdate


JournalRecord = Union[Fill, OrderUpdate]


class TradeJournal:
    """Thread-safe append-only record store."""

    def __init__(self, max_records: int = 10000, path: Optional[Union[str, Path]] = None):
        if max_records <= 0:
            raise ValueError(f"max_records must be positive, got {max_records}")

        self.logger = logging.getLogger(f"{__name__}.TradeJournal")
        self.max_records = max_records
        self.path = Path(path) if path else None

        self._lock = threading.Lock()
        self._records: Deque[JournalRecord] = deque(maxlen=max_records)
        self._fills_by_symbol: Dict[str, Deque[Fill]] = {}
        self._appended = 0

        self._file_logger: Optional[logging.Logger] = None
        self._file_handler: Optional[logging.FileHandler] = None
        if self.path is not None:
            self._open_file()

    def _open_file(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        self._file_handler = logging.FileHandler(self.path, mode="a", encoding="utf-8")
        self._file_handler.setFormatter(logging.Formatter("%(message)s"))

        # One logger per file; records must not reach the application log
        self._file_logger = logging.getLogger(f"{__name__}.records.{self.path.resolve()}")
        self._file_logger.handlers.clear()
        self._file_logger.setLevel(logging.INFO)
        self._file_logger.propagate = False
        self._file_logger.addHandler(self._file_handler)

        self.logger.info(f"Journal writing to {self.path}")

    def append(self, record: JournalRecord) -> None:
        """Append a record. Usable directly as an engine listener."""
        if not isinstance(record, (Fill, OrderUpdate)):
            raise TypeError(f"Cannot journal {type(record).__name__}")

        with self._lock:
            self._records.append(record)
            if isinstance(record, Fill):
                fills = self._fills_by_symbol.get(record.symbol)
                if fills is None:
                    fills = deque(maxlen=self.max_records)
                    self._fills_by_symbol[record.symbol] = fills
                fills.append(record)
            self._appended += 1

            file_logger = self._file_logger
            if file_logger is not None:
                self._write(file_logger, record)

    def recent_fills(self, symbol: str, limit: int = 50) -> List[Fill]:
        """Most recent fills for a symbol, newest first."""
        with self._lock:
            fills = self._fills_by_symbol.get(symbol)
            if not fills:
                return []
            return list(reversed(fills))[:limit]

    def fills_for_order(self, order_id: int) -> List[Fill]:
        """Fills where the order was maker or taker, in execution order."""
        with self._lock:
            return [r for r in self._records if isinstance(r, Fill) and r.involves(order_id)]

    def fills_for_trader(self, trader_id: str, limit: int = 50) -> List[Fill]:
        """Most recent fills where the trader was maker or taker, newest first."""
        fills = []
        with self._lock:
            for record in reversed(self._records):
                if len(fills) >= limit:
                    break
                if isinstance(record, Fill) and record.involves_trader(trader_id):
                    fills.append(record)
        return fills

    def order_history(self, order_id: int) -> List[OrderUpdate]:
        """State changes of an order, oldest first."""
        with self._lock:
            return [r for r in self._records if isinstance(r, OrderUpdate) and r.order_id == order_id]

    def records(self) -> List[JournalRecord]:
        with self._lock:
            return list(self._records)

    @property
    def appended(self) -> int:
        """Total records ever appended, including those evicted from memory."""
        return self._appended

    def close(self) -> None:
        """Flush and close the journal file, if any."""
        with self._lock:
            if self._file_handler is None:
                return
            self._file_logger.removeHandler(self._file_handler)
            self._file_handler.close()
            self._file_handler = None
            self._file_logger = None

    def __len__(self) -> int:
        return len(self._records)

    @staticmethod
    def _write(file_logger: logging.Logger, record: JournalRecord) -> None:
        data = record.to_dict()
        data.setdefault("type", "fill")
        file_logger.info(json.dumps(data))
