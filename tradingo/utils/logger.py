"""
Logging configuration and utilities for the exchange core.

Provides structured logging with JSON format for production environments
and human-readable format for development.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from decimal import Decimal


_EXTRA_FIELDS = (
    "order_id",
    "fill_id",
    "symbol",
    "subscriber_id",
    "sequence",
    "execution_time_ms",
    "correlation_id",
)

_CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Converts log records to JSON format with additional context fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in _EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value if isinstance(value, (int, float)) else str(value)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class MatchingEngineLogger:
    """
    Centralized logger for the exchange core.

    Order and fill events go to dedicated child loggers so they can be routed
    to their own files; everything else goes to the main logger.
    """

    def __init__(
        self,
        name: str = "tradingo",
        log_level: str = "INFO",
        log_dir: Optional[Path] = None,
        use_json: bool = False,
    ):
        """
        Initialize the exchange logger.

        Args:
            name: Logger name
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (None for console only)
            use_json: Use JSON formatting (for production)
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, log_level.upper()))
        self.logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(self._formatter(use_json))
        self.logger.addHandler(console_handler)

        self.fill_logger = logging.getLogger(f"{name}.fills")
        self.order_logger = logging.getLogger(f"{name}.orders")

        if log_dir:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)

            self.logger.addHandler(
                self._create_file_handler(log_dir / "application.log", use_json)
            )
            self.fill_logger.addHandler(
                self._create_file_handler(log_dir / "fills.log", use_json)
            )
            self.order_logger.addHandler(
                self._create_file_handler(log_dir / "orders.log", use_json)
            )

            error_handler = self._create_file_handler(log_dir / "errors.log", use_json)
            error_handler.setLevel(logging.ERROR)
            self.logger.addHandler(error_handler)

    @staticmethod
    def _formatter(use_json: bool) -> logging.Formatter:
        if use_json:
            return JSONFormatter()
        return logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT)

    def _create_file_handler(self, filepath: Path, use_json: bool) -> logging.FileHandler:
        """Create a file handler with appropriate formatter."""
        handler = logging.FileHandler(filepath)
        handler.setFormatter(self._formatter(use_json))
        return handler

    def log_order_submission(
        self,
        order_id: int,
        symbol: str,
        order_type: str,
        side: str,
        quantity: Decimal,
        price: Optional[Decimal] = None,
        correlation_id: Optional[str] = None,
    ):
        """Log order submission."""
        extra = {
            "order_id": order_id,
            "symbol": symbol,
            "correlation_id": correlation_id or str(order_id),
        }

        if price is not None:
            msg = f"Order submitted: {side} {quantity} {symbol} @ {price} ({order_type})"
        else:
            msg = f"Order submitted: {side} {quantity} {symbol} MARKET ({order_type})"

        self.order_logger.info(msg, extra=extra)

    def log_fill(
        self,
        fill_id: int,
        symbol: str,
        price: Decimal,
        quantity: Decimal,
        aggressor_side: str,
        maker_order_id: int,
        taker_order_id: int,
    ):
        """Log a fill."""
        extra = {"fill_id": fill_id, "symbol": symbol}
        msg = (
            f"Fill: {quantity} {symbol} @ {price} "
            f"(aggressor: {aggressor_side}, maker: {maker_order_id}, taker: {taker_order_id})"
        )
        self.fill_logger.info(msg, extra=extra)

    def log_order_cancellation(
        self,
        order_id: int,
        symbol: str,
        reason: str = "User requested",
    ):
        """Log order cancellation."""
        extra = {"order_id": order_id, "symbol": symbol}
        msg = f"Order cancelled: {order_id} ({reason})"
        self.order_logger.info(msg, extra=extra)

    def log_dropped_events(self, subscriber_id: str, dropped_total: int):
        """Log that a slow subscriber is losing events."""
        self.logger.warning(
            f"Subscriber {subscriber_id} queue overflow, {dropped_total} events dropped so far",
            extra={"subscriber_id": subscriber_id},
        )

    def log_performance_metrics(
        self,
        orders_processed: int,
        fills_executed: int,
        avg_latency_ms: float,
        max_latency_ms: float,
    ):
        """Log performance metrics."""
        msg = (
            f"Performance: {orders_processed} orders, {fills_executed} fills, "
            f"avg latency: {avg_latency_ms:.3f}ms, max latency: {max_latency_ms:.3f}ms"
        )
        self.logger.debug(msg)

    def log_error(
        self,
        message: str,
        exception: Optional[Exception] = None,
        **kwargs
    ):
        """Log error with optional exception."""
        if exception:
            self.logger.error(message, exc_info=exception, extra=kwargs)
        else:
            self.logger.error(message, extra=kwargs)

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self.logger.debug(message, extra=kwargs)

    def info(self, message: str, **kwargs):
        """Log info message."""
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self.logger.warning(message, extra=kwargs)

    def error(self, message: str, **kwargs):
        """Log error message."""
        self.logger.error(message, extra=kwargs)


# Global logger instance
_logger: Optional[MatchingEngineLogger] = None


def get_logger(
    name: str = "tradingo",
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    use_json: bool = False,
) -> MatchingEngineLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        log_level: Logging level
        log_dir: Directory for log files
        use_json: Use JSON formatting

    Returns:
        MatchingEngineLogger instance
    """
    global _logger

    if _logger is None:
        _logger = MatchingEngineLogger(name, log_level, log_dir, use_json)

    return _logger
