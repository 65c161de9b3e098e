"""
Configuration management using Pydantic

This module provides application-wide configuration using Pydantic BaseSettings
with support for environment variables and type validation.
"""

from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class InstrumentConfig(BaseModel):
    """Static definition of a tradable instrument and its feed start price."""

    symbol: str
    tick_size: Decimal
    lot_size: Decimal
    initial_price: Decimal


DEFAULT_INSTRUMENTS = [
    InstrumentConfig(symbol="BTCUSDT", tick_size=Decimal("0.01"), lot_size=Decimal("0.0001"),
                     initial_price=Decimal("50000")),
    InstrumentConfig(symbol="ETHUSDT", tick_size=Decimal("0.01"), lot_size=Decimal("0.001"),
                     initial_price=Decimal("2800")),
    InstrumentConfig(symbol="BNBUSDT", tick_size=Decimal("0.01"), lot_size=Decimal("0.01"),
                     initial_price=Decimal("300")),
    InstrumentConfig(symbol="ADAUSDT", tick_size=Decimal("0.0001"), lot_size=Decimal("1"),
                     initial_price=Decimal("0.5")),
    InstrumentConfig(symbol="SOLUSDT", tick_size=Decimal("0.01"), lot_size=Decimal("0.01"),
                     initial_price=Decimal("100")),
]


class Settings(BaseSettings):
    """
    Application configuration settings.

    All settings can be overridden using environment variables.
    For example, FEED_INTERVAL_MS will override feed_interval_ms.
    """

    # API Configuration
    backend_host: str = Field(default="localhost", description="Backend server host")
    backend_port: int = Field(default=8000, description="Backend server port")
    allowed_origins: List[str] = Field(
        default=["*"],
        description="CORS allowed origins"
    )

    # Instruments
    instruments: List[InstrumentConfig] = Field(
        default_factory=lambda: list(DEFAULT_INSTRUMENTS),
        description="Instruments registered at startup"
    )

    # Price Feed
    feed_interval_ms: int = Field(
        default=3000,
        description="Period between synthetic ticks per instrument"
    )
    feed_max_delta: Decimal = Field(
        default=Decimal("0.05"),
        description="Largest relative price move per tick (symmetric)"
    )
    feed_seed: Optional[int] = Field(
        default=None,
        description="Random seed for reproducible price walks"
    )

    # Matching
    market_collar_pct: Optional[Decimal] = Field(
        default=Decimal("0.10"),
        description="Market orders never fill further than this from the reference price"
    )
    order_retention: int = Field(
        default=10000,
        description="Filled or cancelled orders kept queryable per instrument"
    )

    # Subscription Hub / WebSocket
    subscriber_backlog: int = Field(
        default=1000,
        description="Per-subscriber queue bound before oldest events are dropped"
    )
    ws_poll_interval_ms: int = Field(
        default=100,
        description="How often a WebSocket connection drains its subscription"
    )
    ws_heartbeat_interval: int = Field(
        default=30,
        description="WebSocket heartbeat interval in seconds"
    )

    # Journal
    journal_max_records: int = Field(
        default=10000,
        description="Records kept in memory for history queries"
    )
    journal_path: Optional[str] = Field(
        default=None,
        description="Optional JSON-lines file receiving every fill and order update"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_dir: Optional[str] = Field(
        default=None,
        description="Directory for log files"
    )
    log_json: bool = Field(
        default=False,
        description="Emit JSON log lines"
    )

    class Config:
        env_file = "tradingo/.env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """
    Get the global settings instance.

    Returns:
        Settings instance
    """
    return settings
