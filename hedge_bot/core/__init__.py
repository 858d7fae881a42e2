"""Core: config, types, errors, logging."""

from hedge_bot.core.config import load_config, Config
from hedge_bot.core.errors import (
    HedgeBotError,
    ConfigError,
    ExchangeError,
    TransientExchangeError,
    OrderRejectedError,
    InsufficientDataError,
)
from hedge_bot.core.types import (
    Bar,
    DynamicLevel,
    LevelType,
    Position,
    PositionStatus,
    Role,
    Side,
    SignalKind,
    TradingSignal,
)
from hedge_bot.core.logger import setup_logging

__all__ = [
    "load_config",
    "Config",
    "HedgeBotError",
    "ConfigError",
    "ExchangeError",
    "TransientExchangeError",
    "OrderRejectedError",
    "InsufficientDataError",
    "Bar",
    "DynamicLevel",
    "LevelType",
    "Position",
    "PositionStatus",
    "Role",
    "Side",
    "SignalKind",
    "TradingSignal",
    "setup_logging",
]
