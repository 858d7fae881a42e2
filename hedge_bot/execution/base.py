"""Abstract exchange gateway: market data, account state and order placement for one symbol."""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import pandas as pd

from hedge_bot.core.types import Position, Role, Side


@dataclass
class Balance:
    """Quote-currency account balance."""
    total: float
    available: float


@dataclass
class ExchangePosition:
    """Net exposure the exchange reports for one side of the symbol."""
    side: Side
    size: float
    entry_price: float
    leverage: float
    unrealized_pnl: float = 0.0


class ExchangeGateway(ABC):
    """
    Gateway bound to a single symbol. Failures surface as ExchangeError subclasses:
    TransientExchangeError for network/rate-limit trouble, OrderRejectedError when
    the exchange refuses an order.
    """

    symbol: str = ""

    @abstractmethod
    def get_current_price(self) -> float:
        pass

    @abstractmethod
    def get_klines(self, timeframe: str, limit: int) -> pd.DataFrame:
        """Return OHLCV DataFrame with columns: time, open, high, low, close, volume."""
        pass

    @abstractmethod
    def open_position(self, side: Side, quantity: float, leverage: int, role: Role) -> Position:
        """Market order opening `quantity` on `side`. The returned Position carries the fill price."""
        pass

    @abstractmethod
    def close_position(self, position: Position) -> float:
        """Market-close the position's size. Returns the fill price."""
        pass

    @abstractmethod
    def get_current_positions(self) -> List[ExchangePosition]:
        pass

    @abstractmethod
    def get_account_balance(self) -> Balance:
        pass

    @abstractmethod
    def set_take_profit_order(self, position: Position, price: float) -> None:
        pass

    @abstractmethod
    def get_symbol_info(self) -> Optional[dict]:
        """Exchange symbol info (filters, etc.)."""
        pass
