"""Abstract strategy: turns price, indicators and the position snapshot into signals."""

from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Mapping, Optional, Sequence

from hedge_bot.core.types import Position, TradingSignal
from hedge_bot.indicators.adapter import TechnicalIndicators


class BaseStrategy(ABC):
    """Strategy reads a read-only snapshot of positions and never mutates it."""

    @abstractmethod
    def evaluate(
        self,
        current_price: float,
        indicators: Mapping[str, TechnicalIndicators],
        positions: Sequence[Position],
        now: Optional[datetime] = None,
    ) -> List[TradingSignal]:
        """
        Return zero or more signals for this tick. An empty list when indicators
        for a required timeframe are missing (insufficient data).
        """
        pass
