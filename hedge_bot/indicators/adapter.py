"""
Per-timeframe derived indicators: trend from fast/slow EMA, RSI momentum and
volume ratio against its moving average.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping

import pandas as pd

from hedge_bot.core.errors import InsufficientDataError
from hedge_bot.indicators import library

logger = logging.getLogger("hedge_bot.indicators")


class Trend(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    SIDEWAYS = "SIDEWAYS"


@dataclass(frozen=True)
class TechnicalIndicators:
    rsi: float
    ema_fast: float
    ema_slow: float
    volume_sma: float
    volume_ratio: float
    trend: Trend


class IndicatorAdapter:
    """Turns OHLCV DataFrames into TechnicalIndicators and answers the usual confirmations."""

    def __init__(
        self,
        rsi_period: int = 14,
        ema_fast: int = 9,
        ema_slow: int = 18,
        volume_period: int = 20,
        volume_multiplier: float = 0.1,
        rsi_min: float = 30.0,
        rsi_max: float = 70.0,
        sideways_threshold: float = 0.01,
    ):
        self.rsi_period = rsi_period
        self.ema_fast = ema_fast
        self.ema_slow = ema_slow
        self.volume_period = volume_period
        self.volume_multiplier = volume_multiplier
        self.rsi_min = rsi_min
        self.rsi_max = rsi_max
        self.sideways_threshold = sideways_threshold

    @property
    def min_bars(self) -> int:
        return max(self.rsi_period + 1, self.ema_slow, self.volume_period)

    def compute(self, df: pd.DataFrame) -> TechnicalIndicators:
        if len(df) < self.min_bars:
            raise InsufficientDataError(f"need {self.min_bars} bars, got {len(df)}")
        closes = df["close"]
        volumes = df["volume"]
        fast = library.ema(closes, self.ema_fast)
        slow = library.ema(closes, self.ema_slow)
        volume_sma = library.sma(volumes, self.volume_period)
        last_volume = float(volumes.iloc[-1])
        ratio = last_volume / volume_sma if volume_sma > 0 else 0.0
        return TechnicalIndicators(
            rsi=library.rsi(closes, self.rsi_period),
            ema_fast=fast,
            ema_slow=slow,
            volume_sma=volume_sma,
            volume_ratio=ratio,
            trend=self.determine_trend(fast, slow),
        )

    def compute_all(self, bars_by_timeframe: Mapping[str, pd.DataFrame]) -> Dict[str, TechnicalIndicators]:
        """Indicators for every timeframe with enough bars; short ones are logged and left out."""
        out: Dict[str, TechnicalIndicators] = {}
        for timeframe, df in bars_by_timeframe.items():
            try:
                out[timeframe] = self.compute(df)
            except InsufficientDataError as e:
                logger.warning("Insufficient data for %s indicators: %s", timeframe, e)
        return out

    def determine_trend(self, ema_fast: float, ema_slow: float) -> Trend:
        if ema_slow <= 0 or abs(ema_fast - ema_slow) / ema_slow < self.sideways_threshold:
            return Trend.SIDEWAYS
        return Trend.BULLISH if ema_fast > ema_slow else Trend.BEARISH

    def volume_confirmed(self, volume_ratio: float) -> bool:
        return volume_ratio >= self.volume_multiplier

    def rsi_in_range(self, rsi: float) -> bool:
        return self.rsi_min <= rsi <= self.rsi_max
