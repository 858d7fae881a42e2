"""Indicators: pandas indicator library and per-timeframe adapter."""

from hedge_bot.indicators.adapter import IndicatorAdapter, TechnicalIndicators, Trend
from hedge_bot.indicators.library import ema, rsi, sma

__all__ = ["IndicatorAdapter", "TechnicalIndicators", "Trend", "ema", "rsi", "sma"]
