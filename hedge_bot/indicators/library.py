"""
Raw indicator values from a price/volume series (pandas). Each function returns
the value at the last element and raises InsufficientDataError when the series
is shorter than the window.
"""

from __future__ import annotations
from typing import Sequence, Union

import numpy as np
import pandas as pd

from hedge_bot.core.errors import InsufficientDataError

Series = Union[pd.Series, Sequence[float], np.ndarray]


def _as_series(values: Series) -> pd.Series:
    if isinstance(values, pd.Series):
        return values.astype(float).reset_index(drop=True)
    return pd.Series(np.asarray(values, dtype=float))


def _require(series: pd.Series, needed: int, name: str) -> None:
    if len(series) < needed:
        raise InsufficientDataError(f"{name} needs {needed} values, got {len(series)}")


def rsi(prices: Series, period: int = 14) -> float:
    """RSI over simple rolling means of gains and losses."""
    s = _as_series(prices)
    _require(s, period + 1, "rsi")
    delta = s.diff()
    gain = float(delta.clip(lower=0).rolling(period).mean().iloc[-1])
    loss = float((-delta).clip(lower=0).rolling(period).mean().iloc[-1])
    if loss <= 0:
        return 100.0 if gain > 0 else 50.0
    rs = gain / loss
    return float(100 - (100 / (1 + rs)))


def ema(prices: Series, period: int) -> float:
    s = _as_series(prices)
    _require(s, period, "ema")
    return float(s.ewm(span=period, adjust=False).mean().iloc[-1])


def sma(values: Series, period: int) -> float:
    s = _as_series(values)
    _require(s, period, "sma")
    return float(s.rolling(period).mean().iloc[-1])
