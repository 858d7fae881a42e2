"""
Dynamic support/resistance learning from one or more bar sequences.

A close is a pivot high (candidate resistance) when it is strictly above the two
closes on each side, a pivot low (candidate support) when strictly below. Each
candidate reinforces a same-type level within `tolerance` or starts a new one.
After ingestion the latest close touches every level it sits on, weak levels are
pruned and the set is capped at `max_levels` by strength.
"""

from __future__ import annotations
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from hedge_bot.core.types import Bar, DynamicLevel, LevelType

logger = logging.getLogger("hedge_bot.levels")

Bars = Union[pd.DataFrame, Sequence[Bar]]

INITIAL_STRENGTH = 0.3
STRENGTH_PER_TOUCH = 0.1


def strength_for(touches: int) -> float:
    return min(1.0, INITIAL_STRENGTH + STRENGTH_PER_TOUCH * (touches - 1))


def _closes_and_times(bars: Bars) -> Tuple[np.ndarray, List[datetime]]:
    if isinstance(bars, pd.DataFrame):
        closes = bars["close"].astype(float).to_numpy()
        if "time" in bars.columns:
            times = [pd.Timestamp(t).to_pydatetime() for t in bars["time"]]
        else:
            # naive UTC, same as kline times
            now = datetime.now(timezone.utc).replace(tzinfo=None)
            times = [now] * len(closes)
        return closes, times
    closes = np.array([b.close for b in bars], dtype=float)
    return closes, [b.time for b in bars]


def find_pivots(closes: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Indices of pivot highs and pivot lows (two strictly lower/higher neighbours each side)."""
    if len(closes) < 5:
        return np.array([], dtype=int), np.array([], dtype=int)
    mid = closes[2:-2]
    left2, left1 = closes[:-4], closes[1:-3]
    right1, right2 = closes[3:-1], closes[4:]
    highs = (mid > left1) & (mid > left2) & (mid > right1) & (mid > right2)
    lows = (mid < left1) & (mid < left2) & (mid < right1) & (mid < right2)
    return np.flatnonzero(highs) + 2, np.flatnonzero(lows) + 2


class LevelLearner:
    """Owns the scored level set. Single writer: whoever calls update/learn_combined."""

    def __init__(
        self,
        tolerance: float = 0.005,
        max_levels: int = 10,
        min_touches: int = 2,
        min_bars: int = 20,
        max_age: Optional[timedelta] = None,
    ):
        self.tolerance = tolerance
        self.max_levels = max_levels
        self.min_touches = min_touches
        self.min_bars = min_bars
        self.max_age = max_age
        self._levels: List[DynamicLevel] = []

    # ------------------------------------------------------------------ learning

    def update(self, bars: Bars) -> None:
        """Ingest one timeframe's bars."""
        self.learn_combined(bars)

    def learn_combined(self, *bar_sets: Bars) -> None:
        """
        Ingest several timeframes into one level set. Candidates from every set are
        pooled before pruning so coarse and fine evidence reinforce each other.
        """
        usable = []
        for bars in bar_sets:
            closes, times = _closes_and_times(bars)
            if len(closes) < self.min_bars:
                logger.debug("Skipping bar set with %d bars (< %d)", len(closes), self.min_bars)
                continue
            usable.append((closes, times))
        if not usable:
            return

        for closes, times in usable:
            highs, lows = find_pivots(closes)
            for i in highs:
                self._add_candidate(float(closes[i]), LevelType.RESISTANCE, times[i])
            for i in lows:
                self._add_candidate(float(closes[i]), LevelType.SUPPORT, times[i])

        # Latest close across all sets touches the levels it sits on
        closes, times = max(usable, key=lambda ct: ct[1][-1])
        self._touch_at(float(closes[-1]), times[-1])
        self._prune(newest=times[-1])
        logger.debug(
            "Levels updated: %d total (%d support, %d resistance)",
            len(self._levels), len(self.support_levels()), len(self.resistance_levels()),
        )

    def _find_nearby(self, price: float, level_type: LevelType) -> Optional[DynamicLevel]:
        for level in self._levels:
            if level.type is level_type and abs(level.price - price) / level.price <= self.tolerance:
                return level
        return None

    def _reinforce(self, level: DynamicLevel, when: datetime) -> None:
        level.touches += 1
        level.strength = strength_for(level.touches)
        if when > level.last_touch:
            level.last_touch = when

    def _add_candidate(self, price: float, level_type: LevelType, when: datetime) -> None:
        existing = self._find_nearby(price, level_type)
        if existing is not None:
            self._reinforce(existing, when)
            return
        self._levels.append(DynamicLevel(
            price=price, type=level_type, strength=INITIAL_STRENGTH, touches=1, last_touch=when,
        ))

    def _touch_at(self, price: float, when: datetime) -> None:
        for level in self._levels:
            if abs(price - level.price) / level.price <= self.tolerance:
                self._reinforce(level, when)

    def _prune(self, newest: datetime) -> None:
        levels = [lv for lv in self._levels if lv.touches >= self.min_touches]
        if self.max_age is not None:
            cutoff = newest - self.max_age
            levels = [lv for lv in levels if lv.last_touch >= cutoff]
        levels.sort(key=lambda lv: (lv.strength, lv.touches, lv.last_touch), reverse=True)
        self._levels = levels[: self.max_levels]

    def reset(self) -> None:
        self._levels = []
        logger.info("Dynamic levels reset")

    # ------------------------------------------------------------------ queries

    def support_levels(self) -> List[DynamicLevel]:
        """Support levels, highest price first."""
        return sorted((lv for lv in self._levels if lv.type is LevelType.SUPPORT),
                      key=lambda lv: lv.price, reverse=True)

    def resistance_levels(self) -> List[DynamicLevel]:
        """Resistance levels, lowest price first."""
        return sorted((lv for lv in self._levels if lv.type is LevelType.RESISTANCE),
                      key=lambda lv: lv.price)

    def all_levels(self) -> List[DynamicLevel]:
        return sorted(self._levels, key=lambda lv: lv.price)

    def nearest_support(self, price: float) -> Optional[DynamicLevel]:
        """Highest support strictly below price."""
        return next((lv for lv in self.support_levels() if lv.price < price), None)

    def nearest_resistance(self, price: float) -> Optional[DynamicLevel]:
        """Lowest resistance strictly above price."""
        return next((lv for lv in self.resistance_levels() if lv.price > price), None)

    def supports_below(self, price: float) -> List[DynamicLevel]:
        return [lv for lv in self.support_levels() if lv.price < price]

    def resistances_above(self, price: float) -> List[DynamicLevel]:
        return [lv for lv in self.resistance_levels() if lv.price > price]

    def closest(self, price: float, level_type: LevelType) -> Optional[DynamicLevel]:
        """Level of the given type closest to price on either side."""
        candidates: Iterable[DynamicLevel] = (lv for lv in self._levels if lv.type is level_type)
        return min(candidates, key=lambda lv: abs(lv.price - price), default=None)

    def is_near_level(self, price: float, level_type: Optional[LevelType] = None) -> bool:
        return any(
            abs(lv.price - price) / price <= self.tolerance
            for lv in self._levels
            if level_type is None or lv.type is level_type
        )

    def level_strength(self, price: float, level_type: LevelType) -> float:
        level = self._find_nearby(price, level_type)
        return level.strength if level else 0.0

    def stats(self) -> dict:
        strongest = max(self._levels, key=lambda lv: lv.strength, default=None)
        avg = sum(lv.strength for lv in self._levels) / len(self._levels) if self._levels else 0.0
        return {
            "total_levels": len(self._levels),
            "support_levels": len(self.support_levels()),
            "resistance_levels": len(self.resistance_levels()),
            "average_strength": avg,
            "strongest_level": strongest,
        }

    def __len__(self) -> int:
        return len(self._levels)
