"""
Trading statistics over closed positions: win rate, profit factor, expectancy,
average win/loss and max drawdown of the realized equity curve.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

import numpy as np

from hedge_bot.core.types import Position, PositionStatus


@dataclass
class TradingStats:
    """Aggregate statistics of closed positions."""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    profit_factor: float = 0.0
    expectancy: float = 0.0
    max_drawdown_pct: float = 0.0
    pnl_by_role: Dict[str, float] = field(default_factory=dict)


def max_drawdown(equity_curve: List[float]) -> float:
    """Max drawdown in percent (negative, e.g. -15.0 = 15%)."""
    if not equity_curve:
        return 0.0
    arr = np.array(equity_curve, dtype=float)
    peak = np.maximum.accumulate(arr)
    dd = (arr - peak) / np.where(peak != 0, peak, 1)
    return float(np.min(dd)) * 100.0


def win_rate(pnls: List[float]) -> float:
    """Fraction of trades with positive PnL."""
    if not pnls:
        return 0.0
    return sum(1 for p in pnls if p > 0) / len(pnls)


def profit_factor(pnls: List[float]) -> float:
    """Gross profit / gross loss. Returns inf with wins and no losses, 0 with neither."""
    wins = sum(p for p in pnls if p > 0)
    losses = sum(-p for p in pnls if p < 0)
    if losses <= 0:
        return float("inf") if wins > 0 else 0.0
    return wins / losses


def expectancy(pnls: List[float]) -> float:
    """Average PnL per trade."""
    if not pnls:
        return 0.0
    return sum(pnls) / len(pnls)


def compute_trading_stats(positions: Iterable[Position], initial_capital: float = 0.0) -> TradingStats:
    """
    Stats over CLOSED positions with a recorded PnL, in close order. The drawdown is
    measured on initial_capital plus cumulative PnL (skipped when initial_capital is 0).
    """
    closed = sorted(
        (p for p in positions if p.status is PositionStatus.CLOSED and p.pnl is not None),
        key=lambda p: p.close_time or p.open_time,
    )
    pnls = [p.pnl for p in closed]
    if not pnls:
        return TradingStats()
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    by_role: Dict[str, float] = {}
    for p in closed:
        by_role[p.role.value] = by_role.get(p.role.value, 0.0) + p.pnl
    dd = 0.0
    if initial_capital > 0:
        dd = max_drawdown([initial_capital] + list(initial_capital + np.cumsum(pnls)))
    return TradingStats(
        total_trades=len(pnls),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=win_rate(pnls),
        total_pnl=sum(pnls),
        average_win=sum(wins) / len(wins) if wins else 0.0,
        average_loss=sum(losses) / len(losses) if losses else 0.0,
        profit_factor=profit_factor(pnls),
        expectancy=expectancy(pnls),
        max_drawdown_pct=dd,
        pnl_by_role=by_role,
    )
