"""Unit tests for analytics.metrics."""

from datetime import datetime, timedelta, timezone

import pytest
from hedge_bot.analytics.metrics import (
    compute_trading_stats,
    expectancy,
    max_drawdown,
    profit_factor,
    win_rate,
)
from hedge_bot.core.types import Position, PositionStatus, Role, Side

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def closed(pid, role, pnl, minutes):
    return Position(id=pid, side=Side.LONG, role=role, size=1.0, entry_price=1.0, leverage=10,
                    open_time=T0, status=PositionStatus.CLOSED, close_time=T0 + timedelta(minutes=minutes),
                    exit_price=1.0, pnl=pnl)


def test_win_rate():
    assert win_rate([1, -1, 1, 1]) == 0.75
    assert win_rate([]) == 0.0


def test_profit_factor():
    assert profit_factor([10, -5, 10, -5]) == 2.0
    assert profit_factor([10, 10]) == float("inf")
    assert profit_factor([-5, -5]) == 0.0
    assert profit_factor([]) == 0.0


def test_expectancy():
    assert expectancy([10, -5, 5]) == pytest.approx(10 / 3)
    assert expectancy([]) == 0.0


def test_max_drawdown():
    # peak 1.2, trough 1.0 => -16.67%
    assert max_drawdown([1.0, 1.2, 1.0, 1.1]) == pytest.approx(-16.666, rel=0.01)
    assert max_drawdown([]) == 0.0


def test_stats_ignore_open_positions():
    still_open = Position(id="o", side=Side.SHORT, role=Role.ANCHOR_HEDGE, size=1.0, entry_price=1.0,
                          leverage=15, open_time=T0)
    assert compute_trading_stats([still_open]).total_trades == 0


def test_compute_trading_stats():
    positions = [
        closed("a", Role.ANCHOR, -5.0, 2),
        closed("h", Role.ANCHOR_HEDGE, 10.0, 1),
        closed("o", Role.OPPORTUNITY, 15.0, 3),
        closed("s", Role.SCALP, -3.0, 4),
    ]
    s = compute_trading_stats(positions, initial_capital=100.0)
    assert s.total_trades == 4
    assert s.winning_trades == 2
    assert s.losing_trades == 2
    assert s.win_rate == 0.5
    assert s.total_pnl == pytest.approx(17.0)
    assert s.expectancy == pytest.approx(4.25)
    assert s.average_win == pytest.approx(12.5)
    assert s.average_loss == pytest.approx(-4.0)
    assert s.profit_factor == pytest.approx(25.0 / 8.0)
    assert s.pnl_by_role == {"ANCHOR": -5.0, "ANCHOR_HEDGE": 10.0, "OPPORTUNITY": 15.0, "SCALP": -3.0}
    # in close order: 100 -> 110 -> 105 -> 120 -> 117
    assert s.max_drawdown_pct == pytest.approx((105 - 110) / 110 * 100)
