"""
Pure position math and exit rules, dispatched on (role, side).

All percentages are fractions (0.02 == 2%). Nothing here touches state.
"""

from __future__ import annotations
from enum import Enum
from typing import Iterable, Optional, Sequence

from hedge_bot.core.types import HEDGE_FOR, Position, Role, Side


class HedgeExit(str, Enum):
    """Why a hedge leg is closed, in evaluation priority order."""
    GUARANTEED_PROFIT = "guaranteed_profit"
    DOUBLE_PROFIT = "double_profit"
    SAFETY = "safety"


def liquidation_price(entry_price: float, leverage: float, side: Side) -> float:
    """Isolated-margin approximation: margin fully consumed after a 1/leverage move."""
    if entry_price <= 0 or leverage <= 0:
        raise ValueError("entry_price and leverage must be > 0")
    if side is Side.LONG:
        return entry_price * (1 - 1 / leverage)
    return entry_price * (1 + 1 / leverage)


def position_liquidation(position: Position) -> float:
    return liquidation_price(position.entry_price, position.leverage, position.side)


def profit_pct(position: Position, price: float) -> float:
    """Unleveraged price move in the position's favour, as a fraction of entry."""
    return (price - position.entry_price) / position.entry_price * position.side.sign


def absolute_profit(position: Position, price: float) -> float:
    """Unrealized quote-currency profit of the whole position at price."""
    return (price - position.entry_price) * position.side.sign * position.size


def realized_pnl(entry_price: float, exit_price: float, side: Side, size: float, leverage: float) -> float:
    return ((exit_price - entry_price) * side.sign * size * leverage) / entry_price


def take_profit_crossed(position: Position, price: float) -> bool:
    tp = position.take_profit_price
    if tp is None:
        return False
    return price >= tp if position.side is Side.LONG else price <= tp


def liquidation_crossed(position: Position, price: float) -> bool:
    liq = position_liquidation(position)
    return price <= liq if position.side is Side.LONG else price >= liq


def exchange_exit_price(position: Position, mark_price: float) -> float:
    """Price a leg that vanished from the exchange most likely left at."""
    if take_profit_crossed(position, mark_price):
        return position.take_profit_price
    if liquidation_crossed(position, mark_price):
        return position_liquidation(position)
    return mark_price


def within(price: float, reference: float, tolerance: float) -> bool:
    return abs(price - reference) / reference <= tolerance


def hedge_take_profit(primary: Position, hedge_entry: float, buffer: float) -> Optional[float]:
    """
    Take-profit for a hedge against `primary`: just before the primary's liquidation,
    strictly between the hedge entry and that liquidation price. None when the hedge
    was opened at or beyond the liquidation price.
    """
    liq = position_liquidation(primary)
    if primary.side is Side.LONG:
        if hedge_entry <= liq:
            return None
        tp = liq * (1 + buffer)
        if not liq < tp < hedge_entry:
            tp = (liq + hedge_entry) / 2
    else:
        if hedge_entry >= liq:
            return None
        tp = liq * (1 - buffer)
        if not hedge_entry < tp < liq:
            tp = (liq + hedge_entry) / 2
    return tp


def near_liquidation(primary: Position, price: float, buffer: float) -> bool:
    liq = position_liquidation(primary)
    if primary.side is Side.LONG:
        return price <= liq * (1 + buffer)
    return price >= liq * (1 - buffer)


def net_at_liquidation(primary: Position, hedge: Position, hedge_price: float) -> float:
    """Primary's loss if it were liquidated plus the hedge's profit at hedge_price."""
    liq = position_liquidation(primary)
    return absolute_profit(primary, liq) + absolute_profit(hedge, hedge_price)


def hedge_exit_reason(
    primary: Position,
    hedge: Position,
    price: float,
    *,
    liquidation_buffer: float,
    double_profit_pct: float,
    price_return_tolerance: float,
    at_favorable_level: bool,
    departed: bool,
) -> Optional[HedgeExit]:
    """
    Exit rule for one hedge leg, first match wins:
    guaranteed profit near the primary's liquidation (closes both legs), double
    profit once the hedge is up and price is back at a favourable level, safety
    unwind once price returns to the hedge's entry.
    """
    if near_liquidation(primary, price, liquidation_buffer) and net_at_liquidation(primary, hedge, price) > 0:
        return HedgeExit.GUARANTEED_PROFIT
    if profit_pct(hedge, price) >= double_profit_pct and at_favorable_level:
        return HedgeExit.DOUBLE_PROFIT
    if departed and within(price, hedge.entry_price, price_return_tolerance):
        return HedgeExit.SAFETY
    return None


def detect_reversal(samples: Sequence[float], side: Side, min_move: float) -> bool:
    """
    Peak (LONG) or trough (SHORT) on the last three samples: the middle one is a strict
    local extreme in the position's favour and the latest has retraced at least
    `min_move` from it.
    """
    if len(samples) < 3:
        return False
    first, middle, last = samples[-3], samples[-2], samples[-1]
    if side is Side.LONG:
        return middle > first and last < middle and (middle - last) / middle >= min_move
    return middle < first and last > middle and (last - middle) / middle >= min_move


def can_open_primary(role: Role, positions: Iterable[Position], allow_opportunity_overlap: bool = False) -> bool:
    """
    Sequential-cycle gate: at most one OPEN primary at a time. With overlap allowed an
    OPPORTUNITY may join an open ANCHOR, never a second OPPORTUNITY or a SCALP.
    """
    if not role.is_primary:
        raise ValueError(f"{role.value} is not a primary role")
    open_primaries = [p for p in positions if p.is_open and p.role.is_primary]
    if allow_opportunity_overlap and role is Role.OPPORTUNITY:
        return all(p.role is Role.ANCHOR for p in open_primaries)
    return not open_primaries


def can_open_hedge(role: Role, positions: Iterable[Position]) -> bool:
    """A hedge needs its primary OPEN and no OPEN position of its own role on the hedge side."""
    primary_role = HEDGE_FOR.get(role)
    if primary_role is None:
        raise ValueError(f"{role.value} is not a hedge role")
    positions = list(positions)
    primary = next((p for p in positions if p.is_open and p.role is primary_role), None)
    if primary is None:
        return False
    hedge_side = primary.side.opposite
    return not any(p.is_open and p.role is role and p.side is hedge_side for p in positions)
