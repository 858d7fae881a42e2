"""
Scalp lifecycle: one scalp at a time, hedged level by level.

Every learned adverse level the scalp crosses can carry its own hedge. A level
whose hedge closed re-arms once price is back on the scalp's side of it and counts
every reopen. Closing the scalp (profit target or guaranteed-profit exit) takes
all of its hedges with it.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from hedge_bot.core.types import Position, Role, SignalKind, TradingSignal
from hedge_bot.positions.manager import PositionManager
from hedge_bot.strategies import rules

logger = logging.getLogger("hedge_bot.positions.scalp")


@dataclass
class HedgeLevel:
    price: float
    position: Optional[Position] = None
    open_count: int = 0
    total_profit: float = 0.0
    armed: bool = True

    @property
    def active(self) -> bool:
        return self.position is not None and self.position.is_open


class ScalpLifecycle(PositionManager):
    """Position table for SCALP / SCALP_HEDGE, independent of the anchor cycle gate."""

    roles: Tuple[Role, ...] = (Role.SCALP, Role.SCALP_HEDGE)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.levels: List[HedgeLevel] = []

    # ------------------------------------------------------------------ gates

    @property
    def scalp(self) -> Optional[Position]:
        return self.open_by_role(Role.SCALP)

    def active_hedges(self) -> List[Position]:
        return [lv.position for lv in self.levels if lv.active]

    def can_open(self, role: Role) -> bool:
        return role is Role.SCALP and self.scalp is None

    def can_open_hedge(self, role: Role) -> bool:
        return (
            role is Role.SCALP_HEDGE
            and self.scalp is not None
            and len(self.active_hedges()) < self.config.scalp_max_hedge_levels
        )

    def find_level(self, price: float) -> Optional[HedgeLevel]:
        return next((lv for lv in self.levels if rules.within(price, lv.price, self.config.level_tolerance)), None)

    def blocked_levels(self) -> List[float]:
        """Level prices that cannot take a new hedge right now (hedge open or not re-armed)."""
        return [lv.price for lv in self.levels if lv.active or not lv.armed]

    # ------------------------------------------------------------------ signals

    def apply(self, signal: TradingSignal) -> Optional[Position]:
        if signal.role not in self.roles:
            logger.warning("Ignoring %s signal for foreign role %s", signal.kind.value, signal.role.value)
            return None
        if signal.kind is SignalKind.ENTRY:
            if not self.can_open(Role.SCALP):
                return None
            scalp = self.open_role(Role.SCALP, signal.side, signal.price)
            if scalp is not None:
                self.levels = []
                logger.info("Scalp %s opened at %.6f: %s", scalp.side.value, scalp.entry_price, signal.reason)
            return scalp
        if signal.kind is SignalKind.HEDGE:
            return self._open_level_hedge(signal)
        if signal.kind is SignalKind.EXIT:
            return self._apply_exit(signal)
        logger.warning("Scalp lifecycle does not handle %s", signal.kind.value)
        return None

    def _open_level_hedge(self, signal: TradingSignal) -> Optional[Position]:
        scalp = self.scalp
        if signal.level_price is None or not self.can_open_hedge(Role.SCALP_HEDGE):
            logger.info("Scalp hedge refused: no scalp, no level or %d hedges already open",
                        len(self.active_hedges()))
            return None
        if signal.side is not scalp.side.opposite:
            return None
        level = self.find_level(signal.level_price)
        if level is not None and (level.active or not level.armed):
            return None
        hedge = self.open_role(Role.SCALP_HEDGE, signal.side, signal.price)
        if hedge is None:
            return None
        if level is None:
            level = HedgeLevel(price=signal.level_price)
            self.levels.append(level)
        hedge.paired_id = scalp.id
        level.position = hedge
        level.open_count += 1
        level.armed = False
        self.place_hedge_take_profit(scalp, hedge)
        logger.info("Scalp hedge opened at level %.6f (open #%d)", level.price, level.open_count)
        return hedge

    def _apply_exit(self, signal: TradingSignal) -> Optional[Position]:
        position = self.get(signal.position_id) if signal.position_id else self.scalp
        if position is None or not position.is_open:
            return None
        if position.role is Role.SCALP:
            return self.close_trade(signal.reason)
        closed = self.close(position, signal.reason)
        if closed is not None and signal.metadata.get("exit_rule") == rules.HedgeExit.GUARANTEED_PROFIT.value:
            self.close_trade(signal.reason)
        return closed

    def close(self, position: Position, reason: str) -> Optional[Position]:
        closed = super().close(position, reason)
        if closed is not None and closed.role is Role.SCALP_HEDGE:
            self._book_level(closed)
        return closed

    def _book_level(self, hedge: Position) -> None:
        for level in self.levels:
            if level.position is hedge:
                level.total_profit += hedge.pnl or 0.0
                level.position = None

    def close_trade(self, reason: str) -> Optional[Position]:
        """Close every active hedge, then the scalp itself."""
        for hedge in self.active_hedges():
            self.close(hedge, reason)
        scalp = self.scalp
        if scalp is None:
            return None
        closed = self.close(scalp, reason)
        if closed is not None:
            total = sum(lv.total_profit for lv in self.levels)
            logger.info("Scalp trade finished: scalp pnl %.4f, hedge pnl %.4f", closed.pnl, total)
        return closed

    # ------------------------------------------------------------------ per tick

    def update(self, mark_price: float, exchange_positions=None) -> List[Position]:
        gone = super().update(mark_price, exchange_positions)
        self.rearm(mark_price)
        return gone

    def settle_closed_on_exchange(self, gone, mark_price: float) -> List[Position]:
        settled = super().settle_closed_on_exchange(gone, mark_price)
        for hedge in settled:
            if hedge.role is Role.SCALP_HEDGE:
                self._book_level(hedge)
        return settled

    def rearm(self, price: float) -> None:
        scalp = self.scalp
        if scalp is None:
            return
        for level in self.levels:
            if level.armed or level.active:
                continue
            back = price > level.price if scalp.side.sign > 0 else price < level.price
            if back:
                level.armed = True
                logger.debug("Scalp level %.6f re-armed", level.price)

    def status(self) -> Dict:
        scalp = self.scalp
        return {
            "scalp": scalp,
            "active_hedges": len(self.active_hedges()),
            "levels": [
                {
                    "price": lv.price,
                    "active": lv.active,
                    "armed": lv.armed,
                    "open_count": lv.open_count,
                    "total_profit": lv.total_profit,
                }
                for lv in self.levels
            ],
        }
