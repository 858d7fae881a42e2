"""
Scalp sub-engine on the fine timeframe: level entries in either direction, one
hedge per crossed adverse level, per-level hedge exits and the scalp profit target.
"""

from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Mapping, Optional, Sequence, Set

from hedge_bot.core.config import Config
from hedge_bot.core.types import LevelType, Position, Role, Side, SignalKind, TradingSignal
from hedge_bot.indicators.adapter import IndicatorAdapter, TechnicalIndicators
from hedge_bot.levels.learner import LevelLearner
from hedge_bot.strategies import rules
from hedge_bot.strategies.base import BaseStrategy

logger = logging.getLogger("hedge_bot.strategies.scalp")


class ScalpSubEngine(BaseStrategy):
    """Signals for SCALP / SCALP_HEDGE. Reads levels from its own learner."""

    def __init__(self, learner: LevelLearner, adapter: IndicatorAdapter, config: Config):
        self.learner = learner
        self.adapter = adapter
        self.config = config
        self._departed: Set[str] = set()

    def evaluate(
        self,
        current_price: float,
        indicators: Mapping[str, TechnicalIndicators],
        positions: Sequence[Position],
        now: Optional[datetime] = None,
        blocked_levels: Iterable[float] = (),
    ) -> List[TradingSignal]:
        ind = indicators.get(self.config.scalp_timeframe)
        if ind is None:
            return []
        now = now or datetime.now(timezone.utc)
        open_positions = [p for p in positions if p.is_open and p.role in (Role.SCALP, Role.SCALP_HEDGE)]
        self._track(open_positions, current_price)

        scalp = next((p for p in open_positions if p.role is Role.SCALP), None)
        if scalp is None:
            entry = self._check_entry(current_price, ind, now)
            return [entry] if entry is not None else []

        hedges = [p for p in open_positions if p.role is Role.SCALP_HEDGE]
        if rules.profit_pct(scalp, current_price) >= self.config.scalp_profit_pct:
            logger.info("Scalp target reached: %.3f%% at %.6f",
                        rules.profit_pct(scalp, current_price) * 100, current_price)
            return [self._exit(scalp, current_price, 0.9, "Scalp profit target reached", now)]

        signals = self._check_hedge_exits(current_price, scalp, hedges, now)
        if any(s.position_id == scalp.id for s in signals):
            return signals
        closing = {s.position_id for s in signals}
        still_open = [h for h in hedges if h.id not in closing]
        if len(still_open) < self.config.scalp_max_hedge_levels:
            hedge = self._check_new_hedge(current_price, scalp, list(blocked_levels), now)
            if hedge is not None:
                signals.append(hedge)
        return signals

    def _track(self, open_positions: Sequence[Position], price: float) -> None:
        self._departed.intersection_update(p.id for p in open_positions)
        for p in open_positions:
            if p.role is Role.SCALP_HEDGE and not rules.within(price, p.entry_price,
                                                               self.config.price_return_tolerance):
                self._departed.add(p.id)

    def _check_entry(self, price: float, ind: TechnicalIndicators, now: datetime) -> Optional[TradingSignal]:
        if not (self.adapter.volume_confirmed(ind.volume_ratio) and self.adapter.rsi_in_range(ind.rsi)):
            return None
        tol = self.config.scalp_entry_tolerance
        candidates = []
        support = self.learner.nearest_support(price)
        if support is not None and rules.within(price, support.price, tol):
            candidates.append((Side.LONG, support))
        resistance = self.learner.nearest_resistance(price)
        if resistance is not None and rules.within(price, resistance.price, tol):
            candidates.append((Side.SHORT, resistance))
        if not candidates:
            return None
        side, level = min(candidates, key=lambda c: abs(price - c[1].price))
        where = "support" if side is Side.LONG else "resistance"
        logger.info("Scalp %s entry at %.6f near %s %.6f", side.value, price, where, level.price)
        return TradingSignal(
            kind=SignalKind.ENTRY,
            side=side,
            role=Role.SCALP,
            price=price,
            confidence=0.7,
            reason=f"Scalp entry at {self.config.scalp_timeframe} {where} with volume confirmation",
            timestamp=now,
            level_price=level.price,
        )

    def _check_new_hedge(self, price: float, scalp: Position, blocked: List[float],
                         now: datetime) -> Optional[TradingSignal]:
        if scalp.side is Side.LONG:
            levels = self.learner.supports_below(scalp.entry_price)
        else:
            levels = self.learner.resistances_above(scalp.entry_price)
        tol = self.config.level_tolerance
        for level in levels:
            if any(rules.within(level.price, b, tol) for b in blocked):
                continue
            crossed = price <= level.price if scalp.side is Side.LONG else price >= level.price
            if not crossed:
                continue
            # one hedge per tick
            return TradingSignal(
                kind=SignalKind.HEDGE,
                side=scalp.side.opposite,
                role=Role.SCALP_HEDGE,
                price=price,
                confidence=0.8,
                reason=f"Scalp crossed level {level.price:.6f}, hedging",
                timestamp=now,
                position_id=scalp.id,
                level_price=level.price,
            )
        return None

    def _at_favorable_level(self, scalp: Position, price: float) -> bool:
        if scalp.side is Side.LONG:
            level = self.learner.nearest_support(price)
        else:
            level = self.learner.nearest_resistance(price)
        return level is not None and rules.within(price, level.price, self.config.exit_tolerance)

    def _check_hedge_exits(self, price: float, scalp: Position, hedges: Sequence[Position],
                           now: datetime) -> List[TradingSignal]:
        cfg = self.config
        signals = []
        favorable = self._at_favorable_level(scalp, price)
        for hedge in hedges:
            decision = rules.hedge_exit_reason(
                scalp, hedge, price,
                liquidation_buffer=cfg.liquidation_buffer,
                double_profit_pct=cfg.double_profit_pct,
                price_return_tolerance=cfg.price_return_tolerance,
                at_favorable_level=favorable,
                departed=hedge.id in self._departed,
            )
            if decision is None:
                continue
            if decision is rules.HedgeExit.GUARANTEED_PROFIT:
                logger.info("Scalp guaranteed-profit exit at %.6f, closing the scalp trade", price)
                return [self._exit(scalp, price, 0.95, "Scalp hedge covers liquidation loss, closing trade", now,
                                   exit_rule=decision.value)]
            reason = ("Scalp hedge in profit at favourable level" if decision is rules.HedgeExit.DOUBLE_PROFIT
                      else "Price returned to scalp hedge entry")
            signals.append(self._exit(hedge, price, 0.9, reason, now, exit_rule=decision.value))
        return signals

    def _exit(self, position: Position, price: float, confidence: float, reason: str, now: datetime,
              **metadata) -> TradingSignal:
        return TradingSignal(
            kind=SignalKind.EXIT,
            side=position.side,
            role=position.role,
            price=price,
            confidence=confidence,
            reason=reason,
            timestamp=now,
            position_id=position.id,
            metadata=metadata,
        )
