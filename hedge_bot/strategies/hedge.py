"""
Anchor/opportunity hedge cycle.

Per tick and in this order: entry at a learned level (IDLE -> ANCHOR), hedge once
the primary's protective level is crossed, exits (hedge exit rules, then profit
taking on primaries), and opportunity re-entry at the second adverse level while
the anchor is hedged.
"""

from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence, Set

from hedge_bot.core.config import Config
from hedge_bot.core.types import (
    HEDGE_FOR,
    HEDGE_OF,
    DynamicLevel,
    LevelType,
    Position,
    Role,
    Side,
    SignalKind,
    TradingSignal,
)
from hedge_bot.indicators.adapter import IndicatorAdapter, TechnicalIndicators, Trend
from hedge_bot.levels.learner import LevelLearner
from hedge_bot.strategies import rules
from hedge_bot.strategies.base import BaseStrategy
from hedge_bot.strategies.history import PriceHistory

logger = logging.getLogger("hedge_bot.strategies.hedge")

ANCHOR_TRACK = frozenset({Role.ANCHOR, Role.ANCHOR_HEDGE, Role.OPPORTUNITY, Role.OPPORTUNITY_HEDGE})

# Index into the adverse levels (measured from the primary's entry) that triggers its hedge
HEDGE_LEVEL_INDEX = {Role.ANCHOR: 0, Role.OPPORTUNITY: 1}


def confidence_score(side: Side, signal_ind: TechnicalIndicators, trend_ind: TechnicalIndicators,
                     adapter: IndicatorAdapter) -> float:
    """Observability only: 0.5 base, +0.2 volume, +0.1 momentum in range, +0.2 trend aligned."""
    confidence = 0.5
    if adapter.volume_confirmed(signal_ind.volume_ratio):
        confidence += 0.2
    if adapter.rsi_in_range(signal_ind.rsi):
        confidence += 0.1
    aligned = Trend.BULLISH if side is Side.LONG else Trend.BEARISH
    if trend_ind.trend is aligned:
        confidence += 0.2
    return min(confidence, 1.0)


class HedgeSignalEngine(BaseStrategy):
    """Signal engine for the ANCHOR/OPPORTUNITY track. Holds only per-position price buffers."""

    def __init__(self, learner: LevelLearner, adapter: IndicatorAdapter, config: Config):
        self.learner = learner
        self.adapter = adapter
        self.config = config
        self.history = PriceHistory(maxlen=config.peak_window)
        # hedge ids whose price has left the entry band at least once
        self._departed: Set[str] = set()

    # ------------------------------------------------------------------ entry point

    def evaluate(
        self,
        current_price: float,
        indicators: Mapping[str, TechnicalIndicators],
        positions: Sequence[Position],
        now: Optional[datetime] = None,
    ) -> List[TradingSignal]:
        cfg = self.config
        signal_ind = indicators.get(cfg.signal_timeframe)
        trend_ind = indicators.get(cfg.trend_timeframe)
        if signal_ind is None or trend_ind is None:
            logger.info("Abstaining: missing indicators for %s/%s", cfg.signal_timeframe, cfg.trend_timeframe)
            return []
        now = now or datetime.now(timezone.utc)
        open_positions = [p for p in positions if p.is_open and p.role in ANCHOR_TRACK]
        self._track(open_positions, current_price)

        signals: List[TradingSignal] = []
        entry = self._check_entry(current_price, signal_ind, trend_ind, open_positions, now)
        if entry is not None:
            signals.append(entry)
        signals.extend(self._check_hedges(current_price, open_positions, now))
        signals.extend(self._check_exits(current_price, signal_ind, open_positions, now))
        signals.extend(self._check_reentry(current_price, signal_ind, trend_ind, open_positions, now))
        return signals

    def _track(self, open_positions: Sequence[Position], price: float) -> None:
        open_ids = [p.id for p in open_positions]
        self.history.retain(open_ids)
        self._departed.intersection_update(open_ids)
        for p in open_positions:
            self.history.record(p.id, price)
            if p.role.is_hedge and not rules.within(price, p.entry_price, self.config.price_return_tolerance):
                self._departed.add(p.id)

    # ------------------------------------------------------------------ step 1: entry

    def _check_entry(
        self,
        price: float,
        signal_ind: TechnicalIndicators,
        trend_ind: TechnicalIndicators,
        open_positions: Sequence[Position],
        now: datetime,
    ) -> Optional[TradingSignal]:
        # A new cycle starts only once every leg of the previous one is closed
        if open_positions:
            return None
        if not (self.adapter.volume_confirmed(signal_ind.volume_ratio) and self.adapter.rsi_in_range(signal_ind.rsi)):
            return None
        tol = self.config.entry_tolerance
        candidates = []
        resistance = self.learner.closest(price, LevelType.RESISTANCE)
        if (resistance is not None and trend_ind.trend is not Trend.BEARISH
                and (rules.within(price, resistance.price, tol) or price >= resistance.price)):
            candidates.append((Side.LONG, resistance))
        support = self.learner.closest(price, LevelType.SUPPORT)
        if (support is not None and trend_ind.trend is not Trend.BULLISH
                and (rules.within(price, support.price, tol) or price <= support.price)):
            candidates.append((Side.SHORT, support))
        if not candidates:
            return None
        # closer level wins, LONG on ties (stable sort)
        side, level = min(candidates, key=lambda c: abs(price - c[1].price))
        reason = ("Resistance breakout with volume confirmation" if side is Side.LONG
                  else "Support breakdown with volume confirmation")
        logger.info(
            "%s entry signal at %.4f (level %.4f, touches=%d, rsi=%.1f, volume_ratio=%.2f, trend=%s)",
            side.value, price, level.price, level.touches, signal_ind.rsi, signal_ind.volume_ratio,
            trend_ind.trend.value,
        )
        return TradingSignal(
            kind=SignalKind.ENTRY,
            side=side,
            role=Role.ANCHOR,
            price=price,
            confidence=confidence_score(side, signal_ind, trend_ind, self.adapter),
            reason=reason,
            timestamp=now,
            level_price=level.price,
        )

    # ------------------------------------------------------------------ step 2: hedge

    def adverse_levels(self, primary: Position) -> List[DynamicLevel]:
        """Levels against the primary, nearest to its entry first."""
        if primary.side is Side.LONG:
            return self.learner.supports_below(primary.entry_price)
        return self.learner.resistances_above(primary.entry_price)

    def protective_level(self, primary: Position) -> Optional[DynamicLevel]:
        levels = self.adverse_levels(primary)
        index = HEDGE_LEVEL_INDEX[primary.role]
        return levels[index] if len(levels) > index else None

    def _check_hedges(self, price: float, open_positions: Sequence[Position], now: datetime) -> List[TradingSignal]:
        signals = []
        for primary in open_positions:
            if primary.role not in HEDGE_LEVEL_INDEX:
                continue
            hedge_role = HEDGE_OF[primary.role]
            if not rules.can_open_hedge(hedge_role, open_positions):
                continue
            level = self.protective_level(primary)
            if level is None:
                continue
            crossed = price < level.price if primary.side is Side.LONG else price > level.price
            if not crossed:
                continue
            hedge_side = primary.side.opposite
            which = "first" if primary.role is Role.ANCHOR else "second"
            kind = "support" if primary.side is Side.LONG else "resistance"
            signals.append(TradingSignal(
                kind=SignalKind.HEDGE,
                side=hedge_side,
                role=hedge_role,
                price=price,
                confidence=0.8,
                reason=f"Price crossed {which} {kind} {level.price:.4f}, opening {hedge_role.value} ({hedge_side.value})",
                timestamp=now,
                position_id=primary.id,
                level_price=level.price,
            ))
        return signals

    # ------------------------------------------------------------------ steps 3-4: exits

    def at_favorable_level(self, primary: Position, price: float) -> bool:
        """Price is back within tolerance of a level on the primary's favourable side."""
        if primary.side is Side.LONG:
            level = self.learner.nearest_support(price)
        else:
            level = self.learner.nearest_resistance(price)
        return level is not None and rules.within(price, level.price, self.config.exit_tolerance)

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

    def _check_exits(
        self,
        price: float,
        signal_ind: TechnicalIndicators,
        open_positions: Sequence[Position],
        now: datetime,
    ) -> List[TradingSignal]:
        cfg = self.config
        signals: List[TradingSignal] = []
        exiting: Set[str] = set()
        by_id: Dict[str, Position] = {p.id: p for p in open_positions}

        for hedge in open_positions:
            if hedge.role not in HEDGE_FOR:
                continue
            primary = by_id.get(hedge.paired_id) if hedge.paired_id else None
            if primary is None:
                primary = next((p for p in open_positions if p.role is HEDGE_FOR[hedge.role]), None)
            departed = hedge.id in self._departed

            if primary is None:
                # orphaned hedge: primary already closed
                if rules.profit_pct(hedge, price) >= cfg.double_profit_pct:
                    signals.append(self._exit(hedge, price, 0.9, "Orphaned hedge reached profit threshold", now))
                    exiting.add(hedge.id)
                elif departed and rules.within(price, hedge.entry_price, cfg.price_return_tolerance):
                    signals.append(self._exit(hedge, price, 0.9, "Orphaned hedge back at entry, closing", now))
                    exiting.add(hedge.id)
                continue

            decision = rules.hedge_exit_reason(
                primary, hedge, price,
                liquidation_buffer=cfg.liquidation_buffer,
                double_profit_pct=cfg.double_profit_pct,
                price_return_tolerance=cfg.price_return_tolerance,
                at_favorable_level=self.at_favorable_level(primary, price),
                departed=departed,
            )
            if decision is rules.HedgeExit.GUARANTEED_PROFIT:
                net = rules.net_at_liquidation(primary, hedge, price)
                logger.info(
                    "Guaranteed-profit exit: liquidation %.4f, price %.4f, net %.4f",
                    rules.position_liquidation(primary), price, net,
                )
                reason = "Hedge profit exceeds primary loss at liquidation, closing both for guaranteed profit"
                if primary.id not in exiting:
                    signals.append(self._exit(primary, price, 0.95, reason, now, exit_rule=decision.value))
                    exiting.add(primary.id)
                signals.append(self._exit(hedge, price, 0.95, reason, now, exit_rule=decision.value))
                exiting.add(hedge.id)
            elif decision is rules.HedgeExit.DOUBLE_PROFIT:
                logger.info("Double-profit exit: hedge %s up %.2f%% at a favourable level",
                            hedge.id, rules.profit_pct(hedge, price) * 100)
                signals.append(self._exit(hedge, price, 0.9, "Hedge in profit and price back at level, closing hedge",
                                          now, exit_rule=decision.value))
                exiting.add(hedge.id)
            elif decision is rules.HedgeExit.SAFETY:
                signals.append(self._exit(hedge, price, 0.9, "Price returned to hedge entry price, closing hedge",
                                          now, exit_rule=decision.value))
                exiting.add(hedge.id)

        for primary in open_positions:
            if primary.role not in HEDGE_LEVEL_INDEX or primary.id in exiting:
                continue
            why = self.take_profit_reason(primary, price, signal_ind)
            if why:
                signals.append(self._exit(
                    primary, price, 0.8, f"{primary.role.value} profit-taking: {why}", now, exit_rule="profit_taking",
                ))
        return signals

    def take_profit_reason(self, position: Position, price: float, ind: TechnicalIndicators) -> Optional[str]:
        """
        Why the primary should be closed for profit, or None. Needs the role's minimum
        profit and a strong enough level at (or behind) price, then a momentum extreme,
        fading volume or a peak/trough in the price buffer.
        """
        cfg = self.config
        if position.role is Role.ANCHOR:
            min_profit, min_strength = cfg.anchor_profit_pct, cfg.anchor_exit_min_strength
            overbought, oversold = cfg.anchor_rsi_overbought, cfg.anchor_rsi_oversold
        else:
            min_profit, min_strength = cfg.opportunity_profit_pct, cfg.opportunity_exit_min_strength
            overbought, oversold = cfg.opportunity_rsi_overbought, cfg.opportunity_rsi_oversold

        profit = rules.profit_pct(position, price)
        if profit < min_profit:
            return None
        long = position.side is Side.LONG
        level = self.learner.closest(price, LevelType.RESISTANCE if long else LevelType.SUPPORT)
        if level is None or level.strength < min_strength:
            return None
        past = price >= level.price if long else price <= level.price
        if not (past or rules.within(price, level.price, cfg.exit_tolerance)):
            return None

        if (long and ind.rsi > overbought) or (not long and ind.rsi < oversold):
            why = "RSI overbought" if long else "RSI oversold"
        elif ind.volume_ratio < cfg.low_volume_ratio:
            why = "volume fading"
        elif rules.detect_reversal(self.history.samples(position.id), position.side, cfg.peak_decline_pct):
            why = "price peak detected" if long else "price trough detected"
        else:
            return None
        logger.info(
            "%s %s profit-taking at %.4f: profit %.2f%%, level %.4f (%s), %s",
            position.role.value, position.side.value, price, profit * 100, level.price, level.importance, why,
        )
        return why

    # ------------------------------------------------------------------ step 5: re-entry

    def _check_reentry(
        self,
        price: float,
        signal_ind: TechnicalIndicators,
        trend_ind: TechnicalIndicators,
        open_positions: Sequence[Position],
        now: datetime,
    ) -> List[TradingSignal]:
        anchor = next((p for p in open_positions if p.role is Role.ANCHOR), None)
        if anchor is None or not any(p.role is Role.ANCHOR_HEDGE for p in open_positions):
            return []
        if not rules.can_open_primary(Role.OPPORTUNITY, open_positions, self.config.allow_opportunity_overlap):
            return []
        levels = self.adverse_levels(anchor)
        if len(levels) < 2:
            return []
        level = levels[1]
        if not rules.within(price, level.price, self.config.reentry_tolerance):
            return []
        if not (self.adapter.volume_confirmed(signal_ind.volume_ratio) and self.adapter.rsi_in_range(signal_ind.rsi)):
            return []
        kind = "support" if anchor.side is Side.LONG else "resistance"
        return [TradingSignal(
            kind=SignalKind.RE_ENTRY,
            side=anchor.side,
            role=Role.OPPORTUNITY,
            price=price,
            confidence=0.7,
            reason=f"Price at second {kind} {level.price:.4f}, opening opportunity ({anchor.side.value})",
            timestamp=now,
            level_price=level.price,
        )]
