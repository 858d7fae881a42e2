"""
Position lifecycle for the ANCHOR/OPPORTUNITY track.

The manager is the only writer of the position table. It gates signals on the
cycle and side rules, sizes and places orders through the gateway, sets hedge
take-profits and records realized PnL. Closed positions are kept for statistics.
"""

from __future__ import annotations
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from hedge_bot.analytics.metrics import TradingStats, compute_trading_stats
from hedge_bot.core.config import Config
from hedge_bot.core.errors import ExchangeError, OrderRejectedError
from hedge_bot.core.types import HEDGE_FOR, Position, PositionStatus, Role, Side, SignalKind, TradingSignal
from hedge_bot.execution.base import ExchangeGateway, ExchangePosition
from hedge_bot.risk.manager import RiskManager
from hedge_bot.strategies import rules

logger = logging.getLogger("hedge_bot.positions")

CLOSED_ON_EXCHANGE = "closed_on_exchange"

# Relative slack when comparing summed leg sizes with exchange exposure
SIZE_TOLERANCE = 1e-6


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def missing_on_exchange(
    positions: Iterable[Position],
    exchange_positions: Iterable[ExchangePosition],
    mark_price: float,
) -> List[Position]:
    """
    Open local legs that explain a shortfall of exchange exposure.

    Hedge mode sums every leg on a side into one exchange position, so each side is
    compared as a total across all tracks sharing the account. Legs whose take-profit
    or liquidation the mark has crossed are blamed before the rest, and a single leg
    matching the gap wins over a combination.
    """
    held: Dict[Side, float] = {}
    for ex in exchange_positions:
        held[ex.side] = held.get(ex.side, 0.0) + max(ex.size, 0.0)
    open_legs = [p for p in positions if p.is_open]
    gone: List[Position] = []
    for side in Side:
        legs = [p for p in open_legs if p.side is side]
        local = sum(p.size for p in legs)
        tol = SIZE_TOLERANCE * max(local, 1.0)
        gap = local - held.get(side, 0.0)
        if gap < -tol:
            logger.debug("Exchange %s exposure %.4f exceeds tracked %.4f", side.value, held[side], local)
        if gap <= tol:
            continue
        ranked = sorted(
            legs,
            key=lambda p: not (rules.take_profit_crossed(p, mark_price) or rules.liquidation_crossed(p, mark_price)),
        )
        exact = next((p for p in ranked if abs(p.size - gap) <= tol), None)
        if exact is not None:
            gone.append(exact)
            continue
        for leg in ranked:
            if gap <= tol:
                break
            if leg.size <= gap + tol:
                gone.append(leg)
                gap -= leg.size
        if gap > tol:
            logger.warning("%s exposure short by %.4f with no matching leg", side.value, gap)
    return gone


class PositionManager:
    """Owns the position table of the main hedge cycle."""

    roles: Tuple[Role, ...] = (Role.ANCHOR, Role.ANCHOR_HEDGE, Role.OPPORTUNITY, Role.OPPORTUNITY_HEDGE)

    def __init__(
        self,
        gateway: ExchangeGateway,
        risk: RiskManager,
        config: Config,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.gateway = gateway
        self.risk = risk
        self.config = config
        self.clock = clock
        self._positions: List[Position] = []

    # ------------------------------------------------------------------ queries

    def open_positions(self) -> List[Position]:
        return [p for p in self._positions if p.is_open]

    def all_positions(self) -> List[Position]:
        return list(self._positions)

    def snapshot(self) -> List[Position]:
        """Copies of the open positions, safe to hand to a signal engine."""
        return [replace(p) for p in self._positions if p.is_open]

    def get(self, position_id: str) -> Optional[Position]:
        return next((p for p in self._positions if p.id == position_id), None)

    def open_by_role(self, role: Role) -> Optional[Position]:
        return next((p for p in self._positions if p.is_open and p.role is role), None)

    def can_open(self, role: Role) -> bool:
        return rules.can_open_primary(role, self._positions, self.config.allow_opportunity_overlap)

    def can_open_hedge(self, role: Role) -> bool:
        return rules.can_open_hedge(role, self._positions)

    # ------------------------------------------------------------------ signals

    def apply(self, signal: TradingSignal) -> Optional[Position]:
        """
        Act on one signal. Returns the position opened or closed, None when the signal
        is refused by a gate or the exchange rejects the order. Transient exchange
        errors propagate to the caller.
        """
        if signal.role not in self.roles:
            logger.warning("Ignoring %s signal for foreign role %s", signal.kind.value, signal.role.value)
            return None
        if signal.kind in (SignalKind.ENTRY, SignalKind.RE_ENTRY):
            return self._apply_entry(signal)
        if signal.kind is SignalKind.HEDGE:
            return self._apply_hedge(signal)
        return self._apply_exit(signal)

    def _apply_entry(self, signal: TradingSignal) -> Optional[Position]:
        if not signal.role.is_primary or not self.can_open(signal.role):
            logger.info("%s %s refused: a primary is already open", signal.kind.value, signal.role.value)
            return None
        position = self.open_role(signal.role, signal.side, signal.price)
        if position is not None:
            logger.info("%s %s opened: %s", signal.role.value, signal.side.value, signal.reason)
        return position

    def _paired_primary(self, signal: TradingSignal) -> Optional[Position]:
        primary_role = HEDGE_FOR[signal.role]
        if signal.position_id:
            primary = self.get(signal.position_id)
            if primary is not None and primary.is_open and primary.role is primary_role:
                return primary
        return self.open_by_role(primary_role)

    def _apply_hedge(self, signal: TradingSignal) -> Optional[Position]:
        if not signal.role.is_hedge or not self.can_open_hedge(signal.role):
            logger.info("HEDGE %s refused: primary missing or hedge already open", signal.role.value)
            return None
        primary = self._paired_primary(signal)
        if primary is None:
            return None
        if signal.side is not primary.side.opposite:
            logger.warning("HEDGE %s refused: side %s does not oppose primary", signal.role.value, signal.side.value)
            return None
        hedge = self.open_role(signal.role, signal.side, signal.price)
        if hedge is None:
            return None
        hedge.paired_id = primary.id
        self.place_hedge_take_profit(primary, hedge)
        logger.info("%s %s opened against %s: %s", hedge.role.value, hedge.side.value, primary.id, signal.reason)
        return hedge

    def _apply_exit(self, signal: TradingSignal) -> Optional[Position]:
        position = self.get(signal.position_id) if signal.position_id else self.open_by_role(signal.role)
        if position is None or not position.is_open:
            logger.info("EXIT %s ignored: position not open", signal.position_id or signal.role.value)
            return None
        return self.close(position, signal.reason)

    # ------------------------------------------------------------------ order plumbing

    def open_role(self, role: Role, side: Side, price: float) -> Optional[Position]:
        leverage = self.config.leverage_for(role)
        sizing = self.risk.size_position(self.config.fraction_for(role), leverage, price)
        if not sizing.allowed:
            logger.warning("Cannot open %s %s: %s", role.value, side.value, sizing.reason)
            return None
        try:
            position = self.gateway.open_position(side, sizing.quantity, leverage, role)
        except OrderRejectedError as e:
            logger.error("Order rejected opening %s %s: %s", role.value, side.value, e)
            return None
        finally:
            self.risk.invalidate()
        if not position.symbol:
            position.symbol = self.config.symbol
        self._positions.append(position)
        logger.info(
            "Position opened: %s %s size=%s entry=%.6f leverage=%sx liquidation=%.6f",
            role.value, side.value, position.size, position.entry_price, position.leverage,
            rules.position_liquidation(position),
        )
        return position

    def place_hedge_take_profit(self, primary: Position, hedge: Position) -> None:
        """Take-profit just before the primary's liquidation. Failure leaves the hedge open."""
        tp = rules.hedge_take_profit(primary, hedge.entry_price, self.config.hedge_tp_buffer)
        if tp is None:
            logger.warning(
                "No take-profit for %s: entry %.6f already beyond primary liquidation %.6f",
                hedge.id, hedge.entry_price, rules.position_liquidation(primary),
            )
            return
        try:
            self.gateway.set_take_profit_order(hedge, tp)
        except ExchangeError as e:
            logger.warning("Failed to set take-profit %.6f for %s: %s", tp, hedge.id, e)
            return
        hedge.take_profit_price = tp

    def _mark_closed(self, position: Position, exit_price: float, reason: str) -> None:
        position.status = PositionStatus.CLOSED
        position.close_time = self.clock()
        position.exit_price = exit_price
        position.close_reason = reason
        position.pnl = rules.realized_pnl(
            position.entry_price, exit_price, position.side, position.size, position.leverage,
        )

    def close(self, position: Position, reason: str) -> Optional[Position]:
        """Market-close an open position. An exchange rejection is logged and the position stays OPEN."""
        try:
            fill = self.gateway.close_position(position)
        except OrderRejectedError as e:
            logger.error("Order rejected closing %s %s: %s", position.role.value, position.id, e)
            return None
        finally:
            self.risk.invalidate()
        self._mark_closed(position, fill, reason)
        logger.info(
            "Position closed: %s %s exit=%.6f pnl=%.4f (%s)",
            position.role.value, position.side.value, fill, position.pnl, reason,
        )
        return position

    # ------------------------------------------------------------------ reconciliation

    def update(self, mark_price: float, exchange_positions: Optional[List[ExchangePosition]] = None) -> List[Position]:
        """
        Reconcile this table alone with the exchange. Only valid when no other table
        trades the same account; HedgeBot reconciles both tracks together through
        `missing_on_exchange` and `settle_closed_on_exchange`.
        """
        if exchange_positions is None:
            exchange_positions = self.gateway.get_current_positions()
        gone = missing_on_exchange(self._positions, exchange_positions, mark_price)
        return self.settle_closed_on_exchange(gone, mark_price)

    def settle_closed_on_exchange(self, gone: Iterable[Position], mark_price: float) -> List[Position]:
        """
        Mark CLOSED the legs of this table found gone from the exchange (take-profit
        filled, liquidated, closed by hand). PnL is booked at the take-profit or
        liquidation price when the mark has crossed it, else at mark_price.
        """
        settled = []
        for position in gone:
            if not position.is_open or not any(position is p for p in self._positions):
                continue
            exit_price = rules.exchange_exit_price(position, mark_price)
            self._mark_closed(position, exit_price, CLOSED_ON_EXCHANGE)
            logger.warning(
                "%s %s %s no longer on exchange, marked closed at %.6f (pnl %.4f)",
                position.role.value, position.side.value, position.id, exit_price, position.pnl,
            )
            settled.append(position)
        return settled

    def adopt_exchange_positions(self, exchange_positions: Iterable[ExchangePosition]) -> List[Position]:
        """
        Record exchange exposure the table does not track, one ANCHOR-role entry per
        side. Only used to close everything from a fresh process (`main.py stop`).
        """
        tracked = {p.side for p in self._positions if p.is_open}
        adopted = []
        for ex in exchange_positions:
            if ex.size <= 0 or ex.side in tracked:
                continue
            position = Position(
                id=f"exchange-{ex.side.value.lower()}",
                side=ex.side,
                role=Role.ANCHOR,
                size=ex.size,
                entry_price=ex.entry_price,
                leverage=ex.leverage,
                open_time=self.clock(),
                symbol=self.config.symbol,
            )
            self._positions.append(position)
            adopted.append(position)
            logger.warning("Adopted untracked %s exposure %.4f @ %.6f", ex.side.value, ex.size, ex.entry_price)
        return adopted

    # ------------------------------------------------------------------ reporting

    def break_even_analysis(self) -> List[Dict]:
        """Net PnL of each hedged primary if it ran to its liquidation price."""
        out = []
        for hedge in self.open_positions():
            if not hedge.role.is_hedge:
                continue
            primary = self.get(hedge.paired_id) if hedge.paired_id else None
            if primary is None or not primary.is_open:
                continue
            liq = rules.position_liquidation(primary)
            out.append({
                "primary_id": primary.id,
                "hedge_id": hedge.id,
                "role": primary.role.value,
                "liquidation_price": liq,
                "net_at_liquidation": rules.net_at_liquidation(primary, hedge, liq),
            })
        return out

    def get_position_summary(self) -> Dict:
        return summarize_positions(self._positions, self.break_even_analysis())

    def trading_stats(self, initial_capital: float = 0.0) -> TradingStats:
        return compute_trading_stats(self._positions, initial_capital)

    def emergency_stop(self) -> List[str]:
        """Close every OPEN position. Returns the ids that could not be closed."""
        failed = []
        for position in self.open_positions():
            try:
                fill = self.gateway.close_position(position)
            except ExchangeError as e:
                logger.error("Emergency close failed for %s %s: %s", position.role.value, position.id, e)
                failed.append(position.id)
                continue
            self._mark_closed(position, fill, "emergency_stop")
            logger.warning("Emergency closed %s %s at %.6f", position.role.value, position.id, fill)
        self.risk.invalidate()
        return failed


def summarize_positions(positions: List[Position], projections: List[Dict]) -> Dict:
    """Counts by role, realized PnL and break-even projections over any set of tables."""
    open_positions = [p for p in positions if p.is_open]
    by_role: Dict[str, int] = {}
    for p in open_positions:
        by_role[p.role.value] = by_role.get(p.role.value, 0) + 1
    return {
        "total_positions": len(positions),
        "open_positions": len(open_positions),
        "open_by_role": by_role,
        "total_pnl": sum(p.pnl or 0.0 for p in positions),
        "break_even": projections,
        "guaranteed_profit": bool(projections) and all(b["net_at_liquidation"] > 0 for b in projections),
    }
