"""Unit tests for positions.manager."""

import random
from dataclasses import replace
from datetime import datetime, timezone

import pytest
from hedge_bot.core.config import Config
from hedge_bot.core.errors import OrderRejectedError, TransientExchangeError
from hedge_bot.core.types import HEDGE_FOR, Position, PositionStatus, Role, Side, SignalKind, TradingSignal
from hedge_bot.execution.base import ExchangePosition
from hedge_bot.execution.paper import PaperGateway
from hedge_bot.positions.manager import CLOSED_ON_EXCHANGE, PositionManager, missing_on_exchange
from hedge_bot.positions.scalp import ScalpLifecycle
from hedge_bot.risk.manager import RiskManager
from hedge_bot.strategies import rules

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class RejectingTakeProfitGateway(PaperGateway):
    def set_take_profit_order(self, position, price):
        raise OrderRejectedError("precision")


class RejectingOpenGateway(PaperGateway):
    def open_position(self, side, quantity, leverage, role):
        raise OrderRejectedError("margin mode mismatch")


class FlakyGateway(PaperGateway):
    def open_position(self, side, quantity, leverage, role):
        raise TransientExchangeError("timeout")


def make_manager(gateway=None, config=None, price=0.86):
    gateway = gateway or PaperGateway(initial_balance=1000.0, price=price)
    gateway.set_price(price)
    config = config or Config()
    risk = RiskManager(gateway, config.base_balance)
    return PositionManager(gateway, risk, config), gateway


def signal(kind, side, role, price, position_id=None, **metadata):
    return TradingSignal(kind=kind, side=side, role=role, price=price, confidence=0.8, reason="test",
                         timestamp=T0, position_id=position_id, metadata=metadata)


def open_anchor(manager, side=Side.LONG, price=0.86):
    return manager.apply(signal(SignalKind.ENTRY, side, Role.ANCHOR, price))


def test_entry_sizes_from_role_fraction():
    manager, _ = make_manager()
    anchor = open_anchor(manager)
    assert anchor is not None
    # 20% of 1000 at 10x over 0.86
    assert anchor.size == pytest.approx(0.2 * 1000 * 10 / 0.86, rel=1e-4)
    assert anchor.leverage == 10
    assert anchor.status is PositionStatus.OPEN
    assert manager.open_positions() == [anchor]


def test_second_primary_refused():
    manager, _ = make_manager()
    open_anchor(manager)
    assert open_anchor(manager) is None
    assert manager.apply(signal(SignalKind.RE_ENTRY, Side.LONG, Role.OPPORTUNITY, 0.86)) is None
    assert len(manager.open_positions()) == 1


def test_opportunity_overlap_when_allowed():
    manager, _ = make_manager(config=replace(Config(), allow_opportunity_overlap=True))
    open_anchor(manager)
    assert manager.apply(signal(SignalKind.RE_ENTRY, Side.LONG, Role.OPPORTUNITY, 0.86)) is not None


def test_hedge_gets_take_profit_before_liquidation():
    manager, gateway = make_manager()
    anchor = open_anchor(manager)
    gateway.set_price(0.845)
    hedge = manager.apply(signal(SignalKind.HEDGE, Side.SHORT, Role.ANCHOR_HEDGE, 0.845, anchor.id))
    assert hedge is not None
    assert hedge.paired_id == anchor.id
    assert hedge.leverage == 15
    assert hedge.take_profit_price == pytest.approx(0.774 * 1.02)
    assert gateway.take_profits[hedge.id] == pytest.approx(0.78948)


def test_take_profit_failure_keeps_hedge_open():
    manager, _ = make_manager(RejectingTakeProfitGateway(initial_balance=1000.0))
    anchor = open_anchor(manager)
    hedge = manager.apply(signal(SignalKind.HEDGE, Side.SHORT, Role.ANCHOR_HEDGE, 0.86, anchor.id))
    assert hedge is not None
    assert hedge.is_open
    assert hedge.take_profit_price is None


def test_hedge_refused_without_primary_or_on_wrong_side():
    manager, _ = make_manager()
    assert manager.apply(signal(SignalKind.HEDGE, Side.SHORT, Role.ANCHOR_HEDGE, 0.86)) is None
    anchor = open_anchor(manager)
    assert manager.apply(signal(SignalKind.HEDGE, Side.LONG, Role.ANCHOR_HEDGE, 0.86, anchor.id)) is None
    assert manager.apply(signal(SignalKind.HEDGE, Side.SHORT, Role.ANCHOR_HEDGE, 0.86, anchor.id)) is not None
    assert manager.apply(signal(SignalKind.HEDGE, Side.SHORT, Role.ANCHOR_HEDGE, 0.86, anchor.id)) is None


def test_exit_records_leveraged_pnl():
    manager, gateway = make_manager(price=100.0)
    anchor = open_anchor(manager, price=100.0)
    gateway.set_price(110.0)
    closed = manager.apply(signal(SignalKind.EXIT, Side.LONG, Role.ANCHOR, 110.0, anchor.id))
    assert closed is anchor
    assert closed.status is PositionStatus.CLOSED
    assert closed.exit_price == 110.0
    assert closed.pnl == pytest.approx((110.0 - 100.0) * anchor.size * 10 / 100.0)
    assert closed.close_reason == "test"
    # closed positions are kept
    assert manager.all_positions() == [anchor]
    assert manager.open_positions() == []


def test_short_round_trip_pnl():
    manager, gateway = make_manager(price=100.0)
    anchor = open_anchor(manager, side=Side.SHORT, price=100.0)
    gateway.set_price(95.0)
    manager.apply(signal(SignalKind.EXIT, Side.SHORT, Role.ANCHOR, 95.0, anchor.id))
    assert anchor.pnl == pytest.approx(5.0 * anchor.size * 10 / 100.0)


def test_exit_of_closed_position_ignored():
    manager, _ = make_manager()
    anchor = open_anchor(manager)
    manager.apply(signal(SignalKind.EXIT, Side.LONG, Role.ANCHOR, 0.86, anchor.id))
    assert manager.apply(signal(SignalKind.EXIT, Side.LONG, Role.ANCHOR, 0.86, anchor.id)) is None


def test_rejected_order_not_recorded():
    manager, _ = make_manager(RejectingOpenGateway(initial_balance=1000.0))
    assert open_anchor(manager) is None
    assert manager.all_positions() == []
    assert manager.can_open(Role.ANCHOR)


def test_transient_error_propagates_without_recording():
    manager, _ = make_manager(FlakyGateway(initial_balance=1000.0))
    with pytest.raises(TransientExchangeError):
        open_anchor(manager)
    assert manager.all_positions() == []


def test_update_marks_positions_closed_on_exchange():
    manager, gateway = make_manager()
    anchor = open_anchor(manager)
    hedge = manager.apply(signal(SignalKind.HEDGE, Side.SHORT, Role.ANCHOR_HEDGE, 0.86, anchor.id))
    gateway.drop_position(hedge.id)
    gone = manager.update(0.80)
    assert gone == [hedge]
    assert hedge.status is PositionStatus.CLOSED
    assert hedge.close_reason == CLOSED_ON_EXCHANGE
    assert hedge.exit_price == 0.80
    assert anchor.is_open


def test_take_profit_fill_booked_at_take_profit_price():
    manager, gateway = make_manager()
    anchor = open_anchor(manager)
    gateway.set_price(0.845)
    hedge = manager.apply(signal(SignalKind.HEDGE, Side.SHORT, Role.ANCHOR_HEDGE, 0.845, anchor.id))
    # the paper gateway fills the resting take-profit at 0.78948
    gateway.set_price(0.78)
    gone = manager.update(0.78)
    assert gone == [hedge]
    assert hedge.exit_price == pytest.approx(0.78948)
    assert hedge.pnl == pytest.approx(rules.realized_pnl(0.845, 0.78948, Side.SHORT, hedge.size, 15))
    assert anchor.is_open


def test_reconcile_tells_tracks_apart_on_a_shared_side():
    manager, gateway = make_manager()
    scalps = ScalpLifecycle(gateway, manager.risk, manager.config)
    anchor = open_anchor(manager)
    scalp = scalps.apply(signal(SignalKind.ENTRY, Side.LONG, Role.SCALP, 0.86))
    assert scalp is not None and scalp.size != anchor.size

    gateway.drop_position(anchor.id)
    tracked = manager.open_positions() + scalps.open_positions()
    gone = missing_on_exchange(tracked, gateway.get_current_positions(), 0.80)
    assert gone == [anchor]
    assert scalps.settle_closed_on_exchange(gone, 0.80) == []
    assert manager.settle_closed_on_exchange(gone, 0.80) == [anchor]
    assert anchor.status is PositionStatus.CLOSED
    assert anchor.close_reason == CLOSED_ON_EXCHANGE
    assert scalp.is_open
    assert manager.can_open(Role.ANCHOR)

    fresh = open_anchor(manager)
    gateway.drop_position(scalp.id)
    tracked = manager.open_positions() + scalps.open_positions()
    gone = missing_on_exchange(tracked, gateway.get_current_positions(), 0.86)
    assert gone == [scalp]
    assert scalps.settle_closed_on_exchange(gone, 0.86) == [scalp]
    assert fresh.is_open


def test_crossed_leg_blamed_first_for_an_exchange_shortfall():
    a = Position(id="a", side=Side.LONG, role=Role.ANCHOR, size=100.0, entry_price=1.0, leverage=10, open_time=T0)
    b = Position(id="b", side=Side.LONG, role=Role.SCALP, size=100.0, entry_price=1.0, leverage=20, open_time=T0)
    held = [ExchangePosition(side=Side.LONG, size=100.0, entry_price=1.0, leverage=10)]
    # b liquidates at 0.95, a at 0.90
    assert missing_on_exchange([a, b], held, 0.93) == [b]
    assert rules.exchange_exit_price(b, 0.93) == pytest.approx(0.95)
    assert missing_on_exchange([a, b], held, 0.99) == [a]
    assert missing_on_exchange([a, b], [], 0.99) == [a, b]
    assert missing_on_exchange([a, b], held + [ExchangePosition(Side.LONG, 100.0, 1.0, 20)], 0.93) == []


def test_summary_break_even_projection():
    manager, gateway = make_manager()
    anchor = open_anchor(manager)
    gateway.set_price(0.845)
    manager.apply(signal(SignalKind.HEDGE, Side.SHORT, Role.ANCHOR_HEDGE, 0.845, anchor.id))
    summary = manager.get_position_summary()
    assert summary["open_positions"] == 2
    assert summary["open_by_role"] == {"ANCHOR": 1, "ANCHOR_HEDGE": 1}
    assert len(summary["break_even"]) == 1
    projection = summary["break_even"][0]
    assert projection["liquidation_price"] == pytest.approx(0.774)
    assert projection["net_at_liquidation"] > 0
    assert summary["guaranteed_profit"] is True


def test_summary_without_hedges_is_not_guaranteed():
    manager, _ = make_manager()
    open_anchor(manager)
    assert manager.get_position_summary()["guaranteed_profit"] is False


def test_emergency_stop_reports_failures():
    class StuckGateway(PaperGateway):
        stuck = set()

        def close_position(self, position):
            if position.id in self.stuck:
                raise OrderRejectedError("reduce only rejected")
            return super().close_position(position)

    gateway = StuckGateway(initial_balance=1000.0)
    manager, _ = make_manager(gateway)
    anchor = open_anchor(manager)
    hedge = manager.apply(signal(SignalKind.HEDGE, Side.SHORT, Role.ANCHOR_HEDGE, 0.86, anchor.id))
    gateway.stuck = {hedge.id}
    failed = manager.emergency_stop()
    assert failed == [hedge.id]
    assert anchor.status is PositionStatus.CLOSED
    assert anchor.close_reason == "emergency_stop"
    assert hedge.is_open


def test_trading_stats_over_closed_positions():
    manager, gateway = make_manager(price=100.0)
    anchor = open_anchor(manager, price=100.0)
    gateway.set_price(110.0)
    manager.apply(signal(SignalKind.EXIT, Side.LONG, Role.ANCHOR, 110.0, anchor.id))
    stats = manager.trading_stats()
    assert stats.total_trades == 1
    assert stats.winning_trades == 1
    assert stats.total_pnl == pytest.approx(anchor.pnl)


def test_invariants_hold_under_random_signals():
    rnd = random.Random(42)
    manager, gateway = make_manager(price=1.0)
    roles = list(manager.roles)
    for _ in range(400):
        price = rnd.uniform(0.7, 1.3)
        gateway.set_price(price)
        kind = rnd.choice(list(SignalKind))
        role = rnd.choice(roles)
        side = rnd.choice([Side.LONG, Side.SHORT])
        target = None
        open_now = manager.open_positions()
        if kind is SignalKind.EXIT and open_now:
            target = rnd.choice(open_now).id
        elif kind is SignalKind.HEDGE:
            primary = manager.open_by_role(HEDGE_FOR.get(role, role))
            target = primary.id if primary else None
        result = manager.apply(signal(kind, side, role, price, target))

        open_now = manager.open_positions()
        primaries = [p for p in open_now if p.role.is_primary]
        assert len(primaries) <= 1
        for hedge_role in (Role.ANCHOR_HEDGE, Role.OPPORTUNITY_HEDGE):
            for s in Side:
                assert sum(1 for p in open_now if p.role is hedge_role and p.side is s) <= 1
        if result is not None and kind is SignalKind.HEDGE:
            primary = manager.get(result.paired_id)
            assert primary.is_open
            assert result.side is primary.side.opposite
        for p in manager.all_positions():
            if p.status is PositionStatus.CLOSED:
                assert p.pnl is not None and p.close_time is not None
