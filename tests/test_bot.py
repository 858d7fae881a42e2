"""Tests for the HedgeBot tick loop on a paper gateway."""

from dataclasses import replace
from datetime import datetime, timezone

import pandas as pd
import pytest
from hedge_bot.bot import HedgeBot
from hedge_bot.core.config import Config
from hedge_bot.core.errors import OrderRejectedError, TransientExchangeError
from hedge_bot.core.types import DynamicLevel, LevelType, PositionStatus, Role, Side, SignalKind, TradingSignal
from hedge_bot.execution.paper import PaperGateway
from hedge_bot.positions.manager import CLOSED_ON_EXCHANGE

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def flat_frame(close, n=30, freq="1h"):
    return pd.DataFrame({
        "time": pd.date_range("2024-01-01", periods=n, freq=freq),
        "open": [close] * n,
        "high": [close] * n,
        "low": [close] * n,
        "close": [close] * n,
        "volume": [100.0] * n,
    })


def make_bot(gateway=None, config=None):
    gateway = gateway or PaperGateway(initial_balance=1000.0)
    messages = []

    def notify(text):
        messages.append(text)
        return True

    bot = HedgeBot(config or Config(), gateway, clock=lambda: T0, notify=notify)
    return bot, gateway, messages


def prime_entry(bot, gateway, price=0.895):
    gateway.set_price(price)
    gateway.set_klines("1h", flat_frame(price))
    gateway.set_klines("4h", flat_frame(price, freq="4h"))
    bot.learner._levels = [
        DynamicLevel(price=0.90, type=LevelType.RESISTANCE, strength=0.5, touches=3, last_touch=T0),
    ]


def test_tick_opens_anchor_at_resistance():
    bot, gateway, messages = make_bot()
    prime_entry(bot, gateway)
    signals = bot.tick()
    assert [(s.kind, s.role) for s in signals] == [(SignalKind.ENTRY, Role.ANCHOR)]
    anchor = bot.positions.open_by_role(Role.ANCHOR)
    assert anchor is not None and anchor.side is Side.LONG
    assert anchor.entry_price == 0.895
    assert bot.tick_count == 1
    assert bot.last_tick == T0
    assert any("ENTRY ANCHOR LONG" in m for m in messages)
    # cycle gate holds on the next tick
    bot.tick()
    assert len(bot.positions.open_positions()) == 1


def test_tick_abstains_without_bars():
    bot, gateway, _ = make_bot()
    gateway.set_price(1.0)
    assert bot.tick() == []
    assert bot.positions.all_positions() == []


def test_tick_reconciles_positions_closed_on_exchange():
    bot, gateway, messages = make_bot()
    prime_entry(bot, gateway)
    bot.tick()
    anchor = bot.positions.open_by_role(Role.ANCHOR)
    gateway.drop_position(anchor.id)
    bot.tick()
    assert anchor.status is PositionStatus.CLOSED
    assert anchor.close_reason == CLOSED_ON_EXCHANGE
    assert any(CLOSED_ON_EXCHANGE in m for m in messages)


def test_run_survives_transient_errors():
    class Flaky(PaperGateway):
        calls = 0

        def get_current_price(self):
            self.calls += 1
            if self.calls == 1:
                raise TransientExchangeError("timeout")
            return super().get_current_price()

    gateway = Flaky(initial_balance=1000.0, price=1.0)
    bot, _, messages = make_bot(gateway, replace(Config(), tick_interval_seconds=0))
    bot.run(max_ticks=2)
    assert gateway.calls == 2
    assert bot.tick_count == 1
    assert bot.running is False
    assert messages[0].startswith("Hedge bot starting")


def test_emergency_stop_closes_main_and_scalp():
    class Stuck(PaperGateway):
        def close_position(self, position):
            if position.role is Role.SCALP:
                raise OrderRejectedError("reduce only rejected")
            return super().close_position(position)

    bot, gateway, messages = make_bot(Stuck(initial_balance=1000.0))
    prime_entry(bot, gateway)
    bot.tick()
    scalp = bot.scalp.open_role(Role.SCALP, Side.SHORT, 0.895)
    failed = bot.emergency_stop()
    assert failed == [scalp.id]
    assert bot.positions.open_positions() == []
    assert bot.running is False
    assert "failed to close" in messages[-1]


def test_summary_and_stats():
    bot, gateway, _ = make_bot()
    prime_entry(bot, gateway)
    bot.tick()
    summary = bot.get_position_summary()
    assert summary["open_positions"] == 1
    assert summary["scalp"]["active_hedges"] == 0
    assert summary["levels"]["total_levels"] == 1
    bot.emergency_stop()
    assert bot.trading_stats().total_trades == 1


def test_tick_reconciles_anchor_beside_scalp_on_same_side():
    bot, gateway, _ = make_bot()
    prime_entry(bot, gateway)
    bot.tick()
    anchor = bot.positions.open_by_role(Role.ANCHOR)
    scalp = bot.scalp.open_role(Role.SCALP, Side.LONG, 0.895)
    gateway.drop_position(anchor.id)
    bot.tick()
    assert anchor.status is PositionStatus.CLOSED
    assert anchor.close_reason == CLOSED_ON_EXCHANGE
    assert scalp.is_open
    # the freed cycle lets a fresh anchor in
    assert bot.positions.open_by_role(Role.ANCHOR) is not anchor


def test_summary_includes_scalp_track():
    bot, gateway, _ = make_bot()
    gateway.set_price(1.0)
    scalp = bot.scalp.open_role(Role.SCALP, Side.LONG, 1.0)
    gateway.set_price(1.01)
    bot.scalp.close(scalp, "target")
    assert scalp.pnl > 0
    summary = bot.get_position_summary()
    assert summary["total_pnl"] == pytest.approx(scalp.pnl)
    assert summary["open_by_role"] == {}

    bot.scalp.open_role(Role.SCALP, Side.LONG, 1.01)
    gateway.set_price(1.0)
    hedge = bot.scalp.apply(TradingSignal(
        kind=SignalKind.HEDGE, side=Side.SHORT, role=Role.SCALP_HEDGE, price=1.0, confidence=0.8,
        reason="level", timestamp=T0, level_price=1.0,
    ))
    assert hedge is not None
    summary = bot.get_position_summary()
    assert summary["open_by_role"] == {"SCALP": 1, "SCALP_HEDGE": 1}
    assert summary["total_positions"] == 3
    assert [b["hedge_id"] for b in summary["break_even"]] == [hedge.id]
