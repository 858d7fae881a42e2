"""Unit tests for risk.manager."""

import pytest
from hedge_bot.core.errors import ExchangeError
from hedge_bot.execution.base import Balance
from hedge_bot.execution.paper import PaperGateway
from hedge_bot.risk.manager import RiskManager, RiskResult


class FakeClock:
    def __init__(self):
        self.t = 100.0

    def __call__(self):
        return self.t


class CountingGateway(PaperGateway):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.balance_calls = 0
        self.fail = False

    def get_account_balance(self):
        self.balance_calls += 1
        if self.fail:
            raise ExchangeError("balance endpoint down")
        return super().get_account_balance()


def test_size_position_from_fraction_and_leverage():
    rm = RiskManager(PaperGateway(initial_balance=1000.0, price=0.86), base_balance=1000.0)
    r = rm.size_position(0.2, 10, 0.86)
    assert isinstance(r, RiskResult)
    assert r.allowed is True
    # 200 margin * 10x / 0.86, rounded down to the lot step
    assert r.quantity == pytest.approx(2325.5813, abs=1e-4)
    assert r.margin == pytest.approx(r.quantity * 0.86 / 10)


def test_size_position_respects_lot_filters():
    info = {"filters": [{"filterType": "LOT_SIZE", "minQty": "1", "stepSize": "1"}]}
    rm = RiskManager(PaperGateway(initial_balance=1000.0, price=0.86), 1000.0, symbol_info=info)
    assert rm.size_position(0.2, 10, 0.86).quantity == 2325.0


def test_size_position_rejects_invalid_inputs():
    rm = RiskManager(PaperGateway(initial_balance=1000.0, price=1.0), 1000.0)
    assert rm.size_position(0.2, 10, 0.0).allowed is False
    assert rm.size_position(0.2, 0, 1.0).allowed is False
    tiny = rm.size_position(1e-9, 1, 50000.0)
    assert tiny.allowed is False
    assert "0" in tiny.reason


def test_insufficient_available_capital():
    class Committed(PaperGateway):
        def get_account_balance(self):
            return Balance(total=1000.0, available=50.0)

    rm = RiskManager(Committed(price=1.0), 1000.0)
    r = rm.size_position(0.3, 15, 1.0)
    assert r.allowed is False
    assert r.reason == "insufficient available capital"
    assert r.margin == pytest.approx(300.0)


def test_balance_cached_until_ttl_or_invalidation():
    clock = FakeClock()
    gateway = CountingGateway(initial_balance=1000.0, price=1.0)
    rm = RiskManager(gateway, 1000.0, cache_ttl=30.0, clock=clock)
    rm.balance()
    clock.t += 10
    rm.balance()
    assert gateway.balance_calls == 1
    clock.t += 25
    rm.balance()
    assert gateway.balance_calls == 2
    rm.invalidate()
    rm.balance()
    assert gateway.balance_calls == 3


def test_balance_fallbacks():
    clock = FakeClock()
    gateway = CountingGateway(initial_balance=800.0, price=1.0)
    gateway.fail = True
    rm = RiskManager(gateway, 1000.0, clock=clock)
    # nothing cached yet: configured base balance
    assert rm.balance().total == 1000.0
    gateway.fail = False
    assert rm.balance().total == 800.0
    gateway.fail = True
    rm.invalidate()
    assert rm.balance().total == 800.0


def test_effective_balance_falls_back_when_wallet_empty():
    rm = RiskManager(PaperGateway(initial_balance=0.0, price=1.0), 500.0)
    assert rm.effective_balance() == 500.0
