"""Binance gateway against a fake python-binance client."""

import pytest
from binance.exceptions import BinanceAPIException
from hedge_bot.core.errors import ExchangeError, OrderRejectedError, TransientExchangeError
from hedge_bot.core.types import Position, Role, Side
from hedge_bot.execution import binance_futures
from hedge_bot.execution.binance_futures import BinanceFuturesGateway, retry_on_rate_limit


def api_error(status_code, code, message="error"):
    e = BinanceAPIException.__new__(BinanceAPIException)
    e.status_code = status_code
    e.code = code
    e.message = message
    return e


class FakeClient:
    def __init__(self, api_key, api_secret, testnet=False):
        self.testnet = testnet
        self.orders = []
        self.leverage_calls = []
        self.position_mode_error = None

    def futures_change_position_mode(self, dualSidePosition):
        if self.position_mode_error:
            raise self.position_mode_error

    def futures_symbol_ticker(self, symbol):
        return {"symbol": symbol, "price": "0.8600"}

    def futures_klines(self, symbol, interval, limit):
        self.klines_limit = limit
        return [
            [1704067200000, "0.85", "0.87", "0.84", "0.86", "1000", 1704070799999, "0", 10, "0", "0", "0"],
            [1704070800000, "0.86", "0.88", "0.85", "0.87", "1200", 1704074399999, "0", 12, "0", "0", "0"],
        ]

    def futures_exchange_info(self):
        return {"symbols": [{"symbol": "ADAUSDT", "filters": [
            {"filterType": "PRICE_FILTER", "tickSize": "0.0001"},
            {"filterType": "LOT_SIZE", "minQty": "1", "stepSize": "1"},
        ]}]}

    def futures_account_balance(self):
        return [{"asset": "BNB", "balance": "1"}, {"asset": "USDT", "balance": "1000.5", "availableBalance": "800"}]

    def futures_position_information(self, symbol):
        return [
            {"positionSide": "LONG", "positionAmt": "2325", "entryPrice": "0.86", "leverage": "10",
             "unRealizedProfit": "3.1"},
            {"positionSide": "SHORT", "positionAmt": "0", "entryPrice": "0", "leverage": "15",
             "unRealizedProfit": "0"},
        ]

    def futures_change_leverage(self, symbol, leverage):
        self.leverage_calls.append(leverage)

    def futures_create_order(self, **params):
        self.orders.append(params)
        return {"orderId": 42, "avgPrice": "0", "executedQty": params.get("quantity", "0")}

    def futures_get_order(self, symbol, orderId):
        return {"orderId": orderId, "avgPrice": "0.8601"}


@pytest.fixture
def gateway(monkeypatch):
    monkeypatch.setattr(binance_futures, "Client", FakeClient)
    return BinanceFuturesGateway("key", "secret", "ADAUSDT", testnet=True)


def test_market_data(gateway):
    assert gateway.get_current_price() == 0.86
    df = gateway.get_klines("1h", 5000)
    assert gateway._client.klines_limit == 1500
    assert list(df.columns) == ["time", "open", "high", "low", "close", "volume"]
    assert df["close"].tolist() == [0.86, 0.87]


def test_account_and_positions(gateway):
    balance = gateway.get_account_balance()
    assert balance.total == 1000.5
    assert balance.available == 800.0
    positions = gateway.get_current_positions()
    assert len(positions) == 1
    assert positions[0].side is Side.LONG
    assert positions[0].size == 2325.0


def test_open_position_in_hedge_mode(gateway):
    position = gateway.open_position(Side.SHORT, 100.0, 15, Role.ANCHOR_HEDGE)
    order = gateway._client.orders[0]
    assert order["side"] == "SELL"
    assert order["positionSide"] == "SHORT"
    assert order["type"] == "MARKET"
    assert position.id == "42"
    assert position.role is Role.ANCHOR_HEDGE
    # avgPrice 0 on the ack: read back from the order
    assert position.entry_price == 0.8601
    gateway.open_position(Side.SHORT, 100.0, 15, Role.ANCHOR_HEDGE)
    assert gateway._client.leverage_calls == [15]


def test_take_profit_rounded_to_tick(gateway):
    hedge = Position(id="42", side=Side.SHORT, role=Role.ANCHOR_HEDGE, size=100.0, entry_price=0.845,
                     leverage=15, open_time=None)
    gateway.set_take_profit_order(hedge, 0.789481)
    order = gateway._client.orders[-1]
    assert order["type"] == "TAKE_PROFIT_MARKET"
    assert order["side"] == "BUY"
    assert order["positionSide"] == "SHORT"
    assert order["stopPrice"] == "0.7895"


def test_hedge_mode_already_enabled_is_ignored(monkeypatch):
    class Enabled(FakeClient):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self.position_mode_error = api_error(400, -4059, "No need to change position side.")

    monkeypatch.setattr(binance_futures, "Client", Enabled)
    BinanceFuturesGateway("key", "secret", "ADAUSDT")


def test_retry_then_translate_rate_limit(monkeypatch):
    monkeypatch.setattr(binance_futures.time, "sleep", lambda s: None)
    calls = []

    @retry_on_rate_limit(max_retries=3, base_delay=0.0)
    def limited():
        calls.append(1)
        raise api_error(429, -1003, "Too many requests")

    with pytest.raises(TransientExchangeError):
        limited()
    assert len(calls) == 3


def test_retry_succeeds_after_rate_limit(monkeypatch):
    monkeypatch.setattr(binance_futures.time, "sleep", lambda s: None)
    calls = []

    @retry_on_rate_limit(max_retries=3, base_delay=0.0)
    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise api_error(429, -1003)
        return "ok"

    assert flaky() == "ok"


def test_order_errors_become_rejections():
    @retry_on_rate_limit(max_retries=2, order=True)
    def place():
        raise api_error(400, -2019, "Margin is insufficient.")

    @retry_on_rate_limit(max_retries=2)
    def query():
        raise api_error(400, -1121, "Invalid symbol.")

    @retry_on_rate_limit(max_retries=2, order=True)
    def server_down():
        raise api_error(503, -1001)

    with pytest.raises(OrderRejectedError):
        place()
    with pytest.raises(ExchangeError) as info:
        query()
    assert not isinstance(info.value, (OrderRejectedError, TransientExchangeError))
    with pytest.raises(TransientExchangeError):
        server_down()
