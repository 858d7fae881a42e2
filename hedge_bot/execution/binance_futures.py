"""
Binance USDT-M Futures gateway with retry and rate-limit handling.

Runs the account in hedge mode (dual-side positions) so a primary and its hedge
can be open on opposite sides of the same symbol.
"""

from __future__ import annotations
import functools
import logging
import time
from datetime import datetime, timezone
from typing import List, Optional

import pandas as pd
import requests

from binance.client import Client
from binance.exceptions import BinanceAPIException, BinanceRequestException

from hedge_bot.core.errors import ExchangeError, OrderRejectedError, TransientExchangeError
from hedge_bot.core.types import Position, Role, Side
from hedge_bot.execution.base import Balance, ExchangeGateway, ExchangePosition
from hedge_bot.utils.exchange_filters import SymbolFilters

logger = logging.getLogger("hedge_bot.execution.binance")

RATE_LIMIT_CODES = (429, 418)
# "No need to change position side / leverage" style answers
NO_CHANGE_CODES = (-4059, -4046)


def _is_transient(e: BinanceAPIException) -> bool:
    return e.status_code in RATE_LIMIT_CODES or e.status_code >= 500


def retry_on_rate_limit(max_retries: int = 3, base_delay: float = 1.0, order: bool = False):
    """
    Decorator: retry on 429 or 418 (rate limit) with exponential backoff, then translate
    python-binance and requests failures into the gateway's error taxonomy. With
    `order=True` a non-transient API error becomes OrderRejectedError.
    """
    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return f(*args, **kwargs)
                except BinanceAPIException as e:
                    if e.status_code in RATE_LIMIT_CODES and attempt < max_retries - 1:
                        delay = base_delay * (2 ** attempt)
                        logger.warning("Rate limited, retry in %.1fs (attempt %d)", delay, attempt + 1)
                        time.sleep(delay)
                        continue
                    if _is_transient(e):
                        raise TransientExchangeError(f"{f.__name__}: {e}") from e
                    if order:
                        raise OrderRejectedError(f"{f.__name__}: {e.code} {e.message}") from e
                    raise ExchangeError(f"{f.__name__}: {e}") from e
                except (BinanceRequestException, requests.exceptions.RequestException) as e:
                    raise TransientExchangeError(f"{f.__name__}: {e}") from e
            raise TransientExchangeError(f"{f.__name__}: retries exhausted")
        return wrapped
    return decorator


class BinanceFuturesGateway(ExchangeGateway):
    """Binance USDT-M Futures gateway (testnet and live)."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        symbol: str,
        testnet: bool = True,
        quote_asset: str = "USDT",
        hedge_mode: bool = True,
    ):
        self._client = Client(api_key, api_secret, testnet=testnet)
        self.symbol = symbol
        self.quote_asset = quote_asset
        logger.info("Binance Futures: using %s for %s", "TESTNET" if testnet else "LIVE", symbol)
        self._symbol_info_cache: Optional[dict] = None
        self._leverage: Optional[int] = None
        if hedge_mode:
            self._ensure_hedge_mode()

    def _ensure_hedge_mode(self) -> None:
        try:
            self._client.futures_change_position_mode(dualSidePosition="true")
            logger.info("Hedge mode enabled")
        except BinanceAPIException as e:
            if e.code in NO_CHANGE_CODES:
                logger.debug("Hedge mode already enabled")
            else:
                logger.warning("Could not enable hedge mode: %s", e)

    # ------------------------------------------------------------------ market data

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def get_current_price(self) -> float:
        ticker = self._client.futures_symbol_ticker(symbol=self.symbol)
        return float(ticker["price"])

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def get_klines(self, timeframe: str, limit: int) -> pd.DataFrame:
        # Binance caps a single klines request at 1500 bars
        raw = self._client.futures_klines(symbol=self.symbol, interval=timeframe, limit=min(limit, 1500))
        df = pd.DataFrame(raw, columns=[
            "open_time", "open", "high", "low", "close", "volume",
            "close_time", "quote_av", "num_trades", "tb_base_av", "tb_quote_av", "ignore"
        ])
        df[["open", "high", "low", "close", "volume"]] = df[["open", "high", "low", "close", "volume"]].astype(float)
        df["time"] = pd.to_datetime(df["open_time"], unit="ms")
        return df[["time", "open", "high", "low", "close", "volume"]]

    @retry_on_rate_limit(max_retries=2)
    def get_symbol_info(self) -> Optional[dict]:
        if self._symbol_info_cache is not None:
            return self._symbol_info_cache
        info = self._client.futures_exchange_info()
        for s in info.get("symbols", []):
            if s.get("symbol") == self.symbol:
                self._symbol_info_cache = s
                return s
        return None

    # ------------------------------------------------------------------ account

    @retry_on_rate_limit(max_retries=2)
    def get_account_balance(self) -> Balance:
        for entry in self._client.futures_account_balance():
            if entry.get("asset") == self.quote_asset:
                return Balance(
                    total=float(entry.get("balance", 0.0)),
                    available=float(entry.get("availableBalance", 0.0)),
                )
        raise ExchangeError(f"No {self.quote_asset} balance on futures account")

    @retry_on_rate_limit(max_retries=2)
    def get_current_positions(self) -> List[ExchangePosition]:
        out = []
        for p in self._client.futures_position_information(symbol=self.symbol):
            amt = float(p.get("positionAmt", 0.0))
            if amt == 0:
                continue
            position_side = p.get("positionSide", "BOTH")
            if position_side in ("LONG", "SHORT"):
                side = Side(position_side)
            else:
                side = Side.LONG if amt > 0 else Side.SHORT
            out.append(ExchangePosition(
                side=side,
                size=abs(amt),
                entry_price=float(p.get("entryPrice", 0)),
                leverage=float(p.get("leverage", 1)),
                unrealized_pnl=float(p.get("unRealizedProfit", 0)),
            ))
        return out

    # ------------------------------------------------------------------ orders

    def _set_leverage(self, leverage: int) -> None:
        if leverage == self._leverage:
            return
        self._client.futures_change_leverage(symbol=self.symbol, leverage=leverage)
        self._leverage = leverage
        logger.info("Leverage set to %sx for %s", leverage, self.symbol)

    def _fill_price(self, res: dict) -> float:
        # Market orders can report avgPrice 0 until the fill is acknowledged
        avg = float(res.get("avgPrice") or 0.0)
        if avg > 0:
            return avg
        order = self._client.futures_get_order(symbol=self.symbol, orderId=res.get("orderId"))
        avg = float(order.get("avgPrice") or 0.0)
        return avg if avg > 0 else self.get_current_price()

    @retry_on_rate_limit(max_retries=2, order=True)
    def open_position(self, side: Side, quantity: float, leverage: int, role: Role) -> Position:
        self._set_leverage(leverage)
        res = self._client.futures_create_order(
            symbol=self.symbol,
            side=side.order_side,
            positionSide=side.value,
            type="MARKET",
            quantity=str(quantity),
        )
        fill = self._fill_price(res)
        executed = float(res.get("executedQty") or 0.0) or quantity
        logger.info("Opened %s %s %s @ %.6f (order %s)", role.value, side.value, executed, fill, res.get("orderId"))
        return Position(
            id=str(res.get("orderId")),
            side=side,
            role=role,
            size=executed,
            entry_price=fill,
            leverage=leverage,
            open_time=datetime.now(timezone.utc),
            symbol=self.symbol,
        )

    @retry_on_rate_limit(max_retries=2, order=True)
    def close_position(self, position: Position) -> float:
        res = self._client.futures_create_order(
            symbol=self.symbol,
            side=position.side.opposite.order_side,
            positionSide=position.side.value,
            type="MARKET",
            quantity=str(position.size),
        )
        fill = self._fill_price(res)
        logger.info("Closed %s %s %s @ %.6f", position.role.value, position.side.value, position.size, fill)
        return fill

    @retry_on_rate_limit(max_retries=2, order=True)
    def set_take_profit_order(self, position: Position, price: float) -> None:
        stop = SymbolFilters.from_symbol_info(self.get_symbol_info()).round_price(price)
        self._client.futures_create_order(
            symbol=self.symbol,
            side=position.side.opposite.order_side,
            positionSide=position.side.value,
            type="TAKE_PROFIT_MARKET",
            stopPrice=str(stop),
            quantity=str(position.size),
            workingType="MARK_PRICE",
        )
        logger.info("Take-profit for %s %s set at %s", position.role.value, position.side.value, stop)
