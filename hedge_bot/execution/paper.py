"""
Paper gateway: simulated market fills at a settable price. Used by the backtester,
the `paper` CLI mode (with live klines injected) and tests.
"""

from __future__ import annotations
import itertools
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pandas as pd

from hedge_bot.core.errors import ExchangeError, OrderRejectedError
from hedge_bot.core.types import Position, Role, Side
from hedge_bot.execution.base import Balance, ExchangeGateway, ExchangePosition

logger = logging.getLogger("hedge_bot.execution.paper")


class PaperGateway(ExchangeGateway):
    """Fills every market order at the current price. Margin is size * price / leverage."""

    def __init__(
        self,
        symbol: str = "ADAUSDT",
        initial_balance: float = 1000.0,
        price: float = 0.0,
        symbol_info: Optional[dict] = None,
        market: Optional[ExchangeGateway] = None,
    ):
        self.symbol = symbol
        # optional live data source; orders are still simulated
        self.market = market
        self.price = price
        self.realized = 0.0
        self.initial_balance = initial_balance
        self.symbol_info = symbol_info
        self.klines: Dict[str, pd.DataFrame] = {}
        self.take_profits: Dict[str, float] = {}
        self.now: Optional[datetime] = None
        self._open: Dict[str, Position] = {}
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------ simulation controls

    def set_price(self, price: float, now: Optional[datetime] = None) -> None:
        self.price = price
        if now is not None:
            self.now = now
        self._trigger_take_profits()

    def _trigger_take_profits(self) -> None:
        """Fill resting take-profits the new price has reached, at their stop price."""
        for position_id, stop in list(self.take_profits.items()):
            held = self._open.get(position_id)
            if held is None:
                continue
            hit = self.price >= stop if held.side is Side.LONG else self.price <= stop
            if hit:
                del self._open[position_id]
                del self.take_profits[position_id]
                self.realized += (stop - held.entry_price) * held.side.sign * held.size
                logger.debug("Paper fill: take-profit %s %s @ %.6f", held.role.value, held.side.value, stop)

    def set_klines(self, timeframe: str, df: pd.DataFrame) -> None:
        self.klines[timeframe] = df

    def _clock(self) -> datetime:
        return self.now or datetime.now(timezone.utc)

    def _margin_used(self) -> float:
        return sum(p.size * p.entry_price / p.leverage for p in self._open.values())

    def _unrealized(self) -> float:
        return sum((self.price - p.entry_price) * p.side.sign * p.size for p in self._open.values())

    def drop_position(self, position_id: str) -> None:
        """Forget an open position without a fill, as if it were liquidated or closed elsewhere."""
        self._open.pop(position_id, None)
        self.take_profits.pop(position_id, None)

    # ------------------------------------------------------------------ gateway

    def get_current_price(self) -> float:
        if self.market is not None:
            self.price = self.market.get_current_price()
        if self.price <= 0:
            raise ExchangeError("paper gateway has no price")
        return self.price

    def get_klines(self, timeframe: str, limit: int) -> pd.DataFrame:
        if self.market is not None:
            return self.market.get_klines(timeframe, limit)
        df = self.klines.get(timeframe)
        if df is None:
            return pd.DataFrame(columns=["time", "open", "high", "low", "close", "volume"])
        return df.tail(limit).reset_index(drop=True)

    def get_symbol_info(self) -> Optional[dict]:
        if self.symbol_info is None and self.market is not None:
            self.symbol_info = self.market.get_symbol_info()
        return self.symbol_info

    def get_account_balance(self) -> Balance:
        total = self.initial_balance + self.realized
        return Balance(total=total, available=total - self._margin_used() + min(self._unrealized(), 0.0))

    def get_current_positions(self) -> List[ExchangePosition]:
        by_side: Dict[Side, ExchangePosition] = {}
        for p in self._open.values():
            agg = by_side.get(p.side)
            if agg is None:
                by_side[p.side] = ExchangePosition(side=p.side, size=p.size, entry_price=p.entry_price,
                                                   leverage=p.leverage)
                continue
            size = agg.size + p.size
            agg.entry_price = (agg.entry_price * agg.size + p.entry_price * p.size) / size
            agg.size = size
        for agg in by_side.values():
            agg.unrealized_pnl = (self.price - agg.entry_price) * agg.side.sign * agg.size
        return list(by_side.values())

    def open_position(self, side: Side, quantity: float, leverage: int, role: Role) -> Position:
        price = self.get_current_price()
        if quantity <= 0:
            raise OrderRejectedError(f"invalid quantity {quantity}")
        margin = quantity * price / leverage
        if margin > self.get_account_balance().available:
            raise OrderRejectedError(f"insufficient margin: need {margin:.2f}")
        position = Position(
            id=f"paper-{next(self._ids)}",
            side=side,
            role=role,
            size=quantity,
            entry_price=price,
            leverage=leverage,
            open_time=self._clock(),
            symbol=self.symbol,
        )
        self._open[position.id] = replace(position)
        logger.debug("Paper fill: open %s %s %.4f @ %.6f", role.value, side.value, quantity, price)
        return position

    def close_position(self, position: Position) -> float:
        price = self.get_current_price()
        held = self._open.pop(position.id, None)
        if held is None:
            raise OrderRejectedError(f"no open paper position {position.id}")
        self.take_profits.pop(position.id, None)
        self.realized += (price - held.entry_price) * held.side.sign * held.size
        logger.debug("Paper fill: close %s %s @ %.6f", held.role.value, held.side.value, price)
        return price

    def set_take_profit_order(self, position: Position, price: float) -> None:
        if position.id not in self._open:
            raise OrderRejectedError(f"no open paper position {position.id}")
        self.take_profits[position.id] = price
