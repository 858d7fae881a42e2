"""
Backtest engine: replays the signal timeframe bar by bar through HedgeBot on a
paper gateway. No lookahead: at each step every timeframe only exposes bars that
have closed by the end of the current signal bar.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd

from hedge_bot.analytics.metrics import TradingStats, compute_trading_stats
from hedge_bot.bot import HedgeBot
from hedge_bot.core.config import Config
from hedge_bot.core.errors import HedgeBotError
from hedge_bot.core.types import Position
from hedge_bot.execution.paper import PaperGateway
from hedge_bot.utils.timeframes import timeframe_delta

logger = logging.getLogger("hedge_bot.backtest")


@dataclass
class BacktestResult:
    """Backtest output: positions, equity curve and stats."""
    positions: List[Position] = field(default_factory=list)
    equity_curve: List[float] = field(default_factory=list)
    stats: Optional[TradingStats] = None


class BacktestEngine:
    """Drives a HedgeBot over historical klines, one signal bar per tick."""

    def __init__(self, config: Config, initial_capital: Optional[float] = None, symbol_info: Optional[dict] = None):
        self.initial_capital = initial_capital or config.backtest_initial_capital
        # Sizing follows the simulated account, not the live base balance
        self.config = replace(config, base_balance=self.initial_capital, telegram_bot_token="", telegram_chat_id="")
        self.symbol_info = symbol_info

    def _closed_by(self, df: pd.DataFrame, timeframe: str, cutoff: datetime) -> pd.DataFrame:
        """Bars of `timeframe` whose close time is at or before cutoff."""
        closes_at = pd.to_datetime(df["time"]) + timeframe_delta(timeframe)
        return df[closes_at <= cutoff]

    def run(self, frames: Dict[str, pd.DataFrame], warmup: int = 0) -> BacktestResult:
        """
        Run on OHLCV DataFrames keyed by timeframe (columns: time, open, high, low,
        close, volume). The signal timeframe frame sets the replay cadence.
        """
        cfg = self.config
        signal_df = frames[cfg.signal_timeframe].reset_index(drop=True)
        step = timeframe_delta(cfg.signal_timeframe)
        gateway = PaperGateway(symbol=cfg.symbol, initial_balance=self.initial_capital,
                               symbol_info=self.symbol_info)
        bot = HedgeBot(cfg, gateway, clock=lambda: gateway.now, notify=lambda text: False)
        start = max(warmup, cfg.level_min_bars, bot.adapter.min_bars)
        equity_curve = [self.initial_capital]

        for i in range(start, len(signal_df)):
            bar = signal_df.iloc[i]
            now = pd.Timestamp(bar["time"]).to_pydatetime() + step
            gateway.set_price(float(bar["close"]), now=now)
            for timeframe, df in frames.items():
                gateway.set_klines(timeframe, self._closed_by(df, timeframe, now))
            try:
                bot.tick()
            except HedgeBotError as e:
                logger.warning("Backtest tick %d failed: %s", i, e)
            balance = gateway.get_account_balance().total
            unrealized = sum(p.unrealized_pnl for p in gateway.get_current_positions())
            equity_curve.append(balance + unrealized)

        # Close whatever is still open at the last close
        for manager in (bot.scalp, bot.positions):
            for position in manager.open_positions():
                manager.close(position, "end_of_data")
        if len(signal_df) > start:
            equity_curve.append(gateway.get_account_balance().total)

        positions = bot.positions.all_positions() + bot.scalp.all_positions()
        stats = compute_trading_stats(positions, self.initial_capital)
        logger.info(
            "Backtest finished: %d bars, %d trades, total pnl %.4f",
            max(0, len(signal_df) - start), stats.total_trades, stats.total_pnl,
        )
        return BacktestResult(positions=positions, equity_curve=equity_curve, stats=stats)
