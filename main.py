#!/usr/bin/env python3
"""
Hedge Bot CLI: live | paper | backtest | stop
Usage:
  python main.py live [--config config.yaml]
  python main.py paper [--config config.yaml]
  python main.py backtest [--config config.yaml]
  python main.py stop [--config config.yaml]
"""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

# Project root
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from hedge_bot.backtesting.engine import BacktestEngine
from hedge_bot.bot import HedgeBot
from hedge_bot.core.config import Config, load_config
from hedge_bot.core.errors import ConfigError, HedgeBotError
from hedge_bot.core.logger import setup_logging
from hedge_bot.execution.binance_futures import BinanceFuturesGateway
from hedge_bot.execution.paper import PaperGateway

logger = logging.getLogger("hedge_bot")


def _setup(config_path: Optional[Path]) -> Config:
    config = load_config(config_path, ROOT)
    setup_logging(config.log_level, config.log_dir, config.log_file)
    return config


def _live_gateway(config: Config) -> BinanceFuturesGateway:
    return BinanceFuturesGateway(
        config.binance_api_key,
        config.binance_api_secret,
        config.symbol,
        testnet=config.use_testnet,
    )


def run_live(config: Config) -> int:
    """Trade on Binance Futures (testnet unless USE_TESTNET=false)."""
    if not config.binance_api_key or not config.binance_api_secret:
        logger.error("Missing BINANCE_API_KEY or BINANCE_API_SECRET in .env")
        return 1
    bot = HedgeBot(config, _live_gateway(config))
    bot.run()
    return 0


def run_paper(config: Config) -> int:
    """Live market data, simulated fills."""
    market = BinanceFuturesGateway(
        config.binance_api_key, config.binance_api_secret, config.symbol,
        testnet=config.use_testnet, hedge_mode=False,
    )
    gateway = PaperGateway(symbol=config.symbol, initial_balance=config.base_balance, market=market)
    bot = HedgeBot(config, gateway)
    bot.run()
    stats = bot.trading_stats()
    logger.info("Paper session: %d trades, total pnl %.4f", stats.total_trades, stats.total_pnl)
    return 0


def run_backtest(config: Config) -> int:
    """Fetch history for every timeframe and replay it."""
    market = BinanceFuturesGateway(
        config.binance_api_key, config.binance_api_secret, config.symbol,
        testnet=config.use_testnet, hedge_mode=False,
    )
    frames = {
        config.trend_timeframe: market.get_klines(config.trend_timeframe, config.trend_bars),
        config.signal_timeframe: market.get_klines(config.signal_timeframe, config.backtest_bars),
    }
    if config.scalp_enabled:
        frames.setdefault(config.scalp_timeframe, market.get_klines(config.scalp_timeframe, 1500))
    engine = BacktestEngine(config, symbol_info=market.get_symbol_info())
    result = engine.run(frames)
    s = result.stats
    if s:
        print("\n--- Backtest Results ---")
        print(f"Total trades: {s.total_trades} (wins: {s.winning_trades}, losses: {s.losing_trades})")
        print(f"Total PnL: {s.total_pnl:.4f}")
        print(f"Max drawdown: {s.max_drawdown_pct:.2f}%")
        print(f"Win rate: {s.win_rate*100:.1f}%")
        print(f"Profit factor: {s.profit_factor:.2f}")
        print(f"Expectancy: {s.expectancy:.4f} USD/trade")
        print(f"Average win / loss: {s.average_win:.4f} / {s.average_loss:.4f}")
        for role, pnl in sorted(s.pnl_by_role.items()):
            print(f"  {role}: {pnl:.4f}")
    return 0


def run_stop(config: Config) -> int:
    """Emergency stop: market-close every position on the symbol."""
    if not config.binance_api_key or not config.binance_api_secret:
        logger.error("Missing BINANCE_API_KEY or BINANCE_API_SECRET in .env")
        return 1
    gateway = _live_gateway(config)
    bot = HedgeBot(config, gateway)
    # A fresh process has no local table: adopt the exchange exposure per side first
    adopted = bot.positions.adopt_exchange_positions(gateway.get_current_positions())
    logger.warning("Emergency stop for %s: %d exchange positions", config.symbol, len(adopted))
    failed = bot.emergency_stop()
    return 1 if failed else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Hedge Bot CLI")
    parser.add_argument("mode", choices=["live", "paper", "backtest", "stop"], help="Run mode")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    args = parser.parse_args()
    try:
        config = _setup(args.config)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2
    runners = {"live": run_live, "paper": run_paper, "backtest": run_backtest, "stop": run_stop}
    try:
        return runners[args.mode](config)
    except HedgeBotError as e:
        logger.error("%s failed: %s", args.mode, e)
        return 1


if __name__ == "__main__":
    exit(main())
