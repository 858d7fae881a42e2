"""Backtesting engine: bar-by-bar replay through the orchestration loop."""

from hedge_bot.backtesting.engine import BacktestEngine, BacktestResult

__all__ = ["BacktestEngine", "BacktestResult"]
