"""Analytics: trading statistics over closed positions."""

from hedge_bot.analytics.metrics import TradingStats, compute_trading_stats

__all__ = ["TradingStats", "compute_trading_stats"]
