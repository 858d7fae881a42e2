"""Risk management: balance cache, position sizing, capital check."""

from hedge_bot.risk.manager import RiskManager, RiskResult

__all__ = ["RiskManager", "RiskResult"]
