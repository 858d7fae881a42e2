"""Strategies: base interface, hedge-cycle signal engine and scalp sub-engine."""

from hedge_bot.strategies.base import BaseStrategy
from hedge_bot.strategies.hedge import HedgeSignalEngine
from hedge_bot.strategies.scalp import ScalpSubEngine

__all__ = ["BaseStrategy", "HedgeSignalEngine", "ScalpSubEngine"]
