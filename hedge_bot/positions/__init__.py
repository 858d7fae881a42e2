"""Position lifecycle: main hedge cycle and scalp variant."""

from hedge_bot.positions.manager import PositionManager
from hedge_bot.positions.scalp import HedgeLevel, ScalpLifecycle

__all__ = ["PositionManager", "HedgeLevel", "ScalpLifecycle"]
