"""Levels: dynamic support/resistance learning."""

from hedge_bot.levels.learner import LevelLearner, find_pivots, strength_for

__all__ = ["LevelLearner", "find_pivots", "strength_for"]
