"""Utils: Telegram, timeframes, exchange filters."""

from hedge_bot.utils.telegram import send_telegram
from hedge_bot.utils.timeframes import timeframe_delta, timeframe_minutes

__all__ = ["send_telegram", "timeframe_delta", "timeframe_minutes"]
