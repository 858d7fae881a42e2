"""Binance kline interval strings ('15m', '1h', '4h', '1d') as durations."""

from datetime import timedelta

_UNIT_MINUTES = {"m": 1, "h": 60, "d": 60 * 24}


def timeframe_minutes(tf: str) -> int:
    """Minutes in one bar of `tf`. Raises ValueError for intervals the bot does not trade."""
    tf = tf.strip().lower()
    unit = _UNIT_MINUTES.get(tf[-1:])
    if unit is None or not tf[:-1].isdigit():
        raise ValueError(f"Unsupported timeframe: {tf}")
    return int(tf[:-1]) * unit


def timeframe_delta(tf: str) -> timedelta:
    return timedelta(minutes=timeframe_minutes(tf))
