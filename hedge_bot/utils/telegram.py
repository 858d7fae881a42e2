"""
Telegram notifications for position events. Never log token or chat_id.

Delivery is best effort: a failed send is logged and reported as False, it never
interrupts a tick.
"""

from __future__ import annotations
import logging

import requests

from hedge_bot.core.types import Position, TradingSignal

logger = logging.getLogger("hedge_bot.utils.telegram")

API_URL = "https://api.telegram.org/bot{token}/sendMessage"


def send_telegram(text: str, bot_token: str = "", chat_id: str = "") -> bool:
    """Send a message. Returns True on success, False when unconfigured or on failure."""
    if not bot_token or not chat_id:
        logger.debug("Telegram not configured, skipping message (len=%d)", len(text))
        return False
    try:
        r = requests.post(API_URL.format(token=bot_token), json={"chat_id": chat_id, "text": text}, timeout=10)
    except requests.RequestException as e:
        logger.warning("Telegram send failed: %s", type(e).__name__)
        return False
    if r.status_code != 200:
        logger.warning("Telegram send failed: %s %s", r.status_code, r.text[:200])
        return False
    return True


def format_open(symbol: str, signal: TradingSignal, position: Position) -> str:
    return (
        f"{symbol} {signal.kind.value} {position.role.value} {position.side.value} "
        f"size={position.size} @ {position.entry_price:.6f} {position.leverage}x | {signal.reason}"
    )


def format_close(symbol: str, position: Position) -> str:
    return (
        f"{symbol} closed {position.role.value} {position.side.value} "
        f"@ {position.exit_price:.6f} pnl={position.pnl:.4f} ({position.close_reason})"
    )
