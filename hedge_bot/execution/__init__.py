"""Execution: exchange gateway abstraction, Binance Futures and paper implementations."""

from hedge_bot.execution.base import Balance, ExchangeGateway, ExchangePosition
from hedge_bot.execution.binance_futures import BinanceFuturesGateway
from hedge_bot.execution.paper import PaperGateway

__all__ = ["Balance", "ExchangeGateway", "ExchangePosition", "BinanceFuturesGateway", "PaperGateway"]
