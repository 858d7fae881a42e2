"""
Risk manager: balance cache, per-role position sizing and the available-capital check.

Quantity = role_fraction * effective_balance * leverage / price, rounded down to the
exchange lot step. The effective balance is the total wallet balance, cached for
`cache_ttl` seconds and invalidated after every open or close.
"""

from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from hedge_bot.core.errors import ExchangeError
from hedge_bot.execution.base import Balance, ExchangeGateway
from hedge_bot.utils.exchange_filters import SymbolFilters

logger = logging.getLogger("hedge_bot.risk")


@dataclass
class RiskResult:
    """Result of sizing: allowed with a quantity, or rejected with a reason."""
    allowed: bool
    quantity: float = 0.0
    margin: float = 0.0
    reason: str = ""


class RiskManager:
    """Sizes positions from the role fraction and checks there is margin to back them."""

    def __init__(
        self,
        gateway: ExchangeGateway,
        base_balance: float,
        cache_ttl: float = 30.0,
        symbol_info: Optional[dict] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.base_balance = base_balance
        self.cache_ttl = cache_ttl
        self._clock = clock
        self.filters = SymbolFilters.from_symbol_info(symbol_info)
        self._cached: Optional[Balance] = None
        self._cached_at: float = 0.0

    def update_symbol_info(self, symbol_info: Optional[dict]) -> None:
        """Update lot/price filters when symbol or exchange info changes."""
        self.filters = SymbolFilters.from_symbol_info(symbol_info)

    def invalidate(self) -> None:
        self._cached_at = 0.0

    def balance(self) -> Balance:
        """
        Cached balance. On a fetch failure falls back to the last cached value, then to
        the configured base balance.
        """
        now = self._clock()
        if self._cached is not None and self._cached_at and now - self._cached_at < self.cache_ttl:
            return self._cached
        try:
            fresh = self.gateway.get_account_balance()
        except ExchangeError as e:
            if self._cached is not None:
                logger.warning("Balance fetch failed, using last cached %.2f: %s", self._cached.total, e)
                return self._cached
            logger.warning("Balance fetch failed, using base balance %.2f: %s", self.base_balance, e)
            return Balance(total=self.base_balance, available=self.base_balance)
        self._cached = fresh
        self._cached_at = now
        logger.debug("Balance updated: total=%.2f available=%.2f", fresh.total, fresh.available)
        return fresh

    def effective_balance(self) -> float:
        total = self.balance().total
        return total if total > 0 else self.base_balance

    def size_position(self, fraction: float, leverage: float, price: float) -> RiskResult:
        """Quantity for a role's fraction of the balance at `leverage`, checked against available margin."""
        if price <= 0 or leverage <= 0:
            return RiskResult(allowed=False, reason="invalid price or leverage")
        balance = self.balance()
        effective = balance.total if balance.total > 0 else self.base_balance
        margin = fraction * effective
        qty = self.filters.round_quantity(margin * leverage / price)
        if qty <= 0:
            return RiskResult(allowed=False, reason="qty rounded to 0")
        margin = qty * price / leverage
        if margin > balance.available:
            logger.warning("Insufficient capital: margin %.2f > available %.2f", margin, balance.available)
            return RiskResult(allowed=False, quantity=qty, margin=margin, reason="insufficient available capital")
        logger.info(
            "Position sizing: fraction=%.2f balance=%.2f leverage=%sx price=%.6f -> qty=%s (margin %.2f)",
            fraction, effective, leverage, price, qty, margin,
        )
        return RiskResult(allowed=True, quantity=qty, margin=margin)
