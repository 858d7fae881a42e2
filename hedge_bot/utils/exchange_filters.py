"""LOT_SIZE / PRICE_FILTER rules of a futures symbol, read from exchange info."""

from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SymbolFilters:
    min_qty: float = 0.001
    lot_step: float = 0.0001
    price_tick: float = 0.0001

    @classmethod
    def from_symbol_info(cls, symbol_info: Optional[dict]) -> "SymbolFilters":
        """Filters from a `futures_exchange_info()` symbol entry. Defaults when missing."""
        if not symbol_info:
            return cls()
        values = {}
        for f in symbol_info.get("filters", []):
            if f.get("filterType") == "LOT_SIZE":
                values["min_qty"] = float(f.get("minQty", cls.min_qty))
                values["lot_step"] = float(f.get("stepSize", cls.lot_step))
            elif f.get("filterType") == "PRICE_FILTER":
                values["price_tick"] = float(f.get("tickSize", cls.price_tick))
        return cls(**values)

    def round_quantity(self, qty: float) -> float:
        """Round down to the lot step; 0 when below min_qty."""
        if qty <= 0:
            return 0.0
        # float noise just under a step boundary still counts as that step
        rounded = math.floor(qty / self.lot_step + 1e-9) * self.lot_step
        if rounded < self.min_qty:
            return 0.0
        return round(rounded, 8)

    def round_price(self, price: float) -> float:
        return round(round(price / self.price_tick) * self.price_tick, 8)
