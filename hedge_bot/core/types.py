"""
Core data types for bars, positions, learned levels and trading signals.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is Side.LONG else -1

    @property
    def opposite(self) -> "Side":
        return Side.SHORT if self is Side.LONG else Side.LONG

    @property
    def order_side(self) -> str:
        """Binance order side that opens exposure on this side."""
        return "BUY" if self is Side.LONG else "SELL"


class Role(str, Enum):
    ANCHOR = "ANCHOR"
    ANCHOR_HEDGE = "ANCHOR_HEDGE"
    OPPORTUNITY = "OPPORTUNITY"
    OPPORTUNITY_HEDGE = "OPPORTUNITY_HEDGE"
    SCALP = "SCALP"
    SCALP_HEDGE = "SCALP_HEDGE"

    @property
    def is_primary(self) -> bool:
        return self in PRIMARY_ROLES

    @property
    def is_hedge(self) -> bool:
        return self in HEDGE_FOR


PRIMARY_ROLES = frozenset({Role.ANCHOR, Role.OPPORTUNITY, Role.SCALP})

# hedge role -> primary role it protects
HEDGE_FOR = {
    Role.ANCHOR_HEDGE: Role.ANCHOR,
    Role.OPPORTUNITY_HEDGE: Role.OPPORTUNITY,
    Role.SCALP_HEDGE: Role.SCALP,
}
HEDGE_OF = {primary: hedge for hedge, primary in HEDGE_FOR.items()}


class SignalKind(str, Enum):
    ENTRY = "ENTRY"
    HEDGE = "HEDGE"
    RE_ENTRY = "RE_ENTRY"
    EXIT = "EXIT"


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class LevelType(str, Enum):
    SUPPORT = "SUPPORT"
    RESISTANCE = "RESISTANCE"


@dataclass
class Bar:
    """OHLCV candle."""
    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass
class Position:
    """Leveraged exposure record. Mutated only by the lifecycle managers."""
    id: str
    side: Side
    role: Role
    size: float
    entry_price: float
    leverage: float
    open_time: datetime
    symbol: str = ""
    status: PositionStatus = PositionStatus.OPEN
    close_time: Optional[datetime] = None
    exit_price: Optional[float] = None
    pnl: Optional[float] = None
    paired_id: Optional[str] = None
    take_profit_price: Optional[float] = None
    close_reason: str = ""

    @property
    def is_open(self) -> bool:
        return self.status is PositionStatus.OPEN


@dataclass
class DynamicLevel:
    """Learned support/resistance price scored by touch count."""
    price: float
    type: LevelType
    strength: float
    touches: int
    last_touch: datetime

    @property
    def importance(self) -> str:
        if self.strength >= 0.8:
            return "CRITICAL"
        if self.strength >= 0.6:
            return "HIGH"
        if self.strength >= 0.4:
            return "MEDIUM"
        return "LOW"


@dataclass
class TradingSignal:
    """Engine output, not persisted. `role` is the role the signal opens or closes."""
    kind: SignalKind
    side: Side
    role: Role
    price: float
    confidence: float
    reason: str
    timestamp: datetime
    position_id: Optional[str] = None
    level_price: Optional[float] = None
    metadata: dict = field(default_factory=dict)
