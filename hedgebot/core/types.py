"""
Canonical value types shared by the engine, monitors and connectors.

Connectors translate venue-specific payloads into these shapes; nothing
downstream of a connector sees venue field names.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


class Side(Enum):
    """Order direction."""
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY

    @property
    def sign(self) -> int:
        return 1 if self is Side.BUY else -1

    @classmethod
    def closing(cls, position: float) -> "Side":
        """Side that reduces a signed position (long -> sell, short -> buy)."""
        return cls.SELL if position > 0 else cls.BUY


class Leg(Enum):
    """Which venue slot a leg belongs to."""
    A = "a"
    B = "b"

    @property
    def other(self) -> "Leg":
        return Leg.B if self is Leg.A else Leg.A


@dataclass(frozen=True)
class PositionRead:
    """
    Result of one position query.

    ``ok`` is False when the query failed and ``value`` is the 0.0
    placeholder; callers must not treat that as a flat position.
    """
    value: float
    ok: bool = True


@dataclass(frozen=True)
class PositionSnapshot:
    """Signed positions on both venues at one observation."""
    venue_a_position: float
    venue_b_position: float
    timestamp_ms: int = field(default_factory=now_ms)

    @property
    def net_position(self) -> float:
        return self.venue_a_position + self.venue_b_position

    def position(self, leg: Leg) -> float:
        return self.venue_a_position if leg is Leg.A else self.venue_b_position

    def to_dict(self) -> Dict[str, float]:
        return {
            "venue_a": round(self.venue_a_position, 8),
            "venue_b": round(self.venue_b_position, 8),
            "net": round(self.net_position, 8),
        }


@dataclass(frozen=True)
class OrderIntent:
    """One leg's market order for a round. Immutable once submitted."""
    leg: Leg
    direction: Side
    size: float
    reduce_only: bool = False

    def __post_init__(self) -> None:
        if not self.size > 0:
            raise ValueError(f"order size must be positive, got {self.size}")


@dataclass(frozen=True)
class OrderReceipt:
    """Acknowledgement returned by a connector after submission."""
    venue: str
    order_id: Optional[str]
    direction: Side
    size: float
    reduce_only: bool
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class FillOutcome:
    """
    Fill classification of a paired submission.

    ``observed`` is False when no poll in the fill window read both venues,
    so the filled flags carry no information.
    """
    venue_a_filled: bool
    venue_b_filled: bool
    venue_a_delta: float = 0.0
    venue_b_delta: float = 0.0
    observed: bool = True

    @property
    def both_filled(self) -> bool:
        return self.venue_a_filled and self.venue_b_filled

    def filled(self, leg: Leg) -> bool:
        return self.venue_a_filled if leg is Leg.A else self.venue_b_filled


@dataclass(frozen=True)
class VenueOrderRecord:
    """
    Normalized historical order.

    Exactly one of ``price`` / ``filled_quote`` is normally set: venues that
    report an average fill price use ``price``, venues that report the filled
    notional use ``filled_quote``. ``reduce_only`` is None when the venue does
    not expose the flag.
    """
    side: Side
    size: float
    price: Optional[float] = None
    filled_quote: Optional[float] = None
    reduce_only: Optional[bool] = None
    timestamp_ms: int = 0

    @property
    def notional(self) -> float:
        if self.filled_quote is not None:
            return self.filled_quote
        if self.price is None:
            return 0.0
        return self.price * self.size


@dataclass(frozen=True)
class RoundRecord:
    """Realized PnL of one completed round."""
    round_number: int
    venue_a_pnl: float
    venue_b_pnl: float
    total_pnl: float
    timestamp_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round": self.round_number,
            "venue_a_pnl": self.venue_a_pnl,
            "venue_b_pnl": self.venue_b_pnl,
            "total_pnl": self.total_pnl,
            "timestamp_ms": self.timestamp_ms,
        }


@dataclass(frozen=True)
class RiskThresholds:
    """Risk limits, fixed for the lifetime of the process."""
    max_net_position: float
    max_position_deviation: float
    price_slippage_tolerance: float
