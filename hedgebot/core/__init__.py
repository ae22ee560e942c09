"""
Core package: value types, error hierarchy and JSON helpers shared by every
other layer.
"""

from hedgebot.core.errors import (
    BothLegsUnfilledError,
    HedgeBotError,
    InvalidTransitionError,
    NetPositionBreachError,
    OpenPositionsError,
    OrderRejectedError,
    VenueAuthError,
    VenueError,
    VenueTransientError,
)
from hedgebot.core.types import (
    FillOutcome,
    Leg,
    OrderIntent,
    OrderReceipt,
    PositionRead,
    PositionSnapshot,
    RiskThresholds,
    RoundRecord,
    Side,
    VenueOrderRecord,
    now_ms,
)

__all__ = [
    "BothLegsUnfilledError",
    "HedgeBotError",
    "InvalidTransitionError",
    "NetPositionBreachError",
    "OpenPositionsError",
    "OrderRejectedError",
    "VenueAuthError",
    "VenueError",
    "VenueTransientError",
    "FillOutcome",
    "Leg",
    "OrderIntent",
    "OrderReceipt",
    "PositionRead",
    "PositionSnapshot",
    "RiskThresholds",
    "RoundRecord",
    "Side",
    "VenueOrderRecord",
    "now_ms",
]
