"""
Exception hierarchy for the hedge bot.

Venue errors are raised by connectors and classified so the engine can
decide what is retryable:

    HedgeBotError
    ├── VenueError
    │   ├── VenueTransientError   timeout, 5xx, rate limit (retryable)
    │   ├── VenueAuthError        session/credentials rejected (never retried)
    │   └── OrderRejectedError    venue refused the order (retryable at round level)
    ├── InvalidTransitionError
    ├── BothLegsUnfilledError
    ├── OpenPositionsError
    └── NetPositionBreachError
"""

from __future__ import annotations

from typing import Optional


class HedgeBotError(Exception):
    """Base class for all hedge bot errors."""


class VenueError(HedgeBotError):
    """A venue call failed."""

    def __init__(self, venue: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(f"{venue}: {message}")
        self.venue = venue
        self.status = status


class VenueTransientError(VenueError):
    """Timeout, 5xx or rate limit. Safe to retry within the current operation."""


class VenueAuthError(VenueError):
    """Authentication or session expiry. Renewal is the connector's job."""


class OrderRejectedError(VenueError):
    """The venue refused a market order."""


class InvalidTransitionError(HedgeBotError):
    """Engine state machine was asked for a transition its table forbids."""


class BothLegsUnfilledError(HedgeBotError):
    """Neither leg filled inside the monitoring window."""


class OpenPositionsError(HedgeBotError):
    """Opening retries exhausted; the round is abandoned after an emergency close."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None) -> None:
        super().__init__(f"open failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class NetPositionBreachError(HedgeBotError):
    """Net exposure still exceeds the threshold after an emergency unwind."""

    def __init__(self, net_position: float, threshold: float) -> None:
        super().__init__(f"net position {net_position:.6f} exceeds {threshold} after unwind")
        self.net_position = net_position
        self.threshold = threshold
