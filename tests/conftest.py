"""
Pytest configuration and fixtures.

Adds the repo root to sys.path so tests can import ``hedgebot`` without an
install, and provides in-memory venues that move their position when an
order is accepted.
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional
from unittest.mock import MagicMock

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from hedgebot.core.types import OrderReceipt, PositionRead, Side, VenueOrderRecord  # noqa: E402
from hedgebot.monitoring.alerting import AlertManager  # noqa: E402


class FakeVenue:
    """
    Stand-in for a VenueConnector.

    ``fill_ratio`` controls how much of each accepted order moves the
    position (1.0 = full fill, 0.0 = accepted but never filled);
    ``fill_ratios`` overrides it for the next orders, in order.
    ``submit_errors`` are raised, in order, by the next submissions (None
    accepts that submission).
    ``read_outcomes`` decides, in order, whether the next position reads
    succeed (False = failed read reporting 0); after that ``query_fails``
    applies to every read.
    """

    def __init__(self, name: str, position: float = 0.0, fill_ratio: float = 1.0) -> None:
        self.name = name
        self.position = position
        self.fill_ratio = fill_ratio
        self.fill_ratios: List[float] = []
        self.query_fails = False
        self.read_outcomes: List[bool] = []
        self.read_delay = 0.0
        self.query_error: Optional[Exception] = None
        self.submit_errors: List[Optional[Exception]] = []
        self.orders: List[dict] = []
        self.history: List[VenueOrderRecord] = []
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    async def read_position(self) -> PositionRead:
        if self.query_error is not None:
            raise self.query_error
        ok = self.read_outcomes.pop(0) if self.read_outcomes else not self.query_fails
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        if not ok:
            return PositionRead(0.0, ok=False)
        return PositionRead(self.position)

    async def current_position(self) -> float:
        return (await self.read_position()).value

    async def submit_market_order(self, direction: Side, size: float, reduce_only: bool = False) -> OrderReceipt:
        error = self.submit_errors.pop(0) if self.submit_errors else None
        if error is not None:
            raise error
        self.orders.append({"side": direction, "size": size, "reduce_only": reduce_only})
        ratio = self.fill_ratios.pop(0) if self.fill_ratios else self.fill_ratio
        self.position += direction.sign * size * ratio
        return OrderReceipt(self.name, f"{self.name}-{len(self.orders)}", direction, size, reduce_only)

    async def recent_orders(self, limit: int = 10) -> List[VenueOrderRecord]:
        return list(self.history[:limit])

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def venue_a():
    return FakeVenue("paradex")


@pytest.fixture
def venue_b():
    return FakeVenue("lighter")


@pytest.fixture
def alerts():
    mock = MagicMock(spec=AlertManager)
    mock.sent_count = 0
    return mock
