"""
FillMonitor: decides whether each leg of a paired submission filled.

Market orders on these venues do not report fills synchronously, so fills
are inferred from position deltas: a leg counts as filled once its venue
position has moved by at least FILL_TOLERANCE x the expected size since the
pre-submission snapshot.

Polling:
    Sleep ``check_interval_ms``, poll both venues, return as soon as both
    legs are filled. Once ``timeout_ms`` has elapsed the last poll is final.
    There is always at least one poll. A failing poll counts as no progress;
    when every poll fails the outcome is returned with ``observed=False``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from hedgebot.connectors.base import VenueConnector
from hedgebot.core.types import FillOutcome, PositionSnapshot
from hedgebot.infra.logging_cfg import log_event

log = logging.getLogger("hedgebot")

FILL_TOLERANCE = 0.95


def leg_filled(before: float, now: float, expected_size: float) -> bool:
    return abs(now - before) >= FILL_TOLERANCE * expected_size


@dataclass
class FillMonitorConfig:
    """Configuration for FillMonitor."""
    timeout_ms: int = 5000
    check_interval_ms: int = 500
    log_event_callback: Optional[Callable[..., None]] = None


class FillMonitor:
    """
    Polls both venues after a paired submission.

    Usage:
        monitor = FillMonitor(venue_a, venue_b, FillMonitorConfig(timeout_ms=5000))
        outcome = await monitor.wait_for_fills(before, expected_size=0.01)
        if not outcome.both_filled:
            await recovery.recover(outcome, intent_a, intent_b)
    """

    def __init__(
        self,
        venue_a: VenueConnector,
        venue_b: VenueConnector,
        config: Optional[FillMonitorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.venue_a = venue_a
        self.venue_b = venue_b
        self.config = config or FillMonitorConfig()
        self._clock = clock
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        level = logging.DEBUG if event == "fill_poll" else logging.INFO
        log_event(log, event, level, **kwargs)

    async def _poll(self) -> Optional[PositionSnapshot]:
        try:
            read_a, read_b = await asyncio.gather(
                self.venue_a.read_position(),
                self.venue_b.read_position(),
            )
        except Exception as exc:
            self._log_event("fill_poll_failed", error=str(exc), error_type=type(exc).__name__)
            return None
        if not (read_a.ok and read_b.ok):
            # a failed read reports 0, which is not a position change
            self._log_event("fill_poll_failed", error="position unavailable", error_type="VenueError")
            return None
        return PositionSnapshot(read_a.value, read_b.value)

    async def wait_for_fills(
        self,
        before: PositionSnapshot,
        expected_size: float,
        timeout_ms: Optional[int] = None,
    ) -> FillOutcome:
        timeout_sec = (timeout_ms if timeout_ms is not None else self.config.timeout_ms) / 1000
        interval_sec = self.config.check_interval_ms / 1000
        start = self._clock()
        outcome = FillOutcome(False, False, observed=False)
        polls = 0

        while True:
            await asyncio.sleep(interval_sec)
            polls += 1
            now = await self._poll()
            if now is not None:
                delta_a = now.venue_a_position - before.venue_a_position
                delta_b = now.venue_b_position - before.venue_b_position
                outcome = FillOutcome(
                    venue_a_filled=leg_filled(before.venue_a_position, now.venue_a_position, expected_size),
                    venue_b_filled=leg_filled(before.venue_b_position, now.venue_b_position, expected_size),
                    venue_a_delta=delta_a,
                    venue_b_delta=delta_b,
                )
                self._log_event(
                    "fill_poll", poll=polls, delta_a=round(delta_a, 8), delta_b=round(delta_b, 8),
                    a_filled=outcome.venue_a_filled, b_filled=outcome.venue_b_filled,
                )
                if outcome.both_filled:
                    break
            if self._clock() - start >= timeout_sec:
                break

        self._log_event(
            "fill_check_done",
            polls=polls,
            elapsed_ms=int((self._clock() - start) * 1000),
            venue_a_filled=outcome.venue_a_filled,
            venue_b_filled=outcome.venue_b_filled,
            observed=outcome.observed,
        )
        return outcome
