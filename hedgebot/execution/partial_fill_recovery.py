"""
PartialFillRecovery: repairs a one-sided fill with a single compensating order.

When exactly one leg filled, the unfilled leg is re-submitted once on its
own venue, in its intended direction and size, as a fresh (not reduce-only)
market order. The alert goes out before anything else. Whether the retry
actually filled is left to the engine's post-open net correction.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from hedgebot.connectors.base import VenueConnector
from hedgebot.core.errors import BothLegsUnfilledError
from hedgebot.core.types import FillOutcome, Leg, OrderIntent, OrderReceipt
from hedgebot.infra.logging_cfg import CRITICAL_SAFETY, log_event
from hedgebot.monitoring.alerting import AlertManager
from hedgebot.monitoring.metrics import HedgeMetrics

log = logging.getLogger("hedgebot")


@dataclass
class PartialFillRecoveryConfig:
    """Configuration for PartialFillRecovery."""
    recovery_wait_sec: float = 1.0
    log_event_callback: Optional[Callable[..., None]] = None


class PartialFillRecovery:
    def __init__(
        self,
        venue_a: VenueConnector,
        venue_b: VenueConnector,
        alerts: AlertManager,
        config: Optional[PartialFillRecoveryConfig] = None,
        metrics: Optional[HedgeMetrics] = None,
    ) -> None:
        self.venue_a = venue_a
        self.venue_b = venue_b
        self.alerts = alerts
        self.metrics = metrics
        self.config = config or PartialFillRecoveryConfig()
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        level = CRITICAL_SAFETY if event == "partial_fill_detected" else logging.INFO
        log_event(log, event, level, **kwargs)

    def _venue(self, leg: Leg) -> VenueConnector:
        return self.venue_a if leg is Leg.A else self.venue_b

    async def recover(
        self,
        outcome: FillOutcome,
        leg_a_intent: OrderIntent,
        leg_b_intent: OrderIntent,
    ) -> Optional[OrderReceipt]:
        """
        Returns:
            The compensating order's receipt, or None when both legs filled.

        Raises:
            BothLegsUnfilledError: neither leg filled; the caller retries the open.
            VenueError: the compensating order itself failed.
        """
        if outcome.both_filled:
            return None

        self._log_event(
            "partial_fill_detected",
            venue_a=self.venue_a.name,
            venue_a_filled=outcome.venue_a_filled,
            venue_a_delta=round(outcome.venue_a_delta, 8),
            venue_b=self.venue_b.name,
            venue_b_filled=outcome.venue_b_filled,
            venue_b_delta=round(outcome.venue_b_delta, 8),
        )
        await self.alerts.alert_partial_fill(
            self.venue_a.name, outcome.venue_a_filled,
            self.venue_b.name, outcome.venue_b_filled,
        )

        if not outcome.venue_a_filled and not outcome.venue_b_filled:
            raise BothLegsUnfilledError(
                f"neither {self.venue_a.name} nor {self.venue_b.name} filled "
                f"{leg_a_intent.size} within the fill window"
            )

        missing = leg_b_intent if outcome.venue_a_filled else leg_a_intent
        filled_leg = missing.leg.other
        if self.metrics is not None:
            self.metrics.partial_fills.labels(filled_leg=filled_leg.value).inc()

        venue = self._venue(missing.leg)
        self._log_event(
            "partial_fill_recovery_order",
            venue=venue.name,
            side=missing.direction.value,
            size=missing.size,
        )
        receipt = await venue.submit_market_order(missing.direction, missing.size, reduce_only=False)
        if self.metrics is not None:
            self.metrics.orders_submitted.labels(
                venue=venue.name, side=missing.direction.value, reduce_only="false",
            ).inc()

        await asyncio.sleep(self.config.recovery_wait_sec)
        self._log_event("partial_fill_recovered", venue=venue.name, order_id=receipt.order_id)
        return receipt
