"""
RiskMonitor: periodic, observational net-exposure check.

Runs beside the round loop as its own task. Each tick reads both venue
positions, logs them and alerts when the net exceeds the configured
threshold. It never places orders; enforcement belongs to the engine's
pre-round rebalance check.

Usage:
    monitor = RiskMonitor(venue_a, venue_b, thresholds, alerts)
    task = asyncio.create_task(monitor.run())
    ...
    monitor.stop()
    await task
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from hedgebot.connectors.base import VenueConnector
from hedgebot.core.errors import VenueAuthError
from hedgebot.core.types import PositionSnapshot, RiskThresholds
from hedgebot.infra.logging_cfg import log_event
from hedgebot.monitoring.alerting import AlertManager
from hedgebot.monitoring.metrics import HedgeMetrics

log = logging.getLogger("hedgebot")


@dataclass
class RiskMonitorConfig:
    """Configuration for RiskMonitor."""
    interval_sec: float = 300.0
    log_event_callback: Optional[Callable[..., None]] = None


class RiskMonitor:
    def __init__(
        self,
        venue_a: VenueConnector,
        venue_b: VenueConnector,
        thresholds: RiskThresholds,
        alerts: AlertManager,
        config: Optional[RiskMonitorConfig] = None,
        metrics: Optional[HedgeMetrics] = None,
    ) -> None:
        self.venue_a = venue_a
        self.venue_b = venue_b
        self.thresholds = thresholds
        self.alerts = alerts
        self.metrics = metrics
        self.config = config or RiskMonitorConfig()
        self._log_event = self.config.log_event_callback or self._default_log
        self._stop = asyncio.Event()
        self.last_snapshot: Optional[PositionSnapshot] = None
        self._stats = {"checks": 0, "breaches": 0, "deviation_warnings": 0, "errors": 0}

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log_event(log, event, level, **kwargs)

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def run(self) -> None:
        self._log_event("risk_monitor_started", interval_sec=self.config.interval_sec)
        while not self._stop.is_set():
            try:
                await self.check()
            except Exception as exc:
                self._stats["errors"] += 1
                self._log_event("risk_check_error", logging.ERROR, error=str(exc), error_type=type(exc).__name__)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.config.interval_sec)
            except asyncio.TimeoutError:
                pass
        self._log_event("risk_monitor_stopped", checks=self._stats["checks"])

    async def check(self) -> Optional[PositionSnapshot]:
        """
        One observation. Returns the snapshot, or None when a venue could not
        be read (a failed read reports 0 and would fake a breach).
        """
        self._stats["checks"] += 1
        try:
            read_a, read_b = await asyncio.gather(
                self.venue_a.read_position(),
                self.venue_b.read_position(),
            )
        except VenueAuthError as exc:
            self._log_event("risk_check_skipped", logging.WARNING, reason="auth", error=str(exc))
            return None
        if not (read_a.ok and read_b.ok):
            self._log_event(
                "risk_check_skipped", logging.WARNING, reason="position_unavailable",
                venue_a_ok=read_a.ok, venue_b_ok=read_b.ok,
            )
            return None

        pos_a, pos_b = read_a.value, read_b.value
        snap = PositionSnapshot(pos_a, pos_b)
        self.last_snapshot = snap
        if self.metrics is not None:
            self.metrics.observe_positions(self.venue_a.name, self.venue_b.name, snap)

        net_abs = abs(snap.net_position)
        self._log_event("risk_check", **snap.to_dict())

        if net_abs > self.thresholds.max_net_position:
            self._stats["breaches"] += 1
            self._log_event(
                "net_position_breach", logging.WARNING,
                net=round(snap.net_position, 8), threshold=self.thresholds.max_net_position,
                **{self.venue_a.name: round(pos_a, 8), self.venue_b.name: round(pos_b, 8)},
            )
            await self.alerts.alert_net_position(
                snap.net_position, self.thresholds.max_net_position,
                **{self.venue_a.name: round(pos_a, 8), self.venue_b.name: round(pos_b, 8)},
            )

        if net_abs > self.thresholds.max_position_deviation:
            self._stats["deviation_warnings"] += 1
            self._log_event(
                "position_deviation", logging.WARNING,
                deviation=round(net_abs, 8), threshold=self.thresholds.max_position_deviation,
            )
        return snap
