"""
LivenessMonitor: checks every ``interval_sec`` that both venues answer a
position query. Purely informational: it logs, alerts on the transition to
unhealthy and drives the ``venue_up`` gauge.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from hedgebot.connectors.base import VenueConnector
from hedgebot.infra.logging_cfg import log_event
from hedgebot.monitoring.alerting import AlertManager
from hedgebot.monitoring.metrics import HedgeMetrics

log = logging.getLogger("hedgebot")


@dataclass
class LivenessMonitorConfig:
    """Configuration for LivenessMonitor."""
    interval_sec: float = 60.0
    check_timeout_sec: float = 15.0
    log_event_callback: Optional[Callable[..., None]] = None


class LivenessMonitor:
    def __init__(
        self,
        venue_a: VenueConnector,
        venue_b: VenueConnector,
        alerts: Optional[AlertManager] = None,
        config: Optional[LivenessMonitorConfig] = None,
        metrics: Optional[HedgeMetrics] = None,
    ) -> None:
        self.venues = (venue_a, venue_b)
        self.alerts = alerts
        self.metrics = metrics
        self.config = config or LivenessMonitorConfig()
        self._log_event = self.config.log_event_callback or self._default_log
        self._stop = asyncio.Event()
        self.status: Dict[str, bool] = {v.name: True for v in self.venues}

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log_event(log, event, level, **kwargs)

    def stop(self) -> None:
        self._stop.set()

    @property
    def healthy(self) -> bool:
        return all(self.status.values())

    async def run(self) -> None:
        while not self._stop.is_set():
            await self.check()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.config.interval_sec)
            except asyncio.TimeoutError:
                pass

    async def _check_venue(self, venue: VenueConnector) -> Optional[str]:
        """None when healthy, otherwise a short reason."""
        try:
            read = await asyncio.wait_for(venue.read_position(), timeout=self.config.check_timeout_sec)
        except asyncio.TimeoutError:
            return "timeout"
        except Exception as exc:
            return f"{type(exc).__name__}: {exc}"
        if not read.ok:
            return "position query failed"
        return None

    async def check(self) -> Dict[str, bool]:
        results = await asyncio.gather(*(self._check_venue(v) for v in self.venues))
        for venue, error in zip(self.venues, results):
            ok = error is None
            was_ok = self.status.get(venue.name, True)
            self.status[venue.name] = ok
            if self.metrics is not None:
                self.metrics.venue_up.labels(venue=venue.name).set(1 if ok else 0)
            if not ok:
                self._log_event("venue_unhealthy", logging.WARNING, venue=venue.name, error=error)
                if was_ok and self.alerts is not None:
                    await self.alerts.alert_venue_unhealthy(venue.name, error or "unreachable")
            elif not was_ok:
                self._log_event("venue_recovered", venue=venue.name)

        if self.healthy:
            self._log_event("health_check_ok", logging.DEBUG)
        return dict(self.status)
