"""
PnLAccountant: realized PnL per round, reconstructed from venue order history.

Venue order history carries no round identifier, so the most recent
open/close pair is inferred from the newest-first records:

    flag grouping       every record says whether it was reduce-only. Leading
                        reduce-only records are the close cluster, the
                        following non-reduce-only records the open cluster;
                        the next reduce-only record ends the scan.
    direction grouping  otherwise. The first same-side run is the close
                        cluster, the next (opposite) run the open cluster;
                        a third run ends the scan.

A pair whose clusters have equal size and share one direction is not a real
open/close and is rejected. Rejections, short histories and failures all
report 0: the figure is observability, never a control input.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from hedgebot.connectors.base import VenueConnector
from hedgebot.core.types import RoundRecord, Side, VenueOrderRecord
from hedgebot.infra.logging_cfg import log_event
from hedgebot.monitoring.alerting import AlertManager
from hedgebot.monitoring.metrics import HedgeMetrics

log = logging.getLogger("hedgebot")

SIZE_EPSILON = 1e-9


@dataclass(frozen=True)
class VenuePnL:
    """Result of grouping one venue's history."""
    pnl: float = 0.0
    mode: Optional[str] = None  # "flag" or "direction"
    open_count: int = 0
    close_count: int = 0
    open_size: float = 0.0
    close_size: float = 0.0
    open_notional: float = 0.0
    close_notional: float = 0.0
    open_side: Optional[Side] = None
    rejected: Optional[str] = None

    @property
    def open_price(self) -> float:
        return self.open_notional / self.open_size if self.open_size > 0 else 0.0

    @property
    def close_price(self) -> float:
        return self.close_notional / self.close_size if self.close_size > 0 else 0.0


def _group_by_flag(orders: Sequence[VenueOrderRecord]) -> Tuple[List[VenueOrderRecord], List[VenueOrderRecord]]:
    close: List[VenueOrderRecord] = []
    open_: List[VenueOrderRecord] = []
    for order in orders:
        if not open_:
            if order.reduce_only:
                close.append(order)
            else:
                open_.append(order)
        elif not order.reduce_only:
            open_.append(order)
        else:
            break
    return close, open_


def _group_by_direction(orders: Sequence[VenueOrderRecord]) -> Tuple[List[VenueOrderRecord], List[VenueOrderRecord]]:
    runs: List[List[VenueOrderRecord]] = []
    for order in orders:
        if runs and runs[-1][0].side is order.side:
            runs[-1].append(order)
        elif len(runs) == 2:
            break
        else:
            runs.append([order])
    close = runs[0] if runs else []
    open_ = runs[1] if len(runs) > 1 else []
    return close, open_


def group_orders(orders: Sequence[VenueOrderRecord]) -> Tuple[str, List[VenueOrderRecord], List[VenueOrderRecord]]:
    """Split newest-first history into (mode, close cluster, open cluster)."""
    if all(o.reduce_only is not None for o in orders):
        return ("flag",) + _group_by_flag(orders)
    return ("direction",) + _group_by_direction(orders)


def compute_venue_pnl(orders: Sequence[VenueOrderRecord]) -> VenuePnL:
    """Realized PnL of the newest open/close pair in ``orders`` (newest first)."""
    if len(orders) < 2:
        return VenuePnL(rejected="insufficient_history")

    mode, close, open_ = group_orders(orders)
    if not close or not open_:
        return VenuePnL(mode=mode, open_count=len(open_), close_count=len(close), rejected="empty_cluster")

    open_size = sum(o.size for o in open_)
    close_size = sum(o.size for o in close)
    sides = {o.side for o in open_} | {o.side for o in close}
    if abs(open_size - close_size) <= SIZE_EPSILON and len(sides) == 1:
        return VenuePnL(
            mode=mode, open_count=len(open_), close_count=len(close),
            open_size=open_size, close_size=close_size, rejected="same_direction_pair",
        )

    open_notional = sum(o.notional for o in open_)
    close_notional = sum(o.notional for o in close)
    open_side = open_[0].side
    if open_side is Side.BUY:
        pnl = close_notional - open_notional
    else:
        pnl = open_notional - close_notional

    return VenuePnL(
        pnl=pnl,
        mode=mode,
        open_count=len(open_),
        close_count=len(close),
        open_size=open_size,
        close_size=close_size,
        open_notional=open_notional,
        close_notional=close_notional,
        open_side=open_side,
    )


@dataclass
class PnLAccountantConfig:
    """Configuration for PnLAccountant."""
    lookback: int = 10
    settle_delay_sec: float = 1.0
    log_event_callback: Optional[Callable[..., None]] = None


@dataclass
class _Totals:
    venue_a: float = 0.0
    venue_b: float = 0.0
    history: List[RoundRecord] = field(default_factory=list)


class PnLAccountant:
    """
    Owns the in-memory round ledger for the lifetime of the process.

    Usage:
        accountant = PnLAccountant(alerts, PnLAccountantConfig(lookback=10))
        record = await accountant.settle_round(round_no, venue_a, venue_b)
        ...
        accountant.log_final_summary()
    """

    def __init__(
        self,
        alerts: Optional[AlertManager] = None,
        config: Optional[PnLAccountantConfig] = None,
        metrics: Optional[HedgeMetrics] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.alerts = alerts
        self.metrics = metrics
        self.config = config or PnLAccountantConfig()
        self._clock = clock
        self._start_time = clock()
        self._totals = _Totals()
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log_event(log, event, level, **kwargs)

    @property
    def rounds(self) -> Tuple[RoundRecord, ...]:
        return tuple(self._totals.history)

    def venue_pnl(self, venue: str, orders: Sequence[VenueOrderRecord]) -> float:
        """compute_venue_pnl with logging; any failure reports 0."""
        try:
            result = compute_venue_pnl(orders)
        except Exception as exc:
            self._log_event(
                "pnl_compute_failed", logging.WARNING, venue=venue,
                error=str(exc), error_type=type(exc).__name__,
            )
            return 0.0

        if result.rejected == "same_direction_pair":
            self._log_event(
                "pnl_grouping_rejected", logging.WARNING, venue=venue, mode=result.mode,
                open_size=result.open_size, close_size=result.close_size,
            )
        elif result.rejected is not None:
            self._log_event(
                "pnl_unavailable", logging.WARNING, venue=venue, reason=result.rejected,
                orders=len(orders),
            )
        else:
            self._log_event(
                "pnl_venue", logging.DEBUG, venue=venue, mode=result.mode,
                open_count=result.open_count, open_price=round(result.open_price, 6),
                close_count=result.close_count, close_price=round(result.close_price, 6),
                pnl=round(result.pnl, 8),
            )
        return result.pnl

    def record_round(self, round_number: int, venue_a_pnl: float, venue_b_pnl: float) -> RoundRecord:
        record = RoundRecord(
            round_number=round_number,
            venue_a_pnl=venue_a_pnl,
            venue_b_pnl=venue_b_pnl,
            total_pnl=venue_a_pnl + venue_b_pnl,
            timestamp_ms=int(self._clock() * 1000),
        )
        self._totals.history.append(record)
        self._totals.venue_a += venue_a_pnl
        self._totals.venue_b += venue_b_pnl
        return record

    async def settle_round(
        self,
        round_number: int,
        venue_a: VenueConnector,
        venue_b: VenueConnector,
    ) -> RoundRecord:
        if self.config.settle_delay_sec > 0:
            await asyncio.sleep(self.config.settle_delay_sec)

        orders_a, orders_b = await asyncio.gather(
            venue_a.recent_orders(self.config.lookback),
            venue_b.recent_orders(self.config.lookback),
        )
        pnl_a = self.venue_pnl(venue_a.name, orders_a)
        pnl_b = self.venue_pnl(venue_b.name, orders_b)
        record = self.record_round(round_number, pnl_a, pnl_b)

        summary = self.summary()
        self._log_event(
            "round_settled",
            round=round_number,
            **{f"{venue_a.name}_pnl": round(pnl_a, 6), f"{venue_b.name}_pnl": round(pnl_b, 6)},
            total_pnl=round(record.total_pnl, 6),
            cumulative_pnl=round(summary["total_pnl"], 6),
            rounds=summary["rounds"],
        )
        if self.metrics is not None:
            self.metrics.rounds_total.inc()
            self.metrics.round_pnl.observe(record.total_pnl)
            self.metrics.cumulative_pnl.labels(venue=venue_a.name).set(self._totals.venue_a)
            self.metrics.cumulative_pnl.labels(venue=venue_b.name).set(self._totals.venue_b)
        if self.alerts is not None:
            await self.alerts.alert_round_completed(round_number, record.total_pnl, pnl_a, pnl_b)
        return record

    def summary(self) -> Dict[str, Any]:
        rounds = len(self._totals.history)
        total = self._totals.venue_a + self._totals.venue_b
        runtime_sec = max(self._clock() - self._start_time, 0.0)
        hours = runtime_sec / 3600
        return {
            "rounds": rounds,
            "venue_a_pnl": self._totals.venue_a,
            "venue_b_pnl": self._totals.venue_b,
            "total_pnl": total,
            "avg_pnl_per_round": total / rounds if rounds else 0.0,
            "runtime_sec": runtime_sec,
            "hourly_pnl": total / hours if hours > 0 else 0.0,
        }

    def log_final_summary(self) -> Dict[str, Any]:
        summary = self.summary()
        payload = {k: round(v, 6) if isinstance(v, float) else v for k, v in summary.items()}
        if 0 < summary["rounds"] <= 10:
            payload["per_round"] = [r.to_dict() for r in self._totals.history]
        self._log_event("pnl_final_summary", **payload)
        return summary
