"""
HedgeEngine: the round loop that opens, holds and closes a delta-neutral pair.

Each round:
    1. check_and_rebalance  fresh snapshot; unwind both venues if |net| is over the limit
    2. open_positions       random direction on venue A, opposite on venue B, both
                            submitted concurrently; fills inferred by FillMonitor,
                            one-sided fills repaired by PartialFillRecovery
    3. hold                 uniform integer seconds in [hold_min, hold_max]
    4. close_positions      reduce-only orders sized to each venue's live position,
                            then PnLAccountant settles the round
    5. wait                 uniform integer seconds in [interval_min, interval_max]

Every state change goes through HedgeStateMachine. Enforcement decisions
always re-read positions from the venues; nothing is cached between steps.

Failure policy:
    - VenueAuthError is never retried. run() logs it as critical, alerts and
      re-raises so the process shuts down.
    - Open failures are retried up to ``max_retries`` with a fixed backoff;
      exhaustion flattens both venues and raises OpenPositionsError. An
      attempt is only repeated when no leg was seen to fill; recovery and
      net correction failures are logged and left to the next rebalance check.
    - Close residuals and unreadable positions are retried, then deferred
      to the next round's rebalance check.
    - Any other error ends the round; run() flattens if the round was
      mid-flight, cools down and continues.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from hedgebot.connectors.base import VenueConnector
from hedgebot.core.errors import (
    BothLegsUnfilledError,
    NetPositionBreachError,
    OpenPositionsError,
    VenueAuthError,
    VenueError,
    VenueTransientError,
)
from hedgebot.core.types import Leg, OrderIntent, OrderReceipt, PositionSnapshot, RiskThresholds, Side
from hedgebot.execution.fill_monitor import FillMonitor
from hedgebot.execution.hedge_state_machine import HedgeState, HedgeStateMachine
from hedgebot.execution.partial_fill_recovery import PartialFillRecovery
from hedgebot.infra.logging_cfg import CRITICAL_SAFETY, log_event
from hedgebot.monitoring.alerting import AlertManager
from hedgebot.monitoring.metrics import HedgeMetrics
from hedgebot.state.pnl_accountant import PnLAccountant

log = logging.getLogger("hedgebot")

# Absolute net size above which the post-open correction order is sent.
NET_CORRECTION_TOLERANCE = 0.01
# Positions smaller than this are treated as flat.
POSITION_DUST = 0.001


@dataclass
class HedgeEngineConfig:
    """Configuration for HedgeEngine."""
    symbol: str = "ETH"
    order_size: float = 0.01
    hold_time_min_sec: int = 60
    hold_time_max_sec: int = 120
    interval_time_min_sec: int = 10
    interval_time_max_sec: int = 20
    fill_timeout_ms: int = 5000
    max_retries: int = 3
    retry_backoff_sec: float = 1.0
    close_settle_sec: float = 2.0
    recovery_wait_sec: float = 1.0
    error_cooldown_sec: float = 60.0
    log_event_callback: Optional[Callable[..., None]] = None

    @classmethod
    def from_settings(cls, settings) -> "HedgeEngineConfig":
        return cls(
            symbol=settings.symbol,
            order_size=settings.order_size,
            hold_time_min_sec=settings.hold_time_min_sec,
            hold_time_max_sec=settings.hold_time_max_sec,
            interval_time_min_sec=settings.interval_time_min_sec,
            interval_time_max_sec=settings.interval_time_max_sec,
            fill_timeout_ms=settings.fill_timeout_ms,
            max_retries=settings.max_retries,
            retry_backoff_sec=settings.retry_backoff_sec,
            close_settle_sec=settings.close_settle_sec,
            recovery_wait_sec=settings.recovery_wait_sec,
            error_cooldown_sec=settings.error_cooldown_sec,
        )


def is_flat(snap: PositionSnapshot) -> bool:
    return abs(snap.venue_a_position) < POSITION_DUST and abs(snap.venue_b_position) < POSITION_DUST


class HedgeEngine:
    """
    Owns the round loop and the engine state.

    Usage:
        engine = HedgeEngine(venue_a, venue_b, thresholds, alerts, pnl, fill_monitor, recovery, config)
        task = asyncio.create_task(engine.run())
        ...
        engine.stop()
        await task
    """

    def __init__(
        self,
        venue_a: VenueConnector,
        venue_b: VenueConnector,
        thresholds: RiskThresholds,
        alerts: AlertManager,
        pnl: PnLAccountant,
        fill_monitor: FillMonitor,
        recovery: PartialFillRecovery,
        config: Optional[HedgeEngineConfig] = None,
        metrics: Optional[HedgeMetrics] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.venue_a = venue_a
        self.venue_b = venue_b
        self.thresholds = thresholds
        self.alerts = alerts
        self.pnl = pnl
        self.fill_monitor = fill_monitor
        self.recovery = recovery
        self.config = config or HedgeEngineConfig()
        self.metrics = metrics
        self._rng = rng or random.Random()
        self._log_event = self.config.log_event_callback or self._default_log
        self._stop = asyncio.Event()
        self._round = 0
        self.state_machine = HedgeStateMachine(
            log_event_callback=self._log_event,
            on_state_change=self._on_state_change,
        )
        if self.metrics is not None:
            self.metrics.set_state(HedgeState.IDLE.name, [s.name for s in HedgeState])

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log_event(log, event, level, **kwargs)

    def _on_state_change(self, from_state: HedgeState, to_state: HedgeState) -> None:
        if self.metrics is not None:
            self.metrics.set_state(to_state.name, [s.name for s in HedgeState])

    @property
    def state(self) -> HedgeState:
        return self.state_machine.state

    @property
    def round_number(self) -> int:
        return self._round

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Finish the current round's network calls, then exit run()."""
        if not self._stop.is_set():
            self._stop.set()
            self._log_event("engine_stop_requested", state=self.state.name, round=self._round)

    # ─────────────────────────────────────────────────────────────────────
    # Venue helpers
    # ─────────────────────────────────────────────────────────────────────

    def _venue(self, leg: Leg) -> VenueConnector:
        return self.venue_a if leg is Leg.A else self.venue_b

    async def snapshot(self) -> PositionSnapshot:
        """
        Fresh positions from both venues.

        Raises VenueTransientError when either read failed, since a failed
        read reports 0 and would look like a flat venue.
        """
        read_a, read_b = await asyncio.gather(
            self.venue_a.read_position(),
            self.venue_b.read_position(),
        )
        for venue, read in ((self.venue_a, read_a), (self.venue_b, read_b)):
            if not read.ok:
                raise VenueTransientError(venue.name, "position unavailable")
        snap = PositionSnapshot(read_a.value, read_b.value)
        if self.metrics is not None:
            self.metrics.observe_positions(self.venue_a.name, self.venue_b.name, snap)
        return snap

    async def _submit(self, venue: VenueConnector, direction: Side, size: float, reduce_only: bool) -> OrderReceipt:
        try:
            receipt = await venue.submit_market_order(direction, size, reduce_only=reduce_only)
        except Exception:
            if self.metrics is not None:
                self.metrics.order_failures.labels(venue=venue.name).inc()
            raise
        if self.metrics is not None:
            self.metrics.orders_submitted.labels(
                venue=venue.name, side=direction.value, reduce_only=str(reduce_only).lower(),
            ).inc()
        return receipt

    async def _flatten(self, snap: PositionSnapshot, purpose: str) -> int:
        """
        Reduce-only orders against every non-dust position in ``snap``.

        Order failures are logged and left for the caller's re-snapshot to
        detect, except auth failures which propagate. Returns the number of
        orders sent.
        """
        orders = []
        for venue, position in ((self.venue_a, snap.venue_a_position), (self.venue_b, snap.venue_b_position)):
            if abs(position) < POSITION_DUST:
                continue
            side = Side.closing(position)
            self._log_event(
                "flatten_order", purpose=purpose, venue=venue.name,
                side=side.value, size=round(abs(position), 8),
            )
            orders.append((venue, self._submit(venue, side, abs(position), reduce_only=True)))

        results = await asyncio.gather(*(coro for _, coro in orders), return_exceptions=True)
        for (venue, _), result in zip(orders, results):
            if isinstance(result, VenueAuthError):
                raise result
            if isinstance(result, Exception):
                self._log_event(
                    "flatten_order_failed", logging.ERROR, purpose=purpose,
                    venue=venue.name, error=str(result), error_type=type(result).__name__,
                )
                await self.alerts.alert_order_failure(venue.name, str(result))
        return len(orders)

    # ─────────────────────────────────────────────────────────────────────
    # Open
    # ─────────────────────────────────────────────────────────────────────

    def _choose_intents(self) -> Tuple[OrderIntent, OrderIntent]:
        side_a = Side.BUY if self._rng.random() < 0.5 else Side.SELL
        size = self.config.order_size
        return OrderIntent(Leg.A, side_a, size), OrderIntent(Leg.B, side_a.opposite, size)

    async def _open_once(self, attempt: int) -> Tuple[OrderIntent, OrderIntent]:
        intent_a, intent_b = self._choose_intents()
        before = await self.snapshot()
        self._log_event(
            "open_attempt",
            attempt=attempt,
            max_retries=self.config.max_retries,
            **{self.venue_a.name: intent_a.direction.value, self.venue_b.name: intent_b.direction.value},
            size=intent_a.size,
            before=before.to_dict(),
        )

        results = await asyncio.gather(
            self._submit(self.venue_a, intent_a.direction, intent_a.size, intent_a.reduce_only),
            self._submit(self.venue_b, intent_b.direction, intent_b.size, intent_b.reduce_only),
            return_exceptions=True,
        )
        errors: List[Exception] = [r for r in results if isinstance(r, Exception)]
        for err in errors:
            if isinstance(err, VenueAuthError):
                raise err
        if errors:
            raise errors[0]

        self.state_machine.transition(HedgeState.MONITORING, reason="orders_submitted", attempt=attempt)
        outcome = await self.fill_monitor.wait_for_fills(before, intent_a.size, self.config.fill_timeout_ms)
        if not outcome.observed:
            # both orders were accepted; retrying could double the pair
            self._log_event("fill_outcome_unknown", logging.WARNING, attempt=attempt)
        elif not outcome.both_filled:
            try:
                await self.recovery.recover(outcome, intent_a, intent_b)
            except VenueAuthError:
                raise
            except VenueError as exc:
                # one leg is live; the net correction works from the resulting state
                self._log_event(
                    "partial_fill_recovery_failed", logging.ERROR, attempt=attempt,
                    error=str(exc), error_type=type(exc).__name__,
                )
                await self.alerts.alert_order_failure(exc.venue, str(exc))
        return intent_a, intent_b

    async def _correct_net(self) -> None:
        """
        One-shot venue A order against any residual net left by the open.

        Never retried; only VenueAuthError propagates. An unreadable or
        uncorrected net is left to the next rebalance check.
        """
        try:
            snap = await self.snapshot()
        except VenueAuthError:
            raise
        except VenueError as exc:
            self._log_event("net_correction_skipped", logging.WARNING, error=str(exc))
            return
        net = snap.net_position
        self._log_event("open_positions_after", **snap.to_dict())
        if abs(net) <= NET_CORRECTION_TOLERANCE:
            return

        side = Side.SELL if net > 0 else Side.BUY
        self._log_event(
            "net_correction", logging.WARNING, venue=self.venue_a.name,
            side=side.value, size=round(abs(net), 8), net=round(net, 8),
        )
        try:
            await self._submit(self.venue_a, side, abs(net), reduce_only=False)
            await asyncio.sleep(self.config.recovery_wait_sec)
            after = await self.snapshot()
        except VenueAuthError:
            raise
        except VenueError as exc:
            self._log_event("net_correction_failed", logging.ERROR, error=str(exc))
            return
        self._log_event("net_correction_result", **after.to_dict())

    async def open_positions(self) -> Tuple[OrderIntent, OrderIntent]:
        """
        Open the hedged pair; on return the engine is HOLDING.

        Raises:
            VenueAuthError: immediately, without retry.
            OpenPositionsError: retries exhausted (both venues already flattened).
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.config.max_retries + 1):
            self.state_machine.transition(HedgeState.OPENING, reason="open_attempt", attempt=attempt)
            try:
                intents = await self._open_once(attempt)
            except VenueAuthError:
                raise
            except (VenueError, BothLegsUnfilledError) as exc:
                last_error = exc
                self._log_event(
                    "open_attempt_failed", logging.ERROR, attempt=attempt,
                    error=str(exc), error_type=type(exc).__name__,
                )
                if attempt < self.config.max_retries:
                    if self.metrics is not None:
                        self.metrics.open_retries.inc()
                    await asyncio.sleep(self.config.retry_backoff_sec)
                continue
            self.state_machine.transition(HedgeState.HOLDING, reason="opened", attempt=attempt)
            self._log_event("open_positions_done", attempt=attempt)
            await self._correct_net()
            return intents

        self._log_event(
            "open_retries_exhausted", CRITICAL_SAFETY,
            attempts=self.config.max_retries, error=str(last_error),
        )
        await self.emergency_close("open_retries_exhausted")
        raise OpenPositionsError(self.config.max_retries, last_error) from last_error

    # ─────────────────────────────────────────────────────────────────────
    # Close
    # ─────────────────────────────────────────────────────────────────────

    async def close_positions(self, round_number: int) -> bool:
        """
        Flatten both venues and settle the round.

        Returns True when both venues end flat (the round is settled unless
        they were already flat), False when a residual is deferred to the
        next rebalance check.
        """
        for attempt in range(1, self.config.max_retries + 1):
            self.state_machine.transition(HedgeState.CLOSING, reason="close_attempt", attempt=attempt)
            try:
                snap = await self.snapshot()
                self._log_event("close_attempt", attempt=attempt, **snap.to_dict())
                if is_flat(snap):
                    self._log_event("close_skipped_flat", round=round_number)
                    self.state_machine.transition(HedgeState.IDLE, reason="nothing_to_close")
                    return True

                await self._flatten(snap, purpose="close")
                await asyncio.sleep(self.config.close_settle_sec)
                after = await self.snapshot()
            except VenueAuthError:
                raise
            except VenueError as exc:
                self._log_event(
                    "close_attempt_failed", logging.ERROR, attempt=attempt,
                    error=str(exc), error_type=type(exc).__name__,
                )
                if attempt >= self.config.max_retries:
                    break
                await asyncio.sleep(self.config.retry_backoff_sec)
                continue

            if is_flat(after):
                self._log_event("close_positions_done", round=round_number, attempt=attempt)
                self.state_machine.transition(HedgeState.SETTLING, reason="flat", round=round_number)
                await self._settle(round_number)
                self.state_machine.transition(HedgeState.IDLE, reason="round_settled", round=round_number)
                return True

            self._log_event("close_residual", logging.WARNING, attempt=attempt, **after.to_dict())

        self._log_event(
            "close_residual_deferred", logging.ERROR, round=round_number,
            attempts=self.config.max_retries,
        )
        self.state_machine.transition(HedgeState.IDLE, reason="residual_deferred")
        return False

    async def _settle(self, round_number: int) -> None:
        try:
            await self.pnl.settle_round(round_number, self.venue_a, self.venue_b)
        except Exception as exc:
            self._log_event(
                "pnl_settle_failed", logging.WARNING, round=round_number,
                error=str(exc), error_type=type(exc).__name__,
            )

    # ─────────────────────────────────────────────────────────────────────
    # Risk
    # ─────────────────────────────────────────────────────────────────────

    async def check_and_rebalance(self) -> bool:
        """
        Unwind both venues when |net| exceeds the limit (strictly greater).

        Returns True if an unwind happened.

        Raises:
            NetPositionBreachError: still over the limit after the unwind.
        """
        snap = await self.snapshot()
        limit = self.thresholds.max_net_position
        if abs(snap.net_position) <= limit:
            self._log_event("rebalance_check_ok", logging.DEBUG, **snap.to_dict())
            return False

        self._log_event(
            "net_position_breach", CRITICAL_SAFETY, threshold=limit, **snap.to_dict(),
        )
        await self.alerts.alert_net_position(snap.net_position, limit)
        after = await self.emergency_close("net_position_breach")
        if abs(after.net_position) > limit:
            raise NetPositionBreachError(after.net_position, limit)
        return True

    async def emergency_close(self, reason: str) -> PositionSnapshot:
        """Flatten both venues regardless of the current state; ends IDLE."""
        self._log_event("emergency_close", CRITICAL_SAFETY, reason=reason, state=self.state.name)
        self.state_machine.enter_emergency(reason)
        if self.metrics is not None:
            self.metrics.emergency_closes.labels(reason=reason).inc()
        try:
            await self.alerts.alert_emergency_close(reason)
            snap = await self.snapshot()
            sent = await self._flatten(snap, purpose="emergency")
            if sent:
                await asyncio.sleep(self.config.close_settle_sec)
                snap = await self.snapshot()
            self._log_event("emergency_close_done", reason=reason, orders=sent, **snap.to_dict())
            return snap
        finally:
            self.state_machine.transition(HedgeState.IDLE, reason="emergency_close_done")

    # ─────────────────────────────────────────────────────────────────────
    # Loop
    # ─────────────────────────────────────────────────────────────────────

    async def _wait_or_stop(self, seconds: float) -> None:
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run_round(self, round_number: int) -> None:
        self._log_event("round_start", round=round_number)
        await self.check_and_rebalance()
        if self._stop.is_set():
            return

        await self.open_positions()

        hold = self._rng.randint(self.config.hold_time_min_sec, self.config.hold_time_max_sec)
        self._log_event("holding", round=round_number, hold_sec=hold)
        # Not interruptible: stopping mid-hold still closes the pair below.
        await asyncio.sleep(hold)

        await self.close_positions(round_number)

    async def _recover_after_error(self, reason: str) -> None:
        if self.state is HedgeState.IDLE:
            return
        try:
            await self.emergency_close(reason)
        except Exception as exc:
            self._log_event(
                "emergency_close_failed", CRITICAL_SAFETY, reason=reason,
                error=str(exc), error_type=type(exc).__name__,
            )
            self.state_machine.reset_to_idle(reason)

    async def run(self) -> None:
        self._log_event(
            "engine_started",
            symbol=self.config.symbol,
            order_size=self.config.order_size,
            venue_a=self.venue_a.name,
            venue_b=self.venue_b.name,
        )
        while not self._stop.is_set():
            self._round += 1
            try:
                await self.run_round(self._round)
            except VenueAuthError as exc:
                self._log_event(
                    "fatal_auth_error", CRITICAL_SAFETY, venue=exc.venue,
                    round=self._round, error=str(exc),
                )
                await self.alerts.alert_fatal(str(exc), venue=exc.venue)
                raise
            except Exception as exc:
                self._log_event(
                    "round_failed", logging.ERROR, round=self._round,
                    error=str(exc), error_type=type(exc).__name__,
                    cooldown_sec=self.config.error_cooldown_sec,
                )
                await self._recover_after_error("round_error")
                await self._wait_or_stop(self.config.error_cooldown_sec)
                continue

            if self._stop.is_set():
                break
            delay = self._rng.randint(self.config.interval_time_min_sec, self.config.interval_time_max_sec)
            self._log_event("round_wait", round=self._round, wait_sec=delay)
            await self._wait_or_stop(delay)

        self._log_event("engine_stopped", rounds=self._round, state=self.state.name)
