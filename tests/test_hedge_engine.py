"""
Tests for HedgeEngine: open, close, rebalance and the round loop.
"""
import asyncio
import random

import pytest
from prometheus_client import CollectorRegistry

from hedgebot.core.errors import (
    NetPositionBreachError,
    OpenPositionsError,
    OrderRejectedError,
    VenueAuthError,
    VenueTransientError,
)
from hedgebot.core.types import RiskThresholds, Side
from hedgebot.execution.fill_monitor import FillMonitor, FillMonitorConfig
from hedgebot.execution.hedge_state_machine import HedgeState
from hedgebot.execution.partial_fill_recovery import PartialFillRecovery, PartialFillRecoveryConfig
from hedgebot.monitoring.metrics import HedgeMetrics
from hedgebot.orchestrator.hedge_engine import HedgeEngine, HedgeEngineConfig
from hedgebot.state.pnl_accountant import PnLAccountant, PnLAccountantConfig

from conftest import FakeVenue

SIZE = 0.01


def make_engine(venue_a, venue_b, alerts, seed=0, **overrides):
    cfg = dict(
        order_size=SIZE,
        hold_time_min_sec=0,
        hold_time_max_sec=0,
        interval_time_min_sec=0,
        interval_time_max_sec=0,
        fill_timeout_ms=20,
        max_retries=2,
        retry_backoff_sec=0,
        close_settle_sec=0,
        recovery_wait_sec=0,
        error_cooldown_sec=0.01,
    )
    cfg.update(overrides)
    metrics = HedgeMetrics(registry=CollectorRegistry())
    return HedgeEngine(
        venue_a,
        venue_b,
        RiskThresholds(max_net_position=0.1, max_position_deviation=0.05, price_slippage_tolerance=0.002),
        alerts,
        PnLAccountant(alerts, PnLAccountantConfig(settle_delay_sec=0), metrics=metrics),
        FillMonitor(venue_a, venue_b, FillMonitorConfig(timeout_ms=20, check_interval_ms=1)),
        PartialFillRecovery(venue_a, venue_b, alerts, PartialFillRecoveryConfig(recovery_wait_sec=0), metrics),
        HedgeEngineConfig(**cfg),
        metrics=metrics,
        rng=random.Random(seed),
    )


@pytest.fixture
def engine(venue_a, venue_b, alerts):
    return make_engine(venue_a, venue_b, alerts)


class TestSnapshot:

    @pytest.mark.asyncio
    async def test_snapshot_net(self, engine, venue_a, venue_b):
        venue_a.position = 0.3
        venue_b.position = -0.1
        snap = await engine.snapshot()
        assert snap.net_position == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_failed_read_raises(self, engine, venue_b):
        venue_b.query_fails = True
        with pytest.raises(VenueTransientError):
            await engine.snapshot()


class TestOpenPositions:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(8))
    async def test_legs_are_opposite(self, alerts, seed):
        venue_a, venue_b = FakeVenue("paradex"), FakeVenue("lighter")
        engine = make_engine(venue_a, venue_b, alerts, seed=seed)

        intent_a, intent_b = await engine.open_positions()

        assert intent_a.direction is not intent_b.direction
        assert venue_a.orders[0]["side"] is intent_a.direction
        assert venue_b.orders[0]["side"] is intent_b.direction
        assert venue_a.orders[0]["size"] == SIZE == venue_b.orders[0]["size"]
        assert not venue_a.orders[0]["reduce_only"]
        assert venue_a.position == pytest.approx(-venue_b.position)
        assert engine.state is HedgeState.HOLDING

    @pytest.mark.asyncio
    async def test_both_directions_are_chosen(self, alerts):
        sides = set()
        for seed in range(20):
            venue_a, venue_b = FakeVenue("paradex"), FakeVenue("lighter")
            intent_a, _ = await make_engine(venue_a, venue_b, alerts, seed=seed).open_positions()
            sides.add(intent_a.direction)
        assert sides == {Side.BUY, Side.SELL}

    @pytest.mark.asyncio
    async def test_one_sided_fill_is_recovered(self, engine, venue_a, venue_b, alerts):
        venue_b.fill_ratios = [0.0]

        await engine.open_positions()

        alerts.alert_partial_fill.assert_awaited_once()
        assert len(venue_a.orders) == 1
        assert len(venue_b.orders) == 2
        assert venue_b.orders[1]["side"] is venue_b.orders[0]["side"]
        assert venue_a.position + venue_b.position == pytest.approx(0.0)
        assert engine.state is HedgeState.HOLDING

    @pytest.mark.asyncio
    async def test_residual_net_is_corrected_on_venue_a(self, venue_a, venue_b, alerts):
        engine = make_engine(venue_a, venue_b, alerts, order_size=0.05)
        # b never fills, so the compensating order leaves a net of one order size
        venue_b.fill_ratio = 0.0

        await engine.open_positions()

        assert len(venue_a.orders) == 2
        correction = venue_a.orders[1]
        assert correction["side"] is venue_a.orders[0]["side"].opposite
        assert correction["size"] == pytest.approx(0.05)
        assert not correction["reduce_only"]
        assert venue_a.position + venue_b.position == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_rejected_leg_is_retried(self, engine, venue_a, venue_b):
        venue_a.submit_errors.append(OrderRejectedError("paradex", "margin"))

        await engine.open_positions()

        assert engine.state is HedgeState.HOLDING
        assert engine.metrics.registry.get_sample_value("open_retries_total") == 1.0
        assert abs(venue_a.position + venue_b.position) <= 0.01

    @pytest.mark.asyncio
    async def test_exhaustion_flattens_and_raises(self, engine, venue_a, venue_b, alerts):
        venue_a.fill_ratio = 0.0
        venue_b.fill_ratio = 0.0

        with pytest.raises(OpenPositionsError) as exc_info:
            await engine.open_positions()

        assert exc_info.value.attempts == 2
        assert engine.state is HedgeState.IDLE
        alerts.alert_emergency_close.assert_awaited_once_with("open_retries_exhausted")
        assert engine.metrics.registry.get_sample_value(
            "emergency_closes_total", {"reason": "open_retries_exhausted"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_failed_read_after_fill_does_not_reopen(self, engine, venue_a, venue_b, alerts):
        # reads: pre-open snapshot, fill poll, then the post-open net check fails
        venue_a.read_outcomes = [True, True, False]

        await engine.open_positions()

        assert len(venue_a.orders) == 1
        assert len(venue_b.orders) == 1
        assert venue_a.position == pytest.approx(-venue_b.position)
        assert engine.state is HedgeState.HOLDING
        assert engine.metrics.registry.get_sample_value("open_retries_total") == 0.0
        alerts.alert_emergency_close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unreadable_fill_window_does_not_reopen(self, engine, venue_a, venue_b, alerts):
        venue_b.read_outcomes = [True]
        venue_b.query_fails = True

        await engine.open_positions()

        assert len(venue_a.orders) == 1
        assert len(venue_b.orders) == 1
        alerts.alert_partial_fill.assert_not_awaited()
        assert engine.state is HedgeState.HOLDING

    @pytest.mark.asyncio
    async def test_rejected_recovery_order_does_not_reopen(self, venue_a, venue_b, alerts):
        engine = make_engine(venue_a, venue_b, alerts, order_size=0.05)
        venue_b.fill_ratios = [0.0]
        venue_b.submit_errors = [None, OrderRejectedError("lighter", "margin")]

        await engine.open_positions()

        assert len(venue_b.orders) == 1
        # opening order plus the one-shot net correction
        assert len(venue_a.orders) == 2
        assert venue_a.orders[1]["side"] is venue_a.orders[0]["side"].opposite
        assert venue_a.position + venue_b.position == pytest.approx(0.0)
        assert engine.state is HedgeState.HOLDING
        assert engine.metrics.registry.get_sample_value("open_retries_total") == 0.0
        alerts.alert_order_failure.assert_awaited_once()
        assert alerts.alert_order_failure.await_args.args[0] == "lighter"

    @pytest.mark.asyncio
    async def test_rejected_correction_is_not_retried(self, venue_a, venue_b, alerts):
        engine = make_engine(venue_a, venue_b, alerts, order_size=0.05)
        venue_b.fill_ratio = 0.0
        venue_a.submit_errors = [None, OrderRejectedError("paradex", "margin")]

        await engine.open_positions()

        assert len(venue_a.orders) == 1
        assert len(venue_b.orders) == 2
        assert engine.state is HedgeState.HOLDING
        assert engine.metrics.registry.get_sample_value("open_retries_total") == 0.0

    @pytest.mark.asyncio
    async def test_auth_error_is_not_retried(self, engine, venue_a):
        venue_a.submit_errors.append(VenueAuthError("paradex", "expired", 401))

        with pytest.raises(VenueAuthError):
            await engine.open_positions()

        assert engine.metrics.registry.get_sample_value("open_retries_total") == 0.0


class TestClosePositions:

    @pytest.mark.asyncio
    async def test_close_after_open_settles_round(self, engine, venue_a, venue_b, alerts):
        await engine.open_positions()
        opened_a = venue_a.position

        assert await engine.close_positions(1) is True

        close_a = venue_a.orders[-1]
        assert close_a["reduce_only"]
        assert close_a["side"] is Side.closing(opened_a)
        assert close_a["size"] == pytest.approx(SIZE)
        assert venue_a.position == pytest.approx(0.0)
        assert venue_b.position == pytest.approx(0.0)
        assert engine.state is HedgeState.IDLE
        assert len(engine.pnl.rounds) == 1
        alerts.alert_round_completed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_already_flat_returns_immediately(self, engine, venue_a, venue_b, alerts):
        assert await engine.close_positions(1) is True
        assert venue_a.orders == [] and venue_b.orders == []
        assert engine.pnl.rounds == ()
        assert engine.state is HedgeState.IDLE

    @pytest.mark.asyncio
    async def test_residual_is_deferred(self, engine, venue_a, venue_b):
        venue_a.position = SIZE
        venue_b.position = -SIZE
        venue_a.fill_ratio = 0.0

        assert await engine.close_positions(1) is False

        assert len(venue_a.orders) == 2
        assert all(o["reduce_only"] for o in venue_a.orders)
        assert venue_b.position == pytest.approx(0.0)
        assert engine.state is HedgeState.IDLE
        assert engine.pnl.rounds == ()

    @pytest.mark.asyncio
    async def test_unreadable_positions_are_deferred(self, engine, venue_a, venue_b, alerts):
        venue_a.position = SIZE
        venue_b.position = -SIZE
        venue_b.query_fails = True

        assert await engine.close_positions(1) is False

        assert venue_a.orders == [] and venue_b.orders == []
        assert engine.state is HedgeState.IDLE
        alerts.alert_emergency_close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unreadable_close_is_not_escalated_by_run_loop(self, engine, venue_a, venue_b, alerts):
        # rebalance check, pre-open snapshot, fill poll and net check succeed
        venue_b.read_outcomes = [True] * 4
        venue_b.query_fails = True

        task = asyncio.create_task(engine.run())
        await asyncio.sleep(0.05)
        engine.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert len(venue_a.orders) == 1
        assert len(venue_b.orders) == 1
        alerts.alert_emergency_close.assert_not_awaited()
        assert engine.state is HedgeState.IDLE

    @pytest.mark.asyncio
    async def test_pnl_failure_does_not_fail_close(self, engine, venue_a, venue_b, alerts):
        venue_a.position = SIZE
        venue_b.position = -SIZE
        alerts.alert_round_completed.side_effect = RuntimeError("boom")

        assert await engine.close_positions(1) is True
        assert engine.state is HedgeState.IDLE


class TestCheckAndRebalance:

    @pytest.mark.asyncio
    async def test_exact_threshold_does_not_trigger(self, engine, venue_a, venue_b):
        venue_a.position = 0.10

        assert await engine.check_and_rebalance() is False
        assert venue_a.orders == [] and venue_b.orders == []

    @pytest.mark.asyncio
    async def test_just_above_threshold_triggers(self, engine, venue_a, alerts):
        venue_a.position = 0.1000001

        assert await engine.check_and_rebalance() is True

        assert venue_a.orders == [{"side": Side.SELL, "size": 0.1000001, "reduce_only": True}]
        alerts.alert_net_position.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unwind_closes_both_venues_by_magnitude(self, engine, venue_a, venue_b):
        venue_a.position = 0.8
        venue_b.position = -0.3

        await engine.check_and_rebalance()

        assert venue_a.orders == [{"side": Side.SELL, "size": 0.8, "reduce_only": True}]
        assert venue_b.orders == [{"side": Side.BUY, "size": 0.3, "reduce_only": True}]
        snap = await engine.snapshot()
        assert abs(snap.net_position) <= 0.1
        assert engine.state is HedgeState.IDLE

    @pytest.mark.asyncio
    async def test_unwind_short_net(self, engine, venue_a, venue_b):
        venue_a.position = -0.2
        venue_b.position = -0.3

        await engine.check_and_rebalance()

        assert venue_a.orders[0]["side"] is Side.BUY
        assert venue_b.orders[0]["side"] is Side.BUY

    @pytest.mark.asyncio
    async def test_breach_after_unwind_raises(self, engine, venue_a, venue_b):
        venue_a.position = 0.5
        venue_a.fill_ratio = 0.0

        with pytest.raises(NetPositionBreachError) as exc_info:
            await engine.check_and_rebalance()

        assert exc_info.value.net_position == pytest.approx(0.5)
        assert engine.state is HedgeState.IDLE

    @pytest.mark.asyncio
    async def test_failed_unwind_order_is_reported(self, engine, venue_a, venue_b, alerts):
        venue_a.position = 0.5
        venue_b.position = 0.5
        venue_b.submit_errors.append(OrderRejectedError("lighter", "reduce only would increase"))

        with pytest.raises(NetPositionBreachError):
            await engine.check_and_rebalance()

        alerts.alert_order_failure.assert_awaited_once()
        assert venue_a.position == pytest.approx(0.0)


class TestRunLoop:

    @pytest.mark.asyncio
    async def test_one_round_then_stop(self, engine, venue_a, venue_b, alerts):
        alerts.alert_round_completed.side_effect = lambda *a, **kw: engine.stop()

        await asyncio.wait_for(engine.run(), timeout=2.0)

        assert engine.round_number == 1
        assert len(engine.pnl.rounds) == 1
        assert engine.state is HedgeState.IDLE
        assert venue_a.position == pytest.approx(0.0)
        assert venue_b.position == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_stop_before_open_skips_round(self, engine, venue_a, venue_b):
        engine.stop()
        await engine.run_round(1)
        assert venue_a.orders == [] and venue_b.orders == []

    @pytest.mark.asyncio
    async def test_auth_error_is_fatal(self, engine, venue_a, alerts):
        venue_a.query_error = VenueAuthError("paradex", "expired", 401)

        with pytest.raises(VenueAuthError):
            await asyncio.wait_for(engine.run(), timeout=2.0)

        alerts.alert_fatal.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_round_errors_cool_down_and_continue(self, engine, venue_a, venue_b):
        venue_a.query_fails = True

        task = asyncio.create_task(engine.run())
        await asyncio.sleep(0.05)
        engine.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert engine.round_number >= 2
        assert venue_a.orders == [] and venue_b.orders == []
        assert engine.state is HedgeState.IDLE

    @pytest.mark.asyncio
    async def test_open_exhaustion_does_not_stop_loop(self, venue_a, venue_b, alerts):
        engine = make_engine(venue_a, venue_b, alerts, max_retries=1)
        venue_a.fill_ratio = 0.0
        venue_b.fill_ratio = 0.0

        task = asyncio.create_task(engine.run())
        await asyncio.sleep(0.2)
        engine.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert engine.round_number >= 2
        assert engine.state is HedgeState.IDLE
