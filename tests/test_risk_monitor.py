"""
Tests for RiskMonitor and LivenessMonitor.
"""
import asyncio

import pytest
from prometheus_client import CollectorRegistry

from hedgebot.core.errors import VenueAuthError
from hedgebot.core.types import RiskThresholds
from hedgebot.monitoring.metrics import HedgeMetrics
from hedgebot.risk.liveness_monitor import LivenessMonitor, LivenessMonitorConfig
from hedgebot.risk.risk_monitor import RiskMonitor, RiskMonitorConfig


@pytest.fixture
def thresholds():
    return RiskThresholds(max_net_position=0.1, max_position_deviation=0.05, price_slippage_tolerance=0.002)


@pytest.fixture
def metrics():
    return HedgeMetrics(registry=CollectorRegistry())


class TestRiskMonitor:

    @pytest.fixture
    def monitor(self, venue_a, venue_b, thresholds, alerts, metrics):
        return RiskMonitor(venue_a, venue_b, thresholds, alerts, RiskMonitorConfig(interval_sec=0.01), metrics)

    @pytest.mark.asyncio
    async def test_hedged_positions_do_not_alert(self, monitor, venue_a, venue_b, alerts, metrics):
        venue_a.position = 1.0
        venue_b.position = -1.0

        snap = await monitor.check()

        assert snap.net_position == pytest.approx(0.0)
        alerts.alert_net_position.assert_not_called()
        assert metrics.registry.get_sample_value("venue_position", {"venue": "paradex"}) == 1.0

    @pytest.mark.asyncio
    async def test_breach_alerts_but_never_trades(self, monitor, venue_a, venue_b, alerts):
        venue_a.position = 0.5

        snap = await monitor.check()

        assert snap.net_position == pytest.approx(0.5)
        alerts.alert_net_position.assert_awaited_once()
        assert venue_a.orders == [] and venue_b.orders == []
        assert monitor.get_stats()["breaches"] == 1

    @pytest.mark.asyncio
    async def test_boundary_is_not_a_breach(self, monitor, venue_a, alerts):
        venue_a.position = 0.1
        await monitor.check()
        alerts.alert_net_position.assert_not_called()
        assert monitor.get_stats()["deviation_warnings"] == 1

    @pytest.mark.asyncio
    async def test_failed_read_skips_evaluation(self, monitor, venue_a, venue_b, alerts):
        venue_a.position = 0.0
        venue_b.position = -1.0
        venue_a.query_fails = True

        assert await monitor.check() is None
        alerts.alert_net_position.assert_not_called()

    @pytest.mark.asyncio
    async def test_auth_failure_skips_evaluation(self, monitor, venue_b, alerts):
        venue_b.query_error = VenueAuthError("lighter", "expired")
        assert await monitor.check() is None
        alerts.alert_net_position.assert_not_called()

    @pytest.mark.asyncio
    async def test_run_stops(self, monitor):
        task = asyncio.create_task(monitor.run())
        await asyncio.sleep(0.03)
        monitor.stop()
        await asyncio.wait_for(task, timeout=1.0)
        assert monitor.stopped
        assert monitor.get_stats()["checks"] >= 1


class TestLivenessMonitor:

    @pytest.fixture
    def monitor(self, venue_a, venue_b, alerts, metrics):
        return LivenessMonitor(venue_a, venue_b, alerts, LivenessMonitorConfig(interval_sec=0.01), metrics)

    @pytest.mark.asyncio
    async def test_healthy(self, monitor, metrics):
        status = await monitor.check()
        assert status == {"paradex": True, "lighter": True}
        assert monitor.healthy
        assert metrics.registry.get_sample_value("venue_up", {"venue": "lighter"}) == 1.0

    @pytest.mark.asyncio
    async def test_alerts_once_per_outage(self, monitor, venue_b, alerts, metrics):
        venue_b.query_fails = True

        await monitor.check()
        await monitor.check()

        assert not monitor.healthy
        alerts.alert_venue_unhealthy.assert_awaited_once()
        assert metrics.registry.get_sample_value("venue_up", {"venue": "lighter"}) == 0.0

    @pytest.mark.asyncio
    async def test_recovery(self, monitor, venue_a, alerts):
        venue_a.query_error = RuntimeError("connection reset")
        await monitor.check()
        assert monitor.status["paradex"] is False

        venue_a.query_error = None
        await monitor.check()
        assert monitor.healthy
        alerts.alert_venue_unhealthy.assert_awaited_once()
