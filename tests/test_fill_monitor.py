"""
Tests for FillMonitor.
"""
import pytest

from hedgebot.core.types import PositionSnapshot
from hedgebot.execution.fill_monitor import FILL_TOLERANCE, FillMonitor, FillMonitorConfig, leg_filled


class TestLegFilled:

    def test_tolerance_is_95_percent(self):
        assert FILL_TOLERANCE == 0.95

    def test_boundary_is_inclusive(self):
        assert leg_filled(0.0, 0.95, 1.0)

    def test_just_below_boundary_is_unfilled(self):
        assert not leg_filled(0.0, 0.949999, 1.0)

    def test_short_fill_counts_by_magnitude(self):
        assert leg_filled(0.0, -1.0, 1.0)

    def test_delta_from_nonzero_start(self):
        assert leg_filled(0.5, 1.5, 1.0)
        assert not leg_filled(0.5, 0.6, 1.0)


class TestFillMonitor:

    @pytest.fixture
    def monitor(self, venue_a, venue_b):
        return FillMonitor(venue_a, venue_b, FillMonitorConfig(timeout_ms=30, check_interval_ms=1))

    @pytest.mark.asyncio
    async def test_both_filled_returns_early(self, monitor, venue_a, venue_b):
        before = PositionSnapshot(0.0, 0.0)
        venue_a.position = 1.0
        venue_b.position = -1.0

        outcome = await monitor.wait_for_fills(before, 1.0)

        assert outcome.both_filled
        assert outcome.venue_a_delta == pytest.approx(1.0)
        assert outcome.venue_b_delta == pytest.approx(-1.0)

    @pytest.mark.asyncio
    async def test_boundary_sizes(self, monitor, venue_a, venue_b):
        before = PositionSnapshot(0.0, 0.0)
        venue_a.position = 0.949999
        venue_b.position = -0.95

        outcome = await monitor.wait_for_fills(before, 1.0)

        assert not outcome.venue_a_filled
        assert outcome.venue_b_filled

    @pytest.mark.asyncio
    async def test_times_out_with_nothing_filled(self, monitor):
        outcome = await monitor.wait_for_fills(PositionSnapshot(0.0, 0.0), 1.0, timeout_ms=5)
        assert not outcome.venue_a_filled
        assert not outcome.venue_b_filled
        assert outcome.observed

    @pytest.mark.asyncio
    async def test_failed_read_is_not_a_fill(self, venue_a, venue_b):
        monitor = FillMonitor(venue_a, venue_b, FillMonitorConfig(timeout_ms=5, check_interval_ms=1))
        # long 1.0 before; a failed read would report 0 and look like a 1.0 sell
        venue_a.position = 1.0
        venue_a.query_fails = True
        venue_b.position = -1.0

        outcome = await monitor.wait_for_fills(PositionSnapshot(1.0, 0.0), 1.0)

        assert not outcome.venue_a_filled
        assert not outcome.venue_b_filled
        assert not outcome.observed

    @pytest.mark.asyncio
    async def test_poll_exception_keeps_previous_outcome(self, venue_a, venue_b):
        events = []
        monitor = FillMonitor(
            venue_a, venue_b,
            FillMonitorConfig(timeout_ms=5, check_interval_ms=1,
                              log_event_callback=lambda e, **kw: events.append(e)),
        )
        venue_b.query_error = RuntimeError("boom")

        outcome = await monitor.wait_for_fills(PositionSnapshot(0.0, 0.0), 1.0)

        assert not outcome.both_filled
        assert "fill_poll_failed" in events
        assert events[-1] == "fill_check_done"
