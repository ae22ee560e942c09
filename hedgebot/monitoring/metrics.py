"""
Prometheus metrics for the hedge loop.

Organized into: rounds, positions, execution, venues.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server


class HedgeMetrics:
    """Counters and gauges for the hedge engine and its monitors."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()

        # === Round Metrics ===
        self.rounds_total = Counter(
            'rounds_total',
            'Rounds settled',
            registry=reg
        )
        self.round_pnl = Histogram(
            'round_pnl',
            'Realized PnL per round (USD)',
            buckets=[-10, -5, -1, -0.5, -0.1, 0, 0.1, 0.5, 1, 5, 10],
            registry=reg
        )
        self.cumulative_pnl = Gauge(
            'cumulative_pnl',
            'Cumulative realized PnL (USD)',
            labelnames=['venue'],
            registry=reg
        )

        # === Position Metrics ===
        self.net_position = Gauge(
            'net_position',
            'Net position across both venues',
            registry=reg
        )
        self.venue_position = Gauge(
            'venue_position',
            'Signed position per venue',
            labelnames=['venue'],
            registry=reg
        )

        # === Execution Metrics ===
        self.partial_fills = Counter(
            'partial_fills_total',
            'One-sided fills detected',
            labelnames=['filled_leg'],
            registry=reg
        )
        self.emergency_closes = Counter(
            'emergency_closes_total',
            'Emergency flatten operations',
            labelnames=['reason'],
            registry=reg
        )
        self.open_retries = Counter(
            'open_retries_total',
            'Open attempts that failed and were retried',
            registry=reg
        )
        self.orders_submitted = Counter(
            'orders_submitted_total',
            'Orders submitted',
            labelnames=['venue', 'side', 'reduce_only'],
            registry=reg
        )
        self.order_failures = Counter(
            'order_failures_total',
            'Order submissions that raised',
            labelnames=['venue'],
            registry=reg
        )

        # === Venue / Engine ===
        self.venue_up = Gauge(
            'venue_up',
            'Venue reachable (1=up, 0=down)',
            labelnames=['venue'],
            registry=reg
        )
        self.engine_state = Gauge(
            'engine_state',
            'Engine state (1 for the current state)',
            labelnames=['state'],
            registry=reg
        )

        self.registry = reg

    def get_registry(self):
        """Return the Prometheus registry for export."""
        return self.registry

    def observe_positions(self, venue_a: str, venue_b: str, snapshot) -> None:
        self.venue_position.labels(venue=venue_a).set(snapshot.venue_a_position)
        self.venue_position.labels(venue=venue_b).set(snapshot.venue_b_position)
        self.net_position.set(snapshot.net_position)

    def set_state(self, state: str, all_states) -> None:
        for name in all_states:
            self.engine_state.labels(state=name).set(1 if name == state else 0)

    def serve(self, port: int) -> None:
        """Expose /metrics on ``port`` (background thread)."""
        start_http_server(port, registry=self.registry)
