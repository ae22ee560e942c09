"""
Monitoring and observability package.

Alert delivery and Prometheus metrics.
"""

from hedgebot.monitoring.alerting import (
    Alert,
    AlertConfig,
    AlertManager,
    AlertSeverity,
    AlertType,
    WebhookFormatter,
)
from hedgebot.monitoring.metrics import HedgeMetrics

__all__ = [
    "Alert",
    "AlertConfig",
    "AlertManager",
    "AlertSeverity",
    "AlertType",
    "WebhookFormatter",
    "HedgeMetrics",
]
