"""
Risk package.

Background monitors that observe both venues independently of the round
loop: net exposure (RiskMonitor) and reachability (LivenessMonitor).
"""

from hedgebot.risk.liveness_monitor import LivenessMonitor, LivenessMonitorConfig
from hedgebot.risk.risk_monitor import RiskMonitor, RiskMonitorConfig

__all__ = [
    "LivenessMonitor",
    "LivenessMonitorConfig",
    "RiskMonitor",
    "RiskMonitorConfig",
]
