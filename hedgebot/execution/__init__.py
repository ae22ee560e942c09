"""
Execution layer for the hedge round.

- HedgeStateMachine: engine states and the transition table
- FillMonitor: fill detection from position deltas
- PartialFillRecovery: one-shot repair of a one-sided fill
"""

from hedgebot.execution.fill_monitor import FILL_TOLERANCE, FillMonitor, FillMonitorConfig
from hedgebot.execution.hedge_state_machine import (
    VALID_TRANSITIONS,
    HedgeState,
    HedgeStateMachine,
    StateTransition,
)
from hedgebot.execution.partial_fill_recovery import PartialFillRecovery, PartialFillRecoveryConfig

__all__ = [
    "FILL_TOLERANCE",
    "FillMonitor",
    "FillMonitorConfig",
    "VALID_TRANSITIONS",
    "HedgeState",
    "HedgeStateMachine",
    "StateTransition",
    "PartialFillRecovery",
    "PartialFillRecoveryConfig",
]
