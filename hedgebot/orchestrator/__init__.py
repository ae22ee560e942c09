"""
Orchestrator package - the hedge round loop.

HedgeEngine sequences rebalance, open, hold and close for each round and
owns the engine state machine.
"""

from hedgebot.orchestrator.hedge_engine import (
    NET_CORRECTION_TOLERANCE,
    POSITION_DUST,
    HedgeEngine,
    HedgeEngineConfig,
    is_flat,
)

__all__ = [
    "NET_CORRECTION_TOLERANCE",
    "POSITION_DUST",
    "HedgeEngine",
    "HedgeEngineConfig",
    "is_flat",
]
