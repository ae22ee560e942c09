"""
State package.

In-memory round ledger and PnL reconstruction. Nothing here is persisted
across restarts.
"""

from hedgebot.state.pnl_accountant import (
    PnLAccountant,
    PnLAccountantConfig,
    VenuePnL,
    compute_venue_pnl,
    group_orders,
)

__all__ = [
    "PnLAccountant",
    "PnLAccountantConfig",
    "VenuePnL",
    "compute_venue_pnl",
    "group_orders",
]
