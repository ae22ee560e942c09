#!/usr/bin/env python3
"""
Flatten both venues once and exit.

    python -m hedgebot.tools.emergency_close [--yes]

Uses the same configuration as the bot (.env / HEDGE_* variables). Sends
reduce-only orders sized to each venue's live position, waits for the
settle delay and prints the resulting positions.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from hedgebot.app import build_alerts, build_connectors, load_signer_factory
from hedgebot.config.config import Settings
from hedgebot.execution.fill_monitor import FillMonitor
from hedgebot.execution.partial_fill_recovery import PartialFillRecovery
from hedgebot.infra.logging_cfg import build_logger, parse_level
from hedgebot.orchestrator.hedge_engine import HedgeEngine, HedgeEngineConfig, is_flat
from hedgebot.state.pnl_accountant import PnLAccountant


def confirm(settings: Settings) -> bool:
    print("=" * 60)
    print(f"EMERGENCY CLOSE  network={settings.network}  symbol={settings.symbol}")
    print("=" * 60)
    response = input("Type 'close' to flatten both venues: ")
    return response.strip().lower() == "close"


async def emergency_close(settings: Settings) -> int:
    venue_a, venue_b = build_connectors(settings, load_signer_factory(settings.signer_factory))
    alerts = build_alerts(settings)
    engine = HedgeEngine(
        venue_a, venue_b, settings.risk_thresholds(), alerts,
        PnLAccountant(), FillMonitor(venue_a, venue_b), PartialFillRecovery(venue_a, venue_b, alerts),
        HedgeEngineConfig.from_settings(settings),
    )
    try:
        await asyncio.gather(venue_a.initialize(), venue_b.initialize())
        before = await engine.snapshot()
        print(f"Before: {venue_a.name}={before.venue_a_position} {venue_b.name}={before.venue_b_position}")
        after = await engine.emergency_close("manual")
        print(f"After:  {venue_a.name}={after.venue_a_position} {venue_b.name}={after.venue_b_position}")
        return 0 if is_flat(after) else 2
    finally:
        await alerts.flush()
        await asyncio.gather(venue_a.close(), venue_b.close(), return_exceptions=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Flatten both hedge venues")
    parser.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    args = parser.parse_args()

    settings = Settings.load()
    build_logger("hedgebot", level=parse_level(settings.log_level), file_path=settings.log_file)
    settings.log_summary()
    if not args.yes and not confirm(settings):
        print("Aborted")
        sys.exit(1)

    try:
        code = asyncio.run(emergency_close(settings))
    except KeyboardInterrupt:
        print("\nInterrupted")
        code = 1
    except Exception as e:
        print(f"\nError: {e}")
        code = 1
    if code == 2:
        print("Residual position remains; check both venues manually")
    sys.exit(code)


if __name__ == "__main__":
    main()
