"""
Entry point: ``python -m hedgebot.main``.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

from hedgebot.app import create_app, install_signal_handlers
from hedgebot.config.config import Settings, load_env_files
from hedgebot.infra.logging_cfg import CRITICAL_SAFETY, build_logger, log_event, parse_level

log = logging.getLogger("hedgebot")


def setup_logging(cfg: Optional[Settings] = None) -> logging.Logger:
    """Logger from the loaded settings; defaults when settings are invalid."""
    if cfg is None:
        return build_logger("hedgebot")
    return build_logger("hedgebot", level=parse_level(cfg.log_level), file_path=cfg.log_file)


async def main() -> int:
    load_env_files()
    try:
        cfg = Settings.load(env_files=False)
    except ValueError as exc:
        setup_logging()
        log_event(log, "config_invalid", CRITICAL_SAFETY, error=str(exc))
        return 1
    setup_logging(cfg)
    cfg.log_summary()
    log.debug(f"Settings: {cfg.dump()}")

    try:
        app = create_app(cfg)
    except (ValueError, ImportError) as exc:
        log_event(log, "startup_failed", CRITICAL_SAFETY, error=str(exc), error_type=type(exc).__name__)
        return 1

    install_signal_handlers(app)
    return await app.run()


def run() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()
