"""
Infrastructure package.

Logging configuration and structured event helpers.
"""

from hedgebot.infra.logging_cfg import (
    AsyncQueueHandler,
    JsonFormatter,
    ThrottledFilter,
    build_logger,
    log_event,
    parse_level,
)

__all__ = [
    "AsyncQueueHandler",
    "JsonFormatter",
    "ThrottledFilter",
    "build_logger",
    "log_event",
    "parse_level",
]
