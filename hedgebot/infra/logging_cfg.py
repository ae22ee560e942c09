"""
Logging for the hedge bot.

Components emit one JSON object per event through ``log_event``, e.g.
``{"event": "open_attempt", "attempt": 1, ...}`` or
``{"event": "partial_fill_detected", ...}``. ``build_logger`` sends them to
two sinks:

    console   rich, the raw event text; repeats of per-poll venue failures
              (position_query_failed, order_history_failed, venue_unhealthy)
              are throttled per venue
    file      one flat JSON line per record (event fields lifted to the top
              level), written off the event loop by AsyncQueueHandler

CRITICAL_SAFETY marks lines an operator must act on: partial fills,
emergency closes, net breaches and fatal venue errors.
"""

from __future__ import annotations

import atexit
import logging
import queue
import sys
import threading
import time
from datetime import datetime
from typing import Any, Dict, Optional, Set

from rich.logging import RichHandler

from hedgebot.core.json_utils import dumps, loads

LOGGER_NAME = "hedgebot"

CRITICAL_SAFETY = logging.CRITICAL

DEFAULT_THROTTLED_EVENTS = frozenset({
    "position_query_failed",
    "order_history_failed",
    "venue_unhealthy",
})


def event_payload(msg: str) -> Optional[Dict[str, Any]]:
    """The event dict behind a ``log_event`` message, or None for plain text."""
    if not msg.startswith("{"):
        return None
    try:
        data = loads(msg)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class JsonFormatter(logging.Formatter):
    """Flat JSON line: event fields plus timestamp, level and logger name."""

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        data = event_payload(msg)
        payload: Dict[str, Any] = dict(data) if data is not None else {"msg": msg}
        payload.update(
            ts=record.created,
            ts_iso=datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds"),
            level=record.levelname,
            logger=record.name,
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return dumps(payload)


class AsyncQueueHandler(logging.Handler):
    """
    File sink that never blocks a round.

    A fill window logs a ``fill_poll`` event every check interval, so disk
    writes happen on a writer thread. Records beyond ``max_queue_size`` are
    dropped and counted; ``close()`` drains what is queued first.
    """

    def __init__(self, target_handler: logging.Handler, max_queue_size: int = 10000):
        super().__init__()
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._target = target_handler
        self._shutdown = False
        self._dropped = 0
        self._thread = threading.Thread(target=self._worker, daemon=True, name="hedgebot-log-writer")
        self._thread.start()
        atexit.register(self.close)

    @property
    def dropped(self) -> int:
        return self._dropped

    def emit(self, record: logging.LogRecord) -> None:
        if self._shutdown:
            return
        try:
            self._queue.put_nowait(record)
        except queue.Full:
            self._dropped += 1

    def _worker(self) -> None:
        while not self._shutdown or not self._queue.empty():
            try:
                record = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._target.emit(record)
            except Exception:
                self._target.handleError(record)
            finally:
                self._queue.task_done()

    def close(self) -> None:
        if self._shutdown:
            return
        self._shutdown = True
        if self._thread.is_alive():
            self._thread.join(timeout=2.0)
        if self._dropped > 0:
            sys.stderr.write(f"[logging] dropped {self._dropped} records (queue full)\n")
        self._target.close()
        super().close()


class ThrottledFilter(logging.Filter):
    """
    Console filter for venue failures that repeat on every poll: the first
    ``position_query_failed`` for a venue passes, repeats for that venue are
    dropped for ``cooldown_sec``. The file sink keeps every record.
    """

    def __init__(self, cooldown_sec: float = 30.0, throttled_events: Optional[Set[str]] = None):
        super().__init__()
        self._cooldown = cooldown_sec
        self._last_seen: Dict[str, float] = {}
        self._throttled_events = set(throttled_events or DEFAULT_THROTTLED_EVENTS)

    def filter(self, record: logging.LogRecord) -> bool:
        data = event_payload(record.getMessage())
        if data is None:
            return True
        event = data.get("event", "")
        if event not in self._throttled_events:
            return True

        now = time.monotonic()
        key = f"{event}:{data.get('venue', '')}"
        last = self._last_seen.get(key)
        if last is not None and now - last < self._cooldown:
            return False
        self._last_seen[key] = now
        return True


def parse_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"unknown log level: {level}")
    return value


def build_logger(
    name: str = LOGGER_NAME,
    level: int = logging.INFO,
    file_path: Optional[str] = "hedgebot.log",
    async_file: bool = True,
    throttle_warnings: bool = True,
) -> logging.Logger:
    """
    Install the console and file sinks on ``name``.

    ``file_path=None`` keeps console only; ``async_file=False`` writes the
    file inline (tests). A second call for the same logger only changes
    the level.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        for h in logger.handlers:
            h.setLevel(level)
        return logger

    console = RichHandler(
        rich_tracebacks=False,
        show_time=True,
        show_level=True,
        show_path=False,
        markup=False,
    )
    console.setLevel(level)
    console.setFormatter(logging.Formatter("%(message)s"))
    if throttle_warnings:
        console.addFilter(ThrottledFilter(cooldown_sec=30.0))
    logger.addHandler(console)

    if file_path:
        file_handler = logging.FileHandler(file_path)
        file_handler.setFormatter(JsonFormatter())
        file_handler.setLevel(level)
        if async_file:
            handler: logging.Handler = AsyncQueueHandler(file_handler, max_queue_size=10000)
            handler.setLevel(level)
        else:
            handler = file_handler
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def log_event(
    logger: logging.Logger,
    event: str,
    level: int = logging.INFO,
    **data,
) -> None:
    """
    Usage:
        log_event(log, "close_residual", logging.WARNING, attempt=2, net=0.004)
    """
    logger.log(level, dumps({"event": event, **data}))
