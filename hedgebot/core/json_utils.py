"""
JSON helpers for structured log payloads and alert bodies.

Usage:
    from hedgebot.core.json_utils import dumps

    log.info(dumps({"event": "round_settled", "round": 3, "total_pnl": 0.42}))
"""

from __future__ import annotations

from typing import Any

import orjson

_OPTIONS = orjson.OPT_NON_STR_KEYS


def _default(obj: Any) -> Any:
    # Enums and other small value objects end up in log payloads.
    if hasattr(obj, "value"):
        return obj.value
    return str(obj)


def dumps(obj: Any) -> str:
    """Encode to a compact JSON string."""
    return orjson.dumps(obj, default=_default, option=_OPTIONS).decode("utf-8")


def dumps_bytes(obj: Any) -> bytes:
    """Encode to JSON bytes (skips the utf-8 decode)."""
    return orjson.dumps(obj, default=_default, option=_OPTIONS)


def loads(s: str | bytes) -> Any:
    """Decode JSON text or bytes."""
    return orjson.loads(s)
