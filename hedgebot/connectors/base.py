"""
VenueConnector: the capability interface every venue adapter implements.

The engine and monitors only ever see canonical values (signed float
positions, OrderReceipt, VenueOrderRecord). Venue JSON is parsed inside the
adapter modules and never leaves this package.

Transport:
    All HTTP goes through ``_request()``. Idempotent GETs are retried with
    exponential backoff plus jitter; order submissions are sent once, since a
    timed-out POST may still have reached the matching engine.

Error mapping:
    401/403                -> VenueAuthError
    429, 5xx, timeouts     -> VenueTransientError
    other 4xx on POST      -> OrderRejectedError
    other 4xx on GET       -> VenueError
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Protocol

import httpx

from hedgebot.core.errors import (
    OrderRejectedError,
    VenueAuthError,
    VenueError,
    VenueTransientError,
)
from hedgebot.core.json_utils import loads
from hedgebot.core.types import OrderReceipt, PositionRead, Side, VenueOrderRecord
from hedgebot.infra.logging_cfg import log_event

log = logging.getLogger("hedgebot")


class OrderSigner(Protocol):
    """
    Venue-specific signing, supplied from outside the bot.

    ``sign_order`` receives the unsigned order fields and returns the fields
    to merge into (Paradex) or send as (Lighter) the request body.
    ``auth_token`` returns the current session token or None.
    """

    def sign_order(self, order: Dict[str, Any]) -> Dict[str, Any]: ...

    def auth_token(self) -> Optional[str]: ...


# ─────────────────────────────────────────────────────────────────────
# Normalization helpers shared by the adapters
# ─────────────────────────────────────────────────────────────────────

def safe_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if value in (None, "", "NaN"):
        return None
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "y", "t"):
            return True
        if lowered in ("false", "0", "no", "n", "f"):
            return False
    return None


def newest_first(records: List[VenueOrderRecord]) -> List[VenueOrderRecord]:
    # sorted() is stable, so venues that omit timestamps keep their own order
    return sorted(records, key=lambda r: r.timestamp_ms, reverse=True)


class VenueConnector(ABC):
    """
    Base class for venue adapters.

    Subclasses implement the ``_fetch_*`` / ``_submit`` hooks; the public
    methods here own logging and the "zero / empty on transient failure"
    contract.
    """

    def __init__(
        self,
        name: str,
        symbol: str,
        base_url: str,
        signer: OrderSigner,
        timeout: float = 10.0,
        get_retries: int = 2,
        backoff_sec: float = 0.2,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.name = name
        self.symbol = symbol
        self.signer = signer
        self._get_retries = get_retries
        self._backoff_sec = backoff_sec
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )
        self._closed = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(symbol={self.symbol!r})"

    # ─────────────────────────────────────────────────────────────────
    # Public capability interface
    # ─────────────────────────────────────────────────────────────────

    @abstractmethod
    async def initialize(self) -> None:
        """Authenticate and resolve the market. Failure is fatal for the caller."""

    async def read_position(self) -> PositionRead:
        """
        Signed position size (long > 0, short < 0) with the query outcome.

        Transient failures are logged and reported as ``PositionRead(0.0,
        ok=False)``. Auth failures propagate. The outcome belongs to this
        call only, so concurrent readers never see each other's failures.
        """
        try:
            position = await self._fetch_position()
        except VenueAuthError:
            raise
        except VenueError as exc:
            log_event(log, "position_query_failed", logging.WARNING, venue=self.name, error=str(exc))
            return PositionRead(0.0, ok=False)
        return PositionRead(position)

    async def current_position(self) -> float:
        """Signed position size; 0.0 when flat or when the query failed."""
        return (await self.read_position()).value

    async def submit_market_order(self, direction: Side, size: float, reduce_only: bool = False) -> OrderReceipt:
        if not size > 0:
            raise ValueError(f"order size must be positive, got {size}")
        log_event(
            log, "order_submit", venue=self.name, side=direction.value,
            size=size, reduce_only=reduce_only,
        )
        try:
            receipt = await self._submit(direction, size, reduce_only)
        except VenueError as exc:
            log_event(
                log, "order_submit_failed", logging.ERROR, venue=self.name,
                side=direction.value, size=size, reduce_only=reduce_only,
                error=str(exc), error_type=type(exc).__name__,
            )
            raise
        log_event(log, "order_accepted", venue=self.name, order_id=receipt.order_id)
        return receipt

    async def recent_orders(self, limit: int = 10) -> List[VenueOrderRecord]:
        """Newest-first filled order history; empty on failure."""
        try:
            records = await self._fetch_orders(limit)
        except VenueError as exc:
            log_event(log, "order_history_failed", logging.WARNING, venue=self.name, error=str(exc))
            return []
        return newest_first(records)[:limit]

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            await self._client.aclose()
        log_event(log, "connector_closed", venue=self.name)

    # ─────────────────────────────────────────────────────────────────
    # Adapter hooks
    # ─────────────────────────────────────────────────────────────────

    @abstractmethod
    async def _fetch_position(self) -> float: ...

    @abstractmethod
    async def _submit(self, direction: Side, size: float, reduce_only: bool) -> OrderReceipt: ...

    @abstractmethod
    async def _fetch_orders(self, limit: int) -> List[VenueOrderRecord]: ...

    # ─────────────────────────────────────────────────────────────────
    # Transport
    # ─────────────────────────────────────────────────────────────────

    def _auth_headers(self) -> Dict[str, str]:
        token = self.signer.auth_token()
        if not token:
            raise VenueAuthError(self.name, "no session token available")
        return {"Authorization": f"Bearer {token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        method = method.upper()
        attempts = self._get_retries + 1 if method == "GET" else 1
        backoff = self._backoff_sec
        for attempt in range(attempts):
            cause: Optional[BaseException] = None
            try:
                resp = await self._client.request(
                    method, path, params=params, json=json_body, data=data, headers=headers,
                )
            except httpx.TimeoutException as exc:
                cause = exc
                err: VenueError = VenueTransientError(self.name, f"timeout on {method} {path}")
            except httpx.TransportError as exc:
                cause = exc
                err = VenueTransientError(self.name, f"{type(exc).__name__} on {method} {path}: {exc}")
            else:
                classified = self._classify(resp, method, path)
                if classified is None:
                    return self._decode(resp, method, path)
                err = classified

            if isinstance(err, VenueTransientError) and attempt < attempts - 1:
                log_event(
                    log, "http_retry", logging.DEBUG, venue=self.name,
                    path=path, attempt=attempt + 1, error=str(err),
                )
                await asyncio.sleep(backoff + random.uniform(0, backoff * 0.5))
                backoff *= 2
                continue
            raise err from cause
        raise AssertionError("unreachable")

    def _classify(self, resp: httpx.Response, method: str, path: str) -> Optional[VenueError]:
        status = resp.status_code
        if status < 400:
            return None
        detail = resp.text.strip()[:300] or resp.reason_phrase
        message = f"HTTP {status} on {method} {path}: {detail}"
        if status in (401, 403):
            return VenueAuthError(self.name, message, status)
        if status == 429 or status >= 500:
            return VenueTransientError(self.name, message, status)
        if method == "POST":
            return OrderRejectedError(self.name, message, status)
        return VenueError(self.name, message, status)

    def _decode(self, resp: httpx.Response, method: str, path: str) -> Any:
        if not resp.content:
            return {}
        try:
            return loads(resp.content)
        except ValueError as exc:
            raise VenueTransientError(self.name, f"invalid JSON from {method} {path}") from exc
