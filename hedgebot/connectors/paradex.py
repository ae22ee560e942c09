"""
Paradex adapter (venue A by default).

- Positions: GET /positions, OPEN entries for ``<SYMBOL>-USD-PERP``; the
  ``size`` field is already signed
- Orders: POST /orders, MARKET type, reduce-only via the REDUCE_ONLY flag
- History: GET /orders-history, average fill price per order
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from hedgebot.connectors.base import OrderSigner, VenueConnector, safe_float
from hedgebot.core.errors import OrderRejectedError, VenueError
from hedgebot.core.types import OrderReceipt, Side, VenueOrderRecord
from hedgebot.infra.logging_cfg import log_event

log = logging.getLogger("hedgebot")

REDUCE_ONLY_FLAG = "REDUCE_ONLY"


def market_name(symbol: str) -> str:
    return f"{symbol.upper()}-USD-PERP"


def format_size(size: float) -> str:
    text = f"{size:.8f}".rstrip("0").rstrip(".")
    return text or "0"


def parse_position(results: Iterable[Dict[str, Any]], market: str) -> float:
    for entry in results:
        if not isinstance(entry, dict):
            continue
        if entry.get("market") != market or entry.get("status") != "OPEN":
            continue
        return safe_float(entry.get("size")) or 0.0
    return 0.0


def normalize_order(raw: Dict[str, Any]) -> Optional[VenueOrderRecord]:
    """
    Map one /orders-history entry to a VenueOrderRecord.

    Orders with nothing filled (cancelled, rejected) return None.
    """
    side_raw = str(raw.get("side", "")).upper()
    if side_raw not in ("BUY", "SELL"):
        return None
    size = safe_float(raw.get("size")) or 0.0
    remaining = safe_float(raw.get("remaining_size")) or 0.0
    filled = max(size - remaining, 0.0)
    if filled <= 0:
        return None

    flags = raw.get("flags")
    reduce_only: Optional[bool] = None
    if isinstance(flags, list):
        reduce_only = REDUCE_ONLY_FLAG in flags

    return VenueOrderRecord(
        side=Side.BUY if side_raw == "BUY" else Side.SELL,
        size=filled,
        price=safe_float(raw.get("avg_fill_price")),
        filled_quote=None,
        reduce_only=reduce_only,
        timestamp_ms=int(safe_float(raw.get("created_at")) or 0),
    )


class ParadexConnector(VenueConnector):
    """Thin httpx adapter over the Paradex REST API."""

    def __init__(
        self,
        symbol: str,
        base_url: str,
        signer: OrderSigner,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        name: str = "paradex",
    ) -> None:
        super().__init__(name, symbol, base_url, signer, timeout=timeout, client=client)
        self.market = market_name(symbol)

    async def initialize(self) -> None:
        # Fails fast with VenueAuthError when no session token is configured.
        headers = self._auth_headers()
        payload = await self._request("GET", "/markets", params={"market": self.market})
        results = payload.get("results") if isinstance(payload, dict) else None
        if not results:
            raise VenueError(self.name, f"market {self.market} not listed")
        await self._request("GET", "/account", headers=headers)
        log_event(log, "connector_ready", venue=self.name, market=self.market)

    async def _fetch_position(self) -> float:
        payload = await self._request("GET", "/positions", headers=self._auth_headers())
        results = payload.get("results", []) if isinstance(payload, dict) else []
        return parse_position(results, self.market)

    async def _submit(self, direction: Side, size: float, reduce_only: bool) -> OrderReceipt:
        order: Dict[str, Any] = {
            "market": self.market,
            "side": direction.name,
            "type": "MARKET",
            "size": format_size(size),
            "instruction": "GTC",
        }
        if reduce_only:
            order["flags"] = [REDUCE_ONLY_FLAG]
        body = {**order, **self.signer.sign_order(dict(order))}

        payload = await self._request("POST", "/orders", json_body=body, headers=self._auth_headers())
        if not isinstance(payload, dict):
            raise OrderRejectedError(self.name, f"unexpected order response: {payload!r}")
        if payload.get("status") == "REJECTED":
            raise OrderRejectedError(self.name, str(payload.get("cancel_reason") or "rejected"))
        order_id = payload.get("id") or payload.get("order_id")
        return OrderReceipt(
            venue=self.name,
            order_id=str(order_id) if order_id is not None else None,
            direction=direction,
            size=size,
            reduce_only=reduce_only,
            raw=payload,
        )

    async def _fetch_orders(self, limit: int) -> List[VenueOrderRecord]:
        payload = await self._request(
            "GET",
            "/orders-history",
            params={"market": self.market, "page_size": limit},
            headers=self._auth_headers(),
        )
        results = payload.get("results", []) if isinstance(payload, dict) else []
        records = []
        for raw in results:
            if isinstance(raw, dict):
                record = normalize_order(raw)
                if record is not None:
                    records.append(record)
        return records
