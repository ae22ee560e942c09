"""
Lighter adapter (venue B by default).

Lighter reports positions as an unsigned ``position`` plus a ``sign`` field,
sizes on the wire are integers scaled by the market's size decimals, and
order history carries the filled quote amount directly, so PnL notionals
come from ``filled_quote_amount`` rather than price x size.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from hedgebot.connectors.base import OrderSigner, VenueConnector, as_bool, safe_float
from hedgebot.core.errors import OrderRejectedError, VenueError
from hedgebot.core.types import OrderReceipt, Side, VenueOrderRecord
from hedgebot.infra.logging_cfg import log_event

log = logging.getLogger("hedgebot")

DEFAULT_MAX_SLIPPAGE = 0.05


def parse_position(account_payload: Dict[str, Any], market_id: int) -> float:
    accounts = account_payload.get("accounts") if isinstance(account_payload, dict) else None
    if not accounts or not isinstance(accounts[0], dict):
        return 0.0
    for entry in accounts[0].get("positions") or []:
        if not isinstance(entry, dict):
            continue
        try:
            entry_market = int(entry.get("market_id"))
        except (TypeError, ValueError):
            continue
        if entry_market != market_id:
            continue
        size = abs(safe_float(entry.get("position")) or 0.0)
        sign = safe_float(entry.get("sign"))
        if sign is None:
            sign = 1.0
        if sign > 0:
            return size
        if sign < 0:
            return -size
        return 0.0
    return 0.0


def normalize_order(raw: Dict[str, Any]) -> Optional[VenueOrderRecord]:
    """Map one accountInactiveOrders entry; unfilled orders return None."""
    filled = safe_float(raw.get("filled_base_amount")) or 0.0
    if filled <= 0:
        return None
    # The ``side`` field is empty on this endpoint; direction lives in is_ask.
    is_ask = as_bool(raw.get("is_ask"))
    if is_ask is None:
        return None
    return VenueOrderRecord(
        side=Side.SELL if is_ask else Side.BUY,
        size=filled,
        price=safe_float(raw.get("price")) if raw.get("filled_quote_amount") is None else None,
        filled_quote=safe_float(raw.get("filled_quote_amount")),
        reduce_only=as_bool(raw.get("reduce_only")),
        timestamp_ms=int(safe_float(raw.get("timestamp")) or 0),
    )


def scale_size(size: float, decimals: int) -> int:
    return int(round(size * (10 ** decimals)))


class LighterConnector(VenueConnector):
    """Thin httpx adapter over the Lighter REST API."""

    def __init__(
        self,
        symbol: str,
        base_url: str,
        signer: OrderSigner,
        account_index: int,
        api_key_index: int = 0,
        max_slippage: float = DEFAULT_MAX_SLIPPAGE,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        name: str = "lighter",
    ) -> None:
        super().__init__(name, symbol, base_url, signer, timeout=timeout, client=client)
        self.account_index = account_index
        self.api_key_index = api_key_index
        self.max_slippage = max_slippage
        self.market_id: Optional[int] = None
        self.size_decimals: int = 4

    async def initialize(self) -> None:
        payload = await self._request("GET", "/api/v1/orderBooks")
        books = []
        if isinstance(payload, dict):
            books = payload.get("order_books") or payload.get("orderBooks") or []
        market = next(
            (b for b in books if isinstance(b, dict) and str(b.get("symbol", "")).upper() == self.symbol.upper()),
            None,
        )
        if market is None or market.get("market_id") is None:
            available = ", ".join(str(b.get("symbol")) for b in books if isinstance(b, dict))
            raise VenueError(self.name, f"market {self.symbol} not found (available: {available})")
        self.market_id = int(market["market_id"])
        decimals = market.get("supported_size_decimals", market.get("size_decimals"))
        if decimals is not None:
            self.size_decimals = int(decimals)

        # Confirms the account exists before any order is sent.
        account = await self._request(
            "GET", "/api/v1/account", params={"by": "index", "value": str(self.account_index)},
        )
        if not isinstance(account, dict) or not account.get("accounts"):
            raise VenueError(self.name, f"account {self.account_index} not found")
        log_event(
            log, "connector_ready", venue=self.name, market_id=self.market_id,
            size_decimals=self.size_decimals,
        )

    def _require_market(self) -> int:
        if self.market_id is None:
            raise VenueError(self.name, "connector not initialized")
        return self.market_id

    async def _fetch_position(self) -> float:
        market_id = self._require_market()
        payload = await self._request(
            "GET", "/api/v1/account", params={"by": "index", "value": str(self.account_index)},
        )
        return parse_position(payload, market_id)

    async def _best_price(self, is_buy: bool) -> float:
        payload = await self._request(
            "GET", "/api/v1/orderBookOrders", params={"market_id": self._require_market(), "limit": 1},
        )
        levels = (payload.get("asks") if is_buy else payload.get("bids")) if isinstance(payload, dict) else None
        price = safe_float(levels[0].get("price")) if levels else None
        if not price:
            raise VenueError(self.name, "empty order book")
        return price

    async def _submit(self, direction: Side, size: float, reduce_only: bool) -> OrderReceipt:
        market_id = self._require_market()
        base_amount = scale_size(size, self.size_decimals)
        if base_amount < 1:
            raise OrderRejectedError(
                self.name, f"size {size} is below the minimum unit (10^-{self.size_decimals})",
            )
        is_ask = direction is Side.SELL
        order = {
            "market_index": market_id,
            "client_order_index": int(time.time() * 1000),
            "base_amount": base_amount,
            "is_ask": is_ask,
            "reduce_only": reduce_only,
            "order_type": "market",
            "max_slippage": self.max_slippage,
            "ideal_price": await self._best_price(is_buy=not is_ask),
            "api_key_index": self.api_key_index,
            "account_index": self.account_index,
        }
        tx = self.signer.sign_order(order)
        if "tx_type" not in tx or "tx_info" not in tx:
            raise OrderRejectedError(self.name, "signer returned no transaction")

        payload = await self._request(
            "POST",
            "/api/v1/sendTx",
            data={"tx_type": str(tx["tx_type"]), "tx_info": tx["tx_info"], "price_protection": "true"},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if not isinstance(payload, dict):
            raise OrderRejectedError(self.name, f"unexpected sendTx response: {payload!r}")
        code = payload.get("code", 200)
        if code != 200:
            raise OrderRejectedError(self.name, str(payload.get("message") or f"code {code}"), code)
        return OrderReceipt(
            venue=self.name,
            order_id=payload.get("tx_hash"),
            direction=direction,
            size=size,
            reduce_only=reduce_only,
            raw=payload,
        )

    async def _fetch_orders(self, limit: int) -> List[VenueOrderRecord]:
        token = self.signer.auth_token()
        params: Dict[str, Any] = {
            "account_index": self.account_index,
            "market_id": self._require_market(),
            "limit": limit,
        }
        headers = None
        if token:
            params["auth"] = token
            headers = {"authorization": token}
        payload = await self._request("GET", "/api/v1/accountInactiveOrders", params=params, headers=headers)
        orders = payload.get("orders", []) if isinstance(payload, dict) else []
        records = []
        for raw in orders:
            if isinstance(raw, dict):
                record = normalize_order(raw)
                if record is not None:
                    records.append(record)
        return records
