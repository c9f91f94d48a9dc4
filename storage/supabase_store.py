"""
Supabase store backend
PostgREST over httpx; the hosted production store
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import httpx
from loguru import logger

from execution.models import (
    Balance, IntentKind, IntentStatus, Order, OrderSide, OrderStatus,
    Position, PositionStatus, TransferIntent, utc_now,
)
from storage.base import (
    StoreError, balance_from_row, intent_from_row, order_from_row,
    position_from_row, to_db, to_db_fields,
)


def _in(values: Iterable[str]) -> str:
    return f"in.({','.join(values)})"


class SupabaseStore:
    """
    Store backed by Supabase's REST interface.

    Each call is one HTTP request against ``/rest/v1/<table>``; writes ask for
    ``return=representation`` so inserted rows come back with their ids.
    """

    def __init__(self, url: str, service_key: str, timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        if not url or not service_key:
            raise StoreError("SUPABASE_URL and SUPABASE_KEY are required")
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.session = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
                "Content-Type": "application/json",
            },
        )
        logger.info(f"Supabase store at {self.base_url}")

    async def close(self) -> None:
        await self.session.aclose()

    # ── Low-level helpers ────────────────────────────────────────────────

    async def _request(self, method: str, table: str, *, params: Optional[Dict[str, str]] = None,
                       json: Any = None, prefer: Optional[str] = None) -> List[Dict[str, Any]]:
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = await self.session.request(method, f"/{table}", params=params,
                                              json=json, headers=headers)
        except httpx.HTTPError as e:
            raise StoreError(f"{table}: {e}") from e
        if resp.status_code >= 400:
            raise StoreError(f"{table}: HTTP {resp.status_code} {resp.text}")
        if not resp.content:
            return []
        body = resp.json()
        return body if isinstance(body, list) else [body]

    async def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        return await self._request("GET", table, params={"select": "*", **params})

    async def _select_one(self, table: str, params: Dict[str, str]) -> Optional[Dict[str, Any]]:
        rows = await self._select(table, {**params, "limit": "1"})
        return rows[0] if rows else None

    async def _insert(self, table: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request("POST", table, json=to_db_fields(fields),
                                   prefer="return=representation")
        if not rows:
            raise StoreError(f"{table}: insert returned no row")
        return rows[0]

    async def _update(self, table: str, key: str, key_value: Any, fields: Dict[str, Any]) -> None:
        rows = await self._request("PATCH", table, params={key: f"eq.{key_value}"},
                                   json=to_db_fields(fields), prefer="return=representation")
        if not rows:
            raise StoreError(f"{table}: no row with {key}={key_value}")

    # ── Users ────────────────────────────────────────────────────────────

    async def upsert_user(self, wallet_address: str) -> int:
        rows = await self._request(
            "POST", "users", params={"on_conflict": "wallet_address"},
            json={"wallet_address": wallet_address},
            prefer="resolution=merge-duplicates,return=representation")
        if not rows:
            raise StoreError("Failed to fetch user data")
        return int(rows[0]["id"])

    async def get_user_id(self, wallet_address: str) -> Optional[int]:
        row = await self._select_one("users", {"wallet_address": f"eq.{wallet_address}"})
        return int(row["id"]) if row else None

    # ── Orders ───────────────────────────────────────────────────────────

    async def insert_order(self, user_id: int, side: OrderSide, points: Decimal,
                           amount: Decimal) -> Order:
        row = await self._insert("orders", {
            "user_id": user_id, "side": side, "points": points, "amount": amount,
            "filled_amount": Decimal("0"), "status": OrderStatus.PENDING,
            "created_at": utc_now(),
        })
        return order_from_row(row)

    async def get_order(self, order_id: int, user_id: Optional[int] = None) -> Optional[Order]:
        params = {"id": f"eq.{order_id}"}
        if user_id is not None:
            params["user_id"] = f"eq.{user_id}"
        row = await self._select_one("orders", params)
        return order_from_row(row) if row else None

    async def update_order(self, order_id: int, **fields) -> None:
        await self._update("orders", "id", order_id, fields)

    async def list_orders(self, statuses: Iterable[OrderStatus]) -> List[Order]:
        rows = await self._select("orders", {
            "status": _in(s.value for s in statuses), "order": "points.asc,id.asc"})
        return [order_from_row(r) for r in rows]

    async def list_user_orders(self, user_id: int) -> List[Order]:
        rows = await self._select("orders", {
            "user_id": f"eq.{user_id}", "order": "created_at.desc,id.desc"})
        return [order_from_row(r) for r in rows]

    # ── Balances ─────────────────────────────────────────────────────────

    async def get_balance(self, user_id: int) -> Optional[Balance]:
        row = await self._select_one("balances", {"user_id": f"eq.{user_id}"})
        return balance_from_row(row) if row else None

    async def save_balance(self, balance: Balance) -> None:
        await self._request(
            "POST", "balances", params={"on_conflict": "user_id"},
            json={
                "user_id": balance.user_id,
                "total_deposited": to_db(balance.total_deposited),
                "locked_amount": to_db(balance.locked_amount),
                "updated_at": to_db(balance.updated_at),
            },
            prefer="resolution=merge-duplicates,return=minimal")

    # ── Positions ────────────────────────────────────────────────────────

    async def insert_position(self, **fields) -> Position:
        fields.setdefault("status", PositionStatus.ACTIVE)
        fields.setdefault("created_at", utc_now())
        return position_from_row(await self._insert("positions", fields))

    async def get_position(self, order_id: int, wallet_address: str) -> Optional[Position]:
        row = await self._select_one("positions", {
            "order_id": f"eq.{order_id}", "user_public_key": f"eq.{wallet_address}"})
        return position_from_row(row) if row else None

    async def list_positions(self, wallet_address: Optional[str] = None,
                             status: Optional[PositionStatus] = None) -> List[Position]:
        params = {"order": "created_at.desc,id.desc"}
        if wallet_address is not None:
            params["user_public_key"] = f"eq.{wallet_address}"
        if status is not None:
            params["status"] = f"eq.{status.value}"
        return [position_from_row(r) for r in await self._select("positions", params)]

    async def update_position(self, position_id: int, **fields) -> None:
        fields.setdefault("updated_at", utc_now())
        await self._update("positions", "id", position_id, fields)

    # ── Transfer intents ─────────────────────────────────────────────────

    async def insert_intent(self, kind: IntentKind, order_id: int, wallet_address: str,
                            amount: Decimal) -> TransferIntent:
        now = utc_now()
        row = await self._insert("transfer_intents", {
            "kind": kind, "order_id": order_id, "wallet_address": wallet_address,
            "amount": amount, "status": IntentStatus.PENDING,
            "created_at": now, "updated_at": now,
        })
        return intent_from_row(row)

    async def update_intent(self, intent_id: int, **fields) -> None:
        fields.setdefault("updated_at", utc_now())
        await self._update("transfer_intents", "id", intent_id, fields)

    async def list_intents(self, statuses: Iterable[IntentStatus]) -> List[TransferIntent]:
        rows = await self._select("transfer_intents", {
            "status": _in(s.value for s in statuses), "order": "id.asc"})
        return [intent_from_row(r) for r in rows]
