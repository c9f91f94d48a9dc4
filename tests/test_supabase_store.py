import json
from decimal import Decimal

import httpx
import pytest

from execution.models import Balance, OrderSide, OrderStatus, PositionStatus
from storage.base import StoreError
from storage.supabase_store import SupabaseStore

ORDER_ROW = {
    "id": 12, "user_id": 3, "side": "LONG", "points": "2.0", "amount": "10",
    "filled_amount": "0", "status": "PENDING", "txn_hash": None,
    "created_at": "2026-03-01T12:00:00Z",
}


def _store(handler) -> SupabaseStore:
    return SupabaseStore("https://proj.supabase.co/", "service-key",
                         transport=httpx.MockTransport(handler))


def test_requires_credentials():
    with pytest.raises(StoreError):
        SupabaseStore("", "")


@pytest.mark.asyncio
async def test_upsert_user_merges_on_wallet_address():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["prefer"] = request.headers["Prefer"]
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(201, json=[{"id": 3, "wallet_address": "W"}])

    store = _store(handler)
    assert await store.upsert_user("W") == 3
    assert seen["path"] == "/rest/v1/users"
    assert seen["params"] == {"on_conflict": "wallet_address"}
    assert "resolution=merge-duplicates" in seen["prefer"]
    assert seen["auth"] == "Bearer service-key"
    await store.close()


@pytest.mark.asyncio
async def test_insert_order_serialises_decimals_and_enums():
    sent = {}

    def handler(request):
        sent.update(json.loads(request.content))
        return httpx.Response(201, json=[ORDER_ROW])

    store = _store(handler)
    order = await store.insert_order(3, OrderSide.LONG, Decimal("2.0"), Decimal("10"))

    assert sent["side"] == "LONG"
    assert sent["points"] == "2.0"
    assert sent["status"] == "PENDING"
    assert order.id == 12
    assert order.amount == Decimal("10")
    assert order.created_at.tzinfo is not None
    await store.close()


@pytest.mark.asyncio
async def test_list_orders_filters_by_status():
    params = {}

    def handler(request):
        params.update(request.url.params)
        return httpx.Response(200, json=[ORDER_ROW])

    store = _store(handler)
    rows = await store.list_orders([OrderStatus.OPEN, OrderStatus.PARTIALLY_FILLED])

    assert params["status"] == "in.(OPEN,PARTIALLY_FILLED)"
    assert params["select"] == "*"
    assert len(rows) == 1
    await store.close()


@pytest.mark.asyncio
async def test_update_of_missing_row_raises():
    store = _store(lambda request: httpx.Response(200, json=[]))
    with pytest.raises(StoreError):
        await store.update_position(99, status=PositionStatus.CLAIMED)
    await store.close()


@pytest.mark.asyncio
async def test_http_errors_become_store_errors():
    store = _store(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(StoreError):
        await store.get_user_id("W")

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    store = _store(refused)
    with pytest.raises(StoreError):
        await store.get_balance(1)


@pytest.mark.asyncio
async def test_missing_rows_read_as_none():
    store = _store(lambda request: httpx.Response(200, json=[]))
    assert await store.get_user_id("W") is None
    assert await store.get_order(1) is None
    assert await store.get_position(1, "W") is None
    await store.close()


@pytest.mark.asyncio
async def test_save_balance_upserts_on_user():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        seen["body"] = json.loads(request.content)
        return httpx.Response(201)

    store = _store(handler)
    await store.save_balance(Balance(user_id=3, total_deposited=Decimal("10"),
                                     locked_amount=Decimal("4")))
    assert seen["params"] == {"on_conflict": "user_id"}
    assert seen["body"]["locked_amount"] == "4"
    await store.close()
