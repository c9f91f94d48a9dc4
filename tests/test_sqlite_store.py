from decimal import Decimal

import pytest

from execution.models import Balance, IntentKind, IntentStatus, OrderSide, OrderStatus
from storage.base import StoreError


@pytest.mark.asyncio
async def test_upsert_user_is_idempotent(store):
    first = await store.upsert_user("W1")
    assert await store.upsert_user("W1") == first
    assert await store.get_user_id("W1") == first
    assert await store.get_user_id("W2") is None


@pytest.mark.asyncio
async def test_decimals_round_trip_exactly(store):
    user_id = await store.upsert_user("W1")
    order = await store.insert_order(user_id, OrderSide.SHORT, Decimal("0.1"),
                                     Decimal("0.123456789"))
    assert order.amount == Decimal("0.123456789")
    assert order.status == OrderStatus.PENDING

    await store.save_balance(Balance(user_id=user_id, total_deposited=Decimal("1.1"),
                                     locked_amount=Decimal("0.2")))
    await store.save_balance(Balance(user_id=user_id, total_deposited=Decimal("2.2"),
                                     locked_amount=Decimal("0.3")))
    balance = await store.get_balance(user_id)
    assert (balance.total_deposited, balance.locked_amount) == (Decimal("2.2"), Decimal("0.3"))


@pytest.mark.asyncio
async def test_get_order_scoped_to_user(store):
    owner = await store.upsert_user("W1")
    other = await store.upsert_user("W2")
    order = await store.insert_order(owner, OrderSide.LONG, Decimal("1.0"), Decimal("1"))

    assert await store.get_order(order.id, owner) is not None
    assert await store.get_order(order.id, other) is None


@pytest.mark.asyncio
async def test_update_missing_rows_raise(store):
    with pytest.raises(StoreError):
        await store.update_order(404, status=OrderStatus.OPEN)
    with pytest.raises(StoreError):
        await store.update_intent(404, status=IntentStatus.FAILED)


@pytest.mark.asyncio
async def test_one_position_per_order_and_owner(store, make_position):
    await make_position(order_id=1)
    with pytest.raises(StoreError):
        await make_position(order_id=1)


@pytest.mark.asyncio
async def test_list_intents_by_status(store):
    a = await store.insert_intent(IntentKind.DEPOSIT, 1, "W1", Decimal("1"))
    b = await store.insert_intent(IntentKind.REFUND, 1, "W1", Decimal("1"))
    await store.update_intent(a.id, status=IntentStatus.COMPLETED, signature="sig")

    open_ids = [i.id for i in await store.list_intents([IntentStatus.PENDING])]
    assert open_ids == [b.id]
