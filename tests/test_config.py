"""Config defaults and service-container wiring."""

import dataclasses
from decimal import Decimal

import pytest

from config import AppConfig, OrderConfig, StoreConfig, get_config
from container import ServiceContainer
from execution.models import OrderSide, OrderStatus
from execution.vault import RetryPolicy


def test_defaults():
    cfg = AppConfig()
    assert cfg.retry.max_attempts >= 1
    assert cfg.orders.min_points == Decimal("0.1")
    assert cfg.orders.max_points == Decimal("10.0")
    assert cfg.store.backend in ("sqlite", "supabase")
    assert cfg.ledger.program_id


def test_config_is_frozen_singleton():
    cfg = get_config()
    assert get_config() is cfg
    with pytest.raises(dataclasses.FrozenInstanceError):
        cfg.log_level = "DEBUG"


def test_retry_policy_from_config():
    cfg = AppConfig()
    policy = RetryPolicy.from_config(cfg.retry)
    assert policy.max_attempts == cfg.retry.max_attempts
    assert policy.backoff(1) == cfg.retry.backoff_sec


def _memory_cfg(**overrides) -> AppConfig:
    return AppConfig(store=StoreConfig(backend="sqlite", sqlite_path=":memory:"), **overrides)


def test_unknown_store_backend_rejected():
    container = ServiceContainer(AppConfig(store=StoreConfig(backend="mongo")))
    with pytest.raises(ValueError):
        container.store


def test_override_rejects_unknown_service():
    with pytest.raises(KeyError):
        ServiceContainer(_memory_cfg()).override(pricer=object())


@pytest.mark.asyncio
async def test_container_wires_order_flow(ledger, retry_policy, wallet):
    container = ServiceContainer(_memory_cfg(orders=OrderConfig(min_order_amount=Decimal("1"))))
    container.override(ledger=ledger, retry_policy=retry_policy)

    too_small = await container.orders.place_order(wallet, "0.5", OrderSide.LONG, "2.0")
    placed = await container.orders.place_order(wallet, "1", OrderSide.LONG, "2.0")

    assert too_small.error == "Minimum order amount is 1 SOL"
    assert placed.success
    assert (await container.store.get_order(placed.order_id)).status == OrderStatus.OPEN
    assert container.positions.vault is container.vault
    assert await container.reconciler.replay() == {
        "completed": 0, "failed": 0, "pending": 0, "skipped": 0}
    await container.close()
