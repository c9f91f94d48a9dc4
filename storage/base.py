"""
Shared pieces for store backends: the error type and row <-> record mapping.

Both backends speak the same column names, so a row dict from SQLite or from
PostgREST converts through the same functions.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from execution.models import (
    Balance, IntentKind, IntentStatus, Order, OrderSide, OrderStatus,
    PayoutStatus, Position, PositionStatus, PositionType, TransferIntent,
)


class StoreError(Exception):
    """Backend store call failed (network, constraint, missing row)."""


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def parse_ts(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    text = str(value).replace("Z", "+00:00")
    ts = datetime.fromisoformat(text)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def to_db(value: Any) -> Any:
    """Python value -> column scalar."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def to_db_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: to_db(v) for k, v in fields.items()}


def order_from_row(row: Mapping[str, Any]) -> Order:
    return Order(
        id=int(row["id"]), user_id=int(row["user_id"]),
        side=OrderSide(row["side"]), points=to_decimal(row["points"]),
        amount=to_decimal(row["amount"]),
        filled_amount=to_decimal(row.get("filled_amount")) or Decimal("0"),
        status=OrderStatus(row["status"]), txn_hash=row.get("txn_hash"),
        created_at=parse_ts(row["created_at"]))


def balance_from_row(row: Mapping[str, Any]) -> Balance:
    return Balance(
        user_id=int(row["user_id"]),
        total_deposited=to_decimal(row.get("total_deposited")) or Decimal("0"),
        locked_amount=to_decimal(row.get("locked_amount")) or Decimal("0"),
        updated_at=parse_ts(row["updated_at"]))


def position_from_row(row: Mapping[str, Any]) -> Position:
    payout_status = row.get("payout_status")
    percentage = row.get("payout_percentage")
    return Position(
        id=int(row["id"]), order_id=int(row["order_id"]),
        user_public_key=row["user_public_key"],
        position_type=PositionType(int(row["position_type"])),
        lower_bound=to_decimal(row["lower_bound"]),
        upper_bound=to_decimal(row["upper_bound"]),
        amount=to_decimal(row["amount"]),
        status=PositionStatus(row["status"]),
        created_at=parse_ts(row["created_at"]),
        settlement_time=parse_ts(row.get("settlement_time")),
        settlement_price=to_decimal(row.get("settlement_price")),
        payout_percentage=int(percentage) if percentage is not None else None,
        payout_amount=to_decimal(row.get("payout_amount")),
        claimed_at=parse_ts(row.get("claimed_at")),
        payout_status=PayoutStatus(payout_status) if payout_status else None,
        payout_signature=row.get("payout_signature"),
        on_chain_position_address=row.get("on_chain_position_address"),
        tx_signature=row.get("tx_signature"))


def intent_from_row(row: Mapping[str, Any]) -> TransferIntent:
    return TransferIntent(
        id=int(row["id"]), kind=IntentKind(row["kind"]),
        order_id=int(row["order_id"]), wallet_address=row["wallet_address"],
        amount=to_decimal(row["amount"]), status=IntentStatus(row["status"]),
        signature=row.get("signature"), payout_signature=row.get("payout_signature"),
        error=row.get("error"),
        created_at=parse_ts(row["created_at"]),
        updated_at=parse_ts(row["updated_at"]))
