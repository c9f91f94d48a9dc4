"""
Domain records for orders, balances, positions and transfer intents.

Rows from either store backend are converted into these dataclasses; money is
always Decimal (SOL).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OrderSide(Enum):
    """LONG = Breakout, SHORT = Stay-In."""
    LONG = "LONG"
    SHORT = "SHORT"


class OrderStatus(Enum):
    PENDING = "PENDING"
    OPEN = "OPEN"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FILLED, OrderStatus.CANCELLED)


LIVE_ORDER_STATUSES = (OrderStatus.OPEN, OrderStatus.PARTIALLY_FILLED)


class PositionType(Enum):
    STAY_IN = 0
    BREAKOUT = 1

    @classmethod
    def for_side(cls, side: OrderSide) -> "PositionType":
        return cls.BREAKOUT if side == OrderSide.LONG else cls.STAY_IN


class PositionStatus(Enum):
    ACTIVE = "ACTIVE"
    SETTLED = "SETTLED"
    CLAIMED = "CLAIMED"


class PayoutStatus(Enum):
    """Second leg of a claim: the payout withdrawal back to the user."""
    CLAIMED_PENDING_PAYOUT = "CLAIMED_PENDING_PAYOUT"
    CLAIMED_PAID = "CLAIMED_PAID"


class IntentKind(Enum):
    DEPOSIT = "DEPOSIT"
    REFUND = "REFUND"
    CLAIM = "CLAIM"


class IntentStatus(Enum):
    PENDING = "PENDING"        # written, ledger call not yet confirmed
    SUBMITTED = "SUBMITTED"    # ledger leg confirmed, signature recorded
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


OPEN_INTENT_STATUSES = (IntentStatus.PENDING, IntentStatus.SUBMITTED)


@dataclass
class Order:
    id: int
    user_id: int
    side: OrderSide
    points: Decimal
    amount: Decimal
    filled_amount: Decimal = Decimal("0")
    status: OrderStatus = OrderStatus.PENDING
    txn_hash: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)

    @property
    def remaining(self) -> Decimal:
        return self.amount - (self.filled_amount or Decimal("0"))


@dataclass
class Balance:
    user_id: int
    total_deposited: Decimal = Decimal("0")
    locked_amount: Decimal = Decimal("0")
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class Position:
    id: int
    order_id: int
    user_public_key: str
    position_type: PositionType
    lower_bound: Decimal
    upper_bound: Decimal
    amount: Decimal
    status: PositionStatus = PositionStatus.ACTIVE
    created_at: datetime = field(default_factory=utc_now)
    settlement_time: Optional[datetime] = None
    settlement_price: Optional[Decimal] = None
    payout_percentage: Optional[int] = None
    payout_amount: Optional[Decimal] = None
    claimed_at: Optional[datetime] = None
    payout_status: Optional[PayoutStatus] = None
    payout_signature: Optional[str] = None
    on_chain_position_address: Optional[str] = None
    tx_signature: Optional[str] = None

    def invariant_violations(self) -> List[str]:
        """Field-presence rules tied to status; empty when consistent."""
        problems = []
        settled_fields = (self.settlement_time, self.settlement_price, self.payout_percentage)
        if self.status == PositionStatus.ACTIVE:
            if any(f is not None for f in settled_fields):
                problems.append("ACTIVE position carries settlement data")
        elif any(f is None for f in settled_fields):
            problems.append(f"{self.status.value} position lacks settlement data")
        claimed = self.status == PositionStatus.CLAIMED
        if claimed != (self.payout_amount is not None):
            problems.append("payout_amount must be set exactly when CLAIMED")
        if claimed != (self.claimed_at is not None):
            problems.append("claimed_at must be set exactly when CLAIMED")
        return problems


@dataclass(frozen=True)
class SettlementEvent:
    """Emitted by the external settlement watcher for one position."""
    order_id: int
    user_public_key: str
    settlement_time: datetime
    settlement_price: Decimal
    payout_percentage: int


@dataclass
class TransferIntent:
    """Outbox record written before a ledger call, resolved after."""
    id: int
    kind: IntentKind
    order_id: int
    wallet_address: str
    amount: Decimal
    status: IntentStatus = IntentStatus.PENDING
    signature: Optional[str] = None
    payout_signature: Optional[str] = None    # CLAIM only: second leg
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class OrderResult:
    """Outcome of a user-facing operation."""
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    order_id: Optional[int] = None

    @classmethod
    def fail(cls, error: str, tx_hash: Optional[str] = None,
             order_id: Optional[int] = None) -> "OrderResult":
        return cls(success=False, error=error, tx_hash=tx_hash, order_id=order_id)


@dataclass(frozen=True)
class DepthLevel:
    points: Decimal
    total_amount: Decimal


@dataclass
class Orderbook:
    long_orders: List[DepthLevel] = field(default_factory=list)
    short_orders: List[DepthLevel] = field(default_factory=list)
