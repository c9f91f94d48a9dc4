"""
Protocol interfaces for dependency injection (DIP — Dependency Inversion Principle).

High-level modules (order store, position manager, reconciler) depend on these
abstractions, not on concrete implementations.  This allows swapping
SQLite ↔ Supabase and live ledger ↔ scripted fake without touching business
logic.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Iterable, List, Optional, Protocol, Sequence, runtime_checkable

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from execution.models import (
    Balance, IntentKind, IntentStatus, Order, OrderSide, OrderStatus,
    Position, PositionStatus, TransferIntent,
)
from ledger.instructions import ClaimAccounts, VaultAccounts


# ── Ledger ───────────────────────────────────────────────────────────────────

@runtime_checkable
class ILedgerClient(Protocol):
    """Derives vault accounts and submits signed operations."""

    program_id: Pubkey

    def derive_account(self, *seeds: bytes) -> Pubkey: ...

    def vault_accounts(self, owner: Pubkey) -> VaultAccounts: ...

    def claim_accounts(self, owner: Pubkey, order_id: int) -> ClaimAccounts: ...

    async def account_exists(self, address: Pubkey) -> bool: ...

    async def submit(self, instructions: Sequence[Instruction], signer: Keypair,
                     skip_preflight: bool = True) -> str: ...

    async def confirm(self, signature: str) -> None: ...

    async def submit_and_confirm(self, instructions: Sequence[Instruction], signer: Keypair,
                                 skip_preflight: bool = True) -> str: ...


# ── Backend store ────────────────────────────────────────────────────────────

@runtime_checkable
class IStore(Protocol):
    """Users, orders, balances, positions and transfer intents."""

    async def upsert_user(self, wallet_address: str) -> int: ...

    async def get_user_id(self, wallet_address: str) -> Optional[int]: ...

    async def insert_order(self, user_id: int, side: OrderSide, points: Decimal,
                           amount: Decimal) -> Order: ...

    async def get_order(self, order_id: int, user_id: Optional[int] = None) -> Optional[Order]: ...

    async def update_order(self, order_id: int, **fields) -> None: ...

    async def list_orders(self, statuses: Iterable[OrderStatus]) -> List[Order]: ...

    async def list_user_orders(self, user_id: int) -> List[Order]: ...

    async def get_balance(self, user_id: int) -> Optional[Balance]: ...

    async def save_balance(self, balance: Balance) -> None: ...

    async def insert_position(self, **fields) -> Position: ...

    async def get_position(self, order_id: int, wallet_address: str) -> Optional[Position]: ...

    async def list_positions(self, wallet_address: Optional[str] = None,
                             status: Optional[PositionStatus] = None) -> List[Position]: ...

    async def update_position(self, position_id: int, **fields) -> None: ...

    async def insert_intent(self, kind: IntentKind, order_id: int, wallet_address: str,
                            amount: Decimal) -> TransferIntent: ...

    async def update_intent(self, intent_id: int, **fields) -> None: ...

    async def list_intents(self, statuses: Iterable[IntentStatus]) -> List[TransferIntent]: ...
