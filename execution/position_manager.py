"""
Position Manager — owns position lifecycle (settlement intake, claiming, feed).

SRP: This class handles ONLY position rows: ACTIVE -> SETTLED from external
     settlement events, SETTLED -> CLAIMED through the vault orchestrator.
     It never moves a position backwards.

The ledger is authoritative for claims: once the claim leg is confirmed a
failure to update the row is logged and the claim still reports success.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, List, Optional

from loguru import logger
from solders.keypair import Keypair

import payout_curve
from execution.intents import IntentJournal
from execution.models import (
    IntentKind, OrderResult, PayoutStatus, Position, PositionStatus, SettlementEvent, utc_now,
)
from execution.position_feed import PositionFeed
from execution.vault import ClaimReceipt, VaultTransferOrchestrator
from interfaces import IStore
from storage.base import StoreError


class PositionLifecycleManager:
    """Reads, settles and claims positions."""

    def __init__(self, store: IStore, vault: VaultTransferOrchestrator,
                 journal: Optional[IntentJournal] = None, poll_interval: float = 5.0):
        self.store = store
        self.vault = vault
        self.journal = journal or IntentJournal(store)
        self.poll_interval = poll_interval

    async def fetch_user_positions(self, wallet_address: str) -> List[Position]:
        """All positions owned by the wallet, newest first."""
        return await self.store.list_positions(wallet_address=wallet_address)

    # ── Claiming ─────────────────────────────────────────────────────────

    async def claim_position(self, wallet: Optional[Keypair], order_id: int,
                             payout_amount: Optional[Decimal] = None) -> OrderResult:
        if wallet is None:
            return OrderResult.fail("Wallet not connected")
        address = str(wallet.pubkey())

        position = await self.store.get_position(order_id, address)
        if position is None:
            return OrderResult.fail("Position not found")
        if position.status != PositionStatus.SETTLED:
            return OrderResult.fail(
                f"Position is in {position.status.value} state. "
                f"Only SETTLED positions can be claimed.", order_id=order_id)

        if payout_amount is None:
            payout_amount = payout_curve.payout_amount(position.amount,
                                                       position.payout_percentage)
        payout_amount = Decimal(str(payout_amount))
        if payout_amount < 0:
            return OrderResult.fail("Payout amount must not be negative", order_id=order_id)

        intent = await self.journal.open(IntentKind.CLAIM, order_id, address, payout_amount)
        logger.info(f"Claiming position for order ID {order_id} (payout {payout_amount} SOL)...")
        receipt = await self.vault.claim(wallet, order_id, payout_amount)
        if receipt is None:
            await self.journal.fail(intent, "Failed to claim position")
            return OrderResult.fail("Failed to claim position", order_id=order_id)

        await self.journal.submitted(intent, receipt.claim_signature)
        if receipt.payout_signature:
            await self.journal.paid(intent, receipt.payout_signature)
        recorded = await self.record_claim(position, payout_amount, receipt)
        if not receipt.paid:
            return OrderResult.fail(
                f"Position claimed but payout of {payout_amount} SOL is pending",
                tx_hash=receipt.claim_signature, order_id=order_id)
        if recorded:
            await self.journal.complete(intent, receipt.claim_signature)
        return OrderResult(success=True, tx_hash=receipt.claim_signature, order_id=order_id)

    async def record_claim(self, position: Position, payout_amount: Decimal,
                           receipt: ClaimReceipt) -> bool:
        """Mirror a confirmed claim onto the row. False when the store refused."""
        try:
            await self.store.update_position(
                position.id, status=PositionStatus.CLAIMED, claimed_at=utc_now(),
                payout_amount=payout_amount, payout_status=receipt.payout_status,
                payout_signature=receipt.payout_signature)
        except StoreError as e:
            logger.warning("Failed to update position status in the database, "
                           f"but transaction was successful: {e}")
            return False
        logger.info(f"Position {position.order_id} CLAIMED ({receipt.payout_status.value})")
        return True

    async def record_payout(self, position: Position, payout_signature: Optional[str]) -> None:
        await self.store.update_position(position.id, payout_status=PayoutStatus.CLAIMED_PAID,
                                         payout_signature=payout_signature)
        logger.info(f"Payout for position {position.order_id} paid ({payout_signature})")

    # ── Settlement ───────────────────────────────────────────────────────

    async def apply_settlement(self, event: SettlementEvent) -> Optional[Position]:
        """ACTIVE -> SETTLED. Events for already settled/claimed positions are ignored."""
        position = await self.store.get_position(event.order_id, event.user_public_key)
        if position is None:
            logger.warning(f"Settlement for unknown position: order {event.order_id} "
                           f"({event.user_public_key})")
            return None
        if position.status != PositionStatus.ACTIVE:
            logger.debug(f"Settlement ignored: position {event.order_id} is {position.status.value}")
            return position

        await self.store.update_position(
            position.id, status=PositionStatus.SETTLED,
            settlement_time=event.settlement_time,
            settlement_price=event.settlement_price,
            payout_percentage=event.payout_percentage)
        outcome = "WIN" if payout_curve.is_win(event.payout_percentage) else "LOSS"
        logger.info(f"Position {event.order_id} settled @ {event.settlement_price}: "
                    f"{event.payout_percentage}% ({outcome})")
        return await self.store.get_position(event.order_id, event.user_public_key)

    # ── Change feed ──────────────────────────────────────────────────────

    def subscribe(self, wallet_address: str, callback: Callable[[List[Position]], Any],
                  interval: Optional[float] = None) -> PositionFeed:
        """Feed for the wallet's positions; call ``start()`` on it to begin polling."""
        return PositionFeed(
            name=f"positions:{wallet_address[:8]}",
            fetch=lambda: self.fetch_user_positions(wallet_address),
            callback=callback,
            interval=interval or self.poll_interval)
