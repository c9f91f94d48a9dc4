"""
Intent Reconciler — resolves transfer intents left open by a crash.

Run once at startup (and on demand from the CLI). For every PENDING or
SUBMITTED intent:

  * a recorded signature means the ledger leg happened; only the off-chain
    follow-up (balance credit, order OPEN, position CLAIMED) is re-applied;
  * no signature means the outcome is unknown; the ledger leg is re-driven only
    when ``signer_for`` returns a keypair for the intent's wallet, relying on
    the ledger's duplicate-submission detection. Otherwise it is skipped.

Claims whose payout withdrawal failed stay SUBMITTED here until the payout
lands.
"""
from __future__ import annotations

from collections import Counter
from enum import Enum
from typing import Callable, Dict, Optional

from loguru import logger
from solders.keypair import Keypair

from execution.intents import IntentJournal
from execution.models import (
    IntentKind, OrderStatus, PayoutStatus, Position, PositionStatus, TransferIntent,
)
from execution.order_store import OrderStore
from execution.position_manager import PositionLifecycleManager
from execution.vault import ClaimReceipt, VaultTransferOrchestrator
from interfaces import IStore


class ReplayOutcome(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    PENDING = "pending"    # retried, still not done
    SKIPPED = "skipped"    # needs a signer we do not have


SignerLookup = Callable[[str], Optional[Keypair]]


class IntentReconciler:
    def __init__(self, store: IStore, vault: VaultTransferOrchestrator, orders: OrderStore,
                 positions: PositionLifecycleManager, journal: Optional[IntentJournal] = None,
                 signer_for: Optional[SignerLookup] = None):
        self.store = store
        self.vault = vault
        self.orders = orders
        self.positions = positions
        self.journal = journal or IntentJournal(store)
        self.signer_for = signer_for or (lambda _address: None)

    async def replay(self) -> Dict[str, int]:
        """Resolve every open intent, oldest first. Returns counts per outcome."""
        intents = await self.journal.unresolved()
        if not intents:
            logger.info("Reconciler: no open transfer intents")
            return {o.value: 0 for o in ReplayOutcome}

        logger.info(f"Reconciler: replaying {len(intents)} open intent(s)")
        handlers = {
            IntentKind.DEPOSIT: self._replay_deposit,
            IntentKind.REFUND: self._replay_refund,
            IntentKind.CLAIM: self._replay_claim,
        }
        tally: Counter = Counter({o.value: 0 for o in ReplayOutcome})
        for intent in intents:
            outcome = await handlers[intent.kind](intent)
            tally[outcome.value] += 1
            logger.info(f"Intent #{intent.id} {intent.kind.value} order {intent.order_id}: "
                        f"{outcome.value}")
        return dict(tally)

    # ── Deposits ─────────────────────────────────────────────────────────

    async def _replay_deposit(self, intent: TransferIntent) -> ReplayOutcome:
        order = await self.store.get_order(intent.order_id)
        if order is None:
            await self.journal.fail(intent, "Order row missing")
            return ReplayOutcome.FAILED
        if order.status == OrderStatus.CANCELLED:
            await self.journal.fail(intent, "Order was cancelled")
            return ReplayOutcome.FAILED
        if order.status != OrderStatus.PENDING:
            await self.journal.complete(intent, order.txn_hash)
            return ReplayOutcome.COMPLETED

        signature = intent.signature
        if signature is None:
            wallet = self.signer_for(intent.wallet_address)
            if wallet is None:
                return ReplayOutcome.SKIPPED
            signature = await self.vault.deposit(wallet, intent.amount, order.id)
            if signature is None:
                await self.store.update_order(order.id, status=OrderStatus.CANCELLED)
                await self.journal.fail(intent, "Vault deposit failed")
                return ReplayOutcome.FAILED
            await self.journal.submitted(intent, signature)

        await self.orders.finalize_deposit(order, signature, intent)
        return ReplayOutcome.COMPLETED

    # ── Refunds ──────────────────────────────────────────────────────────

    async def _replay_refund(self, intent: TransferIntent) -> ReplayOutcome:
        order = await self.store.get_order(intent.order_id)
        if order is None:
            await self.journal.fail(intent, "Order row missing")
            return ReplayOutcome.FAILED
        if order.status != OrderStatus.CANCELLED:
            # Crashed before the order was marked; the user can cancel again.
            await self.journal.fail(intent, f"Order is {order.status.value}; nothing refunded")
            return ReplayOutcome.FAILED
        if intent.signature:
            await self.journal.complete(intent)
            return ReplayOutcome.COMPLETED

        wallet = self.signer_for(intent.wallet_address)
        if wallet is None:
            return ReplayOutcome.SKIPPED
        signature = await self.vault.withdraw(wallet, intent.amount, order.id)
        if signature is None:
            await self.journal.note_error(intent, "Failed to withdraw funds from vault")
            return ReplayOutcome.PENDING
        await self.journal.complete(intent, signature)
        return ReplayOutcome.COMPLETED

    # ── Claims ───────────────────────────────────────────────────────────

    async def _replay_claim(self, intent: TransferIntent) -> ReplayOutcome:
        position = await self.store.get_position(intent.order_id, intent.wallet_address)
        if position is None:
            await self.journal.fail(intent, "Position row missing")
            return ReplayOutcome.FAILED

        if position.status == PositionStatus.SETTLED:
            if intent.signature is None:
                return await self._redrive_claim(intent, position)
            # Claim leg landed but the row was never updated.
            paid = intent.payout_signature is not None or intent.amount <= 0
            recorded = await self.positions.record_claim(position, intent.amount, ClaimReceipt(
                intent.signature, intent.payout_signature,
                PayoutStatus.CLAIMED_PAID if paid else PayoutStatus.CLAIMED_PENDING_PAYOUT))
            if not recorded:
                return ReplayOutcome.PENDING
            position = await self.store.get_position(intent.order_id, intent.wallet_address)

        if position.status != PositionStatus.CLAIMED:
            await self.journal.fail(intent, f"Position is {position.status.value}")
            return ReplayOutcome.FAILED
        if position.payout_status == PayoutStatus.CLAIMED_PAID:
            await self.journal.complete(intent)
            return ReplayOutcome.COMPLETED
        return await self._retry_payout(intent, position)

    async def _redrive_claim(self, intent: TransferIntent, position: Position) -> ReplayOutcome:
        wallet = self.signer_for(intent.wallet_address)
        if wallet is None:
            return ReplayOutcome.SKIPPED
        receipt = await self.vault.claim(wallet, intent.order_id, intent.amount)
        if receipt is None:
            await self.journal.fail(intent, "Failed to claim position")
            return ReplayOutcome.FAILED
        await self.journal.submitted(intent, receipt.claim_signature)
        if receipt.payout_signature:
            await self.journal.paid(intent, receipt.payout_signature)
        recorded = await self.positions.record_claim(position, intent.amount, receipt)
        if not (receipt.paid and recorded):
            return ReplayOutcome.PENDING
        await self.journal.complete(intent)
        return ReplayOutcome.COMPLETED

    async def _retry_payout(self, intent: TransferIntent, position: Position) -> ReplayOutcome:
        if intent.payout_signature:
            await self.positions.record_payout(position, intent.payout_signature)
            await self.journal.complete(intent)
            return ReplayOutcome.COMPLETED
        amount = position.payout_amount if position.payout_amount is not None else intent.amount
        if amount <= 0:
            await self.positions.record_payout(position, None)
            await self.journal.complete(intent)
            return ReplayOutcome.COMPLETED

        wallet = self.signer_for(intent.wallet_address)
        if wallet is None:
            return ReplayOutcome.SKIPPED
        signature = await self.vault.withdraw(wallet, amount, position.order_id)
        if signature is None:
            await self.journal.note_error(intent, "Payout withdrawal failed")
            return ReplayOutcome.PENDING
        await self.journal.paid(intent, signature)
        await self.positions.record_payout(position, signature)
        await self.journal.complete(intent)
        return ReplayOutcome.COMPLETED
