"""
Intent journal: outbox records around every ledger call.

An intent is written PENDING before the ledger is touched, moves to SUBMITTED
once a signature is confirmed, and ends COMPLETED after the off-chain rows are
updated (or FAILED when the ledger leg definitively did not happen). Whatever
is left PENDING/SUBMITTED after a crash is picked up by the reconciler.
"""
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from loguru import logger

from execution.models import OPEN_INTENT_STATUSES, IntentKind, IntentStatus, TransferIntent
from interfaces import IStore
from storage.base import StoreError


class IntentJournal:
    def __init__(self, store: IStore):
        self.store = store

    async def open(self, kind: IntentKind, order_id: int, wallet_address: str,
                   amount: Decimal) -> TransferIntent:
        # Must land before the ledger call, so store errors propagate here.
        intent = await self.store.insert_intent(kind, order_id, wallet_address, amount)
        logger.debug(f"Intent #{intent.id} {kind.value} opened for order {order_id} ({amount} SOL)")
        return intent

    async def submitted(self, intent: TransferIntent, signature: str) -> None:
        intent.status, intent.signature = IntentStatus.SUBMITTED, signature
        await self._write(intent, status=IntentStatus.SUBMITTED, signature=signature)

    async def paid(self, intent: TransferIntent, payout_signature: Optional[str]) -> None:
        """Claim intents only: the payout withdrawal landed too."""
        intent.payout_signature = payout_signature
        await self._write(intent, payout_signature=payout_signature)

    async def complete(self, intent: TransferIntent, signature: Optional[str] = None) -> None:
        fields = {"status": IntentStatus.COMPLETED}
        if signature:
            fields["signature"] = intent.signature = signature
        intent.status = IntentStatus.COMPLETED
        await self._write(intent, **fields)

    async def fail(self, intent: TransferIntent, error: str) -> None:
        intent.status, intent.error = IntentStatus.FAILED, error
        await self._write(intent, status=IntentStatus.FAILED, error=error)

    async def note_error(self, intent: TransferIntent, error: str) -> None:
        """Record why an open intent is still open without resolving it."""
        intent.error = error
        await self._write(intent, error=error)

    async def unresolved(self) -> List[TransferIntent]:
        return await self.store.list_intents(OPEN_INTENT_STATUSES)

    async def _write(self, intent: TransferIntent, **fields) -> None:
        # After a ledger call the journal is best-effort; the ledger is authoritative.
        try:
            await self.store.update_intent(intent.id, **fields)
        except StoreError as e:
            logger.warning(f"Intent #{intent.id} ({intent.kind.value}, order {intent.order_id}) "
                           f"could not be updated: {e}")
