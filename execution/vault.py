"""
Vault Transfer Orchestrator — moves funds between a user's vault and the pool.

SRP: This class handles ONLY ledger-side transfers (deposit, withdraw, claim)
     and their retry policy. It knows nothing about orders, balances or
     position rows; callers own those and must not advance them on ``None``.

Retries: only ``LedgerError``s whose kind is retryable (duplicate submission,
simulation failure) are retried, with the policy's backoff before each retry.
Any other ledger error ends the call immediately.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Optional, Tuple

from loguru import logger
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from config import RetryConfig
from execution.models import PayoutStatus
from interfaces import ILedgerClient
from ledger.errors import LedgerError, LedgerErrorKind
from ledger.instructions import (
    VaultAccounts, claim_position_ix, deposit_ix, initialize_ix, to_lamports, withdraw_ix,
)


class VaultTransferError(Exception):
    """A vault transfer could not be completed after retries."""


def fixed_backoff(seconds: float) -> Callable[[int], float]:
    return lambda attempt: seconds


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts (total) and how long to wait before each retry."""
    max_attempts: int = 3
    backoff: Callable[[int], float] = fixed_backoff(1.0)
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def from_config(cls, cfg: RetryConfig) -> "RetryPolicy":
        return cls(max_attempts=cfg.max_attempts, backoff=fixed_backoff(cfg.backoff_sec))


@dataclass(frozen=True)
class ClaimReceipt:
    """Both legs of a claim. The payout leg may still be pending."""
    claim_signature: str
    payout_signature: Optional[str]
    payout_status: PayoutStatus

    @property
    def paid(self) -> bool:
        return self.payout_status == PayoutStatus.CLAIMED_PAID


class VaultTransferOrchestrator:
    """Exactly-once (from the caller's view) transfers against the vault program."""

    def __init__(self, ledger: ILedgerClient, policy: Optional[RetryPolicy] = None,
                 skip_preflight: bool = True):
        self.ledger = ledger
        self.policy = policy or RetryPolicy()
        self.skip_preflight = skip_preflight
        self._inflight: Dict[Tuple[str, int], asyncio.Future] = {}

    # ── Public API ───────────────────────────────────────────────────────

    async def deposit(self, wallet: Keypair, amount: Decimal, order_id: int) -> Optional[str]:
        """User vault -> pool deposit tagged with order_id. Signature or None."""
        return await self._single_flight(
            "deposit", order_id, lambda: self._deposit(wallet, amount, order_id))

    async def withdraw(self, wallet: Keypair, amount: Decimal, order_id: int) -> Optional[str]:
        """Pool -> user withdrawal tagged with order_id. Assumes the vault exists."""
        return await self._single_flight(
            "withdraw", order_id, lambda: self._withdraw(wallet, amount, order_id))

    async def claim(self, wallet: Keypair, order_id: int, payout_amount: Decimal,
                    user_pubkey: Optional[Pubkey] = None) -> Optional[ClaimReceipt]:
        """
        Claim a settled position, then withdraw the payout.

        Returns None when the claim leg itself fails. Otherwise the receipt
        says whether the payout withdrawal went through; a pending payout is
        the caller's to retry, it is never reported as paid.
        """
        return await self._single_flight(
            "claim", order_id,
            lambda: self._claim(wallet, order_id, Decimal(payout_amount), user_pubkey))

    # ── Transfers ────────────────────────────────────────────────────────

    async def _deposit(self, wallet: Keypair, amount: Decimal, order_id: int) -> Optional[str]:
        accounts = self.ledger.vault_accounts(wallet.pubkey())
        if not await self._ensure_vault_initialized(wallet, accounts):
            return None
        ix = deposit_ix(self.ledger.program_id, accounts, to_lamports(amount), order_id)
        return await self._with_retry("deposit", order_id, lambda: self._send(ix, wallet))

    async def _withdraw(self, wallet: Keypair, amount: Decimal, order_id: int) -> Optional[str]:
        accounts = self.ledger.vault_accounts(wallet.pubkey())
        ix = withdraw_ix(self.ledger.program_id, accounts, to_lamports(amount), order_id)
        return await self._with_retry("withdraw", order_id, lambda: self._send(ix, wallet))

    async def _claim(self, wallet: Keypair, order_id: int, payout_amount: Decimal,
                     user_pubkey: Optional[Pubkey]) -> Optional[ClaimReceipt]:
        owner = user_pubkey or wallet.pubkey()
        ix = claim_position_ix(self.ledger.program_id,
                               self.ledger.claim_accounts(owner, order_id), order_id)
        claim_sig = await self._with_retry("claim", order_id, lambda: self._send(ix, wallet))
        if claim_sig is None:
            return None

        if payout_amount <= 0:
            logger.info(f"Claim {claim_sig} for order {order_id}: nothing to pay out")
            return ClaimReceipt(claim_sig, None, PayoutStatus.CLAIMED_PAID)

        payout_sig = await self.withdraw(wallet, payout_amount, order_id)
        if payout_sig is None:
            logger.warning(f"Claim {claim_sig} confirmed but payout of {payout_amount} "
                           f"for order {order_id} failed; payout left pending")
            return ClaimReceipt(claim_sig, None, PayoutStatus.CLAIMED_PENDING_PAYOUT)
        return ClaimReceipt(claim_sig, payout_sig, PayoutStatus.CLAIMED_PAID)

    async def _ensure_vault_initialized(self, wallet: Keypair, accounts: VaultAccounts) -> bool:
        """Create the user's vault-state account if missing. False aborts the deposit."""
        try:
            if await self.ledger.account_exists(accounts.vault_state):
                return True
        except LedgerError as e:
            logger.error(f"Vault state lookup failed for {accounts.user}: {e}")
            return False

        logger.info(f"Vault not initialized for {accounts.user}. Initializing now...")
        try:
            sig = await self.ledger.submit_and_confirm(
                [initialize_ix(self.ledger.program_id, accounts)], wallet, skip_preflight=False)
        except LedgerError as e:
            if e.kind == LedgerErrorKind.ACCOUNT_EXISTS:
                logger.info(f"Vault for {accounts.user} was initialized concurrently")
                return True
            if e.retryable and await self._vault_exists(accounts):
                logger.info(f"Vault for {accounts.user} exists after failed initialization: {e}")
                return True
            logger.error(f"Vault initialization failed for {accounts.user}: {e}")
            return False
        logger.info(f"Vault initialized: {sig}")
        return True

    async def _vault_exists(self, accounts: VaultAccounts) -> bool:
        try:
            return await self.ledger.account_exists(accounts.vault_state)
        except LedgerError as e:
            logger.error(f"Vault state re-check failed for {accounts.user}: {e}")
            return False

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _send(self, ix, wallet: Keypair) -> str:
        return await self.ledger.submit_and_confirm([ix], wallet, skip_preflight=self.skip_preflight)

    async def _with_retry(self, label: str, order_id: int,
                          op: Callable[[], Awaitable[str]]) -> Optional[str]:
        attempts = self.policy.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                signature = await op()
            except LedgerError as e:
                left = attempts - attempt
                logger.error(f"Error in {label} for order {order_id} ({left} retries left): {e}")
                if not e.retryable:
                    return None
                if left:
                    await self.policy.sleep(self.policy.backoff(attempt))
                continue
            logger.info(f"{label.capitalize()} successful for order {order_id}: {signature}")
            return signature
        return None

    async def _single_flight(self, label: str, order_id: int, factory):
        """Concurrent calls for the same (label, order_id) share one ledger call."""
        key = (label, order_id)
        running = self._inflight.get(key)
        if running is not None:
            logger.warning(f"{label} for order {order_id} already in flight; joining it")
            return await asyncio.shield(running)
        task = asyncio.ensure_future(factory())
        self._inflight[key] = task
        task.add_done_callback(lambda _t: self._inflight.pop(key, None))
        return await asyncio.shield(task)
