"""
Ledger Client: account derivation, signed submission, confirmation.

Derivations are pure and must reproduce the program's seeds byte for byte.
Submission and confirmation are the only network-facing calls.
"""
from __future__ import annotations

import asyncio
import base64
import time
from typing import Optional, Sequence

from loguru import logger
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from ledger.errors import LedgerError, LedgerTimeout
from ledger.instructions import (
    ClaimAccounts, VaultAccounts, POSITION_SEED, TRADING_POOL_SEED,
    TRADING_POOL_VAULT_SEED, VAULT_SEED, VAULT_STATE_SEED, u64_le,
)
from ledger.rpc import SolanaRPC

_CONFIRMED = ("confirmed", "finalized")


class LedgerClient:
    """Wraps the vault program on the external ledger."""

    def __init__(self, rpc: Optional[SolanaRPC], program_id: Pubkey | str,
                 confirm_timeout_sec: float = 30.0, confirm_poll_sec: float = 0.5):
        self.rpc = rpc
        self.program_id = (program_id if isinstance(program_id, Pubkey)
                           else Pubkey.from_string(program_id))
        self.confirm_timeout_sec = confirm_timeout_sec
        self.confirm_poll_sec = confirm_poll_sec

    # ── Derivation (pure) ────────────────────────────────────────────────

    def derive_account(self, *seeds: bytes) -> Pubkey:
        address, _bump = Pubkey.find_program_address(list(seeds), self.program_id)
        return address

    def vault_state_address(self, owner: Pubkey) -> Pubkey:
        return self.derive_account(VAULT_STATE_SEED, bytes(owner))

    def vault_address(self, vault_state: Pubkey) -> Pubkey:
        return self.derive_account(VAULT_SEED, bytes(vault_state))

    def position_address(self, owner: Pubkey, order_id: int) -> Pubkey:
        return self.derive_account(POSITION_SEED, bytes(owner), u64_le(order_id))

    def trading_pool_address(self) -> Pubkey:
        return self.derive_account(TRADING_POOL_SEED)

    def trading_pool_vault_address(self, pool: Pubkey) -> Pubkey:
        return self.derive_account(TRADING_POOL_VAULT_SEED, bytes(pool))

    def vault_accounts(self, owner: Pubkey) -> VaultAccounts:
        state = self.vault_state_address(owner)
        return VaultAccounts(user=owner, vault_state=state, vault=self.vault_address(state))

    def claim_accounts(self, owner: Pubkey, order_id: int) -> ClaimAccounts:
        vault = self.vault_accounts(owner)
        pool = self.trading_pool_address()
        return ClaimAccounts(
            user=owner, position=self.position_address(owner, order_id),
            vault=vault.vault, vault_state=vault.vault_state,
            trading_pool=pool, trading_pool_vault=self.trading_pool_vault_address(pool))

    # ── Network ──────────────────────────────────────────────────────────

    async def account_exists(self, address: Pubkey) -> bool:
        return await self.rpc.get_account_info(str(address)) is not None

    async def submit(self, instructions: Sequence[Instruction], signer: Keypair,
                     skip_preflight: bool = True) -> str:
        """Sign and send. Returns the transaction signature."""
        blockhash = Hash.from_string(await self.rpc.get_latest_blockhash())
        message = Message(list(instructions), signer.pubkey())
        tx = Transaction([signer], message, blockhash)
        encoded = base64.b64encode(bytes(tx)).decode("ascii")
        signature = await self.rpc.send_transaction(encoded, skip_preflight=skip_preflight)
        logger.debug(f"Submitted {len(instructions)} ix from {signer.pubkey()}: {signature}")
        return signature

    async def confirm(self, signature: str) -> None:
        """Block until confirmed; raise LedgerTimeout / LedgerError otherwise."""
        deadline = time.monotonic() + self.confirm_timeout_sec
        while True:
            status = await self.rpc.get_signature_status(signature)
            if status is not None:
                if status.get("err"):
                    raise LedgerError.from_rpc(
                        f"Transaction {signature} failed: {status['err']}")
                if status.get("confirmationStatus") in _CONFIRMED:
                    return
            if time.monotonic() >= deadline:
                raise LedgerTimeout(signature, self.confirm_timeout_sec)
            await asyncio.sleep(self.confirm_poll_sec)

    async def submit_and_confirm(self, instructions: Sequence[Instruction], signer: Keypair,
                                 skip_preflight: bool = True) -> str:
        signature = await self.submit(instructions, signer, skip_preflight=skip_preflight)
        await self.confirm(signature)
        return signature
