"""
Vault program instruction builders.

Anchor encodes an instruction as an 8-byte discriminator followed by the
borsh-serialised arguments; every argument this engine sends is a u64, so the
payload is plain little-endian packing.
"""
from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

LAMPORTS_PER_SOL = 1_000_000_000

# Seed prefixes shared with the on-chain program
VAULT_STATE_SEED = b"vault_state"
VAULT_SEED = b"vault"
POSITION_SEED = b"position"
TRADING_POOL_SEED = b"trading_pool"
TRADING_POOL_VAULT_SEED = b"trading_pool_vault"

# claim_position is built by hand; its discriminator is pinned
CLAIM_POSITION_DISCRIMINATOR = bytes([168, 90, 89, 44, 203, 246, 210, 46])


def discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def u64_le(value: int) -> bytes:
    return struct.pack("<Q", value)


def to_lamports(amount: Decimal) -> int:
    """SOL -> lamports, truncating sub-lamport dust."""
    lamports = (Decimal(amount) * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_DOWN)
    if lamports < 0:
        raise ValueError(f"Negative amount: {amount}")
    return int(lamports)


def from_lamports(lamports: int) -> Decimal:
    return Decimal(lamports) / LAMPORTS_PER_SOL


@dataclass(frozen=True)
class VaultAccounts:
    """Program-derived accounts touched by a user's transfers."""
    user: Pubkey
    vault_state: Pubkey
    vault: Pubkey


@dataclass(frozen=True)
class ClaimAccounts:
    """Accounts for the claim_position instruction."""
    user: Pubkey
    position: Pubkey
    vault: Pubkey
    vault_state: Pubkey
    trading_pool: Pubkey
    trading_pool_vault: Pubkey


def _transfer_metas(accounts: VaultAccounts):
    return [
        AccountMeta(accounts.user, is_signer=True, is_writable=True),
        AccountMeta(accounts.vault_state, is_signer=False, is_writable=True),
        AccountMeta(accounts.vault, is_signer=False, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]


def initialize_ix(program_id: Pubkey, accounts: VaultAccounts) -> Instruction:
    return Instruction(program_id, discriminator("initialize"), _transfer_metas(accounts))


def deposit_ix(program_id: Pubkey, accounts: VaultAccounts,
               lamports: int, order_id: int) -> Instruction:
    data = discriminator("deposit") + u64_le(lamports) + u64_le(order_id)
    return Instruction(program_id, data, _transfer_metas(accounts))


def withdraw_ix(program_id: Pubkey, accounts: VaultAccounts,
                lamports: int, order_id: int) -> Instruction:
    data = discriminator("withdraw") + u64_le(lamports) + u64_le(order_id)
    return Instruction(program_id, data, _transfer_metas(accounts))


def claim_position_ix(program_id: Pubkey, accounts: ClaimAccounts,
                      order_id: int) -> Instruction:
    data = CLAIM_POSITION_DISCRIMINATOR + u64_le(order_id)
    metas = [
        AccountMeta(accounts.user, is_signer=True, is_writable=True),
        AccountMeta(accounts.position, is_signer=False, is_writable=True),
        AccountMeta(accounts.vault, is_signer=False, is_writable=True),
        AccountMeta(accounts.vault_state, is_signer=False, is_writable=False),
        AccountMeta(accounts.trading_pool, is_signer=False, is_writable=True),
        AccountMeta(accounts.trading_pool_vault, is_signer=False, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id, data, metas)


def decode_transfer_args(data: bytes) -> tuple[int, int]:
    """(lamports, order_id) of a deposit/withdraw payload."""
    return struct.unpack("<QQ", bytes(data[8:24]))
