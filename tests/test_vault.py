import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from execution.models import PayoutStatus
from execution.vault import RetryPolicy, VaultTransferOrchestrator, fixed_backoff
from ledger.errors import LedgerError, LedgerErrorKind

DUPLICATE = LedgerError.from_rpc("This transaction has already been processed")
SIMULATION = LedgerError.from_rpc("Transaction simulation failed", -32002)
FATAL = LedgerError(LedgerErrorKind.OTHER, "insufficient funds")
EXISTS = LedgerError.from_rpc("account already in use")
PREFLIGHT_IN_USE = LedgerError.from_rpc(
    "Transaction simulation failed: Error processing Instruction 0: custom program error: 0x0",
    -32002, ["Allocate: account Address { .. } already in use"])


def _vault_ready(ledger, wallet):
    ledger.existing.add(ledger.vault_state_address(wallet.pubkey()))


@pytest.mark.asyncio
async def test_deposit_initializes_missing_vault_first(vault, ledger, wallet):
    sig = await vault.deposit(wallet, Decimal("10"), 1)

    assert sig is not None
    assert [c[0] for c in ledger.calls] == ["initialize", "deposit"]
    assert ledger.calls[1] == ("deposit", Decimal("10"), 1)


@pytest.mark.asyncio
async def test_raced_initialization_is_swallowed(vault, ledger, wallet):
    ledger.errors = [EXISTS]

    sig = await vault.deposit(wallet, Decimal("1"), 2)

    assert sig is not None
    assert len(ledger.submitted("deposit")) == 1


@pytest.mark.asyncio
async def test_raced_initialization_reported_by_preflight_logs(vault, ledger, wallet):
    ledger.errors = [PREFLIGHT_IN_USE]

    sig = await vault.deposit(wallet, Decimal("1"), 2)

    assert sig is not None
    assert [c[0] for c in ledger.calls] == ["initialize", "deposit"]


@pytest.mark.asyncio
async def test_retryable_init_failure_rechecks_vault(vault, ledger, wallet):
    ledger.account_exists = AsyncMock(side_effect=[False, True])
    ledger.errors = [SIMULATION]

    sig = await vault.deposit(wallet, Decimal("1"), 2)

    assert sig is not None
    assert ledger.account_exists.await_count == 2
    assert [c[0] for c in ledger.calls] == ["initialize", "deposit"]


@pytest.mark.asyncio
async def test_retryable_init_failure_with_vault_still_missing_aborts(vault, ledger, wallet):
    ledger.errors = [SIMULATION]

    assert await vault.deposit(wallet, Decimal("1"), 2) is None
    assert ledger.submitted("deposit") == []


@pytest.mark.asyncio
async def test_failed_initialization_aborts_deposit(vault, ledger, wallet):
    ledger.errors = [FATAL]

    assert await vault.deposit(wallet, Decimal("1"), 3) is None
    assert ledger.submitted("deposit") == []


@pytest.mark.asyncio
async def test_vault_lookup_failure_aborts_deposit(vault, ledger, wallet):
    ledger.lookup_error = LedgerError(LedgerErrorKind.OTHER, "rpc down")

    assert await vault.deposit(wallet, Decimal("1"), 3) is None
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_duplicate_then_success_within_three_submissions(vault, ledger, wallet, sleeps):
    _vault_ready(ledger, wallet)
    ledger.errors = [DUPLICATE, SIMULATION]

    sig = await vault.deposit(wallet, Decimal("2"), 4)

    assert sig is not None
    assert len(ledger.submitted("deposit")) == 3
    assert sleeps == [1.0, 1.0]


@pytest.mark.asyncio
async def test_retryable_errors_give_up_after_max_attempts(vault, ledger, wallet, sleeps):
    _vault_ready(ledger, wallet)
    ledger.errors = [DUPLICATE, DUPLICATE, DUPLICATE, None]

    assert await vault.deposit(wallet, Decimal("2"), 5) is None
    assert len(ledger.submitted("deposit")) == 3
    # No pause after the final attempt
    assert sleeps == [1.0, 1.0]


@pytest.mark.asyncio
async def test_fatal_error_stops_after_one_submission(vault, ledger, wallet, sleeps):
    _vault_ready(ledger, wallet)
    ledger.errors = [FATAL]

    assert await vault.withdraw(wallet, Decimal("2"), 6) is None
    assert len(ledger.submitted("withdraw")) == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_policy_from_injected_backoff(ledger, wallet):
    waits = []

    async def _sleep(seconds):
        waits.append(seconds)

    policy = RetryPolicy(max_attempts=2, backoff=lambda attempt: attempt * 0.5, sleep=_sleep)
    _vault_ready(ledger, wallet)
    ledger.errors = [SIMULATION, SIMULATION]

    assert await VaultTransferOrchestrator(ledger, policy).withdraw(wallet, Decimal("1"), 9) is None
    assert len(ledger.submitted("withdraw")) == 2
    assert waits == [0.5]
    assert fixed_backoff(2.0)(7) == 2.0


@pytest.mark.asyncio
async def test_claim_runs_both_legs(vault, ledger, wallet):
    _vault_ready(ledger, wallet)

    receipt = await vault.claim(wallet, 7, Decimal("7.5"))

    assert receipt.payout_status == PayoutStatus.CLAIMED_PAID
    assert receipt.paid
    assert receipt.claim_signature and receipt.payout_signature
    assert ledger.calls == [("claim", None, 7), ("withdraw", Decimal("7.5"), 7)]


@pytest.mark.asyncio
async def test_claim_leg_retried_after_duplicate(vault, ledger, wallet, sleeps):
    ledger.errors = [DUPLICATE, None]

    receipt = await vault.claim(wallet, 7, Decimal("2"))

    assert len(ledger.submitted("claim")) == 2
    assert sleeps == [1.0]
    assert receipt.paid
    assert receipt.payout_signature is not None
    assert ledger.submitted("withdraw") == [("withdraw", Decimal("2"), 7)]


@pytest.mark.asyncio
async def test_claim_gives_up_after_three_duplicates(vault, ledger, wallet, sleeps):
    ledger.errors = [DUPLICATE, DUPLICATE, DUPLICATE]

    assert await vault.claim(wallet, 7, Decimal("2")) is None
    assert len(ledger.submitted("claim")) == 3
    assert sleeps == [1.0, 1.0]
    assert ledger.submitted("withdraw") == []


@pytest.mark.asyncio
async def test_claim_with_zero_payout_skips_withdraw(vault, ledger, wallet):
    receipt = await vault.claim(wallet, 8, Decimal("0"))

    assert receipt.payout_status == PayoutStatus.CLAIMED_PAID
    assert receipt.payout_signature is None
    assert [c[0] for c in ledger.calls] == ["claim"]


@pytest.mark.asyncio
async def test_failed_payout_leg_is_reported_pending(vault, ledger, wallet):
    ledger.errors = [None, FATAL]

    receipt = await vault.claim(wallet, 9, Decimal("3"))

    assert receipt.payout_status == PayoutStatus.CLAIMED_PENDING_PAYOUT
    assert not receipt.paid
    assert receipt.claim_signature is not None
    assert receipt.payout_signature is None


@pytest.mark.asyncio
async def test_failed_claim_leg_returns_none(vault, ledger, wallet):
    ledger.errors = [FATAL]

    assert await vault.claim(wallet, 10, Decimal("3")) is None
    assert ledger.submitted("withdraw") == []


@pytest.mark.asyncio
async def test_concurrent_same_order_deposits_share_one_call(vault, ledger, wallet):
    _vault_ready(ledger, wallet)

    first, second = await asyncio.gather(
        vault.deposit(wallet, Decimal("1"), 11),
        vault.deposit(wallet, Decimal("1"), 11))

    assert first == second
    assert len(ledger.submitted("deposit")) == 1


@pytest.mark.asyncio
async def test_different_orders_are_not_coalesced(vault, ledger, wallet):
    _vault_ready(ledger, wallet)

    await asyncio.gather(vault.deposit(wallet, Decimal("1"), 12),
                         vault.deposit(wallet, Decimal("1"), 13))

    assert sorted(c[2] for c in ledger.submitted("deposit")) == [12, 13]
