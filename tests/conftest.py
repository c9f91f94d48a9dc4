import struct
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from solders.keypair import Keypair

# Project root on sys.path so tests import top-level modules directly
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from execution.intents import IntentJournal  # noqa: E402
from execution.models import PositionStatus, PositionType  # noqa: E402
from execution.order_store import OrderStore  # noqa: E402
from execution.position_manager import PositionLifecycleManager  # noqa: E402
from execution.vault import RetryPolicy, VaultTransferOrchestrator  # noqa: E402
from ledger.client import LedgerClient  # noqa: E402
from ledger.instructions import (  # noqa: E402
    CLAIM_POSITION_DISCRIMINATOR, decode_transfer_args, discriminator, from_lamports,
)
from storage.sqlite_store import SqliteStore  # noqa: E402

PROGRAM_ID = "9bqQoWC9ovH3FFGzEAV2MJJkF1uNuS4EVGZ2SmRw17w8"

_NAMES = {
    discriminator("initialize"): "initialize",
    discriminator("deposit"): "deposit",
    discriminator("withdraw"): "withdraw",
    CLAIM_POSITION_DISCRIMINATOR: "claim",
}


class FakeLedger(LedgerClient):
    """
    LedgerClient with real derivations and a scripted network side.

    ``errors`` is consumed one entry per submission (``None`` = success);
    once empty, every submission succeeds. ``calls`` records
    ``(name, amount_sol, order_id)`` per submission attempt.
    """

    def __init__(self):
        super().__init__(None, PROGRAM_ID)
        self.existing = set()
        self.errors = []
        self.calls = []
        self.lookup_error = None

    async def account_exists(self, address):
        if self.lookup_error is not None:
            raise self.lookup_error
        return address in self.existing

    async def submit_and_confirm(self, instructions, signer, skip_preflight=True):
        ix = instructions[0]
        data = bytes(ix.data)
        name = _NAMES[data[:8]]
        amount, order_id = None, None
        if name in ("deposit", "withdraw"):
            lamports, order_id = decode_transfer_args(data)
            amount = from_lamports(lamports)
        elif name == "claim":
            (order_id,) = struct.unpack("<Q", data[8:16])
        self.calls.append((name, amount, order_id))

        error = self.errors.pop(0) if self.errors else None
        if error is not None:
            raise error
        if name == "initialize":
            self.existing.add(self.vault_state_address(signer.pubkey()))
        return f"sig-{name}-{len(self.calls)}"

    def submitted(self, name):
        return [c for c in self.calls if c[0] == name]


@pytest.fixture
def wallet():
    return Keypair()


@pytest.fixture
def store():
    s = SqliteStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retry_policy(sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)
    return RetryPolicy(max_attempts=3, sleep=_sleep)


@pytest.fixture
def vault(ledger, retry_policy):
    return VaultTransferOrchestrator(ledger, retry_policy)


@pytest.fixture
def journal(store):
    return IntentJournal(store)


@pytest.fixture
def orders(store, vault, journal):
    return OrderStore(store, vault, journal)


@pytest.fixture
def positions(store, vault, journal):
    return PositionLifecycleManager(store, vault, journal, poll_interval=0.01)


@pytest.fixture
def make_position(store, wallet):
    """Insert a position row for the test wallet."""
    async def _make(order_id=7, amount="5", status=PositionStatus.ACTIVE,
                    position_type=PositionType.STAY_IN, payout_percentage=None, **extra):
        fields = dict(
            order_id=order_id, user_public_key=str(wallet.pubkey()),
            position_type=position_type, lower_bound=Decimal("1.5"),
            upper_bound=Decimal("2.5"), amount=Decimal(amount), status=status,
            on_chain_position_address="pos-addr", tx_signature="match-sig")
        if status != PositionStatus.ACTIVE:
            fields.update(settlement_time=datetime(2026, 1, 1, tzinfo=timezone.utc),
                          settlement_price=Decimal("101.25"),
                          payout_percentage=payout_percentage)
        fields.update(extra)
        return await store.insert_position(**fields)
    return _make
