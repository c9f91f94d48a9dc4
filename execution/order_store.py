"""
Order Store — owns order lifecycle (placement, cancellation, depth).

SRP: This class handles ONLY the off-chain order rows and the user's balance
     mirror. Ledger transfers go through the vault orchestrator; an order never
     reaches OPEN unless its deposit signature came back.

Placement: PENDING row -> DEPOSIT intent -> vault deposit -> balance credit ->
OPEN. A failed deposit leaves the order CANCELLED, never OPEN.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Union

from loguru import logger
from solders.keypair import Keypair

from config import OrderConfig
from execution.intents import IntentJournal
from execution.models import (
    LIVE_ORDER_STATUSES, Balance, DepthLevel, IntentKind, Order, Orderbook,
    OrderResult, OrderSide, OrderStatus, TransferIntent, utc_now,
)
from execution.vault import VaultTransferError, VaultTransferOrchestrator
from interfaces import IStore

_POINTS_STEP = Decimal("0.1")


class OrderStore:
    """Places and cancels volatility orders; aggregates the public book."""

    def __init__(self, store: IStore, vault: VaultTransferOrchestrator,
                 journal: Optional[IntentJournal] = None,
                 order_cfg: Optional[OrderConfig] = None):
        self.store = store
        self.vault = vault
        self.journal = journal or IntentJournal(store)
        self.cfg = order_cfg or OrderConfig()

    # ── Placement ────────────────────────────────────────────────────────

    def validate(self, amount, side, points) -> Union[str, tuple]:
        """Error message, or the normalised (amount, side, points) triple."""
        try:
            amount = Decimal(str(amount))
            points = Decimal(str(points))
        except InvalidOperation:
            return "Amount and points must be numbers"
        if not (amount.is_finite() and points.is_finite()):
            return "Amount and points must be numbers"
        try:
            side = OrderSide(side.value if isinstance(side, OrderSide) else str(side).upper())
        except ValueError:
            return f"Invalid side: {side}"
        if amount <= 0:
            return "Amount must be greater than 0"
        if amount < self.cfg.min_order_amount:
            return f"Minimum order amount is {self.cfg.min_order_amount} SOL"
        if not self.cfg.min_points <= points <= self.cfg.max_points:
            return f"Points must be between {self.cfg.min_points} and {self.cfg.max_points}"
        if points != points.quantize(_POINTS_STEP):
            return "Points must have at most one decimal place"
        return amount, side, points.quantize(_POINTS_STEP)

    async def place_order(self, wallet: Optional[Keypair], amount, side, points) -> OrderResult:
        if wallet is None:
            return OrderResult.fail("Wallet not connected")
        checked = self.validate(amount, side, points)
        if isinstance(checked, str):
            return OrderResult.fail(checked)
        amount, side, points = checked
        address = str(wallet.pubkey())

        user_id = await self.store.upsert_user(address)
        order = await self.store.insert_order(user_id, side, points, amount)
        logger.info(f"Order {order.id}: {side.value} {amount} SOL @ {points} pending deposit")

        intent = await self.journal.open(IntentKind.DEPOSIT, order.id, address, amount)
        signature = await self.vault.deposit(wallet, amount, order.id)
        if signature is None:
            await self.store.update_order(order.id, status=OrderStatus.CANCELLED)
            await self.journal.fail(intent, "Vault deposit failed")
            logger.error(f"Order {order.id} cancelled: vault deposit failed")
            return OrderResult.fail("Vault deposit failed", order_id=order.id)

        await self.journal.submitted(intent, signature)
        if not await self.finalize_deposit(order, signature, intent):
            return OrderResult.fail("Order is no longer pending", tx_hash=signature,
                                    order_id=order.id)
        return OrderResult(success=True, tx_hash=signature, order_id=order.id)

    async def finalize_deposit(self, order: Order, signature: str,
                               intent: Optional[TransferIntent] = None) -> bool:
        """Credit the balance and open the order once its deposit is on the ledger.

        Only a still-PENDING order is opened; anything else is left untouched
        and the intent stays open for the reconciler.
        """
        current = await self.store.get_order(order.id)
        if current is None or current.status != OrderStatus.PENDING:
            state = current.status.value if current else "missing"
            logger.warning(f"Order {order.id} is {state}; deposit {signature} not applied")
            return False
        await self.credit_deposit(order.user_id, order.amount)
        await self.store.update_order(order.id, status=OrderStatus.OPEN, txn_hash=signature)
        if intent is not None:
            await self.journal.complete(intent, signature)
        logger.info(f"Order {order.id} OPEN ({signature})")
        return True

    # ── Cancellation ─────────────────────────────────────────────────────

    async def cancel_order(self, wallet: Optional[Keypair], order_id: int) -> OrderResult:
        if wallet is None:
            return OrderResult.fail("Wallet not connected")
        address = str(wallet.pubkey())

        user_id = await self.store.get_user_id(address)
        if user_id is None:
            return OrderResult.fail("User not found")
        order = await self.store.get_order(order_id, user_id)
        if order is None:
            return OrderResult.fail("Order not found")
        if order.status.is_terminal:
            return OrderResult.fail(f"Order already {order.status.value.lower()}",
                                    order_id=order.id)
        if order.status == OrderStatus.PENDING:
            return OrderResult.fail("Order is pending deposit", order_id=order.id)
        refund = order.remaining
        if refund <= 0:
            return OrderResult.fail("No funds to refund", order_id=order.id)

        intent = await self.journal.open(IntentKind.REFUND, order.id, address, refund)
        await self.store.update_order(order.id, status=OrderStatus.CANCELLED)
        await self.release_lock(user_id, refund)
        try:
            signature = await self._refund(wallet, refund, order.id)
        except VaultTransferError as e:
            logger.error(f"Order cancellation error: {e}")
            await self.journal.note_error(intent, str(e))
            return OrderResult.fail(str(e), order_id=order.id)

        await self.journal.complete(intent, signature)
        logger.info(f"Order {order.id} cancelled, refunded {refund} SOL ({signature})")
        return OrderResult(success=True, tx_hash=signature, order_id=order.id)

    async def _refund(self, wallet: Keypair, amount: Decimal, order_id: int) -> str:
        signature = await self.vault.withdraw(wallet, amount, order_id)
        if signature is None:
            raise VaultTransferError("Failed to withdraw funds from vault")
        return signature

    # ── Balance mirror ───────────────────────────────────────────────────

    async def credit_deposit(self, user_id: int, amount: Decimal) -> Balance:
        balance = await self.store.get_balance(user_id) or Balance(user_id=user_id)
        balance.total_deposited += amount
        balance.locked_amount += amount
        balance.updated_at = utc_now()
        await self.store.save_balance(balance)
        return balance

    async def release_lock(self, user_id: int, amount: Decimal) -> Optional[Balance]:
        balance = await self.store.get_balance(user_id)
        if balance is None:
            return None
        balance.locked_amount = max(Decimal("0"), balance.locked_amount - amount)
        balance.updated_at = utc_now()
        await self.store.save_balance(balance)
        return balance

    # ── Reads ────────────────────────────────────────────────────────────

    async def fetch_orderbook(self) -> Orderbook:
        """Remaining size per (side, points) over live orders, ascending by points."""
        depth: Dict[OrderSide, Dict[Decimal, Decimal]] = {OrderSide.LONG: {}, OrderSide.SHORT: {}}
        for order in await self.store.list_orders(LIVE_ORDER_STATUSES):
            remaining = order.remaining
            if remaining <= 0:
                continue
            levels = depth[order.side]
            levels[order.points] = levels.get(order.points, Decimal("0")) + remaining
        return Orderbook(long_orders=_levels(depth[OrderSide.LONG]),
                         short_orders=_levels(depth[OrderSide.SHORT]))

    async def fetch_user_orders(self, wallet_address: str) -> List[Order]:
        user_id = await self.store.get_user_id(wallet_address)
        if user_id is None:
            return []
        return await self.store.list_user_orders(user_id)

    async def fetch_user_balance(self, wallet_address: str) -> Optional[Balance]:
        user_id = await self.store.get_user_id(wallet_address)
        if user_id is None:
            return None
        return await self.store.get_balance(user_id)


def _levels(levels: Dict[Decimal, Decimal]) -> List[DepthLevel]:
    return [DepthLevel(points=p, total_amount=levels[p]) for p in sorted(levels)]
