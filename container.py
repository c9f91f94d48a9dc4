"""
Service Container — wires and owns all shared service instances.

SRP:  This module's only job is construction + lifecycle of shared services.
DIP:  Consumers receive the ledger and store through their Protocols.
OCP:  Adding a new service = one new property; existing code untouched.

Usage:
    container = ServiceContainer(cfg)       # build once at startup
    result = await container.orders.place_order(wallet, amount, side, points)

    # Or use the module-level getter:
    from container import get_container
    container = get_container()
"""
from __future__ import annotations

from typing import Optional
from loguru import logger

from config import AppConfig, get_config
from interfaces import ILedgerClient, IStore


class ServiceContainer:
    """
    Owns and lazily constructs all shared service instances.

    The store backend is picked from ``cfg.store.backend``; everything above the
    ledger and store is backend-agnostic.
    """

    def __init__(self, cfg: Optional[AppConfig] = None):
        self.cfg = cfg or get_config()
        self._rpc = None
        self._ledger: Optional[ILedgerClient] = None
        self._store: Optional[IStore] = None
        self._retry_policy = None
        self._vault = None
        self._journal = None
        self._orders = None
        self._positions = None
        self._reconciler = None
        self._signer_for = None
        logger.info("ServiceContainer initialised")

    # ── Lazy constructors ────────────────────────────────────────────────

    @property
    def rpc(self):
        if self._rpc is None:
            from ledger.rpc import SolanaRPC
            lc = self.cfg.ledger
            self._rpc = SolanaRPC(lc.rpc_url, commitment=lc.commitment)
        return self._rpc

    @property
    def ledger(self) -> ILedgerClient:
        if self._ledger is None:
            from ledger.client import LedgerClient
            lc = self.cfg.ledger
            self._ledger = LedgerClient(
                self.rpc, lc.program_id,
                confirm_timeout_sec=lc.confirm_timeout_sec,
                confirm_poll_sec=lc.confirm_poll_sec)
        return self._ledger

    @property
    def store(self) -> IStore:
        if self._store is None:
            sc = self.cfg.store
            if sc.backend == "supabase":
                from storage.supabase_store import SupabaseStore
                self._store = SupabaseStore(sc.supabase_url, sc.supabase_key,
                                            timeout=sc.timeout_sec)
            elif sc.backend == "sqlite":
                from storage.sqlite_store import SqliteStore
                self._store = SqliteStore(sc.sqlite_path)
            else:
                raise ValueError(f"Unknown STORE_BACKEND: {sc.backend}")
            logger.info(f"Store backend: {sc.backend}")
        return self._store

    @property
    def retry_policy(self):
        if self._retry_policy is None:
            from execution.vault import RetryPolicy
            self._retry_policy = RetryPolicy.from_config(self.cfg.retry)
        return self._retry_policy

    @property
    def vault(self):
        if self._vault is None:
            from execution.vault import VaultTransferOrchestrator
            self._vault = VaultTransferOrchestrator(
                self.ledger, self.retry_policy, skip_preflight=self.cfg.ledger.skip_preflight)
        return self._vault

    @property
    def journal(self):
        if self._journal is None:
            from execution.intents import IntentJournal
            self._journal = IntentJournal(self.store)
        return self._journal

    @property
    def orders(self):
        if self._orders is None:
            from execution.order_store import OrderStore
            self._orders = OrderStore(self.store, self.vault, self.journal, self.cfg.orders)
        return self._orders

    @property
    def positions(self):
        if self._positions is None:
            from execution.position_manager import PositionLifecycleManager
            self._positions = PositionLifecycleManager(
                self.store, self.vault, self.journal,
                poll_interval=self.cfg.feed.positions_poll_sec)
        return self._positions

    @property
    def reconciler(self):
        if self._reconciler is None:
            from execution.reconciler import IntentReconciler
            self._reconciler = IntentReconciler(
                self.store, self.vault, self.orders, self.positions, self.journal,
                signer_for=self._signer_for)
        return self._reconciler

    # ── Inject overrides (for testing) ───────────────────────────────────

    def override(self, **kwargs):
        """
        Override any service with a mock/stub.

        Example:
            container.override(ledger=FakeLedger(), store=SqliteStore())
        """
        for key, value in kwargs.items():
            attr = f"_{key}"
            if hasattr(self, attr):
                setattr(self, attr, value)
                logger.debug(f"ServiceContainer: overrode {key}")
            else:
                raise KeyError(f"Unknown service: {key}")

    async def close(self) -> None:
        if self._rpc is not None:
            await self._rpc.disconnect()
        if self._store is not None:
            closer = getattr(self._store, "close", None)
            result = closer() if closer else None
            if result is not None:
                await result


# ── Module-level singleton ───────────────────────────────────────────────────

_container: Optional[ServiceContainer] = None


def get_container(cfg: Optional[AppConfig] = None) -> ServiceContainer:
    """Get or create the global service container."""
    global _container
    if _container is None:
        _container = ServiceContainer(cfg)
    return _container
