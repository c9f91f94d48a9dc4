"""
Typed configuration — single source of truth for all engine settings.

SRP: This module's sole responsibility is loading and validating configuration.
All env-var reads are consolidated here; no other module should call os.getenv().
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


def _env(key: str, default: str) -> str:
    return os.getenv(key, default)


def _env_bool(key: str, default: str = "true") -> bool:
    return _env(key, default).lower() == "true"


def _env_int(key: str, default: str) -> int:
    return int(_env(key, default))


def _env_float(key: str, default: str) -> float:
    return float(_env(key, default))


def _env_decimal(key: str, default: str) -> Decimal:
    return Decimal(_env(key, default))


# ── Ledger ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LedgerConfig:
    """Solana endpoint and vault program settings."""
    rpc_url: str = _env("SOLANA_RPC_URL", "https://api.devnet.solana.com")
    program_id: str = _env("VAULT_PROGRAM_ID", "9bqQoWC9ovH3FFGzEAV2MJJkF1uNuS4EVGZ2SmRw17w8")
    commitment: str = _env("LEDGER_COMMITMENT", "confirmed")
    confirm_timeout_sec: float = _env_float("LEDGER_CONFIRM_TIMEOUT", "30")
    confirm_poll_sec: float = _env_float("LEDGER_CONFIRM_POLL", "0.5")
    skip_preflight: bool = _env_bool("LEDGER_SKIP_PREFLIGHT", "true")


# ── Retry ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RetryConfig:
    """Attempts per ledger transfer (total, not extra) and fixed backoff."""
    max_attempts: int = _env_int("LEDGER_MAX_ATTEMPTS", "3")
    backoff_sec: float = _env_float("LEDGER_RETRY_BACKOFF", "1.0")


# ── Backend store ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StoreConfig:
    """Which store backend to use and how to reach it."""
    backend: str = _env("STORE_BACKEND", "sqlite")  # "sqlite" | "supabase"
    sqlite_path: str = _env("SQLITE_PATH", "data/vault.sqlite3")
    supabase_url: str = _env("SUPABASE_URL", "")
    supabase_key: str = _env("SUPABASE_KEY", "")
    timeout_sec: float = _env_float("STORE_TIMEOUT", "15")


# ── Orders ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OrderConfig:
    """Order validation bounds."""
    min_points: Decimal = Decimal("0.1")
    max_points: Decimal = Decimal("10.0")
    min_order_amount: Decimal = _env_decimal("MIN_ORDER_AMOUNT", "0.1")


# ── Feeds ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FeedConfig:
    """Polling intervals for refresh loops."""
    positions_poll_sec: float = _env_float("POSITIONS_POLL_SEC", "5")


# ── Top-level aggregate ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class AppConfig:
    """
    Root configuration object — compose all sub-configs.

    Usage:
        cfg = AppConfig()              # loads from env
        print(cfg.ledger.rpc_url)
        print(cfg.retry.max_attempts)
    """
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    orders: OrderConfig = field(default_factory=OrderConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    log_level: str = _env("LOG_LEVEL", "INFO")


# Module-level singleton (immutable, safe to share)
_cfg: AppConfig | None = None


def get_config() -> AppConfig:
    """Get the global immutable config. Created once, never mutated."""
    global _cfg
    if _cfg is None:
        _cfg = AppConfig()
    return _cfg
