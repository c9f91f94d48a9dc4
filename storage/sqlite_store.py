"""SQLite store backend.

Local/dev and test backend with the same tables as the hosted store. Amounts
are stored as TEXT so Decimal values round-trip exactly; timestamps are UTC
ISO-8601 strings. Single connection in autocommit mode, one statement per
write, which matches the per-row consistency the hosted store offers.
"""

from __future__ import annotations

import sqlite3
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from execution.models import (
    Balance, IntentKind, IntentStatus, Order, OrderSide, OrderStatus,
    Position, PositionStatus, TransferIntent, utc_now,
)
from storage.base import (
    StoreError, balance_from_row, intent_from_row, order_from_row,
    position_from_row, to_db, to_db_fields,
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      wallet_address TEXT NOT NULL UNIQUE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      user_id INTEGER NOT NULL REFERENCES users(id),
      side TEXT NOT NULL,
      points TEXT NOT NULL,
      amount TEXT NOT NULL,
      filled_amount TEXT NOT NULL DEFAULT '0',
      status TEXT NOT NULL,
      txn_hash TEXT,
      created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS balances (
      user_id INTEGER PRIMARY KEY REFERENCES users(id),
      total_deposited TEXT NOT NULL,
      locked_amount TEXT NOT NULL,
      updated_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS positions (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      order_id INTEGER NOT NULL,
      user_public_key TEXT NOT NULL,
      position_type INTEGER NOT NULL,
      lower_bound TEXT NOT NULL,
      upper_bound TEXT NOT NULL,
      amount TEXT NOT NULL,
      status TEXT NOT NULL,
      settlement_time TEXT,
      settlement_price TEXT,
      payout_percentage INTEGER,
      payout_amount TEXT,
      claimed_at TEXT,
      payout_status TEXT,
      payout_signature TEXT,
      on_chain_position_address TEXT,
      tx_signature TEXT,
      created_at TEXT NOT NULL,
      updated_at TEXT,
      UNIQUE (order_id, user_public_key)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS transfer_intents (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      kind TEXT NOT NULL,
      order_id INTEGER NOT NULL,
      wallet_address TEXT NOT NULL,
      amount TEXT NOT NULL,
      status TEXT NOT NULL,
      signature TEXT,
      payout_signature TEXT,
      error TEXT,
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);",
    "CREATE INDEX IF NOT EXISTS idx_positions_owner ON positions(user_public_key);",
    "CREATE INDEX IF NOT EXISTS idx_intents_status ON transfer_intents(status);",
)


def _placeholders(values: Iterable[Any]) -> str:
    return ", ".join("?" for _ in values)


class SqliteStore:
    """
    ``IStore`` over one local sqlite3 connection.

    Methods are ``async`` to match the protocol but run their statements
    synchronously on the event loop: none of them suspends, so each call is
    atomic with respect to other tasks. Fine for tests, the CLI and a local
    ``watch``; long-running deployments use ``SupabaseStore``.
    """

    def __init__(self, path: str | Path = ":memory:"):
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self.path = str(path)
        self._conn = sqlite3.connect(self.path, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON;")
        for stmt in _SCHEMA:
            self._conn.execute(stmt)

    def close(self) -> None:
        self._conn.close()

    # ── Low-level helpers ────────────────────────────────────────────────

    def _exec(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, tuple(params))
        except sqlite3.Error as e:
            raise StoreError(f"sqlite: {e}") from e

    def _one(self, sql: str, params: Iterable[Any] = ()) -> Optional[Dict[str, Any]]:
        row = self._exec(sql, params).fetchone()
        return dict(row) if row is not None else None

    def _all(self, sql: str, params: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        return [dict(r) for r in self._exec(sql, params).fetchall()]

    def _insert(self, table: str, fields: Dict[str, Any]) -> int:
        cols = ", ".join(fields)
        cur = self._exec(
            f"INSERT INTO {table} ({cols}) VALUES ({_placeholders(fields)});",
            [to_db(v) for v in fields.values()])
        return int(cur.lastrowid)

    def _update(self, table: str, key: str, key_value: Any, fields: Dict[str, Any]) -> None:
        if not fields:
            return
        values = to_db_fields(fields)
        assignments = ", ".join(f"{col} = ?" for col in values)
        cur = self._exec(f"UPDATE {table} SET {assignments} WHERE {key} = ?;",
                         [*values.values(), key_value])
        if cur.rowcount == 0:
            raise StoreError(f"{table}: no row with {key}={key_value}")

    # ── Users ────────────────────────────────────────────────────────────

    async def upsert_user(self, wallet_address: str) -> int:
        self._exec("INSERT OR IGNORE INTO users (wallet_address) VALUES (?);", (wallet_address,))
        row = self._one("SELECT id FROM users WHERE wallet_address = ?;", (wallet_address,))
        return int(row["id"])

    async def get_user_id(self, wallet_address: str) -> Optional[int]:
        row = self._one("SELECT id FROM users WHERE wallet_address = ?;", (wallet_address,))
        return int(row["id"]) if row else None

    # ── Orders ───────────────────────────────────────────────────────────

    async def insert_order(self, user_id: int, side: OrderSide, points: Decimal,
                           amount: Decimal) -> Order:
        order_id = self._insert("orders", {
            "user_id": user_id, "side": side, "points": points, "amount": amount,
            "filled_amount": Decimal("0"), "status": OrderStatus.PENDING,
            "created_at": utc_now(),
        })
        return await self.get_order(order_id)

    async def get_order(self, order_id: int, user_id: Optional[int] = None) -> Optional[Order]:
        if user_id is None:
            row = self._one("SELECT * FROM orders WHERE id = ?;", (order_id,))
        else:
            row = self._one("SELECT * FROM orders WHERE id = ? AND user_id = ?;",
                            (order_id, user_id))
        return order_from_row(row) if row else None

    async def update_order(self, order_id: int, **fields) -> None:
        self._update("orders", "id", order_id, fields)

    async def list_orders(self, statuses: Iterable[OrderStatus]) -> List[Order]:
        values = [s.value for s in statuses]
        rows = self._all(
            f"SELECT * FROM orders WHERE status IN ({_placeholders(values)}) "
            "ORDER BY CAST(points AS REAL) ASC, id ASC;", values)
        return [order_from_row(r) for r in rows]

    async def list_user_orders(self, user_id: int) -> List[Order]:
        rows = self._all("SELECT * FROM orders WHERE user_id = ? "
                         "ORDER BY created_at DESC, id DESC;", (user_id,))
        return [order_from_row(r) for r in rows]

    # ── Balances ─────────────────────────────────────────────────────────

    async def get_balance(self, user_id: int) -> Optional[Balance]:
        row = self._one("SELECT * FROM balances WHERE user_id = ?;", (user_id,))
        return balance_from_row(row) if row else None

    async def save_balance(self, balance: Balance) -> None:
        self._exec(
            "INSERT INTO balances (user_id, total_deposited, locked_amount, updated_at) "
            "VALUES (?, ?, ?, ?) ON CONFLICT(user_id) DO UPDATE SET "
            "total_deposited = excluded.total_deposited, "
            "locked_amount = excluded.locked_amount, updated_at = excluded.updated_at;",
            (balance.user_id, to_db(balance.total_deposited),
             to_db(balance.locked_amount), to_db(balance.updated_at)))

    # ── Positions ────────────────────────────────────────────────────────

    async def insert_position(self, **fields) -> Position:
        fields.setdefault("status", PositionStatus.ACTIVE)
        fields.setdefault("created_at", utc_now())
        position_id = self._insert("positions", fields)
        row = self._one("SELECT * FROM positions WHERE id = ?;", (position_id,))
        return position_from_row(row)

    async def get_position(self, order_id: int, wallet_address: str) -> Optional[Position]:
        row = self._one("SELECT * FROM positions WHERE order_id = ? AND user_public_key = ?;",
                        (order_id, wallet_address))
        return position_from_row(row) if row else None

    async def list_positions(self, wallet_address: Optional[str] = None,
                             status: Optional[PositionStatus] = None) -> List[Position]:
        clauses, params = [], []
        if wallet_address is not None:
            clauses.append("user_public_key = ?")
            params.append(wallet_address)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f"WHERE {' AND '.join(clauses)} " if clauses else ""
        rows = self._all(f"SELECT * FROM positions {where}ORDER BY created_at DESC, id DESC;",
                         params)
        return [position_from_row(r) for r in rows]

    async def update_position(self, position_id: int, **fields) -> None:
        fields.setdefault("updated_at", utc_now())
        self._update("positions", "id", position_id, fields)

    # ── Transfer intents ─────────────────────────────────────────────────

    async def insert_intent(self, kind: IntentKind, order_id: int, wallet_address: str,
                            amount: Decimal) -> TransferIntent:
        now = utc_now()
        intent_id = self._insert("transfer_intents", {
            "kind": kind, "order_id": order_id, "wallet_address": wallet_address,
            "amount": amount, "status": IntentStatus.PENDING,
            "created_at": now, "updated_at": now,
        })
        row = self._one("SELECT * FROM transfer_intents WHERE id = ?;", (intent_id,))
        return intent_from_row(row)

    async def update_intent(self, intent_id: int, **fields) -> None:
        fields.setdefault("updated_at", utc_now())
        self._update("transfer_intents", "id", intent_id, fields)

    async def list_intents(self, statuses: Iterable[IntentStatus]) -> List[TransferIntent]:
        values = [s.value for s in statuses]
        rows = self._all(
            f"SELECT * FROM transfer_intents WHERE status IN ({_placeholders(values)}) "
            "ORDER BY id ASC;", values)
        return [intent_from_row(r) for r in rows]
