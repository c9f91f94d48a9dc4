"""
Execution layer — vault transfers, order lifecycle, and position lifecycle.

SRP split:
  models.py            — domain records and status enums
  vault.py             — ledger transfers with retry policy (deposit/withdraw/claim)
  intents.py           — outbox journal written around every ledger call
  order_store.py       — order placement, cancellation, depth aggregation
  position_manager.py  — settlement intake, claiming
  position_feed.py     — polling change feed for a wallet's positions
  reconciler.py        — replays open intents after a restart
"""
