"""
Backend stores for users, orders, balances, positions and transfer intents.

  base.py            — StoreError and row <-> record mapping
  sqlite_store.py    — local/dev backend (sqlite3)
  supabase_store.py  — hosted backend (PostgREST over httpx)
"""
