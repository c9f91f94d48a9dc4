"""
Ledger layer — everything that talks to the custodial vault program.

  rpc.py            — JSON-RPC transport (httpx)
  client.py         — account derivation, signed submission, confirmation
  instructions.py   — instruction encoding and account layouts
  errors.py         — LedgerError / LedgerErrorKind classification
"""
