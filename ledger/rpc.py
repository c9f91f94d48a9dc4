"""
Solana JSON-RPC transport
Thin async wrapper over the validator's HTTP endpoint
"""
from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from ledger.errors import LedgerError, LedgerErrorKind


class SolanaRPC:
    """
    Solana RPC transport.

    Every call returns the ``result`` member or raises ``LedgerError``; RPC
    error objects are classified through ``LedgerError.from_rpc`` and transport
    failures are wrapped as ``OTHER``.
    """

    def __init__(
        self,
        rpc_url: str = "https://api.devnet.solana.com",
        commitment: str = "confirmed",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Solana RPC transport.

        Args:
            rpc_url: Solana RPC endpoint
            commitment: commitment level used for reads
            timeout: per-request HTTP timeout in seconds
            transport: optional httpx transport (tests inject a MockTransport)
        """
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.timeout = timeout
        self._transport = transport
        self.session: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    def _ensure_session(self) -> httpx.AsyncClient:
        if self.session is None:
            self.session = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self.session

    async def _rpc_call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Make a JSON-RPC call. Returns the result value."""
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": next(self._ids), "method": method}
        if params:
            payload["params"] = params
        session = self._ensure_session()
        try:
            resp = await session.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as e:
            raise LedgerError(LedgerErrorKind.OTHER, f"{method} transport error: {e}") from e
        except ValueError as e:
            raise LedgerError(LedgerErrorKind.OTHER, f"{method} returned a non-JSON body: {e}") from e
        error = body.get("error")
        if error:
            data = error.get("data")
            logs = data.get("logs") if isinstance(data, dict) else None
            raise LedgerError.from_rpc(error.get("message", str(error)), error.get("code"), logs)
        return body.get("result")

    async def disconnect(self) -> None:
        """Close connection."""
        if self.session:
            await self.session.aclose()
            self.session = None
            logger.info("Disconnected from Solana RPC")

    async def get_slot(self) -> int:
        return await self._rpc_call("getSlot", [{"commitment": self.commitment}])

    async def get_account_info(self, address: str) -> Optional[Dict[str, Any]]:
        result = await self._rpc_call(
            "getAccountInfo", [address, {"encoding": "base64", "commitment": self.commitment}])
        return (result or {}).get("value")

    async def get_latest_blockhash(self) -> str:
        result = await self._rpc_call("getLatestBlockhash", [{"commitment": self.commitment}])
        return result["value"]["blockhash"]

    async def send_transaction(self, encoded_tx: str, skip_preflight: bool = True) -> str:
        return await self._rpc_call("sendTransaction", [encoded_tx, {
            "encoding": "base64",
            "skipPreflight": skip_preflight,
            "preflightCommitment": "processed",
        }])

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        result = await self._rpc_call(
            "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}])
        values = (result or {}).get("value") or [None]
        return values[0]
