"""
Ledger error taxonomy.

Raw RPC failures are classified here, where the message and error code are
still available, so callers branch on ``LedgerErrorKind`` instead of matching
substrings of free-form text.
"""
from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional


class LedgerErrorKind(Enum):
    """What went wrong on the ledger side."""
    DUPLICATE_SUBMISSION = "duplicate_submission"
    SIMULATION_FAILURE = "simulation_failure"
    ACCOUNT_EXISTS = "account_exists"
    OTHER = "other"


RETRYABLE_KINDS = frozenset({
    LedgerErrorKind.DUPLICATE_SUBMISSION,
    LedgerErrorKind.SIMULATION_FAILURE,
})

# JSON-RPC code the validator returns when preflight simulation rejects a tx
SIMULATION_FAILED_CODE = -32002

_DUPLICATE_MARKERS = ("already been processed", "already processed")
_SIMULATION_MARKERS = ("simulation failed",)
_ACCOUNT_EXISTS_MARKERS = ("already in use",)


def classify_error(message: str, code: Optional[int] = None,
                   logs: Optional[Iterable[str]] = None) -> LedgerErrorKind:
    """Map a raw RPC error message (plus code and simulation logs) to a kind.

    Preflight failures carry the program's own error only in ``logs``; the
    message is the generic "Transaction simulation failed" text.
    """
    text = " ".join([message or "", *(logs or ())]).lower()
    if any(m in text for m in _DUPLICATE_MARKERS):
        return LedgerErrorKind.DUPLICATE_SUBMISSION
    if any(m in text for m in _ACCOUNT_EXISTS_MARKERS):
        return LedgerErrorKind.ACCOUNT_EXISTS
    if code == SIMULATION_FAILED_CODE or any(m in text for m in _SIMULATION_MARKERS):
        return LedgerErrorKind.SIMULATION_FAILURE
    return LedgerErrorKind.OTHER


class LedgerError(Exception):
    """A ledger operation failed. ``kind`` decides whether it is retried."""

    def __init__(self, kind: LedgerErrorKind, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code

    @classmethod
    def from_rpc(cls, message: str, code: Optional[int] = None,
                 logs: Optional[Iterable[str]] = None) -> "LedgerError":
        return cls(classify_error(message, code, logs), message, code)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


class LedgerTimeout(LedgerError):
    """Confirmation did not arrive within the configured window."""

    def __init__(self, signature: str, timeout_sec: float):
        super().__init__(
            LedgerErrorKind.OTHER,
            f"Transaction {signature} not confirmed after {timeout_sec:.1f}s")
        self.signature = signature
        self.timeout_sec = timeout_sec
