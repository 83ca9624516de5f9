"""Data models shared by ledger adapters."""

from __future__ import annotations

from pydantic import BaseModel


class ExecutionReceipt(BaseModel):
    """Acknowledgement of a submitted strategy change.

    Attributes:
        tx_id: Transaction identifier assigned by the ledger
        confirmed: Whether the ledger confirmed the change took effect
    """

    tx_id: str
    confirmed: bool = True


class LedgerError(Exception):
    """Exception raised by ledger operations.

    Attributes:
        error_code: Machine-readable error code (e.g. ``"rpc_unavailable"``).
        message: Human-readable error description.
        ledger_name: Name of the ledger adapter that raised the error.
    """

    def __init__(self, error_code: str, message: str, ledger_name: str) -> None:
        self.error_code: str = error_code
        self.message: str = message
        self.ledger_name: str = ledger_name
        super().__init__(f"[{ledger_name}] {error_code}: {message}")
