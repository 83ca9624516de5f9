"""Ledger abstraction layer.

Provides protocol-based abstractions for reading positions and submitting
strategy changes, keeping the agent independent of any chain client.
"""

from __future__ import annotations

from faktory.ledger.models import ExecutionReceipt, LedgerError
from faktory.ledger.protocols import PositionSource, StrategyExecutor
from faktory.ledger.simulated import SimulatedLedger

__all__ = [
    "ExecutionReceipt",
    "LedgerError",
    "PositionSource",
    "SimulatedLedger",
    "StrategyExecutor",
]
