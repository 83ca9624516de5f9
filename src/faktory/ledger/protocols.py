"""Ledger protocol definitions for the Faktory agent.

Defines structural typing protocols (PEP 544) for the two capabilities the
agent consumes: reading positions and submitting strategy changes. Any class
implementing the required coroutines satisfies the protocol without
explicit inheritance.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from faktory.ledger.models import ExecutionReceipt
from faktory.models.position import Allocation, Position, Strategy


@runtime_checkable
class PositionSource(Protocol):
    """Protocol for reading position state from the ledger.

    Failures are reported by raising ``LedgerError``; the agent never
    treats them as fatal.
    """

    @property
    def ledger_name(self) -> str:
        """Human-readable ledger identifier (e.g. ``'mantle'``)."""
        ...

    async def list_eligible_positions(self) -> list[str]:
        """Return identifiers of positions currently eligible for analysis."""
        ...

    async def needs_analysis(self, position_id: str, max_age_seconds: int) -> bool:
        """Check whether a position's last analysis is older than ``max_age_seconds``.

        Implementations must fail closed: return ``False`` on internal errors
        so that transient failures never force re-analysis.
        """
        ...

    async def fetch_position(self, position_id: str) -> Optional[Position]:
        """Fetch a position snapshot.

        Returns:
            The position, or ``None`` if it does not exist.
        """
        ...

    async def fetch_allocation(self, position_id: str) -> Optional[Allocation]:
        """Fetch the position's current allocation, or ``None`` if not deposited."""
        ...


@runtime_checkable
class StrategyExecutor(Protocol):
    """Protocol for submitting strategy-change transactions."""

    async def execute_strategy_change(
        self, position_id: str, strategy: Strategy
    ) -> ExecutionReceipt:
        """Submit a strategy change for a position.

        Args:
            position_id: Position to update.
            strategy: Strategy to switch to.

        Returns:
            Receipt with the transaction id and confirmation status.

        Raises:
            LedgerError: If the change was rejected or could not be submitted.
        """
        ...
