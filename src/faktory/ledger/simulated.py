"""In-memory ledger used for demos, dry runs and tests."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from faktory.core.config import load_toml
from faktory.ledger.models import ExecutionReceipt, LedgerError
from faktory.models.position import Allocation, Position, PositionStatus, Strategy

logger = logging.getLogger(__name__)

# Positions in these states are never offered for analysis
_TERMINAL_STATUSES = {PositionStatus.PAID, PositionStatus.DEFAULTED, PositionStatus.CANCELLED}


class SimulatedLedger:
    """
    In-memory ledger implementing PositionSource + StrategyExecutor.

    Tracks when each position was last read so ``needs_analysis`` behaves
    like the on-chain staleness check, applies executed strategy changes to
    its allocations, and can inject latency or failures per position.
    """

    def __init__(
        self,
        positions: Optional[list[Position]] = None,
        allocations: Optional[dict[str, Allocation]] = None,
        latency_seconds: float = 0.0,
    ) -> None:
        self._positions: dict[str, Position] = {p.position_id: p for p in positions or []}
        self._allocations: dict[str, Allocation] = dict(allocations or {})
        self._last_analyzed: dict[str, datetime] = {}
        self.latency_seconds = latency_seconds
        self.failing_ids: set[str] = set()
        self.rejecting_ids: set[str] = set()
        self.list_failure: Optional[str] = None
        self.executed: list[tuple[str, Strategy]] = []

    @property
    def ledger_name(self) -> str:
        return "simulated"

    # ── Setup ──────────────────────────────────────────────────────────

    def add_position(self, position: Position, allocation: Optional[Allocation] = None) -> None:
        """Add or replace a position (and optionally its allocation)."""
        self._positions[position.position_id] = position
        if allocation is not None:
            self._allocations[position.position_id] = allocation

    @classmethod
    def from_toml(cls, path: Path, now: Optional[datetime] = None) -> SimulatedLedger:
        """
        Load positions from a TOML file.

        Dates are given relative to ``now`` so sample files never go stale.

        Example TOML format:
            [[positions]]
            id = "1001"
            owner = "0xabc"
            risk_score = 85
            payment_probability = 92
            due_in_days = 75

            [positions.allocation]
            strategy = "Hold"
            held_days = 10
            principal = 1000000
        """
        now = now or datetime.now(timezone.utc)
        data = load_toml(path)
        ledger = cls(latency_seconds=float(data.get("latency_seconds", 0.0)))
        for entry in data.get("positions", []):
            position, allocation = _parse_entry(entry, now)
            ledger.add_position(position, allocation)
        logger.info(f"Loaded {len(ledger._positions)} simulated positions from {path}")
        return ledger

    # ── PositionSource ─────────────────────────────────────────────────

    async def list_eligible_positions(self) -> list[str]:
        await self._simulate_latency()
        if self.list_failure:
            raise LedgerError("rpc_unavailable", self.list_failure, self.ledger_name)
        return [
            pid for pid, position in self._positions.items()
            if position.status not in _TERMINAL_STATUSES
        ]

    async def needs_analysis(self, position_id: str, max_age_seconds: int) -> bool:
        try:
            await self._simulate_latency()
            self._check_failure(position_id)
        except LedgerError as e:
            logger.debug(f"needs_analysis failed closed for {position_id}: {e}")
            return False
        last = self._last_analyzed.get(position_id)
        if last is None:
            return True
        age = datetime.now(timezone.utc) - last
        return age.total_seconds() >= max_age_seconds

    async def fetch_position(self, position_id: str) -> Optional[Position]:
        await self._simulate_latency()
        self._check_failure(position_id)
        position = self._positions.get(position_id)
        if position is not None:
            self._last_analyzed[position_id] = datetime.now(timezone.utc)
        return position

    async def fetch_allocation(self, position_id: str) -> Optional[Allocation]:
        await self._simulate_latency()
        self._check_failure(position_id)
        return self._allocations.get(position_id)

    # ── StrategyExecutor ───────────────────────────────────────────────

    async def execute_strategy_change(
        self, position_id: str, strategy: Strategy
    ) -> ExecutionReceipt:
        await self._simulate_latency()
        self._check_failure(position_id)
        if position_id in self.rejecting_ids:
            raise LedgerError("rejected", "Strategy change reverted", self.ledger_name)

        current = self._allocations.get(position_id)
        now = datetime.now(timezone.utc)
        if current is None:
            self._allocations[position_id] = Allocation(strategy=strategy, allocated_at=now)
        else:
            self._allocations[position_id] = current.model_copy(
                update={"strategy": strategy, "allocated_at": now, "active": True}
            )
        self.executed.append((position_id, strategy))
        return ExecutionReceipt(tx_id=f"0x{uuid.uuid4().hex}")

    # ── Helpers ────────────────────────────────────────────────────────

    async def _simulate_latency(self) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

    def _check_failure(self, position_id: str) -> None:
        if position_id in self.failing_ids:
            raise LedgerError("rpc_error", f"Read failed for position {position_id}", self.ledger_name)


def _parse_entry(entry: dict[str, Any], now: datetime) -> tuple[Position, Optional[Allocation]]:
    """Build a position and optional allocation from one TOML table."""
    position = Position(
        position_id=str(entry["id"]),
        owner=entry.get("owner", ""),
        status=PositionStatus[entry.get("status", "active").upper()],
        risk_score=entry["risk_score"],
        payment_probability=entry["payment_probability"],
        due_date=now + timedelta(days=entry["due_in_days"]),
        created_at=now - timedelta(days=entry.get("age_days", 0)),
    )
    alloc = entry.get("allocation")
    allocation = None
    if alloc is not None:
        allocation = Allocation(
            strategy=Strategy.from_label(alloc.get("strategy", "Hold")),
            allocated_at=now - timedelta(days=alloc.get("held_days", 0)),
            principal=alloc.get("principal", 0),
            accrued_yield=alloc.get("accrued_yield", 0),
            active=alloc.get("active", True),
        )
    return position, allocation
