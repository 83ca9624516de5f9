"""Test configuration and fixtures for pytest."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import pytest

from faktory.ledger.simulated import SimulatedLedger
from faktory.models.position import Allocation, Position, Strategy

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def make_position(
    position_id: str = "1",
    risk_score: int = 70,
    payment_probability: int = 80,
    due_in_days: float = 45,
    now: datetime = NOW,
) -> Position:
    """Build a position due ``due_in_days`` after ``now``."""
    return Position(
        position_id=position_id,
        due_date=now + timedelta(days=due_in_days),
        created_at=now - timedelta(days=1),
        owner="0xowner",
        risk_score=risk_score,
        payment_probability=payment_probability,
    )


def make_allocation(
    strategy: Strategy = Strategy.HOLD,
    held_days: float = 1,
    now: datetime = NOW,
) -> Allocation:
    """Build an allocation that started ``held_days`` before ``now``."""
    return Allocation(
        strategy=strategy,
        allocated_at=now - timedelta(days=held_days),
        principal=1_000_000,
    )


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation time."""
    return NOW


@pytest.fixture
def position_factory() -> Callable[..., Position]:
    return make_position


@pytest.fixture
def allocation_factory() -> Callable[..., Allocation]:
    return make_allocation


@pytest.fixture
def ledger() -> SimulatedLedger:
    """Simulated ledger with one strong, one average and one overdue position."""
    ledger = SimulatedLedger()
    ledger.add_position(
        make_position("strong", risk_score=85, payment_probability=92, due_in_days=75),
        make_allocation(Strategy.HOLD, held_days=10),
    )
    ledger.add_position(
        make_position("average", risk_score=65, payment_probability=80, due_in_days=40),
        make_allocation(Strategy.CONSERVATIVE),
    )
    ledger.add_position(
        make_position("overdue", risk_score=35, payment_probability=40, due_in_days=-5),
        make_allocation(Strategy.AGGRESSIVE),
    )
    return ledger


def fixed_clock(at: Optional[datetime] = None) -> Callable[[], datetime]:
    """Clock that always returns ``at`` (defaults to NOW)."""
    moment = at or NOW
    return lambda: moment


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock pinned to the fixed evaluation time."""
    return fixed_clock()
