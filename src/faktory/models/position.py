"""Position and allocation snapshots read from the ledger."""

from __future__ import annotations

from enum import IntEnum

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

# Indexed by Strategy ordinal
_STRATEGY_LABELS = ("Hold", "Conservative", "Aggressive")
_STRATEGY_APY_BPS = (0, 350, 700)


class Strategy(IntEnum):
    """
    Yield strategy applied to a deposited position.

    The ordinal is the risk tier: a lower value is always safer.
    """

    HOLD = 0
    CONSERVATIVE = 1
    AGGRESSIVE = 2

    @property
    def label(self) -> str:
        """Human-readable strategy name."""
        return _STRATEGY_LABELS[self.value]

    @property
    def apy_bps(self) -> int:
        """Indicative APY in basis points (100 = 1%)."""
        return _STRATEGY_APY_BPS[self.value]

    @property
    def apy_pct(self) -> float:
        """Indicative APY as a percentage."""
        return self.apy_bps / 100

    def is_safer_than(self, other: Strategy) -> bool:
        """Check whether this strategy sits on a lower risk tier."""
        return self.value < other.value

    @classmethod
    def from_label(cls, label: str) -> Strategy:
        """Parse a strategy from its label, case-insensitively."""
        normalized = label.strip().lower()
        for strategy in cls:
            if strategy.label.lower() == normalized:
                return strategy
        raise ValueError(f"Unknown strategy: {label}")


class PositionStatus(IntEnum):
    """Lifecycle status of a tokenized invoice."""

    ACTIVE = 0
    IN_YIELD = 1
    PAID = 2
    DEFAULTED = 3
    CANCELLED = 4


class Position(BaseModel):
    """
    Read-only snapshot of a monitored position.

    Produced by the ledger on every fetch and superseded on the next tick.

    Attributes:
        position_id: Ledger identifier (token id)
        due_date: When the underlying invoice is due
        created_at: When the position was minted
        owner: Issuer / owner address
        status: Lifecycle status
        risk_score: Debtor reliability, 0-100 (higher is safer)
        payment_probability: Likelihood of on-time payment, 0-100
    """

    position_id: str
    due_date: AwareDatetime
    created_at: AwareDatetime
    owner: str = ""
    status: PositionStatus = PositionStatus.ACTIVE
    risk_score: int = Field(ge=0, le=100)
    payment_probability: int = Field(ge=0, le=100)

    model_config = ConfigDict(frozen=True)


class Allocation(BaseModel):
    """
    Yield strategy currently applied to a deposited position.

    Amounts are opaque integers in the ledger's smallest unit.
    """

    strategy: Strategy = Strategy.HOLD
    allocated_at: AwareDatetime
    principal: int = Field(default=0, ge=0)
    accrued_yield: int = Field(default=0, ge=0)
    active: bool = True

    model_config = ConfigDict(frozen=True)
