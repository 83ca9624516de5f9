"""Scoring outputs: recommendations, analysis results and decisions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from faktory.models.position import Allocation, Position, Strategy


class Recommendation(BaseModel):
    """
    Output of the scoring engine for one position.

    Created fresh on every analysis and never persisted.
    """

    strategy: Strategy
    confidence: int = Field(ge=0, le=100)
    rationale: str
    factors: list[str] = Field(default_factory=list)
    score: int = 0


class AnalysisResult(BaseModel):
    """Outcome of analyzing a single position during one tick."""

    position: Position
    allocation: Optional[Allocation] = None
    current_strategy: Strategy
    recommended_strategy: Strategy
    confidence: int = Field(ge=0, le=100)
    days_until_due: int
    should_act: bool
    rationale: str = ""

    @property
    def position_id(self) -> str:
        return self.position.position_id

    @property
    def is_change(self) -> bool:
        return self.current_strategy != self.recommended_strategy


class Decision(BaseModel):
    """
    A recorded strategy decision.

    Attributes:
        position_id: Position the decision applies to
        recommended_strategy: Strategy the agent settled on
        rationale: Human-readable reasoning
        confidence: Confidence 0-100
        timestamp: When the decision was made
        executed: True only when the executor accepted and confirmed the change
        tx_id: Transaction identifier returned by the executor, if any
    """

    position_id: str
    recommended_strategy: Strategy
    rationale: str
    confidence: int = Field(ge=0, le=100)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    executed: bool = False
    tx_id: Optional[str] = None
