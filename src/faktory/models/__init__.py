"""Pydantic models for data representation."""

from faktory.models.config import REPLAY_CAPACITY, AgentConfig
from faktory.models.decision import AnalysisResult, Decision, Recommendation
from faktory.models.event import (
    SYSTEM_ID,
    AgentEvent,
    EventKind,
    MessageType,
    WireMessage,
)
from faktory.models.position import Allocation, Position, PositionStatus, Strategy

__all__ = [
    # Ledger snapshots
    "Strategy",
    "PositionStatus",
    "Position",
    "Allocation",
    # Scoring outputs
    "Recommendation",
    "AnalysisResult",
    "Decision",
    # Stream
    "SYSTEM_ID",
    "EventKind",
    "MessageType",
    "AgentEvent",
    "WireMessage",
    # Config
    "AgentConfig",
    "REPLAY_CAPACITY",
]
