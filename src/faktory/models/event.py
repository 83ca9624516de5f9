"""Event models streamed to subscribers."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

SYSTEM_ID = "system"
"""Position identifier used for loop-level events."""


class EventKind(str, Enum):
    """Stage of the agent's reasoning an event belongs to."""

    THINKING = "thinking"
    ANALYSIS = "analysis"
    DECISION = "decision"
    EXECUTION = "execution"
    ERROR = "error"

    @property
    def wire_type(self) -> MessageType:
        """Tag this event travels under on the subscriber stream."""
        if self in (EventKind.THINKING, EventKind.ANALYSIS):
            return MessageType.THOUGHT
        return MessageType(self.value)


class MessageType(str, Enum):
    """Tag of a message on the subscriber stream."""

    THOUGHT = "thought"
    DECISION = "decision"
    EXECUTION = "execution"
    ERROR = "error"
    STATUS = "status"


class AgentEvent(BaseModel):
    """One step of the agent's reasoning, scoped to a position."""

    kind: EventKind
    position_id: str = SYSTEM_ID
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Optional[dict[str, Any]] = None


class WireMessage(BaseModel):
    """Tagged ``{type, payload}`` unit delivered to subscribers."""

    type: MessageType
    payload: dict[str, Any]

    def to_json(self) -> str:
        return self.model_dump_json()
