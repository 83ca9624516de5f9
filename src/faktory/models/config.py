"""Configuration models for Faktory."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

REPLAY_CAPACITY = 50
"""Number of recent messages replayed to newly connected subscribers."""


class AgentConfig(BaseSettings):
    """Process-wide agent configuration.

    Loads from environment variables with the FAKTORY_ prefix. Immutable once
    constructed; invalid values raise ``ValidationError`` at startup.

    Attributes:
        tick_interval_ms: Milliseconds from the start of one tick to the next
        min_confidence: Minimum recommendation confidence required to act
        max_concurrent_analyses: Worker slots available to a tick
        auto_execute: Submit strategy changes instead of only recommending them
        call_timeout_seconds: Timeout applied to every ledger call
        staleness_seconds: Re-analyze positions last analyzed longer ago than this
        decision_history_size: Recent decisions kept for status queries
        subscriber_queue_size: Pending messages a subscriber may lag behind
        ws_host: Event stream bind host
        ws_port: Event stream bind port
        heartbeat_interval_seconds: WebSocket ping interval
    """

    tick_interval_ms: int = Field(default=30_000, ge=100, description="Tick interval (ms)")
    min_confidence: int = Field(default=70, ge=0, le=100, description="Min confidence to act (%)")
    max_concurrent_analyses: int = Field(default=5, ge=1, description="Concurrent analyses")
    auto_execute: bool = Field(default=True, description="Execute strategy changes")
    call_timeout_seconds: float = Field(default=10.0, gt=0, description="Ledger call timeout")
    staleness_seconds: int = Field(default=3600, ge=0, description="Re-analysis age (0 = always)")
    decision_history_size: int = Field(default=50, ge=1, description="Decisions kept in memory")
    subscriber_queue_size: int = Field(default=256, ge=1, description="Per-subscriber backlog")
    ws_host: str = Field(default="0.0.0.0", description="Event stream host")
    ws_port: int = Field(default=8080, ge=1, le=65535, description="Event stream port")
    heartbeat_interval_seconds: float = Field(default=30.0, gt=0, description="Ping interval")

    model_config = SettingsConfigDict(
        env_prefix="FAKTORY_",
        extra="ignore",
        frozen=True,
    )

    @property
    def tick_interval_seconds(self) -> float:
        return self.tick_interval_ms / 1000
