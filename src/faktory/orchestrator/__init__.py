"""Orchestration of the autonomous decision loop."""

from faktory.orchestrator.analyzer import PositionAnalyzer
from faktory.orchestrator.engine import AgentEngine

__all__ = [
    "AgentEngine",
    "PositionAnalyzer",
]
