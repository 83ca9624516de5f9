"""Hysteresis gate for strategy changes."""

from __future__ import annotations

from faktory.models.position import Strategy

DEFAULT_MIN_CONFIDENCE = 70
RISK_MARGIN = 10
"""Extra confidence required to move to a riskier strategy."""


def should_change_strategy(
    current: Strategy,
    recommended: Strategy,
    confidence: int,
    min_confidence: int = DEFAULT_MIN_CONFIDENCE,
) -> bool:
    """
    Decide whether a recommendation should replace the current strategy.

    Moving to a safer tier only needs ``min_confidence``; moving to a riskier
    tier needs ``min_confidence + RISK_MARGIN``.

    Args:
        current: Strategy currently applied
        recommended: Strategy recommended by scoring
        confidence: Recommendation confidence (0-100)
        min_confidence: Minimum confidence to act at all

    Returns:
        True if the change should be made
    """
    if current == recommended:
        return False

    if confidence < min_confidence:
        return False

    if recommended.is_safer_than(current):
        return True

    return confidence >= min_confidence + RISK_MARGIN
