"""Rule-based strategy scoring.

Maps a position's risk attributes to a recommended strategy, a confidence
and a human-readable rationale. Pure and deterministic: the same position,
allocation and clock always produce the same recommendation.

Scoring is additive. Each factor contributes points and a description,
in this order:

1. Risk score (debtor reliability)
2. Payment probability
3. Days until due
4. Current allocation (activation / de-risking nudges, holding advisory)

The final score is thresholded into a strategy and a clamped confidence.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Optional

from faktory.models.decision import Recommendation
from faktory.models.position import Allocation, Position, Strategy

SECONDS_PER_DAY = 86_400

AGGRESSIVE_THRESHOLD = 60
CONSERVATIVE_THRESHOLD = 30
HOLD_ADVISORY_DAYS = 7

# Closing statements keyed by Strategy ordinal
_CLOSING_STATEMENTS = (
    "Current conditions do not favor active yield strategies. "
    "Will continue monitoring for improved conditions.",
    "The moderate risk profile suggests a balanced approach with stable yields "
    "(3-4% APY) while maintaining capital protection.",
    "With {days} days until due and strong risk metrics, this position is "
    "well-suited for higher-yield opportunities (6-8% APY).",
)


def days_until_due(due_date: datetime, now: datetime) -> int:
    """Whole days until ``due_date``, floored (negative when overdue)."""
    return math.floor((due_date - now).total_seconds() / SECONDS_PER_DAY)


def _risk_factor(risk_score: int) -> tuple[int, str]:
    if risk_score >= 80:
        return 30, f"High risk score ({risk_score}/100) indicates reliable payer"
    if risk_score >= 60:
        return 15, f"Moderate risk score ({risk_score}/100)"
    if risk_score >= 40:
        return 5, f"Below average risk score ({risk_score}/100) suggests caution"
    return -10, f"Low risk score ({risk_score}/100) indicates high default risk"


def _payment_factor(probability: int) -> tuple[int, str]:
    if probability >= 90:
        return 25, f"Excellent payment probability ({probability}%)"
    if probability >= 75:
        return 15, f"Good payment probability ({probability}%)"
    if probability >= 50:
        return 5, f"Moderate payment probability ({probability}%)"
    return -15, f"Low payment probability ({probability}%) - significant risk"


def _duration_factor(days: int) -> tuple[int, str]:
    if days >= 60:
        return 20, f"Long duration ({days} days) allows for yield accumulation"
    if days >= 30:
        return 15, f"Moderate duration ({days} days) for yield"
    if days >= 14:
        return 5, f"Short duration ({days} days) limits yield potential"
    if days >= 0:
        return -5, f"Very short duration ({days} days) - minimal yield opportunity"
    return -30, f"Position is OVERDUE by {abs(days)} days - high risk"


def risk_contribution(risk_score: int) -> int:
    """Points contributed by the risk score alone."""
    return _risk_factor(risk_score)[0]


def select_strategy(score: int) -> tuple[Strategy, int]:
    """Threshold a final score into a strategy and its clamped confidence."""
    if score >= AGGRESSIVE_THRESHOLD:
        return Strategy.AGGRESSIVE, min(95, 70 + (score - AGGRESSIVE_THRESHOLD))
    if score >= CONSERVATIVE_THRESHOLD:
        return Strategy.CONSERVATIVE, min(90, 60 + (score - CONSERVATIVE_THRESHOLD))
    return Strategy.HOLD, min(85, 50 + abs(score))


def build_rationale(strategy: Strategy, confidence: int, factors: list[str], days: int) -> str:
    """Compose the rationale from the top three factors and a closing statement."""
    top_factors = ". ".join(factors[:3])
    closing = _CLOSING_STATEMENTS[strategy.value].format(days=days)
    return (
        f"Recommending {strategy.label.upper()} strategy with {confidence}% confidence. "
        f"{top_factors}. {closing}"
    )


def score_position(
    position: Position,
    allocation: Optional[Allocation],
    now: datetime,
) -> Recommendation:
    """
    Score a position and recommend a strategy.

    Args:
        position: Position snapshot
        allocation: Current allocation; ignored unless active
        now: Evaluation time (same timezone awareness as the position dates)

    Returns:
        Recommendation with strategy, confidence, rationale and factors
    """
    factors: list[str] = []
    score = 0

    days = days_until_due(position.due_date, now)
    for points, description in (
        _risk_factor(position.risk_score),
        _payment_factor(position.payment_probability),
        _duration_factor(days),
    ):
        score += points
        factors.append(description)

    # A withdrawn deposit counts as no allocation
    if allocation is not None and allocation.active:
        if allocation.strategy == Strategy.HOLD and score > 50:
            score += 10
            factors.append("Currently on Hold strategy but conditions favor yield optimization")
        elif allocation.strategy == Strategy.AGGRESSIVE and score < 30:
            score -= 10
            factors.append("Aggressive strategy may be too risky given current conditions")

        held_for = now - allocation.allocated_at
        if allocation.strategy == Strategy.HOLD and held_for > timedelta(days=HOLD_ADVISORY_DAYS):
            factors.append(
                f"Position has been on Hold for {held_for.days} days - consider activation"
            )

    strategy, confidence = select_strategy(score)

    return Recommendation(
        strategy=strategy,
        confidence=confidence,
        rationale=build_rationale(strategy, confidence, factors, days),
        factors=factors,
        score=score,
    )
