"""Pure decision logic: strategy scoring and the change policy."""

from faktory.engine.policy import RISK_MARGIN, should_change_strategy
from faktory.engine.scoring import days_until_due, risk_contribution, score_position

__all__ = [
    "score_position",
    "days_until_due",
    "risk_contribution",
    "should_change_strategy",
    "RISK_MARGIN",
]
