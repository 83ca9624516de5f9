"""Single-position analysis: the unit of concurrent work."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

from pydantic import ValidationError

from faktory.engine.policy import should_change_strategy
from faktory.engine.scoring import days_until_due, score_position
from faktory.ledger.protocols import PositionSource, StrategyExecutor
from faktory.models.config import AgentConfig
from faktory.models.decision import AnalysisResult, Decision
from faktory.models.event import AgentEvent, EventKind
from faktory.models.position import Strategy
from faktory.stream.broadcaster import EventBroadcaster

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PositionAnalyzer:
    """
    Analyzes one position end to end.

    For a position id the analyzer:
    1. Fetches the position and its allocation from the ledger
    2. Scores the position
    3. Applies the change policy against the current strategy
    4. Executes the change when allowed and auto-execute is on
    5. Records and broadcasts the resulting decision

    Every stage is reported to the broadcaster. Ledger failures, timeouts
    and malformed data end the analysis with an ``error`` event; nothing
    but cancellation escapes ``analyze``.
    """

    def __init__(
        self,
        source: PositionSource,
        broadcaster: EventBroadcaster,
        config: AgentConfig,
        executor: Optional[StrategyExecutor] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Initialize analyzer.

        Args:
            source: Ledger reader
            broadcaster: Event channel for reasoning updates
            config: Agent configuration (thresholds, timeouts)
            executor: Ledger writer; without one the agent only recommends
            clock: Source of the evaluation time
        """
        self.source = source
        self.executor = executor
        self.broadcaster = broadcaster
        self.config = config
        self.clock = clock
        self.decisions: deque[Decision] = deque(maxlen=config.decision_history_size)

    async def analyze(self, position_id: str) -> Optional[AnalysisResult]:
        """
        Analyze a position and act on the recommendation if warranted.

        Args:
            position_id: Ledger identifier of the position

        Returns:
            AnalysisResult, or None if the position was skipped
        """
        self._emit(
            EventKind.THINKING,
            position_id,
            f"Analyzing position #{position_id[:8]}...",
            {"step": 1, "total": 4},
        )

        try:
            position, allocation = await self._fetch(position_id)
        except ValidationError as e:
            logger.warning(f"Malformed ledger data for {position_id}: {e}")
            self._emit(EventKind.ERROR, position_id, f"Malformed position data: {e.error_count()} invalid field(s)")
            return None
        except asyncio.TimeoutError:
            self._emit(
                EventKind.ERROR,
                position_id,
                f"Ledger read timed out after {self.config.call_timeout_seconds:g}s",
            )
            return None
        except Exception as e:
            self._emit(EventKind.ERROR, position_id, f"Analysis failed: {e}")
            return None

        if position is None:
            self._emit(EventKind.ERROR, position_id, f"Position #{position_id} not found")
            return None

        now = self.clock()
        try:
            recommendation = score_position(position, allocation, now)
            days = days_until_due(position.due_date, now)
        except Exception as e:
            logger.exception(f"Scoring failed for {position_id}")
            self._emit(EventKind.ERROR, position_id, f"Analysis failed: {e}")
            return None

        # A withdrawn deposit counts as no allocation
        live = allocation is not None and allocation.active
        current = allocation.strategy if live else Strategy.HOLD

        self._emit(
            EventKind.ANALYSIS,
            position_id,
            f"Risk Score: {position.risk_score}/100 | "
            f"Payment Probability: {position.payment_probability}%",
            {
                "riskScore": position.risk_score,
                "paymentProbability": position.payment_probability,
                "daysUntilDue": days,
                "score": recommendation.score,
            },
        )

        should_act = should_change_strategy(
            current,
            recommendation.strategy,
            recommendation.confidence,
            self.config.min_confidence,
        )

        self._emit(
            EventKind.ANALYSIS,
            position_id,
            f"Evaluating: {current.label} → {recommendation.strategy.label} "
            f"({recommendation.confidence}% confidence)",
            {
                "currentStrategy": current.label,
                "recommendedStrategy": recommendation.strategy.label,
                "confidence": recommendation.confidence,
                "shouldAct": should_act,
                "factors": recommendation.factors,
            },
        )

        executed = False
        tx_id: Optional[str] = None
        if should_act and self.config.auto_execute and self.executor is not None:
            executed, tx_id = await self._execute(position_id, recommendation.strategy)

        decision = Decision(
            position_id=position_id,
            recommended_strategy=recommendation.strategy,
            rationale=recommendation.rationale,
            confidence=recommendation.confidence,
            timestamp=now,
            executed=executed,
            tx_id=tx_id,
        )
        self.decisions.append(decision)
        logger.info(f"🎯 [{position_id}] {recommendation.rationale}")
        self.broadcaster.publish_decision(decision)

        return AnalysisResult(
            position=position,
            allocation=allocation,
            current_strategy=current,
            recommended_strategy=recommendation.strategy,
            confidence=recommendation.confidence,
            days_until_due=days,
            should_act=should_act,
            rationale=recommendation.rationale,
        )

    async def _fetch(self, position_id: str) -> tuple[Any, Any]:
        """Fetch position and allocation concurrently, raising the first failure."""
        position, allocation = await asyncio.gather(
            self._call(self.source.fetch_position(position_id)),
            self._call(self.source.fetch_allocation(position_id)),
            return_exceptions=True,
        )
        for outcome in (position, allocation):
            if isinstance(outcome, BaseException):
                raise outcome
        return position, allocation

    async def _execute(self, position_id: str, strategy: Strategy) -> tuple[bool, Optional[str]]:
        """
        Submit a strategy change.

        Returns:
            (executed, tx_id): executed is True only for a confirmed change
        """
        assert self.executor is not None
        self._emit(
            EventKind.EXECUTION,
            position_id,
            f"Executing: change to {strategy.label} strategy...",
        )

        try:
            receipt = await self._call(self.executor.execute_strategy_change(position_id, strategy))
        except asyncio.TimeoutError:
            self._emit(
                EventKind.ERROR,
                position_id,
                "Strategy update timed out - will retry next cycle",
            )
            return False, None
        except Exception as e:
            self._emit(
                EventKind.ERROR,
                position_id,
                f"Strategy update failed: {e} - will retry next cycle",
            )
            return False, None

        if not receipt.confirmed:
            self._emit(
                EventKind.ERROR,
                position_id,
                f"Strategy update submitted but not confirmed (tx: {receipt.tx_id[:10]}...)",
                {"success": False, "txId": receipt.tx_id},
            )
            return False, receipt.tx_id

        self._emit(
            EventKind.EXECUTION,
            position_id,
            f"Strategy updated to {strategy.label} (tx: {receipt.tx_id[:10]}...)",
            {"success": True, "txId": receipt.tx_id},
        )
        return True, receipt.tx_id

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.config.call_timeout_seconds)

    def _emit(
        self,
        kind: EventKind,
        position_id: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        self.broadcaster.publish_event(
            AgentEvent(kind=kind, position_id=position_id, message=message, data=data)
        )
