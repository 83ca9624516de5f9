"""Tests for single-position analysis."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

from faktory.ledger import ExecutionReceipt, SimulatedLedger
from faktory.models.config import AgentConfig
from faktory.models.event import MessageType
from faktory.models.position import Position, PositionStatus, Strategy
from faktory.orchestrator.analyzer import PositionAnalyzer
from faktory.stream.broadcaster import EventBroadcaster


class _UnconfirmedExecutor:
    async def execute_strategy_change(self, position_id: str, strategy: Strategy) -> ExecutionReceipt:
        return ExecutionReceipt(tx_id="0xdeadbeefcafe", confirmed=False)


class _HangingLedger(SimulatedLedger):
    async def fetch_position(self, position_id: str):  # noqa: ANN201
        await asyncio.sleep(60)


class _StuckExecutorLedger(SimulatedLedger):
    async def execute_strategy_change(self, position_id: str, strategy: Strategy) -> ExecutionReceipt:
        await asyncio.sleep(60)
        raise AssertionError("unreachable")


class _MalformedLedger(SimulatedLedger):
    async def fetch_position(self, position_id: str):  # noqa: ANN201
        return Position.model_validate({"position_id": position_id, "risk_score": 500})


def _analyzer(
    ledger: SimulatedLedger,
    clock,
    executor: Optional[object] = "ledger",
    **config_overrides,
) -> tuple[PositionAnalyzer, EventBroadcaster]:
    broadcaster = EventBroadcaster()
    config = AgentConfig(**config_overrides)
    analyzer = PositionAnalyzer(
        ledger,
        broadcaster,
        config,
        executor=ledger if executor == "ledger" else executor,
        clock=clock,
    )
    return analyzer, broadcaster


def _kinds(broadcaster: EventBroadcaster) -> list[str]:
    """Event kinds (or wire types for non-event messages) in publish order."""
    return [m.payload.get("kind", m.type.value) for m in broadcaster.replay_buffer()]


class TestAnalyze:
    """Tests for the happy paths."""

    def test_executes_riskier_move_with_margin(self, ledger: SimulatedLedger, clock) -> None:
        """Hold -> Aggressive at 95% clears the 80% bar and executes."""
        analyzer, broadcaster = _analyzer(ledger, clock)
        result = asyncio.run(analyzer.analyze("strong"))

        assert result is not None
        assert result.current_strategy == Strategy.HOLD
        assert result.recommended_strategy == Strategy.AGGRESSIVE
        assert result.confidence == 95
        assert result.days_until_due == 75
        assert result.should_act

        assert ledger.executed == [("strong", Strategy.AGGRESSIVE)]
        assert _kinds(broadcaster) == [
            "thinking", "analysis", "analysis", "execution", "execution", "decision",
        ]
        decision = analyzer.decisions[-1]
        assert decision.executed
        assert decision.tx_id and decision.tx_id.startswith("0x")

    def test_derisks_overdue_position(self, ledger: SimulatedLedger, clock) -> None:
        """Aggressive -> Hold is a safer move and executes at min confidence."""
        analyzer, _ = _analyzer(ledger, clock)
        result = asyncio.run(analyzer.analyze("overdue"))
        assert result.recommended_strategy == Strategy.HOLD
        assert result.should_act
        assert ledger.executed == [("overdue", Strategy.HOLD)]

    def test_no_change_when_strategy_matches(self, ledger: SimulatedLedger, clock) -> None:
        analyzer, broadcaster = _analyzer(ledger, clock)
        result = asyncio.run(analyzer.analyze("average"))
        assert result.current_strategy == result.recommended_strategy == Strategy.CONSERVATIVE
        assert not result.should_act
        assert ledger.executed == []
        assert "execution" not in _kinds(broadcaster)
        assert analyzer.decisions[-1].executed is False

    def test_recommend_only_when_auto_execute_off(self, ledger: SimulatedLedger, clock) -> None:
        analyzer, _ = _analyzer(ledger, clock, auto_execute=False)
        result = asyncio.run(analyzer.analyze("strong"))
        assert result.should_act
        assert ledger.executed == []
        assert analyzer.decisions[-1].executed is False

    def test_recommend_only_without_executor(self, ledger: SimulatedLedger, clock) -> None:
        analyzer, _ = _analyzer(ledger, clock, executor=None)
        assert asyncio.run(analyzer.analyze("strong")).should_act
        assert ledger.executed == []

    def test_no_allocation_defaults_to_hold(self, ledger: SimulatedLedger, position_factory, clock) -> None:
        ledger.add_position(position_factory("fresh", risk_score=85, payment_probability=92, due_in_days=75))
        analyzer, _ = _analyzer(ledger, clock)
        result = asyncio.run(analyzer.analyze("fresh"))
        assert result.allocation is None
        assert result.current_strategy == Strategy.HOLD
        assert result.confidence == 85

    def test_decision_history_is_bounded(self, ledger: SimulatedLedger, clock) -> None:
        analyzer, _ = _analyzer(ledger, clock, decision_history_size=2)

        async def scenario() -> None:
            for pid in ("strong", "average", "overdue"):
                await analyzer.analyze(pid)

        asyncio.run(scenario())
        assert [d.position_id for d in analyzer.decisions] == ["average", "overdue"]


class TestFailures:
    """Tests for failure isolation."""

    def test_missing_position(self, ledger: SimulatedLedger, clock) -> None:
        analyzer, broadcaster = _analyzer(ledger, clock)
        assert asyncio.run(analyzer.analyze("ghost")) is None
        last = broadcaster.replay_buffer()[-1]
        assert last.type == MessageType.ERROR
        assert "not found" in last.payload["message"]
        assert last.payload["position_id"] == "ghost"

    def test_fetch_failure_becomes_error_event(self, ledger: SimulatedLedger, clock) -> None:
        ledger.failing_ids.add("strong")
        analyzer, broadcaster = _analyzer(ledger, clock)
        assert asyncio.run(analyzer.analyze("strong")) is None
        assert _kinds(broadcaster) == ["thinking", "error"]
        assert "rpc_error" in broadcaster.replay_buffer()[-1].payload["message"]
        assert len(analyzer.decisions) == 0

    def test_fetch_timeout_becomes_error_event(self, ledger: SimulatedLedger, clock) -> None:
        hanging = _HangingLedger()
        analyzer, broadcaster = _analyzer(hanging, clock, call_timeout_seconds=0.05)
        assert asyncio.run(analyzer.analyze("strong")) is None
        assert "timed out" in broadcaster.replay_buffer()[-1].payload["message"]

    def test_malformed_data_becomes_error_event(self, clock) -> None:
        analyzer, broadcaster = _analyzer(_MalformedLedger(), clock)
        assert asyncio.run(analyzer.analyze("bad")) is None
        last = broadcaster.replay_buffer()[-1]
        assert last.type == MessageType.ERROR
        assert "Malformed position data" in last.payload["message"]

    def test_rejected_execution_is_not_executed(self, ledger: SimulatedLedger, clock) -> None:
        ledger.rejecting_ids.add("strong")
        analyzer, broadcaster = _analyzer(ledger, clock)
        result = asyncio.run(analyzer.analyze("strong"))
        assert result is not None and result.should_act
        assert _kinds(broadcaster)[-2:] == ["error", "decision"]
        assert analyzer.decisions[-1].executed is False

    def test_unconfirmed_execution_is_not_executed(self, ledger: SimulatedLedger, clock) -> None:
        analyzer, broadcaster = _analyzer(ledger, clock, executor=_UnconfirmedExecutor())
        asyncio.run(analyzer.analyze("strong"))
        decision = analyzer.decisions[-1]
        assert decision.executed is False
        assert decision.tx_id == "0xdeadbeefcafe"
        assert "not confirmed" in broadcaster.replay_buffer()[-2].payload["message"]

    def test_execution_timeout_is_not_executed(self, position_factory, allocation_factory, clock) -> None:
        ledger = _StuckExecutorLedger()
        ledger.add_position(
            position_factory("strong", risk_score=85, payment_probability=92, due_in_days=75),
            allocation_factory(Strategy.HOLD, held_days=10),
        )
        analyzer, broadcaster = _analyzer(ledger, clock, call_timeout_seconds=0.05)
        result = asyncio.run(analyzer.analyze("strong"))

        assert result is not None and result.should_act
        assert _kinds(broadcaster)[-3:] == ["execution", "error", "decision"]
        assert "timed out" in broadcaster.replay_buffer()[-2].payload["message"]
        decision = analyzer.decisions[-1]
        assert decision.executed is False
        assert decision.tx_id is None

    def test_unscorable_position_becomes_error_event(self, ledger: SimulatedLedger, clock) -> None:
        """A snapshot that bypassed validation fails this position only."""
        ledger.add_position(Position.model_construct(
            position_id="naive",
            due_date=datetime(2026, 5, 1),
            created_at=datetime(2026, 3, 1),
            owner="",
            status=PositionStatus.ACTIVE,
            risk_score=80,
            payment_probability=80,
        ))
        analyzer, broadcaster = _analyzer(ledger, clock)
        assert asyncio.run(analyzer.analyze("naive")) is None
        last = broadcaster.replay_buffer()[-1]
        assert last.type == MessageType.ERROR
        assert last.payload["position_id"] == "naive"
        assert len(analyzer.decisions) == 0


class TestWithdrawnAllocation:
    def test_inactive_allocation_treated_as_hold(
        self, ledger: SimulatedLedger, position_factory, allocation_factory, clock
    ) -> None:
        withdrawn = allocation_factory(Strategy.AGGRESSIVE).model_copy(update={"active": False})
        ledger.add_position(
            position_factory("withdrawn", risk_score=85, payment_probability=92, due_in_days=75),
            withdrawn,
        )
        analyzer, _ = _analyzer(ledger, clock)
        result = asyncio.run(analyzer.analyze("withdrawn"))

        assert result.current_strategy == Strategy.HOLD
        assert result.recommended_strategy == Strategy.AGGRESSIVE
        assert result.confidence == 85
        assert result.should_act
        assert ledger.executed == [("withdrawn", Strategy.AGGRESSIVE)]
        assert asyncio.run(ledger.fetch_allocation("withdrawn")).active
