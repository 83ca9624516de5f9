"""Tests for the in-memory simulated ledger."""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

import pytest

from faktory.ledger import LedgerError, PositionSource, SimulatedLedger, StrategyExecutor
from faktory.models.position import PositionStatus, Strategy

POSITIONS_TOML = """
[[positions]]
id = "1001"
risk_score = 85
payment_probability = 92
due_in_days = 75

[positions.allocation]
strategy = "Hold"
held_days = 10
principal = 25000000000

[[positions]]
id = 1002
risk_score = 50
payment_probability = 50
due_in_days = 10
status = "paid"
"""


def _run(coro):
    return asyncio.run(coro)


class TestProtocolConformance:
    def test_satisfies_protocols(self) -> None:
        ledger = SimulatedLedger()
        assert isinstance(ledger, PositionSource)
        assert isinstance(ledger, StrategyExecutor)


class TestSimulatedLedger:
    """Tests for reads, staleness and execution."""

    def test_lists_non_terminal_positions(self, ledger: SimulatedLedger) -> None:
        assert _run(ledger.list_eligible_positions()) == ["strong", "average", "overdue"]

    def test_list_failure(self, ledger: SimulatedLedger) -> None:
        ledger.list_failure = "node down"
        with pytest.raises(LedgerError, match="node down"):
            _run(ledger.list_eligible_positions())

    def test_fetch_missing_position(self, ledger: SimulatedLedger) -> None:
        assert _run(ledger.fetch_position("nope")) is None
        assert _run(ledger.fetch_allocation("nope")) is None

    def test_needs_analysis_until_fetched(self, ledger: SimulatedLedger) -> None:
        """A position needs analysis until it is read, then again once stale."""
        assert _run(ledger.needs_analysis("strong", 3600)) is True
        _run(ledger.fetch_position("strong"))
        assert _run(ledger.needs_analysis("strong", 3600)) is False
        assert _run(ledger.needs_analysis("strong", 0)) is True

    def test_needs_analysis_fails_closed(self, ledger: SimulatedLedger) -> None:
        ledger.failing_ids.add("strong")
        assert _run(ledger.needs_analysis("strong", 3600)) is False

    def test_failing_reads_raise(self, ledger: SimulatedLedger) -> None:
        ledger.failing_ids.add("strong")
        with pytest.raises(LedgerError) as exc_info:
            _run(ledger.fetch_position("strong"))
        assert exc_info.value.error_code == "rpc_error"
        assert exc_info.value.ledger_name == "simulated"

    def test_execute_updates_allocation(self, ledger: SimulatedLedger) -> None:
        receipt = _run(ledger.execute_strategy_change("strong", Strategy.AGGRESSIVE))
        assert receipt.confirmed
        assert receipt.tx_id.startswith("0x")
        allocation = _run(ledger.fetch_allocation("strong"))
        assert allocation.strategy == Strategy.AGGRESSIVE
        assert allocation.principal == 1_000_000
        assert ledger.executed == [("strong", Strategy.AGGRESSIVE)]

    def test_execute_rejected(self, ledger: SimulatedLedger) -> None:
        ledger.rejecting_ids.add("strong")
        with pytest.raises(LedgerError, match="reverted"):
            _run(ledger.execute_strategy_change("strong", Strategy.AGGRESSIVE))
        assert ledger.executed == []


class TestFromToml:
    def test_load(self, now) -> None:
        with tempfile.NamedTemporaryFile(mode="w", suffix=".toml", delete=False) as f:
            f.write(POSITIONS_TOML)
            path = Path(f.name)
        try:
            ledger = SimulatedLedger.from_toml(path, now=now)
        finally:
            path.unlink()

        position = _run(ledger.fetch_position("1001"))
        assert position.risk_score == 85
        assert (position.due_date - now).days == 75

        allocation = _run(ledger.fetch_allocation("1001"))
        assert allocation.strategy == Strategy.HOLD
        assert allocation.principal == 25_000_000_000

        paid = _run(ledger.fetch_position("1002"))
        assert paid.status == PositionStatus.PAID
        assert _run(ledger.list_eligible_positions()) == ["1001"]
