"""Control loop that drives periodic position analysis.

The engine runs in two states, ``stopped`` and ``running``. While running,
one loop task executes a tick every ``tick_interval_ms``:

1. List eligible positions from the ledger
2. Drop positions analyzed within the staleness window
3. Analyze the rest, at most ``max_concurrent_analyses`` at once

Ticks never overlap. The interval is measured from the start of one tick
to the start of the next; when a tick's batch outlasts the interval, the
next tick starts as soon as the batch drains.

Out-of-band requests (``request_analysis``) skip the staleness filter and
run on the next free worker slot. A position is never analyzed twice at
the same time, whichever path requested it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from faktory.ledger.protocols import PositionSource, StrategyExecutor
from faktory.models.config import AgentConfig
from faktory.models.decision import AnalysisResult, Decision
from faktory.models.event import SYSTEM_ID, AgentEvent, EventKind
from faktory.orchestrator.analyzer import PositionAnalyzer, _utcnow
from faktory.stream.broadcaster import EventBroadcaster

logger = logging.getLogger(__name__)


class AgentEngine:
    """
    Schedules analyses and owns the agent lifecycle.

    Example:
        engine = AgentEngine(ledger, ledger, AgentConfig(tick_interval_ms=15000))
        await engine.start()
        ...
        await engine.stop()
    """

    def __init__(
        self,
        source: PositionSource,
        executor: Optional[StrategyExecutor] = None,
        config: Optional[AgentConfig] = None,
        broadcaster: Optional[EventBroadcaster] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Initialize engine.

        Args:
            source: Ledger reader
            executor: Ledger writer (None runs in recommend-only mode)
            config: Agent configuration
            broadcaster: Event channel (created from config if omitted)
            clock: Source of the evaluation time
        """
        self.config = config or AgentConfig()
        self.source = source
        self.broadcaster = broadcaster or EventBroadcaster(
            subscriber_queue_size=self.config.subscriber_queue_size
        )
        self.analyzer = PositionAnalyzer(
            source,
            self.broadcaster,
            self.config,
            executor=executor,
            clock=clock,
        )

        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_analyses)
        self._in_flight: set[str] = set()
        self._active = 0
        self.peak_active = 0

        self._requests: asyncio.Queue[str] = asyncio.Queue()
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._request_task: Optional[asyncio.Task[None]] = None
        self._request_runs: set[asyncio.Task[Optional[AnalysisResult]]] = set()

        self.running = False
        self.tick_count = 0
        self.last_tick_at: Optional[datetime] = None
        self.last_results: list[AnalysisResult] = []

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start ticking. No-op if already running."""
        if self.running:
            return

        self.running = True
        logger.info(
            f"Agent starting (interval={self.config.tick_interval_ms}ms, "
            f"min_confidence={self.config.min_confidence}%, "
            f"workers={self.config.max_concurrent_analyses}, "
            f"auto_execute={self.config.auto_execute})"
        )
        if self.analyzer.executor is None:
            logger.warning("No executor configured - running in recommend-only mode")

        self._emit("Faktory agent is now active and monitoring positions...")
        self._loop_task = asyncio.create_task(self._run_loop(), name="faktory-control-loop")
        self._request_task = asyncio.create_task(self._process_requests(), name="faktory-requests")

    async def stop(self) -> None:
        """Cancel the active tick, pending requests and future ticks."""
        if not self.running:
            return

        self.running = False
        tasks = [t for t in (self._loop_task, self._request_task) if t is not None]
        tasks.extend(self._request_runs)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._loop_task = None
        self._request_task = None
        self._request_runs.clear()
        while not self._requests.empty():
            self._requests.get_nowait()

        self._emit("Faktory agent stopped")
        logger.info("Agent stopped")

    # ── Ticks ──────────────────────────────────────────────────────────

    async def _run_loop(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self.config.tick_interval_seconds
        while True:
            started = loop.time()
            try:
                await self.run_tick()
            except Exception as e:
                logger.exception(f"Unexpected error in analysis cycle: {e}")
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, interval - elapsed))

    async def run_tick(self) -> list[AnalysisResult]:
        """
        Execute one analysis cycle.

        Returns:
            Results of the analyses that completed this tick
        """
        self.tick_count += 1
        self.last_tick_at = datetime.now(timezone.utc)
        self._emit("Scanning for eligible positions...")

        try:
            position_ids = await asyncio.wait_for(
                self.source.list_eligible_positions(),
                timeout=self.config.call_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error("Listing eligible positions timed out, skipping tick")
            self._emit("Analysis cycle error: listing positions timed out", kind=EventKind.ERROR)
            return []
        except Exception as e:
            logger.error(f"Listing eligible positions failed, skipping tick: {e}")
            self._emit(f"Analysis cycle error: {e}", kind=EventKind.ERROR)
            return []

        # Preserve ledger order, drop duplicates
        position_ids = list(dict.fromkeys(position_ids))
        if self.config.staleness_seconds > 0:
            position_ids = await self._filter_stale(position_ids)

        if not position_ids:
            self._emit("No positions need analysis. Waiting for changes...")
            self.last_results = []
            return []

        self._emit(
            f"Found {len(position_ids)} position(s) to analyze. Beginning analysis...",
            data={"count": len(position_ids)},
        )

        outcomes = await asyncio.gather(*(self._run_slot(pid) for pid in position_ids))
        results = [r for r in outcomes if r is not None]
        self.last_results = results

        self._emit(
            f"Analysis cycle complete ({len(results)}/{len(position_ids)} analyzed). "
            f"Next scan in {self.config.tick_interval_seconds:g}s",
            data={"analyzed": len(results), "eligible": len(position_ids)},
        )
        return results

    async def _filter_stale(self, position_ids: list[str]) -> list[str]:
        """Keep positions whose last analysis is older than the staleness window."""
        flags = await asyncio.gather(*(self._needs_analysis(pid) for pid in position_ids))
        return [pid for pid, flag in zip(position_ids, flags) if flag]

    async def _needs_analysis(self, position_id: str) -> bool:
        # Fail closed: a broken staleness check never forces re-analysis
        try:
            return await asyncio.wait_for(
                self.source.needs_analysis(position_id, self.config.staleness_seconds),
                timeout=self.config.call_timeout_seconds,
            )
        except Exception as e:
            logger.debug(f"needs_analysis failed for {position_id}, skipping: {e!r}")
            return False

    async def _run_slot(self, position_id: str) -> Optional[AnalysisResult]:
        """Analyze a position on a worker slot unless it is already in flight."""
        if position_id in self._in_flight:
            logger.debug(f"Position {position_id} already in flight, skipping")
            return None

        self._in_flight.add(position_id)
        try:
            async with self._semaphore:
                self._active += 1
                self.peak_active = max(self.peak_active, self._active)
                try:
                    return await self.analyzer.analyze(position_id)
                except Exception as e:
                    logger.exception(f"Unexpected error analyzing {position_id}")
                    self.broadcaster.publish_event(
                        AgentEvent(
                            kind=EventKind.ERROR,
                            position_id=position_id,
                            message=f"Analysis failed: {e}",
                        )
                    )
                    return None
                finally:
                    self._active -= 1
        finally:
            self._in_flight.discard(position_id)

    # ── Out-of-band requests ───────────────────────────────────────────

    def request_analysis(self, position_id: str) -> bool:
        """
        Queue a position for analysis on the next free worker slot.

        Returns:
            True if queued, False if the engine is not running
        """
        if not self.running:
            logger.warning(f"Ignoring analysis request for {position_id}: agent not running")
            return False
        self._requests.put_nowait(position_id)
        logger.info(f"Analysis requested for position {position_id}")
        return True

    async def trigger_analysis(self, position_id: str) -> Optional[AnalysisResult]:
        """Analyze a position now and wait for the result."""
        return await self._run_slot(position_id)

    async def _process_requests(self) -> None:
        while True:
            position_id = await self._requests.get()
            task = asyncio.create_task(self._run_slot(position_id))
            self._request_runs.add(task)
            task.add_done_callback(self._request_runs.discard)

    # ── Status ─────────────────────────────────────────────────────────

    @property
    def active_analyses(self) -> int:
        """Analyses currently holding a worker slot."""
        return self._active

    @property
    def in_flight(self) -> frozenset[str]:
        """Positions queued for or holding a worker slot."""
        return frozenset(self._in_flight)

    def recent_decisions(self, limit: Optional[int] = None) -> list[Decision]:
        """Most recent decisions, newest first."""
        decisions = list(reversed(self.analyzer.decisions))
        return decisions[:limit] if limit is not None else decisions

    def decision_stats(self) -> dict[str, Any]:
        """Summary of the decisions held in memory."""
        decisions = self.analyzer.decisions
        distribution = Counter(d.recommended_strategy.label for d in decisions)
        return {
            "total": len(decisions),
            "executed": sum(1 for d in decisions if d.executed),
            "strategy_distribution": dict(distribution),
        }

    def status(self) -> dict[str, Any]:
        """JSON-serializable snapshot of the engine state."""
        return {
            "running": self.running,
            "connected_clients": self.broadcaster.subscriber_count,
            "config": self.config.model_dump(mode="json"),
            "tick_count": self.tick_count,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "in_flight": sorted(self._in_flight),
            "last_tick_results": len(self.last_results),
            "last_tick_changes": sum(1 for r in self.last_results if r.is_change),
            "events_published": self.broadcaster.published_count,
            "subscribers_dropped": self.broadcaster.dropped_count,
            "decisions": self.decision_stats(),
        }

    def _emit(
        self,
        message: str,
        kind: EventKind = EventKind.THINKING,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        self.broadcaster.publish_event(
            AgentEvent(kind=kind, position_id=SYSTEM_ID, message=message, data=data)
        )
