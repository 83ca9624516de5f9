"""Faktory CLI - Entry point for the faktory command."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from faktory import __version__
from faktory.cli.output import print_config, print_recommendation
from faktory.core.config import load_agent_config
from faktory.engine.policy import should_change_strategy
from faktory.engine.scoring import score_position
from faktory.ledger.simulated import SimulatedLedger
from faktory.models.config import AgentConfig
from faktory.models.position import Allocation, Position, Strategy
from faktory.orchestrator.engine import AgentEngine
from faktory.stream.server import EventStreamServer

app = typer.Typer(
    name="faktory",
    help="Faktory - Autonomous yield strategy agent for tokenized invoices",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold green]faktory[/bold green] version {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(  # noqa: ARG001
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Faktory - Autonomous yield strategy agent for tokenized invoices."""
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


def _setup_logging(log_file: Path) -> None:
    """Set up logging for the agent service."""
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("%(asctime)s | %(message)s", datefmt="%H:%M:%S"))
    root_logger.addHandler(console_handler)

    # Reduce noise
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


async def _serve(config: AgentConfig, ledger: SimulatedLedger) -> None:
    """Run the control loop and event stream until SIGINT/SIGTERM."""
    engine = AgentEngine(ledger, ledger, config)
    server = EventStreamServer(
        engine,
        host=config.ws_host,
        port=config.ws_port,
        heartbeat_seconds=config.heartbeat_interval_seconds,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    await server.start()
    await engine.start()
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down Faktory agent...")
        await engine.stop()
        await server.stop()


@app.command()
def run(
    positions: Path = typer.Option(
        ..., "--positions", "-p", exists=True, dir_okay=False, help="TOML file of simulated positions"
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", exists=True, dir_okay=False, help="TOML config file"
    ),
    interval_ms: Optional[int] = typer.Option(None, "--interval-ms", help="Tick interval in ms"),
    min_confidence: Optional[int] = typer.Option(None, "--min-confidence", help="Min confidence to act (%)"),
    max_concurrent: Optional[int] = typer.Option(None, "--max-concurrent", help="Concurrent analyses"),
    auto_execute: Optional[bool] = typer.Option(
        None, "--auto-execute/--no-auto-execute", help="Execute strategy changes"
    ),
    port: Optional[int] = typer.Option(None, "--port", help="Event stream port"),
    log_file: Path = typer.Option(
        Path("logs/faktory/agent.log"), "--log-file", help="Log file path"
    ),
) -> None:
    """Run the autonomous agent against a simulated ledger."""
    try:
        config = load_agent_config(
            config_path,
            tick_interval_ms=interval_ms,
            min_confidence=min_confidence,
            max_concurrent_analyses=max_concurrent,
            auto_execute=auto_execute,
            ws_port=port,
        )
    except ValidationError as e:
        console.print(f"[bold red]Invalid configuration:[/bold red]\n{escape(str(e))}")
        raise typer.Exit(1)

    ledger = SimulatedLedger.from_toml(positions)
    _setup_logging(log_file)

    console.print(Panel.fit(
        f"[bold]🏭 Faktory Agent[/bold]\n\n"
        f"Interval: {config.tick_interval_seconds:g}s\n"
        f"Min Confidence: {config.min_confidence}%\n"
        f"Workers: {config.max_concurrent_analyses}\n"
        f"Mode: {'[green]AUTO-EXECUTE[/green]' if config.auto_execute else '[yellow]RECOMMEND ONLY[/yellow]'}\n\n"
        f"Stream: ws://{config.ws_host}:{config.ws_port}\n"
        f"Log: {log_file}",
        title="Autonomous Agent",
    ))

    asyncio.run(_serve(config, ledger))
    console.print("[dim]Agent stopped.[/dim]")


@app.command()
def score(
    risk: int = typer.Option(..., "--risk", min=0, max=100, help="Risk score (0-100, higher is safer)"),
    payment: int = typer.Option(..., "--payment", min=0, max=100, help="Payment probability (%)"),
    days: int = typer.Option(..., "--days", help="Days until due (negative if overdue)"),
    strategy: Optional[str] = typer.Option(None, "--strategy", "-s", help="Current strategy, if deposited"),
    held_days: int = typer.Option(0, "--held-days", min=0, help="Days on the current strategy"),
    min_confidence: int = typer.Option(70, "--min-confidence", min=0, max=100),
) -> None:
    """Score a hypothetical position offline."""
    now = datetime.now(timezone.utc)
    position = Position(
        position_id="cli",
        due_date=now + timedelta(days=days),
        created_at=now,
        risk_score=risk,
        payment_probability=payment,
    )

    allocation = None
    if strategy is not None:
        try:
            current = Strategy.from_label(strategy)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
        allocation = Allocation(strategy=current, allocated_at=now - timedelta(days=held_days))

    recommendation = score_position(position, allocation, now)
    current_strategy = allocation.strategy if allocation else Strategy.HOLD
    should_act = should_change_strategy(
        current_strategy, recommendation.strategy, recommendation.confidence, min_confidence
    )
    print_recommendation(recommendation, current_strategy, should_act, console)


@app.command("config")
def show_config(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", exists=True, dir_okay=False, help="TOML config file"
    ),
) -> None:
    """Show the effective agent configuration."""
    try:
        config = load_agent_config(config_path)
    except ValidationError as e:
        console.print(f"[bold red]Invalid configuration:[/bold red]\n{escape(str(e))}")
        raise typer.Exit(1)
    print_config(config, console)


if __name__ == "__main__":
    app()
