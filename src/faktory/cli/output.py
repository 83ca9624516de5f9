"""Rich output formatting for CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from faktory.models.position import Strategy

if TYPE_CHECKING:
    from faktory.models.config import AgentConfig
    from faktory.models.decision import Recommendation

_STRATEGY_COLORS = ("yellow", "cyan", "magenta")


def _format_strategy(strategy: Strategy) -> str:
    """Format a strategy with its color and indicative APY."""
    color = _STRATEGY_COLORS[strategy.value]
    return f"[{color}]{strategy.label}[/{color}] ({strategy.apy_pct:.1f}% APY)"


def _confidence_color(confidence: int) -> str:
    if confidence >= 85:
        return "green"
    if confidence >= 70:
        return "yellow"
    return "red"


def print_recommendation(
    recommendation: Recommendation,
    current: Strategy,
    should_act: bool,
    console: Console,
) -> None:
    """Print a scored recommendation."""
    console.print()
    console.print(
        Panel(
            f"[bold cyan]🎯 Recommendation: {recommendation.strategy.label}[/bold cyan]",
            expand=False,
        )
    )

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Label", style="dim")
    table.add_column("Value")

    color = _confidence_color(recommendation.confidence)
    table.add_row("Score:", str(recommendation.score))
    table.add_row("Current:", _format_strategy(current))
    table.add_row("Recommended:", _format_strategy(recommendation.strategy))
    table.add_row("Confidence:", f"[{color}]{recommendation.confidence}%[/{color}]")
    table.add_row("Act:", "[green]yes[/green]" if should_act else "[dim]no[/dim]")
    console.print(table)
    console.print()

    console.print("[bold]📋 Factors[/bold]")
    console.print("─" * 40)
    for i, factor in enumerate(recommendation.factors, 1):
        console.print(f"  {i}. {factor}")
    console.print()

    console.print(Panel(recommendation.rationale, title="Rationale", expand=False))


def print_config(config: AgentConfig, console: Console) -> None:
    """Print the effective agent configuration."""
    table = Table(title="⚙️  Agent Configuration", show_header=True)
    table.add_column("Setting", style="dim")
    table.add_column("Value", justify="right")

    for name, value in config.model_dump().items():
        table.add_row(name, str(value))

    console.print(table)
