"""``busbridge replay``: run recorded stream messages through the bridge.

Reads JSON-lines records (``payload``, ``topic``, ``partition``,
``offset``), dispatches each through a fully wired orchestrator and
prints one row per message.  Exit code 1 when any acknowledgment was
withheld, 2 when the production guard refuses the configuration.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from busbridge.cli.commands import load_settings
from busbridge.consumer import MessageListener, load_messages
from busbridge.core.orchestrator import DispatchOrchestrator
from busbridge.core.production_guard import ProductionConfigError
from busbridge.models.outcomes import DispatchStatus

console = Console()

_STATUS_STYLE = {
    DispatchStatus.DELIVERED: "[green]delivered[/green]",
    DispatchStatus.SKIPPED: "[yellow]skipped[/yellow]",
    DispatchStatus.FAILED: "[red]failed[/red]",
}


def replay_cmd(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON-lines message file."),
    sandbox: bool = typer.Option(
        False,
        "--sandbox",
        help="Fall back to synthetic credentials when the exchange fails (never in production).",
    ),
) -> None:
    """Replay recorded messages through validation, routing and delivery."""
    settings = load_settings(sandbox=sandbox)
    try:
        orchestrator = DispatchOrchestrator.from_settings(settings)
    except ProductionConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2)

    try:
        report = MessageListener(orchestrator).run(load_messages(file))
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2)

    table = Table(title=f"Replay of {file.name}")
    table.add_column("Message", style="cyan")
    table.add_column("Status")
    table.add_column("Operation ID")
    table.add_column("Destinations")
    table.add_column("Ack", justify="center")

    for message, result in report.results:
        if result.outcomes:
            destinations = ", ".join(
                f"{o.destination_id}:{'ok' if o.succeeded else 'FAIL'}"
                for o in result.outcomes
            )
        else:
            destinations = f"[dim]{result.skip_reason or '-'}[/dim]"
        table.add_row(
            message.coordinates,
            _STATUS_STYLE[result.status],
            result.operation_id or "-",
            destinations,
            "[green]Yes[/green]" if result.acknowledged else "[red]No[/red]",
        )
    for message in report.deferred:
        table.add_row(message.coordinates, "[dim]deferred[/dim]", "-", "-", "[red]No[/red]")

    console.print(table)
    console.print(
        f"[bold]{report.acknowledged}[/bold] acknowledged, "
        f"[bold]{report.withheld}[/bold] withheld, "
        f"[bold]{len(report.deferred)}[/bold] deferred"
    )
    if report.withheld:
        raise typer.Exit(code=1)
