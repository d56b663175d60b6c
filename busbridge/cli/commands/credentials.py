"""``busbridge credentials``: fetch and inspect one partition's credentials."""

from __future__ import annotations

from datetime import datetime, timezone

import typer
from rich.console import Console
from rich.table import Table

from busbridge.bridge.exchange import CredentialExchangeError
from busbridge.cli.commands import load_settings
from busbridge.core.orchestrator import DispatchOrchestrator
from busbridge.core.production_guard import ProductionConfigError

console = Console()


def _mask(value: str) -> str:
    return f"{value[:4]}{'*' * 8}" if len(value) > 4 else "*" * 8


def credentials_cmd(
    partition: str = typer.Argument(..., help="Credential partition, e.g. HZMS-007-kafka-session-aws1."),
    sandbox: bool = typer.Option(
        False, "--sandbox", help="Fall back to synthetic credentials (never in production)."
    ),
) -> None:
    """Obtain credentials for PARTITION (from cache or a fresh exchange)."""
    settings = load_settings(sandbox=sandbox)
    try:
        manager = DispatchOrchestrator.from_settings(settings).credentials
    except ProductionConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2)

    if partition not in manager.partitions:
        console.print(
            f"[red]Unknown partition {partition!r}.[/red] "
            f"Configured: {', '.join(manager.partitions) or 'none'}"
        )
        raise typer.Exit(code=2)

    before = manager.state(partition)
    try:
        credentials = manager.get_credentials(partition)
    except CredentialExchangeError as exc:
        console.print(f"[red]Credential exchange failed:[/red] {exc}")
        raise typer.Exit(code=1)

    remaining = credentials.remaining(datetime.now(timezone.utc))
    table = Table(title=f"Credentials for {partition}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("State before call", before.value)
    table.add_row("State now", manager.state(partition).value)
    table.add_row("Access key", _mask(credentials.access_key_id))
    table.add_row("Session token", "present" if credentials.session_token else "none")
    table.add_row("Region", credentials.region)
    table.add_row("Expires at", credentials.expires_at.isoformat())
    table.add_row("Remaining", f"{int(remaining.total_seconds())}s")
    table.add_row(
        "Sandbox",
        "[yellow]Yes[/yellow]" if credentials.sandbox else "[green]No[/green]",
    )
    console.print(table)
