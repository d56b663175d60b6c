"""``busbridge check-config``: show the active settings and production readiness."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from busbridge.cli.commands import load_settings
from busbridge.core.production_guard import collect_violations

console = Console()


def check_config_cmd() -> None:
    """Print settings and destinations, then run the production guard checks.

    Exit code 2 when running in production with violations.
    """
    settings = load_settings()

    summary = Table(title="Settings", show_header=False)
    summary.add_column("Key", style="cyan")
    summary.add_column("Value")
    summary.add_row("environment", settings.environment)
    summary.add_row("discriminator", f"{settings.discriminator_field} == {settings.expected_discriminator!r}")
    summary.add_row("routing", f"{settings.routing_field} (default {settings.default_route})")
    summary.add_row("exchange host", settings.exchange_host)
    summary.add_row("safety margin", f"{settings.credential_safety_margin_seconds}s")
    summary.add_row("cache", str(settings.credential_cache_path or "in-memory"))
    summary.add_row("sandbox credentials", str(settings.sandbox_credentials))
    console.print(summary)

    destinations = Table(title="Destinations")
    destinations.add_column("ID", style="cyan")
    destinations.add_column("Route")
    destinations.add_column("Endpoint")
    destinations.add_column("Event bus")
    destinations.add_column("Partition")
    destinations.add_column("Required", justify="center")
    for d in settings.destination_configs():
        destinations.add_row(
            d.id,
            d.routing_value,
            d.url,
            d.event_bus_name,
            d.credential_partition,
            "[green]Yes[/green]" if d.is_required else "[yellow]No[/yellow]",
        )
    console.print(destinations)

    violations = collect_violations(settings)
    if not violations:
        console.print(Panel("[green]Production guard: all checks pass.[/green]", border_style="green"))
        return

    body = "\n".join(f"- {v}" for v in violations)
    if settings.is_production:
        console.print(Panel(body, title="[red]Production guard failed[/red]", border_style="red"))
        raise typer.Exit(code=2)
    console.print(
        Panel(body, title="[yellow]Would fail in production[/yellow]", border_style="yellow")
    )
