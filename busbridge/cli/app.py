"""Main Typer application: imports and registers all CLI commands.

Entry point: ``busbridge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from busbridge.cli.commands.check_config import check_config_cmd
from busbridge.cli.commands.credentials import credentials_cmd
from busbridge.cli.commands.replay import replay_cmd
from busbridge.cli.commands.sign import sign_cmd

app = typer.Typer(
    name="busbridge",
    help="busbridge: stream to EventBridge bridge with SigV4 signing.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="replay", help="Replay JSON-lines messages through the bridge.")(replay_cmd)
app.command(name="sign", help="Show every stage of a SigV4 signature.")(sign_cmd)
app.command(name="credentials", help="Fetch and inspect a partition's credentials.")(credentials_cmd)
app.command(name="check-config", help="Show settings and production readiness.")(check_config_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
