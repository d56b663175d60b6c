"""busbridge CLI: Typer-based command-line interface."""
