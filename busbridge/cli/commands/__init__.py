"""CLI subcommands for busbridge."""

from __future__ import annotations

from busbridge.config import BridgeSettings, configure_logging


def load_settings(*, sandbox: bool = False) -> BridgeSettings:
    """Load settings from the environment and install logging.

    ``sandbox`` switches on the synthetic-credential fallback for this
    invocation only.
    """
    settings = BridgeSettings()
    if sandbox:
        settings = settings.model_copy(update={"sandbox_credentials": True})
    configure_logging(settings)
    return settings
