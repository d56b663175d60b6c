"""Runtime configuration: env-driven via pydantic-settings.

Reads from a ``.env`` file and ``BUSBRIDGE_*`` environment variables.
List fields (``destinations``, ``exchange_profiles``,
``operation_id_fields``) accept JSON.

Components never read settings from a global: the CLI loads one
``BridgeSettings`` and the orchestrator factory hands immutable pieces
of it to each collaborator.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from busbridge.models.credentials import ExchangeProfile
from busbridge.models.destinations import DestinationConfig

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _default_destinations() -> list[DestinationConfig]:
    return [
        DestinationConfig(
            id="aws1",
            routing_value="aws1",
            event_bus_name="dev-us-mb-sss",
            credential_partition="HZMS-007-kafka-session-aws1",
            is_required=True,
        ),
        DestinationConfig(
            id="aws2",
            routing_value="aws2",
            event_bus_name="dev-us-sss-mb",
            credential_partition="HZMS-007-kafka-session-aws2",
            is_required=True,
        ),
    ]


def _default_profiles() -> list[ExchangeProfile]:
    return [
        ExchangeProfile(partition="HZMS-007-kafka-session-aws1"),
        ExchangeProfile(partition="HZMS-007-kafka-session-aws2"),
    ]


class BridgeSettings(BaseSettings):
    """Bridge configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export BUSBRIDGE_ENVIRONMENT=staging
        export BUSBRIDGE_EXPECTED_DISCRIMINATOR=13
        export BUSBRIDGE_CERTIFICATE_PATH=/etc/busbridge/client.pem

    Or via .env file::

        BUSBRIDGE_ENVIRONMENT=production
        BUSBRIDGE_CREDENTIAL_CACHE_PATH=/var/lib/busbridge/credentials.db
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="BUSBRIDGE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Message validation and routing
    discriminator_field: str = "G6181_CODESTA2"
    expected_discriminator: str = "13"
    routing_field: str = "awsDestiny"
    default_route: str = "aws1"

    # Business identifier: fields + literal + suffix fields
    operation_id_fields: list[str] = ["G6181_CCENCONT", "G6181_NUMORD", "G6181_JNUMDET"]
    operation_id_literal: str = "-01001-00000-"
    operation_id_suffix_fields: list[str] = ["G6181_FECHAEJE"]

    # Outbound event
    event_source: str = "openbank.payments"
    event_detail_type: str = "Transfer_KO"

    # Credential lifecycle
    credential_safety_margin_seconds: int = 300
    credential_cache_ttl_seconds: int = 3500
    credential_cache_path: Path | None = None  # None = in-memory cache
    credential_wait_seconds: float = 45.0

    # Credential exchange (mutual TLS)
    exchange_host: str = "rolesanywhere.us-east-1.amazonaws.com"
    exchange_timeout_seconds: float = 30.0
    exchange_max_attempts: int = 2
    certificate_path: Path | None = None
    private_key_path: Path | None = None
    sandbox_credentials: bool = False  # synthetic credentials; never in production

    # Delivery
    delivery_timeout_seconds: float = 30.0
    delivery_max_attempts: int = 2
    retry_backoff_seconds: float = 6.0
    retry_backoff_multiplier: float = 1.0  # 1.0 = fixed backoff
    parallel_delivery: bool = True

    # Static destinations and their exchange identities
    destinations: list[DestinationConfig] = _default_destinations()
    exchange_profiles: list[ExchangeProfile] = _default_profiles()

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

    @property
    def safety_margin(self) -> timedelta:
        return timedelta(seconds=self.credential_safety_margin_seconds)

    def destination_configs(self) -> tuple[DestinationConfig, ...]:
        """Return the immutable destination set."""
        return tuple(self.destinations)

    def exchange_profile_map(self) -> dict[str, ExchangeProfile]:
        """Return exchange profiles keyed by credential partition."""
        return {p.partition: p for p in self.exchange_profiles}


def configure_logging(settings: BridgeSettings) -> None:
    """Install a root log handler at the configured level."""
    level = logging.DEBUG if settings.debug else settings.log_level.upper()
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    logging.getLogger().setLevel(level)
