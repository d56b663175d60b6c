"""Production configuration guard: enforces hard constraints in production.

The guard runs once when the orchestrator is built from settings and
fails hard (raises ``ProductionConfigError``) if any constraint is
violated.  Other code should not scatter ``if is_production`` checks.
"""

from __future__ import annotations

import logging

from busbridge.config import BridgeSettings

logger = logging.getLogger(__name__)


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated.

    The bridge cannot safely start in production with the current
    configuration.  It must not be caught and ignored; the process
    should exit.
    """


def collect_violations(settings: BridgeSettings) -> list[str]:
    """Return every production constraint *settings* violates."""
    violations: list[str] = []

    # 1. Debug must be off
    if settings.debug:
        violations.append(
            "debug=True is not allowed in production. Set BUSBRIDGE_DEBUG=false."
        )

    # 2. Synthetic credentials are never allowed
    if settings.sandbox_credentials:
        violations.append(
            "sandbox_credentials=True would sign requests with synthetic "
            "credentials. Set BUSBRIDGE_SANDBOX_CREDENTIALS=false."
        )

    # 3. The exchange needs its client certificate
    if settings.certificate_path is None:
        violations.append(
            "certificate_path is required for the credential exchange. "
            "Set BUSBRIDGE_CERTIFICATE_PATH."
        )
    if settings.private_key_path is None:
        violations.append(
            "private_key_path is required for the credential exchange. "
            "Set BUSBRIDGE_PRIVATE_KEY_PATH."
        )

    # 4. Every destination needs a complete exchange identity
    profiles = settings.exchange_profile_map()
    for destination in settings.destination_configs():
        profile = profiles.get(destination.credential_partition)
        if profile is None:
            violations.append(
                f"Destination '{destination.id}' uses partition "
                f"'{destination.credential_partition}' with no exchange profile."
            )
            continue
        for field in ("profile_arn", "role_arn", "trust_anchor_arn"):
            if not getattr(profile, field):
                violations.append(
                    f"Exchange profile '{profile.partition}' has an empty {field}."
                )

    # 5. At least one destination must gate acknowledgment
    if not any(d.is_required for d in settings.destination_configs()):
        violations.append(
            "No destination is marked is_required; every delivery failure "
            "would be acknowledged and lost."
        )

    return violations


def enforce_production_constraints(settings: BridgeSettings) -> None:
    """Validate all production-critical configuration constraints.

    Outside production this is a no-op.

    Raises
    ------
    ProductionConfigError
        If any production constraint is violated.  All violations are
        reported at once.
    """
    if not settings.is_production:
        return  # Guard only applies in production

    violations = collect_violations(settings)
    if violations:
        msg = (
            "Production configuration guard failed.\n"
            + "\n".join(f"  - {v}" for v in violations)
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")
