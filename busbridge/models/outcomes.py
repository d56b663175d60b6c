"""Dispatch outcome models: per-destination results and the ack decision.

Outcomes live only for one message's processing; they are never
persisted.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class DispatchStatus(str, Enum):
    """Overall result of processing one message."""

    SKIPPED = "skipped"
    DELIVERED = "delivered"
    FAILED = "failed"


class AckDecision(str, Enum):
    """Whether the source message is acknowledged to the stream."""

    ACKNOWLEDGE = "acknowledge"
    WITHHOLD = "withhold"


class DispatchOutcome(BaseModel):
    """Result of delivering one envelope to one destination."""

    model_config = ConfigDict(frozen=True)

    destination_id: str
    succeeded: bool
    failure_reason: str | None = None
    attempts: int = 0
    event_id: str | None = None
    required: bool = True


class DispatchResult(BaseModel):
    """Aggregate of every destination outcome for one message."""

    model_config = ConfigDict(frozen=True)

    status: DispatchStatus
    ack: AckDecision
    outcomes: tuple[DispatchOutcome, ...] = ()
    operation_id: str | None = None
    skip_reason: str | None = None

    @property
    def acknowledged(self) -> bool:
        return self.ack is AckDecision.ACKNOWLEDGE

    @property
    def failed_destinations(self) -> list[str]:
        """IDs of every destination whose delivery failed."""
        return [o.destination_id for o in self.outcomes if not o.succeeded]

    @classmethod
    def skipped(cls, reason: str) -> DispatchResult:
        """A validation skip: nothing delivered, message still consumed."""
        return cls(
            status=DispatchStatus.SKIPPED,
            ack=AckDecision.ACKNOWLEDGE,
            skip_reason=reason,
        )
