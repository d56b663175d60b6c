"""busbridge data models: all Pydantic v2, all frozen (immutable)."""

from busbridge.models.credentials import CredentialState, Credentials, ExchangeProfile
from busbridge.models.destinations import DestinationConfig
from busbridge.models.messages import EventEnvelope, InboundMessage, TransformedRecord
from busbridge.models.outcomes import (
    AckDecision,
    DispatchOutcome,
    DispatchResult,
    DispatchStatus,
)
from busbridge.models.signing import CanonicalRequestInputs, SignedRequest, SigningContext

__all__ = [
    # credentials
    "CredentialState",
    "Credentials",
    "ExchangeProfile",
    # destinations
    "DestinationConfig",
    # messages
    "InboundMessage",
    "TransformedRecord",
    "EventEnvelope",
    # outcomes
    "AckDecision",
    "DispatchStatus",
    "DispatchOutcome",
    "DispatchResult",
    # signing
    "CanonicalRequestInputs",
    "SigningContext",
    "SignedRequest",
]
