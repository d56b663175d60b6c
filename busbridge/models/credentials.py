"""Credential models: temporary AWS credentials and exchange identities.

``Credentials`` are issued by the exchange, cached per destination
partition and replaced (never mutated) on refresh.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_SESSION_NAME_ALLOWED = re.compile(r"[^a-zA-Z0-9+=,.@_-]")
_SESSION_NAME_MAX = 64


class CredentialState(str, Enum):
    """Lifecycle state of one destination partition's credentials."""

    ABSENT = "absent"
    VALID = "valid"
    EXPIRING = "expiring"
    REFRESHING = "refreshing"
    FAILED = "failed"


class Credentials(BaseModel):
    """A temporary credential set bound to one region.

    ``expires_at`` accepts an ISO-8601 string, an aware/naive datetime
    (naive is read as UTC) or epoch milliseconds, which is how some
    cache writers persist it.
    """

    model_config = ConfigDict(frozen=True)

    access_key_id: str = Field(min_length=1)
    secret_access_key: str = Field(min_length=1, repr=False)
    session_token: str | None = Field(default=None, repr=False)
    region: str = "us-east-1"
    expires_at: datetime
    sandbox: bool = False

    @field_validator("expires_at", mode="before")
    @classmethod
    def _parse_expiry(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        if isinstance(value, str) and value.isdigit():
            return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
        return value

    @field_validator("expires_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def remaining(self, now: datetime) -> timedelta:
        """Time left before ``expires_at`` (negative once expired)."""
        return self.expires_at - now

    def is_valid(self, now: datetime, safety_margin: timedelta) -> bool:
        """True when more than *safety_margin* of validity remains."""
        return self.remaining(now) > safety_margin


class ExchangeProfile(BaseModel):
    """Static identity parameters for one partition's credential exchange."""

    model_config = ConfigDict(frozen=True)

    partition: str
    profile_arn: str = ""
    role_arn: str = ""
    trust_anchor_arn: str = ""
    session_name: str = "assume_role_session"
    duration_seconds: int = Field(default=3600, ge=900, le=43200)
    region: str = "us-east-1"

    @field_validator("session_name")
    @classmethod
    def _sanitise_session_name(cls, value: str) -> str:
        cleaned = _SESSION_NAME_ALLOWED.sub("", value)[:_SESSION_NAME_MAX]
        return cleaned or "assume_role_session"

    def request_body(self) -> dict[str, Any]:
        """Return the JSON body sent to the exchange endpoint."""
        return {
            "profileArn": self.profile_arn,
            "trustAnchorArn": self.trust_anchor_arn,
            "roleArn": self.role_arn,
            "durationSeconds": self.duration_seconds,
            "sessionName": self.session_name,
        }
