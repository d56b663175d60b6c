"""Signing models: ephemeral inputs and outputs of one signing call.

None of these are cached; they are rebuilt for every outbound request.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from busbridge.models.credentials import Credentials

AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"
DATE_STAMP_FORMAT = "%Y%m%d"


class CanonicalRequestInputs(BaseModel):
    """The normalised pieces of a request, ready to be joined."""

    model_config = ConfigDict(frozen=True)

    http_method: str
    canonical_uri: str = "/"
    canonical_query_string: str = ""
    canonical_headers: dict[str, str] = {}  # lower-cased names, sorted
    signed_header_names: str = ""
    payload_hash: str


class SigningContext(BaseModel):
    """Time, scope and credentials for a single signature."""

    model_config = ConfigDict(frozen=True)

    request_timestamp: datetime
    date_stamp: str
    region: str
    service: str
    credentials: Credentials

    @classmethod
    def at(
        cls,
        credentials: Credentials,
        region: str,
        service: str,
        now: datetime | None = None,
    ) -> SigningContext:
        """Build a context for *now* (UTC, truncated to the second)."""
        moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
        moment = moment.replace(microsecond=0)
        return cls(
            request_timestamp=moment,
            date_stamp=moment.strftime(DATE_STAMP_FORMAT),
            region=region,
            service=service,
            credentials=credentials,
        )

    @property
    def amz_date(self) -> str:
        """Request timestamp in ``yyyyMMdd'T'HHmmss'Z'`` form."""
        return self.request_timestamp.strftime(AMZ_DATE_FORMAT)


class SignedRequest(BaseModel):
    """A fully signed request ready for the delivery client."""

    model_config = ConfigDict(frozen=True)

    method: str
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes = b""
