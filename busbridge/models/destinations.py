"""Destination models: static delivery targets, read-only after startup."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class DestinationConfig(BaseModel):
    """One event-bus delivery target and its credential partition.

    ``is_required`` drives the partial-failure policy: a failed required
    destination withholds acknowledgment of the source message, a failed
    optional one is logged and tolerated.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    host: str = ""
    service: str = "events"
    region: str = "us-east-1"
    routing_value: str
    is_required: bool = True
    event_bus_name: str
    credential_partition: str
    target: str | None = "AWSEvents.PutEvents"
    path: str = "/"
    scheme: str = Field(default="https", pattern=r"^https?$")

    @property
    def resolved_host(self) -> str:
        """Configured host, or the regional service endpoint."""
        return self.host or f"{self.service}.{self.region}.amazonaws.com"

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.resolved_host}{self.path or '/'}"
