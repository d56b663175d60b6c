"""Message models: inbound stream records and outbound bus events."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class InboundMessage(BaseModel):
    """One record pulled from the stream by the external consumer."""

    model_config = ConfigDict(frozen=True)

    payload: str | bytes
    topic: str
    partition: int = Field(ge=0)
    offset: int = Field(ge=0)
    key: str | None = None

    @property
    def coordinates(self) -> str:
        """``topic[partition]@offset`` for log lines."""
        return f"{self.topic}[{self.partition}]@{self.offset}"


class TransformedRecord(BaseModel):
    """Parsed payload attributes plus the routes it asks for."""

    model_config = ConfigDict(frozen=True)

    attributes: dict[str, Any]
    routes: tuple[str, ...] = ()

    def get(self, field: str, default: Any = None) -> Any:
        return self.attributes.get(field, default)


class EventEnvelope(BaseModel):
    """The business event delivered to every selected destination."""

    model_config = ConfigDict(frozen=True)

    source: str
    detail_type: str
    detail: dict[str, Any]
    operation_id: str
