"""Record transformation: stream payload to routed record to bus event.

The transformer decodes the JSON payload, stamps the stream coordinates
onto it (``_kafka_topic``, ``_kafka_partition``, ``_kafka_offset``,
``_processing_timestamp``) and resolves the routes the record asks for.
The business identifier and the outbound event are built from the
configured fields and literals.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from busbridge.models.messages import EventEnvelope, InboundMessage, TransformedRecord

logger = logging.getLogger(__name__)


class TransformError(ValueError):
    """Raised when a payload cannot be turned into a routed record."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_routes(value: Any, default: str) -> tuple[str, ...]:
    """Normalise a routing field into a tuple of route names.

    Accepts a single name, a comma-separated string or a list.  Blank
    values fall back to *default*.
    """
    if isinstance(value, str):
        names = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple)):
        names = [str(part).strip() for part in value]
    else:
        names = []
    routes = tuple(dict.fromkeys(name for name in names if name))
    return routes or (default,)


def build_operation_id(
    attributes: dict[str, Any],
    fields: Sequence[str],
    literal: str = "",
    suffix_fields: Sequence[str] = (),
) -> str:
    """Concatenate *fields*, *literal* and *suffix_fields* in order.

    Raises
    ------
    TransformError
        If any named field is missing or null.
    """
    missing = [
        name for name in (*fields, *suffix_fields) if attributes.get(name) is None
    ]
    if missing:
        raise TransformError(f"Missing identifier field(s): {', '.join(missing)}")
    head = "".join(str(attributes[name]).strip() for name in fields)
    tail = "".join(str(attributes[name]).strip() for name in suffix_fields)
    return f"{head}{literal}{tail}"


class RecordTransformer:
    """Turns inbound messages into routed records and bus events.

    Parameters
    ----------
    routing_field:
        Payload field naming the destination route(s).
    default_route:
        Route used when the payload does not name one.
    event_source, event_detail_type:
        ``Source`` and ``DetailType`` of the outbound event.
    """

    def __init__(
        self,
        *,
        routing_field: str = "awsDestiny",
        default_route: str = "aws1",
        operation_id_fields: Sequence[str] = (),
        operation_id_literal: str = "",
        operation_id_suffix_fields: Sequence[str] = (),
        event_source: str = "openbank.payments",
        event_detail_type: str = "Transfer_KO",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.routing_field = routing_field
        self.default_route = default_route
        self._id_fields = tuple(operation_id_fields)
        self._id_literal = operation_id_literal
        self._id_suffix_fields = tuple(operation_id_suffix_fields)
        self._event_source = event_source
        self._event_detail_type = event_detail_type
        self._clock = clock

    def transform(self, message: InboundMessage) -> TransformedRecord:
        """Decode *message* and attach stream attributes and routes."""
        payload = message.payload
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise TransformError(f"Payload is not UTF-8: {exc}") from exc
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise TransformError(f"Payload is not JSON: {exc.msg}") from exc
        if not isinstance(data, dict):
            raise TransformError(
                f"Payload must be a JSON object, got {type(data).__name__}"
            )

        attributes = dict(data)
        attributes["_kafka_topic"] = message.topic
        attributes["_kafka_partition"] = message.partition
        attributes["_kafka_offset"] = message.offset
        attributes["_processing_timestamp"] = self._clock().isoformat()

        routes = parse_routes(attributes.get(self.routing_field), self.default_route)
        attributes[self.routing_field] = ",".join(routes)
        return TransformedRecord(attributes=attributes, routes=routes)

    def operation_id(self, record: TransformedRecord) -> str:
        return build_operation_id(
            record.attributes,
            self._id_fields,
            self._id_literal,
            self._id_suffix_fields,
        )

    def build_envelope(self, operation_id: str) -> EventEnvelope:
        """Wrap *operation_id* in the outbound business event."""
        return EventEnvelope(
            source=self._event_source,
            detail_type=self._event_detail_type,
            detail={"payload": {"operationId": operation_id}},
            operation_id=operation_id,
        )
