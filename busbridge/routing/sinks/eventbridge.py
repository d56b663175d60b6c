"""EventBridge ``PutEvents`` wire format.

Request body::

    {"Entries": [{"Source": ..., "DetailType": ..., "Detail": "<json>",
                  "EventBusName": ...}]}

A call is successful only when the status is 2xx and
``FailedEntryCount`` is zero.
"""

from __future__ import annotations

import json

from busbridge.core.hasher import canonical_json_bytes
from busbridge.models.destinations import DestinationConfig
from busbridge.models.messages import EventEnvelope
from busbridge.routing.sinks import DeliveryError, DeliveryResponse


def put_events_entry(envelope: EventEnvelope, destination: DestinationConfig) -> dict[str, str]:
    return {
        "Source": envelope.source,
        "DetailType": envelope.detail_type,
        "Detail": canonical_json_bytes(envelope.detail).decode("ascii"),
        "EventBusName": destination.event_bus_name,
    }


def build_put_events_body(envelope: EventEnvelope, destination: DestinationConfig) -> bytes:
    """Serialise *envelope* as a single-entry PutEvents request for *destination*."""
    return canonical_json_bytes({"Entries": [put_events_entry(envelope, destination)]})


def parse_put_events_response(response: DeliveryResponse) -> str | None:
    """Check a PutEvents response and return the first event ID.

    Raises
    ------
    DeliveryError
        On a non-2xx status, an unreadable body, or failed entries.
    """
    if not response.ok:
        raise DeliveryError(
            f"PutEvents returned HTTP {response.status_code}: {response.body[:200]}",
            status_code=response.status_code,
        )
    if not response.body:
        return None
    try:
        data = json.loads(response.body)
    except json.JSONDecodeError as exc:
        raise DeliveryError(
            "PutEvents returned an unreadable body", status_code=response.status_code
        ) from exc
    if not isinstance(data, dict):
        raise DeliveryError(
            "PutEvents returned an unexpected body", status_code=response.status_code
        )

    entries = data.get("Entries") or []
    if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
        raise DeliveryError(
            "PutEvents returned malformed entries", status_code=response.status_code
        )
    try:
        failed = int(data.get("FailedEntryCount") or 0)
    except (TypeError, ValueError) as exc:
        raise DeliveryError(
            "PutEvents returned a malformed FailedEntryCount",
            status_code=response.status_code,
        ) from exc
    if failed:
        reasons = "; ".join(
            f"{e.get('ErrorCode')}: {e.get('ErrorMessage')}"
            for e in entries
            if e.get("ErrorCode")
        )
        raise DeliveryError(
            f"PutEvents rejected {failed} entr{'y' if failed == 1 else 'ies'}: {reasons}",
            status_code=response.status_code,
        )
    return entries[0].get("EventId") if entries else None
