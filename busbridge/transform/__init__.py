"""Payload transformation: JSON record decoding, routing and business identifiers."""

from busbridge.transform.records import (
    RecordTransformer,
    TransformError,
    build_operation_id,
    parse_routes,
)

__all__ = ["RecordTransformer", "TransformError", "build_operation_id", "parse_routes"]
