"""Hashing and canonical JSON helpers shared by signing and delivery."""

from __future__ import annotations

import hashlib
import json
from typing import Any

# SHA-256 of the empty byte string.
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce deterministic canonical JSON bytes.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding

    The same object always serialises to the same bytes, so the payload
    hash of a request body is reproducible.
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()
