"""Certificate/key material loading for the mutual-TLS exchange.

Deployments often ship the client certificate and key as base64 blobs
(secrets managers, environment variables) rather than PEM files.
``requests`` needs PEM files on disk, so base64 content is decoded and
written out as PEM with 64-character lines.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import tempfile
import textwrap
from pathlib import Path

logger = logging.getLogger(__name__)

_PEM_MARKER = b"-----BEGIN"


class PemError(ValueError):
    """Raised when certificate or key material cannot be decoded."""


def to_pem(der: bytes, label: str) -> str:
    """Wrap DER bytes in a PEM armour block with 64-character lines."""
    body = base64.b64encode(der).decode("ascii")
    lines = "\n".join(textwrap.wrap(body, 64))
    return f"-----BEGIN {label}-----\n{lines}\n-----END {label}-----\n"


def decode_material(raw: bytes, label: str) -> bytes:
    """Return PEM bytes for *raw*, which may be PEM, base64 PEM or base64 DER."""
    if _PEM_MARKER in raw:
        return raw
    try:
        decoded = base64.b64decode(b"".join(raw.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise PemError(f"{label} is neither PEM nor base64: {exc}") from exc
    if not decoded:
        raise PemError(f"{label} is empty")
    if _PEM_MARKER in decoded:
        return decoded
    return to_pem(decoded, label).encode("ascii")


def resolve_pem_file(
    path: Path | str, label: str, workdir: Path | None = None
) -> Path:
    """Return a path to a PEM file for the material stored at *path*.

    PEM files are returned unchanged.  Base64 content is decoded into a
    private (0600) temporary file under *workdir*.  The caller owns that
    file and should pass a *workdir* it removes.

    Raises
    ------
    PemError
        If the file is missing or its content cannot be decoded.
    """
    source = Path(path)
    try:
        raw = source.read_bytes()
    except OSError as exc:
        raise PemError(f"Cannot read {label} from {source}: {exc}") from exc

    if _PEM_MARKER in raw:
        return source

    pem = decode_material(raw, label)
    fd, name = tempfile.mkstemp(prefix="busbridge-", suffix=".pem", dir=workdir)
    with os.fdopen(fd, "wb") as handle:
        handle.write(pem)
    logger.debug("Decoded base64 %s from %s into %s", label, source, name)
    return Path(name)
