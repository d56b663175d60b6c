"""AWS Signature Version 4 request signing.

Four stages, each a pure function of its inputs:

1. canonical request: method, URI, query, headers, signed headers,
   payload hash, newline-joined;
2. string to sign: algorithm, timestamp, credential scope, hash of
   the canonical request;
3. signing key: HMAC-SHA256 chain seeded with ``"AWS4" + secret``
   over date, region, service and ``aws4_request``;
4. signature: hex HMAC-SHA256 of the string to sign, assembled
   into the ``Authorization`` header.

Malformed query fragments never abort signing: they are encoded
literally.  A failing digest or HMAC primitive is fatal and surfaces as
``SigningError``.

Usage
-----
>>> ctx = SigningContext.at(credentials, "us-east-1", "events")
>>> request = sign_request("POST", "events.us-east-1.amazonaws.com", "/", "",
...                        body, ctx, target="AWSEvents.PutEvents")
>>> request.headers["Authorization"]
'AWS4-HMAC-SHA256 Credential=AKID/20240101/us-east-1/events/aws4_request, ...'
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping
from urllib.parse import quote, unquote_to_bytes

from busbridge.core.hasher import EMPTY_SHA256, sha256_hex
from busbridge.models.signing import CanonicalRequestInputs, SignedRequest, SigningContext

logger = logging.getLogger(__name__)

ALGORITHM = "AWS4-HMAC-SHA256"
KEY_PREFIX = "AWS4"
SCOPE_TERMINATOR = "aws4_request"
DEFAULT_CONTENT_TYPE = "application/x-amz-json-1.1"


class SigningError(RuntimeError):
    """Raised when a digest or HMAC primitive fails while signing."""


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def hash_content(content: bytes | str | None) -> str:
    """Lower-case hex SHA-256 of *content*.

    Empty or absent content hashes to ``EMPTY_SHA256``.
    """
    if content is None:
        return EMPTY_SHA256
    try:
        if len(content) == 0:
            return EMPTY_SHA256
        data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
        return sha256_hex(data)
    except (TypeError, ValueError) as exc:
        raise SigningError(f"Cannot hash content: {exc}") from exc


def _hmac(key: bytes, message: str) -> bytes:
    try:
        return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()
    except (AttributeError, TypeError, ValueError) as exc:
        raise SigningError(f"HMAC-SHA256 failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Stage 1: canonical request
# ---------------------------------------------------------------------------


def _encode_component(component: str) -> str:
    # Decode first so already-encoded input is not double-encoded; bytes
    # that do not form a valid escape pass through and are encoded as-is.
    return quote(unquote_to_bytes(component), safe="/~")


def canonical_query_string(query: str | None) -> str:
    """Normalise a raw query string.

    Pairs are split on the first ``=``, keys and values are encoded
    independently (space as ``%20``, ``*`` as ``%2A``, ``~`` and ``/``
    kept), values are sorted within each key and keys are sorted.
    A fragment with an empty name (``"=x"``) is kept whole as a key.
    Running the result through again returns it unchanged.
    """
    if not query:
        return ""

    grouped: dict[str, list[str]] = {}
    for fragment in query.lstrip("?").split("&"):
        if not fragment:
            continue
        name, sep, value = fragment.partition("=")
        if not name:
            name, value = fragment, ""
        grouped.setdefault(_encode_component(name), []).append(
            _encode_component(value) if sep else ""
        )

    return "&".join(
        f"{key}={value}"
        for key in sorted(grouped)
        for value in sorted(grouped[key])
    )


def _normalise_headers(headers: Mapping[str, str]) -> dict[str, str]:
    normalised: dict[str, str] = {}
    for name in sorted(headers, key=lambda n: n.strip().lower()):
        normalised[name.strip().lower()] = str(headers[name]).strip()
    return normalised


def canonical_headers(headers: Mapping[str, str]) -> str:
    """``name:value\\n`` per header, names lower-cased and sorted."""
    return "".join(
        f"{name}:{value}\n" for name, value in _normalise_headers(headers).items()
    )


def signed_headers(headers: Mapping[str, str]) -> str:
    """Sorted, lower-cased header names joined with ``;``."""
    return ";".join(_normalise_headers(headers))


def canonical_request_inputs(
    method: str,
    uri: str,
    query: str | None,
    headers: Mapping[str, str],
    payload_hash: str,
) -> CanonicalRequestInputs:
    """Normalise every canonical-request field without joining them."""
    normalised = _normalise_headers(headers)
    return CanonicalRequestInputs(
        http_method=method.upper(),
        canonical_uri=uri or "/",
        canonical_query_string=canonical_query_string(query),
        canonical_headers=normalised,
        signed_header_names=";".join(normalised),
        payload_hash=payload_hash,
    )


def build_canonical_request(
    method: str,
    uri: str,
    query: str | None,
    headers: Mapping[str, str],
    payload_hash: str,
) -> str:
    """Join the canonical request fields with newlines.

    The headers block already ends in a newline, so a blank line
    separates it from the signed-header list.
    """
    inputs = canonical_request_inputs(method, uri, query, headers, payload_hash)
    headers_block = "".join(
        f"{name}:{value}\n" for name, value in inputs.canonical_headers.items()
    )
    return "\n".join(
        [
            inputs.http_method,
            inputs.canonical_uri,
            inputs.canonical_query_string,
            headers_block,
            inputs.signed_header_names,
            inputs.payload_hash,
        ]
    )


# ---------------------------------------------------------------------------
# Stages 2-4: string to sign, signing key, signature
# ---------------------------------------------------------------------------


def credential_scope(date_stamp: str, region: str, service: str) -> str:
    return f"{date_stamp}/{region}/{service}/{SCOPE_TERMINATOR}"


def build_string_to_sign(
    timestamp: str,
    date_stamp: str,
    region: str,
    service: str,
    canonical_request: str,
) -> str:
    """Algorithm, timestamp, scope and canonical-request hash."""
    return "\n".join(
        [
            ALGORITHM,
            timestamp,
            credential_scope(date_stamp, region, service),
            hash_content(canonical_request),
        ]
    )


def derive_signing_key(
    secret_key: str, date_stamp: str, region: str, service: str
) -> bytes:
    """Run the four-step HMAC chain; each output keys the next step."""
    k_date = _hmac(f"{KEY_PREFIX}{secret_key}".encode("utf-8"), date_stamp)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, SCOPE_TERMINATOR)


def compute_signature(signing_key: bytes, string_to_sign: str) -> str:
    return _hmac(signing_key, string_to_sign).hex()


def compute_authorization_header(
    method: str,
    uri: str,
    query: str | None,
    headers: Mapping[str, str],
    payload_hash: str,
    context: SigningContext,
) -> str:
    """Build the ``Authorization`` header value for a request.

    Parameters
    ----------
    method, uri, query:
        Request line pieces; *uri* defaults to ``/`` when empty.
    headers:
        Every header to sign (must include ``host`` and ``x-amz-date``).
    payload_hash:
        ``hash_content(body)``.
    context:
        Timestamp, scope and credentials for this signature.

    Raises
    ------
    SigningError
        If a digest or HMAC primitive fails.
    """
    canonical = build_canonical_request(method, uri, query, headers, payload_hash)
    string_to_sign = build_string_to_sign(
        context.amz_date,
        context.date_stamp,
        context.region,
        context.service,
        canonical,
    )
    key = derive_signing_key(
        context.credentials.secret_access_key,
        context.date_stamp,
        context.region,
        context.service,
    )
    signature = compute_signature(key, string_to_sign)
    scope = credential_scope(context.date_stamp, context.region, context.service)
    return (
        f"{ALGORITHM} Credential={context.credentials.access_key_id}/{scope}, "
        f"SignedHeaders={signed_headers(headers)}, Signature={signature}"
    )


# ---------------------------------------------------------------------------
# Full request
# ---------------------------------------------------------------------------


def sign_request(
    method: str,
    host: str,
    uri: str,
    query: str | None,
    body: bytes | str | None,
    context: SigningContext,
    *,
    target: str | None = None,
    content_type: str = DEFAULT_CONTENT_TYPE,
    scheme: str = "https",
) -> SignedRequest:
    """Assemble and sign the outbound header set for one request.

    Signed: ``host``, ``x-amz-content-sha256``, ``x-amz-date``, plus
    ``x-amz-target`` and ``x-amz-security-token`` when present.
    ``Authorization`` and ``Content-Type`` are added after signing.
    """
    payload = body.encode("utf-8") if isinstance(body, str) else (body or b"")
    payload_hash = hash_content(payload)

    headers: dict[str, str] = {
        "host": host,
        "x-amz-content-sha256": payload_hash,
        "x-amz-date": context.amz_date,
    }
    if target:
        headers["x-amz-target"] = target
    if context.credentials.session_token:
        headers["x-amz-security-token"] = context.credentials.session_token

    authorization = compute_authorization_header(
        method, uri, query, headers, payload_hash, context
    )
    headers["Authorization"] = authorization
    headers["Content-Type"] = content_type

    canonical_query = canonical_query_string(query)
    url = f"{scheme}://{host}{uri or '/'}"
    if canonical_query:
        url = f"{url}?{canonical_query}"

    logger.debug(
        "Signed %s %s (scope=%s)",
        method.upper(),
        url,
        credential_scope(context.date_stamp, context.region, context.service),
    )
    return SignedRequest(method=method.upper(), url=url, headers=headers, body=payload)
