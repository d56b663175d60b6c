"""Unit tests for the Signature Version 4 signing engine.

Known-answer values come from the published AWS examples (IAM
``ListUsers`` at 2015-08-30T12:36:00Z and the 2012-02-15 signing-key
derivation example).
"""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timedelta, timezone

import pytest

from busbridge.core.hasher import EMPTY_SHA256
from busbridge.core.signer import (
    SigningError,
    build_canonical_request,
    build_string_to_sign,
    canonical_headers,
    canonical_query_string,
    compute_authorization_header,
    derive_signing_key,
    hash_content,
    sign_request,
    signed_headers,
)
from busbridge.models.credentials import Credentials
from busbridge.models.signing import SigningContext

EXAMPLE_SECRET = "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY"
EXAMPLE_TIME = datetime(2015, 8, 30, 12, 36, 0, tzinfo=timezone.utc)
EXAMPLE_HEADERS = {
    "Host": "iam.amazonaws.com",
    "Content-Type": "application/x-www-form-urlencoded; charset=utf-8",
    "X-Amz-Date": "20150830T123600Z",
}
EXAMPLE_QUERY = "Action=ListUsers&Version=2010-05-08"
EXAMPLE_CANONICAL = (
    "GET\n"
    "/\n"
    "Action=ListUsers&Version=2010-05-08\n"
    "content-type:application/x-www-form-urlencoded; charset=utf-8\n"
    "host:iam.amazonaws.com\n"
    "x-amz-date:20150830T123600Z\n"
    "\n"
    "content-type;host;x-amz-date\n"
    f"{EMPTY_SHA256}"
)
EXAMPLE_CANONICAL_HASH = "f536975d06c0309214f805bb90ccff089219ecd68b2577efef23edd43b7e1a59"
EXAMPLE_SIGNATURE = "5d672d79c15b13162d9279b0855cfba6789a8edb4c82c400e06b5924a6f2b5d7"


def _example_context() -> SigningContext:
    credentials = Credentials(
        access_key_id="AKIDEXAMPLE",
        secret_access_key=EXAMPLE_SECRET,
        region="us-east-1",
        expires_at=EXAMPLE_TIME + timedelta(hours=1),
    )
    return SigningContext.at(credentials, "us-east-1", "iam", now=EXAMPLE_TIME)


# ---------------------------------------------------------------------------
# Test: hashing
# ---------------------------------------------------------------------------


class TestHashContent:
    """hash_content is plain SHA-256 with a fixed empty-input digest."""

    @pytest.mark.parametrize("empty", [b"", "", None])
    def test_empty_content_hashes_to_constant(self, empty):
        assert hash_content(empty) == EMPTY_SHA256
        assert EMPTY_SHA256 == hashlib.sha256(b"").hexdigest()

    def test_matches_standard_sha256(self):
        assert hash_content(b"abc") == (
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )

    def test_str_and_bytes_agree(self):
        assert hash_content("payload ñ") == hash_content("payload ñ".encode("utf-8"))

    def test_deterministic(self):
        assert hash_content(b"\x00\x01\x02") == hash_content(b"\x00\x01\x02")

    def test_unhashable_input_is_signing_error(self):
        with pytest.raises(SigningError):
            hash_content(42)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Test: canonical query string
# ---------------------------------------------------------------------------


class TestCanonicalQueryString:
    """Query pairs are encoded, grouped and sorted."""

    def test_example_query_unchanged(self):
        assert canonical_query_string(EXAMPLE_QUERY) == EXAMPLE_QUERY

    def test_keys_and_values_sorted(self):
        assert canonical_query_string("b=2&a=1&a=0") == "a=0&a=1&b=2"

    def test_encoding_rules(self):
        assert canonical_query_string("k=a b*c~d/e") == "k=a%20b%2Ac~d/e"

    def test_plus_is_encoded_not_treated_as_space(self):
        assert canonical_query_string("k=a+b") == "k=a%2Bb"

    def test_key_without_value(self):
        assert canonical_query_string("flag") == "flag="

    def test_empty_value(self):
        assert canonical_query_string("flag=") == "flag="

    def test_leading_equals_kept_as_literal_key(self):
        assert canonical_query_string("=x") == "%3Dx="

    def test_only_first_equals_splits(self):
        assert canonical_query_string("k=a=b") == "k=a%3Db"

    def test_empty_fragments_ignored(self):
        assert canonical_query_string("a=1&&b=2&") == "a=1&b=2"

    @pytest.mark.parametrize("empty", ["", None])
    def test_empty_query(self, empty):
        assert canonical_query_string(empty) == ""

    @pytest.mark.parametrize(
        "raw",
        [
            EXAMPLE_QUERY,
            "b=2&a=1&a=0",
            "k=a b*c~d/e",
            "k=a+b",
            "=x&flag",
            "k=%zz",
            "k=%FF%00",
            "name=caf%C3%A9&name=abc",
        ],
    )
    def test_idempotent(self, raw):
        once = canonical_query_string(raw)
        assert canonical_query_string(once) == once


# ---------------------------------------------------------------------------
# Test: canonical headers and request
# ---------------------------------------------------------------------------


class TestCanonicalHeaders:
    """Header names are lower-cased and sorted; values trimmed."""

    def test_block_format(self):
        block = canonical_headers({" X-Amz-Date ": " 20150830T123600Z ", "Host": "h"})
        assert block == "host:h\nx-amz-date:20150830T123600Z\n"

    def test_values_keep_their_case(self):
        assert canonical_headers({"X-Amz-Target": "AWSEvents.PutEvents"}) == (
            "x-amz-target:AWSEvents.PutEvents\n"
        )

    def test_signed_headers_sorted_case_insensitively(self):
        assert signed_headers({"b": "1", "A": "2", "c": "3"}) == "a;b;c"


class TestCanonicalRequest:
    def test_known_example(self):
        canonical = build_canonical_request(
            "GET", "/", EXAMPLE_QUERY, EXAMPLE_HEADERS, EMPTY_SHA256
        )
        assert canonical == EXAMPLE_CANONICAL
        assert hash_content(canonical) == EXAMPLE_CANONICAL_HASH

    def test_empty_uri_defaults_to_slash(self):
        canonical = build_canonical_request("post", "", "", {"host": "h"}, EMPTY_SHA256)
        assert canonical.split("\n")[:3] == ["POST", "/", ""]


# ---------------------------------------------------------------------------
# Test: string to sign, key derivation, authorization header
# ---------------------------------------------------------------------------


class TestStringToSign:
    def test_known_example(self):
        sts = build_string_to_sign(
            "20150830T123600Z", "20150830", "us-east-1", "iam", EXAMPLE_CANONICAL
        )
        assert sts == (
            "AWS4-HMAC-SHA256\n"
            "20150830T123600Z\n"
            "20150830/us-east-1/iam/aws4_request\n"
            f"{EXAMPLE_CANONICAL_HASH}"
        )


class TestDeriveSigningKey:
    def test_documented_derivation_example(self):
        key = derive_signing_key(EXAMPLE_SECRET, "20120215", "us-east-1", "iam")
        assert key.hex() == (
            "f4780e2d9f65fa895f9c67b32ce1baf0b0d8a43505a000a1a9e090d414db404d"
        )

    def test_list_users_example_key(self):
        key = derive_signing_key(EXAMPLE_SECRET, "20150830", "us-east-1", "iam")
        assert key.hex() == (
            "c4afb1cc5771d871763a393e44b703571b55cc28424d1a5e86da6ed3c154a4b9"
        )

    def test_each_scope_part_changes_key(self):
        base = derive_signing_key("s", "20240101", "us-east-1", "events")
        assert derive_signing_key("s", "20240102", "us-east-1", "events") != base
        assert derive_signing_key("s", "20240101", "eu-west-1", "events") != base
        assert derive_signing_key("s", "20240101", "us-east-1", "sts") != base

    def test_hmac_failure_is_signing_error(self):
        with pytest.raises(SigningError):
            derive_signing_key("s", None, "us-east-1", "events")  # type: ignore[arg-type]


class TestAuthorizationHeader:
    def test_known_example(self):
        header = compute_authorization_header(
            "GET", "/", EXAMPLE_QUERY, EXAMPLE_HEADERS, EMPTY_SHA256, _example_context()
        )
        assert header == (
            "AWS4-HMAC-SHA256 "
            "Credential=AKIDEXAMPLE/20150830/us-east-1/iam/aws4_request, "
            "SignedHeaders=content-type;host;x-amz-date, "
            f"Signature={EXAMPLE_SIGNATURE}"
        )

    def test_fields_appear_once_in_order(self):
        header = compute_authorization_header(
            "POST", "/", "b=1&a=2", {"host": "h", "x-amz-date": "x"}, EMPTY_SHA256,
            _example_context(),
        )
        for field in ("Credential=", "SignedHeaders=", "Signature="):
            assert header.count(field) == 1
        assert (
            header.index("Credential=")
            < header.index("SignedHeaders=")
            < header.index("Signature=")
        )
        assert re.search(r"Signature=[0-9a-f]{64}$", header)


# ---------------------------------------------------------------------------
# Test: full request signing
# ---------------------------------------------------------------------------


class TestSignRequest:
    """sign_request builds, signs and finishes the outbound header set."""

    def _sign(self, session_token=None, target="AWSEvents.PutEvents"):
        credentials = Credentials(
            access_key_id="AKID",
            secret_access_key="secret",
            session_token=session_token,
            expires_at=EXAMPLE_TIME + timedelta(hours=1),
        )
        ctx = SigningContext.at(credentials, "us-east-1", "events", now=EXAMPLE_TIME)
        return sign_request(
            "post", "events.us-east-1.amazonaws.com", "/", "", b'{"Entries":[]}', ctx,
            target=target,
        )

    def test_signed_header_set(self):
        request = self._sign()
        assert request.headers["host"] == "events.us-east-1.amazonaws.com"
        assert request.headers["x-amz-date"] == "20150830T123600Z"
        assert request.headers["x-amz-content-sha256"] == hash_content(b'{"Entries":[]}')
        assert request.headers["x-amz-target"] == "AWSEvents.PutEvents"
        assert "x-amz-security-token" not in request.headers
        assert "SignedHeaders=host;x-amz-content-sha256;x-amz-date;x-amz-target," in (
            request.headers["Authorization"]
        )

    def test_session_token_is_signed(self):
        request = self._sign(session_token="tok")
        assert request.headers["x-amz-security-token"] == "tok"
        assert "x-amz-security-token" in request.headers["Authorization"]

    def test_content_type_added_but_not_signed(self):
        request = self._sign()
        assert request.headers["Content-Type"] == "application/x-amz-json-1.1"
        assert "content-type" not in request.headers["Authorization"]

    def test_no_target_header_when_unset(self):
        request = self._sign(target=None)
        assert "x-amz-target" not in request.headers

    def test_url_method_and_body(self):
        request = self._sign()
        assert request.method == "POST"
        assert request.url == "https://events.us-east-1.amazonaws.com/"
        assert request.body == b'{"Entries":[]}'

    def test_signature_reproducible_from_headers(self):
        request = self._sign(session_token="tok")
        signed = {
            k: v for k, v in request.headers.items()
            if k not in ("Authorization", "Content-Type")
        }
        credentials = Credentials(
            access_key_id="AKID",
            secret_access_key="secret",
            session_token="tok",
            expires_at=EXAMPLE_TIME + timedelta(hours=1),
        )
        ctx = SigningContext.at(credentials, "us-east-1", "events", now=EXAMPLE_TIME)
        expected = compute_authorization_header(
            "POST", "/", "", signed, signed["x-amz-content-sha256"], ctx
        )
        assert request.headers["Authorization"] == expected


class TestSigningContext:
    def test_truncates_to_second_and_derives_date(self):
        credentials = Credentials(
            access_key_id="A", secret_access_key="B", expires_at=EXAMPLE_TIME
        )
        moment = datetime(2024, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)
        ctx = SigningContext.at(credentials, "eu-west-1", "events", now=moment)
        assert ctx.amz_date == "20240102T030405Z"
        assert ctx.date_stamp == "20240102"
