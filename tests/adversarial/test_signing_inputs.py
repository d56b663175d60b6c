"""Adversarial tests for signing and payload inputs.

Hostile or malformed input must never crash the signer or the
dispatcher, never leak secrets into logs or reprs, and never bypass
the discriminator check.
"""

from __future__ import annotations

import logging
import re
from datetime import timedelta

import pytest

from busbridge.core.signer import (
    SigningError,
    canonical_headers,
    canonical_query_string,
    hash_content,
    sign_request,
)
from busbridge.models.signing import SigningContext
from busbridge.models.outcomes import DispatchStatus

_ENCODED = re.compile(r"^[A-Za-z0-9\-_.~/%=&]*$")


class TestHostileQueryStrings:
    @pytest.mark.parametrize(
        "query",
        [
            "a=%zz",
            "a=%",
            "%%%",
            "=&=&=",
            "a=1&&&b=2",
            "key=éè&kü=☃",
            "a=b=c=d",
            "a=\x00\x01",
            "&" * 50,
        ],
    )
    def test_never_raises_and_is_fully_encoded(self, query):
        result = canonical_query_string(query)
        assert _ENCODED.match(result)
        assert canonical_query_string(result) == result

    def test_sorting_is_stable_for_duplicate_keys(self):
        assert canonical_query_string("b=2&a=9&a=1") == "a=1&a=9&b=2"


class TestHostileSigningInputs:
    def test_header_names_collapse_case_and_padding(self):
        block = canonical_headers({" X-Thing ": "1", "x-thing": "2", "host": "h"})
        assert block == "host:h\nx-thing:2\n"

    @pytest.mark.parametrize("body", [123, 1.5, object()])
    def test_non_bytes_body_is_a_signing_error(self, body):
        with pytest.raises(SigningError):
            hash_content(body)

    def test_corrupt_scope_is_a_signing_error(self, make_credentials, now):
        context = SigningContext.at(make_credentials(), "us-east-1", "events", now=now)
        broken = context.model_copy(update={"region": None})
        with pytest.raises(SigningError):
            sign_request("POST", "h", "/", "", b"{}", broken)


class TestSecretsStayHidden:
    def test_context_repr_hides_secret(self, make_credentials, now):
        context = SigningContext.at(make_credentials(), "us-east-1", "events", now=now)
        assert "cached-secret" not in repr(context)
        assert "cached-token" not in repr(context)

    def test_dispatch_logs_never_contain_secrets(
        self, make_orchestrator, make_message, exchange, caplog
    ):
        caplog.set_level(logging.DEBUG)
        make_orchestrator().process(make_message())
        assert exchange.calls
        assert "secret-1" not in caplog.text
        assert "token-1" not in caplog.text


class TestHostilePayloads:
    @pytest.mark.parametrize(
        "payload",
        [
            "",
            "null",
            "[]",
            '{"discriminator": ["13"]}',
            '{"discriminator": "13 "}',
            '{"discriminator": " 13"}',
            '{"discriminator": 13.0}',
            '{"discriminator": true}',
            '{"discriminator": {"$eq": "13"}}',
            b"\x00\x01\x02",
        ],
    )
    def test_never_delivered(self, make_orchestrator, make_message, delivery_client, payload):
        result = make_orchestrator().process(make_message(payload))
        assert result.status is DispatchStatus.SKIPPED
        assert delivery_client.requests == []

    def test_huge_payload_is_signed(self, make_orchestrator, make_message, delivery_client):
        payload = {"discriminator": "13", "a": "X" * 100_000, "b": "Y"}
        result = make_orchestrator().process(make_message(payload))
        assert result.status is DispatchStatus.DELIVERED
        assert len(delivery_client.requests) == 1


class TestExpiredCredentialsNeverUsed:
    def test_cached_credentials_inside_margin_are_refreshed(
        self, make_orchestrator, make_message, make_credentials, store, exchange, delivery_client
    ):
        stale = make_credentials(expires_in=timedelta(minutes=4))
        store.set("session-aws1:aws-credentials", stale.model_dump_json(), 3600)

        make_orchestrator().process(make_message())

        assert exchange.calls == ["session-aws1"]
        sent = delivery_client.requests[0]["headers"]
        assert sent["x-amz-security-token"] == "token-1"
        assert "AKIDCACHED" not in sent["Authorization"]
