"""Shared test fixtures for busbridge."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from busbridge.core.cache_store import InMemoryCacheStore
from busbridge.core.credential_manager import CredentialManager
from busbridge.core.orchestrator import DispatchOrchestrator, RetryPolicy
from busbridge.models.credentials import Credentials, ExchangeProfile
from busbridge.models.destinations import DestinationConfig
from busbridge.models.messages import InboundMessage
from busbridge.routing.sinks import DeliveryResponse
from busbridge.transform.records import RecordTransformer

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

HOST_A = "events-a.example.test"
HOST_B = "events-b.example.test"
PARTITION_A = "session-aws1"
PARTITION_B = "session-aws2"

OK_BODY = json.dumps({"FailedEntryCount": 0, "Entries": [{"EventId": "evt-1"}]})


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeExchange:
    """Issues numbered credentials, or raises ``error``, and counts calls."""

    def __init__(
        self,
        *,
        error: Exception | None = None,
        lifetime: timedelta = timedelta(hours=1),
        delay: float = 0.0,
        clock: Callable[[], datetime] = lambda: FIXED_NOW,
    ) -> None:
        self.error = error
        self.lifetime = lifetime
        self.delay = delay
        self.clock = clock
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def exchange(self, profile: ExchangeProfile) -> Credentials:
        with self._lock:
            self.calls.append(profile.partition)
            n = len(self.calls)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return Credentials(
            access_key_id=f"AKID-{profile.partition}-{n}",
            secret_access_key=f"secret-{n}",
            session_token=f"token-{n}",
            region=profile.region,
            expires_at=self.clock() + self.lifetime,
        )


class FakeDeliveryClient:
    """Replays scripted responses per host and records every request.

    The last scripted item for a host repeats; unscripted hosts get a
    successful PutEvents response.
    """

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self._scripts: dict[str, list[DeliveryResponse | Exception]] = {}
        self._lock = threading.Lock()

    def script(self, host: str, *items: DeliveryResponse | Exception) -> None:
        self._scripts[host] = list(items)

    def requests_to(self, host: str) -> list[dict[str, Any]]:
        return [r for r in self.requests if r["headers"]["host"] == host]

    def post(
        self, url: str, headers: dict[str, str], body: bytes, timeout: float
    ) -> DeliveryResponse:
        with self._lock:
            self.requests.append(
                {"url": url, "headers": dict(headers), "body": body, "timeout": timeout}
            )
            queue = self._scripts.get(headers["host"])
            if not queue:
                item: DeliveryResponse | Exception = DeliveryResponse(
                    status_code=200, body=OK_BODY
                )
            elif len(queue) > 1:
                item = queue.pop(0)
            else:
                item = queue[0]
        if isinstance(item, Exception):
            raise item
        return item


class RecordingAcknowledger:
    def __init__(self) -> None:
        self.acknowledged: list[InboundMessage] = []

    def acknowledge(self, message: InboundMessage) -> None:
        self.acknowledged.append(message)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def now() -> datetime:
    """The fixed wall-clock instant used across tests."""
    return FIXED_NOW


@pytest.fixture
def make_credentials() -> Callable[..., Credentials]:
    """Factory fixture: credentials expiring *expires_in* after FIXED_NOW."""

    def _factory(
        expires_in: timedelta = timedelta(hours=1), **overrides: Any
    ) -> Credentials:
        fields: dict[str, Any] = {
            "access_key_id": "AKIDCACHED",
            "secret_access_key": "cached-secret",
            "session_token": "cached-token",
            "region": "us-east-1",
            "expires_at": FIXED_NOW + expires_in,
        }
        fields.update(overrides)
        return Credentials(**fields)

    return _factory


@pytest.fixture
def profiles() -> dict[str, ExchangeProfile]:
    return {
        PARTITION_A: ExchangeProfile(
            partition=PARTITION_A,
            profile_arn="arn:aws:rolesanywhere:us-east-1:111:profile/a",
            role_arn="arn:aws:iam::111:role/a",
            trust_anchor_arn="arn:aws:rolesanywhere:us-east-1:111:trust-anchor/a",
        ),
        PARTITION_B: ExchangeProfile(
            partition=PARTITION_B,
            profile_arn="arn:aws:rolesanywhere:us-east-1:222:profile/b",
            role_arn="arn:aws:iam::222:role/b",
            trust_anchor_arn="arn:aws:rolesanywhere:us-east-1:222:trust-anchor/b",
        ),
    }


@pytest.fixture
def destinations() -> tuple[DestinationConfig, DestinationConfig]:
    """Destination A (required, default route) and B (optional)."""
    return (
        DestinationConfig(
            id="aws1",
            host=HOST_A,
            routing_value="aws1",
            is_required=True,
            event_bus_name="bus-a",
            credential_partition=PARTITION_A,
        ),
        DestinationConfig(
            id="aws2",
            host=HOST_B,
            routing_value="aws2",
            is_required=False,
            event_bus_name="bus-b",
            credential_partition=PARTITION_B,
        ),
    )


@pytest.fixture
def exchange() -> FakeExchange:
    return FakeExchange()


@pytest.fixture
def store() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture
def credential_manager(
    store: InMemoryCacheStore,
    exchange: FakeExchange,
    profiles: dict[str, ExchangeProfile],
) -> CredentialManager:
    return CredentialManager(store, exchange, profiles, clock=lambda: FIXED_NOW)


@pytest.fixture
def delivery_client() -> FakeDeliveryClient:
    return FakeDeliveryClient()


@pytest.fixture
def acknowledger() -> RecordingAcknowledger:
    return RecordingAcknowledger()


@pytest.fixture
def transformer() -> RecordTransformer:
    """Identifier = a + literal + b, route field ``route``."""
    return RecordTransformer(
        routing_field="route",
        default_route="aws1",
        operation_id_fields=["a"],
        operation_id_literal="-01001-00000-",
        operation_id_suffix_fields=["b"],
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def sleeps() -> list[float]:
    """Collects backoff delays instead of sleeping."""
    return []


@pytest.fixture
def make_orchestrator(
    destinations: tuple[DestinationConfig, DestinationConfig],
    credential_manager: CredentialManager,
    transformer: RecordTransformer,
    delivery_client: FakeDeliveryClient,
    acknowledger: RecordingAcknowledger,
    sleeps: list[float],
) -> Callable[..., DispatchOrchestrator]:
    """Factory fixture: an orchestrator wired to the fake collaborators."""

    def _factory(**overrides: Any) -> DispatchOrchestrator:
        kwargs: dict[str, Any] = {
            "discriminator_field": "discriminator",
            "expected_discriminator": "13",
            "default_route": "aws1",
            "retry": RetryPolicy(backoff_seconds=0.5),
            "acknowledger": acknowledger,
            "sleep": sleeps.append,
            "clock": lambda: FIXED_NOW,
        }
        kwargs.update(overrides)
        return DispatchOrchestrator(
            kwargs.pop("destinations", destinations),
            kwargs.pop("credentials", credential_manager),
            kwargs.pop("transformer", transformer),
            kwargs.pop("client", delivery_client),
            **kwargs,
        )

    return _factory


@pytest.fixture
def make_message() -> Callable[..., InboundMessage]:
    """Factory fixture: an inbound message with a JSON payload."""

    def _factory(
        payload: dict[str, Any] | str | bytes | None = None,
        topic: str = "payments.history",
        partition: int = 0,
        offset: int = 0,
    ) -> InboundMessage:
        if payload is None:
            payload = {"discriminator": "13", "a": "X", "b": "Y"}
        if isinstance(payload, dict):
            payload = json.dumps(payload)
        return InboundMessage(payload=payload, topic=topic, partition=partition, offset=offset)

    return _factory


@pytest.fixture
def make_exchange() -> Callable[..., FakeExchange]:
    """Factory fixture: a FakeExchange with custom error/lifetime/delay."""
    return FakeExchange
