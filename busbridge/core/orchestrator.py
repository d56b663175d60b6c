"""Dispatch orchestrator: the central coordinator for one inbound message.

Pipeline per message:

1. transform the payload into a routed record;
2. validate the discriminator (exact string match); a mismatch is a
   ``SKIPPED`` outcome and the message is still acknowledged;
3. derive the business identifier and build the event;
4. select destinations whose ``routing_value`` is among the record's
   routes, falling back to the default destination when none match;
5. ``deliver`` once per destination (concurrently, joined), each with
   its own credentials, signature and bounded retries;
6. aggregate: a failed required destination fails the dispatch, a failed
   optional one is logged and tolerated;
7. acknowledge, or withhold by raising ``PartialDispatchFailure``.

Signing, credential and delivery errors never escape ``deliver``; they
become a failed ``DispatchOutcome``.  ``PartialDispatchFailure`` is the
only error that leaves the orchestrator.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from busbridge.bridge.exchange import (
    CredentialExchange,
    CredentialExchangeError,
    RolesAnywhereExchange,
    SandboxCredentialIssuer,
)
from busbridge.config import BridgeSettings
from busbridge.core.cache_store import CacheStore, InMemoryCacheStore, SQLiteCacheStore
from busbridge.core.credential_manager import CredentialManager
from busbridge.core.production_guard import enforce_production_constraints
from busbridge.core.signer import SigningError, sign_request
from busbridge.models.destinations import DestinationConfig
from busbridge.models.messages import EventEnvelope, InboundMessage, TransformedRecord
from busbridge.models.outcomes import (
    AckDecision,
    DispatchOutcome,
    DispatchResult,
    DispatchStatus,
)
from busbridge.models.signing import SigningContext
from busbridge.routing.sinks import DeliveryClient, DeliveryError
from busbridge.routing.sinks.eventbridge import (
    build_put_events_body,
    parse_put_events_response,
)
from busbridge.routing.sinks.http import RequestsDeliveryClient
from busbridge.transform.records import RecordTransformer, TransformError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PartialDispatchFailure(RuntimeError):
    """Raised when a required destination failed; the message must not be acknowledged."""

    def __init__(self, message: InboundMessage, result: DispatchResult) -> None:
        failed = ", ".join(result.failed_destinations) or "?"
        super().__init__(
            f"Required destination(s) failed for {message.coordinates}: {failed}"
        )
        self.message = message
        self.result = result


@runtime_checkable
class Acknowledger(Protocol):
    """The stream consumer's acknowledgment hook."""

    def acknowledge(self, message: InboundMessage) -> None:
        """Commit *message*'s offset so it is not redelivered."""
        ...


class RetryPolicy(BaseModel):
    """Bounded per-destination retries with fixed or exponential backoff.

    Exchange and delivery failures draw on separate attempt budgets.
    """

    model_config = ConfigDict(frozen=True)

    delivery_max_attempts: int = Field(default=2, ge=1)
    exchange_max_attempts: int = Field(default=2, ge=1)
    backoff_seconds: float = Field(default=6.0, ge=0)
    backoff_multiplier: float = Field(default=1.0, ge=1.0)

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (1-based)."""
        return self.backoff_seconds * self.backoff_multiplier ** (attempt - 1)


class DispatchOrchestrator:
    """Validates, routes, delivers and acknowledges inbound messages.

    Parameters
    ----------
    destinations:
        Immutable destination set.
    credentials:
        Lifecycle manager shared by every destination.
    transformer:
        Payload transformer and event builder.
    client:
        Outbound HTTP collaborator.
    discriminator_field, expected_discriminator:
        Records whose field is not exactly this string are skipped.
    default_route:
        Routing value of the destination that receives records whose
        routes match nothing; the first destination when unset or unknown.
    acknowledger:
        Receives the acknowledgment for consumed messages.
    parallel:
        Deliver to multiple destinations concurrently (joined).

    Usage
    -----
    >>> orchestrator = DispatchOrchestrator.from_settings(BridgeSettings())
    >>> result = orchestrator.process(message)
    >>> result.status
    <DispatchStatus.DELIVERED: 'delivered'>
    """

    def __init__(
        self,
        destinations: Sequence[DestinationConfig],
        credentials: CredentialManager,
        transformer: RecordTransformer,
        client: DeliveryClient,
        *,
        discriminator_field: str,
        expected_discriminator: str,
        default_route: str | None = None,
        retry: RetryPolicy | None = None,
        acknowledger: Acknowledger | None = None,
        delivery_timeout: float = 30.0,
        parallel: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.destinations = tuple(destinations)
        self.credentials = credentials
        self.transformer = transformer
        self._client = client
        self._discriminator_field = discriminator_field
        self._expected = expected_discriminator
        self._default_route = default_route
        self._retry = retry or RetryPolicy()
        self._acknowledger = acknowledger
        self._delivery_timeout = delivery_timeout
        self._parallel = parallel
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: BridgeSettings,
        *,
        client: DeliveryClient | None = None,
        exchange: CredentialExchange | None = None,
        store: CacheStore | None = None,
        acknowledger: Acknowledger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> DispatchOrchestrator:
        """Wire every collaborator from *settings*.

        Runs the production guard first; raises ``ProductionConfigError``
        when the configuration is unsafe for production.
        """
        enforce_production_constraints(settings)

        if store is None:
            store = (
                SQLiteCacheStore(settings.credential_cache_path)
                if settings.credential_cache_path
                else InMemoryCacheStore()
            )
        if exchange is None:
            exchange = RolesAnywhereExchange(
                settings.exchange_host,
                settings.certificate_path,
                settings.private_key_path,
                timeout=settings.exchange_timeout_seconds,
            )
        fallback = SandboxCredentialIssuer() if settings.sandbox_credentials else None

        credentials = CredentialManager(
            store,
            exchange,
            settings.exchange_profile_map(),
            safety_margin=settings.safety_margin,
            cache_ttl_seconds=settings.credential_cache_ttl_seconds,
            fallback=fallback,
            wait_timeout=settings.credential_wait_seconds,
        )
        transformer = RecordTransformer(
            routing_field=settings.routing_field,
            default_route=settings.default_route,
            operation_id_fields=settings.operation_id_fields,
            operation_id_literal=settings.operation_id_literal,
            operation_id_suffix_fields=settings.operation_id_suffix_fields,
            event_source=settings.event_source,
            event_detail_type=settings.event_detail_type,
        )
        retry = RetryPolicy(
            delivery_max_attempts=settings.delivery_max_attempts,
            exchange_max_attempts=settings.exchange_max_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
            backoff_multiplier=settings.retry_backoff_multiplier,
        )
        return cls(
            settings.destination_configs(),
            credentials,
            transformer,
            client or RequestsDeliveryClient(),
            discriminator_field=settings.discriminator_field,
            expected_discriminator=settings.expected_discriminator,
            default_route=settings.default_route,
            retry=retry,
            acknowledger=acknowledger,
            delivery_timeout=settings.delivery_timeout_seconds,
            parallel=settings.parallel_delivery,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Validation and routing
    # ------------------------------------------------------------------

    def validate(self, record: TransformedRecord) -> str | None:
        """Return a skip reason, or ``None`` when the record is deliverable."""
        value = record.get(self._discriminator_field)
        if isinstance(value, str) and value == self._expected:
            return None
        return (
            f"{self._discriminator_field}={value!r} does not match "
            f"expected {self._expected!r}"
        )

    def select_destinations(self, record: TransformedRecord) -> list[DestinationConfig]:
        """Destinations whose routing value the record asks for, in config order.

        A record whose routes match no destination goes to the default
        destination rather than being dropped.
        """
        targets = [d for d in self.destinations if d.routing_value in record.routes]
        if targets or not self.destinations:
            return targets
        fallback = self.default_destination()
        logger.warning(
            "No destination for route(s) %s; using default destination %s",
            ", ".join(record.routes) or "<none>",
            fallback.id,
        )
        return [fallback]

    def default_destination(self) -> DestinationConfig:
        """The destination matching ``default_route``, else the first one."""
        for destination in self.destinations:
            if destination.routing_value == self._default_route:
                return destination
        return self.destinations[0]

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _attempt(self, destination: DestinationConfig, envelope: EventEnvelope) -> str | None:
        body = build_put_events_body(envelope, destination)
        creds = self.credentials.get_credentials(destination.credential_partition)
        context = SigningContext.at(
            creds, destination.region, destination.service, now=self._clock()
        )
        request = sign_request(
            "POST",
            destination.resolved_host,
            destination.path,
            "",
            body,
            context,
            target=destination.target,
            scheme=destination.scheme,
        )
        response = self._client.post(
            request.url, request.headers, request.body, self._delivery_timeout
        )
        return parse_put_events_response(response)

    def _failed(
        self, destination: DestinationConfig, reason: str, attempts: int
    ) -> DispatchOutcome:
        logger.error(
            "Delivery to %s failed after %d attempt(s): %s",
            destination.id,
            attempts,
            reason,
        )
        return DispatchOutcome(
            destination_id=destination.id,
            succeeded=False,
            failure_reason=reason,
            attempts=attempts,
            required=destination.is_required,
        )

    def deliver(self, destination: DestinationConfig, envelope: EventEnvelope) -> DispatchOutcome:
        """Deliver *envelope* to one destination with bounded retries.

        Never raises: every failure becomes a failed ``DispatchOutcome``.
        A ``SigningError`` is not retried.  A 401/403 response drops the
        cached credentials before the next attempt.
        """
        exchange_failures = 0
        delivery_failures = 0
        attempt = 0

        while True:
            attempt += 1
            try:
                event_id = self._attempt(destination, envelope)
            except SigningError as exc:
                return self._failed(destination, f"signing failed: {exc}", attempt)
            except CredentialExchangeError as exc:
                exchange_failures += 1
                reason = f"credential exchange failed: {exc}"
                exhausted = exchange_failures >= self._retry.exchange_max_attempts
            except DeliveryError as exc:
                delivery_failures += 1
                reason = f"delivery failed: {exc}"
                exhausted = delivery_failures >= self._retry.delivery_max_attempts
                if exc.is_auth_failure:
                    self.credentials.invalidate(destination.credential_partition)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected error delivering to %s", destination.id)
                return self._failed(destination, f"unexpected error: {exc}", attempt)
            else:
                logger.info(
                    "Delivered %s to %s (bus=%s, event_id=%s, attempts=%d)",
                    envelope.operation_id,
                    destination.id,
                    destination.event_bus_name,
                    event_id,
                    attempt,
                )
                return DispatchOutcome(
                    destination_id=destination.id,
                    succeeded=True,
                    attempts=attempt,
                    event_id=event_id,
                    required=destination.is_required,
                )

            if exhausted:
                return self._failed(destination, reason, attempt)

            delay = self._retry.delay(attempt)
            logger.warning(
                "Attempt %d to %s failed (%s); retrying in %.1fs",
                attempt,
                destination.id,
                reason,
                delay,
            )
            self._sleep(delay)

    def _deliver_all(
        self, targets: list[DestinationConfig], envelope: EventEnvelope
    ) -> list[DispatchOutcome]:
        if not self._parallel or len(targets) < 2:
            return [self.deliver(d, envelope) for d in targets]
        with ThreadPoolExecutor(
            max_workers=len(targets), thread_name_prefix="busbridge-deliver"
        ) as pool:
            futures = [pool.submit(self.deliver, d, envelope) for d in targets]
            return [f.result() for f in futures]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _aggregate(
        self, outcomes: list[DispatchOutcome], operation_id: str
    ) -> DispatchResult:
        required_failed = [o for o in outcomes if not o.succeeded and o.required]
        for outcome in outcomes:
            if not outcome.succeeded and not outcome.required:
                logger.warning(
                    "Optional destination %s failed for %s (%s); continuing",
                    outcome.destination_id,
                    operation_id,
                    outcome.failure_reason,
                )
        if required_failed:
            status, ack = DispatchStatus.FAILED, AckDecision.WITHHOLD
        else:
            status, ack = DispatchStatus.DELIVERED, AckDecision.ACKNOWLEDGE
        return DispatchResult(
            status=status, ack=ack, outcomes=tuple(outcomes), operation_id=operation_id
        )

    def _dispatch(self, message: InboundMessage) -> DispatchResult:
        try:
            record = self.transformer.transform(message)
        except TransformError as exc:
            return DispatchResult.skipped(f"unparseable payload: {exc}")

        reason = self.validate(record)
        if reason is not None:
            return DispatchResult.skipped(reason)

        try:
            operation_id = self.transformer.operation_id(record)
        except TransformError as exc:
            return DispatchResult.skipped(str(exc))

        targets = self.select_destinations(record)
        if not targets:
            return DispatchResult.skipped("no destinations configured").model_copy(
                update={"operation_id": operation_id}
            )

        envelope = self.transformer.build_envelope(operation_id)
        return self._aggregate(self._deliver_all(targets, envelope), operation_id)

    def dispatch(self, message: InboundMessage) -> DispatchResult:
        """Process *message* and return the result without acknowledging."""
        started = time.perf_counter()
        logger.info(
            "Received message topic=%s partition=%d offset=%d",
            message.topic,
            message.partition,
            message.offset,
        )
        result = self._dispatch(message)
        if result.status is DispatchStatus.SKIPPED:
            logger.info("Skipped %s: %s", message.coordinates, result.skip_reason)
        logger.info(
            "Processed %s in %.1f ms: %s",
            message.coordinates,
            (time.perf_counter() - started) * 1000,
            result.status.value,
        )
        return result

    def process(self, message: InboundMessage) -> DispatchResult:
        """Dispatch *message* and apply the acknowledgment decision.

        Raises
        ------
        PartialDispatchFailure
            When a required destination failed.  The message is not
            acknowledged and will be redelivered by the stream.
        """
        result = self.dispatch(message)
        if not result.acknowledged:
            raise PartialDispatchFailure(message, result)
        if self._acknowledger is not None:
            self._acknowledger.acknowledge(message)
        return result

    def __repr__(self) -> str:
        return (
            f"DispatchOrchestrator(destinations={[d.id for d in self.destinations]}, "
            f"expected={self._expected!r}, parallel={self._parallel})"
        )
