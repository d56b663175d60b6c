"""Credential lifecycle manager: cache-aside credentials per destination partition.

State per partition::

    ABSENT -> VALID -> EXPIRING -> REFRESHING -> VALID | FAILED

``get_credentials`` returns cached credentials while they are valid
beyond the safety margin and otherwise performs exactly one exchange
attempt.  Concurrent refreshes of the same partition are single-flight:
one caller (the leader) performs the exchange and every other caller
waits for and shares its result.  The registry lock is held only to
elect the leader, never across the exchange call.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from busbridge.bridge.exchange import CredentialExchange, CredentialExchangeError
from busbridge.core.cache_store import CacheStore, CacheStoreError
from busbridge.models.credentials import CredentialState, Credentials, ExchangeProfile

logger = logging.getLogger(__name__)

CACHE_KEY_SUFFIX = "aws-credentials"
DEFAULT_SAFETY_MARGIN = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(partition: str) -> str:
    """Cache key under which *partition*'s credentials are stored."""
    return f"{partition}:{CACHE_KEY_SUFFIX}"


class _Flight:
    """One in-flight refresh shared by a leader and its followers."""

    __slots__ = ("done", "result", "error")

    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: Credentials | None = None
        self.error: BaseException | None = None


class CredentialManager:
    """Produces credentials valid for signing, per destination partition.

    Parameters
    ----------
    store:
        Cache store shared across threads and processes.
    exchange:
        Credential-issuing collaborator (one attempt per call).
    profiles:
        Static exchange identity per partition.
    safety_margin:
        Minimum remaining validity for cached credentials to be returned.
    cache_ttl_seconds:
        Upper bound for the cache TTL; the TTL never exceeds the
        credentials' own remaining lifetime.
    fallback:
        Optional sandbox issuer used when the exchange fails.  Only set
        this outside production.
    wait_timeout:
        How long a follower waits for the leader's refresh.
    """

    def __init__(
        self,
        store: CacheStore,
        exchange: CredentialExchange,
        profiles: Mapping[str, ExchangeProfile],
        *,
        safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
        cache_ttl_seconds: int | None = 3500,
        fallback: CredentialExchange | None = None,
        wait_timeout: float = 45.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._exchange = exchange
        self._profiles = dict(profiles)
        self._safety_margin = safety_margin
        self._cache_ttl = cache_ttl_seconds
        self._fallback = fallback
        self._wait_timeout = wait_timeout
        self._clock = clock

        self._lock = threading.Lock()
        self._inflight: dict[str, _Flight] = {}
        self._failed: set[str] = set()
        self._exchange_calls: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def partitions(self) -> list[str]:
        return sorted(self._profiles)

    def exchange_count(self, partition: str) -> int:
        """Number of exchange attempts made for *partition* so far."""
        with self._lock:
            return self._exchange_calls.get(partition, 0)

    def state(self, partition: str) -> CredentialState:
        """Current lifecycle state of *partition*."""
        with self._lock:
            if partition in self._inflight:
                return CredentialState.REFRESHING
            failed = partition in self._failed
        cached = self._read(partition)
        if cached is None:
            return CredentialState.FAILED if failed else CredentialState.ABSENT
        if cached.is_valid(self._clock(), self._safety_margin):
            return CredentialState.VALID
        return CredentialState.EXPIRING

    # ------------------------------------------------------------------
    # Cache access
    # ------------------------------------------------------------------

    def _read(self, partition: str) -> Credentials | None:
        try:
            raw = self._store.get(cache_key(partition))
        except CacheStoreError as exc:
            logger.warning("Credential cache read failed for %s: %s", partition, exc)
            return None
        if raw is None:
            return None
        try:
            return Credentials.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable cached credentials for %s", partition)
            return None

    def _write(self, partition: str, credentials: Credentials) -> None:
        lifetime = int(credentials.remaining(self._clock()).total_seconds())
        ttl = min(lifetime, self._cache_ttl) if self._cache_ttl else lifetime
        try:
            self._store.set(cache_key(partition), credentials.model_dump_json(), ttl)
        except CacheStoreError as exc:
            logger.warning("Credential cache write failed for %s: %s", partition, exc)

    def invalidate(self, partition: str) -> None:
        """Drop *partition*'s cached credentials so the next call refreshes."""
        try:
            self._store.delete(cache_key(partition))
        except CacheStoreError as exc:
            logger.warning("Credential cache delete failed for %s: %s", partition, exc)
        logger.info("Invalidated cached credentials for %s", partition)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def get_credentials(self, partition: str) -> Credentials:
        """Return credentials for *partition* valid beyond the safety margin.

        Raises
        ------
        CredentialExchangeError
            If the partition is unknown, or the refresh failed and no
            sandbox fallback is configured.
        """
        cached = self._read(partition)
        if cached is not None and cached.is_valid(self._clock(), self._safety_margin):
            return cached

        with self._lock:
            flight = self._inflight.get(partition)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._inflight[partition] = flight

        if not leader:
            return self._await(partition, flight)

        try:
            credentials = self._refresh(partition)
            flight.result = credentials
            return credentials
        except BaseException as exc:
            flight.error = exc
            raise
        finally:
            with self._lock:
                self._inflight.pop(partition, None)
                if flight.error is None:
                    self._failed.discard(partition)
                else:
                    self._failed.add(partition)
            flight.done.set()

    def _await(self, partition: str, flight: _Flight) -> Credentials:
        if not flight.done.wait(self._wait_timeout):
            raise CredentialExchangeError(
                f"Timed out after {self._wait_timeout}s waiting for the "
                f"in-flight refresh of {partition}"
            )
        if flight.error is not None:
            raise CredentialExchangeError(
                f"Refresh of {partition} failed: {flight.error}"
            ) from flight.error
        if flight.result is None:
            raise CredentialExchangeError(f"Refresh of {partition} produced no credentials")
        return flight.result

    def _refresh(self, partition: str) -> Credentials:
        # Another leader may have finished between our cache miss and election.
        cached = self._read(partition)
        if cached is not None and cached.is_valid(self._clock(), self._safety_margin):
            return cached

        profile = self._profiles.get(partition)
        if profile is None:
            raise CredentialExchangeError(f"No exchange profile for partition {partition!r}")

        with self._lock:
            self._exchange_calls[partition] = self._exchange_calls.get(partition, 0) + 1

        try:
            credentials = self._exchange.exchange(profile)
        except CredentialExchangeError as exc:
            if self._fallback is None:
                logger.error("Credential exchange failed for %s: %s", partition, exc)
                raise
            logger.warning(
                "Credential exchange failed for %s (%s); using sandbox fallback",
                partition,
                exc,
            )
            credentials = self._fallback.exchange(profile)

        if not credentials.is_valid(self._clock(), self._safety_margin):
            raise CredentialExchangeError(
                f"Credentials issued for {partition} expire at "
                f"{credentials.expires_at.isoformat()}, inside the safety margin"
            )

        self._write(partition, credentials)
        logger.info(
            "Refreshed credentials for %s (expires %s%s)",
            partition,
            credentials.expires_at.isoformat(),
            ", sandbox" if credentials.sandbox else "",
        )
        return credentials

    def __repr__(self) -> str:
        return (
            f"CredentialManager(partitions={self.partitions}, "
            f"margin={self._safety_margin}, fallback={self._fallback is not None})"
        )
