"""Credential exchange bridge: trades a client certificate for temporary credentials.

Bridge boundary
---------------
The exchange endpoint (IAM Roles Anywhere ``CreateSession``) is the only
place a long-lived identity is used.  ``RolesAnywhereExchange`` wraps the
mutual-TLS HTTP call behind the ``CredentialExchange`` protocol so the
credential manager never touches ``requests`` directly.

``SandboxCredentialIssuer`` satisfies the same protocol with synthetic
credentials.  It is wired in only when ``sandbox_credentials`` is set
explicitly, and the production guard refuses that setting.

Every call is a single attempt; retries belong to the orchestrator.
Base64 key material is decoded into a private directory owned by the
exchange and removed by ``close()`` (or at interpreter exit).
"""

from __future__ import annotations

import atexit
import logging
import tempfile
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import requests
from pydantic import ValidationError

from busbridge.bridge.pem import PemError, resolve_pem_file
from busbridge.models.credentials import Credentials, ExchangeProfile
from busbridge.models.signing import AMZ_DATE_FORMAT

logger = logging.getLogger(__name__)

SESSIONS_PATH = "/sessions"


class CredentialExchangeError(RuntimeError):
    """Raised when the exchange endpoint cannot issue credentials."""


@runtime_checkable
class CredentialExchange(Protocol):
    """Anything that can issue credentials for an exchange profile."""

    def exchange(self, profile: ExchangeProfile) -> Credentials:
        """Perform one exchange attempt and return fresh credentials.

        Raises
        ------
        CredentialExchangeError
            On network, authentication or response-format failure.
        """
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_exchange_response(data: Any, region: str) -> Credentials:
    """Extract temporary credentials from an exchange response body.

    Accepts the ``credentialSet[0].credentials`` shape returned by
    CreateSession and a flat top-level ``credentials`` object.
    """
    raw: Any = None
    if isinstance(data, dict):
        credential_set = data.get("credentialSet")
        if isinstance(credential_set, list) and credential_set:
            first = credential_set[0]
            raw = first.get("credentials") if isinstance(first, dict) else None
        else:
            raw = data.get("credentials")

    if not isinstance(raw, dict):
        raise CredentialExchangeError("Exchange response carries no credentials")

    try:
        return Credentials(
            access_key_id=raw.get("accessKeyId"),
            secret_access_key=raw.get("secretAccessKey"),
            session_token=raw.get("sessionToken"),
            region=region,
            expires_at=raw.get("expiration"),
        )
    except ValidationError as exc:
        raise CredentialExchangeError(
            f"Exchange response credentials are malformed: {exc.error_count()} error(s)"
        ) from exc


class RolesAnywhereExchange:
    """Mutual-TLS credential exchange over ``requests``.

    Parameters
    ----------
    host:
        Exchange endpoint host, e.g. ``rolesanywhere.us-east-1.amazonaws.com``.
    certificate_path, private_key_path:
        Client certificate and key (PEM, or base64 encoded PEM/DER).
        When either is ``None`` the call is made without a client
        certificate, which only a test endpoint will accept.
    timeout:
        Connect/read timeout in seconds.
    session:
        Optional ``requests.Session`` (connection pooling, test doubles).
    """

    def __init__(
        self,
        host: str,
        certificate_path: Path | None = None,
        private_key_path: Path | None = None,
        *,
        timeout: float = 30.0,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._host = host
        self._certificate_path = certificate_path
        self._private_key_path = private_key_path
        self._timeout = timeout
        self._session = session or requests.Session()
        self._owns_session = session is None
        self._clock = clock
        self._cert: tuple[str, str] | None = None
        self._workdir: tempfile.TemporaryDirectory[str] | None = None

    @property
    def endpoint(self) -> str:
        return f"https://{self._host}{SESSIONS_PATH}"

    def _client_cert(self) -> tuple[str, str] | None:
        if self._certificate_path is None or self._private_key_path is None:
            return None
        if self._cert is None:
            workdir = Path(self._decode_dir().name)
            try:
                cert = resolve_pem_file(self._certificate_path, "CERTIFICATE", workdir)
                key = resolve_pem_file(self._private_key_path, "PRIVATE KEY", workdir)
            except PemError as exc:
                raise CredentialExchangeError(str(exc)) from exc
            self._cert = (str(cert), str(key))
        return self._cert

    def _decode_dir(self) -> tempfile.TemporaryDirectory[str]:
        if self._workdir is None:
            self._workdir = tempfile.TemporaryDirectory(prefix="busbridge-")
            atexit.register(self.close)
        return self._workdir

    def close(self) -> None:
        """Delete decoded key material and release the owned session."""
        if self._workdir is not None:
            logger.debug("Removing decoded certificate material in %s", self._workdir.name)
            self._workdir.cleanup()
            self._workdir = None
            atexit.unregister(self.close)
        self._cert = None
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> RolesAnywhereExchange:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def exchange(self, profile: ExchangeProfile) -> Credentials:
        """POST the profile to ``/sessions`` and parse the issued credentials."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Amz-Date": self._clock().strftime(AMZ_DATE_FORMAT),
        }
        logger.info(
            "Requesting credentials for partition %s from %s",
            profile.partition,
            self._host,
        )
        try:
            response = self._session.post(
                self.endpoint,
                json=profile.request_body(),
                headers=headers,
                cert=self._client_cert(),
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as exc:
            raise CredentialExchangeError(
                f"Exchange for {profile.partition} timed out after {self._timeout}s"
            ) from exc
        except requests.HTTPError as exc:
            raise CredentialExchangeError(
                f"Exchange for {profile.partition} returned HTTP "
                f"{exc.response.status_code if exc.response is not None else '?'}"
            ) from exc
        except requests.RequestException as exc:
            raise CredentialExchangeError(
                f"Exchange for {profile.partition} failed: {exc}"
            ) from exc
        except ValueError as exc:
            raise CredentialExchangeError(
                f"Exchange for {profile.partition} returned invalid JSON"
            ) from exc

        return parse_exchange_response(data, region=profile.region)

    def __repr__(self) -> str:
        return f"RolesAnywhereExchange(endpoint={self.endpoint!r}, mtls={self._certificate_path is not None})"


class SandboxCredentialIssuer:
    """Issues synthetic, clearly-labelled credentials for sandbox runs.

    Requests signed with these credentials will be rejected by AWS; the
    issuer exists so the pipeline can run end to end without a
    certificate in local and test environments.
    """

    def __init__(
        self,
        lifetime: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._lifetime = lifetime
        self._clock = clock

    def exchange(self, profile: ExchangeProfile) -> Credentials:
        logger.warning(
            "Issuing SANDBOX credentials for partition %s", profile.partition
        )
        return Credentials(
            access_key_id=f"sandbox-access-key-{profile.partition}",
            secret_access_key=f"sandbox-secret-key-{profile.partition}",
            session_token=uuid.uuid4().hex,
            region=profile.region,
            expires_at=self._clock() + self._lifetime,
            sandbox=True,
        )
