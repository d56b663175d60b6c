"""Delivery client protocol for outbound signed calls.

The orchestrator signs every request itself and hands the result to a
``DeliveryClient``.  Clients only move bytes: they raise
``DeliveryError`` for transport failures and return the status and body
of every response, successful or not.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict


class DeliveryError(RuntimeError):
    """Raised when an outbound call fails or returns a non-success result."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_auth_failure(self) -> bool:
        """True for 401/403, which usually mean stale credentials."""
        return self.status_code in (401, 403)


class DeliveryResponse(BaseModel):
    """Status and body of one outbound call."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    body: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@runtime_checkable
class DeliveryClient(Protocol):
    """Protocol every outbound HTTP client must implement."""

    def post(
        self, url: str, headers: dict[str, str], body: bytes, timeout: float
    ) -> DeliveryResponse:
        """Send a signed POST.

        Raises
        ------
        DeliveryError
            On timeout or connection failure.
        """
        ...


__all__ = ["DeliveryClient", "DeliveryError", "DeliveryResponse"]
