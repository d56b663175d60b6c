"""``requests``-backed delivery client."""

from __future__ import annotations

import logging

import requests

from busbridge.routing.sinks import DeliveryError, DeliveryResponse

logger = logging.getLogger(__name__)


class RequestsDeliveryClient:
    """Posts signed requests through a pooled ``requests.Session``.

    Parameters
    ----------
    session:
        Optional session; one is created when omitted.
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session or requests.Session()

    def post(
        self, url: str, headers: dict[str, str], body: bytes, timeout: float
    ) -> DeliveryResponse:
        try:
            response = self._session.post(url, data=body, headers=headers, timeout=timeout)
        except requests.Timeout as exc:
            raise DeliveryError(f"POST {url} timed out after {timeout}s") from exc
        except requests.RequestException as exc:
            raise DeliveryError(f"POST {url} failed: {exc}") from exc

        logger.debug("POST %s -> %d", url, response.status_code)
        return DeliveryResponse(status_code=response.status_code, body=response.text)

    def close(self) -> None:
        self._session.close()
