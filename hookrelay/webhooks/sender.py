"""Outbound HTTP delivery.

Builds the signed request for one (event, endpoint) pair and performs a
single POST. Retrying is the queue's job; the sender reports every
outcome as a value and never raises for network or HTTP failures.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass

import httpx
import structlog

from hookrelay.errors import DeliveryError, TransientDeliveryError, classify_status
from hookrelay.webhooks.events import WebhookEvent
from hookrelay.webhooks.security import (
    EVENT_HEADER,
    EVENT_ID_HEADER,
    build_signature_headers,
)

logger = structlog.get_logger(__name__)

DEFAULT_USER_AGENT = "HookRelay-Webhooks/1.0"


def serialize_event(event: WebhookEvent) -> bytes:
    """Encode the wire body of an event as compact JSON."""
    return json.dumps(event.to_wire_dict(), separators=(",", ":")).encode("utf-8")


@dataclass
class DeliveryOutcome:
    """Result of one delivery attempt.

    Attributes:
        status_code: HTTP status, None if no response was received.
        error: Delivery error, None on success.
        duration_ms: Wall-clock time of the attempt.
    """

    status_code: int | None
    error: DeliveryError | None
    duration_ms: float

    @property
    def success(self) -> bool:
        return self.error is None


class WebhookSender:
    """Signs and POSTs webhook payloads with an httpx client."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        """Initialize the sender.

        Args:
            client: HTTP client shared by all workers.
            user_agent: User-Agent header value.
        """
        self._client = client
        self._user_agent = user_agent
        self._logger = logger.bind(component="webhook_sender")

    def build_request(
        self,
        url: str,
        secret: str,
        custom_headers: dict[str, str],
        event: WebhookEvent,
        *,
        timestamp: int | None = None,
    ) -> httpx.Request:
        """Build the signed POST request.

        Custom headers never replace the engine's own headers; colliding
        names (compared case-insensitively) are dropped.

        Args:
            url: Target URL.
            secret: Endpoint signing secret.
            custom_headers: Endpoint custom headers.
            event: Event being delivered.
            timestamp: Signing time, defaults to now.

        Returns:
            Request ready to send.
        """
        body = serialize_event(event)

        managed = {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
            EVENT_HEADER: event.type,
            EVENT_ID_HEADER: event.id,
            **build_signature_headers(body, secret, timestamp=timestamp),
        }
        reserved = {name.lower() for name in managed}

        headers = {
            name: value
            for name, value in custom_headers.items()
            if name.lower() not in reserved
        }
        headers.update(managed)

        return self._client.build_request("POST", url, content=body, headers=headers)

    async def deliver(
        self,
        url: str,
        secret: str,
        custom_headers: dict[str, str],
        event: WebhookEvent,
        *,
        timeout: float,
    ) -> DeliveryOutcome:
        """Send one delivery attempt.

        Args:
            url: Target URL.
            secret: Endpoint signing secret.
            custom_headers: Endpoint custom headers.
            event: Event being delivered.
            timeout: Request timeout in seconds.

        Returns:
            Outcome of the attempt.
        """
        self._logger.debug("attempting_delivery", event_id=event.id, url=url)

        start = time.perf_counter()
        try:
            request = self.build_request(url, secret, custom_headers, event)
            request.extensions["timeout"] = httpx.Timeout(timeout).as_dict()
            response = await self._client.send(request)
        except httpx.TimeoutException:
            self._logger.warning("delivery_timeout", event_id=event.id, timeout=timeout)
            return DeliveryOutcome(
                status_code=None,
                error=TransientDeliveryError("Request timeout"),
                duration_ms=_elapsed_ms(start),
            )
        except httpx.RequestError as e:
            self._logger.warning(
                "delivery_connection_error",
                event_id=event.id,
                error=str(e),
            )
            return DeliveryOutcome(
                status_code=None,
                error=TransientDeliveryError(f"Connection error: {e}"),
                duration_ms=_elapsed_ms(start),
            )
        except Exception as e:
            self._logger.warning(
                "delivery_unexpected_error",
                event_id=event.id,
                error=str(e),
            )
            return DeliveryOutcome(
                status_code=None,
                error=TransientDeliveryError(str(e) or e.__class__.__name__),
                duration_ms=_elapsed_ms(start),
            )

        duration_ms = _elapsed_ms(start)
        await response.aclose()

        error = classify_status(response.status_code)
        if error is not None:
            self._logger.warning(
                "delivery_non_success_response",
                event_id=event.id,
                status_code=response.status_code,
                error_type=error.error_type,
            )

        return DeliveryOutcome(
            status_code=response.status_code,
            error=error,
            duration_ms=duration_ms,
        )


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)
