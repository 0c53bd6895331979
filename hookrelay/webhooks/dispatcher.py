"""Webhook event dispatcher.

Turns one emitted event into one pending delivery job per subscribed
endpoint. Delivery itself happens later in the worker pool, so ``emit``
returns as soon as the jobs are durable.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import structlog

from hookrelay.config import Settings
from hookrelay.errors import ValidationError
from hookrelay.webhooks.events import (
    WebhookEvent,
    WebhookEventType,
    create_webhook_event,
    event_type_value,
)
from hookrelay.webhooks.models import DeliveryJob

if TYPE_CHECKING:
    from hookrelay.storage.base import DeliveryStore
    from hookrelay.webhooks.queue import DeliveryQueue
    from hookrelay.webhooks.registry import EndpointRegistry

logger = structlog.get_logger(__name__)


class Dispatcher:
    """Fans events out to subscribed endpoints."""

    def __init__(
        self,
        registry: EndpointRegistry,
        store: DeliveryStore,
        queue: DeliveryQueue,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            registry: Endpoint registry used for subscription matching.
            store: Durable store for events.
            queue: Delivery queue receiving the jobs.
            settings: Engine settings.
        """
        self._registry = registry
        self._store = store
        self._queue = queue
        self._settings = settings or Settings()
        self._logger = logger.bind(component="webhook_dispatcher")

    def _validate(
        self,
        event_type: WebhookEventType | str,
        payload: Any,
        tenant_id: str,
    ) -> str:
        type_value = event_type_value(event_type) if event_type is not None else ""
        if not type_value or not type_value.strip():
            raise ValidationError("event_type", "must be a non-empty string")

        if not isinstance(tenant_id, str) or not tenant_id.strip():
            raise ValidationError("tenant_id", "must be a non-empty string")

        try:
            encoded = json.dumps(payload, separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError) as e:
            raise ValidationError("payload", f"must be JSON-serializable: {e}") from e

        size = len(encoded.encode("utf-8"))
        if size > self._settings.MAX_PAYLOAD_BYTES:
            raise ValidationError(
                "payload",
                f"exceeds maximum size of {self._settings.MAX_PAYLOAD_BYTES} bytes",
                details={"size": size, "max_size": self._settings.MAX_PAYLOAD_BYTES},
            )

        return type_value

    async def emit(
        self,
        event_type: WebhookEventType | str,
        payload: Any,
        tenant_id: str,
    ) -> str:
        """Emit an event to every subscribed endpoint of a tenant.

        Each call creates a new event; identical repeated calls are not
        deduplicated.

        Args:
            event_type: Type of event.
            payload: JSON-serializable event data.
            tenant_id: Tenant the event belongs to.

        Returns:
            ID of the created event.

        Raises:
            ValidationError: If the type, tenant or payload is invalid.
        """
        type_value = self._validate(event_type, payload, tenant_id)

        event = create_webhook_event(type_value, payload, tenant_id)
        await self._store.save_event(event)

        jobs = await self._create_jobs(event)

        self._logger.info(
            "event_dispatched",
            event_id=event.id,
            event_type=event.type,
            tenant_id=tenant_id,
            delivery_count=len(jobs),
        )

        return event.id

    async def _create_jobs(self, event: WebhookEvent) -> list[DeliveryJob]:
        endpoints = await self._registry.find_subscribed(event.tenant_id, event.type)

        if not endpoints:
            self._logger.debug(
                "no_endpoints_subscribed",
                event_type=event.type,
                tenant_id=event.tenant_id,
            )
            return []

        jobs: list[DeliveryJob] = []
        for endpoint in endpoints:
            job = DeliveryJob(
                endpoint_id=endpoint.id,
                event_id=event.id,
                tenant_id=event.tenant_id,
                event_type=event.type,
                url=str(endpoint.url),
                retry_policy=endpoint.retry_policy.model_copy(),
            )
            await self._queue.enqueue(job)
            jobs.append(job)

        return jobs
