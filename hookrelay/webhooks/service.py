"""Webhook service facade.

Wires the registry, dispatcher, queue, worker pool and history around one
injected store and exposes the programmatic API used by the host
application.

Example:
    ```python
    from hookrelay import SQLiteDeliveryStore, WebhookService

    async with WebhookService(SQLiteDeliveryStore("data/webhooks.db")) as service:
        registration = await service.register_endpoint(
            "tenant-1", "https://example.com/hooks", ["order.created"]
        )
        await service.emit("order.created", {"order_id": 42}, "tenant-1")
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog

from hookrelay.config import Settings
from hookrelay.errors import NotFoundError
from hookrelay.logging import configure_logging
from hookrelay.webhooks.dispatcher import Dispatcher
from hookrelay.webhooks.events import WebhookEventType, build_test_event
from hookrelay.webhooks.history import DeliveryHistory
from hookrelay.webhooks.models import (
    Clock,
    DeliveryJob,
    DeliveryState,
    DeliveryStats,
    EndpointPatch,
    EndpointRegistration,
    EndpointTestResult,
    RetryPolicy,
    WebhookEndpoint,
    utc_now,
)
from hookrelay.webhooks.queue import DeliveryQueue
from hookrelay.webhooks.registry import EndpointRegistry
from hookrelay.webhooks.security import verify_signature
from hookrelay.webhooks.sender import WebhookSender
from hookrelay.webhooks.worker import WorkerPool

if TYPE_CHECKING:
    from collections.abc import Iterable

    from hookrelay.storage.base import DeliveryStore

logger = structlog.get_logger(__name__)


class WebhookService:
    """Programmatic API of the webhook engine.

    Nothing here is a module-level singleton; build one service per
    store and share it explicitly.
    """

    def __init__(
        self,
        store: DeliveryStore,
        *,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
        worker_count: int | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Durable store for endpoints, events and jobs.
            settings: Engine settings, defaults to ``Settings.from_env()``.
            http_client: HTTP client for deliveries. One is created (and
                closed by ``aclose``) when omitted.
            clock: Time source, defaults to UTC now.
            worker_count: Worker pool size, defaults to ``WORKER_COUNT``.
        """
        self.settings = settings or Settings.from_env()
        self.store = store
        self._clock = clock or utc_now

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=self.settings.DELIVERY_TIMEOUT_SECONDS
        )

        self.registry = EndpointRegistry(store, self.settings)
        self.queue = DeliveryQueue(
            store,
            notify_size=self.settings.NOTIFY_QUEUE_SIZE,
            clock=self._clock,
        )
        self.dispatcher = Dispatcher(self.registry, store, self.queue, self.settings)
        self.sender = WebhookSender(self._client, user_agent=self.settings.USER_AGENT)
        self.history = DeliveryHistory(store, self.queue, clock=self._clock)
        self.pool = WorkerPool(
            self.queue,
            store,
            self.sender,
            self.settings,
            size=worker_count,
            clock=self._clock,
        )
        self._logger = logger.bind(component="webhook_service")

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        **kwargs: Any,
    ) -> WebhookService:
        """Build a service for an application entry point.

        Configures logging from ``LOG_LEVEL`` and ``LOG_FORMAT`` and opens
        the SQLite store at ``DB_PATH``.

        Args:
            settings: Engine settings, defaults to ``Settings.from_env()``.
            **kwargs: Passed through to the constructor.

        Returns:
            A service that has not been started yet.
        """
        # The storage package imports the webhook models.
        from hookrelay.storage.sqlite import SQLiteDeliveryStore

        settings = settings or Settings.from_env()
        configure_logging(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
        return cls(SQLiteDeliveryStore.from_settings(settings), settings=settings, **kwargs)

    # Endpoint management

    async def register_endpoint(
        self,
        tenant_id: str,
        url: str,
        events: Iterable[WebhookEventType | str],
        secret: str | None = None,
        retry_policy: RetryPolicy | dict[str, Any] | None = None,
        **options: Any,
    ) -> EndpointRegistration:
        """Register an endpoint. See ``EndpointRegistry.register``."""
        return await self.registry.register(
            tenant_id, url, events, secret, retry_policy, **options
        )

    async def update_endpoint(
        self,
        endpoint_id: str,
        patch: EndpointPatch | dict[str, Any],
    ) -> WebhookEndpoint | None:
        """Update an endpoint.

        Returns:
            The updated endpoint, or None if it does not exist.
        """
        try:
            return await self.registry.update(endpoint_id, patch)
        except NotFoundError:
            return None

    async def delete_endpoint(self, endpoint_id: str) -> bool:
        return await self.registry.delete(endpoint_id)

    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint | None:
        return await self.registry.get(endpoint_id)

    async def get_endpoints_by_tenant(self, tenant_id: str) -> list[WebhookEndpoint]:
        return await self.registry.list_by_tenant(tenant_id)

    # Events

    async def emit(
        self,
        event_type: WebhookEventType | str,
        payload: Any,
        tenant_id: str,
    ) -> str:
        """Emit an event. See ``Dispatcher.emit``."""
        return await self.dispatcher.emit(event_type, payload, tenant_id)

    # Delivery history

    async def get_delivery_status(self, delivery_id: str) -> DeliveryJob | None:
        return await self.history.get_delivery_status(delivery_id)

    async def list_deliveries(
        self,
        endpoint_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        state: DeliveryState | None = None,
    ) -> list[DeliveryJob]:
        return await self.history.list_deliveries(
            endpoint_id, limit=limit, offset=offset, state=state
        )

    async def retry_delivery(self, delivery_id: str) -> bool:
        return await self.history.retry_delivery(delivery_id)

    async def get_delivery_stats(self, tenant_id: str) -> DeliveryStats:
        return await self.history.get_delivery_stats(tenant_id)

    async def list_dead_letters(
        self,
        tenant_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryJob]:
        return await self.history.list_dead_letters(tenant_id, limit=limit, offset=offset)

    # Diagnostics

    async def test_endpoint(self, endpoint_id: str) -> EndpointTestResult | None:
        """Send a synthetic ``webhook.test`` event once.

        No event or job is persisted and the attempt is never retried.

        Args:
            endpoint_id: Endpoint to test.

        Returns:
            Test result, or None if the endpoint does not exist.
        """
        endpoint = await self.registry.get(endpoint_id)
        if endpoint is None:
            return None

        event = build_test_event(endpoint.id, endpoint.tenant_id)
        outcome = await self.sender.deliver(
            str(endpoint.url),
            endpoint.secret.get_secret_value(),
            endpoint.headers,
            event,
            timeout=endpoint.timeout_seconds,
        )

        self._logger.info(
            "endpoint_tested",
            endpoint_id=endpoint_id,
            success=outcome.success,
            status_code=outcome.status_code,
        )

        return EndpointTestResult(
            success=outcome.success,
            status=outcome.status_code,
            response_time_ms=outcome.duration_ms,
            error=outcome.error.message if outcome.error else None,
        )

    @staticmethod
    def verify_inbound_signature(
        payload: bytes | str,
        signature: str,
        secret: str,
        timestamp: int,
    ) -> bool:
        """Verify a webhook signature the way receivers should."""
        return verify_signature(payload, signature, secret, timestamp)

    # Lifecycle

    async def start(self) -> None:
        """Start the delivery worker pool."""
        await self.pool.start()

    async def stop(self) -> None:
        """Stop the worker pool, letting in-flight attempts finish."""
        await self.pool.stop()

    async def aclose(self) -> None:
        """Stop workers and release the HTTP client if the service owns it."""
        await self.stop()
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> WebhookService:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
