"""Webhook endpoint registration and management.

Provides CRUD operations for tenant endpoints on top of the durable store,
plus the subscription lookup used by the dispatcher.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import pydantic
import structlog
from pydantic import SecretStr

from hookrelay.config import Settings
from hookrelay.errors import NotFoundError, ValidationError
from hookrelay.webhooks.events import WebhookEventType, event_type_value
from hookrelay.webhooks.models import (
    EndpointPatch,
    EndpointRegistration,
    RetryPolicy,
    WebhookEndpoint,
    generate_secret,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from hookrelay.storage.base import DeliveryStore

logger = structlog.get_logger(__name__)


def _translate(error: pydantic.ValidationError) -> ValidationError:
    """Convert the first pydantic error into a ValidationError."""
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "endpoint"
    return ValidationError(
        field,
        first.get("msg", "invalid value"),
        details={"errors": error.errors(include_url=False, include_context=False)},
    )


def default_retry_policy(settings: Settings) -> RetryPolicy:
    """Build the retry policy applied to endpoints that do not set one."""
    return RetryPolicy(
        max_retries=settings.MAX_RETRIES,
        backoff_multiplier=settings.BACKOFF_MULTIPLIER,
        initial_backoff_ms=settings.INITIAL_BACKOFF_MS,
        max_backoff_ms=settings.MAX_BACKOFF_MS,
    )


class EndpointRegistry:
    """Manages webhook endpoint registrations."""

    def __init__(self, store: DeliveryStore, settings: Settings | None = None) -> None:
        """Initialize the registry.

        Args:
            store: Durable store holding endpoints.
            settings: Engine settings for defaults.
        """
        self._store = store
        self._settings = settings or Settings()
        self._logger = logger.bind(component="endpoint_registry")

    async def register(
        self,
        tenant_id: str,
        url: str,
        events: Iterable[WebhookEventType | str],
        secret: str | None = None,
        retry_policy: RetryPolicy | dict[str, Any] | None = None,
        *,
        headers: dict[str, str] | None = None,
        active: bool = True,
        description: str = "",
        timeout_seconds: float | None = None,
    ) -> EndpointRegistration:
        """Register a new endpoint.

        Args:
            tenant_id: Owning tenant.
            url: Absolute http(s) URL.
            events: Event types to subscribe to (at least one).
            secret: Signing secret; generated when omitted.
            retry_policy: Overrides for the default retry policy.
            headers: Custom headers sent with every delivery.
            active: Whether the endpoint starts active.
            description: Human-readable description.
            timeout_seconds: Delivery timeout for this endpoint.

        Returns:
            The created endpoint and its secret in clear text.

        Raises:
            ValidationError: If any field is invalid.
        """
        if not isinstance(tenant_id, str) or not tenant_id.strip():
            raise ValidationError("tenant_id", "must be a non-empty string")

        if isinstance(events, (str, WebhookEventType)):
            events = [events]

        policy: RetryPolicy | dict[str, Any]
        if retry_policy is None:
            policy = default_retry_policy(self._settings)
        elif isinstance(retry_policy, dict):
            policy = {**default_retry_policy(self._settings).model_dump(), **retry_policy}
        else:
            policy = retry_policy

        try:
            endpoint = WebhookEndpoint(
                tenant_id=tenant_id,
                url=url,  # type: ignore[arg-type]
                events={event_type_value(e) for e in events},
                secret=SecretStr(secret if secret is not None else generate_secret()),
                active=active,
                headers=headers or {},
                retry_policy=policy,  # type: ignore[arg-type]
                timeout_seconds=(
                    timeout_seconds
                    if timeout_seconds is not None
                    else self._settings.DELIVERY_TIMEOUT_SECONDS
                ),
                description=description,
            )
        except pydantic.ValidationError as e:
            raise _translate(e) from e

        await self._store.save_endpoint(endpoint)

        self._logger.info(
            "endpoint_registered",
            endpoint_id=endpoint.id,
            tenant_id=tenant_id,
            url=str(endpoint.url),
            event_count=len(endpoint.events),
        )

        return EndpointRegistration(
            endpoint=endpoint,
            secret=endpoint.secret.get_secret_value(),
        )

    async def get(self, endpoint_id: str) -> WebhookEndpoint | None:
        """Get an endpoint by ID.

        Args:
            endpoint_id: Endpoint identifier.

        Returns:
            Endpoint if found, None otherwise.
        """
        return await self._store.get_endpoint(endpoint_id)

    async def list_by_tenant(self, tenant_id: str) -> list[WebhookEndpoint]:
        """List all endpoints owned by a tenant."""
        return await self._store.list_endpoints(tenant_id)

    async def update(
        self,
        endpoint_id: str,
        patch: EndpointPatch | dict[str, Any],
    ) -> WebhookEndpoint:
        """Update an endpoint.

        Changes to ``events`` and ``active`` only affect future emits;
        jobs already created keep their frozen URL and continue.

        Args:
            endpoint_id: Endpoint identifier.
            patch: Fields to change.

        Returns:
            The updated endpoint.

        Raises:
            NotFoundError: If the endpoint does not exist.
            ValidationError: If the patch is invalid or touches id/tenant_id.
        """
        if isinstance(patch, dict):
            for immutable in ("id", "tenant_id"):
                if immutable in patch:
                    raise ValidationError(immutable, "cannot be changed after creation")
            try:
                patch = EndpointPatch.model_validate(patch)
            except pydantic.ValidationError as e:
                raise _translate(e) from e

        endpoint = await self._store.get_endpoint(endpoint_id)
        if endpoint is None:
            raise NotFoundError("endpoint", endpoint_id)

        changes = {
            name: getattr(patch, name)
            for name in patch.model_fields_set
            if getattr(patch, name) is not None
        }
        merged = endpoint.model_dump()
        merged.update(changes)
        merged["secret"] = changes.get("secret", endpoint.secret)
        merged["updated_at"] = datetime.now(UTC)

        try:
            updated = WebhookEndpoint.model_validate(merged)
        except pydantic.ValidationError as e:
            raise _translate(e) from e

        await self._store.save_endpoint(updated)

        self._logger.info(
            "endpoint_updated",
            endpoint_id=endpoint_id,
            fields=sorted(changes),
        )

        return updated

    async def delete(self, endpoint_id: str) -> bool:
        """Delete an endpoint.

        In-flight attempts finish; queued jobs are skipped when picked up.

        Args:
            endpoint_id: Endpoint identifier.

        Returns:
            True if deleted, False if not found.
        """
        deleted = await self._store.delete_endpoint(endpoint_id)
        if deleted:
            self._logger.info("endpoint_deleted", endpoint_id=endpoint_id)
        return deleted

    async def find_subscribed(
        self,
        tenant_id: str,
        event_type: str,
    ) -> list[WebhookEndpoint]:
        """Get the active endpoints of a tenant subscribed to an event type.

        Args:
            tenant_id: Tenant identifier.
            event_type: Event type.

        Returns:
            List of matching endpoints.
        """
        endpoints = await self._store.list_endpoints(tenant_id)
        return [
            endpoint
            for endpoint in endpoints
            if endpoint.active and endpoint.subscribes_to(event_type)
        ]
