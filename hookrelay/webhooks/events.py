"""Webhook event types and event records.

An event is the immutable record of something that happened inside a
tenant's account. The dispatcher fans each event out to the endpoints
subscribed to its ``type``.
"""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = "1.0"
TEST_EVENT_TYPE = "webhook.test"


class WebhookEventType(str, Enum):
    """Well-known event types.

    Subscriptions match on the plain string value, so callers may emit
    types outside this catalogue as well.
    """

    # User events
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"

    # Booking events
    BOOKING_CREATED = "booking.created"
    BOOKING_UPDATED = "booking.updated"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_COMPLETED = "booking.completed"

    # Payment events
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_REFUNDED = "payment.refunded"

    # Order events
    ORDER_CREATED = "order.created"
    ORDER_UPDATED = "order.updated"
    ORDER_FULFILLED = "order.fulfilled"
    ORDER_CANCELLED = "order.cancelled"

    # Tenant events
    TENANT_CREATED = "tenant.created"
    TENANT_UPDATED = "tenant.updated"
    TENANT_SUSPENDED = "tenant.suspended"

    # System events
    SYSTEM_MAINTENANCE = "system.maintenance"
    SYSTEM_ALERT = "system.alert"


def event_type_value(event_type: "WebhookEventType | str") -> str:
    """Return the plain string for an event type."""
    if isinstance(event_type, WebhookEventType):
        return event_type.value
    return str(event_type)


class WebhookEvent(BaseModel):
    """An emitted event. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        default_factory=lambda: f"evt_{uuid.uuid4().hex}",
        description="Unique event identifier",
    )
    type: str = Field(
        ..., min_length=1, description="Event type used for subscription matching"
    )
    tenant_id: str = Field(
        ..., min_length=1, description="Tenant that owns the event"
    )
    payload: Any = Field(
        default=None,
        description="Event-specific data",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the event occurred",
    )
    schema_version: str = Field(
        default=SCHEMA_VERSION,
        description="Payload schema version",
    )

    def to_wire_dict(self) -> dict[str, Any]:
        """Convert to the JSON body sent to receivers.

        Returns:
            Dictionary with ISO-formatted timestamp.
        """
        return {
            "id": self.id,
            "event": self.type,
            "data": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


def create_webhook_event(
    event_type: WebhookEventType | str,
    payload: Any,
    tenant_id: str,
    *,
    event_id: str | None = None,
    timestamp: datetime | None = None,
) -> WebhookEvent:
    """Create a webhook event.

    Args:
        event_type: Type of event.
        payload: Event-specific data.
        tenant_id: Owning tenant.
        event_id: Optional custom event ID.
        timestamp: Optional custom timestamp.

    Returns:
        WebhookEvent ready for dispatch.
    """
    values: dict[str, Any] = {
        "type": event_type_value(event_type),
        "payload": payload,
        "tenant_id": tenant_id,
    }
    if event_id:
        values["id"] = event_id
    if timestamp:
        values["timestamp"] = timestamp
    return WebhookEvent(**values)


def build_test_event(endpoint_id: str, tenant_id: str) -> WebhookEvent:
    """Build the synthetic event sent by an endpoint test.

    Args:
        endpoint_id: Endpoint being tested.
        tenant_id: Tenant owning the endpoint.

    Returns:
        A ``webhook.test`` event that is never persisted.
    """
    return create_webhook_event(
        TEST_EVENT_TYPE,
        {
            "test": True,
            "message": "This is a test webhook delivery",
            "endpoint_id": endpoint_id,
        },
        tenant_id,
        event_id=f"evt_test_{uuid.uuid4().hex}",
    )
