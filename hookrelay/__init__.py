"""HookRelay: multi-tenant webhook delivery engine."""

from hookrelay.config import Settings
from hookrelay.errors import (
    DeliveryError,
    HookRelayError,
    NotFoundError,
    PermanentDeliveryError,
    SignatureMismatchError,
    TransientDeliveryError,
    ValidationError,
)
from hookrelay.storage import DeliveryStore, InMemoryDeliveryStore, SQLiteDeliveryStore
from hookrelay.webhooks import (
    DeliveryJob,
    DeliveryState,
    WebhookEndpoint,
    WebhookEvent,
    WebhookEventType,
    WebhookService,
)

__version__ = "0.1.0"

__all__ = [
    "Settings",
    # Errors
    "DeliveryError",
    "HookRelayError",
    "NotFoundError",
    "PermanentDeliveryError",
    "SignatureMismatchError",
    "TransientDeliveryError",
    "ValidationError",
    # Storage
    "DeliveryStore",
    "InMemoryDeliveryStore",
    "SQLiteDeliveryStore",
    # Webhooks
    "DeliveryJob",
    "DeliveryState",
    "WebhookEndpoint",
    "WebhookEvent",
    "WebhookEventType",
    "WebhookService",
]
