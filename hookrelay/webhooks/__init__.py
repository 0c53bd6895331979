"""Webhook delivery for tenant endpoints.

This module provides:
- WebhookEventType / WebhookEvent: Event catalogue and event records
- EndpointRegistry: Registration and management of endpoints
- Dispatcher: Fan-out of emitted events into delivery jobs
- DeliveryQueue / WorkerPool: Durable queue and asyncio delivery workers
- DeliveryHistory: Delivery status, listing and manual retry
- WebhookService: Programmatic API wiring everything together
- HMAC signature generation and verification
"""

from hookrelay.webhooks.dispatcher import Dispatcher
from hookrelay.webhooks.events import (
    TEST_EVENT_TYPE,
    WebhookEvent,
    WebhookEventType,
    create_webhook_event,
)
from hookrelay.webhooks.history import DeliveryHistory
from hookrelay.webhooks.models import (
    DeliveryJob,
    DeliveryState,
    DeliveryStats,
    EndpointPatch,
    EndpointRegistration,
    EndpointTestResult,
    RetryPolicy,
    WebhookEndpoint,
)
from hookrelay.webhooks.queue import DeliveryQueue
from hookrelay.webhooks.registry import EndpointRegistry
from hookrelay.webhooks.retry import backoff_schedule, compute_backoff_ms
from hookrelay.webhooks.security import (
    build_signature_headers,
    sign_payload,
    verify_from_headers,
    verify_signature,
)
from hookrelay.webhooks.sender import DeliveryOutcome, WebhookSender
from hookrelay.webhooks.service import WebhookService
from hookrelay.webhooks.worker import DeliveryWorker, WorkerPool

__all__ = [
    # Events
    "TEST_EVENT_TYPE",
    "WebhookEvent",
    "WebhookEventType",
    "create_webhook_event",
    # Models
    "DeliveryJob",
    "DeliveryState",
    "DeliveryStats",
    "EndpointPatch",
    "EndpointRegistration",
    "EndpointTestResult",
    "RetryPolicy",
    "WebhookEndpoint",
    # Components
    "DeliveryHistory",
    "DeliveryQueue",
    "DeliveryWorker",
    "Dispatcher",
    "EndpointRegistry",
    "WebhookSender",
    "DeliveryOutcome",
    "WebhookService",
    "WorkerPool",
    # Retry
    "backoff_schedule",
    "compute_backoff_ms",
    # Security
    "build_signature_headers",
    "sign_payload",
    "verify_from_headers",
    "verify_signature",
]
