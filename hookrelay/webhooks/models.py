"""Webhook endpoint and delivery job models.

Provides the records persisted by the durable store: endpoint
registrations with their retry policy, and delivery jobs with their
state machine.
"""

from __future__ import annotations

import secrets
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    HttpUrl,
    SecretStr,
    field_serializer,
    field_validator,
)

from hookrelay.webhooks.events import event_type_value

MIN_SECRET_LENGTH = 8
MAX_TIMEOUT_SECONDS = 300

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def generate_secret() -> str:
    """Generate a 256-bit hex-encoded signing secret."""
    return secrets.token_hex(32)


def _normalize_events(value: Any) -> Any:
    if isinstance(value, str):
        value = [value]
    if isinstance(value, (list, tuple, set, frozenset)):
        normalized = set()
        for item in value:
            event = event_type_value(item).strip()
            if not event:
                raise ValueError("event types must be non-empty strings")
            normalized.add(event)
        return normalized
    return value


EventSet = Annotated[set[str], BeforeValidator(_normalize_events)]


def _check_headers(value: dict[str, str]) -> dict[str, str]:
    # Header lines go on the wire as ASCII.
    for name, header_value in value.items():
        for text in (name, header_value):
            if not text.isascii() or "\r" in text or "\n" in text:
                raise ValueError(
                    f"header {name!r} must be ASCII without line breaks"
                )
    return value


HeaderMap = Annotated[dict[str, str], AfterValidator(_check_headers)]


class DeliveryState(str, Enum):
    """State of a delivery job."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTER = "dead_letter"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryState.DELIVERED, DeliveryState.DEAD_LETTER)


class RetryPolicy(BaseModel):
    """Retry configuration for an endpoint."""

    max_retries: int = Field(
        default=3,
        description="Failed attempts allowed before dead-lettering",
        ge=0,
        le=10,
    )
    backoff_multiplier: float = Field(
        default=2.0,
        description="Growth factor between consecutive retry delays",
        ge=1,
        le=10,
    )
    initial_backoff_ms: int = Field(
        default=1000,
        description="Delay before the first retry",
        ge=0,
    )
    max_backoff_ms: int = Field(
        default=300_000,
        description="Upper bound for any retry delay",
        ge=1000,
        le=3_600_000,
    )


class WebhookEndpoint(BaseModel):
    """A registered webhook endpoint."""

    id: str = Field(
        default_factory=lambda: f"wh_{uuid.uuid4().hex}",
        description="Unique endpoint identifier",
    )
    tenant_id: str = Field(
        ..., min_length=1, description="Owning tenant"
    )
    url: HttpUrl = Field(
        ..., description="Webhook endpoint URL"
    )
    events: EventSet = Field(
        ..., min_length=1, description="Subscribed event types"
    )
    secret: SecretStr = Field(
        default_factory=lambda: SecretStr(generate_secret()),
        description="Secret key for HMAC signature",
    )
    active: bool = Field(
        default=True,
        description="Whether the endpoint receives new deliveries",
    )
    headers: HeaderMap = Field(
        default_factory=dict,
        description="Custom headers to include in requests",
    )
    retry_policy: RetryPolicy = Field(
        default_factory=RetryPolicy,
        description="Retry configuration",
    )
    timeout_seconds: float = Field(
        default=30.0,
        description="Request timeout in seconds",
        gt=0,
        le=MAX_TIMEOUT_SECONDS,
    )
    description: str = Field(
        default="",
        description="Human-readable description",
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When endpoint was created",
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        description="When endpoint was last updated",
    )

    @field_validator("secret")
    @classmethod
    def _check_secret(cls, value: SecretStr) -> SecretStr:
        if len(value.get_secret_value()) < MIN_SECRET_LENGTH:
            raise ValueError(f"secret must be at least {MIN_SECRET_LENGTH} characters")
        return value

    @field_serializer("events")
    def _serialize_events(self, events: set[str]) -> list[str]:
        return sorted(events)

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this endpoint subscribes to an event type.

        Args:
            event_type: Event type to check.

        Returns:
            True if the type is in the endpoint's event set.
        """
        return event_type in self.events

    def to_storage_dict(self) -> dict[str, Any]:
        """Dump for persistence, including the raw secret."""
        data = self.model_dump(mode="json")
        data["secret"] = self.secret.get_secret_value()
        return data


class EndpointPatch(BaseModel):
    """Fields that may change on an existing endpoint.

    ``id`` and ``tenant_id`` are deliberately absent; unknown fields are
    rejected.
    """

    model_config = ConfigDict(extra="forbid")

    url: HttpUrl | None = None
    events: EventSet | None = Field(default=None, min_length=1)
    active: bool | None = None
    headers: HeaderMap | None = None
    retry_policy: RetryPolicy | None = None
    secret: SecretStr | None = None
    description: str | None = None
    timeout_seconds: float | None = Field(default=None, gt=0, le=MAX_TIMEOUT_SECONDS)

    @field_validator("secret")
    @classmethod
    def _check_secret(cls, value: SecretStr | None) -> SecretStr | None:
        if value is not None and len(value.get_secret_value()) < MIN_SECRET_LENGTH:
            raise ValueError(f"secret must be at least {MIN_SECRET_LENGTH} characters")
        return value


class EndpointRegistration(BaseModel):
    """Result of registering an endpoint.

    The only place the signing secret is handed back in clear text.
    """

    endpoint: WebhookEndpoint
    secret: str


class DeliveryJob(BaseModel):
    """One (event, endpoint) pairing awaiting or having completed delivery."""

    id: str = Field(
        default_factory=lambda: f"dlv_{uuid.uuid4().hex}",
        description="Unique delivery identifier",
    )
    endpoint_id: str = Field(
        ..., description="Target endpoint ID"
    )
    event_id: str = Field(
        ..., description="Event ID that triggered delivery"
    )
    tenant_id: str = Field(
        ..., description="Tenant owning the event and endpoint"
    )
    event_type: str = Field(
        ..., description="Type of event"
    )
    url: str = Field(
        ..., description="Target URL, frozen at job creation"
    )
    state: DeliveryState = Field(
        default=DeliveryState.PENDING,
        description="Current delivery state",
    )
    attempt: int = Field(
        default=0,
        description="Number of failed delivery attempts",
        ge=0,
    )
    retry_policy: RetryPolicy = Field(
        default_factory=RetryPolicy,
        description="Endpoint retry policy at job creation",
    )
    next_retry_at: datetime | None = Field(
        default=None,
        description="When the job becomes eligible again (retry_scheduled only)",
    )
    claimed_at: datetime | None = Field(
        default=None,
        description="When the current in-flight attempt started",
    )
    claim_id: str | None = Field(
        default=None,
        description="Token of the most recent claim, used to fence stale writers",
    )

    # Outcome tracking
    last_http_status: int | None = Field(
        default=None,
        description="HTTP status of the last attempt",
    )
    last_error: str | None = Field(
        default=None,
        description="Error message of the last failed attempt",
    )
    last_error_type: str | None = Field(
        default=None,
        description="'transient' or 'permanent' for the last failure",
    )

    # Timestamps
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the job was created",
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        description="When the job last changed",
    )
    completed_at: datetime | None = Field(
        default=None,
        description="When the job reached a terminal state",
    )

    def is_ready(self, now: datetime) -> bool:
        """Check if a worker may pick this job up.

        Args:
            now: Current time.

        Returns:
            True for pending jobs and for scheduled retries that are due.
        """
        if self.state == DeliveryState.PENDING:
            return True
        return (
            self.state == DeliveryState.RETRY_SCHEDULED
            and self.next_retry_at is not None
            and self.next_retry_at <= now
        )

    def mark_in_flight(self, now: datetime) -> None:
        """Record that a worker claimed the job."""
        self.state = DeliveryState.IN_FLIGHT
        self.claimed_at = now
        self.claim_id = uuid.uuid4().hex
        self.next_retry_at = None
        self.updated_at = now

    def mark_delivered(self, status_code: int, now: datetime) -> None:
        """Mark delivery as successful.

        Args:
            status_code: HTTP status code.
            now: Completion time.
        """
        self.state = DeliveryState.DELIVERED
        self.last_http_status = status_code
        self.last_error = None
        self.last_error_type = None
        self.next_retry_at = None
        self.claimed_at = None
        self.completed_at = now
        self.updated_at = now

    def mark_retry_scheduled(self, next_retry_at: datetime, now: datetime) -> None:
        """Schedule the next attempt."""
        self.state = DeliveryState.RETRY_SCHEDULED
        self.next_retry_at = next_retry_at
        self.claimed_at = None
        self.completed_at = None
        self.updated_at = now

    def mark_dead_letter(self, now: datetime) -> None:
        """Move the job to its terminal failure state."""
        self.state = DeliveryState.DEAD_LETTER
        self.next_retry_at = None
        self.claimed_at = None
        self.completed_at = now
        self.updated_at = now


class DeliveryStats(BaseModel):
    """Per-tenant delivery counts by state."""

    tenant_id: str
    total: int = 0
    pending: int = 0
    in_flight: int = 0
    delivered: int = 0
    retry_scheduled: int = 0
    dead_letter: int = 0

    @classmethod
    def from_counts(
        cls, tenant_id: str, counts: dict[DeliveryState, int]
    ) -> DeliveryStats:
        """Build stats from a state -> count mapping."""
        return cls(
            tenant_id=tenant_id,
            total=sum(counts.values()),
            **{state.value: counts.get(state, 0) for state in DeliveryState},
        )


class EndpointTestResult(BaseModel):
    """Outcome of a one-shot endpoint test."""

    success: bool
    status: int | None = None
    response_time_ms: float | None = None
    error: str | None = None
