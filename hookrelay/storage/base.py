"""Durable store interface for endpoints, events and delivery jobs.

Every job mutation goes through ``compare_and_set_job`` or
``claim_ready_job``: single-row conditional updates keyed by job id.
No operation spans more than one job.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Collection
from datetime import datetime

from hookrelay.webhooks.events import WebhookEvent
from hookrelay.webhooks.models import DeliveryJob, DeliveryState, WebhookEndpoint


class DeliveryStore(ABC):
    """Abstract base class for webhook storage backends."""

    # Endpoints

    @abstractmethod
    async def save_endpoint(self, endpoint: WebhookEndpoint) -> None:
        """Insert or replace an endpoint."""

    @abstractmethod
    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint | None:
        """Get an endpoint by ID."""

    @abstractmethod
    async def delete_endpoint(self, endpoint_id: str) -> bool:
        """Delete an endpoint. Returns False if it did not exist."""

    @abstractmethod
    async def list_endpoints(self, tenant_id: str) -> list[WebhookEndpoint]:
        """List a tenant's endpoints, oldest first."""

    # Events

    @abstractmethod
    async def save_event(self, event: WebhookEvent) -> None:
        """Persist an emitted event."""

    @abstractmethod
    async def get_event(self, event_id: str) -> WebhookEvent | None:
        """Get an event by ID."""

    # Jobs

    @abstractmethod
    async def insert_job(self, job: DeliveryJob) -> None:
        """Persist a new delivery job."""

    @abstractmethod
    async def get_job(self, job_id: str) -> DeliveryJob | None:
        """Get a job by ID."""

    @abstractmethod
    async def list_jobs(
        self,
        *,
        endpoint_id: str | None = None,
        tenant_id: str | None = None,
        state: DeliveryState | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryJob]:
        """List jobs matching the filters, newest first."""

    @abstractmethod
    async def claim_ready_job(self, now: datetime) -> DeliveryJob | None:
        """Atomically move one eligible job to ``in_flight``.

        Eligible means ``pending``, or ``retry_scheduled`` with
        ``next_retry_at <= now``. Two concurrent callers never receive the
        same job.

        Args:
            now: Current time.

        Returns:
            The claimed job, or None if nothing is eligible.
        """

    @abstractmethod
    async def compare_and_set_job(
        self,
        job: DeliveryJob,
        expected_states: Collection[DeliveryState],
        *,
        claim_id: str | None = None,
    ) -> bool:
        """Write ``job`` only if its stored state is one of ``expected_states``.

        Args:
            job: New version of the job.
            expected_states: States the stored job may be in.
            claim_id: If given, the stored job must also carry this claim
                token, so a worker whose claim was recovered and re-issued
                cannot overwrite the newer attempt.

        Returns:
            True if the write happened.
        """

    @abstractmethod
    async def count_jobs_by_state(self, tenant_id: str) -> dict[DeliveryState, int]:
        """Count a tenant's jobs per state."""

    async def close(self) -> None:
        """Release backend resources."""
        return None
