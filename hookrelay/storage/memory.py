"""In-memory storage backend.

Suitable for tests and single-process deployments. Records are copied on
the way in and out so callers never share mutable state with the store.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection
from datetime import datetime

from hookrelay.storage.base import DeliveryStore
from hookrelay.webhooks.events import WebhookEvent
from hookrelay.webhooks.models import DeliveryJob, DeliveryState, WebhookEndpoint


class InMemoryDeliveryStore(DeliveryStore):
    """Dictionary-backed store guarded by a single asyncio lock."""

    def __init__(self) -> None:
        self._endpoints: dict[str, WebhookEndpoint] = {}
        self._events: dict[str, WebhookEvent] = {}
        self._jobs: dict[str, DeliveryJob] = {}
        self._lock = asyncio.Lock()

    async def save_endpoint(self, endpoint: WebhookEndpoint) -> None:
        self._endpoints[endpoint.id] = endpoint.model_copy(deep=True)

    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint | None:
        endpoint = self._endpoints.get(endpoint_id)
        return endpoint.model_copy(deep=True) if endpoint else None

    async def delete_endpoint(self, endpoint_id: str) -> bool:
        return self._endpoints.pop(endpoint_id, None) is not None

    async def list_endpoints(self, tenant_id: str) -> list[WebhookEndpoint]:
        endpoints = [e for e in self._endpoints.values() if e.tenant_id == tenant_id]
        endpoints.sort(key=lambda e: e.created_at)
        return [e.model_copy(deep=True) for e in endpoints]

    async def save_event(self, event: WebhookEvent) -> None:
        self._events[event.id] = event

    async def get_event(self, event_id: str) -> WebhookEvent | None:
        return self._events.get(event_id)

    async def insert_job(self, job: DeliveryJob) -> None:
        async with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> DeliveryJob | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list_jobs(
        self,
        *,
        endpoint_id: str | None = None,
        tenant_id: str | None = None,
        state: DeliveryState | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryJob]:
        jobs = list(self._jobs.values())

        if endpoint_id is not None:
            jobs = [j for j in jobs if j.endpoint_id == endpoint_id]
        if tenant_id is not None:
            jobs = [j for j in jobs if j.tenant_id == tenant_id]
        if state is not None:
            jobs = [j for j in jobs if j.state == state]

        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [j.model_copy(deep=True) for j in jobs[offset : offset + limit]]

    async def claim_ready_job(self, now: datetime) -> DeliveryJob | None:
        async with self._lock:
            ready = [j for j in self._jobs.values() if j.is_ready(now)]
            if not ready:
                return None

            job = min(ready, key=lambda j: j.created_at)
            job.mark_in_flight(now)
            return job.model_copy(deep=True)

    async def compare_and_set_job(
        self,
        job: DeliveryJob,
        expected_states: Collection[DeliveryState],
        *,
        claim_id: str | None = None,
    ) -> bool:
        async with self._lock:
            current = self._jobs.get(job.id)
            if current is None or current.state not in expected_states:
                return False
            if claim_id is not None and current.claim_id != claim_id:
                return False
            self._jobs[job.id] = job.model_copy(deep=True)
            return True

    async def count_jobs_by_state(self, tenant_id: str) -> dict[DeliveryState, int]:
        counts: dict[DeliveryState, int] = {}
        for job in self._jobs.values():
            if job.tenant_id == tenant_id:
                counts[job.state] = counts.get(job.state, 0) + 1
        return counts
