"""Delivery queue over the durable store.

The store is the source of truth for every job. On top of it the queue
keeps a bounded ``asyncio.Queue`` of job ids as a wake-up channel, so
idle workers react to new jobs without waiting a full poll interval. A
dropped or stale hint is harmless: workers always claim through the store.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from hookrelay.errors import NotFoundError
from hookrelay.webhooks.models import (
    Clock,
    DeliveryJob,
    DeliveryState,
    RetryPolicy,
    utc_now,
)
from hookrelay.webhooks.retry import next_retry_at, should_retry

if TYPE_CHECKING:
    from hookrelay.storage.base import DeliveryStore

logger = structlog.get_logger(__name__)

DEFAULT_NOTIFY_SIZE = 1000

# States an operator may re-arm from.
REARMABLE_STATES = frozenset({DeliveryState.DEAD_LETTER, DeliveryState.RETRY_SCHEDULED})

_IN_FLIGHT = (DeliveryState.IN_FLIGHT,)


class DeliveryQueue:
    """Durable queue of delivery jobs with a notification channel.

    Every state change is a single-job compare-and-set against the store,
    guarded by the state the caller expects the job to be in. Outcomes of
    an attempt are also fenced by the claim token, so only the worker
    holding the current claim can record them.
    """

    def __init__(
        self,
        store: DeliveryStore,
        *,
        notify_size: int = DEFAULT_NOTIFY_SIZE,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the queue.

        Args:
            store: Durable store holding the jobs.
            notify_size: Capacity of the wake-up channel.
            clock: Time source, defaults to UTC now.
        """
        self._store = store
        self._clock = clock or utc_now
        self._notifications: asyncio.Queue[str] = asyncio.Queue(maxsize=notify_size)
        self._logger = logger.bind(component="delivery_queue")

    def notify(self, job_id: str) -> None:
        """Post a wake-up hint for workers.

        Args:
            job_id: Job that became ready.
        """
        try:
            self._notifications.put_nowait(job_id)
        except asyncio.QueueFull:
            self._logger.debug("notification_dropped", job_id=job_id)

    async def wait_for_work(self, timeout: float) -> bool:
        """Block until a hint arrives or the timeout elapses.

        Args:
            timeout: Seconds to wait.

        Returns:
            True if a hint was received.
        """
        try:
            await asyncio.wait_for(self._notifications.get(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    def drain_notifications(self) -> int:
        """Discard pending hints. Returns how many were dropped."""
        dropped = 0
        with contextlib.suppress(asyncio.QueueEmpty):
            while True:
                self._notifications.get_nowait()
                dropped += 1
        return dropped

    async def enqueue(self, job: DeliveryJob) -> None:
        """Persist a new job and wake a worker.

        Args:
            job: Job in ``pending`` state.
        """
        await self._store.insert_job(job)
        self.notify(job.id)

        self._logger.debug(
            "delivery_enqueued",
            delivery_id=job.id,
            endpoint_id=job.endpoint_id,
            event_id=job.event_id,
        )

    async def pick_ready(self, now: datetime | None = None) -> DeliveryJob | None:
        """Claim the next eligible job.

        Args:
            now: Current time, defaults to the queue clock.

        Returns:
            The job, now ``in_flight``, or None if nothing is ready.
        """
        return await self._store.claim_ready_job(now or self._clock())

    async def complete(
        self,
        job: DeliveryJob,
        status_code: int,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Record a successful delivery.

        Args:
            job: In-flight job.
            status_code: 2xx status returned by the receiver.
            now: Completion time.

        Returns:
            True if the job was still in flight and is now delivered.
        """
        job.mark_delivered(status_code, now or self._clock())
        updated = await self._store.compare_and_set_job(
            job, _IN_FLIGHT, claim_id=job.claim_id
        )

        if updated:
            self._logger.info(
                "delivery_succeeded",
                delivery_id=job.id,
                endpoint_id=job.endpoint_id,
                status_code=status_code,
                attempt=job.attempt,
            )
        else:
            self._logger.warning("delivery_state_conflict", delivery_id=job.id)
        return updated

    async def fail(
        self,
        job: DeliveryJob,
        error: str,
        *,
        status_code: int | None = None,
        error_type: str = "transient",
        policy: RetryPolicy | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Record a failed attempt and schedule a retry or dead-letter.

        Args:
            job: In-flight job.
            error: Error message of the attempt.
            status_code: HTTP status, if a response was received.
            error_type: "transient" or "permanent".
            policy: Retry policy to apply, defaults to the job's snapshot.
            now: Time of the failure.

        Returns:
            True if the job was still in flight and the outcome was stored.
        """
        now = now or self._clock()
        policy = policy or job.retry_policy

        job.attempt += 1
        job.last_error = error
        job.last_error_type = error_type
        job.last_http_status = status_code

        if should_retry(job.attempt, policy):
            job.mark_retry_scheduled(next_retry_at(job.attempt, policy, now), now)
        else:
            job.mark_dead_letter(now)

        updated = await self._store.compare_and_set_job(
            job, _IN_FLIGHT, claim_id=job.claim_id
        )
        if not updated:
            self._logger.warning("delivery_state_conflict", delivery_id=job.id)
            return False

        if job.state == DeliveryState.DEAD_LETTER:
            self._logger.error(
                "delivery_dead_lettered",
                delivery_id=job.id,
                endpoint_id=job.endpoint_id,
                event_id=job.event_id,
                tenant_id=job.tenant_id,
                attempts=job.attempt,
                last_error=error,
                last_http_status=status_code,
            )
        else:
            self._logger.warning(
                "delivery_retry_scheduled",
                delivery_id=job.id,
                endpoint_id=job.endpoint_id,
                attempt=job.attempt,
                next_retry_at=job.next_retry_at.isoformat() if job.next_retry_at else None,
                error=error,
                error_type=error_type,
            )
        return True

    async def park(
        self,
        job: DeliveryJob,
        until: datetime,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Put an in-flight job back to sleep without consuming an attempt.

        Args:
            job: In-flight job.
            until: When the job becomes eligible again.
            now: Current time.

        Returns:
            True if the job was parked.
        """
        job.mark_retry_scheduled(until, now or self._clock())
        updated = await self._store.compare_and_set_job(
            job, _IN_FLIGHT, claim_id=job.claim_id
        )
        if updated:
            self._logger.info(
                "delivery_parked",
                delivery_id=job.id,
                endpoint_id=job.endpoint_id,
                until=until.isoformat(),
            )
        return updated

    async def rearm(self, job_id: str, now: datetime | None = None) -> bool:
        """Make a dead-lettered or scheduled job eligible immediately.

        The attempt counter is kept, so a dead-lettered job that fails
        again goes straight back to ``dead_letter``.

        Args:
            job_id: Job identifier.
            now: Current time.

        Returns:
            True if re-armed, False if the job is in any other state.

        Raises:
            NotFoundError: If the job does not exist.
        """
        now = now or self._clock()
        job = await self._store.get_job(job_id)
        if job is None:
            raise NotFoundError("delivery", job_id)

        if job.state not in REARMABLE_STATES:
            self._logger.info(
                "delivery_rearm_rejected",
                delivery_id=job_id,
                state=job.state.value,
            )
            return False

        previous = job.state
        job.mark_retry_scheduled(now, now)
        updated = await self._store.compare_and_set_job(job, (previous,))
        if updated:
            self.notify(job.id)
            self._logger.info(
                "delivery_rearmed",
                delivery_id=job_id,
                previous_state=previous.value,
                attempt=job.attempt,
            )
        return updated

    async def requeue_stale(
        self,
        lease_seconds: float,
        *,
        now: datetime | None = None,
        batch_size: int = 100,
    ) -> int:
        """Recover in-flight jobs whose worker disappeared.

        A job claimed more than ``lease_seconds`` ago is treated as a failed
        attempt and follows the normal retry path.

        Args:
            lease_seconds: Maximum age of an in-flight claim.
            now: Current time.
            batch_size: Maximum number of jobs inspected.

        Returns:
            Number of jobs recovered.
        """
        now = now or self._clock()
        cutoff = now - timedelta(seconds=lease_seconds)

        in_flight = await self._store.list_jobs(
            state=DeliveryState.IN_FLIGHT,
            limit=batch_size,
        )

        recovered = 0
        for job in in_flight:
            if job.claimed_at is None or job.claimed_at > cutoff:
                continue
            if await self.fail(job, "worker lease expired", now=now):
                recovered += 1
                if job.state == DeliveryState.RETRY_SCHEDULED:
                    self.notify(job.id)

        if recovered:
            self._logger.warning("stale_deliveries_requeued", count=recovered)
        return recovered
