"""Delivery workers.

A worker repeatedly claims a ready job, resolves its endpoint and event,
performs one HTTP attempt and records the outcome through the queue.
``WorkerPool`` runs several independent workers as asyncio tasks.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from hookrelay.config import Settings
from hookrelay.webhooks.models import MAX_TIMEOUT_SECONDS, Clock, DeliveryJob, utc_now

if TYPE_CHECKING:
    from hookrelay.storage.base import DeliveryStore
    from hookrelay.webhooks.queue import DeliveryQueue
    from hookrelay.webhooks.sender import WebhookSender

logger = structlog.get_logger(__name__)


class DeliveryWorker:
    """Processes delivery jobs one at a time."""

    def __init__(
        self,
        queue: DeliveryQueue,
        store: DeliveryStore,
        sender: WebhookSender,
        settings: Settings | None = None,
        *,
        clock: Clock | None = None,
        name: str = "worker-0",
    ) -> None:
        """Initialize the worker.

        Args:
            queue: Delivery queue to claim from and report to.
            store: Durable store for endpoint and event lookups.
            sender: HTTP sender.
            settings: Engine settings.
            clock: Time source, defaults to UTC now.
            name: Worker name used in logs.
        """
        self._queue = queue
        self._store = store
        self._sender = sender
        self._settings = settings or Settings()
        self._clock = clock or utc_now
        self.name = name
        self._logger = logger.bind(component="delivery_worker", worker=name)

    async def run_once(self) -> DeliveryJob | None:
        """Claim and process at most one job.

        If processing raises, the claim is recorded as a failed attempt so
        the job never stays ``in_flight``.

        Returns:
            The processed job, or None if nothing was ready.
        """
        job = await self._queue.pick_ready(self._clock())
        if job is None:
            return None

        claimed = job.model_copy(deep=True)
        try:
            await self.process(job)
        except Exception as e:
            self._logger.exception(
                "delivery_processing_failed",
                delivery_id=claimed.id,
                error=str(e),
            )
            await self._queue.fail(
                claimed,
                f"internal error: {e.__class__.__name__}: {e}",
                now=self._clock(),
            )
        return job

    async def process(self, job: DeliveryJob) -> None:
        """Deliver a claimed job and record the outcome.

        Args:
            job: Job in ``in_flight`` state.
        """
        endpoint = await self._store.get_endpoint(job.endpoint_id)

        if endpoint is None:
            self._logger.info(
                "delivery_endpoint_missing",
                delivery_id=job.id,
                endpoint_id=job.endpoint_id,
            )
            await self._queue.fail(job, "endpoint not found", now=self._clock())
            return

        if not endpoint.active:
            now = self._clock()
            until = now + timedelta(seconds=self._settings.INACTIVE_RECHECK_SECONDS)
            await self._queue.park(job, until, now=now)
            return

        event = await self._store.get_event(job.event_id)
        if event is None:
            self._logger.warning(
                "delivery_event_missing",
                delivery_id=job.id,
                event_id=job.event_id,
            )
            await self._queue.fail(
                job,
                "event not found",
                policy=endpoint.retry_policy,
                now=self._clock(),
            )
            return

        outcome = await self._sender.deliver(
            job.url,
            endpoint.secret.get_secret_value(),
            endpoint.headers,
            event,
            timeout=endpoint.timeout_seconds,
        )

        if outcome.error is None and outcome.status_code is not None:
            await self._queue.complete(job, outcome.status_code, now=self._clock())
            return

        error = outcome.error
        await self._queue.fail(
            job,
            error.message if error else "unknown error",
            status_code=outcome.status_code,
            error_type=error.error_type if error else "transient",
            policy=endpoint.retry_policy,
            now=self._clock(),
        )

    async def run(self, stop_event: asyncio.Event) -> None:
        """Process jobs until ``stop_event`` is set.

        An idle worker sleeps on the queue's notification channel for up to
        the poll interval, so scheduled retries are found by polling and
        fresh jobs wake it immediately.

        Args:
            stop_event: Event signalling shutdown.
        """
        self._logger.info("worker_started")

        while not stop_event.is_set():
            try:
                job = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.exception("worker_iteration_failed", error=str(e))
                job = None

            if job is None:
                await self._queue.wait_for_work(self._settings.POLL_INTERVAL_SECONDS)

        self._logger.info("worker_stopped")


class WorkerPool:
    """Runs a fixed number of delivery workers as asyncio tasks."""

    def __init__(
        self,
        queue: DeliveryQueue,
        store: DeliveryStore,
        sender: WebhookSender,
        settings: Settings | None = None,
        *,
        size: int | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the pool.

        Args:
            queue: Delivery queue.
            store: Durable store.
            sender: HTTP sender.
            settings: Engine settings.
            size: Number of workers, defaults to ``WORKER_COUNT``.
            clock: Time source.
        """
        self._settings = settings or Settings()
        self._queue = queue
        self.size = size if size is not None else self._settings.WORKER_COUNT
        if self.size < 1:
            raise ValueError("worker pool size must be >= 1")

        self.workers = [
            DeliveryWorker(
                queue,
                store,
                sender,
                self._settings,
                clock=clock,
                name=f"worker-{i}",
            )
            for i in range(self.size)
        ]
        self._clock = clock or utc_now
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._logger = logger.bind(component="worker_pool")

        if self._settings.LEASE_SECONDS <= MAX_TIMEOUT_SECONDS:
            # A slow attempt may then be recovered while still running.
            self._logger.warning(
                "lease_shorter_than_max_timeout",
                lease_seconds=self._settings.LEASE_SECONDS,
                max_timeout_seconds=MAX_TIMEOUT_SECONDS,
            )

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        """Start all workers. Calling start on a running pool is a no-op."""
        if self._tasks:
            return

        self._stop_event.clear()
        recovered = await self._queue.requeue_stale(
            self._settings.LEASE_SECONDS,
            now=self._clock(),
        )

        self._tasks = [
            asyncio.create_task(worker.run(self._stop_event), name=worker.name)
            for worker in self.workers
        ]

        self._logger.info(
            "worker_pool_started",
            workers=self.size,
            recovered=recovered,
        )

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop all workers, waiting for in-flight attempts to finish.

        Args:
            timeout: Seconds to wait before cancelling remaining workers.
        """
        if not self._tasks:
            return

        self._stop_event.set()
        done, pending = await asyncio.wait(self._tasks, timeout=timeout)

        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                self._logger.error(
                    "worker_crashed",
                    worker=task.get_name(),
                    error=str(task.exception()),
                )

        self._tasks = []
        self._logger.info("worker_pool_stopped", cancelled=len(pending))

    async def __aenter__(self) -> WorkerPool:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
